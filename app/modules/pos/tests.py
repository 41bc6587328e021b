"""
Tests para el módulo POS

Tests que cubren:
- Aritmética monetaria y redondeo half-up
- Agregado de venta: totales, transiciones de estado y validaciones
- SaleService sobre la unidad de trabajo en memoria (flujos completos)
- Concurrencia: pagos simultáneos y doble finalización
- Reintentos ante errores transitorios de persistencia
- Repositorio SQLAlchemy sobre SQLite
- Recibo PDF y archivo en MinIO
- Reportes de ventas completadas
- Endpoints REST con autenticación JWT

Todos los tests validan el aislamiento por tenant_id.
"""

import base64
import logging
import re
import threading
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from functools import partial
from uuid import uuid4

import pytest
from botocore.exceptions import ClientError
from fastapi.testclient import TestClient
from sqlalchemy.exc import OperationalError

from app.database.database import SessionLocal
from app.main import app
from app.modules.pos.domain import (
    CustomerInfo,
    PaymentMethod,
    SaleItem,
    SalePayment,
    SaleStatus,
    generate_access_key,
    normalize_payment_inputs,
    open_sale,
)
from app.modules.pos.errors import (
    InsufficientPaymentError,
    InvalidStateError,
    NotFoundError,
    PersistenceUnavailableError,
    TransientPersistenceError,
    ValidationError,
)
from app.modules.pos.models import PosSale, PosSaleItem, PosSalePayment
from app.modules.pos.money import (
    MAX_MONEY,
    MAX_QUANTITY,
    clamp_non_negative,
    format_money,
    format_quantity,
    quantize,
    round_money,
    to_decimal,
)
from app.modules.pos.receipts import (
    PDF_MIME_TYPE,
    ReceiptGenerator,
    ReceiptIssuer,
    _ReceiptWriter,
    generate_receipt,
)
from app.modules.pos.reports import POSReportsService, compute_variation, resolve_range
from app.modules.pos.repository import (
    InMemorySaleStore,
    InMemoryUnitOfWork,
    SqlAlchemyUnitOfWork,
    is_transient_error,
    translate_persistence_errors,
)
from app.modules.pos.routers import get_sale_service
from app.modules.pos.services import SaleService
from app.modules.pos.storage import ReceiptArchive
from app.modules.products.service import ProductService, ProductSnapshot


NOW = datetime(2026, 3, 10, 14, 30, tzinfo=timezone.utc)
ACCESS_KEY_PATTERN = re.compile(r"^[0-9A-F]{44}$")


# ===== DOBLES DE PRUEBA =====

class FakeClock:
    def __init__(self, start: datetime):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


class FakeProducts:
    """Catálogo en memoria"""

    def __init__(self):
        self._products = {}

    def add(self, name, price, sku=None, unit="un", tenant_id=None) -> ProductSnapshot:
        snapshot = ProductSnapshot(
            id=uuid4(),
            name=name,
            sku=sku or f"SKU-{uuid4().hex[:6].upper()}",
            unit_label=unit,
            unit_price=Decimal(price),
            tax_rate=Decimal("0"),
        )
        self._products[snapshot.id] = (tenant_id, snapshot)
        return snapshot

    def find_product(self, product_id, tenant_id):
        entry = self._products.get(product_id)
        if entry is None:
            return None
        owner, snapshot = entry
        if owner is not None and owner != tenant_id:
            return None
        return snapshot


class FlakyUnitOfWork(InMemoryUnitOfWork):
    """Falla el commit las primeras N veces con un error transitorio"""

    def __init__(self, store, failures):
        super().__init__(store)
        self.failures = failures

    def commit(self):
        if self.failures["remaining"] > 0:
            self.failures["remaining"] -= 1
            raise TransientPersistenceError("deadlock detected")
        super().commit()


class FakeBody:
    def __init__(self, data):
        self.data = data
        self.closed = False

    def read(self):
        return self.data

    def close(self):
        self.closed = True


class FakeS3:
    """Cliente S3 en memoria con la interfaz de boto3"""

    def __init__(self):
        self.buckets = set()
        self.objects = {}

    def head_bucket(self, Bucket):
        if Bucket not in self.buckets:
            raise ClientError({"Error": {"Code": "404", "Message": "Not Found"}}, "HeadBucket")
        return {}

    def create_bucket(self, Bucket):
        self.buckets.add(Bucket)
        return {}

    def put_object(self, Bucket, Key, Body, ContentType=None):
        self.objects[(Bucket, Key)] = Body
        return {"ETag": '"etag"'}

    def get_object(self, Bucket, Key):
        if (Bucket, Key) not in self.objects:
            raise ClientError(
                {"Error": {"Code": "NoSuchKey", "Message": "The specified key does not exist."}},
                "GetObject"
            )
        return {"Body": FakeBody(self.objects[(Bucket, Key)])}


class BrokenS3(FakeS3):
    def get_object(self, Bucket, Key):
        raise ConnectionError("minio is down")

    def put_object(self, Bucket, Key, Body, ContentType=None):
        raise ConnectionError("minio is down")


class FakePgError(Exception):
    def __init__(self, pgcode):
        super().__init__(f"pg error {pgcode}")
        self.pgcode = pgcode


class FakeDialect:
    name = "postgresql"


class FakeBind:
    dialect = FakeDialect()


class FakePgSession:
    """Sesión mínima sobre PostgreSQL; opcionalmente falla al ejecutar"""

    def __init__(self, error=None):
        self.error = error
        self.statements = []
        self.closed = False
        self.rolled_back = False

    def get_bind(self):
        return FakeBind()

    def execute(self, statement):
        if self.error is not None:
            raise self.error
        self.statements.append(str(statement))

    def rollback(self):
        self.rolled_back = True

    def close(self):
        self.closed = True


class CountingClock(FakeClock):
    def __init__(self, start: datetime):
        super().__init__(start)
        self.calls = 0

    def __call__(self) -> datetime:
        self.calls += 1
        return super().__call__()


# ===== FIXTURES =====

@pytest.fixture
def clock():
    return FakeClock(NOW)


@pytest.fixture
def products():
    return FakeProducts()


@pytest.fixture
def store():
    return InMemorySaleStore(lock_timeout=2)


@pytest.fixture
def service(store, products, clock):
    return SaleService(partial(InMemoryUnitOfWork, store), products, clock=clock)


@pytest.fixture
def coffee(products):
    return products.add("Café molido 500g", "120.00", sku="CAF-500")


@pytest.fixture
def sale(service, operator_id, tenant_id):
    return service.open_sale(operator_id, tenant_id)


@pytest.fixture
def issuer():
    return ReceiptIssuer(
        name="Tienda La Esquina",
        tax_id="900123456-1",
        address="Calle 10 # 5-20",
        city="Bogotá",
        state="Cundinamarca",
    )


def completed_sale(service, sale, product):
    service.add_item(sale.id, sale.tenant_id, product.id, "2", unit_price="120",
                     discount_value="10", tax_value="5")
    service.add_payment(sale.id, sale.tenant_id, "cash", "240")
    return service.finalize_sale(sale.id, sale.tenant_id)


# ===== TESTS DE DINERO =====

class TestMoney:
    """Tests para redondeo y formato de montos"""

    def test_round_half_up(self):
        assert round_money("0.125") == Decimal("0.13")
        assert round_money("2.675") == Decimal("2.68")
        assert round_money("10") == Decimal("10.00")
        assert str(round_money(Decimal("1.005"))) == "1.01"

    def test_to_decimal_accepts_comma(self):
        assert to_decimal("1,5") == Decimal("1.5")
        assert to_decimal(" 12.30 ") == Decimal("12.30")

    def test_to_decimal_rejects_garbage(self):
        for value in ("abc", "", None, True, "NaN", "Infinity"):
            with pytest.raises(ValueError):
                to_decimal(value)

    def test_clamp_logs_warning(self, caplog):
        with caplog.at_level(logging.WARNING):
            assert clamp_non_negative(Decimal("-0.01"), "test") == Decimal("0.00")
        assert "clamped" in caplog.text
        assert clamp_non_negative(Decimal("3.00")) == Decimal("3.00")

    def test_quantize_out_of_range_raises_value_error(self):
        with pytest.raises(ValueError):
            quantize(Decimal("1e30"))
        with pytest.raises(ValueError):
            round_money("1e27")
        assert quantize(MAX_MONEY) == MAX_MONEY

    def test_format(self):
        assert format_money(Decimal("1234.5")) == "$ 1,234.50"
        assert format_quantity(Decimal("2.000")) == "2"
        assert format_quantity(Decimal("0.250")) == "0.25"


# ===== TESTS DEL AGREGADO =====

class TestSaleAggregate:
    """Tests para Sale, SaleItem y SalePayment"""

    def test_open_sale_defaults(self, operator_id, tenant_id):
        sale = open_sale(operator_id, tenant_id, NOW)

        assert sale.status == SaleStatus.OPEN
        assert sale.total_net == Decimal("0.00")
        assert sale.total_paid == Decimal("0.00")
        assert sale.change_due == Decimal("0.00")
        assert sale.closed_at is None
        assert sale.items == () and sale.payments == ()
        assert ACCESS_KEY_PATTERN.match(sale.access_key)

    def test_access_key_is_unique(self):
        keys = {generate_access_key(NOW) for _ in range(50)}
        assert len(keys) == 50
        assert all(key.endswith(f"{int(NOW.timestamp() * 1000):012X}") for key in keys)

    def test_customer_validation(self):
        info = CustomerInfo(name="  Ana  ", tax_id="", email=" ana@correo.co ").validate()
        assert info == CustomerInfo(name="Ana", tax_id=None, email="ana@correo.co", notes=None)

        with pytest.raises(ValidationError):
            CustomerInfo(name="x" * 161).validate()
        with pytest.raises(ValidationError):
            CustomerInfo(tax_id="1" * 33).validate()
        with pytest.raises(ValidationError):
            CustomerInfo(notes="n" * 501).validate()
        with pytest.raises(ValidationError) as exc:
            CustomerInfo(email="no-es-correo").validate()
        assert exc.value.field == "customer_email"

    def test_item_totals(self, coffee):
        item = SaleItem.create(uuid4(), 1, coffee, "2", NOW, unit_price="120",
                               discount_value="10", tax_value="5")

        assert item.gross_total == Decimal("240.00")
        assert item.net_total == Decimal("235.00")
        assert item.product_name == "Café molido 500g"
        assert item.sku == "CAF-500"

    def test_item_uses_catalog_price_and_rounds_gross(self, products):
        product = products.add("Queso", "0.3333", unit="kg")
        item = SaleItem.create(uuid4(), 1, product, "3", NOW)

        assert item.unit_price == Decimal("0.3333")
        assert item.gross_total == Decimal("1.00")
        assert item.unit_label == "kg"

    def test_item_rejects_invalid_inputs(self, coffee):
        for kwargs in (
            {"quantity": "0"},
            {"quantity": "-1"},
            {"quantity": "abc"},
            {"quantity": "1", "unit_price": "-1"},
            {"quantity": "1", "discount_value": "-0.01"},
            {"quantity": "1", "tax_value": "-5"},
        ):
            quantity = kwargs.pop("quantity")
            with pytest.raises(ValidationError):
                SaleItem.create(uuid4(), 1, coffee, quantity, NOW, **kwargs)

    def test_excessive_discount_is_clamped(self, coffee, caplog):
        with caplog.at_level(logging.WARNING):
            item = SaleItem.create(uuid4(), 1, coffee, "1", NOW, unit_price="100",
                                   discount_value="300", tax_value="5")

        assert item.net_total == Decimal("0.00")
        assert item.discount_value == Decimal("105.00")
        assert item.gross_total - item.discount_value + item.tax_value == item.net_total
        assert "clamping" in caplog.text

    def test_totals_invariant_after_many_items(self, operator_id, tenant_id, products):
        sale = open_sale(operator_id, tenant_id, NOW)
        lines = [("1.5", "3.3333", "0.10", "0.19"), ("2", "19.99", "0", "3.80"), ("0.255", "10", "5", "0")]
        for index, (qty, price, discount, tax) in enumerate(lines, start=1):
            product = products.add(f"P{index}", price)
            sale = sale.with_item(SaleItem.create(sale.id, index, product, qty, NOW,
                                                  discount_value=discount, tax_value=tax))

        assert sale.total_net == sum(i.net_total for i in sale.items)
        assert sale.total_net == max(Decimal("0"), sale.total_gross - sale.total_discount + sale.total_tax)
        for total in (sale.total_gross, sale.total_discount, sale.total_tax, sale.total_net):
            assert total >= 0
            assert total.as_tuple().exponent == -2

    def test_payment_moves_to_pending_payment(self, operator_id, tenant_id):
        sale = open_sale(operator_id, tenant_id, NOW)
        payment = SalePayment.create(sale.id, 1, "pix", "10", NOW)
        updated = sale.with_payment(payment)

        assert sale.status == SaleStatus.OPEN
        assert updated.status == SaleStatus.PENDING_PAYMENT
        assert updated.total_paid == Decimal("10.00")

    def test_payment_validation(self):
        with pytest.raises(ValidationError):
            SalePayment.create(uuid4(), 1, "cash", "0", NOW)
        with pytest.raises(ValidationError):
            SalePayment.create(uuid4(), 1, "cash", "0.001", NOW)
        with pytest.raises(ValidationError):
            SalePayment.create(uuid4(), 1, "bitcoin", "10", NOW)
        with pytest.raises(ValidationError):
            SalePayment.create(uuid4(), 1, "cash", "10", NOW, transaction_reference="r" * 121)

        assert PaymentMethod.parse(" CASH ") == PaymentMethod.CASH
        assert PaymentMethod.VOUCHER.label == "Vale"

    def test_item_rejects_values_beyond_column_limits(self, coffee):
        for kwargs, field in (
            ({"quantity": "1e27"}, "quantity"),
            ({"quantity": str(MAX_QUANTITY + Decimal("0.001"))}, "quantity"),
            ({"quantity": "1", "unit_price": "1e15"}, "unit_price"),
            ({"quantity": "1", "unit_price": "1e30"}, "unit_price"),
            ({"quantity": "1", "discount_value": "1e13"}, "discount_value"),
            ({"quantity": "1", "tax_value": "1e30"}, "tax_value"),
            ({"quantity": "99999999999", "unit_price": "9999999999"}, "quantity"),
        ):
            quantity = kwargs.pop("quantity")
            with pytest.raises(ValidationError) as exc:
                SaleItem.create(uuid4(), 1, coffee, quantity, NOW, **kwargs)
            assert exc.value.field == field

    def test_sale_totals_cannot_exceed_column_limits(self, operator_id, tenant_id, products):
        expensive = products.add("Maquinaria", "9999999999.9999")
        sale = open_sale(operator_id, tenant_id, NOW)
        sale = sale.with_item(SaleItem.create(sale.id, 1, expensive, "61", NOW))
        assert sale.total_net == Decimal("609999999999.99")

        with pytest.raises(ValidationError):
            sale.with_item(SaleItem.create(sale.id, 2, expensive, "61", NOW))
        assert len(sale.items) == 1

    def test_payment_rejects_amounts_beyond_column_limits(self, operator_id, tenant_id):
        for amount in ("1e30", "10000000000000", str(MAX_MONEY + Decimal("0.01"))):
            with pytest.raises(ValidationError) as exc:
                SalePayment.create(uuid4(), 1, "cash", amount, NOW)
            assert exc.value.field == "amount"

        sale = open_sale(operator_id, tenant_id, NOW)
        sale = sale.with_payment(SalePayment.create(sale.id, 1, "cash", str(MAX_MONEY), NOW))
        assert sale.total_paid == MAX_MONEY
        with pytest.raises(ValidationError) as exc:
            sale.with_payment(SalePayment.create(sale.id, 2, "cash", "0.01", NOW))
        assert exc.value.field == "amount"

    def test_normalize_payment_inputs(self):
        method, amount, reference = normalize_payment_inputs(" PIX ", "10,5", "  E2E-1 ")

        assert method == PaymentMethod.PIX
        assert amount == Decimal("10.50")
        assert reference == "E2E-1"
        assert normalize_payment_inputs("cash", "3")[2] is None

        with pytest.raises(ValidationError) as exc:
            normalize_payment_inputs("cash", "abc")
        assert exc.value.field == "amount"

    def test_finalize_requires_full_payment(self, operator_id, tenant_id, coffee):
        sale = open_sale(operator_id, tenant_id, NOW)
        sale = sale.with_item(SaleItem.create(sale.id, 1, coffee, "1", NOW))
        sale = sale.with_payment(SalePayment.create(sale.id, 1, "cash", "100", NOW))

        with pytest.raises(InsufficientPaymentError) as exc:
            sale.finalize(NOW)
        assert exc.value.total_net == Decimal("120.00")
        assert exc.value.total_paid == Decimal("100.00")
        assert exc.value.missing == Decimal("20.00")

    def test_terminal_sales_reject_mutations(self, operator_id, tenant_id, coffee):
        completed = open_sale(operator_id, tenant_id, NOW).finalize(NOW)
        cancelled = open_sale(operator_id, tenant_id, NOW).cancel(NOW, "cliente desistió")

        for terminal in (completed, cancelled):
            with pytest.raises(InvalidStateError):
                terminal.with_item(SaleItem.create(terminal.id, 1, coffee, "1", NOW))
            with pytest.raises(InvalidStateError):
                terminal.with_payment(SalePayment.create(terminal.id, 1, "cash", "1", NOW))
            with pytest.raises(InvalidStateError):
                terminal.finalize(NOW)
            with pytest.raises(InvalidStateError):
                terminal.cancel(NOW)

        assert cancelled.cancellation_reason == "cliente desistió"

    def test_receipt_number_format(self, operator_id, tenant_id):
        sale = open_sale(operator_id, tenant_id, NOW).finalize(NOW)

        assert sale.receipt_number == f"RC-20260310-{sale.id.hex[:8].upper()}"
        assert sale.qr_code_data == sale.access_key


# ===== TESTS DEL SERVICIO =====

class TestSaleService:
    """Flujos completos sobre la unidad de trabajo en memoria"""

    def test_scenario_add_item_computes_net(self, service, sale, coffee):
        result = service.add_item(sale.id, sale.tenant_id, coffee.id, 2, unit_price=120,
                                  discount_value=10, tax_value=5)

        assert result.total_gross == Decimal("240.00")
        assert result.total_discount == Decimal("10.00")
        assert result.total_tax == Decimal("5.00")
        assert result.total_net == Decimal("235.00")
        assert result.status == SaleStatus.OPEN

    def test_scenario_payment_and_finalize_with_change(self, service, sale, coffee, clock, issuer):
        service.add_item(sale.id, sale.tenant_id, coffee.id, "2", unit_price="120",
                         discount_value="10", tax_value="5")
        paid = service.add_payment(sale.id, sale.tenant_id, "cash", "240")
        assert paid.total_paid == Decimal("240.00")
        assert paid.status == SaleStatus.PENDING_PAYMENT

        clock.advance(minutes=3)
        completed = service.finalize_sale(sale.id, sale.tenant_id)

        assert completed.status == SaleStatus.COMPLETED
        assert completed.change_due == Decimal("5.00")
        assert completed.closed_at == NOW + timedelta(minutes=3)
        assert completed.receipt_number.startswith("RC-20260310-")

        receipt = generate_receipt(completed, issuer)
        assert receipt.content.startswith(b"%PDF")
        assert receipt.mime_type == PDF_MIME_TYPE

    def test_scenario_finalize_empty_sale(self, service, sale):
        completed = service.finalize_sale(sale.id, sale.tenant_id)

        assert completed.status == SaleStatus.COMPLETED
        assert completed.total_net == Decimal("0.00")
        assert completed.change_due == Decimal("0.00")

    def test_scenario_finalize_without_payment_fails(self, service, sale, coffee):
        service.add_item(sale.id, sale.tenant_id, coffee.id, "1")

        with pytest.raises(InsufficientPaymentError):
            service.finalize_sale(sale.id, sale.tenant_id)

        current = service.get_sale(sale.id, sale.tenant_id)
        assert current.status == SaleStatus.OPEN
        assert len(current.items) == 1
        assert current.closed_at is None

        service.add_payment(sale.id, sale.tenant_id, "debit", "120")
        assert service.finalize_sale(sale.id, sale.tenant_id).status == SaleStatus.COMPLETED

    def test_exact_payment_has_no_change(self, service, sale, coffee):
        service.add_item(sale.id, sale.tenant_id, coffee.id, "1")
        service.add_payment(sale.id, sale.tenant_id, "credit", "120.00")

        assert service.finalize_sale(sale.id, sale.tenant_id).change_due == Decimal("0.00")

    def test_second_finalize_fails_and_keeps_closing_data(self, service, sale, coffee, clock):
        completed = completed_sale(service, sale, coffee)
        clock.advance(hours=1)

        with pytest.raises(InvalidStateError):
            service.finalize_sale(sale.id, sale.tenant_id)

        current = service.get_sale(sale.id, sale.tenant_id)
        assert current.closed_at == completed.closed_at
        assert current.change_due == completed.change_due

    def test_partial_payments_accumulate(self, service, sale, coffee):
        service.add_item(sale.id, sale.tenant_id, coffee.id, "1")
        for method, amount in (("cash", "20"), ("pix", "50.50"), ("voucher", "49.50")):
            result = service.add_payment(sale.id, sale.tenant_id, method, amount)

        assert result.total_paid == Decimal("120.00")
        assert result.balance_due == Decimal("0.00")
        assert [p.sequence for p in result.payments] == [1, 2, 3]

    def test_over_payment_is_allowed(self, service, sale, coffee):
        service.add_item(sale.id, sale.tenant_id, coffee.id, "1")
        service.add_payment(sale.id, sale.tenant_id, "cash", "200")

        assert service.finalize_sale(sale.id, sale.tenant_id).change_due == Decimal("80.00")

    def test_items_keep_insertion_order(self, service, sale, products):
        names = ["Arroz", "Leche", "Pan"]
        for name in names:
            product = products.add(name, "1")
            result = service.add_item(sale.id, sale.tenant_id, product.id, "1")

        assert [i.product_name for i in result.items] == names
        assert [i.line_number for i in result.items] == [1, 2, 3]

    def test_unknown_sale_and_other_tenant(self, service, sale):
        with pytest.raises(NotFoundError):
            service.get_sale(uuid4(), sale.tenant_id)
        with pytest.raises(NotFoundError):
            service.get_sale(sale.id, uuid4())
        with pytest.raises(NotFoundError):
            service.add_payment(sale.id, uuid4(), "cash", "1")

    def test_unknown_product_leaves_sale_unchanged(self, service, sale):
        with pytest.raises(NotFoundError):
            service.add_item(sale.id, sale.tenant_id, uuid4(), "1")

        assert service.get_sale(sale.id, sale.tenant_id).items == ()

    def test_product_of_other_tenant_is_not_found(self, service, sale, products):
        foreign = products.add("Ajeno", "5", tenant_id=uuid4())

        with pytest.raises(NotFoundError):
            service.add_item(sale.id, sale.tenant_id, foreign.id, "1")

    def test_invalid_inputs(self, service, sale, coffee):
        with pytest.raises(ValidationError):
            service.add_item(sale.id, sale.tenant_id, coffee.id, "0")
        with pytest.raises(ValidationError):
            service.add_payment(sale.id, sale.tenant_id, "cash", "-5")
        with pytest.raises(ValidationError):
            service.add_payment(sale.id, sale.tenant_id, "cheque", "5")
        with pytest.raises(ValidationError):
            service.open_sale(uuid4(), sale.tenant_id, CustomerInfo(email="invalid"))

    def test_completed_sale_is_read_only(self, service, sale, coffee):
        completed_sale(service, sale, coffee)

        with pytest.raises(InvalidStateError):
            service.add_item(sale.id, sale.tenant_id, coffee.id, "1")
        with pytest.raises(InvalidStateError):
            service.add_payment(sale.id, sale.tenant_id, "cash", "1")
        with pytest.raises(InvalidStateError):
            service.cancel_sale(sale.id, sale.tenant_id)

    def test_cancel_sale(self, service, sale, coffee, clock):
        service.add_item(sale.id, sale.tenant_id, coffee.id, "1")
        clock.advance(minutes=1)

        cancelled = service.cancel_sale(sale.id, sale.tenant_id, "  error de digitación ")

        assert cancelled.status == SaleStatus.CANCELLED
        assert cancelled.closed_at == NOW + timedelta(minutes=1)
        assert cancelled.cancellation_reason == "error de digitación"
        with pytest.raises(InvalidStateError):
            service.finalize_sale(sale.id, sale.tenant_id)

    def test_out_of_range_inputs_leave_sale_unchanged(self, service, sale, coffee):
        with pytest.raises(ValidationError) as exc:
            service.add_payment(sale.id, sale.tenant_id, "cash", "1e30")
        assert exc.value.field == "amount"
        with pytest.raises(ValidationError):
            service.add_payment(sale.id, sale.tenant_id, "cash", "10000000000000")
        with pytest.raises(ValidationError) as exc:
            service.add_item(sale.id, sale.tenant_id, coffee.id, "1e27")
        assert exc.value.field == "quantity"

        stored = service.get_sale(sale.id, sale.tenant_id)
        assert stored.items == () and stored.payments == ()
        assert stored.total_paid == Decimal("0.00")

    def test_add_payment_validates_before_touching_the_sale(self, store, products, sale):
        store.write([sale])
        clock = CountingClock(NOW)
        service = SaleService(partial(InMemoryUnitOfWork, store), products, clock=clock)

        with pytest.raises(ValidationError):
            service.add_payment(sale.id, sale.tenant_id, "cash", "0")
        with pytest.raises(ValidationError):
            service.add_payment(uuid4(), sale.tenant_id, "cheque", "5")
        assert clock.calls == 0

        result = service.add_payment(sale.id, sale.tenant_id, " Debit ", "12,345",
                                     transaction_reference=" NSU-1 ")
        assert clock.calls == 1
        payment = result.payments[0]
        assert payment.method == PaymentMethod.DEBIT
        assert payment.amount == Decimal("12.35")
        assert payment.transaction_reference == "NSU-1"
        assert payment.paid_at == NOW

    def test_open_sale_logs(self, service, operator_id, tenant_id, caplog):
        with caplog.at_level(logging.INFO, logger="app.modules.pos.services"):
            sale = service.open_sale(operator_id, tenant_id, CustomerInfo(name="Ana"))

        assert sale.customer_name == "Ana"
        assert f"Sale {sale.id} opened" in caplog.text


# ===== TESTS DE CONCURRENCIA =====

class TestConcurrency:
    """Las operaciones sobre una misma venta se serializan"""

    def test_concurrent_payments_are_all_counted(self, service, sale):
        threads_count = 8
        payments_per_thread = 5
        barrier = threading.Barrier(threads_count)
        errors = []

        def pay(amount):
            barrier.wait()
            for _ in range(payments_per_thread):
                try:
                    service.add_payment(sale.id, sale.tenant_id, "cash", amount)
                except Exception as e:
                    errors.append(e)

        threads = [
            threading.Thread(target=pay, args=(f"{index + 1}.25",))
            for index in range(threads_count)
        ]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert errors == []
        result = service.get_sale(sale.id, sale.tenant_id)
        expected = sum(Decimal(f"{index + 1}.25") for index in range(threads_count)) * payments_per_thread
        assert result.total_paid == expected
        assert len(result.payments) == threads_count * payments_per_thread
        assert sorted(p.sequence for p in result.payments) == list(range(1, len(result.payments) + 1))

    def test_two_payments_sum(self, service, sale):
        barrier = threading.Barrier(2)

        def pay(amount):
            barrier.wait()
            service.add_payment(sale.id, sale.tenant_id, "cash", amount)

        threads = [threading.Thread(target=pay, args=(a,)) for a in ("100.00", "35.50")]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert service.get_sale(sale.id, sale.tenant_id).total_paid == Decimal("135.50")

    def test_double_finalize_only_one_succeeds(self, service, sale, coffee):
        service.add_item(sale.id, sale.tenant_id, coffee.id, "1")
        service.add_payment(sale.id, sale.tenant_id, "cash", "150")
        barrier = threading.Barrier(2)
        outcomes = []

        def finalize():
            barrier.wait()
            try:
                outcomes.append(service.finalize_sale(sale.id, sale.tenant_id).status)
            except InvalidStateError as e:
                outcomes.append(e)

        threads = [threading.Thread(target=finalize) for _ in range(2)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert sum(1 for o in outcomes if o == SaleStatus.COMPLETED) == 1
        assert sum(1 for o in outcomes if isinstance(o, InvalidStateError)) == 1
        assert service.get_sale(sale.id, sale.tenant_id).change_due == Decimal("30.00")

    def test_lock_timeout_exhausts_retries(self, products, clock, sale):
        store = InMemorySaleStore(lock_timeout=0.05)
        store.write([sale])
        service = SaleService(partial(InMemoryUnitOfWork, store), products, clock=clock, max_attempts=2)

        with InMemoryUnitOfWork(store) as holder:
            holder.sales.get(sale.id, sale.tenant_id, for_update=True)
            with pytest.raises(PersistenceUnavailableError):
                service.add_payment(sale.id, sale.tenant_id, "cash", "10")

        assert service.add_payment(sale.id, sale.tenant_id, "cash", "10").total_paid == Decimal("10.00")


# ===== TESTS DE REINTENTOS =====

class TestRetries:
    """Reintento de la transacción completa ante errores transitorios"""

    def test_transient_failures_are_retried(self, store, products, clock, sale, caplog):
        store.write([sale])
        failures = {"remaining": 2}
        service = SaleService(lambda: FlakyUnitOfWork(store, failures), products,
                              clock=clock, max_attempts=3)

        with caplog.at_level(logging.WARNING):
            result = service.add_payment(sale.id, sale.tenant_id, "cash", "10")

        assert result.total_paid == Decimal("10.00")
        assert len(store.read(sale.id).payments) == 1
        assert caplog.text.count("Transient persistence failure") == 2

    def test_retries_exhausted(self, store, products, clock, sale):
        store.write([sale])
        failures = {"remaining": 5}
        service = SaleService(lambda: FlakyUnitOfWork(store, failures), products,
                              clock=clock, max_attempts=3)

        with pytest.raises(PersistenceUnavailableError):
            service.add_payment(sale.id, sale.tenant_id, "cash", "10")

        assert failures["remaining"] == 2
        assert store.read(sale.id).total_paid == Decimal("0.00")

    def test_business_errors_are_not_retried(self, store, products, clock, sale):
        store.write([sale])
        failures = {"remaining": 0}
        calls = []

        def factory():
            calls.append(1)
            return FlakyUnitOfWork(store, failures)

        service = SaleService(factory, products, clock=clock, max_attempts=3)
        with pytest.raises(NotFoundError):
            service.add_item(sale.id, sale.tenant_id, uuid4(), "1")
        assert len(calls) == 1

    def test_sqlstate_translation(self):
        for code in ("40P01", "40001", "55P03"):
            assert is_transient_error(OperationalError("SELECT 1", {}, FakePgError(code)))
        assert not is_transient_error(OperationalError("SELECT 1", {}, FakePgError("23505")))

        with pytest.raises(TransientPersistenceError):
            with translate_persistence_errors():
                raise OperationalError("SELECT 1", {}, FakePgError("40P01"))

        with pytest.raises(OperationalError):
            with translate_persistence_errors():
                raise OperationalError("SELECT 1", {}, FakePgError("23505"))


# ===== TESTS DEL REPOSITORIO SQLALCHEMY =====

class TestSqlAlchemyRepository:
    """Persistencia real sobre SQLite en memoria"""

    @pytest.fixture
    def sql_service(self, clock):
        return SaleService(partial(SqlAlchemyUnitOfWork, SessionLocal), ProductService(SessionLocal), clock=clock)

    def test_full_lifecycle_is_persisted(self, sql_service, make_product, operator_id, tenant_id, db_session):
        product = make_product(name="Café molido 500g", sku="CAF-500", price="120")
        sale = sql_service.open_sale(operator_id, tenant_id, CustomerInfo(name="Ana", email="ana@correo.co"))
        sql_service.add_item(sale.id, tenant_id, product.id, "2", discount_value="10", tax_value="5")
        sql_service.add_payment(sale.id, tenant_id, "cash", "200")
        sql_service.add_payment(sale.id, tenant_id, "pix", "40", transaction_reference="E2E-123")
        sql_service.finalize_sale(sale.id, tenant_id)

        stored = sql_service.get_sale(sale.id, tenant_id)
        assert stored.status == SaleStatus.COMPLETED
        assert stored.customer_name == "Ana"
        assert stored.total_net == Decimal("235.00")
        assert stored.total_paid == Decimal("240.00")
        assert stored.change_due == Decimal("5.00")
        assert stored.items[0].unit_price == Decimal("120.0000")
        assert stored.items[0].quantity == Decimal("2.000")
        assert [p.method for p in stored.payments] == [PaymentMethod.CASH, PaymentMethod.PIX]
        assert stored.payments[1].transaction_reference == "E2E-123"
        assert stored.closed_at == NOW
        assert stored.closed_at.tzinfo is not None

        row = db_session.query(PosSale).filter(PosSale.id == sale.id).one()
        assert row.access_key == sale.access_key
        assert db_session.query(PosSaleItem).filter(PosSaleItem.sale_id == sale.id).count() == 1
        assert db_session.query(PosSalePayment).filter(PosSalePayment.sale_id == sale.id).count() == 2

    def test_failed_finalize_is_rolled_back(self, sql_service, make_product, operator_id, tenant_id):
        product = make_product(price="50")
        sale = sql_service.open_sale(operator_id, tenant_id)
        sql_service.add_item(sale.id, tenant_id, product.id, "1")

        with pytest.raises(InsufficientPaymentError):
            sql_service.finalize_sale(sale.id, tenant_id)

        stored = sql_service.get_sale(sale.id, tenant_id)
        assert stored.status == SaleStatus.OPEN
        assert stored.closed_at is None
        assert stored.receipt_number is None

    def test_lock_timeout_is_set_on_postgresql(self):
        session = FakePgSession()

        with SqlAlchemyUnitOfWork(lambda: session, lock_timeout=1.5):
            pass

        assert session.statements == ["SET LOCAL lock_timeout = '1500ms'"]
        assert session.rolled_back
        assert session.closed

    def test_session_is_closed_when_lock_timeout_setup_fails(self):
        session = FakePgSession(error=OperationalError("SET LOCAL", {}, FakePgError("55P03")))

        with pytest.raises(TransientPersistenceError):
            with SqlAlchemyUnitOfWork(lambda: session, lock_timeout=1):
                pass
        assert session.closed

        other = FakePgSession(error=RuntimeError("connection reset"))
        with pytest.raises(RuntimeError):
            SqlAlchemyUnitOfWork(lambda: other).__enter__()
        assert other.closed

    def test_failed_session_setup_is_retried_and_closed(self, products, clock, sale):
        sessions = []

        def factory():
            session = FakePgSession(error=OperationalError("SET LOCAL", {}, FakePgError("55P03")))
            sessions.append(session)
            return session

        service = SaleService(partial(SqlAlchemyUnitOfWork, factory), products,
                              clock=clock, max_attempts=3)

        with pytest.raises(PersistenceUnavailableError):
            service.get_sale(sale.id, sale.tenant_id)
        assert len(sessions) == 3
        assert all(s.closed for s in sessions)

    def test_tenant_isolation(self, sql_service, operator_id, tenant_id):
        sale = sql_service.open_sale(operator_id, tenant_id)

        with pytest.raises(NotFoundError):
            sql_service.get_sale(sale.id, uuid4())


# ===== TESTS DEL RECIBO =====

class TestReceipt:
    """Tests para la generación del PDF"""

    def test_receipt_for_completed_sale(self, service, sale, coffee, issuer):
        completed = completed_sale(service, sale, coffee)

        receipt = ReceiptGenerator(issuer).generate(completed)

        assert receipt.content.startswith(b"%PDF")
        assert receipt.size_bytes == len(receipt.content)
        assert receipt.file_name == f"recibo-{completed.access_key}.pdf"

    def test_receipt_is_deterministic(self, service, sale, coffee, issuer):
        completed = completed_sale(service, sale, coffee)
        generator = ReceiptGenerator(issuer)

        assert generator.generate(completed).content == generator.generate(completed).content

    def test_open_sale_has_no_receipt(self, sale, issuer):
        with pytest.raises(InvalidStateError):
            generate_receipt(sale, issuer)

    def test_long_sales_span_several_pages(self, service, sale, products, issuer):
        for index in range(60):
            product = products.add(f"Producto con un nombre bastante largo número {index}", "1.5")
            service.add_item(sale.id, sale.tenant_id, product.id, "1")
        service.add_payment(sale.id, sale.tenant_id, "cash", "90")
        completed = service.finalize_sale(sale.id, sale.tenant_id)

        writer = _ReceiptWriter(completed, issuer, "$")
        content = writer.render()

        assert content.startswith(b"%PDF")
        assert writer.page > 1


class TestReceiptArchive:
    """Tests para el archivo de recibos en MinIO"""

    def test_disabled_archive_always_generates(self, service, sale, coffee, issuer):
        completed = completed_sale(service, sale, coffee)
        client = FakeS3()
        archive = ReceiptArchive(client=client, bucket_name="receipts", enabled=False)

        receipt = archive.get_or_generate(completed, ReceiptGenerator(issuer))

        assert receipt.content.startswith(b"%PDF")
        assert client.objects == {}

    def test_receipt_is_stored_and_reused(self, service, sale, coffee, issuer):
        completed = completed_sale(service, sale, coffee)
        client = FakeS3()
        archive = ReceiptArchive(client=client, bucket_name="receipts", enabled=True)

        first = archive.get_or_generate(completed, ReceiptGenerator(issuer))
        key = ("receipts", f"{completed.tenant_id}/pos/receipts/{completed.id}-completed.pdf")
        assert client.objects[key] == first.content
        assert "receipts" in client.buckets

        second = archive.get_or_generate(completed, ReceiptGenerator(issuer))
        assert second.content == first.content
        assert second.file_name == first.file_name

    def test_storage_failure_falls_back_to_generation(self, service, sale, coffee, issuer, caplog):
        completed = completed_sale(service, sale, coffee)
        archive = ReceiptArchive(client=BrokenS3(), bucket_name="receipts", enabled=True)

        with caplog.at_level(logging.ERROR):
            receipt = archive.get_or_generate(completed, ReceiptGenerator(issuer))

        assert receipt.content.startswith(b"%PDF")
        assert "minio is down" in caplog.text


# ===== TESTS DE REPORTES =====

class TestReports:
    """Reportes sobre ventas completadas en SQLite"""

    @pytest.fixture
    def seeded(self, clock, make_product, operator_id, tenant_id):
        service = SaleService(partial(SqlAlchemyUnitOfWork, SessionLocal), ProductService(SessionLocal), clock=clock)
        coffee = make_product(name="Café", price="120")
        bread = make_product(name="Pan", price="50")

        def sell(at, product, quantity, method, amount, **item):
            clock.now = at
            sale = service.open_sale(operator_id, tenant_id)
            service.add_item(sale.id, tenant_id, product.id, quantity, **item)
            service.add_payment(sale.id, tenant_id, method, amount)
            return service.finalize_sale(sale.id, tenant_id)

        sell(NOW, coffee, "2", "cash", "240", discount_value="10", tax_value="5")
        sell(datetime(2026, 3, 9, 9, 0, tzinfo=timezone.utc), bread, "1", "debit", "50")
        sell(datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc), bread, "2", "cash", "100")

        clock.now = NOW
        cancelled = service.open_sale(operator_id, tenant_id)
        service.add_item(cancelled.id, tenant_id, coffee.id, "5")
        service.cancel_sale(cancelled.id, tenant_id)

        # Otro tenant no debe aparecer
        other = service.open_sale(operator_id, uuid4())
        service.finalize_sale(other.id, other.tenant_id)
        return {"coffee": coffee, "bread": bread}

    @pytest.fixture
    def reports(self, db_session, clock):
        return POSReportsService(db_session, clock=clock)

    def test_resolve_range(self):
        report_range = resolve_range("7D", NOW)
        assert report_range.preset == "7d"
        assert report_range.start == datetime(2026, 3, 4, tzinfo=timezone.utc)
        assert report_range.end == datetime(2026, 3, 11, tzinfo=timezone.utc)
        assert report_range.previous_start == datetime(2026, 2, 25, tzinfo=timezone.utc)

        assert resolve_range("365d", NOW).preset == "30d"
        assert resolve_range(None, NOW).days == 30

    def test_compute_variation(self):
        assert compute_variation(Decimal("150"), Decimal("100")) == 50.0
        assert compute_variation(Decimal("10"), Decimal("0")) is None

    def test_overview(self, seeded, reports, tenant_id):
        report = reports.get_overview(tenant_id, "7d")

        totals = report["totals"]
        assert totals["orders"] == 2
        assert totals["gross"] == 290.0
        assert totals["discounts"] == 10.0
        assert totals["taxes"] == 5.0
        assert totals["net"] == 285.0
        assert totals["paid"] == 290.0
        assert totals["change_due"] == 5.0
        assert totals["average_ticket"] == 142.5

        assert report["variations"] == {"revenue": 185.0, "orders": 100.0, "average_ticket": 42.5}
        assert [d["date"] for d in report["trend"]] == ["2026-03-09", "2026-03-10"]
        assert report["highlights"]["best_day"]["date"] == "2026-03-10"

        payments = report["payments"]
        assert [p["method"] for p in payments] == ["cash", "debit"]
        assert payments[0]["label"] == "Efectivo"
        assert payments[0]["share"] == 82.76

    def test_top_products(self, seeded, reports, tenant_id):
        report = reports.get_top_products(tenant_id, "7d", limit=5)

        names = [item["name"] for item in report["by_revenue"]]
        assert names == ["Café", "Pan"]
        assert report["by_revenue"][0]["revenue"] == 235.0
        assert report["by_revenue"][0]["revenue_share"] == 82.46
        assert report["by_revenue"][0]["quantity_share"] == 66.67
        assert report["totals"]["revenue"] == 285.0
        assert report["limit"] == 5

        limited = reports.get_top_products(tenant_id, "7d", limit=1)
        assert len(limited["by_revenue"]) == 1
        assert len(limited["by_quantity"]) == 1

    def test_top_products_ranks_by_quantity_and_by_revenue(self, seeded, reports, tenant_id):
        report = reports.get_top_products(tenant_id, "30d", limit=1)

        assert [item["name"] for item in report["by_quantity"]] == ["Pan"]
        assert [item["name"] for item in report["by_revenue"]] == ["Café"]
        assert report["by_quantity"][0]["quantity"] == 3.0
        assert report["by_quantity"][0]["quantity_share"] == 60.0
        assert report["by_revenue"][0]["revenue_share"] == 61.04
        assert report["totals"] == {"products": 2, "quantity": 5.0, "revenue": 385.0}

    def test_hourly(self, seeded, reports, tenant_id):
        report = reports.get_hourly_movement(tenant_id, "7d")

        hours = report["hours"]
        assert len(hours) == 24
        assert hours[14]["orders"] == 1 and hours[14]["revenue"] == 235.0
        assert hours[9]["orders"] == 1 and hours[9]["revenue"] == 50.0
        assert hours[9]["label"] == "09:00"
        assert report["highlights"]["busiest_hour"]["hour"] == 9

    def test_daily(self, seeded, reports, tenant_id):
        report = reports.get_daily_movement(tenant_id, "7d")

        days = report["days"]
        assert len(days) == 7
        assert days[0]["date"] == "2026-03-04"
        assert days[-1] == {"date": "2026-03-10", "revenue": 235.0, "orders": 1}
        assert report["highlights"]["best_day"]["date"] == "2026-03-10"

    def test_empty_period(self, reports, tenant_id):
        report = reports.get_overview(tenant_id)

        assert report["range"]["preset"] == "30d"
        assert report["totals"]["orders"] == 0
        assert report["variations"]["revenue"] is None
        assert report["highlights"]["best_day"] is None
        assert reports.get_hourly_movement(tenant_id)["highlights"]["busiest_hour"] is None


# ===== TESTS DE API =====

class TestPOSAPI:
    """Tests para los endpoints del POS"""

    @pytest.fixture
    def client(self):
        with TestClient(app) as test_client:
            yield test_client
        app.dependency_overrides.clear()

    def test_full_sale_flow(self, client, auth_headers, make_product):
        product = make_product(name="Café molido 500g", price="120")

        response = client.post("/api/v1/pos/sales", json={"customer_name": "Ana"}, headers=auth_headers)
        assert response.status_code == 201
        sale = response.json()
        assert sale["status"] == "open"
        assert sale["customer_name"] == "Ana"
        assert len(sale["access_key"]) == 44

        response = client.post(
            f"/api/v1/pos/sales/{sale['id']}/items",
            json={"product_id": str(product.id), "quantity": "2", "unit_price": "120",
                  "discount_value": "10", "tax_value": "5"},
            headers=auth_headers
        )
        assert response.status_code == 201
        assert Decimal(response.json()["total_net"]) == Decimal("235.00")

        response = client.post(
            f"/api/v1/pos/sales/{sale['id']}/payments",
            json={"method": "CASH", "amount": "240,00"},
            headers=auth_headers
        )
        assert response.status_code == 201
        assert Decimal(response.json()["total_paid"]) == Decimal("240.00")
        assert response.json()["status"] == "pending_payment"

        response = client.post(f"/api/v1/pos/sales/{sale['id']}/finalize", headers=auth_headers)
        assert response.status_code == 200
        body = response.json()
        assert body["sale"]["status"] == "completed"
        assert Decimal(body["sale"]["change_due"]) == Decimal("5.00")
        assert body["sale"]["receipt_number"].startswith("RC-")

        receipt = body["receipt"]
        content = base64.b64decode(receipt["content_b64"])
        assert content.startswith(b"%PDF")
        assert receipt["mime_type"] == "application/pdf"
        assert receipt["size_bytes"] == len(content)
        assert receipt["file_name"] == f"recibo-{sale['access_key']}.pdf"

        response = client.get(f"/api/v1/pos/sales/{sale['id']}/receipt", headers=auth_headers)
        assert response.status_code == 200
        assert response.headers["content-type"] == "application/pdf"
        assert response.content == content
        assert f"recibo-{sale['access_key']}.pdf" in response.headers["content-disposition"]

        response = client.post(f"/api/v1/pos/sales/{sale['id']}/finalize", headers=auth_headers)
        assert response.status_code == 409

    def test_finalize_without_payment(self, client, auth_headers, make_product):
        product = make_product(price="10")
        sale_id = client.post("/api/v1/pos/sales", json={}, headers=auth_headers).json()["id"]
        client.post(f"/api/v1/pos/sales/{sale_id}/items",
                    json={"product_id": str(product.id), "quantity": 1}, headers=auth_headers)

        response = client.post(f"/api/v1/pos/sales/{sale_id}/finalize", headers=auth_headers)

        assert response.status_code == 409
        detail = response.json()["detail"]
        assert Decimal(detail["total_net"]) == Decimal("10.00")
        assert Decimal(detail["missing"]) == Decimal("10.00")

    def test_validation_errors(self, client, auth_headers, make_product):
        product = make_product()
        sale_id = client.post("/api/v1/pos/sales", json={}, headers=auth_headers).json()["id"]

        response = client.post(f"/api/v1/pos/sales/{sale_id}/items",
                               json={"product_id": str(product.id), "quantity": "0"}, headers=auth_headers)
        assert response.status_code == 422
        assert response.json()["detail"]["field"] == "quantity"

        response = client.post(f"/api/v1/pos/sales/{sale_id}/payments",
                               json={"method": "bitcoin", "amount": "10"}, headers=auth_headers)
        assert response.status_code == 422

        response = client.post("/api/v1/pos/sales", json={"customer_email": "no-es-correo"}, headers=auth_headers)
        assert response.status_code == 422

    def test_out_of_range_amounts_are_rejected(self, client, auth_headers, make_product):
        product = make_product()
        sale_id = client.post("/api/v1/pos/sales", json={}, headers=auth_headers).json()["id"]

        response = client.post(f"/api/v1/pos/sales/{sale_id}/payments",
                               json={"method": "cash", "amount": "1e30"}, headers=auth_headers)
        assert response.status_code == 422
        assert response.json()["detail"]["field"] == "amount"

        response = client.post(f"/api/v1/pos/sales/{sale_id}/payments",
                               json={"method": "cash", "amount": "10000000000000"}, headers=auth_headers)
        assert response.status_code == 422

        response = client.post(f"/api/v1/pos/sales/{sale_id}/items",
                               json={"product_id": str(product.id), "quantity": "1e27"}, headers=auth_headers)
        assert response.status_code == 422
        assert response.json()["detail"]["field"] == "quantity"

        sale = client.get(f"/api/v1/pos/sales/{sale_id}", headers=auth_headers).json()
        assert sale["items"] == [] and sale["payments"] == []

    def test_not_found(self, client, auth_headers, make_token, operator_id):
        response = client.get(f"/api/v1/pos/sales/{uuid4()}", headers=auth_headers)
        assert response.status_code == 404

        sale_id = client.post("/api/v1/pos/sales", json={}, headers=auth_headers).json()["id"]
        other_tenant = {"Authorization": f"Bearer {make_token(operator_id, uuid4())}"}
        assert client.get(f"/api/v1/pos/sales/{sale_id}", headers=other_tenant).status_code == 404

        response = client.post(f"/api/v1/pos/sales/{sale_id}/items",
                               json={"product_id": str(uuid4()), "quantity": 1}, headers=auth_headers)
        assert response.status_code == 404

    def test_cancel_and_receipt_of_cancelled_sale(self, client, auth_headers):
        sale_id = client.post("/api/v1/pos/sales", json={}, headers=auth_headers).json()["id"]

        response = client.post(f"/api/v1/pos/sales/{sale_id}/cancel",
                               json={"reason": "cliente desistió"}, headers=auth_headers)
        assert response.status_code == 200
        assert response.json()["status"] == "cancelled"
        assert response.json()["cancellation_reason"] == "cliente desistió"

        assert client.get(f"/api/v1/pos/sales/{sale_id}/receipt", headers=auth_headers).status_code == 409
        assert client.post(f"/api/v1/pos/sales/{sale_id}/cancel", headers=auth_headers).status_code == 409

    def test_authentication_and_roles(self, client, make_token, operator_id, tenant_id):
        assert client.post("/api/v1/pos/sales", json={}).status_code in (401, 403)

        bad_token = {"Authorization": "Bearer not-a-jwt"}
        assert client.post("/api/v1/pos/sales", json={}, headers=bad_token).status_code == 401

        viewer = {"Authorization": f"Bearer {make_token(operator_id, tenant_id, role='viewer')}"}
        assert client.post("/api/v1/pos/sales", json={}, headers=viewer).status_code == 403

        no_tenant = {"Authorization": f"Bearer {make_token(operator_id, role='seller', token_type='access')}"}
        assert client.post("/api/v1/pos/sales", json={}, headers=no_tenant).status_code == 400

        header_tenant = {**no_tenant, "X-Company-ID": str(tenant_id)}
        response = client.post("/api/v1/pos/sales", json={}, headers=header_tenant)
        assert response.status_code == 201
        assert response.json()["tenant_id"] == str(tenant_id)
        assert response.headers["X-Tenant-ID"] == str(tenant_id)

        bad_header = {**no_tenant, "X-Company-ID": "not-a-uuid"}
        assert client.post("/api/v1/pos/sales", json={}, headers=bad_header).status_code == 400

    def test_persistence_unavailable(self, client, auth_headers, products, clock):
        def failing_uow():
            raise TransientPersistenceError("lock timeout")

        app.dependency_overrides[get_sale_service] = lambda: SaleService(
            failing_uow, products, clock=clock, max_attempts=2
        )

        response = client.post("/api/v1/pos/sales", json={}, headers=auth_headers)
        assert response.status_code == 503

    def test_product_search(self, client, auth_headers, make_product):
        make_product(name="Arroz Diana 1kg", sku="ARR-001", price="4200")
        make_product(name="Azúcar 1kg", sku="AZU-001")

        response = client.get("/api/v1/pos/products", params={"q": "arr"}, headers=auth_headers)

        assert response.status_code == 200
        products = response.json()["products"]
        assert [p["name"] for p in products] == ["Arroz Diana 1kg"]
        assert Decimal(products[0]["unit_price"]) == Decimal("4200")

        assert client.get("/api/v1/pos/products", params={"limit": 0}, headers=auth_headers).status_code == 422

    def test_reports_endpoints(self, client, auth_headers):
        for path in ("overview", "top-products", "hourly", "daily"):
            response = client.get(f"/api/v1/pos/reports/{path}", params={"range": "14d"}, headers=auth_headers)
            assert response.status_code == 200
            assert response.json()["range"]["preset"] == "14d"

    def test_health(self, client):
        assert client.get("/health").json()["status"] == "healthy"

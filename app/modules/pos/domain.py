"""
Agregado de venta del POS.

Sale, SaleItem y SalePayment son valores inmutables: cada mutación
devuelve una nueva instancia con los totales recalculados. Aquí viven las
reglas de transición de estado y el cálculo de totales; la persistencia y
los bloqueos quedan en repository.py.
"""

from dataclasses import dataclass, field, replace
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Optional, Tuple
from uuid import UUID, uuid4
import logging
import re

from app.modules.pos.errors import (
    InsufficientPaymentError,
    InvalidStateError,
    ValidationError,
)
from app.modules.pos.money import (
    CENT,
    MAX_MONEY,
    MAX_QUANTITY,
    MAX_UNIT_PRICE,
    QUANTITY_STEP,
    UNIT_PRICE_STEP,
    ZERO,
    quantize,
    round_money,
    sum_money,
    to_decimal,
)
from app.modules.products.service import ProductSnapshot

logger = logging.getLogger(__name__)

CUSTOMER_NAME_MAX = 160
CUSTOMER_TAX_ID_MAX = 32
CUSTOMER_EMAIL_MAX = 160
NOTES_MAX = 500
TRANSACTION_REFERENCE_MAX = 120
CANCELLATION_REASON_MAX = 500

EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")


class SaleStatus(str, Enum):
    OPEN = "open"
    PENDING_PAYMENT = "pending_payment"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


MUTABLE_STATUSES = frozenset({SaleStatus.OPEN, SaleStatus.PENDING_PAYMENT})


class PaymentMethod(str, Enum):
    CASH = "cash"
    DEBIT = "debit"
    CREDIT = "credit"
    PIX = "pix"
    VOUCHER = "voucher"
    TRANSFER = "transfer"
    OTHER = "other"

    @property
    def label(self) -> str:
        return PAYMENT_METHOD_LABELS[self]

    @classmethod
    def parse(cls, value: Any) -> "PaymentMethod":
        if isinstance(value, cls):
            return value
        normalized = str(value or "").strip().lower()
        try:
            return cls(normalized)
        except ValueError:
            raise ValidationError(
                f"Método de pago no soportado: {value!r}", field="method"
            )


PAYMENT_METHOD_LABELS = {
    PaymentMethod.CASH: "Efectivo",
    PaymentMethod.DEBIT: "Tarjeta débito",
    PaymentMethod.CREDIT: "Tarjeta crédito",
    PaymentMethod.PIX: "PIX",
    PaymentMethod.VOUCHER: "Vale",
    PaymentMethod.TRANSFER: "Transferencia",
    PaymentMethod.OTHER: "Otro",
}


def _clean_text(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    cleaned = str(value).strip()
    return cleaned or None


def _check_length(value: Optional[str], limit: int, field_name: str, label: str) -> None:
    if value is not None and len(value) > limit:
        raise ValidationError(
            f"{label} debe tener como máximo {limit} caracteres", field=field_name
        )


@dataclass(frozen=True, slots=True)
class CustomerInfo:
    """Datos opcionales del cliente informados al abrir la venta"""

    name: Optional[str] = None
    tax_id: Optional[str] = None
    email: Optional[str] = None
    notes: Optional[str] = None

    def validate(self) -> "CustomerInfo":
        """Normalizar (trim, vacío -> None) y validar longitudes y e-mail."""
        name = _clean_text(self.name)
        tax_id = _clean_text(self.tax_id)
        email = _clean_text(self.email)
        notes = _clean_text(self.notes)

        _check_length(name, CUSTOMER_NAME_MAX, "customer_name", "El nombre del cliente")
        _check_length(tax_id, CUSTOMER_TAX_ID_MAX, "customer_tax_id", "El documento del cliente")
        _check_length(email, CUSTOMER_EMAIL_MAX, "customer_email", "El e-mail del cliente")
        _check_length(notes, NOTES_MAX, "notes", "Las observaciones")

        if email is not None and not EMAIL_PATTERN.match(email):
            raise ValidationError("E-mail del cliente inválido", field="customer_email")

        return CustomerInfo(name=name, tax_id=tax_id, email=email, notes=notes)


def _parse_amount(value: Any, field_name: str, step: Decimal = CENT) -> Decimal:
    """Convertir y redondear una entrada numérica; ValidationError si no es válida."""
    try:
        return quantize(to_decimal(value), step)
    except ValueError:
        raise ValidationError(f"Valor inválido para {field_name}", field=field_name)


def _check_upper_bound(value: Decimal, limit: Decimal, field_name: str) -> None:
    if value > limit:
        raise ValidationError(
            f"{field_name} excede el máximo permitido ({limit})", field=field_name
        )


def _non_negative_money(value: Any, field_name: str) -> Decimal:
    if value is None:
        return ZERO
    amount = _parse_amount(value, field_name)
    if amount < 0:
        raise ValidationError(f"{field_name} no puede ser negativo", field=field_name)
    _check_upper_bound(amount, MAX_MONEY, field_name)
    return amount


def normalize_item_inputs(
    quantity: Any,
    unit_price: Any = None,
    discount_value: Any = None,
    tax_value: Any = None,
) -> Tuple[Decimal, Optional[Decimal], Decimal, Decimal]:
    """
    Validar y redondear las entradas de una línea.

    Cantidad a 3 decimales, precio a 4 y montos a 2 (half-up), acotados
    por la precisión de sus columnas. El precio queda en None cuando no
    se informa, para usar el del catálogo.
    """
    qty = _parse_amount(quantity, "quantity", QUANTITY_STEP)
    if qty <= 0:
        raise ValidationError("La cantidad debe ser mayor que cero", field="quantity")
    _check_upper_bound(qty, MAX_QUANTITY, "quantity")

    price = None
    if unit_price is not None:
        price = _parse_amount(unit_price, "unit_price", UNIT_PRICE_STEP)
        if price < 0:
            raise ValidationError("unit_price no puede ser negativo", field="unit_price")
        _check_upper_bound(price, MAX_UNIT_PRICE, "unit_price")

    discount = _non_negative_money(discount_value, "discount_value")
    tax = _non_negative_money(tax_value, "tax_value")
    return qty, price, discount, tax


def normalize_payment_inputs(
    method: Any,
    amount: Any,
    transaction_reference: Optional[str] = None,
) -> Tuple["PaymentMethod", Decimal, Optional[str]]:
    """Validar método, monto (> 0, a centavos) y referencia de un pago."""
    parsed_method = PaymentMethod.parse(method)
    value = _parse_amount(amount, "amount")
    if value <= 0:
        raise ValidationError("El monto del pago debe ser mayor que cero", field="amount")
    _check_upper_bound(value, MAX_MONEY, "amount")

    reference = _clean_text(transaction_reference)
    _check_length(
        reference,
        TRANSACTION_REFERENCE_MAX,
        "transaction_reference",
        "La referencia de la transacción",
    )
    return parsed_method, value, reference


@dataclass(frozen=True, slots=True)
class SaleItem:
    id: UUID
    sale_id: UUID
    line_number: int
    product_id: UUID
    product_name: str
    sku: Optional[str]
    unit_label: str
    quantity: Decimal
    unit_price: Decimal
    discount_value: Decimal
    tax_value: Decimal
    gross_total: Decimal
    net_total: Decimal
    created_at: datetime

    @classmethod
    def create(
        cls,
        sale_id: UUID,
        line_number: int,
        product: ProductSnapshot,
        quantity: Any,
        created_at: datetime,
        unit_price: Any = None,
        discount_value: Any = None,
        tax_value: Any = None,
    ) -> "SaleItem":
        """
        Construir una línea a partir del snapshot del producto.

        El precio unitario por defecto es el del catálogo. Si el descuento
        supera bruto + impuesto, el descuento efectivo se recorta para que
        el neto quede en cero y se registra una advertencia.
        """
        qty, price, discount, tax = normalize_item_inputs(
            quantity, unit_price, discount_value, tax_value
        )
        if price is None:
            price = quantize(product.unit_price, UNIT_PRICE_STEP)

        gross = round_money(qty * price)
        _check_upper_bound(gross, MAX_MONEY, "quantity")
        net = gross - discount + tax
        if net < 0:
            logger.warning(
                f"Discount {discount} exceeds gross {gross} + tax {tax} on sale {sale_id}; "
                f"clamping net total to zero"
            )
            discount = gross + tax
            net = ZERO
        _check_upper_bound(net, MAX_MONEY, "tax_value")

        return cls(
            id=uuid4(),
            sale_id=sale_id,
            line_number=line_number,
            product_id=product.id,
            product_name=product.name,
            sku=product.sku,
            unit_label=product.unit_label,
            quantity=qty,
            unit_price=price,
            discount_value=discount,
            tax_value=tax,
            gross_total=gross,
            net_total=round_money(net),
            created_at=created_at,
        )


@dataclass(frozen=True, slots=True)
class SalePayment:
    id: UUID
    sale_id: UUID
    sequence: int
    method: PaymentMethod
    amount: Decimal
    transaction_reference: Optional[str]
    paid_at: datetime

    @classmethod
    def create(
        cls,
        sale_id: UUID,
        sequence: int,
        method: Any,
        amount: Any,
        paid_at: datetime,
        transaction_reference: Optional[str] = None,
    ) -> "SalePayment":
        parsed_method, value, reference = normalize_payment_inputs(
            method, amount, transaction_reference
        )

        return cls(
            id=uuid4(),
            sale_id=sale_id,
            sequence=sequence,
            method=parsed_method,
            amount=value,
            transaction_reference=reference,
            paid_at=paid_at,
        )


@dataclass(frozen=True, slots=True)
class Sale:
    id: UUID
    tenant_id: UUID
    operator_id: UUID
    status: SaleStatus
    access_key: str
    opened_at: datetime
    customer_name: Optional[str] = None
    customer_tax_id: Optional[str] = None
    customer_email: Optional[str] = None
    notes: Optional[str] = None
    total_gross: Decimal = ZERO
    total_discount: Decimal = ZERO
    total_tax: Decimal = ZERO
    total_net: Decimal = ZERO
    total_paid: Decimal = ZERO
    change_due: Decimal = ZERO
    closed_at: Optional[datetime] = None
    receipt_number: Optional[str] = None
    qr_code_data: Optional[str] = None
    cancellation_reason: Optional[str] = None
    items: Tuple[SaleItem, ...] = field(default_factory=tuple)
    payments: Tuple[SalePayment, ...] = field(default_factory=tuple)

    @property
    def is_mutable(self) -> bool:
        return self.status in MUTABLE_STATUSES

    @property
    def balance_due(self) -> Decimal:
        """Saldo pendiente; nunca negativo"""
        return max(ZERO, round_money(self.total_net - self.total_paid))

    @property
    def next_line_number(self) -> int:
        return len(self.items) + 1

    @property
    def next_payment_sequence(self) -> int:
        return len(self.payments) + 1

    def ensure_mutable(self, operation: str) -> None:
        if not self.is_mutable:
            raise InvalidStateError(
                f"No se puede {operation}: la venta está en estado '{self.status.value}'"
            )

    def with_item(self, item: SaleItem) -> "Sale":
        self.ensure_mutable("agregar ítems")
        items = self.items + (item,)
        totals = compute_item_totals(items)
        if max(totals.values()) > MAX_MONEY:
            raise ValidationError(
                f"El total de la venta excedería el máximo permitido ({MAX_MONEY})",
                field="quantity",
            )
        return replace(self, items=items, **totals)

    def with_payment(self, payment: SalePayment) -> "Sale":
        self.ensure_mutable("registrar pagos")
        payments = self.payments + (payment,)
        total_paid = sum_money(p.amount for p in payments)
        if total_paid > MAX_MONEY:
            raise ValidationError(
                f"El total pagado excedería el máximo permitido ({MAX_MONEY})",
                field="amount",
            )
        status = self.status
        if status == SaleStatus.OPEN and total_paid > 0:
            status = SaleStatus.PENDING_PAYMENT
        return replace(self, payments=payments, total_paid=total_paid, status=status)

    def finalize(self, now: datetime) -> "Sale":
        """Cerrar la venta; el vuelto queda fijado y closed_at se asigna una sola vez."""
        self.ensure_mutable("finalizar la venta")
        if self.total_paid < self.total_net:
            raise InsufficientPaymentError(self.id, self.total_net, self.total_paid)

        return replace(
            self,
            status=SaleStatus.COMPLETED,
            change_due=max(ZERO, round_money(self.total_paid - self.total_net)),
            closed_at=now,
            receipt_number=build_receipt_number(self.id, now),
            qr_code_data=self.access_key,
        )

    def cancel(self, now: datetime, reason: Optional[str] = None) -> "Sale":
        self.ensure_mutable("cancelar la venta")
        cleaned = _clean_text(reason)
        _check_length(cleaned, CANCELLATION_REASON_MAX, "reason", "El motivo de cancelación")
        return replace(
            self,
            status=SaleStatus.CANCELLED,
            closed_at=now,
            cancellation_reason=cleaned,
        )


def compute_item_totals(items: Tuple[SaleItem, ...]) -> dict:
    """Totales del encabezado a partir de las líneas."""
    return {
        "total_gross": sum_money(i.gross_total for i in items),
        "total_discount": sum_money(i.discount_value for i in items),
        "total_tax": sum_money(i.tax_value for i in items),
        "total_net": sum_money(i.net_total for i in items),
    }


def generate_access_key(now: datetime) -> str:
    """
    Clave de acceso de 44 caracteres en mayúsculas: 32 hex aleatorios
    seguidos del timestamp en milisegundos (12 hex).
    """
    millis = int(now.timestamp() * 1000)
    return f"{uuid4().hex.upper()}{millis:012X}"


def build_receipt_number(sale_id: UUID, closed_at: datetime) -> str:
    return f"RC-{closed_at:%Y%m%d}-{sale_id.hex[:8].upper()}"


def open_sale(
    operator_id: UUID,
    tenant_id: UUID,
    now: datetime,
    customer: Optional[CustomerInfo] = None,
) -> Sale:
    """Nueva venta en estado open con totales en cero."""
    info = (customer or CustomerInfo()).validate()
    return Sale(
        id=uuid4(),
        tenant_id=tenant_id,
        operator_id=operator_id,
        status=SaleStatus.OPEN,
        access_key=generate_access_key(now),
        opened_at=now,
        customer_name=info.name,
        customer_tax_id=info.tax_id,
        customer_email=info.email,
        notes=info.notes,
    )

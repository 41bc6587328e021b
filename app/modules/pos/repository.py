"""
Persistencia del agregado de venta.

Cada operación del servicio corre dentro de una unidad de trabajo que:
1. Lee la venta con SELECT ... FOR UPDATE
2. Valida contra ese estado
3. Escribe las nuevas filas y el encabezado recalculado
4. Hace commit

Las filas SQLAlchemy nunca salen de este módulo: se mapean a los valores
inmutables de domain.py.
"""

import abc
import logging
import threading
from contextlib import contextmanager
from datetime import datetime, timezone
from decimal import Decimal
from typing import Callable, Dict, List, Optional
from uuid import UUID

from sqlalchemy import text
from sqlalchemy.exc import DBAPIError
from sqlalchemy.orm import Session, selectinload

from app.core.config import settings
from app.database.database import SessionLocal
from app.modules.pos.domain import (
    PaymentMethod,
    Sale,
    SaleItem,
    SalePayment,
    SaleStatus,
)
from app.modules.pos.errors import TransientPersistenceError
from app.modules.pos.models import PosSale, PosSaleItem, PosSalePayment
from app.modules.pos.money import QUANTITY_STEP, UNIT_PRICE_STEP, quantize, round_money

logger = logging.getLogger(__name__)

# deadlock_detected, serialization_failure, lock_not_available
TRANSIENT_SQLSTATES = frozenset({"40P01", "40001", "55P03"})


def is_transient_error(exc: DBAPIError) -> bool:
    """True si el error de la base de datos se resuelve reintentando la transacción."""
    orig = getattr(exc, "orig", None)
    code = getattr(orig, "pgcode", None) or getattr(orig, "sqlstate", None)
    if code in TRANSIENT_SQLSTATES:
        return True
    # SQLite no expone SQLSTATE
    return "database is locked" in str(orig or exc).lower()


@contextmanager
def translate_persistence_errors():
    try:
        yield
    except DBAPIError as e:
        if is_transient_error(e):
            raise TransientPersistenceError(f"Transient database error: {e.orig}") from e
        raise


# ===== MAPEO FILA -> DOMINIO =====

def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    # SQLite devuelve datetimes naive
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _money(value) -> Decimal:
    return round_money(value if value is not None else 0)


def _row_to_item(row: PosSaleItem) -> SaleItem:
    return SaleItem(
        id=row.id,
        sale_id=row.sale_id,
        line_number=row.line_number,
        product_id=row.product_id,
        product_name=row.product_name,
        sku=row.sku,
        unit_label=row.unit_label,
        quantity=quantize(Decimal(str(row.quantity)), QUANTITY_STEP),
        unit_price=quantize(Decimal(str(row.unit_price)), UNIT_PRICE_STEP),
        discount_value=_money(row.discount_value),
        tax_value=_money(row.tax_value),
        gross_total=_money(row.gross_total),
        net_total=_money(row.net_total),
        created_at=_as_utc(row.created_at),
    )


def _row_to_payment(row: PosSalePayment) -> SalePayment:
    return SalePayment(
        id=row.id,
        sale_id=row.sale_id,
        sequence=row.sequence,
        method=PaymentMethod(row.method),
        amount=_money(row.amount),
        transaction_reference=row.transaction_reference,
        paid_at=_as_utc(row.paid_at),
    )


def _row_to_sale(row: PosSale) -> Sale:
    return Sale(
        id=row.id,
        tenant_id=row.tenant_id,
        operator_id=row.operator_id,
        status=SaleStatus(row.status),
        access_key=row.access_key,
        opened_at=_as_utc(row.opened_at),
        customer_name=row.customer_name,
        customer_tax_id=row.customer_tax_id,
        customer_email=row.customer_email,
        notes=row.notes,
        total_gross=_money(row.total_gross),
        total_discount=_money(row.total_discount),
        total_tax=_money(row.total_tax),
        total_net=_money(row.total_net),
        total_paid=_money(row.total_paid),
        change_due=_money(row.change_due),
        closed_at=_as_utc(row.closed_at),
        receipt_number=row.receipt_number,
        qr_code_data=row.qr_code_data,
        cancellation_reason=row.cancellation_reason,
        items=tuple(_row_to_item(i) for i in sorted(row.items, key=lambda i: i.line_number)),
        payments=tuple(_row_to_payment(p) for p in sorted(row.payments, key=lambda p: p.sequence)),
    )


def _header_values(sale: Sale) -> dict:
    return {
        "status": sale.status,
        "customer_name": sale.customer_name,
        "customer_tax_id": sale.customer_tax_id,
        "customer_email": sale.customer_email,
        "notes": sale.notes,
        "total_gross": sale.total_gross,
        "total_discount": sale.total_discount,
        "total_tax": sale.total_tax,
        "total_net": sale.total_net,
        "total_paid": sale.total_paid,
        "change_due": sale.change_due,
        "receipt_number": sale.receipt_number,
        "qr_code_data": sale.qr_code_data,
        "cancellation_reason": sale.cancellation_reason,
        "closed_at": sale.closed_at,
    }


def _item_to_row(sale: Sale, item: SaleItem) -> PosSaleItem:
    return PosSaleItem(
        id=item.id,
        tenant_id=sale.tenant_id,
        sale_id=sale.id,
        line_number=item.line_number,
        product_id=item.product_id,
        product_name=item.product_name,
        sku=item.sku,
        unit_label=item.unit_label,
        quantity=item.quantity,
        unit_price=item.unit_price,
        discount_value=item.discount_value,
        tax_value=item.tax_value,
        gross_total=item.gross_total,
        net_total=item.net_total,
        created_at=item.created_at,
    )


def _payment_to_row(sale: Sale, payment: SalePayment) -> PosSalePayment:
    return PosSalePayment(
        id=payment.id,
        tenant_id=sale.tenant_id,
        sale_id=sale.id,
        sequence=payment.sequence,
        method=payment.method,
        amount=payment.amount,
        transaction_reference=payment.transaction_reference,
        paid_at=payment.paid_at,
    )


# ===== ABSTRACCIONES =====

class AbstractSaleRepository(abc.ABC):

    @abc.abstractmethod
    def add(self, sale: Sale) -> None:
        raise NotImplementedError

    @abc.abstractmethod
    def get(self, sale_id: UUID, tenant_id: UUID, for_update: bool = False) -> Optional[Sale]:
        """None si la venta no existe o pertenece a otro tenant."""
        raise NotImplementedError

    @abc.abstractmethod
    def save(self, sale: Sale) -> None:
        """Persistir encabezado y las líneas/pagos que aún no existen."""
        raise NotImplementedError


class AbstractUnitOfWork(abc.ABC):
    sales: AbstractSaleRepository

    def __enter__(self) -> "AbstractUnitOfWork":
        return self

    def __exit__(self, exc_type, exc, tb):
        self.rollback()

    @abc.abstractmethod
    def commit(self) -> None:
        raise NotImplementedError

    @abc.abstractmethod
    def rollback(self) -> None:
        raise NotImplementedError


# ===== SQLALCHEMY =====

class SqlAlchemySaleRepository(AbstractSaleRepository):

    def __init__(self, session: Session):
        self.session = session
        self._rows: Dict[UUID, PosSale] = {}

    def add(self, sale: Sale) -> None:
        row = PosSale(
            id=sale.id,
            tenant_id=sale.tenant_id,
            operator_id=sale.operator_id,
            access_key=sale.access_key,
            opened_at=sale.opened_at,
            **_header_values(sale)
        )
        self.session.add(row)
        self._rows[sale.id] = row

    def get(self, sale_id: UUID, tenant_id: UUID, for_update: bool = False) -> Optional[Sale]:
        query = self.session.query(PosSale).options(
            selectinload(PosSale.items),
            selectinload(PosSale.payments)
        ).filter(
            PosSale.id == sale_id,
            PosSale.tenant_id == tenant_id
        )
        if for_update:
            query = query.with_for_update()

        with translate_persistence_errors():
            row = query.first()

        if row is None:
            return None
        self._rows[row.id] = row
        return _row_to_sale(row)

    def save(self, sale: Sale) -> None:
        row = self._rows.get(sale.id)
        if row is None:
            with translate_persistence_errors():
                row = self.session.query(PosSale).filter(
                    PosSale.id == sale.id,
                    PosSale.tenant_id == sale.tenant_id
                ).with_for_update().one()
            self._rows[sale.id] = row

        for key, value in _header_values(sale).items():
            setattr(row, key, value)

        existing_items = {i.id for i in row.items}
        for item in sale.items:
            if item.id not in existing_items:
                row.items.append(_item_to_row(sale, item))

        existing_payments = {p.id for p in row.payments}
        for payment in sale.payments:
            if payment.id not in existing_payments:
                row.payments.append(_payment_to_row(sale, payment))


class SqlAlchemyUnitOfWork(AbstractUnitOfWork):
    """Una sesión y una transacción por unidad de trabajo."""

    def __init__(self, session_factory: Optional[Callable[[], Session]] = None,
                 lock_timeout: Optional[float] = None):
        self.session_factory = session_factory or SessionLocal
        self.lock_timeout = lock_timeout or settings.POS_LOCK_TIMEOUT_SECONDS

    def __enter__(self) -> "SqlAlchemyUnitOfWork":
        self.session = self.session_factory()
        self.sales = SqlAlchemySaleRepository(self.session)
        try:
            if self.session.get_bind().dialect.name == "postgresql":
                # Falla con 55P03 en lugar de esperar indefinidamente por el bloqueo
                with translate_persistence_errors():
                    self.session.execute(
                        text(f"SET LOCAL lock_timeout = '{int(self.lock_timeout * 1000)}ms'")
                    )
        except Exception:
            # __exit__ no corre si __enter__ falla
            self.session.close()
            raise
        return self

    def __exit__(self, exc_type, exc, tb):
        try:
            super().__exit__(exc_type, exc, tb)
        finally:
            self.session.close()

    def commit(self) -> None:
        try:
            with translate_persistence_errors():
                self.session.commit()
        except Exception:
            self.session.rollback()
            raise

    def rollback(self) -> None:
        self.session.rollback()


# ===== EN MEMORIA =====

class InMemorySaleStore:
    """
    Almacén compartido entre unidades de trabajo en memoria.

    Un lock por venta simula el bloqueo de fila de FOR UPDATE.
    """

    def __init__(self, lock_timeout: Optional[float] = None):
        self.lock_timeout = lock_timeout or settings.POS_LOCK_TIMEOUT_SECONDS
        self._sales: Dict[UUID, Sale] = {}
        self._locks: Dict[UUID, threading.Lock] = {}
        self._guard = threading.Lock()

    def lock_for(self, sale_id: UUID) -> threading.Lock:
        with self._guard:
            if sale_id not in self._locks:
                self._locks[sale_id] = threading.Lock()
            return self._locks[sale_id]

    def read(self, sale_id: UUID) -> Optional[Sale]:
        with self._guard:
            return self._sales.get(sale_id)

    def write(self, sales: List[Sale]) -> None:
        with self._guard:
            for sale in sales:
                self._sales[sale.id] = sale

    def all(self) -> List[Sale]:
        with self._guard:
            return list(self._sales.values())


class InMemorySaleRepository(AbstractSaleRepository):

    def __init__(self, uow: "InMemoryUnitOfWork"):
        self.uow = uow
        self.store = uow.store

    def add(self, sale: Sale) -> None:
        self.uow.acquire(sale.id)
        self.uow.pending[sale.id] = sale

    def get(self, sale_id: UUID, tenant_id: UUID, for_update: bool = False) -> Optional[Sale]:
        if for_update:
            self.uow.acquire(sale_id)
        sale = self.uow.pending.get(sale_id) or self.store.read(sale_id)
        if sale is None or sale.tenant_id != tenant_id:
            return None
        return sale

    def save(self, sale: Sale) -> None:
        self.uow.acquire(sale.id)
        self.uow.pending[sale.id] = sale


class InMemoryUnitOfWork(AbstractUnitOfWork):

    def __init__(self, store: InMemorySaleStore):
        self.store = store
        self.pending: Dict[UUID, Sale] = {}
        self.held: Dict[UUID, threading.Lock] = {}
        self.committed = False

    def __enter__(self) -> "InMemoryUnitOfWork":
        self.pending = {}
        self.held = {}
        self.committed = False
        self.sales = InMemorySaleRepository(self)
        return self

    def __exit__(self, exc_type, exc, tb):
        try:
            super().__exit__(exc_type, exc, tb)
        finally:
            self._release()

    def acquire(self, sale_id: UUID) -> None:
        if sale_id in self.held:
            return
        lock = self.store.lock_for(sale_id)
        if not lock.acquire(timeout=self.store.lock_timeout):
            raise TransientPersistenceError(f"Lock timeout on sale {sale_id}")
        self.held[sale_id] = lock

    def commit(self) -> None:
        self.store.write(list(self.pending.values()))
        self.pending = {}
        self.committed = True

    def rollback(self) -> None:
        self.pending = {}

    def _release(self) -> None:
        for lock in self.held.values():
            lock.release()
        self.held = {}

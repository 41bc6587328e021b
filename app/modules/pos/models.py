"""
Modelos SQLAlchemy para el módulo POS (Point of Sale)

Este módulo persiste el ciclo de vida de una venta de mostrador:
- PosSale: Encabezado de la venta con totales, estado y datos del recibo
- PosSaleItem: Líneas de la venta (snapshot del producto al momento de agregar)
- PosSalePayment: Pagos parciales contra el saldo de la venta

Líneas y pagos son append-only: nunca se actualizan ni se eliminan.

Arquitectura multi-tenant: Todas las tablas incluyen tenant_id
"""

from app.database.database import Base
from sqlalchemy import Column, String, DateTime, ForeignKey, Integer, Numeric, Enum, Text, UniqueConstraint, Uuid
from sqlalchemy.orm import relationship
from uuid import uuid4
from app.common.mixins import TenantMixin, TimestampMixin
from app.modules.pos.domain import PaymentMethod, SaleStatus


def _enum_values(enum_cls):
    return [member.value for member in enum_cls]


# ===== MODELOS =====

class PosSale(Base, TenantMixin, TimestampMixin):
    """
    Venta POS

    Los totales se recalculan en cada mutación y se guardan redondeados a
    2 decimales. closed_at se asigna una única vez al completar o cancelar.
    """
    __tablename__ = "pos_sales"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid4)
    operator_id = Column(Uuid(as_uuid=True), nullable=False, index=True)
    status = Column(
        Enum(SaleStatus, name="pos_sale_status", values_callable=_enum_values),
        nullable=False,
        default=SaleStatus.OPEN,
        index=True,
    )

    # Cliente (opcional)
    customer_name = Column(String(160), nullable=True)
    customer_tax_id = Column(String(32), nullable=True)
    customer_email = Column(String(160), nullable=True)
    notes = Column(String(500), nullable=True)

    # Totales
    total_gross = Column(Numeric(14, 2), nullable=False, default=0)
    total_discount = Column(Numeric(14, 2), nullable=False, default=0)
    total_tax = Column(Numeric(14, 2), nullable=False, default=0)
    total_net = Column(Numeric(14, 2), nullable=False, default=0)
    total_paid = Column(Numeric(14, 2), nullable=False, default=0)
    change_due = Column(Numeric(14, 2), nullable=False, default=0)

    # Recibo
    access_key = Column(String(44), nullable=False, unique=True)
    receipt_number = Column(String(32), nullable=True)
    qr_code_data = Column(String(255), nullable=True)
    cancellation_reason = Column(Text, nullable=True)

    opened_at = Column(DateTime(timezone=True), nullable=False)
    closed_at = Column(DateTime(timezone=True), nullable=True, index=True)

    # Relationships
    items = relationship(
        "PosSaleItem",
        back_populates="sale",
        order_by="PosSaleItem.line_number",
        cascade="all, delete-orphan",
    )
    payments = relationship(
        "PosSalePayment",
        back_populates="sale",
        order_by="PosSalePayment.sequence",
        cascade="all, delete-orphan",
    )

    def __repr__(self):
        return f"<PosSale(id={self.id}, status={self.status}, total_net={self.total_net})>"


class PosSaleItem(Base, TenantMixin):
    """Línea de venta con snapshot de nombre, sku y unidad del producto"""
    __tablename__ = "pos_sale_items"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid4)
    sale_id = Column(Uuid(as_uuid=True), ForeignKey("pos_sales.id", ondelete="CASCADE"), nullable=False, index=True)
    line_number = Column(Integer, nullable=False)
    product_id = Column(Uuid(as_uuid=True), ForeignKey("products.id"), nullable=False, index=True)

    product_name = Column(String(160), nullable=False)
    sku = Column(String(40), nullable=True)
    unit_label = Column(String(12), nullable=False, default="un")

    quantity = Column(Numeric(14, 3), nullable=False)
    unit_price = Column(Numeric(14, 4), nullable=False)
    discount_value = Column(Numeric(14, 2), nullable=False, default=0)
    tax_value = Column(Numeric(14, 2), nullable=False, default=0)
    gross_total = Column(Numeric(14, 2), nullable=False)
    net_total = Column(Numeric(14, 2), nullable=False)

    created_at = Column(DateTime(timezone=True), nullable=False)

    # Relationships
    sale = relationship("PosSale", back_populates="items")

    __table_args__ = (
        UniqueConstraint('sale_id', 'line_number', name='uq_pos_sale_item_line'),
    )

    def __repr__(self):
        return f"<PosSaleItem(sale_id={self.sale_id}, line={self.line_number}, net={self.net_total})>"


class PosSalePayment(Base, TenantMixin):
    """Pago parcial; la suma de los pagos es el total pagado de la venta"""
    __tablename__ = "pos_sale_payments"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid4)
    sale_id = Column(Uuid(as_uuid=True), ForeignKey("pos_sales.id", ondelete="CASCADE"), nullable=False, index=True)
    sequence = Column(Integer, nullable=False)
    method = Column(
        Enum(PaymentMethod, name="pos_payment_method", values_callable=_enum_values),
        nullable=False,
        index=True,
    )
    amount = Column(Numeric(14, 2), nullable=False)
    transaction_reference = Column(String(120), nullable=True)
    paid_at = Column(DateTime(timezone=True), nullable=False)

    # Relationships
    sale = relationship("PosSale", back_populates="payments")

    __table_args__ = (
        UniqueConstraint('sale_id', 'sequence', name='uq_pos_sale_payment_sequence'),
    )

    def __repr__(self):
        return f"<PosSalePayment(sale_id={self.sale_id}, method={self.method}, amount={self.amount})>"

from app.database.database import Base
from sqlalchemy import Column, String, Boolean, Numeric, UniqueConstraint, Uuid
from uuid import uuid4
from app.common.mixins import TenantMixin, TimestampMixin


class Product(Base, TenantMixin, TimestampMixin):
    """
    Catálogo de productos (solo lectura para el POS).

    El catálogo se administra en su propio servicio; el punto de venta
    únicamente consulta nombre, SKU, unidad, precio y tarifa de impuesto.
    """
    __tablename__ = "products"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid4)
    name = Column(String(160), nullable=False)
    sku = Column(String(40), nullable=True)
    unit = Column(String(12), nullable=False, default="un")  # un, kg, lt, ...
    is_active = Column(Boolean, default=True, nullable=False)
    price_sale = Column(Numeric(12, 4), nullable=False, default=0)  # Precio de venta
    tax_rate = Column(Numeric(5, 2), nullable=False, default=0)  # Porcentaje, ej: 19.00

    __table_args__ = (
        UniqueConstraint("tenant_id", "sku", name="uq_product_tenant_sku"),
    )

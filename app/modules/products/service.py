"""
Consulta de productos para el punto de venta.

El POS nunca modifica el catálogo ni el inventario: solo toma una
fotografía (snapshot) del producto en el momento de agregarlo a la venta.
"""
from dataclasses import dataclass
from decimal import Decimal
from typing import Callable, List, Optional, Protocol
from uuid import UUID
import logging

from sqlalchemy import func, or_
from sqlalchemy.orm import Session

from app.modules.products.models import Product

logger = logging.getLogger(__name__)

DEFAULT_SEARCH_LIMIT = 10
MAX_SEARCH_LIMIT = 50


@dataclass(frozen=True, slots=True)
class ProductSnapshot:
    """Identidad y precio de un producto en un instante dado."""
    id: UUID
    name: str
    sku: Optional[str]
    unit_label: str
    unit_price: Decimal
    tax_rate: Decimal


class ProductLookup(Protocol):
    def find_product(self, product_id: UUID, tenant_id: UUID) -> Optional[ProductSnapshot]:
        ...


def _to_snapshot(product: Product) -> ProductSnapshot:
    return ProductSnapshot(
        id=product.id,
        name=product.name,
        sku=product.sku,
        unit_label=product.unit or "un",
        unit_price=Decimal(str(product.price_sale or 0)),
        tax_rate=Decimal(str(product.tax_rate or 0)),
    )


class ProductService:
    """Lectura de productos activos del tenant"""

    def __init__(self, session_factory: Callable[[], Session]):
        self.session_factory = session_factory

    def find_product(self, product_id: UUID, tenant_id: UUID) -> Optional[ProductSnapshot]:
        """Retorna None si el producto no existe, está inactivo o es de otro tenant."""
        with self.session_factory() as db:
            product = db.query(Product).filter(
                Product.id == product_id,
                Product.tenant_id == tenant_id,
                Product.is_active == True
            ).first()
            return _to_snapshot(product) if product else None

    def search_products(self, tenant_id: UUID, term: str = "",
                        limit: int = DEFAULT_SEARCH_LIMIT) -> List[ProductSnapshot]:
        """Buscar por nombre o SKU (sin distinguir mayúsculas), ordenado por nombre."""
        limit = max(1, min(limit or DEFAULT_SEARCH_LIMIT, MAX_SEARCH_LIMIT))
        term = (term or "").strip().lower()

        with self.session_factory() as db:
            query = db.query(Product).filter(
                Product.tenant_id == tenant_id,
                Product.is_active == True
            )
            if term:
                like_term = f"%{term}%"
                query = query.filter(or_(
                    func.lower(Product.name).like(like_term),
                    func.lower(Product.sku).like(like_term)
                ))
            products = query.order_by(Product.name).limit(limit).all()

        logger.debug(f"Product search '{term}' for tenant {tenant_id}: {len(products)} results")
        return [_to_snapshot(p) for p in products]

from pydantic import BaseModel, Field
from decimal import Decimal
from typing import List, Optional
from uuid import UUID


class POSProductOut(BaseModel):
    """Producto listo para agregarse en la caja"""
    id: UUID
    name: str
    sku: Optional[str] = None
    unit: str = Field(description="Unidad de medida")
    unit_price: Decimal = Field(description="Precio de venta vigente")
    tax_rate: Decimal = Field(description="Tarifa de impuesto (%)")


class POSProductList(BaseModel):
    products: List[POSProductOut]

"""
Esquemas Pydantic para el módulo POS (Point of Sale)

Define la validación de datos de entrada y salida para:
- Apertura de venta con datos opcionales del cliente
- Ítems y pagos agregados a la venta
- Cancelación
- Venta completa con totales, ítems y pagos
- Respuesta de finalización con el recibo PDF en base64

Las reglas de negocio (cantidades, montos, estados) se validan en el
dominio; aquí solo se normaliza el formato de entrada.
"""

import base64
from pydantic import BaseModel, EmailStr, Field, field_validator
from decimal import Decimal
from typing import Any, List, Optional
from uuid import UUID
from datetime import datetime

from app.modules.pos.domain import PaymentMethod, SaleStatus


def _normalize_decimal(v: Any) -> Any:
    # "1.234,50" no se soporta; solo coma como separador decimal
    if isinstance(v, str):
        return v.strip().replace(",", ".")
    return v


def _blank_to_none(v: Any) -> Any:
    if isinstance(v, str) and not v.strip():
        return None
    return v


# ===== ENTRADA =====

class SaleOpen(BaseModel):
    """Esquema para abrir una venta"""
    customer_name: Optional[str] = Field(None, max_length=160, description="Nombre del cliente")
    customer_tax_id: Optional[str] = Field(None, max_length=32, description="Documento del cliente")
    customer_email: Optional[EmailStr] = Field(None, description="E-mail del cliente")
    notes: Optional[str] = Field(None, max_length=500, description="Observaciones")

    @field_validator('customer_name', 'customer_tax_id', 'customer_email', 'notes', mode='before')
    @classmethod
    def blank_to_none(cls, v):
        return _blank_to_none(v)


class SaleItemCreate(BaseModel):
    """Esquema para agregar un ítem a la venta"""
    product_id: UUID = Field(..., description="ID del producto")
    quantity: Decimal = Field(..., description="Cantidad (hasta 3 decimales)")
    unit_price: Optional[Decimal] = Field(None, description="Precio unitario (opcional, se toma del producto)")
    discount_value: Optional[Decimal] = Field(None, description="Descuento de la línea")
    tax_value: Optional[Decimal] = Field(None, description="Impuesto de la línea")

    @field_validator('quantity', 'unit_price', 'discount_value', 'tax_value', mode='before')
    @classmethod
    def normalize_decimal(cls, v):
        return _normalize_decimal(_blank_to_none(v))


class PaymentCreate(BaseModel):
    """Esquema para registrar un pago"""
    method: PaymentMethod = Field(..., description="Método de pago")
    amount: Decimal = Field(..., description="Monto del pago")
    transaction_reference: Optional[str] = Field(None, max_length=120, description="Referencia de la transacción")

    @field_validator('method', mode='before')
    @classmethod
    def normalize_method(cls, v):
        if isinstance(v, str):
            return v.strip().lower()
        return v

    @field_validator('amount', mode='before')
    @classmethod
    def normalize_amount(cls, v):
        return _normalize_decimal(v)

    @field_validator('transaction_reference', mode='before')
    @classmethod
    def blank_to_none(cls, v):
        return _blank_to_none(v)


class SaleCancel(BaseModel):
    """Esquema para cancelar una venta"""
    reason: Optional[str] = Field(None, max_length=500, description="Motivo de la cancelación")


# ===== SALIDA =====

class SaleItemOut(BaseModel):
    """Esquema de salida para ítem de venta"""
    id: UUID = Field(description="ID del ítem")
    line_number: int = Field(description="Número de línea")
    product_id: UUID = Field(description="ID del producto")
    product_name: str = Field(description="Nombre del producto al momento de la venta")
    sku: Optional[str] = Field(None, description="SKU del producto")
    unit_label: str = Field(description="Unidad de medida")
    quantity: Decimal = Field(description="Cantidad")
    unit_price: Decimal = Field(description="Precio unitario")
    discount_value: Decimal = Field(description="Descuento")
    tax_value: Decimal = Field(description="Impuesto")
    gross_total: Decimal = Field(description="Total bruto (cantidad x precio)")
    net_total: Decimal = Field(description="Total neto")
    created_at: datetime = Field(description="Fecha de registro")

    model_config = {"from_attributes": True}


class SalePaymentOut(BaseModel):
    """Esquema de salida para pago"""
    id: UUID = Field(description="ID del pago")
    sequence: int = Field(description="Orden del pago")
    method: PaymentMethod = Field(description="Método de pago")
    amount: Decimal = Field(description="Monto")
    transaction_reference: Optional[str] = Field(None, description="Referencia de la transacción")
    paid_at: datetime = Field(description="Fecha del pago")

    model_config = {"from_attributes": True}


class SaleOut(BaseModel):
    """Esquema de salida para venta POS"""
    id: UUID = Field(description="ID único de la venta")
    tenant_id: UUID = Field(description="ID de la empresa")
    operator_id: UUID = Field(description="Usuario que abrió la venta")
    status: SaleStatus = Field(description="Estado de la venta")
    access_key: str = Field(description="Clave de acceso del comprobante")
    receipt_number: Optional[str] = Field(None, description="Número del recibo (al finalizar)")
    qr_code_data: Optional[str] = Field(None, description="Contenido del código QR (al finalizar)")

    customer_name: Optional[str] = Field(None, description="Nombre del cliente")
    customer_tax_id: Optional[str] = Field(None, description="Documento del cliente")
    customer_email: Optional[str] = Field(None, description="E-mail del cliente")
    notes: Optional[str] = Field(None, description="Observaciones")
    cancellation_reason: Optional[str] = Field(None, description="Motivo de cancelación")

    total_gross: Decimal = Field(description="Subtotal bruto")
    total_discount: Decimal = Field(description="Total de descuentos")
    total_tax: Decimal = Field(description="Total de impuestos")
    total_net: Decimal = Field(description="Total neto")
    total_paid: Decimal = Field(description="Total pagado")
    balance_due: Decimal = Field(description="Saldo pendiente")
    change_due: Decimal = Field(description="Vuelto (fijado al finalizar)")

    opened_at: datetime = Field(description="Fecha de apertura")
    closed_at: Optional[datetime] = Field(None, description="Fecha de cierre")

    items: List[SaleItemOut] = Field(default=[], description="Ítems de la venta")
    payments: List[SalePaymentOut] = Field(default=[], description="Pagos de la venta")

    model_config = {"from_attributes": True}


class ReceiptOut(BaseModel):
    """Recibo PDF embebido en la respuesta de finalización"""
    file_name: str = Field(description="Nombre del archivo")
    mime_type: str = Field(description="Tipo MIME")
    size_bytes: int = Field(description="Tamaño en bytes")
    content_b64: str = Field(description="Contenido del PDF en base64")

    @classmethod
    def from_receipt(cls, receipt: Any) -> "ReceiptOut":
        return cls(
            file_name=receipt.file_name,
            mime_type=receipt.mime_type,
            size_bytes=receipt.size_bytes,
            content_b64=base64.b64encode(receipt.content).decode("utf-8"),
        )


class SaleFinalizeOut(BaseModel):
    """Venta completada junto con su recibo"""
    sale: SaleOut
    receipt: ReceiptOut

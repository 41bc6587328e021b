"""
Módulo POS (Point of Sale)

Este módulo maneja el ciclo de vida de una venta de mostrador:

ENTIDADES PRINCIPALES:
- Sale: Venta con totales, estado y datos del recibo
- SaleItem: Líneas con snapshot del producto (nombre, sku, unidad, precio)
- SalePayment: Pagos parciales contra el saldo

FUNCIONALIDADES:
- Apertura de venta con datos opcionales del cliente
- Ítems con descuento e impuesto por línea y recálculo de totales
- Pagos múltiples (efectivo, débito, crédito, pix, vale, transferencia)
- Finalización con cálculo de vuelto y número de recibo
- Cancelación de ventas no finalizadas
- Recibo PDF con código QR, archivado opcional en MinIO
- Reportes de ventas completadas

CONCURRENCIA:
- Cada operación bloquea la fila de la venta (SELECT ... FOR UPDATE)
- Deadlocks y timeouts de bloqueo se reintentan (POS_TRANSACTION_RETRIES)

ESTADOS:
- open -> pending_payment -> completed
- open / pending_payment -> cancelled

SEGURIDAD:
- owner/admin/seller/cashier: Operación de caja y reportes
"""

from .models import PosSale, PosSaleItem, PosSalePayment

from .domain import (
    CustomerInfo, PaymentMethod, Sale, SaleItem, SalePayment, SaleStatus
)

from .errors import (
    POSError, ValidationError, NotFoundError, InvalidStateError,
    InsufficientPaymentError, TransientPersistenceError, PersistenceUnavailableError
)

from .services import SaleService

from .receipts import Receipt, ReceiptGenerator, generate_receipt

from .routers import pos_router

__all__ = [
    # Models
    "PosSale", "PosSaleItem", "PosSalePayment",

    # Domain
    "CustomerInfo", "PaymentMethod", "Sale", "SaleItem", "SalePayment", "SaleStatus",

    # Errors
    "POSError", "ValidationError", "NotFoundError", "InvalidStateError",
    "InsufficientPaymentError", "TransientPersistenceError", "PersistenceUnavailableError",

    # Services
    "SaleService", "Receipt", "ReceiptGenerator", "generate_receipt",

    # Routers
    "pos_router",
]

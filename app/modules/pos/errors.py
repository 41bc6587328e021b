"""
Errores de dominio del POS.

Conjunto cerrado de errores que la capa HTTP traduce a códigos de estado.
El núcleo del POS no conoce FastAPI.
"""

from decimal import Decimal
from typing import Optional
from uuid import UUID


class POSError(Exception):
    """Base de todos los errores del POS"""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(POSError):
    """Entrada inválida (cantidad <= 0, montos negativos, método desconocido)"""

    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(message)
        self.field = field


class NotFoundError(POSError):
    """La venta o el producto no existen para el tenant"""


class InvalidStateError(POSError):
    """Operación no permitida en el estado actual de la venta"""


class InsufficientPaymentError(POSError):
    """Intento de finalizar sin cubrir el total neto"""

    def __init__(self, sale_id: UUID, total_net: Decimal, total_paid: Decimal):
        super().__init__(
            f"Pago insuficiente para finalizar la venta: "
            f"pagado {total_paid}, total {total_net}"
        )
        self.sale_id = sale_id
        self.total_net = total_net
        self.total_paid = total_paid

    @property
    def missing(self) -> Decimal:
        return self.total_net - self.total_paid


class TransientPersistenceError(POSError):
    """Bloqueo expirado, deadlock o fallo de serialización; se puede reintentar"""


class PersistenceUnavailableError(POSError):
    """Se agotaron los reintentos de la transacción"""

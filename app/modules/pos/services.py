"""
Servicio de ventas POS

Orquesta el ciclo de vida de la venta: apertura, ítems, pagos,
finalización y cancelación. Cada operación que modifica la venta corre en
una unidad de trabajo propia que bloquea la fila, valida contra el estado
recién leído, escribe y hace commit. Ante deadlocks o timeouts de bloqueo
la transacción completa se reintenta.
"""

from datetime import datetime, timezone
from typing import Any, Callable, Optional, TypeVar
from uuid import UUID
import logging

from app.core.config import settings
from app.modules.pos import domain
from app.modules.pos.domain import CustomerInfo, Sale, SaleItem, SalePayment
from app.modules.pos.errors import (
    NotFoundError,
    POSError,
    PersistenceUnavailableError,
    TransientPersistenceError,
)
from app.modules.pos.repository import AbstractUnitOfWork
from app.modules.products.service import ProductLookup

logger = logging.getLogger(__name__)

T = TypeVar("T")


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class SaleService:
    """Operaciones sobre el agregado de venta"""

    def __init__(
        self,
        uow_factory: Callable[[], AbstractUnitOfWork],
        products: ProductLookup,
        clock: Optional[Callable[[], datetime]] = None,
        max_attempts: Optional[int] = None,
    ):
        self.uow_factory = uow_factory
        self.products = products
        self.clock = clock or utc_now
        self.max_attempts = max_attempts or settings.POS_TRANSACTION_RETRIES

    # ===== LECTURA =====

    def get_sale(self, sale_id: UUID, tenant_id: UUID) -> Sale:
        def operation(uow: AbstractUnitOfWork) -> Sale:
            sale = uow.sales.get(sale_id, tenant_id)
            if sale is None:
                raise NotFoundError(f"Venta {sale_id} no encontrada")
            return sale

        return self._run("get_sale", operation, commit=False)

    # ===== MUTACIONES =====

    def open_sale(self, operator_id: UUID, tenant_id: UUID,
                  customer: Optional[CustomerInfo] = None) -> Sale:
        """Abrir una venta vacía en estado open."""
        info = (customer or CustomerInfo()).validate()

        def operation(uow: AbstractUnitOfWork) -> Sale:
            sale = domain.open_sale(operator_id, tenant_id, self.clock(), info)
            uow.sales.add(sale)
            return sale

        sale = self._run("open_sale", operation)
        logger.info(f"Sale {sale.id} opened by operator {operator_id} for tenant {tenant_id}")
        return sale

    def add_item(
        self,
        sale_id: UUID,
        tenant_id: UUID,
        product_id: UUID,
        quantity: Any,
        unit_price: Any = None,
        discount_value: Any = None,
        tax_value: Any = None,
    ) -> Sale:
        """
        Agregar una línea a la venta.

        El producto se consulta dentro de la transacción, después de
        verificar que la venta admite cambios.
        """
        quantity, unit_price, discount_value, tax_value = domain.normalize_item_inputs(
            quantity, unit_price, discount_value, tax_value
        )

        def mutation(sale: Sale) -> Sale:
            sale.ensure_mutable("agregar ítems")
            product = self.products.find_product(product_id, tenant_id)
            if product is None:
                raise NotFoundError(f"Producto {product_id} no encontrado")

            item = SaleItem.create(
                sale_id=sale.id,
                line_number=sale.next_line_number,
                product=product,
                quantity=quantity,
                created_at=self.clock(),
                unit_price=unit_price,
                discount_value=discount_value,
                tax_value=tax_value,
            )
            return sale.with_item(item)

        sale = self._mutate("add_item", sale_id, tenant_id, mutation)
        logger.debug(f"Item added to sale {sale_id}: product {product_id}, total_net {sale.total_net}")
        return sale

    def add_payment(
        self,
        sale_id: UUID,
        tenant_id: UUID,
        method: Any,
        amount: Any,
        transaction_reference: Optional[str] = None,
    ) -> Sale:
        """Registrar un pago parcial. El sobrepago se permite y se devuelve como vuelto."""
        method, amount, transaction_reference = domain.normalize_payment_inputs(
            method, amount, transaction_reference
        )

        def mutation(sale: Sale) -> Sale:
            payment = SalePayment.create(
                sale_id=sale.id,
                sequence=sale.next_payment_sequence,
                method=method,
                amount=amount,
                paid_at=self.clock(),
                transaction_reference=transaction_reference,
            )
            return sale.with_payment(payment)

        sale = self._mutate("add_payment", sale_id, tenant_id, mutation)
        logger.debug(f"Payment added to sale {sale_id}: total_paid {sale.total_paid}")
        return sale

    def finalize_sale(self, sale_id: UUID, tenant_id: UUID) -> Sale:
        sale = self._mutate(
            "finalize_sale", sale_id, tenant_id,
            lambda current: current.finalize(self.clock())
        )
        logger.info(
            f"Sale {sale_id} completed: net {sale.total_net}, paid {sale.total_paid}, "
            f"change {sale.change_due}, receipt {sale.receipt_number}"
        )
        return sale

    def cancel_sale(self, sale_id: UUID, tenant_id: UUID, reason: Optional[str] = None) -> Sale:
        sale = self._mutate(
            "cancel_sale", sale_id, tenant_id,
            lambda current: current.cancel(self.clock(), reason)
        )
        logger.info(f"Sale {sale_id} cancelled for tenant {tenant_id}")
        return sale

    # ===== TRANSACCIONES =====

    def _mutate(self, name: str, sale_id: UUID, tenant_id: UUID,
                mutation: Callable[[Sale], Sale]) -> Sale:
        def operation(uow: AbstractUnitOfWork) -> Sale:
            sale = uow.sales.get(sale_id, tenant_id, for_update=True)
            if sale is None:
                raise NotFoundError(f"Venta {sale_id} no encontrada")
            updated = mutation(sale)
            uow.sales.save(updated)
            return updated

        return self._run(name, operation)

    def _run(self, name: str, operation: Callable[[AbstractUnitOfWork], T],
             commit: bool = True) -> T:
        last_error: Optional[TransientPersistenceError] = None

        for attempt in range(1, self.max_attempts + 1):
            try:
                with self.uow_factory() as uow:
                    result = operation(uow)
                    if commit:
                        uow.commit()
                    return result
            except TransientPersistenceError as e:
                last_error = e
                logger.warning(
                    f"Transient persistence failure in {name} "
                    f"(attempt {attempt}/{self.max_attempts}): {e}"
                )
            except POSError:
                raise
            except Exception as e:
                logger.error(f"Unexpected error in {name}: {e}")
                raise

        raise PersistenceUnavailableError(
            f"No fue posible completar {name} después de {self.max_attempts} intentos"
        ) from last_error

"""
Routers FastAPI para el módulo POS (Point of Sale)

Define los endpoints REST para:
- Sales: Apertura, ítems, pagos, finalización, cancelación y recibo PDF
- Products: Búsqueda de productos para la caja
- Reports: Visión general, productos más vendidos, movimiento por hora y por día

Todos los endpoints implementan:
- Validación de permisos por rol (owner, admin, seller, cashier)
- Filtros multi-tenant automáticos
- Traducción de errores del dominio a códigos HTTP
"""

from functools import partial
import logging
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, Response, status

from app.database.database import SessionLocal
from app.dependencies.dbDependecies import db_dependency
from app.modules.auth.dependencies import AuthDependencies
from app.modules.auth.schemas import AuthContext
from app.modules.pos.domain import CustomerInfo
from app.modules.pos.errors import (
    InsufficientPaymentError,
    InvalidStateError,
    NotFoundError,
    POSError,
    PersistenceUnavailableError,
    ValidationError,
)
from app.modules.pos.receipts import ReceiptGenerator
from app.modules.pos.reports import DEFAULT_REPORT_RANGE, POSReportsService
from app.modules.pos.repository import SqlAlchemyUnitOfWork
from app.modules.pos.schemas import (
    PaymentCreate,
    ReceiptOut,
    SaleCancel,
    SaleFinalizeOut,
    SaleItemCreate,
    SaleOpen,
    SaleOut,
)
from app.modules.pos.services import SaleService
from app.modules.pos.storage import ReceiptArchive
from app.modules.products.schemas import POSProductList, POSProductOut
from app.modules.products.service import DEFAULT_SEARCH_LIMIT, MAX_SEARCH_LIMIT, ProductService

logger = logging.getLogger(__name__)


# ===== DEPENDENCIAS =====

def get_product_service() -> ProductService:
    return ProductService(SessionLocal)


def get_sale_service(products: ProductService = Depends(get_product_service)) -> SaleService:
    return SaleService(partial(SqlAlchemyUnitOfWork, SessionLocal), products)


def get_receipt_generator() -> ReceiptGenerator:
    return ReceiptGenerator()


def get_receipt_archive() -> ReceiptArchive:
    return ReceiptArchive()


def get_reports_service(db: db_dependency) -> POSReportsService:
    return POSReportsService(db)


# ===== ERRORES =====

ERROR_STATUS_CODES = (
    (ValidationError, status.HTTP_422_UNPROCESSABLE_ENTITY),
    (NotFoundError, status.HTTP_404_NOT_FOUND),
    (InsufficientPaymentError, status.HTTP_409_CONFLICT),
    (InvalidStateError, status.HTTP_409_CONFLICT),
    (PersistenceUnavailableError, status.HTTP_503_SERVICE_UNAVAILABLE),
)


def to_http_exception(error: POSError) -> HTTPException:
    """Traducir un error del dominio a HTTPException."""
    if isinstance(error, InsufficientPaymentError):
        return HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail={
                "message": error.message,
                "total_net": str(error.total_net),
                "total_paid": str(error.total_paid),
                "missing": str(error.missing),
            }
        )

    if isinstance(error, ValidationError) and error.field:
        return HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail={"message": error.message, "field": error.field}
        )

    for error_type, status_code in ERROR_STATUS_CODES:
        if isinstance(error, error_type):
            return HTTPException(status_code=status_code, detail=error.message)

    logger.error(f"Unmapped POS error: {error}")
    return HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail="Error interno del punto de venta"
    )


# ===== SALES ROUTER =====

sales_router = APIRouter(prefix="/sales", tags=["POS"])


@sales_router.post("", response_model=SaleOut, status_code=status.HTTP_201_CREATED)
def open_sale(
    sale_data: SaleOpen,
    auth_context: AuthContext = Depends(AuthDependencies.require_pos_role()),
    service: SaleService = Depends(get_sale_service)
):
    """
    Abrir una nueva venta.

    La venta queda en estado open, con totales en cero y clave de acceso
    asignada. Los datos del cliente son opcionales.
    """
    customer = CustomerInfo(
        name=sale_data.customer_name,
        tax_id=sale_data.customer_tax_id,
        email=sale_data.customer_email,
        notes=sale_data.notes
    )
    try:
        sale = service.open_sale(auth_context.user_id, auth_context.tenant_id, customer)
        return SaleOut.model_validate(sale)
    except POSError as e:
        raise to_http_exception(e)


@sales_router.get("/{sale_id}", response_model=SaleOut)
def get_sale(
    sale_id: UUID,
    auth_context: AuthContext = Depends(AuthDependencies.require_pos_role()),
    service: SaleService = Depends(get_sale_service)
):
    """Obtener la venta con ítems y pagos."""
    try:
        return SaleOut.model_validate(service.get_sale(sale_id, auth_context.tenant_id))
    except POSError as e:
        raise to_http_exception(e)


@sales_router.post("/{sale_id}/items", response_model=SaleOut, status_code=status.HTTP_201_CREATED)
def add_item(
    sale_id: UUID,
    item_data: SaleItemCreate,
    auth_context: AuthContext = Depends(AuthDependencies.require_pos_role()),
    service: SaleService = Depends(get_sale_service)
):
    """
    Agregar un ítem a la venta.

    El precio unitario por defecto es el del catálogo; descuento e impuesto
    son montos de la línea. Retorna la venta con los totales recalculados.
    """
    try:
        sale = service.add_item(
            sale_id,
            auth_context.tenant_id,
            item_data.product_id,
            item_data.quantity,
            unit_price=item_data.unit_price,
            discount_value=item_data.discount_value,
            tax_value=item_data.tax_value
        )
        return SaleOut.model_validate(sale)
    except POSError as e:
        raise to_http_exception(e)


@sales_router.post("/{sale_id}/payments", response_model=SaleOut, status_code=status.HTTP_201_CREATED)
def add_payment(
    sale_id: UUID,
    payment_data: PaymentCreate,
    auth_context: AuthContext = Depends(AuthDependencies.require_pos_role()),
    service: SaleService = Depends(get_sale_service)
):
    """Registrar un pago parcial. Se permite pagar de más; la diferencia es el vuelto."""
    try:
        sale = service.add_payment(
            sale_id,
            auth_context.tenant_id,
            payment_data.method,
            payment_data.amount,
            transaction_reference=payment_data.transaction_reference
        )
        return SaleOut.model_validate(sale)
    except POSError as e:
        raise to_http_exception(e)


@sales_router.post("/{sale_id}/finalize", response_model=SaleFinalizeOut)
def finalize_sale(
    sale_id: UUID,
    auth_context: AuthContext = Depends(AuthDependencies.require_pos_role()),
    service: SaleService = Depends(get_sale_service),
    generator: ReceiptGenerator = Depends(get_receipt_generator),
    archive: ReceiptArchive = Depends(get_receipt_archive)
):
    """
    Finalizar la venta.

    Requiere que el total pagado cubra el total neto. Fija el vuelto, la
    fecha de cierre y el número de recibo, y devuelve la venta junto con
    el recibo PDF en base64.
    """
    try:
        sale = service.finalize_sale(sale_id, auth_context.tenant_id)
        receipt = archive.get_or_generate(sale, generator)
    except POSError as e:
        raise to_http_exception(e)

    return SaleFinalizeOut(
        sale=SaleOut.model_validate(sale),
        receipt=ReceiptOut.from_receipt(receipt),
    )


@sales_router.post("/{sale_id}/cancel", response_model=SaleOut)
def cancel_sale(
    sale_id: UUID,
    cancel_data: Optional[SaleCancel] = None,
    auth_context: AuthContext = Depends(AuthDependencies.require_pos_role()),
    service: SaleService = Depends(get_sale_service)
):
    """Cancelar una venta abierta o con pagos pendientes."""
    reason = cancel_data.reason if cancel_data else None
    try:
        return SaleOut.model_validate(service.cancel_sale(sale_id, auth_context.tenant_id, reason))
    except POSError as e:
        raise to_http_exception(e)


@sales_router.get("/{sale_id}/receipt")
def download_receipt(
    sale_id: UUID,
    auth_context: AuthContext = Depends(AuthDependencies.require_pos_role()),
    service: SaleService = Depends(get_sale_service),
    generator: ReceiptGenerator = Depends(get_receipt_generator),
    archive: ReceiptArchive = Depends(get_receipt_archive)
):
    """Descargar el recibo PDF de una venta completada."""
    try:
        sale = service.get_sale(sale_id, auth_context.tenant_id)
        receipt = archive.get_or_generate(sale, generator)
    except POSError as e:
        raise to_http_exception(e)

    return Response(
        content=receipt.content,
        media_type=receipt.mime_type,
        headers={
            "Content-Disposition": f'inline; filename="{receipt.file_name}"',
            "Content-Length": str(receipt.size_bytes)
        }
    )


# ===== PRODUCTS ROUTER =====

products_router = APIRouter(prefix="/products", tags=["POS"])


@products_router.get("", response_model=POSProductList)
def search_products(
    q: str = Query("", max_length=160, description="Nombre o SKU"),
    limit: int = Query(DEFAULT_SEARCH_LIMIT, ge=1, le=MAX_SEARCH_LIMIT, description="Límite de resultados"),
    auth_context: AuthContext = Depends(AuthDependencies.require_pos_role()),
    products: ProductService = Depends(get_product_service)
):
    """Buscar productos activos para agregar a la venta."""
    found = products.search_products(auth_context.tenant_id, q, limit)
    return POSProductList(products=[
        POSProductOut(
            id=p.id,
            name=p.name,
            sku=p.sku,
            unit=p.unit_label,
            unit_price=p.unit_price,
            tax_rate=p.tax_rate
        )
        for p in found
    ])


# ===== REPORTS ROUTER =====

reports_router = APIRouter(prefix="/reports", tags=["POS Reports"])

@reports_router.get("/overview")
def get_overview_report(
    range_preset: str = Query(DEFAULT_REPORT_RANGE, alias="range", description="Rango: 7d, 14d, 30d o 90d"),
    auth_context: AuthContext = Depends(AuthDependencies.require_pos_role()),
    reports: POSReportsService = Depends(get_reports_service)
):
    """Totales, variaciones contra el período anterior, tendencia y medios de pago."""
    return reports.get_overview(auth_context.tenant_id, range_preset)


@reports_router.get("/top-products")
def get_top_products_report(
    range_preset: str = Query(DEFAULT_REPORT_RANGE, alias="range", description="Rango: 7d, 14d, 30d o 90d"),
    limit: int = Query(10, ge=1, le=25, description="Cantidad de productos"),
    auth_context: AuthContext = Depends(AuthDependencies.require_pos_role()),
    reports: POSReportsService = Depends(get_reports_service)
):
    """Productos con mayor ingreso neto en el rango."""
    return reports.get_top_products(auth_context.tenant_id, range_preset, limit)


@reports_router.get("/hourly")
def get_hourly_report(
    range_preset: str = Query(DEFAULT_REPORT_RANGE, alias="range", description="Rango: 7d, 14d, 30d o 90d"),
    auth_context: AuthContext = Depends(AuthDependencies.require_pos_role()),
    reports: POSReportsService = Depends(get_reports_service)
):
    return reports.get_hourly_movement(auth_context.tenant_id, range_preset)


@reports_router.get("/daily")
def get_daily_report(
    range_preset: str = Query(DEFAULT_REPORT_RANGE, alias="range", description="Rango: 7d, 14d, 30d o 90d"),
    auth_context: AuthContext = Depends(AuthDependencies.require_pos_role()),
    reports: POSReportsService = Depends(get_reports_service)
):
    return reports.get_daily_movement(auth_context.tenant_id, range_preset)


# ===== ROUTER PRINCIPAL =====

pos_router = APIRouter(prefix="/pos")
pos_router.include_router(sales_router)
pos_router.include_router(products_router)
pos_router.include_router(reports_router)

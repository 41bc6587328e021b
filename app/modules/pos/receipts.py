"""
Generación del recibo PDF de una venta completada.

Transformación pura: recibe la venta ya finalizada y devuelve los bytes del
PDF. No toca la base de datos. La salida es determinista (reportlab con
invariant=1) para que la misma venta produzca siempre el mismo archivo.
"""

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from io import BytesIO
from typing import List, Optional, Sequence, Tuple
import logging

from reportlab.graphics import renderPDF
from reportlab.graphics.barcode.qr import QrCodeWidget
from reportlab.graphics.shapes import Drawing
from reportlab.lib.pagesizes import A4
from reportlab.pdfbase.pdfmetrics import stringWidth
from reportlab.pdfgen import canvas

from app.core.config import settings
from app.modules.pos.domain import Sale, SaleStatus
from app.modules.pos.errors import InvalidStateError
from app.modules.pos.money import format_money, format_quantity

logger = logging.getLogger(__name__)

PDF_MIME_TYPE = "application/pdf"
DEFAULT_CUSTOMER_NAME = "Consumidor final"

FONT = "Helvetica"
FONT_BOLD = "Helvetica-Bold"

PAGE_WIDTH, PAGE_HEIGHT = A4
MARGIN = 40
FOOTER_HEIGHT = 40
LINE_HEIGHT = 14
ROW_HEIGHT = 26
QR_SIZE = 120

# (título, ancho, alineación) de la tabla de ítems
ITEM_COLUMNS: Sequence[Tuple[str, float, str]] = (
    ("#", 22, "left"),
    ("Producto", 193, "left"),
    ("Cant.", 55, "right"),
    ("P. unit.", 65, "right"),
    ("Desc.", 55, "right"),
    ("Imp.", 55, "right"),
    ("Total", 70, "right"),
)


@dataclass(frozen=True)
class Receipt:
    mime_type: str
    content: bytes
    size_bytes: int
    file_name: str


@dataclass(frozen=True)
class ReceiptIssuer:
    """Datos del emisor impresos en el encabezado"""
    name: str
    tax_id: str
    address: str
    city: str
    state: str

    @classmethod
    def from_settings(cls, config=settings) -> "ReceiptIssuer":
        return cls(
            name=config.COMPANY_NAME,
            tax_id=config.COMPANY_TAX_ID,
            address=config.COMPANY_ADDRESS,
            city=config.COMPANY_CITY,
            state=config.COMPANY_STATE,
        )


def _format_timestamp(value: Optional[datetime]) -> str:
    if value is None:
        return "-"
    return value.strftime("%d/%m/%Y %H:%M:%S UTC")


def _fit(text: str, width: float, font: str, size: float) -> str:
    """Recortar el texto al ancho disponible."""
    if stringWidth(text, font, size) <= width:
        return text
    while text and stringWidth(text + "...", font, size) > width:
        text = text[:-1]
    return text + "..."


class _ReceiptWriter:
    """Estado de dibujo de un único recibo (canvas, cursor y página)."""

    def __init__(self, sale: Sale, issuer: ReceiptIssuer, currency_symbol: str):
        self.sale = sale
        self.issuer = issuer
        self.currency_symbol = currency_symbol
        self.buffer = BytesIO()
        self.canvas = canvas.Canvas(self.buffer, pagesize=A4, invariant=1)
        self.canvas.setTitle(f"Recibo {sale.receipt_number or sale.id}")
        self.canvas.setAuthor(issuer.name)
        self.canvas.setCreator("POS")
        self.page = 1
        self.y = PAGE_HEIGHT - MARGIN

    def money(self, value: Decimal) -> str:
        return format_money(value, self.currency_symbol)

    # ===== PRIMITIVAS =====

    def ensure_space(self, height: float) -> bool:
        """Saltar de página si no cabe el bloque. True si hubo salto."""
        if self.y - height >= MARGIN + FOOTER_HEIGHT:
            return False
        self.draw_footer()
        self.canvas.showPage()
        self.page += 1
        self.y = PAGE_HEIGHT - MARGIN
        return True

    def text(self, value: str, size: float = 9, bold: bool = False, x: float = MARGIN) -> None:
        self.ensure_space(LINE_HEIGHT)
        self.canvas.setFont(FONT_BOLD if bold else FONT, size)
        self.canvas.drawString(x, self.y, value)
        self.y -= LINE_HEIGHT

    def key_value(self, label: str, value: str) -> None:
        self.ensure_space(LINE_HEIGHT)
        self.canvas.setFont(FONT_BOLD, 9)
        self.canvas.drawString(MARGIN, self.y, f"{label}:")
        self.canvas.setFont(FONT, 9)
        self.canvas.drawString(MARGIN + 120, self.y, _fit(value, PAGE_WIDTH - 2 * MARGIN - 120, FONT, 9))
        self.y -= LINE_HEIGHT

    def section(self, title: str) -> None:
        self.ensure_space(LINE_HEIGHT * 3)
        self.y -= 6
        self.canvas.setFont(FONT_BOLD, 11)
        self.canvas.drawString(MARGIN, self.y, title)
        self.y -= 4
        self.canvas.setLineWidth(0.5)
        self.canvas.line(MARGIN, self.y, PAGE_WIDTH - MARGIN, self.y)
        self.y -= LINE_HEIGHT

    def row(self, values: List[str], columns: Sequence[Tuple[str, float, str]],
            bold: bool = False) -> None:
        x = MARGIN
        font = FONT_BOLD if bold else FONT
        self.canvas.setFont(font, 8)
        for value, (_, width, align) in zip(values, columns):
            fitted = _fit(value, width - 4, font, 8)
            if align == "right":
                self.canvas.drawRightString(x + width - 2, self.y, fitted)
            else:
                self.canvas.drawString(x + 2, self.y, fitted)
            x += width

    def draw_footer(self) -> None:
        self.canvas.setFont(FONT, 7)
        self.canvas.drawString(
            MARGIN, MARGIN,
            f"{self.issuer.name} - Comprobante de venta POS - Clave {self.sale.access_key}"
        )
        self.canvas.drawRightString(PAGE_WIDTH - MARGIN, MARGIN, f"Página {self.page}")

    # ===== BLOQUES =====

    def draw_issuer(self) -> None:
        self.text(self.issuer.name, size=14, bold=True)
        self.text(f"NIT: {self.issuer.tax_id}")
        self.text(self.issuer.address)
        self.text(f"{self.issuer.city} - {self.issuer.state}")
        self.y -= 6
        self.text("COMPROBANTE DE VENTA", size=12, bold=True)

    def draw_identification(self) -> None:
        sale = self.sale
        self.section("Venta")
        self.key_value("Venta", str(sale.id))
        self.key_value("Número del recibo", sale.receipt_number or "-")
        self.key_value("Clave de acceso", sale.access_key)
        self.key_value("Operador", str(sale.operator_id))
        self.key_value("Apertura", _format_timestamp(sale.opened_at))
        self.key_value("Cierre", _format_timestamp(sale.closed_at))

    def draw_customer(self) -> None:
        sale = self.sale
        self.section("Cliente")
        self.key_value("Nombre", sale.customer_name or DEFAULT_CUSTOMER_NAME)
        if sale.customer_tax_id:
            self.key_value("Documento", sale.customer_tax_id)
        if sale.customer_email:
            self.key_value("E-mail", sale.customer_email)
        if sale.notes:
            self.key_value("Observaciones", sale.notes)

    def draw_items_header(self) -> None:
        self.row([title for title, _, _ in ITEM_COLUMNS], ITEM_COLUMNS, bold=True)
        self.y -= 4
        self.canvas.line(MARGIN, self.y, PAGE_WIDTH - MARGIN, self.y)
        self.y -= LINE_HEIGHT

    def draw_items(self) -> None:
        self.section("Ítems")
        if not self.sale.items:
            self.text("Sin ítems")
            return

        self.draw_items_header()
        for item in self.sale.items:
            if self.ensure_space(ROW_HEIGHT):
                self.draw_items_header()
            self.row(
                [
                    str(item.line_number),
                    item.product_name,
                    f"{format_quantity(item.quantity)} {item.unit_label}",
                    self.money(item.unit_price),
                    self.money(item.discount_value),
                    self.money(item.tax_value),
                    self.money(item.net_total),
                ],
                ITEM_COLUMNS,
            )
            self.canvas.setFont(FONT, 7)
            self.canvas.drawString(MARGIN + ITEM_COLUMNS[0][1] + 2, self.y - 9, f"SKU: {item.sku or '-'}")
            self.y -= ROW_HEIGHT

    def draw_payments(self) -> None:
        self.section("Pagos")
        if not self.sale.payments:
            self.text("Sin pagos registrados")
            return
        for payment in self.sale.payments:
            label = payment.method.label
            if payment.transaction_reference:
                label = f"{label} (ref. {payment.transaction_reference})"
            self.key_value(label, self.money(payment.amount))

    def draw_summary(self) -> None:
        sale = self.sale
        self.section("Resumen")
        self.key_value("Subtotal", self.money(sale.total_gross))
        self.key_value("Descuentos", self.money(sale.total_discount))
        self.key_value("Impuestos", self.money(sale.total_tax))
        self.key_value("Total", self.money(sale.total_net))
        self.key_value("Pagado", self.money(sale.total_paid))
        self.key_value("Vuelto", self.money(sale.change_due))

    def draw_qr_code(self) -> None:
        payload = self.sale.qr_code_data or self.sale.access_key
        self.ensure_space(QR_SIZE + LINE_HEIGHT * 2)
        self.y -= 6

        widget = QrCodeWidget(payload)
        x1, y1, x2, y2 = widget.getBounds()
        width, height = x2 - x1, y2 - y1
        drawing = Drawing(QR_SIZE, QR_SIZE, transform=[QR_SIZE / width, 0, 0, QR_SIZE / height, 0, 0])
        drawing.add(widget)

        left = (PAGE_WIDTH - QR_SIZE) / 2
        renderPDF.draw(drawing, self.canvas, left, self.y - QR_SIZE)
        self.y -= QR_SIZE + 4
        self.canvas.setFont(FONT, 7)
        self.canvas.drawCentredString(PAGE_WIDTH / 2, self.y, payload)
        self.y -= LINE_HEIGHT

    def render(self) -> bytes:
        self.draw_issuer()
        self.draw_identification()
        self.draw_customer()
        self.draw_items()
        self.draw_payments()
        self.draw_summary()
        self.draw_qr_code()
        self.text("Gracias por su compra", size=9, bold=True)
        self.draw_footer()
        self.canvas.showPage()
        self.canvas.save()
        return self.buffer.getvalue()


class ReceiptGenerator:
    """Genera el recibo PDF de ventas completadas"""

    def __init__(self, issuer: Optional[ReceiptIssuer] = None,
                 currency_symbol: Optional[str] = None):
        self.issuer = issuer or ReceiptIssuer.from_settings()
        self.currency_symbol = currency_symbol or settings.POS_CURRENCY_SYMBOL

    def generate(self, sale: Sale) -> Receipt:
        if sale.status != SaleStatus.COMPLETED:
            raise InvalidStateError(
                f"Solo se genera recibo de ventas completadas (estado actual: '{sale.status.value}')"
            )

        content = _ReceiptWriter(sale, self.issuer, self.currency_symbol).render()
        logger.debug(f"Receipt generated for sale {sale.id}: {len(content)} bytes")
        return Receipt(
            mime_type=PDF_MIME_TYPE,
            content=content,
            size_bytes=len(content),
            file_name=f"recibo-{sale.access_key}.pdf",
        )


def generate_receipt(sale: Sale, issuer: Optional[ReceiptIssuer] = None) -> Receipt:
    return ReceiptGenerator(issuer).generate(sale)

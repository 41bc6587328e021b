"""
Servicios de reportes para el módulo POS

Reportes sobre ventas completadas cuyo cierre cae en el rango elegido:
- Overview: Totales, ticket promedio, variación contra el período anterior,
  tendencia diaria y participación por medio de pago
- Top Products: Rankings por cantidad vendida y por ingreso neto
- Hourly: Movimiento por hora de cierre
- Daily: Movimiento por día del rango

Los rangos se calculan en UTC sobre días completos.
"""

from dataclasses import dataclass
from datetime import datetime, time, timedelta, timezone
from decimal import Decimal
from typing import Any, Callable, Dict, Iterable, List, Optional
from uuid import UUID
import logging

from sqlalchemy import func
from sqlalchemy.orm import Session

from app.modules.pos.domain import PaymentMethod, SaleStatus
from app.modules.pos.models import PosSale, PosSaleItem, PosSalePayment
from app.modules.pos.money import round_money

logger = logging.getLogger(__name__)

REPORT_RANGE_PRESETS = {
    "7d": 7,
    "14d": 14,
    "30d": 30,
    "90d": 90,
}
DEFAULT_REPORT_RANGE = "30d"

DEFAULT_TOP_PRODUCTS = 10
MAX_TOP_PRODUCTS = 25


@dataclass(frozen=True)
class ReportRange:
    """Rango [start, end) y el período anterior de igual duración"""
    preset: str
    days: int
    start: datetime
    end: datetime
    previous_start: datetime
    previous_end: datetime

    def as_dict(self) -> Dict[str, Any]:
        return {
            "preset": self.preset,
            "days": self.days,
            "start": self.start.isoformat(),
            "end": self.end.isoformat(),
        }


def resolve_range(raw: Optional[str], now: Optional[datetime] = None) -> ReportRange:
    """Preset desconocido o vacío -> 30d. El rango incluye el día actual completo."""
    normalized = (raw or "").strip().lower()
    preset = normalized if normalized in REPORT_RANGE_PRESETS else DEFAULT_REPORT_RANGE
    days = REPORT_RANGE_PRESETS[preset]

    now = now or datetime.now(timezone.utc)
    today = now.astimezone(timezone.utc).date()
    end = datetime.combine(today + timedelta(days=1), time.min, tzinfo=timezone.utc)
    start = end - timedelta(days=days)

    return ReportRange(
        preset=preset,
        days=days,
        start=start,
        end=end,
        previous_start=start - timedelta(days=days),
        previous_end=start,
    )


def _dec(value) -> Decimal:
    if value is None:
        return Decimal("0")
    return value if isinstance(value, Decimal) else Decimal(str(value))


def _amount(value: Decimal) -> float:
    return float(round_money(value))


def _utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _share(part: Decimal, total: Decimal) -> float:
    if not total:
        return 0.0
    return round(float(part / total * 100), 2)


def compute_variation(current: Decimal, previous: Decimal) -> Optional[float]:
    """Variación porcentual; None cuando el período anterior es cero."""
    if not previous:
        return None
    return round(float((current - previous) / previous * 100), 2)


def _best(entries: List[Dict[str, Any]], key: str) -> Optional[Dict[str, Any]]:
    best = None
    for entry in entries:
        if best is None or entry[key] > best[key]:
            best = entry
    return best


def build_sale_aggregation(sales: Iterable[Any]) -> Dict[str, Any]:
    """
    Sumar totales de ventas y agrupar el ingreso neto por día de cierre.

    Cada elemento debe exponer total_gross, total_discount, total_tax,
    total_net, total_paid, change_due y closed_at.
    """
    summary = {
        "gross": Decimal("0"),
        "discounts": Decimal("0"),
        "taxes": Decimal("0"),
        "net": Decimal("0"),
        "paid": Decimal("0"),
        "change_due": Decimal("0"),
    }
    trend: Dict[str, Dict[str, Any]] = {}
    orders = 0

    for sale in sales:
        orders += 1
        summary["gross"] += _dec(sale.total_gross)
        summary["discounts"] += _dec(sale.total_discount)
        summary["taxes"] += _dec(sale.total_tax)
        summary["net"] += _dec(sale.total_net)
        summary["paid"] += _dec(sale.total_paid)
        summary["change_due"] += _dec(sale.change_due)

        if sale.closed_at is not None:
            key = _utc(sale.closed_at).date().isoformat()
            entry = trend.setdefault(key, {"date": key, "revenue": Decimal("0"), "orders": 0})
            entry["revenue"] += _dec(sale.total_net)
            entry["orders"] += 1

    return {
        "orders": orders,
        "summary": summary,
        "trend": [trend[key] for key in sorted(trend)],
    }


class POSReportsService:
    """Servicio para reportes de POS"""

    def __init__(self, db: Session, clock: Optional[Callable[[], datetime]] = None):
        self.db = db
        self.clock = clock or (lambda: datetime.now(timezone.utc))

    def _completed_sales(self, tenant_id: UUID, start: datetime, end: datetime):
        return self.db.query(
            PosSale.id,
            PosSale.total_gross,
            PosSale.total_discount,
            PosSale.total_tax,
            PosSale.total_net,
            PosSale.total_paid,
            PosSale.change_due,
            PosSale.closed_at
        ).filter(
            PosSale.tenant_id == tenant_id,
            PosSale.status == SaleStatus.COMPLETED,
            PosSale.closed_at >= start,
            PosSale.closed_at < end
        ).order_by(PosSale.closed_at).all()

    def _envelope(self, report_range: ReportRange) -> Dict[str, Any]:
        return {
            "range": report_range.as_dict(),
            "generated_at": self.clock().isoformat(),
        }

    # ===== VISIÓN GENERAL =====

    def get_overview(self, tenant_id: UUID, range_preset: Optional[str] = None) -> Dict[str, Any]:
        report_range = resolve_range(range_preset, self.clock())
        try:
            current = build_sale_aggregation(
                self._completed_sales(tenant_id, report_range.start, report_range.end)
            )
            previous = build_sale_aggregation(
                self._completed_sales(tenant_id, report_range.previous_start, report_range.previous_end)
            )
            payment_rows = self.db.query(
                PosSalePayment.method,
                func.sum(PosSalePayment.amount).label("total_amount")
            ).join(
                PosSale, PosSale.id == PosSalePayment.sale_id
            ).filter(
                PosSale.tenant_id == tenant_id,
                PosSale.status == SaleStatus.COMPLETED,
                PosSale.closed_at >= report_range.start,
                PosSale.closed_at < report_range.end
            ).group_by(PosSalePayment.method).all()
        except Exception as e:
            logger.error(f"Error building POS overview report for tenant {tenant_id}: {e}")
            raise

        summary = current["summary"]
        orders = current["orders"]
        average_ticket = summary["net"] / orders if orders else Decimal("0")
        previous_average = (
            previous["summary"]["net"] / previous["orders"] if previous["orders"] else Decimal("0")
        )

        payments = sorted(
            (
                {
                    "method": PaymentMethod(row.method).value,
                    "label": PaymentMethod(row.method).label,
                    "amount": _dec(row.total_amount),
                }
                for row in payment_rows
            ),
            key=lambda p: p["amount"],
            reverse=True
        )
        total_payments = sum((p["amount"] for p in payments), Decimal("0"))

        trend = [
            {"date": e["date"], "revenue": _amount(e["revenue"]), "orders": e["orders"]}
            for e in current["trend"]
        ]

        return {
            **self._envelope(report_range),
            "totals": {
                "orders": orders,
                "gross": _amount(summary["gross"]),
                "discounts": _amount(summary["discounts"]),
                "taxes": _amount(summary["taxes"]),
                "net": _amount(summary["net"]),
                "paid": _amount(summary["paid"]),
                "change_due": _amount(summary["change_due"]),
                "average_ticket": _amount(average_ticket),
            },
            "variations": {
                "revenue": compute_variation(summary["net"], previous["summary"]["net"]),
                "orders": compute_variation(Decimal(orders), Decimal(previous["orders"])),
                "average_ticket": compute_variation(average_ticket, previous_average),
            },
            "trend": trend,
            "payments": [
                {
                    "method": p["method"],
                    "label": p["label"],
                    "amount": _amount(p["amount"]),
                    "share": _share(p["amount"], total_payments),
                }
                for p in payments
            ],
            "highlights": {
                "best_day": _best(trend, "revenue"),
            },
        }

    # ===== PRODUCTOS MÁS VENDIDOS =====

    def get_top_products(self, tenant_id: UUID, range_preset: Optional[str] = None,
                         limit: int = DEFAULT_TOP_PRODUCTS) -> Dict[str, Any]:
        """
        Ranking de productos vendidos en el período.

        Devuelve dos rankings sobre el mismo agregado: por cantidad y por
        facturación. Las participaciones se calculan sobre el total del
        período, no solo sobre los productos listados.
        """
        report_range = resolve_range(range_preset, self.clock())
        limit = max(1, min(limit or DEFAULT_TOP_PRODUCTS, MAX_TOP_PRODUCTS))

        rows = self.db.query(
            PosSaleItem.product_id,
            PosSaleItem.product_name,
            PosSaleItem.sku,
            func.sum(PosSaleItem.quantity).label("total_quantity"),
            func.sum(PosSaleItem.net_total).label("total_net"),
            func.sum(PosSaleItem.gross_total).label("total_gross"),
            func.sum(PosSaleItem.discount_value).label("total_discount")
        ).join(
            PosSale, PosSale.id == PosSaleItem.sale_id
        ).filter(
            PosSale.tenant_id == tenant_id,
            PosSale.status == SaleStatus.COMPLETED,
            PosSale.closed_at >= report_range.start,
            PosSale.closed_at < report_range.end
        ).group_by(
            PosSaleItem.product_id, PosSaleItem.product_name, PosSaleItem.sku
        ).all()

        total_quantity = sum((_dec(r.total_quantity) for r in rows), Decimal("0"))
        total_revenue = sum((_dec(r.total_net) for r in rows), Decimal("0"))

        def entry(r) -> Dict[str, Any]:
            return {
                "product_id": str(r.product_id),
                "name": r.product_name,
                "sku": r.sku,
                "quantity": float(_dec(r.total_quantity)),
                "gross": _amount(_dec(r.total_gross)),
                "discount": _amount(_dec(r.total_discount)),
                "revenue": _amount(_dec(r.total_net)),
                "quantity_share": _share(_dec(r.total_quantity), total_quantity),
                "revenue_share": _share(_dec(r.total_net), total_revenue),
            }

        by_quantity = sorted(
            rows, key=lambda r: (-_dec(r.total_quantity), -_dec(r.total_net), r.product_name)
        )
        by_revenue = sorted(
            rows, key=lambda r: (-_dec(r.total_net), -_dec(r.total_quantity), r.product_name)
        )

        return {
            **self._envelope(report_range),
            "limit": limit,
            "totals": {
                "products": len(rows),
                "quantity": float(total_quantity),
                "revenue": _amount(total_revenue),
            },
            "by_quantity": [entry(r) for r in by_quantity[:limit]],
            "by_revenue": [entry(r) for r in by_revenue[:limit]],
        }

    # ===== MOVIMIENTO POR HORA =====

    def get_hourly_movement(self, tenant_id: UUID, range_preset: Optional[str] = None) -> Dict[str, Any]:
        report_range = resolve_range(range_preset, self.clock())
        sales = self._completed_sales(tenant_id, report_range.start, report_range.end)

        buckets = [
            {"hour": hour, "label": f"{hour:02d}:00", "revenue": Decimal("0"), "orders": 0}
            for hour in range(24)
        ]
        for sale in sales:
            entry = buckets[_utc(sale.closed_at).hour]
            entry["orders"] += 1
            entry["revenue"] += _dec(sale.total_net)

        hours = [{**b, "revenue": _amount(b["revenue"])} for b in buckets]
        return {
            **self._envelope(report_range),
            "hours": hours,
            "highlights": {
                "busiest_hour": _best(hours, "orders") if sales else None,
            },
        }

    # ===== MOVIMIENTO POR DÍA =====

    def get_daily_movement(self, tenant_id: UUID, range_preset: Optional[str] = None) -> Dict[str, Any]:
        report_range = resolve_range(range_preset, self.clock())
        sales = self._completed_sales(tenant_id, report_range.start, report_range.end)

        buckets: Dict[str, Dict[str, Any]] = {}
        for offset in range(report_range.days):
            key = (report_range.start + timedelta(days=offset)).date().isoformat()
            buckets[key] = {"date": key, "revenue": Decimal("0"), "orders": 0}

        for sale in sales:
            key = _utc(sale.closed_at).date().isoformat()
            if key in buckets:
                buckets[key]["orders"] += 1
                buckets[key]["revenue"] += _dec(sale.total_net)

        days = [{**b, "revenue": _amount(b["revenue"])} for b in buckets.values()]
        return {
            **self._envelope(report_range),
            "days": days,
            "highlights": {
                "best_day": _best(days, "revenue") if sales else None,
            },
        }

"""
Product Profitability API Endpoints

Answers the seller's question: "Which products actually make me money once
couriers, returns and ads are paid for?"

Both endpoints take a snapshot (orders, catalog, ad spend, optional cost
settings) and return the engine's output for the requested window.
"""
from fastapi import APIRouter, HTTPException
from typing import Any, Dict, List, Optional
from datetime import datetime
from pydantic import BaseModel, Field

from codprofit.config import get_settings
from codprofit.schemas import AdSpend, CostSettings, Order, Product, TimeWindow
from codprofit.services.enrichment_service import recalculate_order_costs
from codprofit.services.performance_service import PerformanceAggregator, calculate_courier_performance
from codprofit.utils.logger import log

router = APIRouter(prefix="/profitability", tags=["profitability"])

NO_DATA = {"status": "no_data", "message": "No data available"}


class SnapshotRequest(BaseModel):
    """Orders, catalog and ad spend to report on"""
    orders: List[Dict[str, Any]] = Field(default_factory=list)
    products: List[Dict[str, Any]] = Field(default_factory=list)
    ad_spend: List[Dict[str, Any]] = Field(default_factory=list)
    settings: Optional[Dict[str, Any]] = None  # Overrides the configured cost settings
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    now: Optional[datetime] = None
    recalculate_cogs: bool = False  # Re-stamp item COGS from the supplied catalog
    include_inactive: bool = False


def resolve_window(start: Optional[datetime], end: Optional[datetime], now: Optional[datetime] = None) -> TimeWindow:
    """Explicit dates give a whole-day window, otherwise the default trailing window"""
    now = now or datetime.utcnow()
    if start or end:
        return TimeWindow.from_dates(start or end, end or now, now)
    return TimeWindow.last_days(get_settings().report_window_days, now)


def cost_settings_for(overrides: Optional[Dict[str, Any]]) -> CostSettings:
    if overrides:
        return CostSettings.from_dict(overrides)
    return CostSettings.from_settings(get_settings())


def _load_snapshot(request: SnapshotRequest):
    window = resolve_window(request.start_date, request.end_date, request.now)
    products = [Product.from_dict(p) for p in request.products]
    orders = [Order.from_dict(o) for o in request.orders]
    ad_spend = [AdSpend.from_dict(a) for a in request.ad_spend]
    if request.recalculate_cogs:
        orders = recalculate_order_costs(orders, products, window.end)
    return window, orders, products, ad_spend


def _period(window: TimeWindow) -> Dict[str, str]:
    return {"start": window.start.isoformat(), "end": window.end.isoformat()}


@router.post("/report")
async def profitability_report(request: SnapshotRequest):
    """
    Per-product (and per-group) profit for the window

    Rows are sorted by net profit, best first. Variants assigned to a
    group are nested under the group row.
    """
    if not request.orders and not request.ad_spend:
        return NO_DATA

    try:
        window, orders, products, ad_spend = _load_snapshot(request)
        aggregator = PerformanceAggregator(cost_settings_for(request.settings))
        rows = aggregator.build_report(orders, products, ad_spend, window, request.include_inactive)

        return {
            "status": "success",
            "period": _period(window),
            "products_analyzed": len(rows),
            "results": [row.to_dict() for row in rows],
        }

    except Exception as e:
        log.error(f"Error building profitability report: {str(e)}")
        raise HTTPException(status_code=500, detail=str(e))


@router.post("/dashboard")
async def profitability_dashboard(request: SnapshotRequest):
    """Store-wide totals plus per-courier delivery performance"""
    if not request.orders and not request.ad_spend:
        return NO_DATA

    try:
        window, orders, _, ad_spend = _load_snapshot(request)
        cost_settings = cost_settings_for(request.settings)
        metrics = PerformanceAggregator(cost_settings).calculate_dashboard_metrics(orders, ad_spend, window)
        in_window = [o for o in orders if window.contains(o.created_at)]
        couriers = calculate_courier_performance(in_window, cost_settings.rates.keys())

        return {
            "status": "success",
            "period": _period(window),
            "metrics": metrics.to_dict(),
            "couriers": [c.to_dict() for c in couriers],
        }

    except Exception as e:
        log.error(f"Error building dashboard metrics: {str(e)}")
        raise HTTPException(status_code=500, detail=str(e))

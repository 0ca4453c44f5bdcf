"""
Data synchronization endpoints
"""
from fastapi import APIRouter, Depends, HTTPException
from typing import List

from codprofit.api.profitability import NO_DATA, cost_settings_for
from codprofit.connectors import BaseCourierConnector, PostExConnector, ShopifyConnector, TcsConnector
from codprofit.models.base import get_db
from codprofit.services.data_sync_service import DataSyncService
from codprofit.services.performance_service import PerformanceAggregator
from codprofit.services.reconciliation_service import DemandDispatchReconciler
from codprofit.utils.logger import log

router = APIRouter(prefix="/sync", tags=["sync"])


def build_couriers() -> List[BaseCourierConnector]:
    """Every courier integration; unconfigured ones fail fast and become warnings"""
    return [PostExConnector(), TcsConnector()]


def build_storefront() -> ShopifyConnector:
    return ShopifyConnector()


@router.post("/refresh")
async def refresh(db=Depends(get_db)):
    """
    Pull every source, enrich, and return the full picture

    Partial failures are listed under `warnings`. When no source produced
    a single record the response is the no-data marker.
    """
    couriers = build_couriers()
    storefront = build_storefront()
    service = DataSyncService(db, couriers=couriers, storefront=storefront)

    try:
        outcome = await service.refresh()
    except Exception as e:
        log.error(f"Error refreshing data: {str(e)}")
        raise HTTPException(status_code=500, detail=str(e))

    if not outcome.has_data:
        return {**NO_DATA, "warnings": outcome.warnings, "sources": _source_status(couriers, storefront)}

    aggregator = PerformanceAggregator(cost_settings_for(None))
    rows = aggregator.build_report(outcome.orders, outcome.catalog, outcome.ad_spend, outcome.window)
    metrics = aggregator.calculate_dashboard_metrics(outcome.orders, outcome.ad_spend, outcome.window)
    reconciliation = DemandDispatchReconciler().reconcile(
        outcome.storefront_orders, outcome.orders, outcome.window
    )

    return {
        "status": "success",
        "period": {"start": outcome.window.start.isoformat(), "end": outcome.window.end.isoformat()},
        "orders": [o.to_dict() for o in outcome.orders],
        "products": [p.to_dict() for p in outcome.catalog],
        "needs_cost_entry": outcome.needs_cost_entry,
        "results": [row.to_dict() for row in rows],
        "metrics": metrics.to_dict(),
        "reconciliation": reconciliation.to_dict(),
        "warnings": outcome.warnings,
        "info": outcome.info,
        "sources": _source_status(couriers, storefront),
    }


def _source_status(couriers, storefront):
    return [c.get_status() for c in [*couriers, storefront]]

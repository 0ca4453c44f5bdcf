"""
Demand vs Dispatch API Endpoints
"""
from fastapi import APIRouter, HTTPException
from typing import Any, Dict, List, Optional
from datetime import datetime
from pydantic import BaseModel, Field

from codprofit.api.profitability import NO_DATA, resolve_window
from codprofit.schemas import Order, StorefrontOrder
from codprofit.services.reconciliation_service import DemandDispatchReconciler
from codprofit.utils.logger import log

router = APIRouter(prefix="/reconciliation", tags=["reconciliation"])


class ReconciliationRequest(BaseModel):
    """Storefront orders (Shopify payloads) and the courier-side order list"""
    storefront_orders: List[Dict[str, Any]] = Field(default_factory=list)
    courier_orders: List[Dict[str, Any]] = Field(default_factory=list)
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    now: Optional[datetime] = None


@router.post("/report")
async def reconciliation_report(request: ReconciliationRequest):
    """
    Which storefront orders never reached a courier

    Returns demand counts, dispatch rate (0-1), missed and misclassified
    orders, and a per-product breakdown.
    """
    if not request.storefront_orders:
        return NO_DATA

    try:
        window = resolve_window(request.start_date, request.end_date, request.now)
        report = DemandDispatchReconciler().reconcile(
            [StorefrontOrder.from_dict(o) for o in request.storefront_orders],
            [Order.from_dict(o) for o in request.courier_orders],
            window,
        )
        return {
            "status": "success",
            "period": {"start": window.start.isoformat(), "end": window.end.isoformat()},
            **report.to_dict(),
        }

    except Exception as e:
        log.error(f"Error reconciling demand and dispatch: {str(e)}")
        raise HTTPException(status_code=500, detail=str(e))

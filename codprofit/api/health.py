"""
Health check and status endpoints
"""
from fastapi import APIRouter
from datetime import datetime
from codprofit.config import get_settings
from codprofit import __version__

settings = get_settings()

router = APIRouter()


@router.get("/health")
async def health_check():
    """Health check endpoint"""
    return {
        "status": "healthy",
        "timestamp": datetime.utcnow().isoformat(),
        "version": __version__
    }


@router.get("/status")
async def get_status():
    """Get system status"""
    return {
        "app_name": settings.app_name,
        "version": __version__,
        "environment": settings.environment,
        "integrations": {
            "shopify": bool(settings.shopify_store_url and settings.shopify_access_token),
            "postex": bool(settings.postex_api_token),
            "tcs": bool(settings.tcs_account_number),
        },
        "timestamp": datetime.utcnow().isoformat()
    }

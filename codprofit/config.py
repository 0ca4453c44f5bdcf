"""
Configuration management for the COD profit engine
"""
from pydantic_settings import BaseSettings
from functools import lru_cache
from typing import Dict, Optional


# Average courier rates (PKR) used until the seller saves their own rate card
DEFAULT_COURIER_RATES: Dict[str, Dict[str, float]] = {
    "Trax": {"forward": 180, "rto": 90},
    "Leopards": {"forward": 200, "rto": 100},
    "TCS": {"forward": 250, "rto": 0},  # TCS charges the full fee upfront
    "PostEx": {"forward": 170, "rto": 85},
    "M&P": {"forward": 190, "rto": 95},
    "CallCourier": {"forward": 160, "rto": 80},
    "Daewoo": {"forward": 220, "rto": 0},
}


class Settings(BaseSettings):
    """Application settings"""

    # Application
    app_name: str = "COD Profit Reconciliation Engine"
    environment: str = "development"
    debug: bool = False
    log_level: str = "INFO"
    log_to_file: bool = False

    # API
    api_host: str = "0.0.0.0"
    api_port: int = 8000

    # Database (catalog + ad spend persistence)
    database_url: str = "sqlite:///./codprofit.db"

    # Cost settings
    courier_rates: Dict[str, Dict[str, float]] = DEFAULT_COURIER_RATES
    default_courier: str = "PostEx"
    packaging_cost: float = 45.0  # Polybag + flyer
    overhead_cost: float = 0.0
    courier_tax_rate: float = 0.0  # % of delivered COD withheld by the courier
    ads_tax_rate: float = 0.0  # % added on top of raw ad spend

    # Windows
    report_window_days: int = 60
    backfill_window_days: int = 60

    # Live tracking during backfill
    tracking_timeout_seconds: float = 10.0
    tracking_concurrency: int = 5
    max_tracking_calls: int = 200

    # Shopify
    shopify_store_url: Optional[str] = None
    shopify_access_token: Optional[str] = None
    shopify_api_version: str = "2024-01"

    # PostEx
    postex_api_token: Optional[str] = None
    postex_base_url: str = "https://api.postex.pk/services/integration/api"

    # TCS
    tcs_client_id: Optional[str] = None
    tcs_client_secret: Optional[str] = None
    tcs_account_number: Optional[str] = None
    tcs_access_token: Optional[str] = None
    tcs_base_url: str = "https://ociconnect.tcscourier.com"

    class Config:
        env_file = ".env"
        case_sensitive = False


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance"""
    return Settings()

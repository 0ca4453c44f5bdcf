"""
COD Profit Reconciliation Engine
Main FastAPI application
"""
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from contextlib import asynccontextmanager

from codprofit.config import get_settings
from codprofit.utils.logger import log
from codprofit import __version__

# Import routers
from codprofit.api import catalog, health, profitability, reconciliation, sync

settings = get_settings()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown events"""
    log.info(f"Starting {settings.app_name} v{__version__}")
    log.info(f"Environment: {settings.environment}")

    try:
        from codprofit.models.base import init_db
        init_db()
        log.info("Database initialized")
    except Exception as e:
        log.error(f"Database initialization error: {str(e)}")

    yield

    log.info("Shutting down application")


app = FastAPI(
    title=settings.app_name,
    version=__version__,
    description="""
    Cost attribution and profitability for cash-on-delivery sellers

    - Stamps every order with courier fees, RTO penalties, packaging,
      overhead, tax and the COGS that applied on the order date
    - Rolls product variants into groups with ad spend attributed
    - Reconciles storefront demand against what couriers actually shipped
    """,
    lifespan=lifespan
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(health.router, tags=["health"])
app.include_router(catalog.router)
app.include_router(profitability.router)
app.include_router(reconciliation.router)
app.include_router(sync.router)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("codprofit.main:app", host=settings.api_host, port=settings.api_port, reload=settings.debug)

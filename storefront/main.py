"""
Storefront order service
Checkout submission, order tracking and admin inventory endpoints
"""

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from contextlib import asynccontextmanager
from sqlalchemy import select, func
import subprocess
import os

from storefront.core import ServiceHealth, setup_logging, RequestLoggingMiddleware, get_logger
from storefront.core_settings import get_settings
from storefront.api.routes import router as orders_router
from storefront.api.inventory_routes import router as inventory_router
from storefront.infrastructure.db import engine, init_models, SessionLocal
from storefront.domain.models import Order, MenuItem

settings = get_settings()
SERVICE_DESCRIPTION = "Order submission with inventory control and rate limiting"

setup_logging(service_name=settings.SERVICE_NAME, level=settings.LOG_LEVEL)

logger = get_logger(__name__)

def run_migrations() -> None:
    result = subprocess.run(
        ["alembic", "upgrade", "head"],
        cwd=os.path.join(os.path.dirname(__file__), ".."),
        capture_output=True,
        text=True,
        check=False
    )
    if result.returncode != 0:
        logger.warning(f"Migration output: {result.stderr}")
    else:
        logger.info("Database migrations completed")

def order_metrics() -> dict:
    with SessionLocal() as db:
        return {
            "placed_total": db.scalar(select(func.count()).select_from(Order)) or 0,
            "low_stock_items": db.scalar(
                select(func.count()).select_from(MenuItem).where(
                    MenuItem.track_inventory.is_(True),
                    MenuItem.stock_quantity <= MenuItem.low_stock_threshold,
                )
            ) or 0,
        }

@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info(f"Starting {settings.SERVICE_NAME} version {settings.SERVICE_VERSION}")

    if settings.RUN_MIGRATIONS:
        logger.info("Running database migrations")
        run_migrations()

    try:
        init_models()
        logger.info("Database models initialized")
    except Exception as e:
        logger.error(f"Failed to initialize database models: {e}")
        raise

    yield

    logger.info(f"Shutting down {settings.SERVICE_NAME}")

app = FastAPI(
    title=settings.SERVICE_NAME,
    description=SERVICE_DESCRIPTION,
    version=settings.SERVICE_VERSION,
    lifespan=lifespan,
    docs_url="/api/docs",
    redoc_url="/api/redoc",
    openapi_url="/api/openapi.json"
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[origin.strip() for origin in settings.CORS_ORIGINS.split(",")],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.add_middleware(RequestLoggingMiddleware)

health_service = ServiceHealth(
    settings.SERVICE_NAME,
    settings.SERVICE_VERSION,
    engine,
    redis_url=settings.REDIS_URL,
    metrics_provider=order_metrics,
)
app.include_router(health_service.create_health_router())

app.include_router(orders_router)
app.include_router(inventory_router)

@app.get("/")
async def root():
    return {
        "service": settings.SERVICE_NAME,
        "version": settings.SERVICE_VERSION,
        "status": "running",
        "docs": "/api/docs"
    }

"""
FastAPI application entry point for Menu Sync.
"""

# Load environment variables FIRST before any other imports
from pathlib import Path
from dotenv import load_dotenv

project_root = Path(__file__).parent.parent.parent.parent  # src/menu_sync/api/main.py -> root
env_file = project_root / ".env"
if env_file.exists():
    load_dotenv(env_file)

from contextlib import asynccontextmanager
import os

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import PlainTextResponse
from prometheus_client import generate_latest, CONTENT_TYPE_LATEST

from menu_sync import __version__
from menu_sync.api.routes import businesses, catalog, categories, health, products, webhooks
from menu_sync.api.middleware.error_handler import ErrorHandlerMiddleware
from menu_sync.monitoring import MetricsMiddleware, get_metrics
from menu_sync.utils.config import get_config, validate_configuration
from menu_sync.utils.logger import get_logger, setup_logging

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager."""
    setup_logging()
    logger.info("Starting Menu Sync API...")

    validation = validate_configuration()
    if not validation["valid"]:
        logger.warning(f"Starting with invalid configuration: {validation['error']}")
    get_metrics()
    logger.info("Menu Sync API started")

    yield

    logger.info("Shutting down Menu Sync API...")


app = FastAPI(
    title="Menu Sync API",
    description="Catalog reconciliation and webhook intake for multi-tenant restaurant menus",
    version=__version__,
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/openapi.json",
    lifespan=lifespan
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=os.getenv("CORS_ORIGINS", "*").split(","),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.add_middleware(GZipMiddleware, minimum_size=1000)

# Metrics wraps error handling so mapped status codes are counted
app.add_middleware(ErrorHandlerMiddleware)
app.add_middleware(MetricsMiddleware)

BUSINESS_PREFIX = "/api/v1/businesses/{subdomain}"

app.include_router(webhooks.router, prefix="/api/v1/whatsapp", tags=["Webhooks"])
app.include_router(businesses.router, prefix=BUSINESS_PREFIX, tags=["Businesses"])
app.include_router(products.router, prefix=f"{BUSINESS_PREFIX}/products", tags=["Products"])
app.include_router(categories.router, prefix=f"{BUSINESS_PREFIX}/categories", tags=["Categories"])
app.include_router(catalog.router, prefix=f"{BUSINESS_PREFIX}/catalog", tags=["Catalog"])
app.include_router(health.router, prefix="/api/v1/health", tags=["Health"])


@app.get("/metrics", tags=["Monitoring"])
async def metrics():
    """Prometheus metrics endpoint."""
    return PlainTextResponse(generate_latest(), media_type=CONTENT_TYPE_LATEST)


@app.get("/", tags=["Root"])
async def root():
    """Root endpoint."""
    return {
        "name": "Menu Sync API",
        "version": __version__,
        "status": "operational",
        "docs": "/docs"
    }


if __name__ == "__main__":
    import uvicorn

    config = get_config()
    uvicorn.run(
        "menu_sync.api.main:app",
        host=config.api_host,
        port=config.api_port,
        reload=config.debug_mode,
    )

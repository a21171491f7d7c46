from fastapi import FastAPI
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
import logging

# Import database components
from app.database.database import sync_engine, Base

# Import middleware
from app.common.middleware import TenantMiddleware, SecurityHeadersMiddleware

# Import routers
from app.modules.documents.router import (
    invoices_router,
    purchase_bills_router,
    purchase_orders_router,
    credit_notes_router,
    debit_notes_router
)
from app.modules.payments.router import payments_router
from app.modules.ledger.router import ledger_router

# Import models for table creation
import app.modules.company.models
import app.modules.contacts.models
import app.modules.catalog.models
import app.modules.documents.models
import app.modules.payments.models
import app.modules.ledger.models
import app.modules.notifications.models

from app.core.config import settings

# Configure logging
logging.basicConfig(
    level=logging.INFO if settings.ENVIRONMENT == "production" else logging.DEBUG,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)

app = FastAPI(
    title="Ledgerline API",
    description="Multi-tenant billing API: GST-aware documents, payment reconciliation and client ledgers",
    version="1.0.0",
    docs_url="/docs" if settings.ENVIRONMENT != "production" else None,
    redoc_url="/redoc" if settings.ENVIRONMENT != "production" else None
)

# Add middleware (order matters!)
app.add_middleware(GZipMiddleware, minimum_size=1000)
app.add_middleware(SecurityHeadersMiddleware)
app.add_middleware(TenantMiddleware)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(invoices_router)
app.include_router(purchase_bills_router)
app.include_router(purchase_orders_router)
app.include_router(credit_notes_router)
app.include_router(debit_notes_router)
app.include_router(payments_router)
app.include_router(ledger_router)

# Create database tables (only for development - use migrations in production)
if settings.ENVIRONMENT == "development":
    Base.metadata.create_all(bind=sync_engine)


@app.get("/")
async def read_root():
    return {
        "message": "Ledgerline API is running",
        "version": "1.0.0",
        "environment": settings.ENVIRONMENT
    }


@app.get("/health")
def health_check():
    try:
        with sync_engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        database = "ok"
    except SQLAlchemyError as e:
        logger.warning(f"Health check could not reach the database: {e}")
        database = "unavailable"
    return {
        "status": "healthy" if database == "ok" else "degraded",
        "database": database,
        "environment": settings.ENVIRONMENT
    }


@app.on_event("startup")
async def startup_event():
    logger.info("Ledgerline API starting up...")
    logger.info(f"Environment: {settings.ENVIRONMENT}")
    logger.info(f"Debug mode: {settings.DEBUG}")


@app.on_event("shutdown")
async def shutdown_event():
    logger.info("Ledgerline API shutting down...")

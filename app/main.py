from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
import logging

# Import database components
from app.database.database import engine, Base

# Import middleware
from app.common.middleware import PrincipalMiddleware, SecurityHeadersMiddleware, register_exception_handlers

# Import routers
from app.modules.customers.router import customers_router
from app.modules.jobs.router import jobs_router
from app.modules.invoices.router import router as invoices_router
from app.modules.receipts.router import receipts_router

# Import models for table creation
import app.modules.customers.models
import app.modules.jobs.models
import app.modules.invoices.models
import app.modules.receipts.models
import app.modules.numbering.models

from app.core.config import settings

# Configure logging
logging.basicConfig(
    level=logging.INFO if settings.ENVIRONMENT == "production" else logging.DEBUG,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)

# FastAPI app
app = FastAPI(
    title="Fieldbill API",
    description="Billing API for field services: jobs, invoices, payments and receipts",
    version="1.0.0",
    docs_url="/docs" if settings.ENVIRONMENT != "production" else None,
    redoc_url="/redoc" if settings.ENVIRONMENT != "production" else None
)

# Add middleware (order matters!)
app.add_middleware(GZipMiddleware, minimum_size=1000)
app.add_middleware(SecurityHeadersMiddleware)
app.add_middleware(PrincipalMiddleware)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

register_exception_handlers(app)

# Include routers
app.include_router(customers_router)
app.include_router(jobs_router)
app.include_router(invoices_router)
app.include_router(receipts_router)


@app.get("/")
async def read_root():
    return {
        "message": "Fieldbill API is running",
        "version": "1.0.0",
        "environment": settings.ENVIRONMENT
    }


@app.get("/health")
async def health_check():
    return {"status": "healthy", "environment": settings.ENVIRONMENT}


@app.on_event("startup")
async def startup_event():
    logger.info("Fieldbill API starting up...")
    logger.info(f"Environment: {settings.ENVIRONMENT}")
    logger.info(f"Debug mode: {settings.DEBUG}")

    # Create database tables (only for development - no migrations yet)
    if settings.ENVIRONMENT == "development":
        Base.metadata.create_all(bind=engine)
        logger.info("Database tables ensured")


@app.on_event("shutdown")
async def shutdown_event():
    logger.info("Fieldbill API shutting down...")

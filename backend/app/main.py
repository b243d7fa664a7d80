"""FastAPI application entry point"""
import asyncio
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from app.core.config import settings
from app.core.logging import setup_logging
from app.core.middleware import access_log_middleware, global_exception_handler, setup_cors_middleware
from app.core.otel import initialize_otel, instrument_fastapi, instrument_sqlalchemy, setup_otel_logging
from app.db.session import engine, init_db

# Import routers
from app.api import monitoring, webhooks, woocommerce

# Configure logging
setup_logging()

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan event handler for startup and shutdown"""
    # Startup
    otel_initialized = initialize_otel()

    if otel_initialized:
        if setup_otel_logging():
            logger.info(f"OpenTelemetry fully initialized, exporting to {settings.OTEL_EXPORTER_OTLP_ENDPOINT}")
        else:
            logger.warning("OpenTelemetry tracing initialized but log export setup failed")
        instrument_sqlalchemy(engine)
    else:
        logger.info("OpenTelemetry not configured - running without distributed tracing")

    logger.info("Initializing database...")
    try:
        init_db()
        logger.info("Database initialized successfully")
    except Exception as e:
        logger.error(f"Database initialization failed: {e}")
        raise

    reminder = None
    if settings.REMINDERS_ENABLED:
        from app.tasks.reminders import reminder_task

        logger.info(f"Starting reminder task (every {settings.REMINDER_INTERVAL_SECONDS}s)...")
        reminder = asyncio.create_task(reminder_task())
    else:
        logger.info("Subscription reminders disabled")

    yield

    # Shutdown
    logger.info("Shutting down...")
    if reminder is not None:
        reminder.cancel()


# Create FastAPI app
app = FastAPI(
    title="Reseller ERP Backend",
    description="WooCommerce order ingestion and subscription tracking",
    version="1.0.0",
    lifespan=lifespan
)

# Instrument FastAPI with OpenTelemetry
if settings.OTEL_EXPORTER_OTLP_ENDPOINT:
    instrument_fastapi(app)

# CORS middleware
setup_cors_middleware(app)

# Include routers
app.include_router(webhooks.router)
app.include_router(woocommerce.router)
app.include_router(monitoring.router)

# Access logging middleware
app.middleware("http")(access_log_middleware)

# Global exception handler
app.add_exception_handler(Exception, global_exception_handler)

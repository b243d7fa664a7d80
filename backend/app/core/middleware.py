"""Middleware configuration for FastAPI application"""
import logging
from fastapi import Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from app.core.config import settings
from app.core.logging import security_logger
from app.core.security import log_api_access

logger = logging.getLogger(__name__)

# Store webhooks are called from arbitrary origins and answer CORS themselves
WEBHOOK_PATH_PREFIX = "/api/webhooks/"


def get_allowed_origins():
    """Get list of allowed CORS origins"""
    allowed_origins = [settings.FRONTEND_URL]
    if settings.ENVIRONMENT == "development":
        allowed_origins.extend([
            "http://localhost:3000",
            "http://localhost:8000",
            "http://127.0.0.1:3000",
            "http://127.0.0.1:8000"
        ])
    return allowed_origins


class AdminCORSMiddleware(CORSMiddleware):
    """CORSMiddleware for the admin frontend that leaves webhook paths alone"""

    async def __call__(self, scope, receive, send):
        if scope["type"] == "http" and scope["path"].startswith(WEBHOOK_PATH_PREFIX):
            await self.app(scope, receive, send)
            return
        await super().__call__(scope, receive, send)


def setup_cors_middleware(app):
    """Setup CORS middleware for FastAPI app"""
    allowed_origins = get_allowed_origins()

    app.add_middleware(
        AdminCORSMiddleware,
        allow_origins=allowed_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )


async def access_log_middleware(request: Request, call_next):
    """Middleware for API access logging"""
    status_code = 500
    error = None

    try:
        response = await call_next(request)
        status_code = response.status_code
        return response
    except Exception as e:
        error = str(e)
        security_logger.error(f"Request failed in middleware: {error}", exc_info=True)
        raise
    finally:
        if request.url.path not in ("/metrics", "/health"):
            log_api_access(request, status_code, error)


async def global_exception_handler(request: Request, exc: Exception):
    """Global exception handler"""
    logger.error(f"Unhandled exception: {exc}", exc_info=True)
    return JSONResponse(
        status_code=500,
        content={"error": "Internal server error"}
    )

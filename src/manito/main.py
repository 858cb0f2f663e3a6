"""FastAPI application entry point for the web-callback companion service."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from src.manito.auth.dependencies import set_token_verifier
from src.manito.auth.jwt_validator import build_verifier
from src.manito.config import get_settings
from src.manito.features.session_codes.handlers import router as session_codes_router
from src.manito.services.rate_limiter import configure_limiter

logger = logging.getLogger(__name__)

settings = get_settings()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Create the token verifier on startup and release it on shutdown."""
    verifier = build_verifier(
        settings.supabase_url,
        audience=settings.jwt_audience,
        leeway=settings.jwt_leeway_seconds,
        cache_ttl=settings.jwks_cache_ttl_seconds,
    )
    set_token_verifier(verifier)
    logger.info("Token verifier initialized", extra={"issuer": verifier.issuer})

    yield

    set_token_verifier(None)
    try:
        await verifier.close()
    except Exception as e:
        logger.error(f"Error during token verifier cleanup: {e}", exc_info=True)


app = FastAPI(
    title="Manito Auth Callback API",
    description="Session-code exchange for the Manito mobile app",
    version="0.1.0",
    debug=settings.debug,
    lifespan=lifespan,
)

app.state.limiter = configure_limiter()
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

origins = [origin.strip() for origin in settings.cors_origins.split(",") if origin.strip()]
logger.info(f"Origins : {origins}")

app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["GET", "POST"],
    allow_headers=["Content-Type", "Authorization"],
)

app.include_router(session_codes_router, prefix="/api", tags=["session-codes"])


class HealthCheckResponse(BaseModel):
    """Health check response."""

    status: str


@app.get("/health", response_model=HealthCheckResponse)
async def health_check() -> HealthCheckResponse:
    """Health check endpoint."""
    return HealthCheckResponse(status="healthy")

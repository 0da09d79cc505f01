"""Health check endpoints."""

from fastapi import APIRouter, status
from pydantic import BaseModel
from sqlalchemy import text

from social_link.api.deps import ServicesDep
from social_link.domain.errors import EncryptionError
from social_link.logging import get_logger
from social_link.services.container import ServiceContainer
from social_link.services.encryption import decrypt_token, encrypt_token

router = APIRouter(tags=["Health"])
logger = get_logger(__name__)


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    version: str
    components: dict[str, bool] | None = None


class ReadinessResponse(BaseModel):
    """Readiness check response."""

    ready: bool
    database: bool
    encryption: bool
    redis: bool
    redis_required: bool


def _encryption_ready() -> bool:
    """Round-trip a sample value through the token cipher."""
    sample = "readiness-check"
    try:
        return decrypt_token(encrypt_token(sample)) == sample
    except EncryptionError as e:
        logger.error("encryption_health_check_failed", error=str(e))
        return False


def _redis_required(services: ServiceContainer) -> bool:
    settings = services.settings
    return (
        settings.lock_backend == "redis"
        or settings.rate_limit_backend == "redis"
        or settings.notifications_redis_enabled
    )


@router.get(
    "/health",
    response_model=HealthResponse,
    status_code=status.HTTP_200_OK,
    summary="Health check",
    description="Basic health check endpoint that verifies the API is running.",
)
def health_check(services: ServicesDep) -> HealthResponse:
    """Basic health check - is the API up?

    Reports which backends are live (not stubbed or process-local).
    """
    from social_link import __version__

    settings = services.settings
    return HealthResponse(
        status="healthy",
        version=__version__,
        components={
            "oauth": settings.oauth_provider != "stub",
            "locks": settings.lock_backend == "redis",
            "rate_limit": settings.rate_limit_backend == "redis",
            "notifications": settings.notifications_redis_enabled,
        },
    )


@router.get(
    "/health/ready",
    response_model=ReadinessResponse,
    summary="Readiness check",
    description="Comprehensive readiness check that verifies all dependencies.",
)
def readiness_check(services: ServicesDep) -> ReadinessResponse:
    """Readiness check including the database, the token cipher and, when used, Redis."""
    database_ok = False
    try:
        with services.session_factory() as session:
            session.execute(text("SELECT 1"))
            database_ok = True
    except Exception as e:
        logger.error("database_health_check_failed", error=str(e))

    encryption_ok = _encryption_ready()

    redis_required = _redis_required(services)
    redis_ok = False
    try:
        import redis

        r = redis.from_url(services.settings.redis_url)
        r.ping()
        redis_ok = True
    except Exception as e:
        log = logger.error if redis_required else logger.debug
        log("redis_health_check_failed", error=str(e))

    return ReadinessResponse(
        ready=database_ok and encryption_ok and (redis_ok or not redis_required),
        database=database_ok,
        encryption=encryption_ok,
        redis=redis_ok,
        redis_required=redis_required,
    )


@router.get(
    "/health/live",
    status_code=status.HTTP_200_OK,
    summary="Liveness probe",
    description="Simple liveness probe for Kubernetes.",
)
def liveness_check() -> dict[str, str]:
    """Kubernetes liveness probe - is the process alive?"""
    return {"status": "alive"}

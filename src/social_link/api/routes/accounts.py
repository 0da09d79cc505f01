"""Connected account endpoints."""

from fastapi import APIRouter, Query

from social_link.api.deps import ServicesDep, http_error
from social_link.api.schemas import ConnectionListResponse, ConnectionResponse
from social_link.domain.errors import SocialLinkError
from social_link.logging import get_logger

router = APIRouter(prefix="/accounts", tags=["Accounts"])
logger = get_logger(__name__)


@router.get(
    "",
    response_model=ConnectionListResponse,
    summary="List accounts",
    description="List a user's connected social accounts with their health status.",
)
def list_accounts(
    services: ServicesDep,
    user_id: str = Query(..., min_length=1),
    include_disconnected: bool = False,
) -> ConnectionListResponse:
    """List connected accounts for a user."""
    summaries = services.registry.list(user_id, include_disconnected=include_disconnected)
    return ConnectionListResponse(
        accounts=[ConnectionResponse.from_summary(s) for s in summaries],
        total=len(summaries),
    )


@router.get(
    "/{connection_id}",
    response_model=ConnectionResponse,
    summary="Get account",
    description="Get one connection.",
)
def get_account(connection_id: str, services: ServicesDep) -> ConnectionResponse:
    try:
        summary = services.registry.get(connection_id)
    except SocialLinkError as e:
        raise http_error(e) from e
    return ConnectionResponse.from_summary(summary)


@router.post(
    "/{connection_id}/refresh",
    response_model=ConnectionResponse,
    summary="Refresh account tokens",
    description="Refresh now. Answers 409 when a refresh is already in progress.",
)
def refresh_account(connection_id: str, services: ServicesDep) -> ConnectionResponse:
    """Manually refresh a connection's access token."""
    try:
        # Unknown ids surface as 404 before the lock is touched
        services.registry.get(connection_id)
        record = services.token_store.refresh(connection_id, manual=True)
    except SocialLinkError as e:
        raise http_error(e) from e

    logger.info("manual_refresh_completed", connection_id=connection_id)
    return ConnectionResponse.from_record(record)


@router.delete(
    "/{connection_id}",
    response_model=ConnectionResponse,
    summary="Disconnect account",
    description="Revoke the tokens (best effort) and mark the connection DISCONNECTED.",
)
def disconnect_account(connection_id: str, services: ServicesDep) -> ConnectionResponse:
    """Disconnect a connection. Repeating the call is harmless."""
    try:
        record = services.disconnect.disconnect(connection_id)
    except SocialLinkError as e:
        raise http_error(e) from e
    return ConnectionResponse.from_record(record)

"""Connect flow endpoints: start an authorization and receive the callback."""

from datetime import datetime

from fastapi import APIRouter
from pydantic import BaseModel, Field

from social_link.api.deps import ServicesDep, http_error
from social_link.api.schemas import ConnectionResponse
from social_link.domain.errors import SocialLinkError
from social_link.logging import get_logger

router = APIRouter(tags=["Connect"])
logger = get_logger(__name__)


class ConnectRequest(BaseModel):
    """Request to start connecting a social account."""

    user_id: str = Field(..., min_length=1, description="Platform user initiating the connection")
    scopes: list[str] | None = Field(
        default=None, description="Scopes to request (defaults to the platform's set)"
    )
    connection_id: str | None = Field(
        default=None, description="Existing connection to reconnect in place"
    )


class ConnectResponse(BaseModel):
    """Where to send the user for consent."""

    authorize_url: str
    state: str
    expires_at: datetime


@router.post(
    "/connect/{platform}",
    response_model=ConnectResponse,
    summary="Start connect flow",
    description="Create a single-use authorization request and return the platform consent URL.",
)
def start_connect(
    platform: str, request: ConnectRequest, services: ServicesDep
) -> ConnectResponse:
    """Start an OAuth authorization for the given platform."""
    try:
        start = services.authorization.initiate(
            request.user_id,
            platform,
            scopes=request.scopes,
            connection_id=request.connection_id,
        )
    except SocialLinkError as e:
        raise http_error(e) from e

    return ConnectResponse(
        authorize_url=start.authorize_url,
        state=start.state,
        expires_at=start.expires_at,
    )


@router.get(
    "/callback/{platform}",
    response_model=ConnectionResponse,
    summary="OAuth callback",
    description="Redirect target for the platform's consent screen.",
)
def oauth_callback(
    platform: str,
    services: ServicesDep,
    code: str | None = None,
    state: str | None = None,
    error: str | None = None,
    error_description: str | None = None,
) -> ConnectionResponse:
    """Complete the connect flow with the code the platform returned."""
    try:
        record = services.authorization.handle_callback(
            platform,
            code,
            state,
            error=error,
            error_description=error_description,
        )
    except SocialLinkError as e:
        raise http_error(e) from e

    return ConnectionResponse.from_record(record)

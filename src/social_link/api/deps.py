"""FastAPI dependencies and error translation."""

import math
from typing import Annotated

from fastapi import Depends, HTTPException

from social_link.domain.errors import RateLimitExceeded, SocialLinkError
from social_link.services.container import ServiceContainer, get_container


def get_services() -> ServiceContainer:
    """Get the process-wide service container."""
    return get_container()


ServicesDep = Annotated[ServiceContainer, Depends(get_services)]


def http_error(error: SocialLinkError) -> HTTPException:
    """Translate a lifecycle error into the API's error response.

    The body is ``{"detail": {"error": <code>, "message": ..., "retry_after"?: seconds}}``.
    """
    headers = None
    if isinstance(error, RateLimitExceeded):
        headers = {"Retry-After": str(max(1, math.ceil(error.retry_after)))}
    return HTTPException(status_code=error.http_status, detail=error.to_dict(), headers=headers)

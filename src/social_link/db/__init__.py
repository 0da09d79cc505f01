"""Database layer."""

from social_link.db.models import (
    AuthorizationRequestModel,
    Base,
    SocialAccountConnectionModel,
)
from social_link.db.session import (
    create_db_engine,
    create_session_factory,
    get_engine,
    get_session,
    get_session_factory,
    init_db,
    session_scope,
)

__all__ = [
    "Base",
    "create_db_engine",
    "create_session_factory",
    "get_engine",
    "get_session",
    "get_session_factory",
    "init_db",
    "session_scope",
    # Models
    "AuthorizationRequestModel",
    "SocialAccountConnectionModel",
]

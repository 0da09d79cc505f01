"""API route modules."""

from social_link.api.routes import accounts, connect, health

__all__ = ["accounts", "connect", "health"]

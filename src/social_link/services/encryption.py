"""Encryption utilities for secure token storage.

Uses Fernet symmetric encryption with a master key from settings. Plaintext
tokens only exist in memory between decrypt and the outbound call that needs
them.
"""

from functools import lru_cache

from cryptography.fernet import Fernet, InvalidToken

from social_link.config import settings
from social_link.domain.errors import EncryptionError
from social_link.logging import get_logger

logger = get_logger(__name__)

# Generated once per process when no key is configured outside production
_generated_dev_key: str | None = None


def _get_master_key() -> bytes:
    """Get the master encryption key.

    The key must be a valid 32-byte base64-encoded Fernet key. Production
    refuses to start without one; development falls back to a random key.
    """
    global _generated_dev_key

    key = settings.encryption_master_key

    if not key:
        if settings.environment.lower() in ("production", "prod"):
            raise EncryptionError(
                "ENCRYPTION_MASTER_KEY is required in production. "
                "Generate one with: social-link generate-key"
            )

        if _generated_dev_key is None:
            _generated_dev_key = Fernet.generate_key().decode()
            logger.warning(
                "encryption_using_generated_key",
                hint="Set ENCRYPTION_MASTER_KEY in .env for token persistence across restarts",
            )
        key = _generated_dev_key

    return key.encode()


@lru_cache(maxsize=1)
def get_fernet() -> Fernet:
    """Get a cached Fernet instance with the master key."""
    try:
        return Fernet(_get_master_key())
    except EncryptionError:
        raise
    except (ValueError, TypeError) as e:
        raise EncryptionError(f"Failed to initialize encryption: {e}") from e


def encrypt_token(token: str) -> str:
    """Encrypt a token for storage.

    Raises:
        EncryptionError: If the token is empty or encryption fails.
    """
    if not token:
        raise EncryptionError("Cannot encrypt empty token")

    return get_fernet().encrypt(token.encode()).decode()


def encrypt_optional(token: str | None) -> str | None:
    """Encrypt a token that a platform may not issue (e.g. refresh tokens)."""
    return encrypt_token(token) if token else None


def decrypt_token(encrypted_token: str) -> str:
    """Decrypt a stored token.

    Raises:
        EncryptionError: If decryption fails (invalid key or corrupted data).
    """
    if not encrypted_token:
        raise EncryptionError("Cannot decrypt empty token")

    try:
        return get_fernet().decrypt(encrypted_token.encode()).decode()
    except InvalidToken as e:
        raise EncryptionError(
            "Failed to decrypt token: invalid key or corrupted data. "
            "This may happen if ENCRYPTION_MASTER_KEY changed."
        ) from e


def generate_master_key() -> str:
    """Generate a new Fernet-compatible master key."""
    return Fernet.generate_key().decode()


def rotate_token_encryption(encrypted_token: str, old_key: str, new_key: str) -> str:
    """Re-encrypt a token with a new key.

    Raises:
        EncryptionError: If the token cannot be decrypted with ``old_key``.
    """
    try:
        old_fernet = Fernet(old_key.encode())
        new_fernet = Fernet(new_key.encode())
        plaintext = old_fernet.decrypt(encrypted_token.encode())
    except (InvalidToken, ValueError) as e:
        raise EncryptionError(f"Failed to rotate token encryption: {e}") from e

    return new_fernet.encrypt(plaintext).decode()

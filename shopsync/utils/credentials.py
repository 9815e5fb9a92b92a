"""Field-level encryption for marketplace credentials.

Access tokens, refresh tokens and API secrets are encrypted one field at a
time before they reach the database. Connectors decrypt them only inside
``PlatformConnector.unlocked_credentials()`` for the duration of a call.

The Fernet key comes from ``CREDENTIAL_ENCRYPTION_KEY``. When that is unset a
key is derived from ``SECRET_KEY`` so development setups work out of the box.
"""
import base64
import hashlib
from typing import Optional

from cryptography.fernet import Fernet, InvalidToken

from shopsync.config import Settings
from shopsync.utils.errors import ValidationError
from shopsync.utils.logger import log


def derive_fernet_key(secret: str) -> bytes:
    """Derive a valid Fernet key (32 url-safe base64 bytes) from an arbitrary secret."""
    digest = hashlib.sha256(secret.encode("utf-8")).digest()
    return base64.urlsafe_b64encode(digest)


class CredentialCipher:
    """Encrypts and decrypts individual credential fields."""

    def __init__(self, key: bytes):
        self._fernet = Fernet(key)

    @classmethod
    def from_settings(cls, settings: Settings) -> "CredentialCipher":
        if settings.credential_encryption_key:
            return cls(settings.credential_encryption_key.encode("utf-8"))
        if settings.environment == "production":
            log.warning("CREDENTIAL_ENCRYPTION_KEY not set, deriving key from SECRET_KEY")
        return cls(derive_fernet_key(settings.secret_key))

    def encrypt(self, value: Optional[str]) -> Optional[str]:
        if value is None or value == "":
            return None
        return self._fernet.encrypt(value.encode("utf-8")).decode("ascii")

    def decrypt(self, token: Optional[str]) -> Optional[str]:
        if not token:
            return None
        try:
            return self._fernet.decrypt(token.encode("ascii")).decode("utf-8")
        except InvalidToken:
            # Key rotated or data tampered with: the stored secret is unusable
            raise ValidationError("Stored credential could not be decrypted")

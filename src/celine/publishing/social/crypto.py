from __future__ import annotations

import logging

from cryptography.fernet import Fernet, InvalidToken

from celine.publishing.errors import AuthError

logger = logging.getLogger(__name__)

# Every Fernet token starts with the version byte 0x80, i.e. "gAAAAA" in base64
_FERNET_PREFIX = "gAAAAA"


class TokenCipher:
    """Encrypts social access tokens at rest.

    Rows written before encryption was enabled hold plaintext tokens; those are
    returned as-is on read. An empty key disables encryption (development).
    """

    def __init__(self, key: str | bytes | None):
        self._fernet = Fernet(key) if key else None

    @property
    def enabled(self) -> bool:
        return self._fernet is not None

    def encrypt(self, token: str) -> str:
        if self._fernet is None:
            return token
        return self._fernet.encrypt(token.encode("utf-8")).decode("ascii")

    def decrypt(self, stored: str) -> str:
        if not stored.startswith(_FERNET_PREFIX):
            return stored
        if self._fernet is None:
            raise AuthError("Encrypted access token but TOKEN_ENCRYPTION_KEY is not set")
        try:
            return self._fernet.decrypt(stored.encode("ascii")).decode("utf-8")
        except InvalidToken as e:
            logger.warning("Stored access token could not be decrypted")
            raise AuthError("Access token could not be decrypted, reconnect required") from e


def generate_key() -> str:
    return Fernet.generate_key().decode("ascii")

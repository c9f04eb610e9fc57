"""
Encryption collaborator for PII columns.

FernetEncryptionService encrypts string values with a symmetric Fernet key
(cryptography). Non-string values are encrypted from their string form, so an
encrypted column always holds a URL-safe base64 token.
"""

import logging
from typing import Any, Optional, Union

from cryptography.fernet import Fernet, InvalidToken

from ..exceptions import ConfigurationError, EncryptionError
from ..interfaces import EncryptionServiceInterface


class FernetEncryptionService(EncryptionServiceInterface):
    """Fernet-backed implementation of the encryption collaborator."""

    def __init__(self, key: Union[str, bytes]):
        """
        Initialize the service.

        Args:
            key: URL-safe base64 encoded 32-byte key, as produced by generate_key()

        Raises:
            ConfigurationError: If the key is missing or malformed
        """
        self.logger = logging.getLogger(__name__)
        if not key:
            raise ConfigurationError("Encryption key is required for PII tables")
        if isinstance(key, str):
            key = key.encode('ascii')
        try:
            self._fernet = Fernet(key)
        except (ValueError, TypeError) as e:
            raise ConfigurationError(f"Invalid encryption key: {e}")

    @staticmethod
    def generate_key() -> str:
        return Fernet.generate_key().decode('ascii')

    def encrypt(self, value: Any) -> str:
        if value is None:
            raise EncryptionError("Cannot encrypt a null value")
        try:
            return self._fernet.encrypt(str(value).encode('utf-8')).decode('ascii')
        except (TypeError, ValueError) as e:
            raise EncryptionError(f"Encryption failed: {e}")

    def decrypt(self, value: str) -> str:
        try:
            return self._fernet.decrypt(value.encode('ascii')).decode('utf-8')
        except InvalidToken:
            raise EncryptionError("Decryption failed: invalid token or wrong key")
        except (AttributeError, TypeError, ValueError) as e:
            raise EncryptionError(f"Decryption failed: {e}")


def build_encryption_service(key: Optional[str]) -> Optional[FernetEncryptionService]:
    """Return a FernetEncryptionService for the key, or None when no key is configured."""
    if not key:
        return None
    return FernetEncryptionService(key)

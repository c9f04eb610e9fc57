"""Encryption of PII columns before they reach service stores."""

from .encryption import FernetEncryptionService, build_encryption_service

__all__ = ['FernetEncryptionService', 'build_encryption_service']

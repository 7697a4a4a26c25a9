"""
Application-layer encryption for cached FHIR payloads.

The raw Patient JSON is PHI; when a key is configured it is stored as Fernet
ciphertext and decrypted back to the exact original text on read. Without a
key the service is a passthrough, so a cache written without encryption stays
readable.
"""

from cryptography.fernet import Fernet


class EncryptionService:
    """Wraps Fernet symmetric encryption for the raw payload column."""

    def __init__(self, key: str | bytes | None = None):
        if key:
            self._fernet: Fernet | None = Fernet(key.encode() if isinstance(key, str) else key)
        else:
            self._fernet = None

    @property
    def enabled(self) -> bool:
        return self._fernet is not None

    def encrypt(self, plaintext: str) -> str:
        """Encrypt a string and return base64-encoded ciphertext."""
        if not plaintext or self._fernet is None:
            return plaintext
        return self._fernet.encrypt(plaintext.encode()).decode()

    def decrypt(self, ciphertext: str) -> str:
        """Decrypt base64-encoded ciphertext back to plaintext."""
        if not ciphertext or self._fernet is None:
            return ciphertext
        return self._fernet.decrypt(ciphertext.encode()).decode()

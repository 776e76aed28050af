"""Encryption of locally persisted data using Fernet symmetric encryption."""
from typing import Optional

from cryptography.fernet import Fernet, InvalidToken


class StorageEncryption:
    """Encrypt/decrypt blobs written to local storage (offline queue payloads)."""

    def __init__(self, key: Optional[str]):
        """
        Initialize encryption with a key.

        Args:
            key: Base64-encoded Fernet key (QUEUE_ENCRYPTION_KEY).
        """
        if not key:
            raise ValueError(
                "QUEUE_ENCRYPTION_KEY is empty. Generate one with: "
                "python -c 'from cryptography.fernet import Fernet; print(Fernet.generate_key().decode())'"
            )

        self.cipher = Fernet(key.encode() if isinstance(key, str) else key)

    def encrypt(self, plaintext: str) -> str:
        """
        Encrypt a string.

        Returns:
            Base64-encoded encrypted string
        """
        if not plaintext:
            return ""

        encrypted = self.cipher.encrypt(plaintext.encode())
        return encrypted.decode()

    def decrypt(self, ciphertext: str) -> str:
        """
        Decrypt a string.

        Raises:
            ValueError: if the token was not produced with this key
        """
        if not ciphertext:
            return ""

        try:
            decrypted = self.cipher.decrypt(ciphertext.encode())
        except InvalidToken as e:
            raise ValueError("Stored data cannot be decrypted with the configured key") from e
        return decrypted.decode()


def generate_key() -> str:
    """Generate a new Fernet key for encryption."""
    return Fernet.generate_key().decode()


def build_encryption(key: Optional[str]) -> Optional[StorageEncryption]:
    """Return an encryptor when a key is configured, otherwise None."""
    return StorageEncryption(key) if key else None

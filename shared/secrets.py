"""
Secret encryption for stored environment variables and OAuth tokens.
"""
from __future__ import annotations

from typing import Dict, Mapping, Optional, Protocol

from cryptography.fernet import Fernet, InvalidToken

from shared.config import config
from shared.logger import get_logger
from workflow_core.errors import SecretDecryptionFailed

logger = get_logger("shared.secrets")


class SecretDecryptor(Protocol):
    def decrypt(self, ciphertext: str) -> str:
        ...


class FernetSecretCipher:
    """Fernet-backed cipher; values are stored as URL-safe base64 tokens."""

    def __init__(self, key: Optional[str] = None) -> None:
        key = key or config.encryption_key
        if not key:
            raise ValueError("ENCRYPTION_KEY is not configured")
        self._fernet = Fernet(key.encode() if isinstance(key, str) else key)

    @staticmethod
    def generate_key() -> str:
        return Fernet.generate_key().decode()

    def encrypt(self, plaintext: str) -> str:
        return self._fernet.encrypt(plaintext.encode("utf-8")).decode("utf-8")

    def decrypt(self, ciphertext: str) -> str:
        try:
            return self._fernet.decrypt(ciphertext.encode("utf-8")).decode("utf-8")
        except InvalidToken as exc:
            raise ValueError("invalid token or encryption key mismatch") from exc


_default_cipher: Optional[FernetSecretCipher] = None


def get_secret_cipher() -> FernetSecretCipher:
    global _default_cipher
    if _default_cipher is None:
        _default_cipher = FernetSecretCipher()
    return _default_cipher


def decrypt_env_vars(
    encrypted: Mapping[str, str],
    decryptor: Optional[SecretDecryptor] = None,
) -> Dict[str, str]:
    """
    Decrypt every variable; the first failure raises `SecretDecryptionFailed`
    so the run stops before the engine is invoked.
    """
    if not encrypted:
        return {}

    if decryptor is None:
        try:
            decryptor = get_secret_cipher()
        except ValueError as exc:
            raise SecretDecryptionFailed(next(iter(encrypted)), str(exc)) from exc

    decrypted: Dict[str, str] = {}
    for key, ciphertext in encrypted.items():
        try:
            decrypted[key] = decryptor.decrypt(ciphertext)
        except Exception as exc:
            logger.error("Failed to decrypt environment variable", extra={"key": key})
            raise SecretDecryptionFailed(key, str(exc)) from exc
    return decrypted


__all__ = ["FernetSecretCipher", "SecretDecryptor", "decrypt_env_vars", "get_secret_cipher"]

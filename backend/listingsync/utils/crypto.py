"""
Encryption of OAuth tokens at rest
"""
from typing import Optional

from cryptography.fernet import Fernet, InvalidToken

from .logger import get_logger

logger = get_logger('crypto')


class TokenCrypto:
    """
    Fernet encryption for stored credentials

    Without a key values are stored as plaintext and a warning is logged
    once, which keeps local development working without setup.
    """

    def __init__(self, key: Optional[str] = None):
        self._key = key
        self._fernet = None

        if self._key:
            try:
                self._fernet = Fernet(self._key.encode() if isinstance(self._key, str) else self._key)
            except (ValueError, TypeError) as e:
                raise ValueError(f'TOKEN_ENCRYPTION_KEY is not a valid Fernet key: {e}') from e
        else:
            logger.warning("[TokenCrypto] No TOKEN_ENCRYPTION_KEY configured, tokens are stored unencrypted")

    @property
    def is_secure(self) -> bool:
        return self._fernet is not None

    def encrypt(self, plaintext: Optional[str]) -> Optional[str]:
        if not plaintext:
            return None

        if self._fernet:
            return self._fernet.encrypt(plaintext.encode('utf-8')).decode('utf-8')
        return plaintext

    def decrypt(self, ciphertext: Optional[str]) -> Optional[str]:
        """
        Decrypt a stored value

        Rows written before a key was configured are plaintext; those are
        returned unchanged.
        """
        if not ciphertext:
            return None

        if self._fernet:
            try:
                return self._fernet.decrypt(ciphertext.encode('utf-8')).decode('utf-8')
            except InvalidToken:
                return ciphertext
        return ciphertext

    @staticmethod
    def generate_key() -> str:
        return Fernet.generate_key().decode('utf-8')


_crypto_instance: Optional[TokenCrypto] = None
_crypto_key: Optional[str] = None


def get_crypto() -> TokenCrypto:
    """
    Process-wide crypto instance built from the active app config

    Rebuilt when the configured key changes (tests switch apps).
    """
    global _crypto_instance, _crypto_key
    from flask import current_app, has_app_context

    key = current_app.config.get('TOKEN_ENCRYPTION_KEY') if has_app_context() else None
    if _crypto_instance is None or key != _crypto_key:
        _crypto_instance = TokenCrypto(key)
        _crypto_key = key
    return _crypto_instance


def encrypt_token(value: Optional[str]) -> Optional[str]:
    return get_crypto().encrypt(value)


def decrypt_token(value: Optional[str]) -> Optional[str]:
    return get_crypto().decrypt(value)

"""
dsconfig Secret Cipher — Encrypted configuration values using Fernet
symmetric encryption.

A password (or any other value) in application.yml may be written as
``ENC(<fernet token>)`` so the clear secret never lands in version control.
Tokens are produced by ``dsconfig encrypt`` and decrypted in memory while
the configuration is resolved.

Security model:
    - Fernet (AES-128-CBC + HMAC-SHA256)
    - Key derived from DSCONFIG_SECRET_KEY (SHA-256, url-safe base64)
    - Decrypted values live only on the SecretStr of the normalized record
"""

from __future__ import annotations

import base64
import hashlib
import logging
import os
import re
from typing import Mapping, Optional

from cryptography.fernet import Fernet, InvalidToken

from dsconfig.engine.errors import SecretDecryptionError

logger = logging.getLogger("dsconfig.engine.credentials")

SECRET_KEY_ENV = "DSCONFIG_SECRET_KEY"

_ENC_PATTERN = re.compile(r"^\s*ENC\((?P<token>[^)]*)\)\s*$")


def is_encrypted(value: object) -> bool:
    """True if *value* is an ``ENC(...)`` wrapped token."""
    return isinstance(value, str) and _ENC_PATTERN.match(value) is not None


class SecretCipher:
    """
    Encrypts and decrypts ``ENC(...)`` configuration values.

    Usage:
        cipher = SecretCipher(secret_key="...")
        token = cipher.encrypt("studfolio123")   # "ENC(gAAAA...)"
        cipher.decrypt(token)                     # "studfolio123"
    """

    def __init__(
        self,
        secret_key: Optional[str] = None,
        environ: Optional[Mapping[str, str]] = None,
    ):
        env = os.environ if environ is None else environ
        self._key_source = secret_key or env.get(SECRET_KEY_ENV)
        self._fernet: Optional[Fernet] = (
            self._build_fernet(self._key_source) if self._key_source else None
        )

    @staticmethod
    def _build_fernet(secret_key: str) -> Fernet:
        """Derive a 32-byte Fernet key from an arbitrary secret string."""
        derived = hashlib.sha256(secret_key.encode("utf-8")).digest()
        return Fernet(base64.urlsafe_b64encode(derived))

    @property
    def configured(self) -> bool:
        return self._fernet is not None

    def _require_fernet(self) -> Fernet:
        if self._fernet is None:
            raise SecretDecryptionError(
                f"No secret key configured; set {SECRET_KEY_ENV}",
                source="credentials",
            )
        return self._fernet

    def encrypt(self, value: str) -> str:
        """Encrypt a clear value and wrap it as ``ENC(<token>)``."""
        token = self._require_fernet().encrypt(value.encode("utf-8"))
        return f"ENC({token.decode('ascii')})"

    def decrypt(self, value: str) -> str:
        """
        Decrypt an ``ENC(<token>)`` value (or a bare token).

        Raises:
            SecretDecryptionError: Wrong key, corrupted token, or no key set.
        """
        match = _ENC_PATTERN.match(value)
        token = match.group("token") if match else value.strip()
        fernet = self._require_fernet()
        try:
            return fernet.decrypt(token.encode("ascii")).decode("utf-8")
        except (InvalidToken, UnicodeError, ValueError):
            raise SecretDecryptionError(
                "Failed to decrypt ENC(...) value; the secret key may have changed",
                source="credentials",
            )


def encrypt_value(value: str, secret_key: Optional[str] = None) -> str:
    """Convenience: encrypt a value with the configured key."""
    return SecretCipher(secret_key=secret_key).encrypt(value)

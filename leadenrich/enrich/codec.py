"""Encryption boundary for credit payloads.

Credit vendor responses are sealed right after they arrive and only opened when
the pipeline validates and merges them; nothing at rest holds plaintext.
"""

from __future__ import annotations

import base64
import json
from typing import Any

from cryptography.fernet import Fernet, InvalidToken
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from leadenrich.config import settings
from leadenrich.errors import CodecError
from leadenrich.schemas import utcnow

ALGORITHM = "fernet"
_KDF_SALT = b"leadenrich.credit.v1"
_KDF_ITERATIONS = 200_000


def _derive_key(secret: str | bytes) -> bytes:
    raw = secret.encode("utf-8") if isinstance(secret, str) else secret
    try:
        Fernet(raw)
        return raw
    except (ValueError, TypeError):
        kdf = PBKDF2HMAC(algorithm=hashes.SHA256(), length=32, salt=_KDF_SALT, iterations=_KDF_ITERATIONS)
        return base64.urlsafe_b64encode(kdf.derive(raw))


class SensitiveDataCodec:
    def __init__(self, secret: str | bytes | None = None) -> None:
        secret = settings.CREDIT_DATA_ENCRYPTION_KEY if secret is None else secret
        self._fernet = Fernet(_derive_key(secret)) if secret else None

    @property
    def is_configured(self) -> bool:
        return self._fernet is not None

    @staticmethod
    def is_envelope(value: Any) -> bool:
        return isinstance(value, dict) and value.get("algorithm") == ALGORITHM and "ciphertext" in value

    def encrypt(self, payload: dict) -> dict:
        if self._fernet is None:
            raise CodecError("Credit data encryption key not configured")
        token = self._fernet.encrypt(json.dumps(payload, default=str).encode("utf-8"))
        return {
            "algorithm": ALGORITHM,
            "ciphertext": token.decode("ascii"),
            "encrypted_at": utcnow().isoformat(),
        }

    def decrypt(self, envelope: dict) -> dict:
        if self._fernet is None:
            raise CodecError("Credit data encryption key not configured")
        if not self.is_envelope(envelope):
            raise CodecError("Payload is not an encrypted envelope")
        try:
            plain = self._fernet.decrypt(envelope["ciphertext"].encode("ascii"))
        except InvalidToken as exc:
            raise CodecError("Encrypted payload failed authentication") from exc
        return json.loads(plain)

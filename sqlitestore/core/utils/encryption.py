"""
Encryption utilities for session bodies and session cookie values.
"""

import base64
import hashlib
import json
import logging
from functools import lru_cache
from typing import Any, Dict, Optional, Sequence

from cryptography.fernet import Fernet, InvalidToken, MultiFernet
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from sqlitestore.exceptions import SessionDecodeError, SessionEncryptionError

logger = logging.getLogger(__name__)

MIN_KDF_ITERATIONS = 100_000
MAX_KDF_ITERATIONS = 1_000_000
DEFAULT_KDF_ITERATIONS = 300_000


def _clamp_kdf_iterations(kdf_iterations: Any) -> int:
    """Parse and bound the KDF iteration count"""
    try:
        kdf_iterations = int(kdf_iterations)
    except (ValueError, TypeError):
        logger.warning(f"Invalid KDF iterations value, using default: {DEFAULT_KDF_ITERATIONS}")
        return DEFAULT_KDF_ITERATIONS

    if kdf_iterations > MAX_KDF_ITERATIONS:
        logger.warning(f"KDF iterations {kdf_iterations} exceeds maximum, using {MAX_KDF_ITERATIONS}")
        return MAX_KDF_ITERATIONS
    if kdf_iterations < MIN_KDF_ITERATIONS:
        logger.warning(f"KDF iterations {kdf_iterations} below recommended minimum, using {DEFAULT_KDF_ITERATIONS}")
        return DEFAULT_KDF_ITERATIONS
    return kdf_iterations


@lru_cache(maxsize=32)
def _derive_fernet(secret_key: str, kdf_iterations: int) -> Fernet:
    """Derive a Fernet cipher from a secret key.

    The salt is derived from the secret itself so every process sharing the
    secret derives the same key.
    """
    secret_bytes = secret_key.encode('utf-8')
    salt = hashlib.sha256(secret_bytes).digest()[:16]
    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA256(),
        length=32,
        salt=salt,
        iterations=kdf_iterations,
    )
    key = base64.urlsafe_b64encode(kdf.derive(secret_bytes))
    return Fernet(key)


class SessionCodec:
    """Encrypts session bodies and cookie ids, bound to the session name.

    The first secret key encrypts; every key (including rotation fallbacks)
    is tried when decrypting.
    """

    def __init__(self, secret_keys: Sequence[str], max_age: int = 0, kdf_iterations: int = DEFAULT_KDF_ITERATIONS):
        if not secret_keys or not all(secret_keys):
            raise ValueError("At least one non-empty secret key is required")
        iterations = _clamp_kdf_iterations(kdf_iterations)
        self.cipher = MultiFernet([_derive_fernet(key, iterations) for key in secret_keys])
        self.max_age = max_age

    def _encrypt(self, payload: Dict[str, Any]) -> str:
        try:
            raw = json.dumps(payload, separators=(",", ":")).encode('utf-8')
        except (TypeError, ValueError) as e:
            logger.error(f"Failed to serialize session data: {e}")
            raise SessionEncryptionError(f"Session data is not serializable: {e}") from e
        return self.cipher.encrypt(raw).decode('ascii')

    def _decrypt(self, name: str, token: str, ttl: Optional[int] = None) -> Dict[str, Any]:
        try:
            raw = self.cipher.decrypt(token.encode('ascii'), ttl=ttl)
            payload = json.loads(raw)
        except (InvalidToken, UnicodeError, ValueError, AttributeError) as e:
            raise SessionDecodeError("Session value could not be decrypted") from e

        if not isinstance(payload, dict) or payload.get("name") != name:
            raise SessionDecodeError(f"Session value was not issued for session {name!r}")
        return payload

    def encode_values(self, name: str, values: Dict[str, Any]) -> str:
        """Encrypt a session attribute bag"""
        return self._encrypt({"name": name, "values": values})

    def decode_values(self, name: str, token: str) -> Dict[str, Any]:
        """Decrypt a session attribute bag written under ``name``"""
        values = self._decrypt(name, token).get("values")
        if not isinstance(values, dict):
            raise SessionDecodeError("Session body is not a mapping")
        return values

    def encode_id(self, name: str, session_id: str) -> str:
        """Encrypt a session id for the cookie"""
        return self._encrypt({"name": name, "id": session_id})

    def decode_id(self, name: str, token: str) -> str:
        """Decrypt a cookie value; tokens older than max_age are rejected"""
        ttl = self.max_age if self.max_age > 0 else None
        session_id = self._decrypt(name, token, ttl=ttl).get("id")
        if not isinstance(session_id, str) or not session_id:
            raise SessionDecodeError("Session cookie carries no id")
        return session_id

"""Token encryption for credentials kept on local disk.

AES-256-GCM with a key derived through PBKDF2-HMAC-SHA256. The key comes
either from a user password (random salt stored in the envelope) or from a
deterministic fingerprint of the machine, so a token stored without a
password can only be read back on the same machine.

Envelope: base64(JSON{iv, data, salt, method}).
"""

import base64
import hashlib
import json
import locale
import logging
import os
import platform
import re
import socket
import time
from typing import Optional

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from stockbook.config import get_settings
from stockbook.core.exceptions import EncryptionError

settings = get_settings()
logger = logging.getLogger(__name__)

KEY_LENGTH = 32  # AES-256
IV_LENGTH = 12  # 96 bits for GCM
SALT_LENGTH = 16

METHOD_PASSWORD = "password"
METHOD_MACHINE = "machine"

TOKEN_PATTERN = re.compile(r"^[A-Za-z0-9_]+$")


def machine_fingerprint() -> str:
    """Stable description of the runtime this process runs on."""
    runtime = f"{platform.python_implementation()}/{platform.python_version()} ({platform.platform()})"
    language = locale.getlocale()[0] or "C"
    return "|".join([
        runtime,
        language,
        socket.gethostname(),
        str(time.timezone),
        settings.ENCRYPTION_APP_SALT,
    ])


def _b64(raw: bytes) -> str:
    return base64.b64encode(raw).decode("ascii")


def _unb64(text: str) -> bytes:
    return base64.b64decode(text)


class TokenCipher:
    """Encrypts and decrypts personal access tokens.

    `fingerprint` overrides the machine fingerprint (tests, or a fixed
    identity shared between machines).
    """

    def __init__(self, fingerprint: Optional[str] = None, iterations: Optional[int] = None):
        self._fingerprint = fingerprint
        self.iterations = iterations or settings.PBKDF2_ITERATIONS

    @property
    def fingerprint(self) -> str:
        return self._fingerprint if self._fingerprint is not None else machine_fingerprint()

    def _derive(self, material: bytes, salt: bytes) -> bytes:
        kdf = PBKDF2HMAC(
            algorithm=hashes.SHA256(),
            length=KEY_LENGTH,
            salt=salt,
            iterations=self.iterations,
        )
        return kdf.derive(material)

    def _password_key(self, password: str, salt: bytes) -> bytes:
        return self._derive(password.encode("utf-8"), salt)

    def _machine_key(self) -> bytes:
        digest = hashlib.sha256(self.fingerprint.encode("utf-8")).digest()
        # First half of the digest doubles as the salt
        return self._derive(digest, digest[:SALT_LENGTH])

    def encrypt(self, token: str, password: Optional[str] = None) -> str:
        try:
            salt = None
            if password:
                salt = os.urandom(SALT_LENGTH)
                key = self._password_key(password, salt)
            else:
                key = self._machine_key()

            iv = os.urandom(IV_LENGTH)
            ciphertext = AESGCM(key).encrypt(iv, token.encode("utf-8"), None)
        except (TypeError, ValueError) as e:
            logger.error(f"Encryption failed: {e}")
            raise EncryptionError("Failed to encrypt token") from e

        envelope = {
            "iv": _b64(iv),
            "data": _b64(ciphertext),
            "salt": _b64(salt) if salt else None,
            "method": METHOD_PASSWORD if password else METHOD_MACHINE,
        }
        return _b64(json.dumps(envelope).encode("utf-8"))

    def decrypt(self, encrypted: str, password: Optional[str] = None) -> str:
        try:
            envelope = json.loads(_unb64(encrypted))
            iv = _unb64(envelope["iv"])
            data = _unb64(envelope["data"])
        except (ValueError, KeyError, TypeError) as e:
            logger.error(f"Decryption failed, malformed envelope: {e}")
            raise EncryptionError("Failed to decrypt token") from e

        if envelope.get("method") == METHOD_PASSWORD and envelope.get("salt"):
            if not password:
                raise EncryptionError("Password required for decryption")
            key = self._password_key(password, _unb64(envelope["salt"]))
        else:
            key = self._machine_key()

        try:
            return AESGCM(key).decrypt(iv, data, None).decode("utf-8")
        except (InvalidTag, ValueError) as e:
            logger.error("Decryption failed, wrong key or tampered data")
            raise EncryptionError("Failed to decrypt token") from e


def is_valid_github_token(token: Optional[str]) -> bool:
    """Basic shape check: at least 40 characters of [A-Za-z0-9_]."""
    if not token or not isinstance(token, str):
        return False
    return len(token) >= 40 and bool(TOKEN_PATTERN.match(token))

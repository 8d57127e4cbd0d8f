# sandcastle/core/security.py
import base64
import binascii
import os
from typing import Optional, Dict, Any

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from jose import JWTError, jwt

from sandcastle.core.config import Settings, ENCRYPTION_KEY_HEX_LENGTH
from sandcastle.core.exceptions import AuthenticationError, ConfigError


NONCE_LENGTH = 12
TAG_LENGTH = 16
ALGORITHM = "HS256"


class CredentialVault:
    """
    AES-256-GCM encryption for OAuth tokens at rest.

    Blob layout is base64(nonce | tag | ciphertext), so a stored value carries
    everything `decrypt` needs apart from the key. Empty input maps to None
    in both directions.
    """

    def __init__(self, settings: Settings):
        key = settings.ENCRYPTION_KEY or ""
        if len(key) != ENCRYPTION_KEY_HEX_LENGTH:
            raise ConfigError("ENCRYPTION_KEY must be a 32-byte hex string")
        try:
            self._aead = AESGCM(bytes.fromhex(key))
        except ValueError as e:
            raise ConfigError("ENCRYPTION_KEY must be a 32-byte hex string") from e

    def encrypt(self, plain_text: Optional[str]) -> Optional[str]:
        if not plain_text:
            return None
        nonce = os.urandom(NONCE_LENGTH)
        sealed = self._aead.encrypt(nonce, plain_text.encode("utf-8"), None)
        # AESGCM appends the tag; store it ahead of the ciphertext
        cipher_text, tag = sealed[:-TAG_LENGTH], sealed[-TAG_LENGTH:]
        return base64.b64encode(nonce + tag + cipher_text).decode("ascii")

    def decrypt(self, payload: Optional[str]) -> Optional[str]:
        if not payload:
            return None
        try:
            raw = base64.b64decode(payload, validate=True)
        except (binascii.Error, ValueError) as e:
            raise AuthenticationError("Credential blob is not valid base64") from e
        if len(raw) < NONCE_LENGTH + TAG_LENGTH:
            raise AuthenticationError("Credential blob is truncated")

        nonce = raw[:NONCE_LENGTH]
        tag = raw[NONCE_LENGTH:NONCE_LENGTH + TAG_LENGTH]
        cipher_text = raw[NONCE_LENGTH + TAG_LENGTH:]
        try:
            plain = self._aead.decrypt(nonce, cipher_text + tag, None)
        except InvalidTag as e:
            raise AuthenticationError("Credential blob failed authentication") from e
        return plain.decode("utf-8")


# ==================== BEARER TOKENS ====================
def verify_access_token(token: str, settings: Settings) -> Optional[Dict[str, Any]]:
    """Verify a JWT access token issued by the login service"""
    try:
        payload = jwt.decode(token, settings.SECRET_KEY, algorithms=[ALGORITHM])
        if payload.get("type") != "access":
            return None
        return payload
    except JWTError:
        return None

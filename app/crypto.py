from __future__ import annotations

import json
import logging
from typing import Optional

from cryptography.fernet import Fernet, InvalidToken

from app.errors import CipherError

logger = logging.getLogger("support_chat.crypto")


class MessageCipher:
    """Symmetric, keyed encryption for transcript payloads (Fernet)."""

    def __init__(self, key: str):
        try:
            self._fernet = Fernet(key.encode("utf-8") if isinstance(key, str) else key)
        except (ValueError, TypeError) as e:
            raise CipherError(f"invalid encryption key: {e}") from e

    def encrypt(self, text: str) -> str:
        return self._fernet.encrypt(text.encode("utf-8")).decode("ascii")

    def decrypt(self, blob: str) -> str:
        try:
            return self._fernet.decrypt(blob.encode("ascii")).decode("utf-8")
        except (InvalidToken, UnicodeError) as e:
            raise CipherError("message payload could not be decrypted") from e


def build_cipher(key: Optional[str], production: bool) -> MessageCipher:
    """Return a cipher for ``key``; outside production a missing key gets an ephemeral one."""
    if key:
        return MessageCipher(key)
    if production:
        raise CipherError("ENCRYPTION_KEY is required in production")
    logger.warning(json.dumps({
        "event": "encryption_key_ephemeral",
        "detail": "ENCRYPTION_KEY not set; stored transcripts will be unreadable after restart",
    }))
    return MessageCipher(Fernet.generate_key().decode("ascii"))

from __future__ import annotations

import json
import logging
import time
import uuid
from typing import Optional, Tuple

import jwt
from fastapi import Request

from app.config import Settings
from app.errors import AuthError

logger = logging.getLogger("support_chat.auth")

ALGORITHM = "HS256"


def issue_guest_token(settings: Settings, now: Optional[float] = None) -> Tuple[str, str]:
    """Mint a bearer credential for a new guest identity. Returns (token, user_id)."""
    issued = int(now if now is not None else time.time())
    user_id = f"guest-{uuid.uuid4()}"
    payload = {
        "sub": user_id,
        "iat": issued,
        "exp": issued + settings.token_ttl_seconds,
        "guest": True,
    }
    token = jwt.encode(payload, settings.jwt_secret, algorithm=ALGORITHM)
    return token, user_id


def verify_token(token: str, settings: Settings) -> str:
    """Return the user id carried by ``token`` or raise AuthError."""
    try:
        claims = jwt.decode(token, settings.jwt_secret, algorithms=[ALGORITHM])
    except jwt.ExpiredSignatureError as e:
        raise AuthError("Token expired") from e
    except jwt.InvalidTokenError as e:
        raise AuthError("Token is not valid") from e
    sub = claims.get("sub")
    if not sub:
        raise AuthError("Token is not valid")
    return str(sub)


async def require_user(request: Request) -> str:
    """FastAPI dependency: authenticate the bearer credential and return the user id."""
    header = request.headers.get("Authorization") or ""
    scheme, _, token = header.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        raise AuthError("No token, authorization denied")
    try:
        user_id = verify_token(token.strip(), request.app.state.settings)
    except AuthError as e:
        logger.info(json.dumps({
            "event": "auth_rejected",
            "reason": str(e),
            "requestId": getattr(request.state, "request_id", None),
        }))
        raise
    # Picked up by the request log line
    request.state.user_id = user_id
    return user_id

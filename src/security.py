"""
security.py

Password hashing (bcrypt) and bearer-token handling (JWT, HS256).

Tokens carry the user's id in `sub` plus email, name and role name for the
client's convenience.  Authorization never trusts the `role` claim: the
acting user's grants are reloaded from the database on every request.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict

import bcrypt
import jwt

logger = logging.getLogger(__name__)

ALGORITHM = "HS256"


class TokenError(Exception):
    """Raised when a bearer token is missing, malformed, expired or forged."""


def hash_password(password: str) -> str:
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def verify_password(password: str, password_hash: str) -> bool:
    try:
        return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))
    except ValueError:
        # Not a bcrypt hash (e.g. an imported legacy row)
        logger.warning("Stored password hash is not a valid bcrypt hash")
        return False


def create_token(
    user_id: int,
    email: str,
    name: str,
    role: str,
    secret: str,
    expires_in: timedelta,
) -> str:
    now = datetime.now(timezone.utc)
    payload = {
        "sub": str(user_id),
        "email": email,
        "name": name,
        "role": role,
        "iat": now,
        "exp": now + expires_in,
    }
    return jwt.encode(payload, secret, algorithm=ALGORITHM)


def decode_token(token: str, secret: str) -> Dict[str, Any]:
    try:
        claims = jwt.decode(token, secret, algorithms=[ALGORITHM])
    except jwt.ExpiredSignatureError as exc:
        raise TokenError("Token has expired") from exc
    except jwt.InvalidTokenError as exc:
        raise TokenError("Invalid token") from exc
    try:
        claims["sub"] = int(claims["sub"])
    except (KeyError, TypeError, ValueError) as exc:
        raise TokenError("Invalid token") from exc
    return claims

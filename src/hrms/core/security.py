"""Passwords, access tokens and signed login links.

Two kinds of JWT are issued with the same key, told apart by the "type"
claim:

- "access": session token sent as a Bearer header or access_token cookie
- "login_link": the signature query parameter of a welcome link, valid for
  one user on one tenant domain

Passwords are hashed with bcrypt; the cost comes from BCRYPT_ROUNDS.
"""

from __future__ import annotations

import logging
import secrets
import string
from datetime import datetime, timedelta, timezone
from typing import Any

import bcrypt
from fastapi import HTTPException, status
from jose import JWTError, jwt

from src.hrms.config import get_settings
from src.hrms.core.exceptions import InvalidLoginLinkError

logger = logging.getLogger(__name__)

ACCESS_TOKEN_TYPE = "access"
LOGIN_LINK_TOKEN_TYPE = "login_link"

_PASSWORD_ALPHABET = string.ascii_letters + string.digits


def hash_password(password: str) -> str:
    rounds = get_settings().BCRYPT_ROUNDS
    digest = bcrypt.hashpw(password.encode(), bcrypt.gensalt(rounds=rounds))
    return digest.decode()


def verify_password(plain: str, hashed: str) -> bool:
    return bcrypt.checkpw(plain.encode(), hashed.encode())


def generate_password(length: int = 16) -> str:
    """Random alphanumeric password for accounts created on someone's behalf."""
    return "".join(secrets.choice(_PASSWORD_ALPHABET) for _ in range(length))


def _sign(claims: dict[str, Any], token_type: str, lifetime: timedelta) -> str:
    settings = get_settings()
    issued_at = datetime.now(timezone.utc)
    body = {**claims, "type": token_type, "iat": issued_at, "exp": issued_at + lifetime}
    return jwt.encode(body, settings.JWT_SECRET_KEY, algorithm=settings.JWT_ALGORITHM)


def _claims(token: str) -> dict[str, Any]:
    """Decoded claims; raises JWTError on a bad signature or expiry."""
    settings = get_settings()
    return jwt.decode(token, settings.JWT_SECRET_KEY, algorithms=[settings.JWT_ALGORITHM])


def create_access_token(data: dict, expires_delta: timedelta | None = None) -> str:
    """Session token. `data` carries sub (user id), tenant_id and tenant_slug."""
    lifetime = expires_delta or timedelta(minutes=get_settings().JWT_ACCESS_TOKEN_EXPIRE_MINUTES)
    return _sign(data, ACCESS_TOKEN_TYPE, lifetime)


def create_login_link(
    user_id: str,
    tenant_id: str,
    host: str,
    scheme: str = "https",
    expires_delta: timedelta | None = None,
) -> str:
    """URL that logs `user_id` in on `host` until the signature expires."""
    lifetime = expires_delta or timedelta(minutes=get_settings().LOGIN_LINK_EXPIRE_MINUTES)
    signature = _sign({"sub": str(user_id), "tenant_id": str(tenant_id)}, LOGIN_LINK_TOKEN_TYPE, lifetime)
    return f"{scheme}://{host}/auth/login/{user_id}?signature={signature}"


def verify_token(token: str, token_type: str = ACCESS_TOKEN_TYPE) -> dict:
    """Claims of a valid token of `token_type`, else HTTP 401."""
    try:
        claims = _claims(token)
    except JWTError:
        claims = {}

    if claims.get("type") != token_type or not claims.get("sub"):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Could not validate credentials",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return claims


def verify_login_token(signature: str, user_id: str) -> dict:
    """Claims of a login link signature issued for `user_id`.

    Raises InvalidLoginLinkError (403) when the signature is forged or
    expired, is not a login link, names another user or carries no tenant.
    """
    try:
        claims = _claims(signature)
    except JWTError as exc:
        logger.warning("Rejected login link for user %s: %s", user_id, exc)
        raise InvalidLoginLinkError() from exc

    mismatched = (
        claims.get("type") != LOGIN_LINK_TOKEN_TYPE
        or claims.get("sub") != str(user_id)
        or not claims.get("tenant_id")
    )
    if mismatched:
        logger.warning("Rejected login link for user %s: claims mismatch", user_id)
        raise InvalidLoginLinkError()
    return claims

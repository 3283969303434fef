import logging
from datetime import datetime, timedelta, timezone
from typing import Any

import jwt
from fastapi import Request

from spendwise.core.config import settings
from spendwise.core.errors import AuthError

logger = logging.getLogger(__name__)

ALGORITHM = "HS256"


def _sign(claims: dict[str, Any], secret: str, days: int) -> str:
    now = datetime.now(timezone.utc)
    payload = dict(claims, iat=now, exp=now + timedelta(days=days))
    return jwt.encode(payload, secret, algorithm=ALGORITHM)


def create_access_token(user_id: int, email: str | None) -> str:
    return _sign({"userId": int(user_id), "email": email}, settings.secret_key, settings.access_token_days)


def create_refresh_token(user_id: int) -> str:
    return _sign({"userId": int(user_id)}, settings.refresh_key, settings.refresh_token_days)


def issue_tokens(cur, user_id: int, email: str | None) -> tuple[str, str]:
    """Sign an access/refresh pair and store the refresh token, replacing any previous one."""
    access_token = create_access_token(user_id, email)
    refresh_token = create_refresh_token(user_id)
    cur.execute("UPDATE users SET refresh_token=%s WHERE id=%s", (refresh_token, user_id))
    return access_token, refresh_token


def verify_access_token(token: str) -> dict[str, Any]:
    try:
        return jwt.decode(token, settings.secret_key, algorithms=[ALGORITHM])
    except jwt.ExpiredSignatureError as exc:
        logger.info("Rejected expired access token")
        raise AuthError("Token expired", details=str(exc), status_code=403)
    except jwt.InvalidTokenError as exc:
        logger.info("Rejected invalid access token")
        raise AuthError("Invalid token", details=str(exc), status_code=403)


def rotate_access_token(cur, refresh_token: str) -> str:
    """Exchange a stored refresh token for a new access token.

    The presented token must equal the one stored for the user, so a token
    replaced by a later login no longer works. The refresh token itself is
    left unchanged.
    """
    if not refresh_token:
        raise AuthError("Refresh token required")
    try:
        claims = jwt.decode(refresh_token, settings.refresh_key, algorithms=[ALGORITHM])
    except jwt.InvalidTokenError as exc:
        raise AuthError("Invalid refresh token", details=str(exc))

    cur.execute(
        "SELECT id, email FROM users WHERE id=%s AND refresh_token=%s",
        (claims.get("userId"), refresh_token),
    )
    user = cur.fetchone()
    if not user:
        logger.info("Refresh token for user %s does not match the stored token", claims.get("userId"))
        raise AuthError("Invalid refresh token")
    return create_access_token(user["id"], user["email"])


def parse_bearer_token(req: Request) -> str:
    header = req.headers.get("authorization", "")
    if not header:
        raise AuthError("No authorization header")
    parts = header.split(" ", 1)
    if len(parts) != 2 or parts[0].lower() != "bearer" or not parts[1].strip():
        raise AuthError("No token provided")
    return parts[1].strip()


def require_user_id(req: Request) -> int:
    claims = verify_access_token(parse_bearer_token(req))
    user_id = claims.get("userId")
    if user_id is None:
        raise AuthError("User ID not found in token payload.")
    try:
        return int(user_id)
    except (TypeError, ValueError):
        raise AuthError("Invalid token", status_code=403)

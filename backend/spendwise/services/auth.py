import logging
from typing import Any

from fastapi import Request
from passlib.hash import bcrypt

from spendwise.core.config import settings
from spendwise.core.errors import AppError, AuthError, ConflictError, ValidationError
from spendwise.services.state import rate_limiter
from spendwise.services.tokens import issue_tokens

logger = logging.getLogger(__name__)

SAFE_USER_COLUMNS = "id, first_name, last_name, email, phone_number, profile_photo"

SIGNUP_REQUIRED = ("first_name", "last_name", "email", "phone_number", "password")


def get_client_ip(req: Request) -> str:
    forwarded = req.headers.get("x-forwarded-for", "")
    if forwarded:
        return forwarded.split(",")[0].strip()
    real_ip = req.headers.get("x-real-ip", "")
    if real_ip:
        return real_ip.strip()
    if req.client:
        return req.client.host
    return "unknown"


def enforce_signup_rate_limit(req: Request) -> None:
    client_ip = get_client_ip(req)
    if rate_limiter.exceeded(f"signup:ip:{client_ip}", settings.signup_rate_limit, settings.signup_rate_window):
        raise AppError("Too many signup attempts. Try again later.", status_code=429)


def enforce_login_rate_limit(req: Request, email: str) -> None:
    client_ip = get_client_ip(req)
    if rate_limiter.exceeded(f"login:ip:{client_ip}", settings.login_rate_limit, settings.login_rate_window):
        raise AppError("Too many login attempts. Try again later.", status_code=429)
    if rate_limiter.exceeded(f"login:email:{email.lower()}", settings.login_rate_limit, settings.login_rate_window):
        raise AppError("Too many login attempts. Try again later.", status_code=429)


def safe_user(row: dict[str, Any]) -> dict[str, Any]:
    return {
        "id": row["id"],
        "first_name": row.get("first_name"),
        "last_name": row.get("last_name"),
        "email": row.get("email"),
        "phone_number": row.get("phone_number"),
        "profile_photo": row.get("profile_photo"),
    }


def signup_user(cur, data: dict[str, Any], profile_photo: str | None = None) -> dict[str, Any]:
    fields = {name: (data.get(name) or "").strip() for name in SIGNUP_REQUIRED}
    if not all(fields.values()):
        raise ValidationError("Missing required fields")
    if not settings.email_re.fullmatch(fields["email"]):
        raise ValidationError("Invalid email format")
    if len(fields["password"]) < settings.password_min_len:
        raise ValidationError(f"Password too short (min {settings.password_min_len})")
    if len(fields["password"].encode("utf-8")) > 72:
        raise ValidationError("Password too long (max 72 bytes)")

    cur.execute("SELECT id FROM users WHERE phone_number=%s", (fields["phone_number"],))
    if cur.fetchone():
        raise ConflictError("Phone number already registered")
    cur.execute("SELECT id FROM users WHERE email=%s", (fields["email"],))
    if cur.fetchone():
        raise ConflictError("Email already registered")

    cur.execute(
        f"""
        INSERT INTO users (first_name, last_name, email, phone_number, password, profile_photo)
        VALUES (%s, %s, %s, %s, %s, %s)
        RETURNING {SAFE_USER_COLUMNS}
        """,
        (
            fields["first_name"],
            fields["last_name"],
            fields["email"],
            fields["phone_number"],
            bcrypt.hash(fields["password"]),
            profile_photo,
        ),
    )
    user = safe_user(cur.fetchone())
    logger.info("Registered user %s", user["id"])
    return user


def authenticate(cur, email: str, password: str) -> dict[str, Any]:
    """Check credentials and issue a fresh token pair."""
    email = (email or "").strip()
    password = (password or "").strip()
    if not email or not password:
        raise ValidationError("Email and password are required")

    cur.execute(f"SELECT {SAFE_USER_COLUMNS}, password FROM users WHERE email=%s", (email,))
    user = cur.fetchone()
    if not user or not user.get("password") or not bcrypt.verify(password, user["password"]):
        raise AuthError("Invalid email or password")

    token, refresh_token = issue_tokens(cur, user["id"], user["email"])
    logger.info("User %s logged in", user["id"])
    return {"message": "Login successful", "token": token, "refreshToken": refresh_token, "user": safe_user(user)}


def google_login(cur, data: dict[str, Any]) -> dict[str, Any]:
    google_id = (data.get("google_id") or "").strip()
    email = (data.get("email") or "").strip()
    if not google_id or not email:
        raise ValidationError("Google authentication failed")

    cur.execute(f"SELECT {SAFE_USER_COLUMNS} FROM users WHERE google_id=%s", (google_id,))
    user = cur.fetchone()
    message = "Login successful"
    if not user:
        cur.execute("SELECT id FROM users WHERE email=%s", (email,))
        if cur.fetchone():
            raise ConflictError("Email already registered")
        cur.execute(
            f"""
            INSERT INTO users (google_id, first_name, last_name, email, profile_photo)
            VALUES (%s, %s, %s, %s, %s)
            RETURNING {SAFE_USER_COLUMNS}
            """,
            (google_id, data.get("first_name"), data.get("last_name"), email, data.get("profile_photo")),
        )
        user = cur.fetchone()
        message = "User registered successfully"
        logger.info("Registered Google user %s", user["id"])

    token, refresh_token = issue_tokens(cur, user["id"], user["email"])
    return {"message": message, "token": token, "refreshToken": refresh_token, "user": safe_user(user)}

from datetime import datetime, timedelta, timezone

import jwt

from booking_backend.core import config

ROLE_ADMIN = "admin"
ROLE_PLATFORM_ADMIN = "platform_admin"
ADMIN_ROLES = {ROLE_ADMIN, ROLE_PLATFORM_ADMIN}


def _encode(payload: dict, secret: str, expires_minutes: int | None) -> str:
    issued_at = datetime.now(timezone.utc)
    expire = issued_at + timedelta(minutes=expires_minutes or config.JWT_EXPIRES_MINUTES)
    return jwt.encode({**payload, "exp": expire, "iat": issued_at}, secret, algorithm=config.JWT_ALGORITHM)


def create_widget_token(company_id: int, expires_minutes: int | None = None) -> str:
    return _encode({"company_id": company_id}, config.WIDGET_JWT_SECRET, expires_minutes)


def create_admin_token(
    subject: str,
    company_id: int | None,
    role: str = ROLE_ADMIN,
    expires_minutes: int | None = None,
) -> str:
    payload = {"sub": subject, "company_id": company_id, "role": role}
    return _encode(payload, config.ADMIN_JWT_SECRET, expires_minutes)


def decode_widget_token(token: str) -> dict:
    return jwt.decode(token, config.WIDGET_JWT_SECRET, algorithms=[config.JWT_ALGORITHM])


def decode_admin_token(token: str) -> dict:
    return jwt.decode(token, config.ADMIN_JWT_SECRET, algorithms=[config.JWT_ALGORITHM])

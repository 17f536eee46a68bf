import os

from dotenv import load_dotenv

load_dotenv()


def _get_bool(value: str | None, default: bool = False) -> bool:
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _get_int(value: str | None, default: int) -> int:
    if value is None or not value.strip():
        return default
    try:
        return int(value)
    except ValueError:
        return default


APP_ENV = os.getenv("APP_ENV", "development")

DATABASE_URL = os.getenv("DATABASE_URL")
DATABASE_ECHO = _get_bool(os.getenv("DATABASE_ECHO"), default=False)

CORS_ALLOW_ORIGINS = [
    origin.strip()
    for origin in os.getenv("CORS_ALLOW_ORIGINS", "http://localhost:3000").split(",")
    if origin.strip()
]

# Timezone used for tenants without a calendar settings row.
DEFAULT_TIMEZONE = os.getenv("DEFAULT_TIMEZONE", "UTC")

WIDGET_JWT_SECRET = os.getenv("WIDGET_JWT_SECRET", "change-me")
ADMIN_JWT_SECRET = os.getenv("ADMIN_JWT_SECRET", WIDGET_JWT_SECRET)
JWT_ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")
JWT_EXPIRES_MINUTES = _get_int(os.getenv("JWT_EXPIRES_MINUTES"), 60)

EXTERNAL_BUSY_TIMEOUT_SECONDS = float(os.getenv("EXTERNAL_BUSY_TIMEOUT_SECONDS", "5"))

GOOGLE_OAUTH_CLIENT_ID = os.getenv("GOOGLE_OAUTH_CLIENT_ID", "")
GOOGLE_OAUTH_CLIENT_SECRET = os.getenv("GOOGLE_OAUTH_CLIENT_SECRET", "")
MS_OAUTH_CLIENT_ID = os.getenv("MS_OAUTH_CLIENT_ID", "")
MS_OAUTH_CLIENT_SECRET = os.getenv("MS_OAUTH_CLIENT_SECRET", "")

ICS_PRODUCT_ID = os.getenv("ICS_PRODUCT_ID", "-//Booking Engine//Booking//EN")


def validate_runtime_config() -> None:
    from booking_backend.core.clock import load_timezone

    if APP_ENV.lower() == "production" and WIDGET_JWT_SECRET == "change-me":
        raise RuntimeError("WIDGET_JWT_SECRET must be set in production.")
    if APP_ENV.lower() == "production" and ADMIN_JWT_SECRET == "change-me":
        raise RuntimeError("ADMIN_JWT_SECRET must be set in production.")

    # Raises InvalidTimezoneError for an unknown zone identifier.
    load_timezone(DEFAULT_TIMEZONE)

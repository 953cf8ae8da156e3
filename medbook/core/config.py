import os



def _get_bool(value: str | None, default: bool = False) -> bool:
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _get_list(value: str | None, default: list[str]) -> list[str]:
    if not value:
        return default
    return [item.strip() for item in value.split(",") if item.strip()]

APP_ENV = os.getenv("APP_ENV", "development")
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

CORS_ALLOWED_ORIGINS = _get_list(os.getenv("CORS_ALLOWED_ORIGINS"), ["http://localhost:3000"])


# Availability calculator
SLOT_DURATION_MINUTES = int(os.getenv("SLOT_DURATION_MINUTES", "30"))
STANDARD_ADVANCE_BOOKING_HOURS = int(os.getenv("STANDARD_ADVANCE_BOOKING_HOURS", "24"))
DAY_NAME_LOCALE = os.getenv("DAY_NAME_LOCALE", "es")
CLINIC_TIMEZONE = os.getenv("CLINIC_TIMEZONE", "America/Bogota")
MAX_AVAILABILITY_RANGE_DAYS = int(os.getenv("MAX_AVAILABILITY_RANGE_DAYS", "90"))

# Messaging gateway and its polling guard
GATEWAY_BASE_URL = os.getenv("GATEWAY_BASE_URL", "")
GATEWAY_API_KEY = os.getenv("GATEWAY_API_KEY", "")
GATEWAY_TIMEOUT_SECONDS = float(os.getenv("GATEWAY_TIMEOUT_SECONDS", "10"))
GATEWAY_MIN_INTERVAL_SECONDS = float(os.getenv("GATEWAY_MIN_INTERVAL_SECONDS", "5"))
GATEWAY_MAX_REQUESTS_PER_WINDOW = int(os.getenv("GATEWAY_MAX_REQUESTS_PER_WINDOW", "10"))
GATEWAY_WINDOW_SECONDS = float(os.getenv("GATEWAY_WINDOW_SECONDS", "60"))
GATEWAY_COOLDOWN_SECONDS = float(os.getenv("GATEWAY_COOLDOWN_SECONDS", "60"))
GATEWAY_MAX_FAILURES = int(os.getenv("GATEWAY_MAX_FAILURES", "3"))

JWT_SECRET_KEY = os.getenv("JWT_SECRET_KEY", "change-me")
JWT_ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")
JWT_EXPIRES_MINUTES = int(os.getenv("JWT_EXPIRES_MINUTES", "60"))

def validate_runtime_config() -> None:
    if APP_ENV.lower() == "production" and JWT_SECRET_KEY == "change-me":
        raise RuntimeError("JWT_SECRET_KEY must be set in production.")
    if DAY_NAME_LOCALE not in {"es", "en"}:
        raise RuntimeError("DAY_NAME_LOCALE must be 'es' or 'en'.")

import os


def _flag(name: str, default: str = "0") -> bool:
    return (os.getenv(name) or default).strip().lower() in ("1", "true", "yes", "on")


DATABASE_URL = os.getenv("DATABASE_URL") or "sqlite+aiosqlite:///./swiftslot.db"
DB_ECHO = _flag("DB_ECHO")

# single fixed zone per deployment; vendors default to it
APP_TIMEZONE = os.getenv("APP_TIMEZONE") or "Africa/Lagos"
SAME_DAY_LEAD_HOURS = int(os.getenv("SAME_DAY_LEAD_HOURS") or "2")

CORS_ORIGINS = [
    o.strip() for o in (os.getenv("CORS_ORIGINS") or "http://localhost:5173").split(",") if o.strip()
]

AUTO_CREATE_TABLES = _flag("AUTO_CREATE_TABLES", "1")
SEED_VENDORS = _flag("SEED_VENDORS", "1")

RABBIT_URL = os.getenv("RABBIT_URL")  # optional, events disabled when unset
REDIS_URL = os.getenv("REDIS_URL")  # optional, rate limiting disabled when unset
RATE_LIMIT_PER_MINUTE = int(os.getenv("RATE_LIMIT_PER_MINUTE") or "120")

LOG_LEVEL = (os.getenv("LOG_LEVEL") or "INFO").upper()

import logging
import os
from datetime import timedelta
from pathlib import Path

from dotenv import load_dotenv

# =============================================================
# Settings
#   Everything comes from environment variables. A local .env file
#   (if present) is loaded first so development does not need
#   exported shell variables.
# =============================================================
load_dotenv()

logger = logging.getLogger(__name__)

DEV_SECRET_KEY = "dev-secret-key"

PHASES = ("design", "development", "testing", "deployment", "complete")


def _int_env(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise RuntimeError(f"{name} must be an integer, got {raw!r}")


def _default_db_path() -> Path:
    # On App Engine standard, /tmp is the only writable place.
    if os.environ.get("GAE_ENV") == "standard":
        return Path("/tmp/project_tracker.db")
    return Path("project_tracker.db")


def load_config() -> dict:
    """
    Build the Flask config mapping.

    • SESSION_SECRET is mandatory in production; development falls
      back to a fixed key and logs a warning.
    • Cookie hardening follows APP_ENV: the Secure flag is only set
      when we are actually served over HTTPS (production).
    """
    env = os.environ.get("APP_ENV", "development").lower()
    production = env == "production"

    secret = os.environ.get("SESSION_SECRET")
    if not secret:
        if production:
            raise RuntimeError("SESSION_SECRET must be set when APP_ENV=production")
        logger.warning("SESSION_SECRET not set, using the development key")
        secret = DEV_SECRET_KEY

    idle_hours = _int_env("SESSION_IDLE_HOURS", 24)

    return {
        "APP_ENV": env,
        "SECRET_KEY": secret,
        "DATABASE": Path(os.environ.get("DB_PATH") or _default_db_path()),
        "PORT": _int_env("PORT", 8000),
        "LOG_LEVEL": os.environ.get("LOG_LEVEL", "DEBUG" if not production else "INFO").upper(),
        # Session cookie
        "SESSION_COOKIE_NAME": "sessionId",
        "SESSION_COOKIE_HTTPONLY": True,
        "SESSION_COOKIE_SAMESITE": "Strict",
        "SESSION_COOKIE_SECURE": production,
        "PERMANENT_SESSION_LIFETIME": timedelta(hours=idle_hours),
        "SESSION_IDLE_TIMEOUT": timedelta(hours=idle_hours),
        # Guards
        "CSRF_ENABLED": True,
        "RATE_LIMIT_WINDOW": _int_env("RATE_LIMIT_WINDOW", 15 * 60),
        "RATE_LIMIT_MAX": _int_env("RATE_LIMIT_MAX", 100),
        "LOGIN_MAX_ATTEMPTS": _int_env("LOGIN_MAX_ATTEMPTS", 5),
        "MAX_PROJECTS_PER_USER": _int_env("MAX_PROJECTS_PER_USER", 50),
        # Exception detail on the 500 page is a development-only aid.
        "SHOW_ERROR_DETAIL": env == "development",
        "HSTS_ENABLED": production,
        # Number of reverse proxies in front of the app whose X-Forwarded-For
        # is trusted. 0 means the socket address is the client address.
        "TRUSTED_PROXIES": _int_env("TRUSTED_PROXIES", 0),
        "CONTACT_EMAIL": os.environ.get("CONTACT_EMAIL", "support@example.com"),
    }

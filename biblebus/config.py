import os
from datetime import timedelta
from pathlib import Path

from dotenv import load_dotenv


_PACKAGE_DIR = Path(__file__).resolve().parent
_PROJECT_ROOT = _PACKAGE_DIR.parent

# Root .env is canonical; biblebus/.env is a per-package fallback.
load_dotenv(_PROJECT_ROOT / ".env")
load_dotenv(_PACKAGE_DIR / ".env")


def _first_non_empty_env(*names: str, default: str) -> str:
    """Returns the first non-empty env var value from `names`, else `default`."""
    for name in names:
        value = os.getenv(name)
        if value is not None and value != "":
            return value
    return default


def _parse_int_env(*names: str, default: int) -> int:
    """Parses the first non-empty env var in `names` as int, else returns `default`."""
    raw = _first_non_empty_env(*names, default=str(default))
    try:
        return int(raw)
    except (TypeError, ValueError):
        return default


def _parse_bool_env(name: str, default: bool) -> bool:
    """Reads a truthy/falsy env var ("1", "true", "yes", "on")."""
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def _access_ttl_seconds() -> int:
    """
    Resolves access-token TTL in seconds.

    Preferred var:
      JWT_ACCESS_TOKEN_EXPIRES (seconds)

    Backward-compatible alias:
      JWT_ACCESS_TOKEN_EXPIRES_HOURS (hours)
    """
    if os.getenv("JWT_ACCESS_TOKEN_EXPIRES"):
        return _parse_int_env("JWT_ACCESS_TOKEN_EXPIRES", default=86400)

    if os.getenv("JWT_ACCESS_TOKEN_EXPIRES_HOURS"):
        hours = _parse_int_env("JWT_ACCESS_TOKEN_EXPIRES_HOURS", default=24)
        return hours * 3600

    return 86400


class BaseConfig:

    # Flask/session secret. Falls back to JWT_SECRET_KEY for compatibility.
    SECRET_KEY: str = _first_non_empty_env(
        "SECRET_KEY",
        "JWT_SECRET_KEY",
        default="change-me-in-production",
    )

    # JWT signing secret. JWT_SECRET is the name the old deployment used.
    JWT_SECRET_KEY: str = _first_non_empty_env(
        "JWT_SECRET_KEY",
        "JWT_SECRET",
        "SECRET_KEY",
        default="change-me-in-production",
    )

    SQLALCHEMY_TRACK_MODIFICATIONS: bool = False

    JSON_SORT_KEYS: bool = False
    JWT_ACCESS_TOKEN_EXPIRES: timedelta = timedelta(
        seconds=_access_ttl_seconds()  # default: 24 h
    )
    JWT_ALGORITHM: str = "HS256"
    BCRYPT_LOG_ROUNDS: int = 12

    # Periodic group maintenance (status transitions + next-group creation).
    SCHEDULER_ENABLED: bool = _parse_bool_env("SCHEDULER_ENABLED", default=True)
    CRON_INTERVAL_HOURS: int = _parse_int_env("CRON_INTERVAL_HOURS", default=24)

    LOG_LEVEL: str = _first_non_empty_env("LOG_LEVEL", default="INFO")


class DevelopmentConfig(BaseConfig):
    DEBUG:   bool = True
    TESTING: bool = False

    SQLALCHEMY_DATABASE_URI: str = os.getenv(
        "DATABASE_URL",
        f"sqlite:///{_PROJECT_ROOT / 'biblebus.db'}",
    )
    SQLALCHEMY_ECHO: bool = False
    LOG_LEVEL: str = _first_non_empty_env("LOG_LEVEL", default="DEBUG")


class TestingConfig(BaseConfig):

    DEBUG:   bool = True
    TESTING: bool = True

    SQLALCHEMY_DATABASE_URI: str = os.getenv(
        "TEST_DATABASE_URL",
        "sqlite:///:memory:",
    )
    SQLALCHEMY_ECHO: bool = False
    JWT_ACCESS_TOKEN_EXPIRES: timedelta = timedelta(seconds=60)

    BCRYPT_LOG_ROUNDS: int = 4
    SCHEDULER_ENABLED: bool = False


class ProductionConfig(BaseConfig):

    DEBUG:   bool = False
    TESTING: bool = False
    SQLALCHEMY_ECHO: bool = False

    # Heroku / Render return 'postgres://' which SQLAlchemy 1.4+ rejects;
    # normalise to 'postgresql://'.
    _raw_db_url: str = os.getenv("DATABASE_URL", "")
    SQLALCHEMY_DATABASE_URI: str = (
        _raw_db_url.replace("postgres://", "postgresql://", 1)
        if _raw_db_url.startswith("postgres://")
        else _raw_db_url
    )


def validate_production_config(app) -> None:
    """
    Fail-fast guard for production configuration.

    Called in the app factory right after app.config.from_object(ProductionConfig).
    Raises ValueError if any required production value is missing or still
    set to the development placeholder.
    """
    if not app.config.get("SQLALCHEMY_DATABASE_URI"):
        raise ValueError(
            "DATABASE_URL environment variable is required in production."
        )
    if app.config.get("SECRET_KEY") == "change-me-in-production":
        raise ValueError(
            "SECRET_KEY must be set to a strong random value in production. "
            "Do not use the default placeholder."
        )
    if app.config.get("JWT_SECRET_KEY") == "change-me-in-production":
        raise ValueError(
            "JWT_SECRET_KEY must be set to a strong random value in production. "
            "Do not use the default placeholder."
        )
    if app.config.get("CRON_INTERVAL_HOURS", 0) < 1:
        raise ValueError("CRON_INTERVAL_HOURS must be at least 1.")


# ── Config selector ────────────────────────────────────────────────────────
#
# Used by the app factory:
#   from biblebus.config import config_by_name
#   app.config.from_object(config_by_name[flask_env])
# ──────────────────────────────────────────────────────────────────────────

config_by_name: dict[str, type[BaseConfig]] = {
    "development": DevelopmentConfig,
    "testing":     TestingConfig,
    "production":  ProductionConfig,
}

# Resolves the active config class from FLASK_ENV; development if unset.
ActiveConfig: type[BaseConfig] = config_by_name.get(
    os.getenv("FLASK_ENV", "development"),
    DevelopmentConfig,
)

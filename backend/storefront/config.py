import logging
import os
from typing import Dict, Mapping, Optional

from dotenv import load_dotenv

from .errors import ConfigurationError

AUTH_MODE_ENFORCED = "enforced"
AUTH_MODE_DISABLED = "disabled"
AUTH_MODES = {AUTH_MODE_ENFORCED, AUTH_MODE_DISABLED}

DEFAULT_ROLES_CLAIM = "https://jesko.com/roles"
LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


def _env(name: str, default: str = "") -> str:
    return (os.getenv(name) or default).strip()


def _env_int(name: str, default: int) -> int:
    raw_value = _env(name)
    if not raw_value:
        return default
    try:
        return int(raw_value)
    except (TypeError, ValueError):
        raise ConfigurationError(f"{name} must be an integer, got {raw_value!r}.")


def load_config(overrides: Optional[Mapping[str, object]] = None) -> Dict[str, object]:
    """Collect settings from the environment (and .env), then apply overrides."""
    load_dotenv()

    config: Dict[str, object] = {
        "MONGO_URI": _env("MONGO_URI") or _env("MONGODB_URI"),
        "MONGO_DB_NAME": _env("MONGO_DB_NAME", "jesko"),
        "MONGO_TIMEOUT_MS": _env_int("MONGO_TIMEOUT_MS", 5000),
        "AUTH_MODE": _env("AUTH_MODE", AUTH_MODE_ENFORCED).lower(),
        "AUTH0_DOMAIN": _env("AUTH0_DOMAIN"),
        "AUTH0_AUDIENCE": _env("AUTH0_AUDIENCE"),
        "ADMIN_ROLES_CLAIM": _env("ADMIN_ROLES_CLAIM", DEFAULT_ROLES_CLAIM),
        "JWKS_TIMEOUT_SECONDS": _env_int("JWKS_TIMEOUT_SECONDS", 10),
        "STRIPE_SECRET_KEY": _env("STRIPE_SECRET_KEY"),
        "STRIPE_WEBHOOK_SECRET": _env("STRIPE_WEBHOOK_SECRET"),
        "STRIPE_TIMEOUT_SECONDS": _env_int("STRIPE_TIMEOUT_SECONDS", 10),
        "DEFAULT_CURRENCY": _env("DEFAULT_CURRENCY", "inr").lower(),
        "CLOUDINARY_CLOUD_NAME": _env("CLOUDINARY_CLOUD_NAME"),
        "CLOUDINARY_API_KEY": _env("CLOUDINARY_API_KEY"),
        "CLOUDINARY_API_SECRET": _env("CLOUDINARY_API_SECRET"),
        "CLOUDINARY_FOLDER": _env("CLOUDINARY_FOLDER", "jesko-products"),
        "MAX_UPLOAD_SIZE_MB": _env_int("MAX_UPLOAD_SIZE_MB", 16),
        "TRUSTED_PROXY_HOPS": _env_int("TRUSTED_PROXY_HOPS", 1),
        "FRONTEND_URL": _env("FRONTEND_URL"),
        "CORS_ALLOWED_ORIGINS": _env("CORS_ALLOWED_ORIGINS"),
        "LOG_LEVEL": _env("LOG_LEVEL", "INFO").upper(),
    }
    if overrides:
        config.update(overrides)

    auth_mode = str(config.get("AUTH_MODE") or "").strip().lower()
    if auth_mode not in AUTH_MODES:
        raise ConfigurationError(
            f"AUTH_MODE must be one of {sorted(AUTH_MODES)}, got {auth_mode!r}."
        )
    config["AUTH_MODE"] = auth_mode
    if auth_mode == AUTH_MODE_ENFORCED and not (
        config.get("AUTH0_DOMAIN") and config.get("AUTH0_AUDIENCE")
    ):
        raise ConfigurationError(
            "AUTH0_DOMAIN and AUTH0_AUDIENCE are required when AUTH_MODE is "
            "'enforced'. Set AUTH_MODE=disabled for local development only."
        )

    return config


def cors_origins(config: Mapping[str, object]):
    allowed_origins = [str(config.get("FRONTEND_URL") or "").strip()]
    for origin in str(config.get("CORS_ALLOWED_ORIGINS") or "").split(","):
        allowed_origins.append(origin.strip())
    allowed_origins = [origin for origin in allowed_origins if origin]
    return allowed_origins or "*"


def configure_logging(level_name: str) -> None:
    level = logging.getLevelName(str(level_name or "INFO").upper())
    if not isinstance(level, int):
        level = logging.INFO
    if not logging.getLogger().handlers:
        logging.basicConfig(format=LOG_FORMAT)
    logging.getLogger("storefront").setLevel(level)

"""Django settings for the member portal.

All deployment-specific values come from the environment. Nothing here talks
to the CRM at import time: a missing CRM client id/secret only fails the
calls that need a token refresh.
"""

from __future__ import annotations

import os
from pathlib import Path

BASE_DIR = Path(__file__).resolve().parent.parent


def _env_bool(name: str, default: str = "False") -> bool:
    return os.getenv(name, default).lower() in ("true", "1", "yes")


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name, "")
    if not raw.strip():
        return default
    return int(raw)


DEBUG: bool = _env_bool("DEBUG")

# The fallback only exists for local runs and the test suite; deployments
# must set SECRET_KEY (checked by `manage.py check --deploy`).
SECRET_KEY: str = os.getenv("SECRET_KEY", "") or "insecure-development-key-do-not-use-in-production"

ALLOWED_HOSTS: list[str] = [h.strip() for h in os.getenv("ALLOWED_HOSTS", "localhost,127.0.0.1,testserver").split(",") if h.strip()]

INSTALLED_APPS = [
    "django.contrib.contenttypes",
    "core",
]

MIDDLEWARE = [
    "django.middleware.security.SecurityMiddleware",
    "django.middleware.common.CommonMiddleware",
]

ROOT_URLCONF = "config.urls"
WSGI_APPLICATION = "config.wsgi.application"

TEMPLATES: list[dict[str, object]] = []


if os.getenv("DATABASE_HOST"):
    DATABASES = {
        "default": {
            "ENGINE": "django.db.backends.postgresql",
            "HOST": os.getenv("DATABASE_HOST", ""),
            "PORT": os.getenv("DATABASE_PORT", "5432"),
            "NAME": os.getenv("DATABASE_NAME", "portal"),
            "USER": os.getenv("DATABASE_USER", "portal"),
            "PASSWORD": os.getenv("DATABASE_PASSWORD", ""),
            "CONN_MAX_AGE": _env_int("DATABASE_CONN_MAX_AGE", 60),
            "ATOMIC_REQUESTS": False,
        }
    }
else:
    DATABASES = {
        "default": {
            "ENGINE": "django.db.backends.sqlite3",
            "NAME": os.getenv("SQLITE_PATH", str(BASE_DIR / "db.sqlite3")),
        }
    }

DEFAULT_AUTO_FIELD = "django.db.models.BigAutoField"

CACHES = {
    "default": {
        "BACKEND": "django.core.cache.backends.locmem.LocMemCache",
        "LOCATION": "portal-default",
    }
}

LANGUAGE_CODE = "en-gb"
TIME_ZONE: str = os.getenv("TIME_ZONE", "UTC")
USE_I18N = False
USE_TZ = True


# CRM integration (the external membership-record system).
CRM_INTEGRATION_NAME: str = "crm"
CRM_API_DOMAIN: str = os.getenv("CRM_API_DOMAIN", "https://www.zohoapis.eu").rstrip("/")
# Empty means "derive from CRM_API_DOMAIN".
CRM_ACCOUNTS_DOMAIN: str = os.getenv("CRM_ACCOUNTS_DOMAIN", "").rstrip("/")
CRM_CLIENT_ID: str = os.getenv("CRM_CLIENT_ID", "")
CRM_CLIENT_SECRET: str = os.getenv("CRM_CLIENT_SECRET", "")
CRM_REDIRECT_URI: str = os.getenv("CRM_REDIRECT_URI", "")
CRM_SCOPES: str = os.getenv(
    "CRM_SCOPES",
    "ZohoCRM.modules.contacts.ALL,ZohoCRM.modules.accounts.ALL",
)
CRM_REQUEST_TIMEOUT_SECONDS: int = _env_int("CRM_REQUEST_TIMEOUT_SECONDS", 10)
CRM_TOKEN_EXPIRY_SKEW_SECONDS: int = _env_int("CRM_TOKEN_EXPIRY_SKEW_SECONDS", 0)
CRM_CIRCUIT_BREAKER_CONSECUTIVE_FAILURES: int = _env_int("CRM_CIRCUIT_BREAKER_CONSECUTIVE_FAILURES", 3)
CRM_CIRCUIT_BREAKER_COOLDOWN_SECONDS: int = _env_int("CRM_CIRCUIT_BREAKER_COOLDOWN_SECONDS", 60)


LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO").upper()

LOGGING = {
    "version": 1,
    "disable_existing_loggers": False,
    "filters": {
        "health_endpoint": {
            "()": "config.logging_filters.HealthEndpointFilter",
        },
    },
    "formatters": {
        "default": {
            "format": "[{asctime}] {levelname} {name}: {message}",
            "style": "{",
        },
    },
    "handlers": {
        "console": {
            "class": "logging.StreamHandler",
            "formatter": "default",
        },
        "server": {
            "class": "logging.StreamHandler",
            "formatter": "default",
            "filters": ["health_endpoint"],
        },
    },
    "loggers": {
        "django.server": {
            "handlers": ["server"],
            "level": "INFO",
            "propagate": False,
        },
        "core": {
            "handlers": ["console"],
            "level": LOG_LEVEL,
            "propagate": False,
        },
    },
    "root": {
        "handlers": ["console"],
        "level": "WARNING",
    },
}


SENTRY_DSN: str = os.getenv("SENTRY_DSN", "")
if SENTRY_DSN:
    import logging

    import sentry_sdk
    from sentry_sdk.integrations.django import DjangoIntegration
    from sentry_sdk.integrations.logging import LoggingIntegration

    sentry_sdk.init(
        dsn=SENTRY_DSN,
        environment=os.getenv("SENTRY_ENVIRONMENT", "production"),
        integrations=[
            DjangoIntegration(),
            LoggingIntegration(level=logging.INFO, event_level=logging.ERROR),
        ],
        traces_sample_rate=float(os.getenv("SENTRY_TRACES_SAMPLE_RATE", "0") or 0),
        send_default_pii=False,
    )

"""
Django settings for the taskboard API.

Everything deployment-specific comes from TASKBOARD_* environment
variables; the defaults run a local server on port 3000 against
tasksdb.sqlite3 next to manage.py.
"""
import os
from pathlib import Path

BASE_DIR = Path(__file__).resolve().parent.parent


def _env_bool(name, default=False):
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


SECRET_KEY = os.environ.get("TASKBOARD_SECRET_KEY", "insecure-local-development-key")

DEBUG = _env_bool("TASKBOARD_DEBUG")

ALLOWED_HOSTS = [
    host.strip()
    for host in os.environ.get("TASKBOARD_ALLOWED_HOSTS", "localhost,127.0.0.1,[::1],testserver").split(",")
    if host.strip()
]

# default port for `manage.py runserver`
PORT = int(os.environ.get("TASKBOARD_PORT", "3000"))

INSTALLED_APPS = [
    "tasks",
]

MIDDLEWARE = [
    "django.middleware.security.SecurityMiddleware",
    "django.middleware.common.CommonMiddleware",
]

ROOT_URLCONF = "taskboard.urls"

WSGI_APPLICATION = "taskboard.wsgi.application"

DATABASES = {
    "default": {
        "ENGINE": os.environ.get("TASKBOARD_DB_ENGINE", "django.db.backends.sqlite3"),
        "NAME": os.environ.get("TASKBOARD_DB_PATH", str(BASE_DIR / "tasksdb.sqlite3")),
    }
}

DEFAULT_AUTO_FIELD = "django.db.models.BigAutoField"

LANGUAGE_CODE = "en-us"
TIME_ZONE = "UTC"
USE_I18N = False
USE_TZ = True

LOG_LEVEL = os.environ.get("TASKBOARD_LOG_LEVEL", "INFO").upper()

LOGGING = {
    "version": 1,
    "disable_existing_loggers": False,
    "formatters": {
        "plain": {
            "format": "%(asctime)s %(levelname)s %(name)s: %(message)s",
        },
    },
    "handlers": {
        "console": {
            "class": "logging.StreamHandler",
            "formatter": "plain",
        },
    },
    "loggers": {
        "tasks": {
            "handlers": ["console"],
            "level": LOG_LEVEL,
            "propagate": False,
        },
    },
}

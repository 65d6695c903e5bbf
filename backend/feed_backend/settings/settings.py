"""
Django settings for the feed backend.

Development defaults; production overrides live in prod.py.
"""

import os
from pathlib import Path

from dotenv import load_dotenv

BASE_DIR = Path(__file__).resolve().parent.parent.parent
load_dotenv(os.path.join(BASE_DIR, '..', '.env'))

SECRET_KEY = os.getenv("DJANGO_SECRET_KEY", "django-insecure-dev-only-key-change-me-before-deploying")
DEBUG = os.getenv("DJANGO_DEBUG", "true").lower() == "true"
ALLOWED_HOSTS = os.getenv("ALLOWED_HOSTS", "*").split(',')

INSTALLED_APPS = [
    'daphne',
    'django.contrib.auth',
    'django.contrib.contenttypes',
    'django.contrib.staticfiles',
    'corsheaders',
    'rest_framework',
    'channels',
    'feeds',
    'realtime',
]

MIDDLEWARE = [
    'corsheaders.middleware.CorsMiddleware',
    'django.middleware.security.SecurityMiddleware',
    'django.middleware.common.CommonMiddleware',
    'django.middleware.clickjacking.XFrameOptionsMiddleware',
]

ROOT_URLCONF = 'feed_backend.urls'
ASGI_APPLICATION = 'feed_backend.asgi.application'

TEMPLATES = [
    {
        'BACKEND': 'django.template.backends.django.DjangoTemplates',
        'DIRS': [],
        'APP_DIRS': True,
        'OPTIONS': {'context_processors': []},
    },
]

# Rides and offers live in the hosted backend; the local database only backs Django itself
DATABASES = {
    'default': {
        'ENGINE': 'django.db.backends.sqlite3',
        'NAME': BASE_DIR / 'db.sqlite3',
    }
}

LANGUAGE_CODE = 'en-us'
TIME_ZONE = 'UTC'
USE_I18N = True
USE_TZ = True

STATIC_URL = 'static/'
DEFAULT_AUTO_FIELD = 'django.db.models.BigAutoField'

CORS_ALLOW_ALL_ORIGINS = DEBUG

REST_FRAMEWORK = {
    'DEFAULT_AUTHENTICATION_CLASSES': [],
    'DEFAULT_PERMISSION_CLASSES': ['rest_framework.permissions.AllowAny'],
    'UNAUTHENTICATED_USER': None,
}

# ---------------------- Channels ----------------------

CHANNEL_LAYERS = {
    "default": {
        "BACKEND": "channels.layers.InMemoryChannelLayer",
    }
}

# ---------------------- Hosted backend ----------------------

BACKEND_RPC = {
    "BASE_URL": os.getenv("BACKEND_URL", "http://localhost:54321"),
    "API_KEY": os.getenv("BACKEND_ANON_KEY", ""),
    "TIMEOUT_SECONDS": float(os.getenv("BACKEND_TIMEOUT_SECONDS", "10")),
}

# Access tokens are issued by the hosted auth service and only verified here
SIMPLE_JWT = {
    "ALGORITHM": "HS256",
    "SIGNING_KEY": os.getenv("BACKEND_JWT_SECRET", SECRET_KEY),
    "AUDIENCE": os.getenv("BACKEND_JWT_AUDIENCE", "authenticated"),
    "USER_ID_CLAIM": "sub",
    "JTI_CLAIM": None,
    "TOKEN_TYPE_CLAIM": None,
}

REALTIME_WEBHOOK_SECRET = os.getenv("REALTIME_WEBHOOK_SECRET", "")
REALTIME_TABLES = ("rides", "ride_offers")

FEED_REALTIME = {
    "DEDUP_WINDOW_SECONDS": 0.5,
    "REFRESH_DEBOUNCE_SECONDS": 0.5,
    "OFFER_REFRESH_DEBOUNCE_SECONDS": 0.3,
    "CANCEL_NAVIGATION_DELAY_SECONDS": 2.0,
    "PAGE_SIZE": int(os.getenv("FEED_PAGE_SIZE", "10")),
    "NEARBY_RADIUS_KM": 5.0,
}

# ---------------------- Logging ----------------------

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

LOGGING = {
    "version": 1,
    "disable_existing_loggers": False,
    "formatters": {
        "verbose": {
            "format": "{asctime} {levelname} {name} {message}",
            "style": "{",
        },
    },
    "handlers": {
        "console": {
            "class": "logging.StreamHandler",
            "formatter": "verbose",
        },
    },
    "root": {
        "handlers": ["console"],
        "level": "WARNING",
    },
    "loggers": {
        "feeds": {"handlers": ["console"], "level": LOG_LEVEL, "propagate": False},
        "realtime": {"handlers": ["console"], "level": LOG_LEVEL, "propagate": False},
        "services": {"handlers": ["console"], "level": LOG_LEVEL, "propagate": False},
    },
}

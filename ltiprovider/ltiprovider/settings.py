"""
Django settings for ltiprovider project.

Environment variables:
- DEBUG: 'true' for development
- DJANGO_SECRET_KEY: secret key (required when DEBUG is off)
- ALLOWED_HOSTS: comma separated host names
- USE_X_FORWARDED_PROTO, USE_X_FORWARDED_HOST: trust proxy headers when
  rebuilding the signed launch URL
- DATABASE_PATH: location of the SQLite database
- LTI_LOG_LEVEL: level of the 'lti' logger
- LTI_ALLOW_SHARING, LTI_DEBUG, LTI_DEFAULT_EMAIL, LTI_TIMESTAMP_THRESHOLD:
  see lti/config.py
"""
import os
from pathlib import Path

BASE_DIR = Path(__file__).resolve().parent.parent

DEBUG = os.getenv('DEBUG', 'false').lower() == 'true'

SECRET_KEY = os.getenv('DJANGO_SECRET_KEY', 'django-insecure-ltiprovider-development-key')

ALLOWED_HOSTS = [host.strip() for host in os.getenv('ALLOWED_HOSTS', 'localhost,127.0.0.1').split(',')
                 if host.strip()]

# ==============================================================================
# Application definition
# ==============================================================================

INSTALLED_APPS = [
    'django.contrib.admin',
    'django.contrib.auth',
    'django.contrib.contenttypes',
    'django.contrib.sessions',
    'django.contrib.messages',
    'django.contrib.staticfiles',
    'lti',
]

MIDDLEWARE = [
    'django.middleware.security.SecurityMiddleware',
    'django.contrib.sessions.middleware.SessionMiddleware',
    'django.middleware.common.CommonMiddleware',
    'django.middleware.csrf.CsrfViewMiddleware',
    'django.contrib.auth.middleware.AuthenticationMiddleware',
    'django.contrib.messages.middleware.MessageMiddleware',
]

ROOT_URLCONF = 'ltiprovider.urls'

TEMPLATES = [
    {
        'BACKEND': 'django.template.backends.django.DjangoTemplates',
        'DIRS': [],
        'APP_DIRS': True,
        'OPTIONS': {
            'context_processors': [
                'django.template.context_processors.request',
                'django.contrib.auth.context_processors.auth',
                'django.contrib.messages.context_processors.messages',
            ],
        },
    },
]

WSGI_APPLICATION = 'ltiprovider.wsgi.application'

DATABASES = {
    'default': {
        'ENGINE': 'django.db.backends.sqlite3',
        'NAME': os.getenv('DATABASE_PATH', str(BASE_DIR / 'db.sqlite3')),
    }
}

CACHES = {
    'default': {
        'BACKEND': 'django.core.cache.backends.locmem.LocMemCache',
        'LOCATION': 'ltiprovider',
    }
}

DEFAULT_AUTO_FIELD = 'django.db.models.BigAutoField'

LANGUAGE_CODE = 'en-us'
TIME_ZONE = 'UTC'
USE_I18N = True
USE_TZ = True

STATIC_URL = 'static/'
STATIC_ROOT = BASE_DIR / 'staticfiles'

# LTI consumers are framed inside the LMS
X_FRAME_OPTIONS = 'ALLOWALL'
SESSION_COOKIE_SAMESITE = 'Lax' if DEBUG else 'None'
SESSION_COOKIE_SECURE = not DEBUG

# Behind a TLS-terminating proxy the launch URL must be rebuilt as the
# consumer signed it (https, public host)
if os.getenv('USE_X_FORWARDED_PROTO', 'false').lower() == 'true':
    SECURE_PROXY_SSL_HEADER = ('HTTP_X_FORWARDED_PROTO', 'https')
USE_X_FORWARDED_HOST = os.getenv('USE_X_FORWARDED_HOST', 'false').lower() == 'true'

# ==============================================================================
# LTI Tool Provider
# ==============================================================================

LTI_PROVIDER = {
    'ALLOW_SHARING': False,
    'DEFAULT_EMAIL': '',
    'TIMESTAMP_THRESHOLD': 300,
    'CONSTRAINTS': {
        'user_id': {'required': True, 'max_length': 255},
        'roles': {'required': True},
    },
    'HANDLERS': {
        'connect': 'lti.handlers.connect',
    },
    'DATA_STORE': 'lti.storage.DjangoDataStore',
    'LANDING_URL': os.getenv('LTI_LANDING_URL', ''),
}

# ==============================================================================
# Logging
# ==============================================================================

LOGGING = {
    'version': 1,
    'disable_existing_loggers': False,
    'formatters': {
        'verbose': {
            'format': '{asctime} {levelname} {name}: {message}',
            'style': '{',
        },
    },
    'handlers': {
        'console': {
            'class': 'logging.StreamHandler',
            'formatter': 'verbose',
        },
    },
    'root': {
        'handlers': ['console'],
        'level': 'WARNING',
    },
    'loggers': {
        'lti': {
            'handlers': ['console'],
            'level': os.getenv('LTI_LOG_LEVEL', 'INFO'),
            'propagate': False,
        },
    },
}

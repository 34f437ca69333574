"""Django settings for the regdesk project."""
import os
from pathlib import Path

BASE_DIR = Path(__file__).resolve().parent.parent

SECRET_KEY = os.environ.get('DJANGO_SECRET_KEY', 'dev-only-regdesk-secret-key')
DEBUG = os.environ.get('DJANGO_DEBUG', '1') == '1'
ALLOWED_HOSTS = os.environ.get('DJANGO_ALLOWED_HOSTS', '*').split(',')

INSTALLED_APPS = [
    'django.contrib.contenttypes',
    'django.contrib.auth',
    'rest_framework',
    'registrations',
]

MIDDLEWARE = [
    'django.middleware.security.SecurityMiddleware',
    'django.middleware.common.CommonMiddleware',
]

ROOT_URLCONF = 'regdesk.urls'
WSGI_APPLICATION = 'regdesk.wsgi.application'

# Registrations live in a JSON file; the database only backs contrib.auth.
DATABASES = {
    'default': {
        'ENGINE': 'django.db.backends.sqlite3',
        'NAME': BASE_DIR / 'db.sqlite3',
    }
}

LANGUAGE_CODE = 'en-us'
TIME_ZONE = os.environ.get('TZ', 'UTC')
USE_I18N = False
USE_TZ = True

APPEND_SLASH = False

# Signatures are posted inline as data URLs.
DATA_UPLOAD_MAX_MEMORY_SIZE = 12 * 1024 * 1024

# ------ registrations ------
ADMIN_PIN = os.environ.get('ADMIN_PIN', '1234')
DEFAULT_ADMIN_PIN = '1234'
REGISTRATIONS_DATA_FILE = Path(
    os.environ.get('REGISTRATIONS_DATA_FILE', BASE_DIR / 'data' / 'registrations.json')
)
REGISTRATIONS_SAVE_DELAY = float(os.environ.get('REGISTRATIONS_SAVE_DELAY', '0.2'))
EXPORTS_DIR = Path(os.environ.get('EXPORTS_DIR', BASE_DIR / 'exports'))

REST_FRAMEWORK = {
    'DEFAULT_RENDERER_CLASSES': ['rest_framework.renderers.JSONRenderer'],
    'DEFAULT_PARSER_CLASSES': ['rest_framework.parsers.JSONParser'],
    'DEFAULT_AUTHENTICATION_CLASSES': ['registrations.authentication.AdminPinAuthentication'],
    'DEFAULT_PERMISSION_CLASSES': ['rest_framework.permissions.IsAuthenticated'],
    'TEST_REQUEST_DEFAULT_FORMAT': 'json',
}

LOGGING = {
    'version': 1,
    'disable_existing_loggers': False,
    'formatters': {
        'simple': {
            'format': '{asctime} {levelname} {name}: {message}',
            'style': '{',
        },
    },
    'handlers': {
        'console': {
            'class': 'logging.StreamHandler',
            'formatter': 'simple',
        },
    },
    'loggers': {
        'registrations': {
            'handlers': ['console'],
            'level': os.environ.get('REGISTRATIONS_LOG_LEVEL', 'INFO'),
            'propagate': False,
        },
    },
}

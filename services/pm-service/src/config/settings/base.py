"""
Base settings for PM Service
"""

import os
import sys
from pathlib import Path

BASE_DIR = Path(__file__).resolve().parent.parent.parent
sys.path.insert(0, str(BASE_DIR.parent.parent.parent))

SECRET_KEY = os.environ.get('SECRET_KEY', 'dev-secret-key-change-in-production')
DEBUG = False
ALLOWED_HOSTS = os.environ.get('ALLOWED_HOSTS', 'localhost,127.0.0.1').split(',')

SERVICE_NAME = 'pm-service'
SERVICE_VERSION = os.environ.get('SERVICE_VERSION', '1.0.0')

DJANGO_APPS = [
    'django.contrib.contenttypes',
]

LOCAL_APPS = [
    'apps.core',
]

INSTALLED_APPS = DJANGO_APPS + LOCAL_APPS

DATABASES = {
    'default': {
        'ENGINE': 'django.db.backends.postgresql',
        'NAME': os.environ.get('DB_NAME', 'pm_service_db'),
        'USER': os.environ.get('DB_USER', 'pm_service'),
        'PASSWORD': os.environ.get('DB_PASSWORD', 'pm_service_password'),
        'HOST': os.environ.get('DB_HOST', 'localhost'),
        'PORT': os.environ.get('DB_PORT', '5432'),
        'CONN_MAX_AGE': 60,
        'ATOMIC_REQUESTS': False,
        'OPTIONS': {
            'connect_timeout': 10,
        },
    }
}

DEFAULT_AUTO_FIELD = 'django.db.models.BigAutoField'

LANGUAGE_CODE = 'en-us'
TIME_ZONE = 'UTC'
USE_I18N = True
USE_TZ = True

# Inter-service communication
SERVICE_URLS = {
    'asset-service': os.environ.get('ASSET_SERVICE_URL', 'http://asset-service:8000'),
    'organization-service': os.environ.get('ORGANIZATION_SERVICE_URL', 'http://organization-service:8000'),
    'telemetry-service': os.environ.get('TELEMETRY_SERVICE_URL', 'http://telemetry-service:8000'),
}
SERVICE_AUTH_TOKEN = os.environ.get('SERVICE_AUTH_TOKEN', '')

# Preventive maintenance engine policy
PM_ENGINE = {
    'PRIORITY_BY_CRITICALITY': {
        'HIGH': 'HIGH',
    },
    'DEFAULT_PRIORITY': 'MEDIUM',
    'ESCALATION_PRIORITY': 'HIGH',
    'REMEDIATION_WINDOW_DAYS': int(os.environ.get('PM_REMEDIATION_WINDOW_DAYS', 3)),
    'ESCALATION_ROLES': os.environ.get('PM_ESCALATION_ROLES', 'MANAGER').split(','),
    'CUMULATIVE_METER_TYPES': ['HOURS', 'MILES', 'KILOMETERS', 'CYCLES', 'GALLONS'],
    'USAGE_PROJECTION_WINDOW_DAYS': 30,
    'UPCOMING_DAYS': 7,
    'OVERDUE_GRACE_DAYS': int(os.environ.get('PM_OVERDUE_GRACE_DAYS', 3)),
    'OVERDUE_PRIORITY': 'URGENT',
    'FAILURE_WINDOW_DAYS': 30,
    'FAILURE_ESCALATION_THRESHOLD': int(os.environ.get('PM_FAILURE_ESCALATION_THRESHOLD', 3)),
}

LOGGING = {
    'version': 1,
    'disable_existing_loggers': False,
    'formatters': {
        'json': {
            '()': 'pythonjsonlogger.jsonlogger.JsonFormatter',
            'format': '%(asctime)s %(levelname)s %(name)s %(message)s'
        },
        'standard': {
            'format': '%(asctime)s [%(levelname)s] %(name)s: %(message)s'
        },
    },
    'handlers': {
        'console': {
            'class': 'logging.StreamHandler',
            'formatter': 'json',
        },
    },
    'root': {
        'handlers': ['console'],
        'level': os.environ.get('LOG_LEVEL', 'INFO'),
    },
    'loggers': {
        'django': {
            'handlers': ['console'],
            'level': 'INFO',
            'propagate': False,
        },
        'apps': {
            'handlers': ['console'],
            'level': os.environ.get('LOG_LEVEL', 'INFO'),
            'propagate': False,
        },
    },
}

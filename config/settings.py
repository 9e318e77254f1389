"""
Django settings for the telemedicine booking project.
"""

import os
from datetime import timedelta
from pathlib import Path

from celery.schedules import crontab

# Build paths inside the project like this: BASE_DIR / 'subdir'.
BASE_DIR = Path(__file__).resolve().parent.parent

# Application version
VERSION = os.environ.get('APP_VERSION', '1.0.0')
COMMIT_HASH = os.environ.get('COMMIT_HASH', None)

# SECURITY WARNING: keep the secret key used in production secret!
SECRET_KEY = os.environ.get('DJANGO_SECRET_KEY', 'dev-secret-key-change-in-production')

# SECURITY WARNING: don't run with debug turned on in production!
DEBUG = os.environ.get('DJANGO_DEBUG', 'True') == 'True'

ALLOWED_HOSTS = os.environ.get('DJANGO_ALLOWED_HOSTS', 'localhost,127.0.0.1').split(',')

# Application definition
INSTALLED_APPS = [
    'django.contrib.admin',
    'django.contrib.auth',
    'django.contrib.contenttypes',
    'django.contrib.sessions',
    'django.contrib.messages',
    'django.contrib.staticfiles',

    # Third-party apps
    'rest_framework',
    'rest_framework_simplejwt',
    'corsheaders',
    'drf_spectacular',

    # Local apps
    'apps.core',          # observability, error mapping, health
    'apps.authz',         # auth_user, auth_role, auth_user_role, doctor
    'apps.scheduling',    # availability, appointment, appointment_reschedule
    'apps.payments',      # payment (reconciliation records)
    'apps.integrations',  # stripe webhook, daily.co rooms, notifications
]

MIDDLEWARE = [
    'django.middleware.security.SecurityMiddleware',
    'corsheaders.middleware.CorsMiddleware',  # CORS before CommonMiddleware
    'django.contrib.sessions.middleware.SessionMiddleware',
    'django.middleware.common.CommonMiddleware',
    'django.middleware.csrf.CsrfViewMiddleware',
    'django.contrib.auth.middleware.AuthenticationMiddleware',
    'apps.core.observability.correlation.RequestCorrelationMiddleware',  # Request correlation
    'django.contrib.messages.middleware.MessageMiddleware',
    'django.middleware.clickjacking.XFrameOptionsMiddleware',
]

ROOT_URLCONF = 'config.urls'

TEMPLATES = [
    {
        'BACKEND': 'django.template.backends.django.DjangoTemplates',
        'DIRS': [BASE_DIR / 'templates'],
        'APP_DIRS': True,
        'OPTIONS': {
            'context_processors': [
                'django.template.context_processors.debug',
                'django.template.context_processors.request',
                'django.contrib.auth.context_processors.auth',
                'django.contrib.messages.context_processors.messages',
            ],
        },
    },
]

WSGI_APPLICATION = 'config.wsgi.application'

# Database
DATABASES = {
    'default': {
        'ENGINE': os.environ.get('DATABASE_ENGINE', 'django.db.backends.postgresql'),
        'NAME': os.environ.get('DATABASE_NAME', 'telemed_db'),
        'USER': os.environ.get('DATABASE_USER', 'telemed_user'),
        'PASSWORD': os.environ.get('DATABASE_PASSWORD', 'telemed_dev_pass'),
        'HOST': os.environ.get('DATABASE_HOST', 'postgres'),
        'PORT': os.environ.get('DATABASE_PORT', '5432'),
    }
}

# Password validation
AUTH_PASSWORD_VALIDATORS = [
    {
        'NAME': 'django.contrib.auth.password_validation.UserAttributeSimilarityValidator',
    },
    {
        'NAME': 'django.contrib.auth.password_validation.MinimumLengthValidator',
    },
    {
        'NAME': 'django.contrib.auth.password_validation.CommonPasswordValidator',
    },
    {
        'NAME': 'django.contrib.auth.password_validation.NumericPasswordValidator',
    },
]

# Internationalization
LANGUAGE_CODE = 'en-us'
TIME_ZONE = 'UTC'
USE_I18N = True
USE_TZ = True

# Static files (CSS, JavaScript, Images)
STATIC_URL = '/static/'
STATIC_ROOT = BASE_DIR / 'staticfiles'

# Custom User Model
AUTH_USER_MODEL = 'authz.User'

# Default primary key field type
DEFAULT_AUTO_FIELD = 'django.db.models.BigAutoField'

# ==============================================================================
# REST FRAMEWORK
# ==============================================================================
REST_FRAMEWORK = {
    'DEFAULT_AUTHENTICATION_CLASSES': [
        'rest_framework_simplejwt.authentication.JWTAuthentication',
    ],
    'DEFAULT_PERMISSION_CLASSES': [
        'rest_framework.permissions.IsAuthenticated',
    ],
    'DEFAULT_PAGINATION_CLASS': 'rest_framework.pagination.PageNumberPagination',
    'PAGE_SIZE': 50,
    'DEFAULT_SCHEMA_CLASS': 'drf_spectacular.openapi.AutoSchema',
    'EXCEPTION_HANDLER': 'apps.core.exceptions.domain_exception_handler',
    # Throttling configuration for public endpoints
    'DEFAULT_THROTTLE_RATES': {
        'anon': '100/hour',
        'user': '1000/hour',
        'token_management': '30/hour',  # Management-link lookups by token
    },
}

# ==============================================================================
# SIMPLE JWT
# ==============================================================================
SIMPLE_JWT = {
    'ACCESS_TOKEN_LIFETIME': timedelta(
        minutes=int(os.environ.get('JWT_ACCESS_TOKEN_LIFETIME_MINUTES', 60))
    ),
    'REFRESH_TOKEN_LIFETIME': timedelta(
        days=int(os.environ.get('JWT_REFRESH_TOKEN_LIFETIME_DAYS', 7))
    ),
    'ROTATE_REFRESH_TOKENS': True,
    'ALGORITHM': 'HS256',
    'SIGNING_KEY': os.environ.get('JWT_SIGNING_KEY', SECRET_KEY),
    'AUTH_HEADER_TYPES': ('Bearer',),
}

# ==============================================================================
# CORS
# ==============================================================================
CORS_ALLOWED_ORIGINS = os.environ.get(
    'DJANGO_CORS_ALLOWED_ORIGINS',
    'http://localhost:3000'
).split(',')

CORS_ALLOW_CREDENTIALS = True

# ==============================================================================
# DRF SPECTACULAR (OpenAPI Schema)
# ==============================================================================
SPECTACULAR_SETTINGS = {
    'TITLE': 'Telemedicine Booking API',
    'DESCRIPTION': 'Slot booking, appointment lifecycle and payment reconciliation for a telemedicine practice',
    'VERSION': '1.0.0',
    'SERVE_INCLUDE_SCHEMA': False,
    'COMPONENT_SPLIT_REQUEST': True,
}

# ==============================================================================
# CELERY
# ==============================================================================
CELERY_BROKER_URL = os.environ.get('CELERY_BROKER_URL', 'redis://redis:6379/0')
CELERY_RESULT_BACKEND = os.environ.get('CELERY_RESULT_BACKEND', 'redis://redis:6379/0')
CELERY_ACCEPT_CONTENT = ['json']
CELERY_TASK_SERIALIZER = 'json'
CELERY_RESULT_SERIALIZER = 'json'
CELERY_TIMEZONE = TIME_ZONE
CELERY_TASK_TRACK_STARTED = True
CELERY_TASK_TIME_LIMIT = 30 * 60  # 30 minutes

CELERY_BEAT_SCHEDULE = {
    'auto-complete-appointments': {
        'task': 'apps.scheduling.tasks.auto_complete_appointments',
        'schedule': crontab(minute='*/10'),
    },
    'send-appointment-reminders': {
        'task': 'apps.scheduling.tasks.send_appointment_reminders',
        'schedule': crontab(minute='*/30'),
    },
    'expire-stale-payments': {
        'task': 'apps.payments.tasks.expire_stale_payments',
        'schedule': crontab(minute='*/15'),
    },
    'provision-missing-rooms': {
        'task': 'apps.integrations.tasks.provision_missing_rooms',
        'schedule': crontab(minute='5', hour='*'),
    },
}

# ==============================================================================
# LOGGING
# ==============================================================================
LOGGING = {
    'version': 1,
    'disable_existing_loggers': False,
    'filters': {
        'correlation': {
            '()': 'apps.core.observability.logging.CorrelationFilter',
        },
    },
    'formatters': {
        'verbose': {
            'format': '{levelname} {asctime} {module} {message}',
            'style': '{',
        },
        'json': {
            '()': 'apps.core.observability.logging.SanitizedJSONFormatter',
        },
    },
    'handlers': {
        'console': {
            'class': 'logging.StreamHandler',
            'formatter': 'json' if not DEBUG else 'verbose',
            'filters': ['correlation'],
        },
    },
    'root': {
        'handlers': ['console'],
        'level': os.environ.get('LOG_LEVEL', 'INFO'),
    },
    'loggers': {
        'django': {
            'handlers': ['console'],
            'level': os.environ.get('DJANGO_LOG_LEVEL', 'INFO'),
            'propagate': False,
        },
        'apps': {
            'handlers': ['console'],
            'level': 'DEBUG' if DEBUG else 'INFO',
            'propagate': False,
        },
    },
}

# ==============================================================================
# EMAIL
# ==============================================================================
EMAIL_BACKEND = os.environ.get(
    'EMAIL_BACKEND',
    'django.core.mail.backends.console.EmailBackend'
)
EMAIL_HOST = os.environ.get('EMAIL_HOST', 'smtp.gmail.com')
EMAIL_PORT = int(os.environ.get('EMAIL_PORT', 587))
EMAIL_USE_TLS = os.environ.get('EMAIL_USE_TLS', 'True') == 'True'
EMAIL_HOST_USER = os.environ.get('EMAIL_HOST_USER', '')
EMAIL_HOST_PASSWORD = os.environ.get('EMAIL_HOST_PASSWORD', '')
DEFAULT_FROM_EMAIL = os.environ.get('DEFAULT_FROM_EMAIL', 'no-reply@telemed.local')

# Practice inbox that receives video-consultation notices
PRACTICE_NOTIFICATION_EMAIL = os.environ.get('PRACTICE_NOTIFICATION_EMAIL', 'praxis@telemed.local')

FRONTEND_BASE_URL = os.environ.get('FRONTEND_BASE_URL', 'http://localhost:3000')

# ==============================================================================
# BOOKING RULES
# ==============================================================================
# All slot strings are wall-clock times in this zone.
PRACTICE_TIME_ZONE = os.environ.get('PRACTICE_TIME_ZONE', 'Europe/Berlin')

# Doctors whose consultations are always held by video
VIDEO_DOCTOR_NAMES = [
    name.strip()
    for name in os.environ.get('VIDEO_DOCTOR_NAMES', 'M. Cem Samar').split(',')
    if name.strip()
]

AUTO_COMPLETE_GRACE_MINUTES = int(os.environ.get('AUTO_COMPLETE_GRACE_MINUTES', 30))
JOIN_WINDOW_BEFORE_MINUTES = int(os.environ.get('JOIN_WINDOW_BEFORE_MINUTES', 20))
JOIN_WINDOW_AFTER_MINUTES = int(os.environ.get('JOIN_WINDOW_AFTER_MINUTES', 120))

# Slots starting sooner than this (today only) are not offered
BOOKING_SLOT_BUFFER_MINUTES = int(os.environ.get('BOOKING_SLOT_BUFFER_MINUTES', 0))

# When on, direct bookings start as pending and wait for the doctor
BOOKING_REQUIRES_DOCTOR_CONFIRMATION = os.environ.get(
    'BOOKING_REQUIRES_DOCTOR_CONFIRMATION', 'False'
) == 'True'

ENABLE_24H_REMINDERS = os.environ.get('ENABLE_24H_REMINDERS', 'True') == 'True'
ENABLE_2H_REMINDERS = os.environ.get('ENABLE_2H_REMINDERS', 'True') == 'True'

# ==============================================================================
# PAYMENTS (Stripe)
# ==============================================================================
STRIPE_SECRET_KEY = os.environ.get('STRIPE_SECRET_KEY', '')
STRIPE_WEBHOOK_SECRET = os.environ.get('STRIPE_WEBHOOK_SECRET', '')

PAYMENT_SESSION_EXPIRY_MINUTES = int(os.environ.get('PAYMENT_SESSION_EXPIRY_MINUTES', 30))

# Consultation price per country, amounts in minor units
PAYMENT_PRICING = {
    'Germany': {'amount': 6000, 'currency': 'EUR'},
    'Bulgaria': {'amount': 6000, 'currency': 'BGN'},
}
PAYMENT_DEFAULT_COUNTRY = 'Germany'

# ==============================================================================
# INTEGRATIONS
# ==============================================================================
DAILY_API_KEY = os.environ.get('DAILY_API_KEY', '')
DAILY_API_URL = os.environ.get('DAILY_API_URL', 'https://api.daily.co/v1')
DAILY_ROOM_PREFIX = os.environ.get('DAILY_ROOM_PREFIX', 'telemedker-consult')
DAILY_REQUEST_TIMEOUT_SECONDS = int(os.environ.get('DAILY_REQUEST_TIMEOUT_SECONDS', 10))

from decimal import Decimal
from pathlib import Path

from environs import Env

BASE_DIR = Path(__file__).resolve().parent.parent

env = Env()
env.read_env(BASE_DIR / '.env')

APP_ENV = env.str('APP_ENV', 'local')

SECRET_KEY = env.str('APP_SECRET_KEY', 'change-me')

DEBUG = APP_ENV != 'production'

ALLOWED_HOSTS = env.list('ALLOWED_HOSTS', default=['*'])

INSTALLED_APPS = [
    'django.contrib.admin',
    'django.contrib.auth',
    'django.contrib.contenttypes',
    'django.contrib.sessions',
    'django.contrib.messages',
    'django.contrib.staticfiles',
    'rest_framework',
    'artmarket',
]

MIDDLEWARE = [
    'django.middleware.security.SecurityMiddleware',
    'django.contrib.sessions.middleware.SessionMiddleware',
    'django.middleware.common.CommonMiddleware',
    'django.middleware.csrf.CsrfViewMiddleware',
    'django.contrib.auth.middleware.AuthenticationMiddleware',
    'django.contrib.messages.middleware.MessageMiddleware',
    'django.middleware.clickjacking.XFrameOptionsMiddleware',
]

ROOT_URLCONF = 'core.urls'

TEMPLATES = [
    {
        'BACKEND': 'django.template.backends.django.DjangoTemplates',
        'DIRS': [],
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

WSGI_APPLICATION = 'core.wsgi.application'


DATABASES = {
    'default': {
        'ENGINE': env.str('DATABASE_ENGINE', 'django.db.backends.postgresql_psycopg2'),
        'NAME': env.str(
            'PGSQL_DATABASE_MARKETPLACE',
            env.str('PGSQL_DATABASE', 'artmarket'),
        ),
        'USER': env.str('PGSQL_USER', 'postgres'),
        'PASSWORD': env.str('PGSQL_PASSWORD', 'mysecretpassword'),
        'HOST': env.str('PGSQL_HOST', 'localhost'),
        'PORT': env.int('PGSQL_PORT', 5432),
    }
}

# The purchase lock uses cache.add(), which is only cross-process with a
# shared backend (redis/memcached) configured through CACHE_BACKEND.
CACHES = {
    'default': {
        'BACKEND': env.str('CACHE_BACKEND', 'django.core.cache.backends.locmem.LocMemCache'),
        'LOCATION': env.str('CACHE_LOCATION', 'artmarket'),
    }
}


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


LANGUAGE_CODE = 'en-us'

TIME_ZONE = 'UTC'

USE_I18N = True

USE_TZ = True


STATIC_URL = '/static/'
STATIC_ROOT = BASE_DIR / 'static'

DEFAULT_AUTO_FIELD = 'django.db.models.BigAutoField'

REST_FRAMEWORK = {
    'DEFAULT_RENDERER_CLASSES': [
        'rest_framework.renderers.JSONRenderer',
    ],
    'DEFAULT_AUTHENTICATION_CLASSES': [
        'artmarket.authentication.SessionTokenAuthentication',
    ],
    'UNAUTHENTICATED_USER': None,
    'EXCEPTION_HANDLER': 'artmarket.views.api_exception_handler',
}

# Wallet authentication
CHALLENGE_APP_NAME = env.str('CHALLENGE_APP_NAME', 'AfriArt')
CHALLENGE_TTL_SECONDS = env.int('CHALLENGE_TTL_SECONDS', 300)
SESSION_TOKEN_SECRET = env.str('SESSION_TOKEN_SECRET', SECRET_KEY)
SESSION_TOKEN_ALGORITHM = env.str('SESSION_TOKEN_ALGORITHM', 'HS256')
SESSION_TOKEN_TTL_SECONDS = env.int('SESSION_TOKEN_TTL_SECONDS', 7 * 24 * 3600)

# Hedera ledger
HEDERA_NETWORK = env.str('HEDERA_NETWORK', 'testnet')
HEDERA_OPERATOR_ID = env.str('HEDERA_OPERATOR_ID', '')
HEDERA_OPERATOR_KEY = env.str('HEDERA_OPERATOR_KEY', '')
HEDERA_TREASURY_ACCOUNT_ID = env.str('HEDERA_TREASURY_ACCOUNT_ID', HEDERA_OPERATOR_ID)
HEDERA_MIRROR_URL = env.str('HEDERA_MIRROR_URL', '')

# Confirmation polling
MIRROR_BASELINE_SECONDS = env.float('MIRROR_BASELINE_SECONDS', 4)
MIRROR_MAX_RETRIES = env.int('MIRROR_MAX_RETRIES', 10)
MIRROR_RETRY_DELAY_MS = env.int('MIRROR_RETRY_DELAY_MS', 2000)
MIRROR_REQUEST_TIMEOUT_SECONDS = env.float('MIRROR_REQUEST_TIMEOUT_SECONDS', 10)

# Purchases
PURCHASE_FEE_PERCENT = env.decimal('PURCHASE_FEE_PERCENT', Decimal('2'))
PURCHASE_PRICE_TOLERANCE = env.decimal('PURCHASE_PRICE_TOLERANCE', Decimal('0.01'))
PURCHASE_DUPLICATE_WINDOW_MINUTES = env.int('PURCHASE_DUPLICATE_WINDOW_MINUTES', 5)
PURCHASE_LOCK_SECONDS = env.int('PURCHASE_LOCK_SECONDS', 120)

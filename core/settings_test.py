from core.settings import *  # noqa: F401,F403

DATABASES = {
    'default': {
        'ENGINE': 'django.db.backends.sqlite3',
        'NAME': ':memory:',
    }
}

CACHES = {
    'default': {
        'BACKEND': 'django.core.cache.backends.locmem.LocMemCache',
        'LOCATION': 'artmarket-tests',
    }
}

SESSION_TOKEN_SECRET = 'test-session-secret'
HEDERA_OPERATOR_ID = '0.0.1001'
HEDERA_TREASURY_ACCOUNT_ID = '0.0.1001'
MIRROR_BASELINE_SECONDS = 0
MIRROR_RETRY_DELAY_MS = 0

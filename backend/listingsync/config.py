"""
Application configuration
Values are read from environment variables (a local .env file is honoured)
"""
import os
import secrets

from dotenv import load_dotenv

load_dotenv()

# Absolute path of the backend directory
BASE_DIR = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))


class Config:
    """Base configuration"""

    # ==================== Security ====================
    # Random key per process when unset (sessions do not survive restarts)
    SECRET_KEY = os.environ.get('SECRET_KEY') or secrets.token_hex(32)

    # Fernet key used to encrypt OAuth tokens at rest
    TOKEN_ENCRYPTION_KEY = os.environ.get('TOKEN_ENCRYPTION_KEY')

    # Shared secret the external cron trigger sends as a Bearer token
    CRON_SECRET = os.environ.get('CRON_SECRET')

    # Header carrying the user id resolved by the identity provider gateway
    IDENTITY_HEADER = os.environ.get('IDENTITY_HEADER', 'X-User-Id')

    # ==================== Database ====================
    DATABASE_URL = os.environ.get('DATABASE_URL')
    if DATABASE_URL:
        SQLALCHEMY_DATABASE_URI = DATABASE_URL
    else:
        SQLALCHEMY_DATABASE_URI = f'sqlite:///{os.path.join(BASE_DIR, "listing_sync.db")}'

    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # ==================== CORS ====================
    CORS_ORIGINS = os.environ.get(
        'CORS_ORIGINS',
        'http://localhost:3000,http://127.0.0.1:3000'
    ).split(',')

    # ==================== Logging ====================
    LOG_LEVEL = os.environ.get('LOG_LEVEL', 'INFO')
    LOG_FILE = os.environ.get('LOG_FILE')

    # ==================== OAuth provider ====================
    GOOGLE_CLIENT_ID = os.environ.get('GOOGLE_CLIENT_ID')
    GOOGLE_CLIENT_SECRET = os.environ.get('GOOGLE_CLIENT_SECRET')
    OAUTH_TOKEN_URL = os.environ.get('OAUTH_TOKEN_URL', 'https://oauth2.googleapis.com/token')
    # Refresh this many seconds before the stored expiry
    TOKEN_EXPIRY_SKEW_SECONDS = int(os.environ.get('TOKEN_EXPIRY_SKEW_SECONDS', '300'))

    # ==================== Provider API ====================
    PROVIDER_ACCOUNTS_BASE = os.environ.get(
        'PROVIDER_ACCOUNTS_BASE', 'https://mybusinessaccountmanagement.googleapis.com/v1')
    PROVIDER_LOCATIONS_BASE = os.environ.get(
        'PROVIDER_LOCATIONS_BASE', 'https://mybusinessbusinessinformation.googleapis.com/v1')
    PROVIDER_REVIEWS_BASE = os.environ.get(
        'PROVIDER_REVIEWS_BASE', 'https://mybusiness.googleapis.com/v4')
    PROVIDER_QANDA_BASE = os.environ.get(
        'PROVIDER_QANDA_BASE', 'https://mybusinessqanda.googleapis.com/v1')
    PROVIDER_PERFORMANCE_BASE = os.environ.get(
        'PROVIDER_PERFORMANCE_BASE', 'https://businessprofileperformance.googleapis.com/v1')
    PROVIDER_REQUEST_TIMEOUT = float(os.environ.get('PROVIDER_REQUEST_TIMEOUT', '30'))

    # ==================== Sync ====================
    # Max pages followed per listing before the phase stops paginating
    SYNC_PAGE_CAP = int(os.environ.get('SYNC_PAGE_CAP', '50'))
    SYNC_PAGE_SIZE = int(os.environ.get('SYNC_PAGE_SIZE', '100'))
    # Retries for transient provider failures (network, 5xx, 429)
    SYNC_MAX_RETRIES = int(os.environ.get('SYNC_MAX_RETRIES', '3'))
    SYNC_BACKOFF_BASE = float(os.environ.get('SYNC_BACKOFF_BASE', '1.0'))
    SYNC_BACKOFF_MAX = float(os.environ.get('SYNC_BACKOFF_MAX', '30.0'))
    # Accounts synced in parallel; phases of one account never overlap
    SYNC_MAX_WORKERS = int(os.environ.get('SYNC_MAX_WORKERS', '3'))
    # Running log entries older than this are treated as abandoned
    SYNC_STALE_TIMEOUT = int(os.environ.get('SYNC_STALE_TIMEOUT', '1800'))
    # Days of performance history requested per sync
    PERFORMANCE_LOOKBACK_DAYS = int(os.environ.get('PERFORMANCE_LOOKBACK_DAYS', '30'))

    # ==================== Status stream ====================
    STATUS_STREAM_INTERVAL = float(os.environ.get('STATUS_STREAM_INTERVAL', '3'))
    STATUS_STREAM_DURATION = float(os.environ.get('STATUS_STREAM_DURATION', '30'))
    STATUS_LOG_WINDOW = int(os.environ.get('STATUS_LOG_WINDOW', '180'))

    # ==================== Rate limiting ====================
    REDIS_URL = os.environ.get('REDIS_URL')
    RATE_LIMIT_REQUESTS = int(os.environ.get('RATE_LIMIT_REQUESTS', '100'))
    RATE_LIMIT_WINDOW_SECONDS = int(os.environ.get('RATE_LIMIT_WINDOW_SECONDS', '900'))
    RATE_LIMIT_SWEEP_INTERVAL = int(os.environ.get('RATE_LIMIT_SWEEP_INTERVAL', '300'))
    RATE_LIMIT_PREFIX = os.environ.get('RATE_LIMIT_PREFIX', 'ratelimit:dashboard')

    # ==================== Generative text ====================
    TEXT_GENERATION_URL = os.environ.get('TEXT_GENERATION_URL')
    TEXT_GENERATION_API_KEY = os.environ.get('TEXT_GENERATION_API_KEY')
    TEXT_GENERATION_TIMEOUT = float(os.environ.get('TEXT_GENERATION_TIMEOUT', '30'))

    # ==================== WebSocket ====================
    USE_WEBSOCKET = os.environ.get('USE_WEBSOCKET', '').lower() in ('1', 'true', 'yes')

    @classmethod
    def get_cors_config(cls):
        """CORS options for the /api/* resources"""
        return {
            "origins": cls.CORS_ORIGINS,
            "methods": ["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
            "allow_headers": ["Content-Type", "Authorization", cls.IDENTITY_HEADER],
            "expose_headers": [
                "X-RateLimit-Limit", "X-RateLimit-Remaining", "X-RateLimit-Reset", "Retry-After",
            ],
            "supports_credentials": True,
        }


class DevelopmentConfig(Config):
    """Development configuration"""
    DEBUG = True
    LOG_LEVEL = 'DEBUG'


class ProductionConfig(Config):
    """Production configuration"""
    DEBUG = False
    LOG_LEVEL = 'WARNING'

    @classmethod
    def validate(cls):
        """Warn about settings production should not run without"""
        errors = []

        if not os.environ.get('SECRET_KEY'):
            errors.append('SECRET_KEY is not set')

        if not os.environ.get('TOKEN_ENCRYPTION_KEY'):
            errors.append('TOKEN_ENCRYPTION_KEY is not set (OAuth tokens stored unencrypted)')

        if not os.environ.get('CRON_SECRET'):
            errors.append('CRON_SECRET is not set (cron endpoints are disabled)')

        if not (os.environ.get('GOOGLE_CLIENT_ID') and os.environ.get('GOOGLE_CLIENT_SECRET')):
            errors.append('GOOGLE_CLIENT_ID / GOOGLE_CLIENT_SECRET are not set (token refresh will fail)')

        if errors:
            print("Production configuration warnings:")
            for error in errors:
                print(f"  - {error}")
        return errors


class TestingConfig(Config):
    """Test configuration"""
    TESTING = True
    SQLALCHEMY_DATABASE_URI = 'sqlite:///:memory:'
    GOOGLE_CLIENT_ID = 'test-client-id'
    GOOGLE_CLIENT_SECRET = 'test-client-secret'
    CRON_SECRET = 'test-cron-secret'
    TOKEN_ENCRYPTION_KEY = None
    REDIS_URL = None
    SYNC_BACKOFF_BASE = 0.0
    SYNC_BACKOFF_MAX = 0.0
    STATUS_STREAM_INTERVAL = 0.0
    STATUS_STREAM_DURATION = 0.0
    USE_WEBSOCKET = False


config = {
    'development': DevelopmentConfig,
    'production': ProductionConfig,
    'testing': TestingConfig,
    'default': DevelopmentConfig
}


def get_config():
    """Pick the configuration class from FLASK_ENV"""
    env = os.environ.get('FLASK_ENV', 'development')
    return config.get(env, config['default'])

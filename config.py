"""Configuration module for Flask application."""
import os
from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()


class Config:
    """Base configuration class."""

    # Flask
    SECRET_KEY = os.getenv('SECRET_KEY', 'dev-secret-key-change-in-production')
    DEBUG = os.getenv('FLASK_DEBUG', '1') == '1'
    ENV = os.getenv('FLASK_ENV', 'development')
    TESTING = False

    # Database - Support multiple environment variable naming conventions
    # Priority: DATABASE_URL > DB_* > POSTGRES_*
    DATABASE_URL = os.getenv('DATABASE_URL')

    if not DATABASE_URL:
        # Try DB_* variables (Docker style)
        DB_HOST = os.getenv('DB_HOST') or os.getenv('POSTGRES_HOST', 'localhost')
        DB_PORT = os.getenv('DB_PORT') or os.getenv('POSTGRES_PORT', '5432')
        DB_NAME = os.getenv('DB_NAME') or os.getenv('POSTGRES_DB', 'studio_quotes')
        DB_USER = os.getenv('DB_USER') or os.getenv('POSTGRES_USER', 'studio')
        DB_PASSWORD = os.getenv('DB_PASSWORD') or os.getenv('POSTGRES_PASSWORD', 'studio')

        DATABASE_URL = (
            f"postgresql://{DB_USER}:{DB_PASSWORD}"
            f"@{DB_HOST}:{DB_PORT}/{DB_NAME}"
        )

    # SQLAlchemy
    SQLALCHEMY_DATABASE_URI = DATABASE_URL
    SQLALCHEMY_ECHO = os.getenv('SQLALCHEMY_ECHO', 'false').lower() == 'true'
    SQLALCHEMY_POOL_SIZE = int(os.getenv('SQLALCHEMY_POOL_SIZE', '10'))
    SQLALCHEMY_MAX_OVERFLOW = int(os.getenv('SQLALCHEMY_MAX_OVERFLOW', '20'))

    # Pricing engine
    # Seconds the "precio resincronizado" signal stays active
    PRICE_RESYNC_SIGNAL_SECONDS = int(os.getenv('PRICE_RESYNC_SIGNAL_SECONDS', '3'))
    # on_price: base = costo / (1 - margen); on_cost: base = costo * (1 + margen)
    DEFAULT_MARGIN_CONVENTION = os.getenv('DEFAULT_MARGIN_CONVENTION', 'on_price')

    # In-flight mutation guard (one mutating call per quote)
    MUTATION_GUARD_BACKEND = os.getenv('MUTATION_GUARD_BACKEND', 'local')  # local, redis
    MUTATION_GUARD_TTL = int(os.getenv('MUTATION_GUARD_TTL', '30'))  # seconds
    MUTATION_GUARD_KEY_PREFIX = os.getenv('MUTATION_GUARD_KEY_PREFIX', 'studio_quotes')
    REDIS_URL = os.getenv('REDIS_URL', 'redis://redis:6379/0')

    # Error tracking
    SENTRY_DSN = os.getenv('SENTRY_DSN')


class TestingConfig(Config):
    """In-memory SQLite, local guard, no Sentry."""

    TESTING = True
    DEBUG = False
    ENV = 'testing'
    SQLALCHEMY_DATABASE_URI = 'sqlite://'
    SQLALCHEMY_ECHO = False
    MUTATION_GUARD_BACKEND = 'local'
    SENTRY_DSN = None

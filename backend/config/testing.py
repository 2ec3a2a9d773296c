"""Testing configuration."""
from .base import BaseConfig

class TestingConfig(BaseConfig):
    """Testing configuration class."""

    # Basic Flask config
    DEBUG = False
    TESTING = True
    SECRET_KEY = 'test-secret-key'

    # Database (in-memory SQLite for testing)
    SQLALCHEMY_DATABASE_URI = 'sqlite:///:memory:'

    # In-process locks only
    REDIS_URL = None

    # Security Settings (relaxed for testing)
    LOCATION_TOKEN_SECRET = 'test-location-secret'
    LOCATION_MAX_AGE_SECONDS = None
    VERIFICATION_PROVIDER_TIMEOUT = 2

    # Logging
    LOG_LEVEL = 'WARNING'

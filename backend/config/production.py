"""Production configuration."""
import os

from .base import BaseConfig

class ProductionConfig(BaseConfig):
    """Production configuration class."""

    # Basic Flask config
    DEBUG = False
    TESTING = False
    SECRET_KEY = os.getenv('SECRET_KEY')  # Must be set in production

    # Database
    SQLALCHEMY_DATABASE_URI = os.getenv('DATABASE_URL')

    # Redis (required in production for cross-process locks)
    REDIS_URL = os.getenv('REDIS_URL')

    # Security Settings
    LOCATION_TOKEN_SECRET = os.getenv('LOCATION_TOKEN_SECRET')
    LOCATION_MAX_ACCURACY_METERS = 50
    LOCATION_TOKEN_EXPIRY = 60

    # Logging
    LOG_LEVEL = 'INFO'
    LOG_FILE = '/app/logs/app.log'

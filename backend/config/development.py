"""Development configuration."""
import os

from .base import BaseConfig

class DevelopmentConfig(BaseConfig):
    """Development configuration class."""

    DEBUG = True
    TESTING = False

    # Database
    SQLALCHEMY_DATABASE_URI = os.getenv('DEV_DATABASE_URL') or 'sqlite:///attendance_engine_dev.db'
    SQLALCHEMY_ECHO = True

    # Logging
    LOG_LEVEL = 'DEBUG'

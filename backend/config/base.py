"""Base configuration shared by every environment."""
import os

class BaseConfig:
    """Base configuration."""
    SECRET_KEY = os.environ.get('SECRET_KEY') or 'dev-secret-key-change-in-production'
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SQLALCHEMY_ECHO = False

    # Redis (keyed locks across worker processes; in-process locks when unset)
    REDIS_URL = os.environ.get('REDIS_URL') or None

    # Logging
    LOG_LEVEL = os.environ.get('LOG_LEVEL', 'INFO')
    LOG_FILE = os.environ.get('LOG_FILE', 'logs/app.log')

    # Identity verification
    VERIFICATION_MAX_ATTEMPTS = int(os.environ.get('VERIFICATION_MAX_ATTEMPTS', 3))
    VERIFICATION_PROVIDER_TIMEOUT = 10  # seconds
    VERIFICATION_PROVIDER_WORKERS = int(os.environ.get('VERIFICATION_PROVIDER_WORKERS', 8))

    # Location
    LOCATION_PROVIDER_TIMEOUT = 10  # seconds
    LOCATION_PROVIDER_WORKERS = int(os.environ.get('LOCATION_PROVIDER_WORKERS', 4))
    LOCATION_MAX_ACCURACY_METERS = 100
    LOCATION_MAX_AGE_SECONDS = 30
    LOCATION_TOKEN_SECRET = os.environ.get('LOCATION_TOKEN_SECRET') or 'location-token-secret-change-in-production'
    LOCATION_TOKEN_EXPIRY = 120  # seconds

    # Temporary workplace
    TEMPORARY_WORKPLACE_ENABLED = True
    TEMPORARY_WORKPLACE_REQUIRE_REASON = True
    TEMPORARY_WORKPLACE_REQUIRE_PHOTO = False
    TEMPORARY_WORKPLACE_MAX_DISTANCE_METERS = 5000

    # Approvals
    EXCEPTIONAL_ATTENDANCE_AUTO_APPROVE = False

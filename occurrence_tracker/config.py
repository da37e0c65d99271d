"""
Occurrence Tracker
Configuration classes for Flask App Factory.

Usage:
    config_name = os.getenv("APP_ENV", "development")
    app.config.from_object(config[config_name]())
"""

import os
import secrets

basedir = os.path.abspath(os.path.dirname(os.path.dirname(__file__)))

_SQLITE_TEST = "sqlite:///:memory:"

# Generate a random key for development; production MUST use a stable env var
_DEV_SECRET = secrets.token_hex(32)


def _csv(value):
    return [v.strip() for v in value.split(",") if v.strip()]


def database_url(default=None):
    """DATABASE_URL with the legacy postgres:// scheme normalised, or ``default``."""
    url = os.getenv("DATABASE_URL")
    if not url:
        return default
    if url.startswith("postgres://"):
        url = "postgresql://" + url[len("postgres://"):]
    return url


class Config:
    """Base configuration shared across all environments."""

    SECRET_KEY = os.getenv("SECRET_KEY", _DEV_SECRET)
    DEBUG = False
    TESTING = False

    # SQLAlchemy
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SQLALCHEMY_ENGINE_OPTIONS = {
        "pool_pre_ping": True,
    }

    # Email / SMTP (optional, dev mode logs without sending)
    MAIL_SERVER = os.getenv("MAIL_SERVER")
    MAIL_PORT = int(os.getenv("MAIL_PORT", "587"))
    MAIL_USE_TLS = os.getenv("MAIL_USE_TLS", "true").lower() == "true"
    MAIL_USERNAME = os.getenv("MAIL_USERNAME")
    MAIL_PASSWORD = os.getenv("MAIL_PASSWORD")
    MAIL_DEFAULT_SENDER = os.getenv("MAIL_DEFAULT_SENDER", "noreply@occurrence-tracker.local")

    # SMS gateway (optional, dev mode logs without sending)
    SMS_GATEWAY_URL = os.getenv("SMS_GATEWAY_URL")
    SMS_GATEWAY_API_KEY = os.getenv("SMS_GATEWAY_API_KEY")
    SMS_GATEWAY_TIMEOUT = int(os.getenv("SMS_GATEWAY_TIMEOUT", "15"))
    SMS_SENDER_ID = os.getenv("SMS_SENDER_ID", "OCCTRACK")
    SMS_COUNTRY_CODE = os.getenv("SMS_COUNTRY_CODE", "92")

    # Notification targeting
    OVERSIGHT_ROLES = _csv(os.getenv("OVERSIGHT_ROLES", "QUALITY_ASSURANCE,ADMIN,QUALITY_MANAGER"))
    NOTIFICATION_SNIPPET_LENGTH = int(os.getenv("NOTIFICATION_SNIPPET_LENGTH", "100"))

    # Used for deep links in notification emails
    APP_BASE_URL = os.getenv("APP_BASE_URL")


class DevelopmentConfig(Config):
    """Development environment configuration."""

    DEBUG = True
    SQLALCHEMY_DATABASE_URI = database_url(
        "sqlite:///" + os.path.join(basedir, "instance", "occurrence_tracker_dev.db")
    )


class TestingConfig(Config):
    """Testing environment configuration."""

    TESTING = True
    SQLALCHEMY_DATABASE_URI = os.getenv("TEST_DATABASE_URL", _SQLITE_TEST)
    # Never hit real transports from tests
    MAIL_SERVER = None
    SMS_GATEWAY_URL = None


class ProductionConfig(Config):
    """Production environment configuration."""

    DEBUG = False
    SQLALCHEMY_DATABASE_URI = database_url()

    # Lifecycle actions hold a row lock on the occurrence; bound the wait for it
    SQLALCHEMY_ENGINE_OPTIONS = {
        "pool_pre_ping": True,
        "pool_recycle": 300,
        "connect_args": {"options": "-c lock_timeout=10000"},
    }

    def __init__(self):
        if not self.SQLALCHEMY_DATABASE_URI:
            raise RuntimeError("DATABASE_URL environment variable is required in production")
        if not os.getenv("SECRET_KEY"):
            raise RuntimeError("SECRET_KEY environment variable must be set in production")


# Configuration mapping: environment name -> config class
config = {
    "development": DevelopmentConfig,
    "testing": TestingConfig,
    "production": ProductionConfig,
    "default": DevelopmentConfig,
}

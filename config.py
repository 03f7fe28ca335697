"""
Configuration for DesignBundleWeb.

Values come from the environment (or a .env file next to this module).
The marketplace backend is the source of truth for entitlements and prices;
nothing here overrides what the backend reports.
"""

import os
from pathlib import Path

from dotenv import load_dotenv

# Load .env file early so environment variables are available for Config class
# This must happen before the Config class is defined
load_dotenv(override=True)

# Base directory (where this file lives)
BASE_DIR = Path(__file__).resolve().parent


class Config:
    """Default configuration for the Flask application."""

    # Flask settings
    SECRET_KEY = os.environ.get("FLASK_SECRET_KEY", "dev-secret-key")
    SESSION_COOKIE_NAME = "design_bundle_session"
    ENVIRONMENT = os.environ.get("FLASK_ENV", "development")

    # Debug mode
    DEBUG = os.environ.get("FLASK_DEBUG", "1") == "1"

    # ==========================================================================
    # Marketplace backend
    # ==========================================================================
    MARKETPLACE_API_BASE_URL = os.environ.get(
        "MARKETPLACE_API_BASE_URL", "https://devapi.wedesignz.com"
    )
    MARKETPLACE_API_TIMEOUT_SECONDS = float(
        os.environ.get("MARKETPLACE_API_TIMEOUT_SECONDS", "15")
    )

    # ==========================================================================
    # Payment gateway (checkout widget runs in the browser)
    # ==========================================================================
    PAYMENT_GATEWAY_KEY_ID = os.environ.get("PAYMENT_GATEWAY_KEY_ID", "")
    PAYMENT_CURRENCY = os.environ.get("PAYMENT_CURRENCY", "INR")
    PAYMENT_MERCHANT_NAME = os.environ.get("PAYMENT_MERCHANT_NAME", "WeDesign")

    # ==========================================================================
    # Workflow tuning
    # ==========================================================================
    # JOB_POLL_INTERVAL_SECONDS: delay between status fetches while the job
    #   is pending/processing. Generation usually takes 30-60 seconds.
    # JOB_POLL_MAX_ATTEMPTS: after this many fetches without a terminal
    #   status the tracker reports "taking longer than expected".
    # ELIGIBILITY_CACHE_TTL_SECONDS: entitlements only change through the
    #   user's own actions, so a short cache is safe.
    # ==========================================================================
    JOB_POLL_INTERVAL_SECONDS = float(os.environ.get("JOB_POLL_INTERVAL_SECONDS", "3"))
    JOB_POLL_MAX_ATTEMPTS = int(os.environ.get("JOB_POLL_MAX_ATTEMPTS", "100"))
    ELIGIBILITY_CACHE_TTL_SECONDS = float(
        os.environ.get("ELIGIBILITY_CACHE_TTL_SECONDS", "30")
    )

    # Input limits
    MAX_CUSTOMER_NAME_LENGTH = 120
    MAX_SEARCH_QUERY_LENGTH = 200


class ProductionConfig(Config):
    """Production configuration."""
    DEBUG = False
    TESTING = False
    SESSION_COOKIE_SECURE = True
    SESSION_COOKIE_HTTPONLY = True
    SESSION_COOKIE_SAMESITE = 'Lax'
    PERMANENT_SESSION_LIFETIME = 3600  # 1 hour


class DevelopmentConfig(Config):
    """Development configuration."""
    DEBUG = True
    TESTING = False


class TestingConfig(Config):
    """Testing configuration."""
    DEBUG = False
    TESTING = True
    SECRET_KEY = "testing-secret-key"
    JOB_POLL_INTERVAL_SECONDS = 0.0
    JOB_POLL_MAX_ATTEMPTS = 5
    ELIGIBILITY_CACHE_TTL_SECONDS = 30.0

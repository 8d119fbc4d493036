"""
Centralized configuration for all environments.

Select a config by setting:
  APP_CONFIG=folio.config.DevConfig      # local dev
  APP_CONFIG=folio.config.ProdConfig     # production (default if unset)
  APP_CONFIG=folio.config.TestConfig     # pytest

Notes:
- SECRET_KEY is read from FLASK_SECRET_KEY
- Rate limiting uses Flask-Limiter v3 keys (RATELIMIT_*).
- Stripe price ids are read per plan/interval (STRIPE_<PLAN>[_YEARLY]_PRICE_ID).
"""

from __future__ import annotations
import os


def _int_env(name: str, default: int) -> int:
    try:
        return int(os.getenv(name, str(default)))
    except ValueError:
        return default


class BaseConfig:
    # Secrets & basics
    SECRET_KEY = os.getenv("FLASK_SECRET_KEY", "")
    DEBUG = False
    TESTING = False

    # Public base URL used for Stripe redirect URLs
    PUBLIC_URL = os.getenv("PUBLIC_URL", "http://localhost:5000").rstrip("/")

    # Supabase (Database + Auth)
    SUPABASE_URL = os.getenv("SUPABASE_URL", "")
    SUPABASE_ANON_KEY = os.getenv("SUPABASE_ANON_KEY", "")
    SUPABASE_SERVICE_ROLE_KEY = os.getenv("SUPABASE_SERVICE_ROLE_KEY", "")

    # Stripe
    STRIPE_SECRET_KEY = os.getenv("STRIPE_SECRET_KEY", "")
    STRIPE_WEBHOOK_SECRET = os.getenv("STRIPE_WEBHOOK_SECRET", "")
    STRIPE_PRICE_IDS = {
        ("premium", "monthly"): os.getenv("STRIPE_PREMIUM_PRICE_ID", ""),
        ("premium", "yearly"): os.getenv("STRIPE_PREMIUM_YEARLY_PRICE_ID", ""),
        ("pro", "monthly"): os.getenv("STRIPE_PRO_PRICE_ID", ""),
        ("pro", "yearly"): os.getenv("STRIPE_PRO_YEARLY_PRICE_ID", ""),
    }
    STRIPE_TRIAL_DAYS = _int_env("STRIPE_TRIAL_DAYS", 7)  # premium monthly only

    # Subscriptions
    SUBSCRIPTION_PERIOD_DAYS = _int_env("SUBSCRIPTION_PERIOD_DAYS", 30)
    FREE_PLAN_PERIOD_DAYS = _int_env("FREE_PLAN_PERIOD_DAYS", 365)
    SUBSCRIPTION_POLL_INTERVAL_SECONDS = _int_env("SUBSCRIPTION_POLL_INTERVAL_SECONDS", 10)
    SUBSCRIPTION_POLL_MAX_INTERVAL_SECONDS = _int_env("SUBSCRIPTION_POLL_MAX_INTERVAL_SECONDS", 60)
    SUBSCRIPTION_POLL_MAX_SECONDS = _int_env("SUBSCRIPTION_POLL_MAX_SECONDS", 300)
    PLAN_CACHE_TTL_SECONDS = _int_env("PLAN_CACHE_TTL_SECONDS", 300)

    # Comments
    COMMENT_MAX_LENGTH = _int_env("COMMENT_MAX_LENGTH", 1000)
    PRECHECK_MIN_LENGTH = _int_env("PRECHECK_MIN_LENGTH", 10)

    # Flask-Limiter v3
    RATELIMIT_ENABLED = os.getenv("RATELIMIT_ENABLED", "true").lower() == "true"
    RATELIMIT_STORAGE_URI = os.getenv("RATELIMIT_STORAGE_URI", "memory://")
    RATELIMIT_DEFAULT = os.getenv("RATELIMIT_DEFAULT", "60 per minute; 2000 per day")
    COMMENT_RATE_LIMIT = os.getenv("COMMENT_RATE_LIMIT", "10 per minute; 200 per day")
    PRECHECK_RATE_LIMIT = os.getenv("PRECHECK_RATE_LIMIT", "60 per minute")
    CHECKOUT_RATE_LIMIT = os.getenv("CHECKOUT_RATE_LIMIT", "10 per minute")

    # Misc
    PREFERRED_URL_SCHEME = os.getenv("PREFERRED_URL_SCHEME", "https")


class ProdConfig(BaseConfig):
    """Production settings (selected by default if APP_CONFIG is unset)."""
    pass


class DevConfig(BaseConfig):
    """Developer-friendly settings."""
    ENV = "development"
    DEBUG = True
    PREFERRED_URL_SCHEME = "http"
    # Relaxed rate limits for local testing
    COMMENT_RATE_LIMIT = "100 per minute"


class TestConfig(BaseConfig):
    """CI/pytest settings."""
    TESTING = True
    DEBUG = True
    # Usually disable the limiter in tests to avoid flakiness
    RATELIMIT_ENABLED = False
    WTF_CSRF_ENABLED = False
    STRIPE_WEBHOOK_SECRET = "whsec_test"
    PUBLIC_URL = "http://localhost"

"""
Application factory and global configuration.

Creates the Flask app, applies security headers, configures rate limiting,
wires Stripe and Supabase, registers blueprints and CLI commands. This file
keeps startup/config concerns together and avoids domain logic here.
"""

from __future__ import annotations
import os
import stripe
from flask import Flask, Response
from flask_wtf.csrf import CSRFProtect
from dotenv import load_dotenv  # <-- ensure .env is loaded for local dev
from .extensions import limiter
from .routes.api import api_bp
from .routes.billing import billing_bp
from .routes.admin import admin_bp
from .services import supabase_client
from .services.plans import init_plans
from .cli import remoderate_comments_command, reconcile_session_command


def _validate_production_security(app: Flask, cfg_path: str) -> None:
    """
    Validate critical security settings in production environments.

    Raises RuntimeError if production security requirements are not met.
    This prevents the app from starting with insecure configurations.

    Checks:
    - SECRET_KEY must be set and strong (>= 32 characters)
    - DEBUG must be False (no debug mode in production)
    - STRIPE_WEBHOOK_SECRET must be set (unverified webhooks are never accepted)
    - PUBLIC_URL must be https (Stripe redirect targets)

    Args:
        app: Flask application instance
        cfg_path: Config path being used (e.g., "folio.config.ProdConfig")
    """
    # Only validate if running production config
    is_production = "ProdConfig" in cfg_path
    is_test = app.config.get("TESTING", False)

    # Skip validation in test/dev environments
    if not is_production or is_test:
        return

    errors = []

    # Check SECRET_KEY strength
    secret_key = app.config.get("SECRET_KEY", "")
    if not secret_key:
        errors.append(
            "SECRET_KEY is not set. Set FLASK_SECRET_KEY environment variable. "
            "Generate with: python -c 'import secrets; print(secrets.token_hex(32))'"
        )
    elif len(secret_key) < 32:
        errors.append(
            f"SECRET_KEY is too weak ({len(secret_key)} chars). "
            "Must be at least 32 characters for production security."
        )

    # Check DEBUG mode
    if app.config.get("DEBUG", False):
        errors.append(
            "DEBUG must be False in production. Debug mode exposes sensitive information "
            "and should never be enabled in production environments."
        )

    if not app.config.get("STRIPE_WEBHOOK_SECRET"):
        errors.append(
            "STRIPE_WEBHOOK_SECRET is not set. Webhook deliveries cannot be verified "
            "and every payment event would be rejected."
        )

    if not app.config.get("PUBLIC_URL", "").startswith("https://"):
        errors.append(
            "PUBLIC_URL must use https in production. "
            "Stripe redirects customers back to this URL after checkout."
        )

    # If any errors, raise exception to prevent app startup
    if errors:
        error_msg = "\n\n[ERROR] PRODUCTION SECURITY VALIDATION FAILED:\n\n" + "\n\n".join(f"  * {err}" for err in errors)
        error_msg += "\n\n[WARNING] The application will not start until these security issues are resolved.\n"
        raise RuntimeError(error_msg)

    # Log success
    app.logger.info("[OK] Production security validation passed")


def create_app() -> Flask:
    # Load .env early (for local dev)
    # Use override=True to ensure .env values take precedence over system environment
    load_dotenv(override=True)

    app = Flask(__name__)

    # --- Load central config.py first ---
    # Allow APP_CONFIG to override (e.g., folio.config.DevConfig)
    cfg_path = os.getenv("APP_CONFIG", "folio.config.ProdConfig")
    try:
        app.config.from_object(cfg_path)
    except (ImportError, AttributeError) as e:
        app.logger.warning(f"Could not load config object {cfg_path}: {e}")

    # --- Production Security Validation ---
    _validate_production_security(app, cfg_path)

    limiter.init_app(app)

    if not app.config.get("RATELIMIT_ENABLED", True):
        limiter.enabled = False

    # Ensure SECRET_KEY is applied from config
    if not app.secret_key:
        app.secret_key = app.config.get("SECRET_KEY", "")

    # CSRF protection; the JSON APIs authenticate with bearer tokens and the
    # webhook with Stripe signatures, so they carry no CSRF token
    csrf = CSRFProtect(app)
    csrf.exempt(api_bp)
    csrf.exempt(billing_bp)
    csrf.exempt(admin_bp)

    # Initialize Supabase client and plan catalog
    supabase_client.init_supabase(app)
    init_plans(app)

    # Stripe SDK
    stripe.api_key = app.config.get("STRIPE_SECRET_KEY", "")
    if not stripe.api_key:
        app.logger.warning("STRIPE_SECRET_KEY not configured. Checkout is disabled.")

    @app.after_request
    def apply_security_headers(resp: Response) -> Response:
        resp.headers["Content-Security-Policy"] = "default-src 'none'; frame-ancestors 'none'"
        resp.headers["X-Content-Type-Options"] = "nosniff"
        resp.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        resp.headers["X-Frame-Options"] = "DENY"
        resp.headers["Cache-Control"] = "no-store"
        return resp

    # Blueprints
    app.register_blueprint(api_bp, url_prefix="/api/v1")
    app.register_blueprint(billing_bp)
    app.register_blueprint(admin_bp)

    # CLI
    app.cli.add_command(remoderate_comments_command)
    app.cli.add_command(reconcile_session_command)

    return app

"""
Supabase client initialization and helper functions.

Provides centralized access to Supabase for:
- Authentication (bearer access tokens issued by Supabase Auth)
- Profile reads and entitlement writes
- Shared helpers used by the table-specific services
"""

from __future__ import annotations
from typing import Optional, Dict, Any
from flask import current_app, has_app_context
from supabase import create_client, Client


def _safe_log_error(message: str) -> None:
    """
    Log error message only if Flask app context is available.

    This allows functions to be called from tests without app context.
    """
    try:
        if has_app_context():
            current_app.logger.error(message)
    except (ImportError, RuntimeError):
        pass


# Global client instances (initialized once per app)
_supabase_client: Optional[Client] = None  # User client (anon key)
_supabase_admin: Optional[Client] = None   # Admin client (service role key)


def init_supabase(app) -> None:
    """
    Initialize Supabase clients with app config.
    Creates two clients:
    - Regular client with anon key (token verification, public reads)
    - Admin client with service role key (webhooks, moderation, entitlements)

    Call this from the Flask app factory.
    """
    global _supabase_client, _supabase_admin

    url = app.config.get("SUPABASE_URL", "")
    anon_key = app.config.get("SUPABASE_ANON_KEY", "")
    service_key = app.config.get("SUPABASE_SERVICE_ROLE_KEY", "")

    if not url or not anon_key:
        app.logger.warning("Supabase URL or ANON_KEY not configured. Supabase features will be disabled.")
        _supabase_client = None
        _supabase_admin = None
        return

    try:
        _supabase_client = create_client(url, anon_key)
        app.logger.info("Supabase client initialized successfully")

        if service_key:
            _supabase_admin = create_client(url, service_key)
            app.logger.info("Supabase admin client initialized successfully")
        else:
            app.logger.warning("SUPABASE_SERVICE_ROLE_KEY not configured. Billing and moderation writes are disabled.")

    except Exception as e:
        app.logger.error(f"Failed to initialize Supabase client: {e}")
        _supabase_client = None
        _supabase_admin = None


def get_admin_client() -> Optional[Client]:
    """Get the admin Supabase client instance (admin client with service role key)."""
    return _supabase_admin


def is_duplicate_key_error(error: Exception) -> bool:
    """True when a Postgres unique constraint rejected an insert."""
    if getattr(error, "code", None) == "23505":
        return True
    error_msg = str(error)
    return "duplicate key" in error_msg or "23505" in error_msg


# ============================================================================
# Authentication Helpers
# ============================================================================

def get_user_from_token(access_token: str) -> Optional[Dict[str, Any]]:
    """
    Verify a Supabase access token and return the user.

    Args:
        access_token: JWT access token from Supabase Auth

    Returns:
        User dict with id, email, etc. or None if invalid
    """
    if not _supabase_client or not access_token:
        return None

    try:
        response = _supabase_client.auth.get_user(access_token)
        if response and response.user:
            return response.user.model_dump()
        return None
    except Exception as e:
        _safe_log_error(f"Error verifying access token: {e}")
        return None


# ============================================================================
# Profile Helpers
# ============================================================================

def get_user_profile(user_id: str) -> Optional[Dict[str, Any]]:
    """
    Get user profile by user ID.

    Args:
        user_id: Supabase user UUID

    Returns:
        Profile dict (is_admin, subscription_tier, portfolio_limit, ...) or None
    """
    client = _supabase_admin or _supabase_client
    if not client:
        return None

    try:
        # maybe_single() handles 0 rows gracefully
        response = client.table("profiles").select("*").eq("id", user_id).maybe_single().execute()
        return response.data if response else None
    except Exception as e:
        _safe_log_error(f"Error fetching user profile: {e}")
        return None


def is_admin(user_id: str) -> bool:
    profile = get_user_profile(user_id)
    return bool(profile and profile.get("is_admin", False))


def get_portfolio_item_count(user_id: str) -> int:
    """
    Count the creator's portfolio items.

    Returns:
        Number of items (0 on error)
    """
    client = _supabase_admin or _supabase_client
    if not client:
        return 0

    try:
        response = client.table("portfolio_items").select("id", count="exact").eq("creator_id", user_id).execute()
        return response.count or 0
    except Exception as e:
        _safe_log_error(f"Error counting portfolio items: {e}")
        return 0

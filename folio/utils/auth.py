"""
Authentication utilities and decorators for route protection.

Provides:
- @require_auth: Decorator to require an authenticated creator (401 JSON)
- @require_admin: Decorator to require admin role (403 JSON)
- Request-scoped user helpers

Clients authenticate with a Supabase access token sent as
`Authorization: Bearer <token>`.
"""

from __future__ import annotations
from functools import wraps
from typing import Optional, Dict, Any
from flask import request, jsonify, g
from folio.services import supabase_client


# ============================================================================
# Request user
# ============================================================================

def _bearer_token() -> Optional[str]:
    header = request.headers.get("Authorization", "")
    scheme, _, token = header.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


def get_current_user() -> Optional[Dict[str, Any]]:
    """
    Get the user for the current request's bearer token.

    Returns:
        User dict with id, email, etc. or None if not authenticated
    """
    # Check if user already loaded in request context
    if hasattr(g, "user"):
        return g.user

    token = _bearer_token()
    g.user = supabase_client.get_user_from_token(token) if token else None
    return g.user


def get_current_user_id() -> Optional[str]:
    """
    Get current user's ID.

    Returns:
        User UUID or None if not authenticated
    """
    user = get_current_user()
    return user.get("id") if user else None


def is_authenticated() -> bool:
    """Check if user is currently authenticated."""
    return get_current_user() is not None


# ============================================================================
# Decorators
# ============================================================================

def require_auth(f):
    """
    Decorator to require authentication for a route.

    Usage:
        @api_bp.post("/portfolio/<item_id>/comments")
        @require_auth
        def create_comment(item_id):
            user_id = get_current_user_id()
            ...
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        if not is_authenticated():
            return jsonify({"success": False, "error": "Authentication required"}), 401

        return f(*args, **kwargs)

    return decorated_function


def require_admin(f):
    """
    Decorator to require admin privileges for a route.

    Not authenticated -> 401; authenticated but not admin -> 403.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        if not is_authenticated():
            return jsonify({"success": False, "error": "Authentication required"}), 401

        # Check admin privileges
        if not supabase_client.is_admin(get_current_user_id()):
            return jsonify({"success": False, "error": "Admin privileges required"}), 403

        return f(*args, **kwargs)

    return decorated_function

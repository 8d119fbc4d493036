"""
Defines JSON endpoints used by the front end.

Endpoints:
- /comments/precheck: Advisory moderation feedback while typing
- /portfolio/<id>/comments: List approved comments / submit a comment
- /creator/upload-limit: Whether the creator may add another portfolio item
- /portfolio/<id>/feature-request: Spend one featured-placement request
"""

from flask import Blueprint, request, jsonify, current_app
from ..utils.auth import require_auth, get_current_user_id
from ..utils.errors import sanitize_error, GENERIC_MESSAGES, TransientStoreError
from ..services import supabase_client, comments
from ..services.entitlements import check_upload_limit, can_request_featured
from ..services.moderation import content_moderator
from ..services.subscriptions import get_reconciler
from ..services.plans import get_catalog
from ..extensions import limiter


api_bp = Blueprint("api", __name__)


def _comment_rate_limit() -> str:
    return current_app.config.get("COMMENT_RATE_LIMIT", "10 per minute")


def _precheck_rate_limit() -> str:
    return current_app.config.get("PRECHECK_RATE_LIMIT", "60 per minute")


@api_bp.route("/comments/precheck", methods=["POST"])
@limiter.limit(_precheck_rate_limit)
def precheck_comment():
    """
    Advisory check for comment text as the user types.

    Never blocks anything: the authoritative decision happens on submit.
    Text shorter than PRECHECK_MIN_LENGTH is reported clean.

    Request body (JSON):
        {"content": "..."}

    Returns:
        {"success": true, "is_clean": bool, "warning": str|null, "severity": str|null}
    """
    data = request.get_json(silent=True) or {}
    content = data.get("content")
    if not isinstance(content, str):
        return jsonify({"success": False, "error": "content must be text"}), 400

    min_length = current_app.config.get("PRECHECK_MIN_LENGTH", 10)
    if len(content.strip()) < min_length:
        return jsonify({"success": True, "is_clean": True, "warning": None, "severity": None}), 200

    result = content_moderator.pre_check(content)
    return jsonify({"success": True, **result.to_dict()}), 200


@api_bp.route("/portfolio/<item_id>/comments", methods=["GET"])
def list_comments(item_id: str):
    """Approved comments for a portfolio item."""
    limit = min(max(request.args.get("limit", 100, type=int), 1), 200)
    return jsonify({
        "success": True,
        "comments": comments.get_visible_comments(item_id, limit=limit),
    }), 200


@api_bp.route("/portfolio/<item_id>/comments", methods=["POST"])
@require_auth
@limiter.limit(_comment_rate_limit)
def create_comment(item_id: str):
    """
    Submit a comment. Moderation runs on the server and decides the stored
    status; the response tells the author whether it is visible now.

    Request body (JSON):
        {"content": "...", "parent_comment_id": "uuid" (optional)}

    Returns:
        201: {"success": true, "comment": {...}, "status": "approved"|"pending"}
        400: invalid content or auto-rejected comment
        401: not authenticated
    """
    data = request.get_json(silent=True)
    if not data:
        return jsonify({"success": False, "error": "Invalid request body"}), 400

    comment, verdict, error = comments.submit_comment(
        item_id,
        get_current_user_id(),
        data.get("content"),
        parent_comment_id=data.get("parent_comment_id"),
        max_length=current_app.config.get("COMMENT_MAX_LENGTH", 1000),
    )

    if verdict is None and error:
        # Validation failure (nothing stored)
        return jsonify({"success": False, "error": error}), 400

    if error:
        current_app.logger.error(f"Comment submission failed for item {item_id}: {error}")
        return jsonify({"success": False, "error": GENERIC_MESSAGES["database"]}), 500

    status = comment.get("moderation_status")
    if status == comments.STATUS_REJECTED:
        return jsonify({
            "success": False,
            "status": status,
            "error": "Your comment violates our community guidelines and was not posted.",
        }), 400

    message = None
    if status == comments.STATUS_PENDING:
        message = "Your comment is under review and will appear once approved."

    return jsonify({
        "success": True,
        "status": status,
        "comment": comment,
        "message": message,
    }), 201


@api_bp.route("/creator/upload-limit", methods=["GET"])
@require_auth
def upload_limit():
    """Whether the current creator may upload another portfolio item."""
    user_id = get_current_user_id()

    try:
        profile = supabase_client.get_user_profile(user_id)
        current_count = supabase_client.get_portfolio_item_count(user_id)
        result = check_upload_limit(profile, current_count, default_limit=get_catalog().free().max_media)
        return jsonify({"success": True, **result}), 200
    except Exception as e:
        sanitized_msg = sanitize_error(e, "database", "Upload limit check failed")
        return jsonify({"success": False, "error": sanitized_msg}), 500


@api_bp.route("/portfolio/<item_id>/feature-request", methods=["POST"])
@require_auth
@limiter.limit("5 per minute")
def request_featured(item_id: str):
    """
    Request featured placement for a portfolio item.

    Returns:
        201: request recorded
        403: not eligible (free tier, expired or no requests left)
        404: item not found / not owned by creator
    """
    user_id = get_current_user_id()
    profile = supabase_client.get_user_profile(user_id)

    eligible, reason = can_request_featured(profile)
    if not eligible:
        return jsonify({"success": False, "error": reason}), 403

    client = supabase_client.get_admin_client()
    if not client:
        return jsonify({"success": False, "error": GENERIC_MESSAGES["database"]}), 503

    try:
        item = client.table("portfolio_items").select("id, creator_id") \
            .eq("id", item_id).maybe_single().execute()
        if not item or not item.data or item.data.get("creator_id") != user_id:
            return jsonify({"success": False, "error": "Portfolio item not found"}), 404

        result, error = get_reconciler().consume_featured_request(user_id)
        if error:
            return jsonify({"success": False, "error": error}), 403

        data = request.get_json(silent=True) or {}
        client.table("featured_requests").insert({
            "portfolio_item_id": item_id,
            "creator_id": user_id,
            "status": "pending",
            "message": (data.get("message") or "")[:500] or None,
        }).execute()

        return jsonify({
            "success": True,
            "featured_requests_available": result.entitlement.featured_requests_available,
        }), 201

    except TransientStoreError as e:
        sanitized_msg = sanitize_error(e, "database", "Featured request failed")
        return jsonify({"success": False, "error": sanitized_msg}), 503
    except Exception as e:
        sanitized_msg = sanitize_error(e, "database", "Featured request failed")
        return jsonify({"success": False, "error": sanitized_msg}), 500

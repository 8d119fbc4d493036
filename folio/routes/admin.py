"""
Admin routes for comment moderation and plan management.

Provides:
- Moderation queue with a freshly computed verdict per comment
- Approve / reject / flag / delete actions
- Plan catalog view and edits
- Basic counters (active subscriptions, queue size)
"""

from __future__ import annotations
from flask import Blueprint, request, jsonify
from folio.utils.auth import require_admin, get_current_user_id
from folio.utils.errors import sanitize_error, TransientStoreError
from folio.utils.validation import validate_notes, validate_plan_update
from folio.services import comments
from folio.services.plans import get_catalog
from folio.services.subscriptions import get_reconciler

admin_bp = Blueprint("admin", __name__, url_prefix="/admin")

_ACTIONS = {
    "approve": comments.approve_comment,
    "reject": comments.reject_comment,
    "flag": comments.flag_comment,
}


@admin_bp.route("/comments", methods=["GET"])
@require_admin
def moderation_queue():
    """Non-approved comments (or those with ?status=...), newest first."""
    status = request.args.get("status") or None
    limit = min(max(request.args.get("limit", 100, type=int), 1), 500)

    queue, error = comments.get_moderation_queue(status=status, limit=limit)
    if error:
        code = 400 if error.startswith("Invalid status") else 500
        return jsonify({"success": False, "error": error}), code

    return jsonify({"success": True, "comments": queue, "count": len(queue)}), 200


@admin_bp.route("/comments/<comment_id>", methods=["GET"])
@require_admin
def comment_detail(comment_id: str):
    comment = comments.get_comment(comment_id)
    if comment is None:
        return jsonify({"success": False, "error": "Comment not found"}), 404
    return jsonify({"success": True, "comment": comment}), 200


@admin_bp.route("/comments/<comment_id>/<action>", methods=["POST"])
@require_admin
def moderate_comment(comment_id: str, action: str):
    """Apply a moderator decision. Body may carry {"notes": "..."}."""
    handler = _ACTIONS.get(action)
    if handler is None:
        return jsonify({"success": False, "error": f"Unknown action: {action}"}), 404

    data = request.get_json(silent=True) or {}
    success, error = handler(comment_id, get_current_user_id(), validate_notes(data.get("notes")))

    if not success:
        code = 404 if error == "Comment not found" else 500
        return jsonify({"success": False, "error": error}), code

    return jsonify({"success": True}), 200


@admin_bp.route("/comments/<comment_id>", methods=["DELETE"])
@require_admin
def remove_comment(comment_id: str):
    success, error = comments.delete_comment(comment_id)
    if not success:
        code = 404 if error == "Comment not found" else 500
        return jsonify({"success": False, "error": error}), code
    return jsonify({"success": True}), 200


@admin_bp.route("/plans", methods=["GET"])
@require_admin
def list_plans():
    return jsonify({"success": True, "plans": [plan.to_dict() for plan in get_catalog().all()]}), 200


@admin_bp.route("/plans/<plan_type>", methods=["POST"])
@require_admin
def update_plan(plan_type: str):
    """Edit plan limits/pricing. Takes effect for entitlements derived afterwards."""
    changes, error = validate_plan_update(request.get_json(silent=True))
    if error:
        return jsonify({"success": False, "error": error}), 400

    plan, error = get_catalog().update(plan_type, changes)
    if error:
        code = 404 if error == "Plan not found" or error.startswith("Unknown plan type") else 500
        return jsonify({"success": False, "error": error}), code

    return jsonify({"success": True, "plan": plan.to_dict()}), 200


@admin_bp.route("/metrics", methods=["GET"])
@require_admin
def metrics():
    """Counters for the admin dashboard."""
    pending, error = comments.get_moderation_queue(status=comments.STATUS_PENDING, limit=500)
    try:
        active = get_reconciler().store.count_active()
    except TransientStoreError as e:
        sanitize_error(e, "database", "Counting subscriptions failed")
        active = None

    return jsonify({
        "success": True,
        "active_subscriptions": active,
        "pending_comments": None if error else len(pending),
    }), 200

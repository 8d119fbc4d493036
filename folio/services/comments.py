"""
Portfolio comment service.

Handles comment submission (with authoritative moderation at write time) and
the admin review actions that are the only other writers of a comment's
moderation status. Uses the portfolio_comments table.
"""

from __future__ import annotations
from typing import Optional, Dict, Any, List, Tuple
from datetime import datetime, timezone
import logging
from flask import current_app, has_app_context
from folio.services.supabase_client import get_admin_client
from folio.services.moderation import ModerationVerdict, content_moderator
from folio.utils.validation import validate_comment

logger = logging.getLogger(__name__)

TABLE = "portfolio_comments"

STATUS_PENDING = "pending"
STATUS_APPROVED = "approved"
STATUS_FLAGGED = "flagged"
STATUS_REJECTED = "rejected"
MODERATION_STATUSES = (STATUS_PENDING, STATUS_APPROVED, STATUS_FLAGGED, STATUS_REJECTED)

DEFAULT_MAX_LENGTH = 1000


def _safe_log_error(message: str) -> None:
    """Safely log an error, handling cases where no app context exists."""
    if has_app_context():
        current_app.logger.error(message)
    else:
        logger.error(message)


def moderation_status_for(verdict: ModerationVerdict) -> str:
    """
    Initial moderation_status for a new comment.

    approved -> approved, auto-reject bucket -> rejected,
    manual-review bucket -> pending (held until an admin decides).
    """
    if verdict.approved:
        return STATUS_APPROVED
    if verdict.auto_rejected:
        return STATUS_REJECTED
    return STATUS_PENDING


def _author_fields(supabase, user_id: str) -> Dict[str, Any]:
    """Cached display fields copied onto the comment row."""
    try:
        response = supabase.table("profiles") \
            .select("display_name, profile_image_url, creator_type") \
            .eq("id", user_id).maybe_single().execute()
        profile = response.data if response and response.data else {}
    except Exception as e:
        _safe_log_error(f"Error loading commenter profile {user_id}: {e}")
        profile = {}

    return {
        "user_display_name": profile.get("display_name") or "User",
        "user_profile_image_url": profile.get("profile_image_url"),
        "user_creator_type": profile.get("creator_type"),
    }


def submit_comment(
    portfolio_item_id: str,
    user_id: str,
    content: str,
    parent_comment_id: Optional[str] = None,
    max_length: int = DEFAULT_MAX_LENGTH,
) -> Tuple[Optional[Dict[str, Any]], Optional[ModerationVerdict], Optional[str]]:
    """
    Moderate and store a new comment.

    Args:
        portfolio_item_id: Portfolio item UUID
        user_id: Commenter UUID
        content: Raw comment text
        parent_comment_id: Optional parent for threaded replies
        max_length: Maximum allowed length after trimming

    Returns:
        (comment_dict, verdict, error_message)
    """
    text, error = validate_comment(content, max_length)
    if error:
        return None, None, error

    supabase = get_admin_client()
    if not supabase:
        return None, None, "Database not configured"

    verdict = content_moderator.moderate(text)

    try:
        comment_data = {
            "portfolio_item_id": portfolio_item_id,
            "user_id": user_id,
            "parent_comment_id": parent_comment_id,
            "content": text,
            "moderation_status": moderation_status_for(verdict),
            "toxicity_score": verdict.toxicity_score,
            "moderation_flags": verdict.flags,
            "moderation_reasons": list(verdict.reasons),
            **_author_fields(supabase, user_id),
        }

        response = supabase.table(TABLE).insert(comment_data).execute()

        if response.data:
            return response.data[0], verdict, None
        return None, verdict, "Failed to create comment"

    except Exception as e:
        return None, verdict, f"Error creating comment: {str(e)}"


def get_visible_comments(portfolio_item_id: str, limit: int = 100) -> List[Dict[str, Any]]:
    """Approved comments for a portfolio item, oldest first."""
    supabase = get_admin_client()
    if not supabase:
        return []

    try:
        response = supabase.table(TABLE) \
            .select("*") \
            .eq("portfolio_item_id", portfolio_item_id) \
            .eq("moderation_status", STATUS_APPROVED) \
            .order("created_at") \
            .limit(limit) \
            .execute()
        return response.data or []
    except Exception as e:
        _safe_log_error(f"Error fetching comments for {portfolio_item_id}: {e}")
        return []


def get_moderation_queue(status: Optional[str] = None, limit: int = 100) -> Tuple[List[Dict[str, Any]], Optional[str]]:
    """
    Comments awaiting admin attention, each annotated with a fresh verdict.

    The verdict is recomputed independently of the stored snapshot and is
    not persisted.

    Args:
        status: pending / flagged / rejected, or None for every non-approved comment

    Returns:
        (comments, error_message)
    """
    if status is not None and status not in MODERATION_STATUSES:
        return [], f"Invalid status. Must be one of: {', '.join(MODERATION_STATUSES)}"

    supabase = get_admin_client()
    if not supabase:
        return [], "Database not configured"

    try:
        query = supabase.table(TABLE).select("*").order("created_at", desc=True).limit(limit)
        if status:
            query = query.eq("moderation_status", status)
        else:
            query = query.neq("moderation_status", STATUS_APPROVED)
        response = query.execute()
    except Exception as e:
        return [], f"Error loading moderation queue: {str(e)}"

    queue = []
    for comment in response.data or []:
        comment["current_verdict"] = content_moderator.moderate(comment.get("content") or "").to_dict()
        queue.append(comment)
    return queue, None


def get_comment(comment_id: str) -> Optional[Dict[str, Any]]:
    """Single comment with its current verdict, or None."""
    supabase = get_admin_client()
    if not supabase:
        return None

    try:
        response = supabase.table(TABLE).select("*").eq("id", comment_id).maybe_single().execute()
        comment = response.data if response else None
        if comment:
            comment["current_verdict"] = content_moderator.moderate(comment.get("content") or "").to_dict()
        return comment
    except Exception as e:
        _safe_log_error(f"Error fetching comment {comment_id}: {e}")
        return None


def _set_status(comment_id: str, status: str, admin_id: Optional[str], notes: Optional[str]) -> Tuple[bool, Optional[str]]:
    supabase = get_admin_client()
    if not supabase:
        return False, "Database not configured"

    try:
        response = supabase.table(TABLE).update({
            "moderation_status": status,
            "moderation_notes": notes,
            "moderated_by": admin_id,
            "moderated_at": datetime.now(timezone.utc).isoformat(),
        }).eq("id", comment_id).execute()

        if response.data:
            return True, None
        return False, "Comment not found"

    except Exception as e:
        return False, f"Error updating comment: {str(e)}"


def approve_comment(comment_id: str, admin_id: str, notes: Optional[str] = None) -> Tuple[bool, Optional[str]]:
    return _set_status(comment_id, STATUS_APPROVED, admin_id, notes)


def reject_comment(comment_id: str, admin_id: Optional[str], notes: Optional[str] = None) -> Tuple[bool, Optional[str]]:
    return _set_status(comment_id, STATUS_REJECTED, admin_id, notes or "Rejected by moderator")


def flag_comment(comment_id: str, admin_id: str, notes: Optional[str] = None) -> Tuple[bool, Optional[str]]:
    return _set_status(comment_id, STATUS_FLAGGED, admin_id, notes)


def delete_comment(comment_id: str) -> Tuple[bool, Optional[str]]:
    """
    Permanently delete a comment (admin only).

    Returns:
        (success, error_message)
    """
    supabase = get_admin_client()
    if not supabase:
        return False, "Database not configured"

    try:
        response = supabase.table(TABLE).delete().eq("id", comment_id).execute()
        if response.data:
            return True, None
        return False, "Comment not found"
    except Exception as e:
        return False, f"Error deleting comment: {str(e)}"

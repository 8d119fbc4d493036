"""
Input validation and normalization.

Trims and bounds free text, removes control characters while allowing natural
punctuation, and coerces admin/billing payloads into clean dicts for the
service layer.
"""

from __future__ import annotations
import re
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Tuple

_CONTROL_CHARS = re.compile(r"[\x00-\x08\x0B\x0C\x0E-\x1F\x7F]")

MAX_COMMENT_LEN = 1000
MAX_NOTES_LEN = 500
MAX_PLAN_NAME_LEN = 60
MAX_FEATURES = 20

BILLING_INTERVALS = {"monthly", "yearly"}


def sanitize_text(text: str | None, max_len: int) -> str:
    """
    Comment-style free text:
    - strip & bound length
    - remove control chars only; keep reasonable punctuation and newlines
    - normalize repeated tabs/spaces
    """
    t = (text or "").strip()
    if not t:
        return ""
    t = t[:max_len]
    t = _CONTROL_CHARS.sub("", t)
    t = re.sub(r"[ \t]{2,}", " ", t)
    return t


def validate_comment(content: Any, max_len: int = MAX_COMMENT_LEN) -> Tuple[str, str | None]:
    """
    Validate comment text, returning (clean_text, error_message).

    Over-long input is rejected rather than truncated so the author sees
    exactly what will be stored.
    """
    if content is not None and not isinstance(content, str):
        return "", "Comment must be text"

    raw = (content or "").strip()
    if not raw:
        return "", "Comment cannot be empty"
    if len(raw) > max_len:
        return "", f"Comment must be less than {max_len} characters"

    clean = sanitize_text(raw, max_len)
    if not clean:
        return "", "Comment cannot be empty"
    return clean, None


def validate_notes(notes: Any) -> str | None:
    """Optional moderator notes; empty becomes None."""
    if not isinstance(notes, str):
        return None
    return sanitize_text(notes, MAX_NOTES_LEN) or None


def _non_negative_int(value: Any, field: str) -> Tuple[int | None, str | None]:
    if isinstance(value, bool):
        return None, f"{field} must be a whole number"
    try:
        number = int(value)
    except (TypeError, ValueError):
        return None, f"{field} must be a whole number"
    if number < 0 or str(number) != str(value).strip():
        return None, f"{field} must be a non-negative whole number"
    return number, None


def validate_plan_update(data: Dict[str, Any] | None) -> Tuple[Dict[str, Any], str | None]:
    """
    Validate an admin plan edit and return (changes, error_message).

    Only known fields are kept. Prices are normalized to two decimals.
    """
    data = data or {}
    changes: Dict[str, Any] = {}

    if "name" in data:
        name = sanitize_text(data.get("name"), MAX_PLAN_NAME_LEN)
        if not name:
            return {}, "Plan name cannot be empty"
        changes["name"] = name

    if "price_monthly" in data:
        try:
            price = Decimal(str(data.get("price_monthly")))
        except (InvalidOperation, ValueError):
            return {}, "price_monthly must be a number"
        if not price.is_finite() or price < 0:
            return {}, "price_monthly must be zero or positive"
        changes["price_monthly"] = f"{price.quantize(Decimal('0.01'))}"

    for field in ("max_posts", "max_media", "featured_requests"):
        if field in data:
            number, error = _non_negative_int(data.get(field), field)
            if error:
                return {}, error
            changes[field] = number

    if "features" in data:
        features = data.get("features")
        if not isinstance(features, list) or not all(isinstance(f, str) for f in features):
            return {}, "features must be a list of strings"
        cleaned = [sanitize_text(f, 120) for f in features[:MAX_FEATURES]]
        changes["features"] = [f for f in cleaned if f]

    if not changes:
        return {}, "No editable fields provided"
    return changes, None


def validate_checkout(data: Dict[str, Any] | None, plan_types: Tuple[str, ...]) -> Tuple[Dict[str, Any], str | None]:
    """
    Validate a checkout request body.

    Returns:
        ({"plan_type", "billing_interval"}, error_message)
    """
    data = data or {}
    plan_type = str(data.get("planType") or data.get("plan_type") or "").strip().lower()
    interval = str(data.get("billingInterval") or data.get("billing_interval") or "monthly").strip().lower()

    if plan_type not in plan_types:
        return {}, f"Invalid plan type. Must be one of: {', '.join(plan_types)}"
    if interval not in BILLING_INTERVALS:
        return {}, "Invalid billing interval. Must be monthly or yearly"

    return {"plan_type": plan_type, "billing_interval": interval}, None

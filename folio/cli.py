"""
Flask CLI commands for one-off administrative tasks.

Usage:
    flask remoderate-comments                      # Dry run (report changes)
    flask remoderate-comments --status pending     # Only pending comments
    flask remoderate-comments --confirm            # Reject what now auto-rejects
    flask reconcile-session cs_test_123            # Wait for a session to settle
"""

from __future__ import annotations

import click
from flask import current_app
from flask.cli import with_appcontext


@click.command("remoderate-comments")
@click.option("--status", default=None,
              help="Only re-check comments with this moderation status.")
@click.option("--confirm", is_flag=True, default=False,
              help="Actually reject comments. Without this flag, only reports (dry run).")
@with_appcontext
def remoderate_comments_command(status: str | None, confirm: bool) -> None:
    """Re-run moderation over stored non-approved comments (e.g. after rule changes)."""
    from folio.services import comments

    queue, error = comments.get_moderation_queue(status=status, limit=1000)
    if error:
        click.echo(f"Error: {error}")
        raise SystemExit(1)

    if not queue:
        click.echo("No comments to re-check.")
        return

    decisions = {"approved": 0, "review": 0, "rejected": 0}
    to_reject = []
    for comment in queue:
        verdict = comment["current_verdict"]
        decisions[verdict["decision"]] += 1
        if verdict["decision"] == "rejected" and comment.get("moderation_status") != comments.STATUS_REJECTED:
            to_reject.append(comment)

    click.echo(
        f"Checked {len(queue)} comment(s): {decisions['approved']} clean, "
        f"{decisions['review']} need review, {decisions['rejected']} auto-reject."
    )

    if not to_reject:
        return

    if not confirm:
        click.echo(f"\nDry run: {len(to_reject)} comment(s) would be rejected. Use --confirm to apply.")
        return

    failed = 0
    for comment in to_reject:
        success, err = comments.reject_comment(comment["id"], None, "Rejected on re-moderation")
        if not success:
            failed += 1
            click.echo(f"  Failed to reject {comment['id']}: {err}")

    click.echo(f"\nDone. Rejected: {len(to_reject) - failed}, Failed: {failed}")


@click.command("reconcile-session")
@click.argument("session_id")
@click.option("--max-wait", default=None, type=float,
              help="Seconds to wait for the session to settle (default SUBSCRIPTION_POLL_MAX_SECONDS).")
@with_appcontext
def reconcile_session_command(session_id: str, max_wait: float | None) -> None:
    """Wait for a checkout session to settle, then rewrite the creator's entitlement."""
    from folio.services.subscriptions import get_reconciler

    cfg = current_app.config
    reconciler = get_reconciler()

    click.echo(f"Polling session {session_id}...")
    record = reconciler.poll_until_settled(
        session_id,
        interval=cfg.get("SUBSCRIPTION_POLL_INTERVAL_SECONDS", 10),
        max_interval=cfg.get("SUBSCRIPTION_POLL_MAX_INTERVAL_SECONDS", 60),
        max_wait=max_wait if max_wait is not None else cfg.get("SUBSCRIPTION_POLL_MAX_SECONDS", 300),
    )

    if record is None:
        click.echo("No subscription record found for this session.")
        raise SystemExit(1)

    if not record.status.is_terminal:
        click.echo(f"Session still {record.status.value}; giving up.")
        raise SystemExit(1)

    result = reconciler.refresh_entitlement(session_id)
    entitlement = result.entitlement if result else None
    click.echo(f"Status: {record.status.value} (plan {record.plan_type}, creator {record.creator_id})")
    if entitlement:
        click.echo(
            f"Entitlement: tier={entitlement.subscription_tier}, "
            f"portfolio_limit={entitlement.portfolio_limit}, "
            f"featured_requests_available={entitlement.featured_requests_available}"
        )

"""
Tests for admin moderation and plan management endpoints.
"""

from unittest.mock import patch, MagicMock, Mock
from conftest import CREATOR_ID


class TestAdminAccess:

    def test_requires_auth(self, client):
        assert client.get("/admin/comments").status_code == 401

    @patch("folio.services.supabase_client.is_admin", return_value=False)
    def test_requires_admin(self, mock_admin, client, auth_headers, logged_in):
        response = client.get("/admin/comments", headers=auth_headers)

        assert response.status_code == 403
        mock_admin.assert_called_once_with(CREATOR_ID)


class TestModerationQueue:

    @patch("folio.services.comments.get_moderation_queue")
    def test_lists_queue(self, mock_queue, client, auth_headers, logged_in_admin):
        mock_queue.return_value = ([{"id": "c1", "current_verdict": {"decision": "review"}}], None)

        response = client.get("/admin/comments?status=pending", headers=auth_headers)

        assert response.status_code == 200
        assert response.get_json()["count"] == 1
        mock_queue.assert_called_once_with(status="pending", limit=100)

    def test_invalid_status(self, client, auth_headers, logged_in_admin):
        response = client.get("/admin/comments?status=deleted", headers=auth_headers)
        assert response.status_code == 400

    @patch("folio.services.comments.get_admin_client")
    def test_approve(self, mock_client, client, auth_headers, logged_in_admin):
        supabase = MagicMock()
        supabase.table.return_value.update.return_value.eq.return_value.execute.return_value = Mock(data=[{"id": "c1"}])
        mock_client.return_value = supabase

        response = client.post("/admin/comments/c1/approve", json={"notes": "  fine  "}, headers=auth_headers)

        assert response.status_code == 200
        payload = supabase.table.return_value.update.call_args[0][0]
        assert payload["moderation_status"] == "approved"
        assert payload["moderated_by"] == CREATOR_ID
        assert payload["moderation_notes"] == "fine"

    @patch("folio.services.comments.get_admin_client")
    def test_missing_comment(self, mock_client, client, auth_headers, logged_in_admin):
        supabase = MagicMock()
        supabase.table.return_value.update.return_value.eq.return_value.execute.return_value = Mock(data=[])
        mock_client.return_value = supabase

        assert client.post("/admin/comments/c404/flag", headers=auth_headers).status_code == 404

    @patch("folio.services.comments.get_admin_client")
    def test_detail_has_fresh_verdict(self, mock_client, client, auth_headers, logged_in_admin):
        supabase = MagicMock()
        supabase.table.return_value.select.return_value.eq.return_value \
            .maybe_single.return_value.execute.return_value = Mock(
                data={"id": "c1", "content": "kill all of them", "moderation_status": "pending"})
        mock_client.return_value = supabase

        body = client.get("/admin/comments/c1", headers=auth_headers).get_json()

        assert body["comment"]["current_verdict"]["decision"] == "rejected"

    @patch("folio.services.comments.get_comment", return_value=None)
    def test_detail_missing(self, mock_get, client, auth_headers, logged_in_admin):
        assert client.get("/admin/comments/c404", headers=auth_headers).status_code == 404

    def test_unknown_action(self, client, auth_headers, logged_in_admin):
        assert client.post("/admin/comments/c1/promote", headers=auth_headers).status_code == 404

    @patch("folio.services.comments.delete_comment", return_value=(True, None))
    def test_delete(self, mock_delete, client, auth_headers, logged_in_admin):
        response = client.delete("/admin/comments/c1", headers=auth_headers)

        assert response.status_code == 200
        mock_delete.assert_called_once_with("c1")


class TestPlans:

    def test_list_defaults(self, client, auth_headers, logged_in_admin):
        body = client.get("/admin/plans", headers=auth_headers).get_json()

        assert [p["plan_type"] for p in body["plans"]] == ["free", "premium", "pro"]

    def test_invalid_update(self, client, auth_headers, logged_in_admin):
        response = client.post("/admin/plans/pro", json={"max_media": -1}, headers=auth_headers)

        assert response.status_code == 400

    @patch("folio.routes.admin.get_catalog")
    def test_update(self, mock_catalog, client, auth_headers, logged_in_admin, catalog):
        updated = catalog.get("pro")
        mock_catalog.return_value.update.return_value = (updated, None)

        response = client.post("/admin/plans/pro", json={"max_media": 250, "price_monthly": "12"},
                               headers=auth_headers)

        assert response.status_code == 200
        mock_catalog.return_value.update.assert_called_once_with(
            "pro", {"max_media": 250, "price_monthly": "12.00"}
        )

    @patch("folio.routes.admin.get_catalog")
    def test_update_unknown_plan(self, mock_catalog, client, auth_headers, logged_in_admin):
        mock_catalog.return_value.update.return_value = (None, "Unknown plan type: gold")

        response = client.post("/admin/plans/gold", json={"max_media": 1}, headers=auth_headers)

        assert response.status_code == 404


class TestMetrics:

    @patch("folio.services.comments.get_moderation_queue", return_value=([{"id": "c1"}], None))
    def test_counts(self, mock_queue, client, auth_headers, logged_in_admin, routed_reconciler):
        routed_reconciler.activate_free_plan("someone")

        body = client.get("/admin/metrics", headers=auth_headers).get_json()

        assert body["active_subscriptions"] == 1
        assert body["pending_comments"] == 1

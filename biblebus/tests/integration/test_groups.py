"""
tests/integration/test_groups.py — Member-facing group endpoints.

Endpoints covered:
  GET  /groups/current     → 200  (group or null)
  GET  /groups/next        → 200  (group + join status, or null)
  POST /groups/:id/join    → 200 / 400 REGISTRATION_CLOSED / 404 GROUP_NOT_FOUND
  POST /groups/:id/cancel  → 200 / 400 REGISTRATION_CLOSED

The service clock is pinned to 2026-01-05 (conftest.FIXED_TODAY), inside the
January 2026 registration window.
"""

from __future__ import annotations

from biblebus.app.extensions import db
from biblebus.app.services import group_service

from .conftest import auth_headers, make_group, register


def _april_group(app, **kwargs) -> int:
    with app.app_context():
        return make_group(db.session, "2026-04-01", **kwargs).id


class TestCurrentAndNext:

    def test_current_returns_open_group(self, client, open_group):
        token = register(client)["access_token"]

        resp = client.get("/api/v1/groups/current", headers=auth_headers(token))

        assert resp.status_code == 200
        data = resp.get_json()["data"]
        assert data["id"] == open_group
        assert data["name"] == "Bible Bus January 2026 Travelers"

    def test_current_is_null_when_window_closed(self, app, client, open_group):
        token = register(client)["access_token"]
        with app.app_context():
            group_service.set_group_status(open_group, "closed", db.session)
            db.session.commit()

        resp = client.get("/api/v1/groups/current", headers=auth_headers(token))

        assert resp.status_code == 200
        assert resp.get_json()["data"] is None

    def test_next_reports_join_status(self, client, open_group):
        token = register(client)["access_token"]

        resp = client.get("/api/v1/groups/next", headers=auth_headers(token))

        data = resp.get_json()["data"]
        assert data["id"] == open_group
        assert data["member_count"] == 1
        assert data["already_joined"] is True
        assert data["can_join"] is True

    def test_requires_auth(self, client):
        resp = client.get("/api/v1/groups/current")

        assert resp.status_code == 401


class TestJoinAndCancel:

    def test_join_upcoming_group(self, app, client, open_group):
        token = register(client)["access_token"]
        april = _april_group(app)

        resp = client.post(f"/api/v1/groups/{april}/join", headers=auth_headers(token))

        assert resp.status_code == 200
        assert resp.get_json()["data"] == {
            "success": True,
            "group_id": april,
            "message": "Joined next group",
        }

    def test_join_twice_is_idempotent(self, app, client, open_group):
        token = register(client)["access_token"]
        april = _april_group(app)

        client.post(f"/api/v1/groups/{april}/join", headers=auth_headers(token))
        resp = client.post(f"/api/v1/groups/{april}/join", headers=auth_headers(token))

        assert resp.status_code == 200
        assert resp.get_json()["data"]["message"] == "Already joined"

    def test_join_full_group_returns_400(self, app, client, open_group):
        april = _april_group(app, max_members=1)
        first = register(client, "Alice Walker")["access_token"]
        second = register(client, "Bob Stone")["access_token"]
        client.post(f"/api/v1/groups/{april}/join", headers=auth_headers(first))

        resp = client.post(f"/api/v1/groups/{april}/join", headers=auth_headers(second))

        assert resp.status_code == 400
        assert resp.get_json()["error"]["code"] == "GROUP_FULL"

    def test_join_closed_group_returns_400(self, app, client, open_group):
        token = register(client)["access_token"]
        with app.app_context():
            past = make_group(db.session, "2025-07-01", status="closed").id

        resp = client.post(f"/api/v1/groups/{past}/join", headers=auth_headers(token))

        assert resp.status_code == 400
        assert resp.get_json()["error"]["code"] == "REGISTRATION_CLOSED"

    def test_join_unknown_group_returns_404(self, client, open_group):
        token = register(client)["access_token"]

        resp = client.post("/api/v1/groups/99999/join", headers=auth_headers(token))

        assert resp.status_code == 404
        assert resp.get_json()["error"]["code"] == "GROUP_NOT_FOUND"

    def test_cancel_removes_membership(self, app, client, open_group):
        token = register(client)["access_token"]
        april = _april_group(app)
        client.post(f"/api/v1/groups/{april}/join", headers=auth_headers(token))

        resp = client.post(f"/api/v1/groups/{april}/cancel", headers=auth_headers(token))

        assert resp.status_code == 200
        assert resp.get_json()["data"] == {"cancelled": True, "group_id": april}
        me = client.get("/api/v1/auth/me", headers=auth_headers(token)).get_json()["data"]
        assert [g["id"] for g in me["groups"]] == [open_group]


def test_unknown_route_returns_json_404(client):
    resp = client.get("/api/v1/nothing-here")

    assert resp.status_code == 404
    assert resp.get_json()["error"]["code"] == "NOT_FOUND"

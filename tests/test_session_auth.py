"""
Tests: session resolution middleware and the ambient HTTP surface.
"""

from datetime import timedelta

import pytest

from factories import auth_headers, make_project, make_session, make_user
from precast.core.exceptions import UnauthorizedSessionError
from precast.middleware.session_auth import resolve_session
from precast.models import db


class TestResolveSession:
    def test_bearer_and_raw_token(self):
        token = make_session(1)
        for header in (f"Bearer {token}", token, f"  bearer {token} "):
            user = resolve_session(header)
            assert user.user_id == 1
            assert user.user_name == "User1 Test"
            assert user.host == "tablet-01"
            assert user.ip == "10.0.0.5"

    @pytest.mark.parametrize("header", ["", "Bearer ", "Bearer unknown"])
    def test_missing_or_unknown(self, header):
        with pytest.raises(UnauthorizedSessionError):
            resolve_session(header)

    def test_expired(self):
        token = make_session(1, expires_in=timedelta(minutes=-5))
        with pytest.raises(UnauthorizedSessionError):
            resolve_session(token)

    def test_no_expiry_never_expires(self):
        token = make_session(1, expires_in=None)
        assert resolve_session(token).user_id == 1

    def test_same_user_signs_in_twice(self):
        first = auth_headers(1)
        second = auth_headers(1)
        assert first == second
        assert resolve_session(second["Authorization"]).user_id == 1

    def test_inactive_user(self):
        make_user(3, is_active=False)
        token = make_session(3)
        with pytest.raises(UnauthorizedSessionError):
            resolve_session(token)


class TestMiddleware:
    def test_api_requires_session(self, client):
        make_project()
        db.session.commit()
        res = client.get("/api/v1/projects/1/views")
        assert res.status_code == 401
        assert res.get_json()["code"] == "ERR_UNAUTHORIZED_SESSION"

    def test_valid_session_passes(self, client):
        make_project()
        db.session.commit()
        res = client.get("/api/v1/projects/1/views", headers=auth_headers(1))
        assert res.status_code == 200
        assert res.get_json() == {"project_id": 1, "items": [], "total": 0}

    def test_health_is_public(self, client):
        assert client.get("/api/v1/health/ready").status_code == 200
        res = client.get("/api/v1/health/live")
        assert res.status_code == 200
        body = res.get_json()
        assert body["checks"]["database"]["status"] == "ok"
        assert body["checks"]["push"]["status"] == "log_only"

    def test_preflight_skips_auth(self, client):
        res = client.open("/api/v1/projects/1/views", method="OPTIONS")
        assert res.status_code != 401

    def test_response_headers(self, client):
        res = client.get("/api/v1/health/ready", headers={"X-Request-ID": "req-42"})
        assert res.headers["X-Request-ID"] == "req-42"
        assert "X-Request-Duration-Ms" in res.headers
        assert res.headers["X-Content-Type-Options"] == "nosniff"
        assert res.headers["X-Frame-Options"] == "DENY"

    def test_unknown_route_is_json_404(self, client):
        res = client.get("/api/v1/nothing-here", headers=auth_headers(1))
        assert res.status_code == 404
        assert res.get_json()["code"] == "ERR_NOT_FOUND"

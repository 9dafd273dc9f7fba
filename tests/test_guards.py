# =============================================================================
# tests/test_guards.py - CSRF, security headers, request limiting, errors
# =============================================================================

import re

import pytest
from flask import session
from werkzeug.middleware.proxy_fix import ProxyFix

from project_tracker.guards import init_limiters, pop_return_to, remember_return_to

from .conftest import FROZEN_NOW, csrf_token, register


class TestCsrf:

    def test_missing_token_rejected(self, app, client):
        response = client.post("/login", data={"username": "alice", "password": "Secret123"})
        assert response.status_code == 403
        assert b"Invalid security token" in response.data

    def test_wrong_token_rejected(self, client):
        csrf_token(client)
        response = client.post("/login", data={"username": "alice", "password": "Secret123", "csrf_token": "forged"})
        assert response.status_code == 403

    def test_header_token_accepted(self, client):
        response = client.post(
            "/login",
            data={"username": "nobody", "password": "Secret123"},
            headers={"X-CSRF-Token": csrf_token(client)},
        )
        assert response.status_code == 200
        assert b"Invalid username or password" in response.data

    def test_json_rejection(self, client):
        response = client.post("/login", json={"username": "alice", "password": "Secret123"})
        assert response.status_code == 403
        assert response.get_json() == {"error": "Invalid security token. Please refresh the page and try again."}

    def test_rejected_on_owner_endpoints_without_redirect(self, client):
        register(client)
        response = client.post("/delete-project/1", data={"csrf_token": "forged"})
        assert response.status_code == 403

    def test_safe_methods_skip_check(self, client):
        assert client.get("/login").status_code == 200

    def test_forms_embed_session_token(self, client):
        body = client.get("/login").data.decode()
        embedded = re.search(r'name="csrf_token" value="([0-9a-f]+)"', body).group(1)
        assert embedded == csrf_token(client)

    def test_can_be_disabled(self, app, client):
        app.config["CSRF_ENABLED"] = False
        response = client.post("/login", data={"username": "nobody", "password": "Secret123"})
        assert response.status_code == 200


class TestSecurityHeaders:

    def test_headers_present(self, client):
        response = client.get("/")
        assert response.headers["X-Frame-Options"] == "DENY"
        assert response.headers["X-Content-Type-Options"] == "nosniff"
        assert response.headers["Referrer-Policy"] == "strict-origin-when-cross-origin"
        assert "frame-ancestors 'none'" in response.headers["Content-Security-Policy"]
        assert "Strict-Transport-Security" not in response.headers

    def test_script_nonce_matches_policy(self, client):
        response = client.get("/login")
        nonce = re.search(r"'nonce-([^']+)'", response.headers["Content-Security-Policy"]).group(1)
        assert f'<script nonce="{nonce}">'.encode() in response.data

    def test_nonce_changes_per_request(self, client):
        first = client.get("/").headers["Content-Security-Policy"]
        second = client.get("/").headers["Content-Security-Policy"]
        assert first != second

    def test_hsts_when_enabled(self, app, client):
        app.config["HSTS_ENABLED"] = True
        try:
            response = client.get("/")
        finally:
            app.config["HSTS_ENABLED"] = False
        assert response.headers["Strict-Transport-Security"].startswith("max-age=31536000")

    def test_session_cookie_flags(self, client):
        response = register(client)
        cookie = response.headers["Set-Cookie"]
        assert cookie.startswith("sessionId=")
        assert "HttpOnly" in cookie
        assert "SameSite=Strict" in cookie


class TestGeneralLimit:

    @pytest.fixture
    def limited(self, app):
        app.config["RATE_LIMIT_MAX"] = 3
        init_limiters(app, clock=lambda: FROZEN_NOW)
        return app

    def test_request_over_limit_rejected(self, limited, client):
        for _ in range(3):
            assert client.get("/").status_code == 200
        response = client.get("/")
        assert response.status_code == 429
        assert response.headers["Retry-After"] == "600"

    def test_json_body(self, limited, client):
        for _ in range(3):
            client.get("/api/stats")
        response = client.get("/api/stats")
        assert response.status_code == 429
        assert response.get_json() == {
            "error": "Too many requests from this IP, please try again later.",
            "retryAfter": 600,
        }

    def test_clients_are_keyed_by_address(self, limited, client):
        for _ in range(3):
            client.get("/")
        other = client.get("/", environ_base={"REMOTE_ADDR": "10.0.0.9"})
        assert other.status_code == 200

    def test_forwarded_header_is_ignored_by_default(self, limited, client):
        for i in range(3):
            assert client.get("/", headers={"X-Forwarded-For": f"10.0.0.{i}"}).status_code == 200
        response = client.get("/", headers={"X-Forwarded-For": "10.0.0.99"})
        assert response.status_code == 429

    def test_trusted_proxy_forwards_client_address(self, limited, client):
        original = limited.wsgi_app
        limited.wsgi_app = ProxyFix(original, x_for=1)
        try:
            for _ in range(3):
                client.get("/", headers={"X-Forwarded-For": "10.0.0.1"})
            blocked = client.get("/", headers={"X-Forwarded-For": "10.0.0.1"})
            other = client.get("/", headers={"X-Forwarded-For": "10.0.0.2"})
        finally:
            limited.wsgi_app = original
        assert blocked.status_code == 429
        assert other.status_code == 200


class TestReturnTo:

    def test_single_read(self, app):
        with app.test_request_context("/"):
            remember_return_to("/edit-project/4")
            assert pop_return_to("/dashboard") == "/edit-project/4"
            assert pop_return_to("/dashboard") == "/dashboard"

    @pytest.mark.parametrize("target", ["https://evil.example/", "//evil.example/", "/\\evil.example", "dashboard"])
    def test_only_local_paths(self, app, target):
        with app.test_request_context("/"):
            remember_return_to(target)
            assert "return_to" not in session
            session["return_to"] = target
            assert pop_return_to("/dashboard") == "/dashboard"


class TestUnexpectedErrors:

    @pytest.fixture
    def broken_db(self, monkeypatch):
        def boom(*args, **kwargs):
            raise RuntimeError("disk on fire")

        monkeypatch.setattr("project_tracker.app.query_db", boom)

    def test_html_hides_detail(self, broken_db, client):
        response = client.get("/")
        assert response.status_code == 500
        assert b"Something went wrong. Please try again later." in response.data
        assert b"disk on fire" not in response.data

    def test_json_hides_detail(self, broken_db, client):
        response = client.get("/api/stats")
        assert response.status_code == 500
        assert response.get_json() == {"error": "Internal server error"}

    def test_detail_in_development(self, app, broken_db, client):
        app.config["SHOW_ERROR_DETAIL"] = True
        try:
            response = client.get("/api/stats")
        finally:
            app.config["SHOW_ERROR_DETAIL"] = False
        assert "disk on fire" in response.get_json()["detail"]

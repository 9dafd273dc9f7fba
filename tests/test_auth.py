# =============================================================================
# tests/test_auth.py - Registration, login, logout and the session guard
# =============================================================================

from datetime import datetime, timedelta, timezone

from werkzeug.security import check_password_hash

from project_tracker.app import INVALID_LOGIN, USER_EXISTS

from .conftest import DEFAULT_PASSWORD, count_rows, csrf_token, login, post, query, register, session_user

JSON_HEADERS = {"Accept": "application/json"}


class TestRegister:

    def test_register_page_renders(self, client):
        response = client.get("/register")
        assert response.status_code == 200
        assert b"Create an account" in response.data

    def test_register_success_starts_session(self, app, client):
        response = register(client)
        assert response.status_code == 302
        assert response.headers["Location"].endswith("/dashboard")
        assert session_user(client)["username"] == "alice"
        assert count_rows(app, "users") == 1

    def test_password_is_hashed(self, app, client):
        register(client)
        stored = query(app, "SELECT password_hash FROM users")[0]["password_hash"]
        assert stored != DEFAULT_PASSWORD
        assert check_password_hash(stored, DEFAULT_PASSWORD)

    def test_short_username_rejected(self, app, client):
        response = register(client, username="ab", email="ab@acme.io")
        assert response.status_code == 200
        assert b"Username must be between 3 and 50 characters" in response.data
        assert count_rows(app, "users") == 0
        assert session_user(client) is None

    def test_mismatched_passwords_rejected(self, app, client):
        response = register(client, confirm="Secret124")
        assert b"Passwords do not match" in response.data
        assert count_rows(app, "users") == 0

    def test_duplicate_username_rejected(self, app, client, other_client):
        register(client)
        response = register(other_client, email="someone-else@acme.io")
        assert response.status_code == 200
        assert USER_EXISTS.encode() in response.data
        assert count_rows(app, "users") == 1

    def test_duplicate_email_rejected(self, app, client, other_client):
        register(client)
        response = register(other_client, username="alice2", email="alice@acme.io")
        assert USER_EXISTS.encode() in response.data
        assert count_rows(app, "users") == 1

    def test_duplicates_ignore_case(self, app, client, other_client):
        register(client)
        response = register(other_client, username="Alice", email="Alice@acme.io")
        assert USER_EXISTS.encode() in response.data
        response = register(other_client, username="alice3", email="ALICE@ACME.IO")
        assert USER_EXISTS.encode() in response.data
        assert count_rows(app, "users") == 1

    def test_email_stored_lowercase(self, app, client):
        register(client, email="Alice.Smith@Acme.io")
        assert query(app, "SELECT email FROM users")[0]["email"] == "alice.smith@acme.io"

    def test_register_json(self, app, client):
        response = client.post(
            "/register",
            json={
                "username": "carol",
                "email": "carol@acme.io",
                "password": DEFAULT_PASSWORD,
                "confirm_password": DEFAULT_PASSWORD,
            },
            headers={"X-CSRF-Token": csrf_token(client)},
        )
        assert response.status_code == 201
        assert response.get_json() == {"success": True, "redirectTo": "/dashboard"}
        assert count_rows(app, "users") == 1

    def test_register_json_errors(self, client):
        response = client.post(
            "/register",
            json={"username": "ab"},
            headers={"X-CSRF-Token": csrf_token(client)},
        )
        assert response.status_code == 400
        body = response.get_json()
        assert body["success"] is False
        assert "Username must be between 3 and 50 characters" in body["errors"]
        assert "Email is required" in body["errors"]


class TestLogin:

    def test_login_success_redirects_to_dashboard(self, client, other_client):
        register(other_client)
        response = login(client)
        assert response.status_code == 302
        assert response.headers["Location"].endswith("/dashboard")
        assert session_user(client)["username"] == "alice"

    def test_login_rotates_csrf_token(self, client, other_client):
        register(other_client)
        before = csrf_token(client)
        login(client)
        assert csrf_token(client) != before

    def test_wrong_password(self, client, other_client):
        register(other_client)
        response = login(client, password="Wrong1234")
        assert response.status_code == 200
        assert INVALID_LOGIN.encode() in response.data
        assert session_user(client) is None

    def test_failures_are_indistinguishable(self, client, other_client):
        register(other_client)
        headers = dict(JSON_HEADERS, **{"X-CSRF-Token": csrf_token(client)})
        wrong_password = client.post("/login", json={"username": "alice", "password": "Wrong1234"}, headers=headers)
        unknown_user = client.post("/login", json={"username": "nobody", "password": "Wrong1234"}, headers=headers)
        assert wrong_password.status_code == unknown_user.status_code == 401
        assert wrong_password.get_json() == unknown_user.get_json() == {"error": INVALID_LOGIN}

        html_wrong = login(client, password="Wrong1234")
        html_unknown = login(client, username="nobody")
        assert html_wrong.status_code == html_unknown.status_code
        assert INVALID_LOGIN.encode() in html_unknown.data

    def test_missing_fields(self, client):
        response = post(client, "/login", {"username": "alice"})
        assert b"Please provide valid username and password" in response.data

    def test_login_json(self, client, other_client):
        register(other_client)
        response = client.post(
            "/login",
            json={"username": "alice", "password": DEFAULT_PASSWORD},
            headers={"X-CSRF-Token": csrf_token(client)},
        )
        assert response.status_code == 200
        assert response.get_json() == {"success": True, "redirectTo": "/dashboard"}

    def test_sixth_failed_attempt_is_throttled(self, client, other_client):
        register(other_client)
        for _ in range(5):
            assert login(client, password="Wrong1234").status_code == 200

        response = login(client)
        assert response.status_code == 429
        assert response.headers["Retry-After"] == "600"
        assert b"Too many login attempts. Please try again in 10 minutes." in response.data
        assert session_user(client) is None

    def test_successful_login_clears_failures(self, client, other_client):
        register(other_client)
        for _ in range(4):
            login(client, password="Wrong1234")
        assert login(client).status_code == 302

        post(client, "/logout")
        for _ in range(4):
            login(client, password="Wrong1234")
        assert login(client).status_code == 302

    def test_forwarded_header_does_not_reset_failures(self, client, other_client):
        register(other_client)
        for i in range(5):
            response = login(client, password="Wrong1234", headers={"X-Forwarded-For": f"10.0.0.{i}"})
            assert response.status_code == 200

        response = login(client, headers={"X-Forwarded-For": "10.0.0.99"})
        assert response.status_code == 429
        assert session_user(client) is None

    def test_throttled_json(self, client, other_client):
        register(other_client)
        for _ in range(5):
            login(client, password="Wrong1234")
        response = client.post(
            "/login",
            json={"username": "alice", "password": DEFAULT_PASSWORD},
            headers={"X-CSRF-Token": csrf_token(client)},
        )
        assert response.status_code == 429
        assert response.get_json()["retryAfter"] == 600


class TestLogout:

    def test_logout_clears_session(self, client):
        register(client)
        response = post(client, "/logout")
        assert response.status_code == 302
        assert response.headers["Location"].endswith("/?message=logged-out")
        assert session_user(client) is None

    def test_logout_requires_login(self, client):
        response = post(client, "/logout")
        assert response.status_code == 302
        assert response.headers["Location"].endswith("/login")

    def test_logout_json(self, client):
        register(client)
        response = client.post("/logout", headers=dict(JSON_HEADERS, **{"X-CSRF-Token": csrf_token(client)}))
        assert response.get_json() == {"success": True, "message": "Goodbye, alice!"}


class TestSessionGuard:

    def test_dashboard_requires_login(self, client):
        response = client.get("/dashboard")
        assert response.status_code == 302
        assert response.headers["Location"].endswith("/login")

    def test_api_requires_login(self, client):
        response = client.get("/api/projects/1")
        assert response.status_code == 401
        assert response.get_json() == {"error": "Authentication required", "redirectTo": "/login"}

    def test_idle_session_expires(self, client):
        register(client)
        with client.session_transaction() as sess:
            sess["last_activity"] = (datetime.now(timezone.utc) - timedelta(hours=25)).isoformat()

        response = client.get("/dashboard")
        assert response.status_code == 302
        assert response.headers["Location"].endswith("/login?message=session-expired")
        assert session_user(client) is None

    def test_idle_session_expires_json(self, client):
        register(client)
        with client.session_transaction() as sess:
            sess["last_activity"] = (datetime.now(timezone.utc) - timedelta(hours=25)).isoformat()

        response = client.get("/api/projects/1")
        assert response.status_code == 401
        assert response.get_json()["error"] == "Session expired"

    def test_activity_keeps_session_alive(self, client):
        register(client)
        with client.session_transaction() as sess:
            sess["last_activity"] = (datetime.now(timezone.utc) - timedelta(hours=23)).isoformat()
        assert client.get("/dashboard").status_code == 200
        with client.session_transaction() as sess:
            refreshed = datetime.fromisoformat(sess["last_activity"])
        assert datetime.now(timezone.utc) - refreshed < timedelta(minutes=1)

    def test_return_to_after_login(self, client, other_client):
        register(other_client)
        response = client.get("/add-project")
        assert response.headers["Location"].endswith("/login")

        response = login(client)
        assert response.status_code == 302
        assert response.headers["Location"].endswith("/add-project")

        # single use: the next login lands on the dashboard
        post(client, "/logout")
        assert login(client).headers["Location"].endswith("/dashboard")

    def test_guest_pages_redirect_when_logged_in(self, client):
        register(client)
        for path in ("/login", "/register"):
            response = client.get(path)
            assert response.status_code == 302
            assert response.headers["Location"].endswith("/dashboard")

    def test_check_auth(self, client):
        assert client.get("/check-auth").get_json() == {"authenticated": False, "user": None}
        register(client)
        body = client.get("/check-auth").get_json()
        assert body["authenticated"] is True
        assert body["user"]["username"] == "alice"
        assert body["user"]["email"] == "alice@acme.io"

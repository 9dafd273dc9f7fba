import logging
import secrets
import time
from datetime import datetime, timezone
from functools import wraps

from flask import current_app, g, redirect, request, session, url_for

from .db import query_db
from .errors import AuthRequired, CSRFError, Forbidden, ProjectNotFound, RateLimited, SessionExpired
from .ratelimit import FixedWindowLimiter

logger = logging.getLogger(__name__)

SAFE_METHODS = {"GET", "HEAD", "OPTIONS"}
CSRF_FIELD = "csrf_token"
CSRF_HEADER = "X-CSRF-Token"

BOOTSTRAP_CDN = "https://cdn.jsdelivr.net"


# =============================================================
# Request helpers
# =============================================================
def client_ip() -> str:
    # The socket address. Behind a proxy, ProxyFix (TRUSTED_PROXIES) rewrites
    # it from X-Forwarded-For; the raw header is never read here.
    return request.remote_addr or "unknown"


def wants_json() -> bool:
    """True for XHR/fetch callers and the /api/ endpoints."""
    if request.path.startswith("/api/") or request.is_json:
        return True
    if request.headers.get("X-Requested-With") == "XMLHttpRequest":
        return True
    return "json" in request.headers.get("Accept", "")


def _now() -> datetime:
    return datetime.now(timezone.utc)


# =============================================================
# Rate limiting
# =============================================================
def init_limiters(app, clock=time.time):
    window = app.config["RATE_LIMIT_WINDOW"]
    app.extensions["limiters"] = {
        "general": FixedWindowLimiter(app.config["RATE_LIMIT_MAX"], window, clock=clock),
        "login": FixedWindowLimiter(app.config["LOGIN_MAX_ATTEMPTS"], window, clock=clock),
    }


def get_limiter(name: str) -> FixedWindowLimiter:
    return current_app.extensions["limiters"][name]


def enforce_general_limit():
    if request.endpoint == "static":
        return
    result = get_limiter("general").hit(client_ip())
    if not result.allowed:
        logger.warning("Rate limit exceeded for %s on %s", client_ip(), request.path)
        raise RateLimited(result.retry_after)


def login_attempts_blocked():
    """Return the RateLimitResult for this client's failed logins."""
    return get_limiter("login").peek(client_ip())


def record_failed_login():
    get_limiter("login").hit(client_ip())


def clear_failed_logins():
    get_limiter("login").reset(client_ip())


# =============================================================
# Session guard
# =============================================================
def start_session(user):
    """Populate a fresh session for a freshly authenticated user."""
    return_to = session.get("return_to")
    session.clear()
    session.permanent = True
    session["user"] = {"id": user["id"], "username": user["username"], "email": user["email"]}
    session["last_activity"] = _now().isoformat()
    session[CSRF_FIELD] = secrets.token_hex(32)
    if return_to:
        session["return_to"] = return_to


def end_session():
    session.clear()


def load_session_user():
    """
    Resolve the session to a user (or anonymous) and enforce the
    inactivity timeout. Expired sessions are cleared here; the
    login_required decorator turns that into a 401/redirect.
    """
    g.user = None
    g.session_expired = False
    user = session.get("user")
    if not user:
        return

    last_activity = session.get("last_activity")
    if last_activity:
        idle = _now() - datetime.fromisoformat(last_activity)
        if idle > current_app.config["SESSION_IDLE_TIMEOUT"]:
            logger.info("Session for user %s expired after %s idle", user.get("id"), idle)
            session.clear()
            g.session_expired = True
            return

    session["last_activity"] = _now().isoformat()
    g.user = user


def current_user_id():
    return g.user["id"] if g.get("user") else None


def login_required(view):
    @wraps(view)
    def wrapped(*args, **kwargs):
        if g.get("user") is None:
            if request.method == "GET" and not wants_json():
                remember_return_to(request.full_path.rstrip("?"))
            if g.get("session_expired"):
                raise SessionExpired()
            raise AuthRequired()
        return view(*args, **kwargs)

    return wrapped


def guest_only(view):
    @wraps(view)
    def wrapped(*args, **kwargs):
        if g.get("user") is not None:
            return redirect(url_for("dashboard"))
        return view(*args, **kwargs)

    return wrapped


# -------------------------------------------------------------
# Return-to: a single-read value. Only local paths are kept so the
# login redirect can never leave the site.
# -------------------------------------------------------------
def _is_local_path(path) -> bool:
    return isinstance(path, str) and path.startswith("/") and not path.startswith("//") and "\\" not in path


def remember_return_to(path: str):
    if _is_local_path(path):
        session["return_to"] = path


def pop_return_to(default: str) -> str:
    path = session.pop("return_to", None)
    return path if _is_local_path(path) else default


# =============================================================
# Ownership guard
# =============================================================
def check_project_owner(project_id: int, user_id: int):
    """
    Fetch the project and compare its owner with user_id.
    Raises ProjectNotFound / Forbidden, otherwise returns the row.
    """
    project = query_db("SELECT * FROM projects WHERE id = ?", (project_id,), one=True)
    if project is None:
        raise ProjectNotFound(project_id)
    if project["owner_id"] != user_id:
        logger.warning("User %s denied access to project %s owned by %s", user_id, project_id, project["owner_id"])
        raise Forbidden("You do not have permission to access this project.")
    return project


def owner_required(view):
    """Must be stacked under login_required; the view takes project_id."""

    @wraps(view)
    def wrapped(project_id, *args, **kwargs):
        g.project = check_project_owner(project_id, current_user_id())
        return view(project_id, *args, **kwargs)

    return wrapped


# =============================================================
# CSRF guard
#   One token per session, accepted from the form field or the
#   X-CSRF-Token header.
# =============================================================
def csrf_token() -> str:
    token = session.get(CSRF_FIELD)
    if not token:
        token = secrets.token_hex(32)
        session[CSRF_FIELD] = token
    return token


def verify_csrf():
    if request.method in SAFE_METHODS or not current_app.config["CSRF_ENABLED"]:
        return
    expected = session.get(CSRF_FIELD, "")
    sent = request.form.get(CSRF_FIELD) or request.headers.get(CSRF_HEADER, "")
    if not expected or not sent or not secrets.compare_digest(expected, sent):
        logger.warning("CSRF check failed for %s %s from %s", request.method, request.path, client_ip())
        raise CSRFError()


# =============================================================
# Security headers
# =============================================================
def csp_nonce() -> str:
    if "csp_nonce" not in g:
        g.csp_nonce = secrets.token_urlsafe(16)
    return g.csp_nonce


def add_security_headers(resp):
    policy = "; ".join(
        [
            "default-src 'self'",
            f"style-src 'self' 'unsafe-inline' {BOOTSTRAP_CDN}",
            f"script-src 'self' 'nonce-{csp_nonce()}' {BOOTSTRAP_CDN}",
            "img-src 'self' data: https:",
            f"font-src 'self' {BOOTSTRAP_CDN}",
            "frame-ancestors 'none'",
        ]
    )
    resp.headers["Content-Security-Policy"] = policy
    resp.headers["X-Frame-Options"] = "DENY"
    resp.headers["X-Content-Type-Options"] = "nosniff"
    resp.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
    if current_app.config.get("HSTS_ENABLED"):
        resp.headers["Strict-Transport-Security"] = "max-age=31536000; includeSubDomains; preload"
    return resp


def register_guards(app):
    """Install the guard chain on the app, in request order."""
    init_limiters(app)
    app.before_request(enforce_general_limit)
    app.before_request(load_session_user)
    app.before_request(verify_csrf)
    app.after_request(add_security_headers)

    @app.context_processor
    def inject_guard_helpers():
        return {"csrf_token": csrf_token, "csp_nonce": csp_nonce, "current_user": g.get("user")}

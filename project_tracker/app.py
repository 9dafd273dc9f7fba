import logging
import math
import sqlite3

import click
from flask import Flask, flash, g, jsonify, redirect, render_template_string, request, url_for
from werkzeug.exceptions import HTTPException
from werkzeug.middleware.proxy_fix import ProxyFix
from werkzeug.security import check_password_hash, generate_password_hash

from .config import PHASES, load_config
from .db import Predicates, execute_db, execute_in_transaction, init_db, query_db
from .errors import (
    AuthRequired,
    CSRFError,
    Forbidden,
    ProjectNotFound,
    RateLimited,
    SessionExpired,
    TrackerError,
    ValidationFailed,
)
from .guards import (
    clear_failed_logins,
    client_ip,
    current_user_id,
    end_session,
    guest_only,
    login_attempts_blocked,
    login_required,
    owner_required,
    pop_return_to,
    record_failed_login,
    register_guards,
    start_session,
    wants_json,
)
from .templates import (
    ABOUT_TEMPLATE,
    BROWSE_TEMPLATE,
    CONTACT_TEMPLATE,
    DASHBOARD_TEMPLATE,
    ERROR_TEMPLATE,
    INDEX_TEMPLATE,
    LOGIN_TEMPLATE,
    PROJECT_DETAIL_TEMPLATE,
    PROJECT_FORM_TEMPLATE,
    REGISTER_TEMPLATE,
    SEARCH_TEMPLATE,
)
from .validation import (
    LOGIN_RULES,
    PROJECT_CHECKS,
    PROJECT_RULES,
    REGISTER_CHECKS,
    REGISTER_RULES,
    SEARCH_RULES,
    sanitize_fields,
    validate,
)

# =============================================================
# Project Manager – server-rendered project tracking
#   Users register, log in and keep a list of projects
#   (title, dates, phase, description). Public pages list and
#   search everybody's projects; only owners may change theirs.
# =============================================================

app = Flask(__name__)
app.config.update(load_config())

logging.basicConfig(
    level=app.config["LOG_LEVEL"],
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

if app.config["TRUSTED_PROXIES"]:
    app.wsgi_app = ProxyFix(app.wsgi_app, x_for=app.config["TRUSTED_PROXIES"])

register_guards(app)

PAGE_SIZE = 12
RECENT_LIMIT = 20
USER_EXISTS = "Username or email already exists"
INVALID_LOGIN = "Invalid username or password"

# Compared against when the username is unknown, so both failure
# paths do the same hashing work.
_DUMMY_HASH = generate_password_hash("dummy-password-for-timing")


def _submitted_data():
    """Form fields, or the JSON body for fetch() callers."""
    if request.is_json:
        body = request.get_json(silent=True)
        return body if isinstance(body, dict) else {}
    return request.form


def _phase_stats(owner_id=None) -> dict:
    preds = Predicates()
    if owner_id is not None:
        preds.add("owner_id = ?", owner_id)
    rows = query_db(
        "SELECT phase, COUNT(*) AS cnt FROM projects" + preds.where() + " GROUP BY phase",
        preds.params,
    )
    stats = {phase: 0 for phase in PHASES}
    stats["total"] = 0
    for row in rows:
        stats[row["phase"]] = row["cnt"]
        stats["total"] += row["cnt"]
    return stats


def _project_payload(cleaned) -> dict:
    return {
        "title": cleaned["title"],
        "short_description": cleaned["short_description"],
        "start_date": cleaned["start_date"].isoformat(),
        "end_date": cleaned["end_date"].isoformat() if cleaned.get("end_date") else None,
        "phase": cleaned["phase"],
    }


def _project_rule_errors(owner_id, title, exclude_id=None, creating=False):
    """Per-owner business rules that need the database."""
    errors = []
    preds = Predicates().add("owner_id = ?", owner_id).add("title = ?", title)
    if exclude_id is not None:
        preds.add("id != ?", exclude_id)
    if query_db("SELECT id FROM projects" + preds.where(), preds.params, one=True):
        errors.append("You already have a project with this title")

    if creating:
        limit = app.config["MAX_PROJECTS_PER_USER"]
        row = query_db("SELECT COUNT(*) AS cnt FROM projects WHERE owner_id = ?", (owner_id,), one=True)
        if row["cnt"] >= limit:
            errors.append(f"You have reached the maximum number of projects ({limit}).")
    return errors


def _pagination(total_count: int, page: int):
    total_pages = max(1, math.ceil(total_count / PAGE_SIZE))
    return total_pages, (page - 1) * PAGE_SIZE


def _like(term: str) -> str:
    escaped = term.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return f"%{escaped}%"


# =============================================================
# Public pages
# =============================================================
@app.route("/")
def index():
    projects = query_db(
        """
        SELECT p.id, p.title, p.start_date, p.short_description, p.phase, u.username
        FROM projects p
          JOIN users u ON p.owner_id = u.id
        ORDER BY p.start_date DESC
        LIMIT ?
        """,
        (RECENT_LIMIT,),
    )
    total = query_db("SELECT COUNT(*) AS total FROM projects", one=True)["total"]
    return render_template_string(
        INDEX_TEMPLATE,
        page_title="Project Management System",
        projects=projects,
        total_projects=total,
        phases=PHASES,
        active="home",
    )


@app.route("/search")
def search():
    args = sanitize_fields(request.args)
    filters, errors = validate(args, SEARCH_RULES)
    page = filters.get("page") or 1
    search_query = filters.get("query")
    search_date = filters.get("date")
    phase = filters.get("phase")

    # Text and date are alternatives; the phase narrows either.
    text_or_date = Predicates("OR")
    if search_query:
        pattern = _like(search_query)
        text_or_date.add("(p.title LIKE ? ESCAPE '\\' OR p.short_description LIKE ? ESCAPE '\\')", pattern, pattern)
    if search_date:
        text_or_date.add("p.start_date = ?", search_date.isoformat())
    preds = Predicates().add_group(text_or_date)
    if phase:
        preds.add("p.phase = ?", phase)

    base = " FROM projects p JOIN users u ON p.owner_id = u.id" + preds.where()
    total_count = query_db("SELECT COUNT(*) AS total" + base, preds.params, one=True)["total"]
    total_pages, offset = _pagination(total_count, page)
    projects = query_db(
        "SELECT p.id, p.title, p.start_date, p.end_date, p.short_description, p.phase, u.username"
        + base
        + " ORDER BY p.start_date DESC LIMIT ? OFFSET ?",
        preds.params + [PAGE_SIZE, offset],
    )

    if search_query and search_date:
        title = f'Search Results for "{search_query}" or date "{search_date.isoformat()}"'
    elif search_query:
        title = f'Search Results for "{search_query}"'
    elif search_date:
        title = f'Projects starting on "{search_date.isoformat()}"'
    else:
        title = "All Projects"

    shown = {
        "query": search_query,
        "date": search_date.isoformat() if search_date else None,
        "phase": phase,
    }

    def page_url(n):
        params = {k: v for k, v in shown.items() if v}
        return url_for("search", page=n, **params)

    return render_template_string(
        SEARCH_TEMPLATE,
        page_title=title,
        projects=projects,
        filters=shown,
        phases=PHASES,
        errors=errors,
        page=page,
        total_pages=total_pages,
        total_count=total_count,
        page_url=page_url,
        active="search",
    )


@app.route("/browse/<phase>")
def browse_phase(phase):
    if phase not in PHASES:
        return render_template_string(
            ERROR_TEMPLATE,
            page_title="Invalid Phase",
            message="The requested project phase is not valid.",
        ), 404

    page = request.args.get("page", type=int) or 1
    page = min(max(page, 1), 1000)
    total_count = query_db("SELECT COUNT(*) AS total FROM projects WHERE phase = ?", (phase,), one=True)["total"]
    total_pages, offset = _pagination(total_count, page)
    projects = query_db(
        """
        SELECT p.id, p.title, p.start_date, p.short_description, p.phase, u.username
        FROM projects p
          JOIN users u ON p.owner_id = u.id
        WHERE p.phase = ?
        ORDER BY p.start_date DESC
        LIMIT ? OFFSET ?
        """,
        (phase, PAGE_SIZE, offset),
    )
    return render_template_string(
        BROWSE_TEMPLATE,
        page_title=f"{phase.capitalize()} Projects",
        projects=projects,
        page=page,
        total_pages=total_pages,
        total_count=total_count,
        page_url=lambda n: url_for("browse_phase", phase=phase, page=n),
        active="search",
    )


@app.route("/project/<int:project_id>")
def project_detail(project_id):
    project = query_db(
        """
        SELECT p.*, u.username, u.email
        FROM projects p
          JOIN users u ON p.owner_id = u.id
        WHERE p.id = ?
        """,
        (project_id,),
        one=True,
    )
    if project is None:
        raise ProjectNotFound(project_id)

    related = query_db(
        """
        SELECT id, title, phase, start_date
        FROM projects
        WHERE owner_id = ? AND id != ?
        ORDER BY start_date DESC
        LIMIT 3
        """,
        (project["owner_id"], project_id),
    )
    return render_template_string(
        PROJECT_DETAIL_TEMPLATE,
        page_title=project["title"],
        project=project,
        related=related,
        can_edit=current_user_id() == project["owner_id"],
        active="search",
    )


@app.route("/about")
def about():
    return render_template_string(
        ABOUT_TEMPLATE,
        page_title="About Project Management System",
        phases=PHASES,
        active="about",
    )


@app.route("/contact")
def contact():
    return render_template_string(
        CONTACT_TEMPLATE,
        page_title="Contact Us",
        contact_email=app.config["CONTACT_EMAIL"],
        active="contact",
    )


# =============================================================
# Authentication
# =============================================================
def _create_user(conn, cleaned):
    """Uniqueness check + insert; runs inside one IMMEDIATE transaction."""
    existing = conn.execute(
        "SELECT id FROM users WHERE username = ? OR email = ?",
        (cleaned["username"], cleaned["email"]),
    ).fetchone()
    if existing:
        return None
    cur = conn.execute(
        "INSERT INTO users (username, email, password_hash) VALUES (?, ?, ?)",
        (cleaned["username"], cleaned["email"], generate_password_hash(cleaned["password"])),
    )
    return {"id": cur.lastrowid, "username": cleaned["username"], "email": cleaned["email"]}


@app.route("/register", methods=["GET", "POST"])
@guest_only
def register():
    form = {}
    errors = []
    if request.method == "POST":
        form = sanitize_fields(_submitted_data())
        cleaned, errors = validate(form, REGISTER_RULES, REGISTER_CHECKS)
        if not errors:
            try:
                user = execute_in_transaction(lambda conn: _create_user(conn, cleaned))
            except sqlite3.IntegrityError:
                # Lost a race with a concurrent registration.
                user = None
            if user is None:
                errors = [USER_EXISTS]
            else:
                logger.info("Registered user %s (id=%s)", user["username"], user["id"])
                start_session(user)
                flash("Account created successfully! Welcome to Project Manager.", "success")
                if wants_json():
                    return jsonify({"success": True, "redirectTo": url_for("dashboard")}), 201
                return redirect(url_for("dashboard"))

        if wants_json():
            raise ValidationFailed(errors)

    return render_template_string(
        REGISTER_TEMPLATE,
        page_title="Register",
        form={"username": form.get("username", ""), "email": form.get("email", "")},
        errors=errors,
        active="register",
    )


def _password_matches(user, password: str) -> bool:
    if user is None:
        check_password_hash(_DUMMY_HASH, password)
        return False
    return check_password_hash(user["password_hash"], password)


@app.route("/login", methods=["GET", "POST"])
@guest_only
def login():
    form = {}
    errors = []
    if request.method == "POST":
        blocked = login_attempts_blocked()
        if not blocked.allowed:
            minutes = math.ceil(blocked.retry_after / 60)
            logger.warning("Login blocked for %s, too many failed attempts", client_ip())
            raise RateLimited(blocked.retry_after, f"Too many login attempts. Please try again in {minutes} minutes.")

        form = sanitize_fields(_submitted_data())
        cleaned, field_errors = validate(form, LOGIN_RULES)
        if field_errors:
            errors = ["Please provide valid username and password"]
        else:
            user = query_db("SELECT * FROM users WHERE username = ?", (cleaned["username"],), one=True)
            if _password_matches(user, cleaned["password"]):
                clear_failed_logins()
                start_session(user)
                logger.info("User %s logged in", user["username"])
                flash(f"Welcome back, {user['username']}!", "success")
                target = pop_return_to(url_for("dashboard"))
                if wants_json():
                    return jsonify({"success": True, "redirectTo": target})
                return redirect(target)

            record_failed_login()
            logger.warning("Failed login for %r from %s", cleaned["username"], client_ip())
            errors = [INVALID_LOGIN]

        if wants_json():
            return jsonify({"error": errors[0]}), 401

    return render_template_string(
        LOGIN_TEMPLATE,
        page_title="Login",
        form={"username": form.get("username", "")},
        errors=errors,
        active="login",
    )


@app.route("/logout", methods=["POST"])
@login_required
def logout():
    username = g.user["username"]
    end_session()
    logger.info("User %s logged out", username)
    if wants_json():
        return jsonify({"success": True, "message": f"Goodbye, {username}!"})
    flash("You have been logged out successfully.", "success")
    return redirect(url_for("index", message="logged-out"))


@app.route("/check-auth")
def check_auth():
    return jsonify({"authenticated": g.user is not None, "user": g.user})


# =============================================================
# Owner pages
# =============================================================
@app.route("/dashboard")
@login_required
def dashboard():
    projects = query_db(
        "SELECT * FROM projects WHERE owner_id = ? ORDER BY start_date DESC",
        (current_user_id(),),
    )
    return render_template_string(
        DASHBOARD_TEMPLATE,
        page_title="Dashboard",
        projects=projects,
        stats=_phase_stats(current_user_id()),
        phases=PHASES,
        active="dashboard",
    )


@app.route("/add-project", methods=["GET", "POST"])
@login_required
def add_project():
    form = {"phase": "design"}
    errors = []
    if request.method == "POST":
        form = sanitize_fields(_submitted_data())
        cleaned, errors = validate(form, PROJECT_RULES, PROJECT_CHECKS)
        if not errors:
            errors = _project_rule_errors(current_user_id(), cleaned["title"], creating=True)
        if not errors:
            payload = _project_payload(cleaned)
            try:
                result = execute_db(
                    """
                    INSERT INTO projects (title, short_description, start_date, end_date, phase, owner_id)
                    VALUES (?, ?, ?, ?, ?, ?)
                    """,
                    (
                        payload["title"],
                        payload["short_description"],
                        payload["start_date"],
                        payload["end_date"],
                        payload["phase"],
                        current_user_id(),
                    ),
                )
            except sqlite3.Error:
                logger.exception("Failed to add project for user %s", current_user_id())
                errors = ["Failed to add project. Please try again."]
            else:
                logger.info("User %s created project %s", current_user_id(), result.lastrowid)
                if wants_json():
                    return jsonify({"success": True, "id": result.lastrowid}), 201
                flash("Project added successfully!", "success")
                return redirect(url_for("dashboard"))

        if wants_json():
            raise ValidationFailed(errors)

    return render_template_string(
        PROJECT_FORM_TEMPLATE,
        page_title="Add New Project",
        project_id=None,
        form=form,
        errors=errors,
        phases=PHASES,
        active="add-project",
    )


@app.route("/edit-project/<int:project_id>", methods=["GET", "POST"])
@login_required
@owner_required
def edit_project(project_id):
    form = dict(g.project)
    errors = []
    if request.method == "POST":
        form = sanitize_fields(_submitted_data())
        cleaned, errors = validate(form, PROJECT_RULES, PROJECT_CHECKS)
        if not errors:
            errors = _project_rule_errors(current_user_id(), cleaned["title"], exclude_id=project_id)
        if not errors:
            payload = _project_payload(cleaned)
            try:
                execute_db(
                    """
                    UPDATE projects
                    SET title = ?, short_description = ?, start_date = ?, end_date = ?, phase = ?
                    WHERE id = ? AND owner_id = ?
                    """,
                    (
                        payload["title"],
                        payload["short_description"],
                        payload["start_date"],
                        payload["end_date"],
                        payload["phase"],
                        project_id,
                        current_user_id(),
                    ),
                )
            except sqlite3.Error:
                logger.exception("Failed to update project %s", project_id)
                errors = ["Failed to update project. Please try again."]
            else:
                if wants_json():
                    return jsonify({"success": True, "id": project_id})
                flash("Project updated successfully!", "success")
                return redirect(url_for("dashboard"))

        if wants_json():
            raise ValidationFailed(errors)

    return render_template_string(
        PROJECT_FORM_TEMPLATE,
        page_title=f"Edit Project: {g.project['title']}",
        project_id=project_id,
        form=form,
        errors=errors,
        phases=PHASES,
        active="dashboard",
    )


@app.route("/delete-project/<int:project_id>", methods=["POST"])
@login_required
@owner_required
def delete_project(project_id):
    result = execute_db(
        "DELETE FROM projects WHERE id = ? AND owner_id = ?",
        (project_id, current_user_id()),
    )
    deleted = result.rowcount > 0
    if wants_json():
        return jsonify({"success": deleted}), (200 if deleted else 404)
    if deleted:
        logger.info("User %s deleted project %s", current_user_id(), project_id)
        flash("Project deleted successfully!", "success")
    else:
        flash("Project not found or you do not have permission to delete it.", "danger")
    return redirect(url_for("dashboard"))


# =============================================================
# JSON endpoints
# =============================================================
@app.route("/api/stats")
def api_stats():
    return jsonify(_phase_stats())


@app.route("/api/recent")
def api_recent():
    limit = request.args.get("limit", type=int) or 5
    limit = min(max(limit, 1), 50)
    rows = query_db(
        """
        SELECT p.id, p.title, p.start_date, p.phase, u.username
        FROM projects p
          JOIN users u ON p.owner_id = u.id
        ORDER BY p.start_date DESC
        LIMIT ?
        """,
        (limit,),
    )
    return jsonify([dict(r) for r in rows])


@app.route("/api/projects/<int:project_id>")
@login_required
@owner_required
def api_project(project_id):
    return jsonify(dict(g.project))


# =============================================================
# Error handling
#   JSON callers get a JSON body; browsers get a redirect (auth,
#   ownership) or the error page. Internal detail never leaves the
#   server unless SHOW_ERROR_DETAIL is on.
# =============================================================
OWNER_ENDPOINTS = {"edit_project", "delete_project"}


@app.errorhandler(TrackerError)
def handle_tracker_error(exc):
    headers = {}
    if isinstance(exc, RateLimited):
        headers["Retry-After"] = str(exc.retry_after)

    if wants_json():
        return jsonify(exc.to_dict()), exc.status_code, headers

    if isinstance(exc, SessionExpired):
        flash("Your session has expired. Please log in again.", "warning")
        return redirect(url_for("login", message="session-expired"))
    if isinstance(exc, AuthRequired):
        return redirect(url_for("login"))
    if isinstance(exc, RateLimited) and request.endpoint == "login":
        return render_template_string(
            LOGIN_TEMPLATE,
            page_title="Login",
            form={},
            errors=[exc.message],
            active="login",
        ), 429, headers
    if isinstance(exc, (Forbidden, ProjectNotFound)) and not isinstance(exc, CSRFError):
        if request.endpoint in OWNER_ENDPOINTS:
            flash(exc.message if isinstance(exc, Forbidden) else "Project not found.", "danger")
            return redirect(url_for("dashboard"))

    message = exc.message
    if isinstance(exc, ProjectNotFound):
        message = "The project you are looking for does not exist."
    return render_template_string(
        ERROR_TEMPLATE,
        page_title=exc.title,
        message=message,
    ), exc.status_code, headers


@app.errorhandler(HTTPException)
def handle_http_error(exc):
    if wants_json():
        return jsonify({"error": exc.name}), exc.code
    message = exc.description
    if exc.code == 404:
        message = "The page you are looking for could not be found."
    return render_template_string(ERROR_TEMPLATE, page_title=exc.name, message=message), exc.code


@app.errorhandler(Exception)
def handle_unexpected_error(exc):
    logger.exception("Unhandled error on %s %s", request.method, request.path)
    detail = repr(exc) if app.config["SHOW_ERROR_DETAIL"] else None
    if wants_json():
        body = {"error": "Internal server error"}
        if detail:
            body["detail"] = detail
        return jsonify(body), 500
    return render_template_string(
        ERROR_TEMPLATE,
        page_title="Internal Server Error",
        message="Something went wrong. Please try again later.",
        detail=detail,
    ), 500


# =============================================================
# CLI + bootstrap
# =============================================================
@app.cli.command("init-db")
def init_db_command():
    """Create the tables (safe to run repeatedly)."""
    init_db()
    click.echo(f"Database ready at {app.config['DATABASE']}")


# Initialize the schema whenever the module is imported.
# Safe because every statement is IF NOT EXISTS.
with app.app_context():
    init_db()

if __name__ == "__main__":
    # Local dev only – deployment runs gunicorn with project_tracker.app:app
    app.run(host="0.0.0.0", port=app.config["PORT"], debug=app.config["APP_ENV"] == "development")

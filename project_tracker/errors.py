"""
Exceptions raised by the guards and route handlers.

Each carries the HTTP status it maps to; the error handlers in app.py
decide between a JSON body and an HTML response (redirect or error page).
"""


class TrackerError(Exception):
    """Base class for all expected, user-facing failures."""

    status_code = 500
    title = "Error"

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code

    def to_dict(self) -> dict:
        return {"error": self.message}


# -------------------------------------------------------------
# Validation
# -------------------------------------------------------------
class ValidationFailed(TrackerError):
    status_code = 400
    title = "Validation Error"

    def __init__(self, errors):
        super().__init__("Please correct the highlighted errors.")
        self.errors = list(errors)

    def to_dict(self) -> dict:
        return {"success": False, "errors": self.errors}


# -------------------------------------------------------------
# Authentication / authorization
# -------------------------------------------------------------
class AuthRequired(TrackerError):
    status_code = 401
    title = "Authentication Required"

    def __init__(self, message: str = "Authentication required"):
        super().__init__(message)

    def to_dict(self) -> dict:
        return {"error": self.message, "redirectTo": "/login"}


class SessionExpired(AuthRequired):
    title = "Session Expired"

    def __init__(self):
        super().__init__("Session expired")


class Forbidden(TrackerError):
    status_code = 403
    title = "Access Denied"

    def __init__(self, message: str = "Access denied"):
        super().__init__(message)


class CSRFError(Forbidden):
    title = "Security Error"

    def __init__(self):
        super().__init__("Invalid security token. Please refresh the page and try again.")


class ProjectNotFound(TrackerError):
    status_code = 404
    title = "Project Not Found"

    def __init__(self, project_id=None):
        super().__init__("Project not found")
        self.project_id = project_id


# -------------------------------------------------------------
# Throttling
# -------------------------------------------------------------
class RateLimited(TrackerError):
    status_code = 429
    title = "Too Many Requests"

    def __init__(self, retry_after: int, message: str = "Too many requests from this IP, please try again later."):
        super().__init__(message)
        self.retry_after = retry_after

    def to_dict(self) -> dict:
        return {"error": self.message, "retryAfter": self.retry_after}

"""
Input sanitization and declarative field validation.

Rules are evaluated independently per field and all violations are
collected, so a form comes back with every problem at once. Cross-field
checks run after the per-field rules, on the cleaned values.
"""
import re
from datetime import date, datetime, timedelta

from email_validator import EmailNotValidError, validate_email

from .config import PHASES

PASSWORD_FIELDS = frozenset({"password", "confirm_password"})

_MARKUP_RE = re.compile(r"[<>]")


def sanitize(value):
    """Trim whitespace and strip markup characters from a string."""
    if not isinstance(value, str):
        return value
    return _MARKUP_RE.sub("", value.strip())


def sanitize_fields(data) -> dict:
    """
    Sanitize every string field of a submitted mapping.
    Password fields are passed through untouched.
    """
    cleaned = {}
    for key in data.keys():
        value = data.get(key)
        cleaned[key] = value if key in PASSWORD_FIELDS else sanitize(value)
    return cleaned


# -------------------------------------------------------------
# Coercions: take the raw string, return the typed value or raise
# ValueError (the rule's coerce_message is reported instead).
# -------------------------------------------------------------
def iso_date(value: str) -> date:
    return datetime.strptime(value, "%Y-%m-%d").date()


def positive_int(value: str) -> int:
    number = int(value)
    if number < 1:
        raise ValueError(value)
    return number


MAX_PAGE = 1000


def page_number(value: str) -> int:
    number = positive_int(value)
    if number > MAX_PAGE:
        raise ValueError(value)
    return number


def email_address(value: str) -> str:
    try:
        result = validate_email(value, check_deliverability=False)
    except EmailNotValidError as exc:
        raise ValueError(str(exc))
    # Addresses are compared case-insensitively, so store one canonical form.
    return result.normalized.lower()


class Rule:
    """
    Declarative rule for one field.

    Checks run in order: required, length bounds, pattern, choices,
    coerce. A failed check ends evaluation of this field only; other
    fields are still validated.
    """

    def __init__(
        self,
        field: str,
        label: str | None = None,
        required: bool = True,
        min_length: int | None = None,
        max_length: int | None = None,
        pattern: str | None = None,
        choices=None,
        coerce=None,
        length_message: str | None = None,
        pattern_message: str | None = None,
        choices_message: str | None = None,
        coerce_message: str | None = None,
        required_message: str | None = None,
    ):
        self.field = field
        self.label = label or field.replace("_", " ").capitalize()
        self.required = required
        self.min_length = min_length
        self.max_length = max_length
        self.pattern = re.compile(pattern) if pattern else None
        self.choices = tuple(choices) if choices is not None else None
        self.coerce = coerce
        self.length_message = length_message
        self.pattern_message = pattern_message or f"{self.label} format is invalid"
        self.choices_message = choices_message or f"{self.label} must be one of: {', '.join(self.choices or ())}"
        self.coerce_message = coerce_message or f"{self.label} is invalid"
        self.required_message = required_message or f"{self.label} is required"

    def _length_error(self, value: str):
        too_short = self.min_length is not None and len(value) < self.min_length
        too_long = self.max_length is not None and len(value) > self.max_length
        if not (too_short or too_long):
            return None
        if self.length_message:
            return self.length_message
        if too_short:
            return f"{self.label} must be at least {self.min_length} characters"
        return f"{self.label} must be no more than {self.max_length} characters"

    def check(self, raw):
        """Return (value, error). Missing optional fields yield (None, None)."""
        value = "" if raw is None else str(raw)
        if value == "":
            if self.required:
                return None, self.required_message
            return None, None

        error = self._length_error(value)
        if error:
            return None, error
        if self.pattern is not None and not self.pattern.fullmatch(value):
            return None, self.pattern_message
        if self.choices is not None and value not in self.choices:
            return None, self.choices_message
        if self.coerce is not None:
            try:
                value = self.coerce(value)
            except (TypeError, ValueError):
                return None, self.coerce_message
        return value, None


def validate(data, rules, checks=()):
    """
    Validate a mapping against a list of Rules plus cross-field checks.

    Each check is called as check(cleaned) and returns an error string
    or None. Checks only see fields that passed their own rule.

    Returns (cleaned, errors).
    """
    cleaned = {}
    errors = []
    for rule in rules:
        value, error = rule.check(data.get(rule.field))
        if error:
            errors.append(error)
        else:
            cleaned[rule.field] = value

    for check in checks:
        error = check(cleaned)
        if error:
            errors.append(error)
    return cleaned, errors


# =============================================================
# Rule sets
# =============================================================
USERNAME_PATTERN = r"[a-zA-Z0-9_]+"
PASSWORD_PATTERN = r"(?=.*[a-z])(?=.*[A-Z])(?=.*\d).+"
TITLE_PATTERN = r"[a-zA-Z0-9\s\-_.()]+"

REGISTER_RULES = [
    Rule(
        "username",
        min_length=3,
        max_length=50,
        pattern=USERNAME_PATTERN,
        length_message="Username must be between 3 and 50 characters",
        pattern_message="Username can only contain letters, numbers, and underscores",
    ),
    Rule(
        "email",
        max_length=100,
        coerce=email_address,
        length_message="Email is too long",
        coerce_message="Please provide a valid email address",
    ),
    Rule(
        "password",
        min_length=6,
        max_length=128,
        pattern=PASSWORD_PATTERN,
        length_message="Password must be between 6 and 128 characters",
        pattern_message="Password must contain at least one lowercase letter, one uppercase letter, and one number",
    ),
    Rule("confirm_password", label="Password confirmation"),
]


def passwords_match(cleaned):
    if "password" in cleaned and "confirm_password" in cleaned:
        if cleaned["password"] != cleaned["confirm_password"]:
            return "Passwords do not match"
    return None


REGISTER_CHECKS = [passwords_match]

LOGIN_RULES = [
    Rule("username", max_length=50, length_message="Username is too long"),
    Rule("password", max_length=128, length_message="Password is too long"),
]

PROJECT_RULES = [
    Rule(
        "title",
        label="Project title",
        min_length=3,
        max_length=100,
        pattern=TITLE_PATTERN,
        length_message="Project title must be between 3 and 100 characters",
        pattern_message="Project title contains invalid characters",
    ),
    Rule(
        "short_description",
        min_length=10,
        max_length=500,
        length_message="Short description must be between 10 and 500 characters",
    ),
    Rule(
        "start_date",
        coerce=iso_date,
        required_message="Please provide a valid start date (YYYY-MM-DD)",
        coerce_message="Please provide a valid start date (YYYY-MM-DD)",
    ),
    Rule(
        "end_date",
        required=False,
        coerce=iso_date,
        coerce_message="Please provide a valid end date (YYYY-MM-DD)",
    ),
    Rule(
        "phase",
        choices=PHASES,
        required_message="Please select a valid phase",
        choices_message="Please select a valid phase",
    ),
]


def start_date_not_too_far(cleaned, today=None):
    start = cleaned.get("start_date")
    today = today or date.today()
    if start and start > today + timedelta(days=365):
        return "Start date cannot be more than 1 year in the future"
    return None


def end_date_after_start(cleaned):
    start, end = cleaned.get("start_date"), cleaned.get("end_date")
    if start and end:
        if end <= start:
            return "End date must be after start date"
        if (end - start).days > 10 * 365:
            return "End date cannot be more than 10 years after start date"
    return None


PROJECT_CHECKS = [start_date_not_too_far, end_date_after_start]

SEARCH_RULES = [
    Rule(
        "query",
        required=False,
        max_length=100,
        length_message="Search query must be between 1 and 100 characters",
    ),
    Rule("date", required=False, coerce=iso_date, coerce_message="Date must be in valid format"),
    Rule("phase", required=False, choices=PHASES, choices_message="Invalid phase filter"),
    Rule(
        "page",
        required=False,
        pattern=r"\d{1,4}",
        coerce=page_number,
        pattern_message="Page must be a valid number",
        coerce_message="Page must be a valid number",
    ),
]

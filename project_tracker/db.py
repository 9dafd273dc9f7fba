import logging
import sqlite3
from collections import namedtuple

from flask import current_app

from .config import PHASES

logger = logging.getLogger(__name__)

WriteResult = namedtuple("WriteResult", ["lastrowid", "rowcount"])


# =============================================================
# Connection helper
# =============================================================
def get_connection(db_path=None):
    """
    Create a new SQLite connection with:
      • row_factory = sqlite3.Row so we can access columns by name
      • foreign_keys enforced (projects.owner_id -> users.id)
    No user input ever touches this function. All SQL later uses
    '?' placeholders with a separate args tuple.
    """
    path = db_path or current_app.config["DATABASE"]
    conn = sqlite3.connect(path, check_same_thread=False)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON;")
    return conn


# =============================================================
# Schema bootstrap
#   Every statement is IF NOT EXISTS, so running this against an
#   initialized database changes nothing and keeps all rows.
# =============================================================
_PHASE_LIST = ", ".join(f"'{p}'" for p in PHASES)

SCHEMA_STATEMENTS = (
    """
    CREATE TABLE IF NOT EXISTS users (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        username TEXT NOT NULL UNIQUE COLLATE NOCASE,
        email TEXT NOT NULL UNIQUE COLLATE NOCASE,
        password_hash TEXT NOT NULL,
        created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
    )
    """,
    f"""
    CREATE TABLE IF NOT EXISTS projects (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        title TEXT NOT NULL,
        short_description TEXT NOT NULL,
        start_date TEXT NOT NULL,
        end_date TEXT,
        phase TEXT NOT NULL DEFAULT 'design' CHECK (phase IN ({_PHASE_LIST})),
        owner_id INTEGER NOT NULL,
        created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
        updated_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
        FOREIGN KEY (owner_id) REFERENCES users(id)
    )
    """,
    # updated_at is maintained by storage, not by the handlers.
    """
    CREATE TRIGGER IF NOT EXISTS trg_projects_touch
    AFTER UPDATE ON projects
    FOR EACH ROW
    WHEN NEW.updated_at = OLD.updated_at
    BEGIN
        UPDATE projects SET updated_at = CURRENT_TIMESTAMP WHERE id = NEW.id;
    END
    """,
    # idx_projects_owner: dashboard listing, ownership check,
    #   per-owner title uniqueness and project count.
    """
    CREATE INDEX IF NOT EXISTS idx_projects_owner
    ON projects (owner_id, start_date)
    """,
    # idx_projects_phase: /browse/<phase>, phase filter in /search, stats.
    """
    CREATE INDEX IF NOT EXISTS idx_projects_phase
    ON projects (phase, start_date)
    """,
    # idx_projects_start: home page and /api/recent ordering.
    """
    CREATE INDEX IF NOT EXISTS idx_projects_start
    ON projects (start_date)
    """,
)


def init_db(db_path=None):
    conn = get_connection(db_path)
    try:
        for statement in SCHEMA_STATEMENTS:
            conn.execute(statement)
        conn.commit()
    finally:
        conn.close()
    logger.info("Database schema ready at %s", db_path or current_app.config["DATABASE"])


# =============================================================
# Query helpers
# =============================================================
def query_db(query: str, args=(), one: bool = False):
    """
    Safe SELECT helper.
    All variables are passed via the args tuple, never concatenated
    into the SQL string.
    """
    conn = get_connection()
    try:
        cur = conn.execute(query, args)
        rows = cur.fetchall()
    finally:
        conn.close()

    if one:
        return rows[0] if rows else None
    return rows


def execute_db(query: str, args=()):
    """
    Single-statement INSERT/UPDATE/DELETE.
    Returns the new row id (for inserts) and the affected row count.
    """
    conn = get_connection()
    try:
        cur = conn.execute(query, args)
        conn.commit()
        return WriteResult(cur.lastrowid, cur.rowcount)
    finally:
        conn.close()


def execute_in_transaction(work, isolation: str = "IMMEDIATE"):
    """
    Run a multi-step unit of work inside a single transaction.

    • isolation="IMMEDIATE" takes the write lock up front, so a
      check-then-insert (e.g. registration uniqueness) cannot interleave
      with another writer.
    • If anything fails we ROLLBACK and re-raise.

    The 'work' callback receives the connection and must only use it.
    """
    conn = sqlite3.connect(current_app.config["DATABASE"], isolation_level=None, check_same_thread=False)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON;")
    try:
        conn.execute(f"BEGIN {isolation}")
    except sqlite3.Error:
        conn.close()
        raise
    try:
        result = work(conn)
        conn.execute("COMMIT")
        return result
    except Exception:
        conn.execute("ROLLBACK")
        raise
    finally:
        conn.close()


# =============================================================
# Predicate builder for dynamic WHERE clauses
#   Only static column expressions are ever appended to the SQL
#   text; values always travel as bound parameters.
# =============================================================
class Predicates:
    def __init__(self, joiner: str = "AND"):
        self.joiner = joiner
        self.clauses = []
        self.params = []

    def add(self, clause: str, *params):
        self.clauses.append(clause)
        self.params.extend(params)
        return self

    def add_group(self, group: "Predicates"):
        """Nest another builder as one parenthesized clause."""
        if group:
            self.clauses.append("(" + f" {group.joiner} ".join(group.clauses) + ")")
            self.params.extend(group.params)
        return self

    def __bool__(self):
        return bool(self.clauses)

    def where(self) -> str:
        if not self.clauses:
            return ""
        return " WHERE " + f" {self.joiner} ".join(self.clauses)

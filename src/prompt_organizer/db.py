"""SQLite database operations."""

import json
import sqlite3
import uuid
from datetime import datetime
from pathlib import Path

from .errors import PersistenceError
from .models import Category, SourcePrompt, TemplateCandidate, UserAction

SCHEMA = """
CREATE TABLE IF NOT EXISTS prompts (
    id TEXT PRIMARY KEY,
    name TEXT NOT NULL,
    content TEXT NOT NULL UNIQUE,
    execution_count INTEGER NOT NULL DEFAULT 0,
    last_executed_at TIMESTAMP NOT NULL,
    exclude_from_organizer INTEGER NOT NULL DEFAULT 0,
    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
);

CREATE TABLE IF NOT EXISTS categories (
    id TEXT PRIMARY KEY,
    name TEXT NOT NULL,
    is_default INTEGER NOT NULL DEFAULT 0
);

CREATE TABLE IF NOT EXISTS templates (
    id TEXT PRIMARY KEY,
    candidate_id TEXT UNIQUE NOT NULL,
    title TEXT NOT NULL,
    content TEXT NOT NULL,
    use_case TEXT,
    category_id TEXT,
    variables TEXT,      -- JSON array of {name, description}
    ai_metadata TEXT,    -- JSON object
    pinned INTEGER NOT NULL DEFAULT 0,
    saved_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
    FOREIGN KEY (category_id) REFERENCES categories(id)
);

CREATE TABLE IF NOT EXISTS kv (
    key TEXT PRIMARY KEY,
    value TEXT,          -- JSON, NULL when cleared
    updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
);

CREATE INDEX IF NOT EXISTS idx_prompts_last_executed ON prompts(last_executed_at);
CREATE INDEX IF NOT EXISTS idx_templates_pinned ON templates(pinned);
"""

DEFAULT_CATEGORIES = [
    Category(id="externalCommunication", name="External communication", is_default=True),
    Category(id="internalCommunication", name="Internal communication", is_default=True),
    Category(id="documentCreation", name="Document creation", is_default=True),
    Category(id="development", name="Development", is_default=True),
    Category(id="other", name="Other", is_default=True),
]

_UPDATABLE_PROMPT_FIELDS = {"name", "content", "execution_count", "last_executed_at", "exclude_from_organizer"}


def _row_to_prompt(row: sqlite3.Row) -> SourcePrompt:
    return SourcePrompt(
        id=row["id"],
        name=row["name"],
        content=row["content"],
        execution_count=row["execution_count"],
        last_executed_at=datetime.fromisoformat(row["last_executed_at"]),
        exclude_from_organizer=bool(row["exclude_from_organizer"]),
    )


class Database:
    """SQLite database wrapper.

    Acts as the prompt store, the category provider, the template persister
    and the backing store of the key-value settings.
    """

    def __init__(self, db_path: str | Path):
        self.db_path = Path(db_path)
        self.conn: sqlite3.Connection | None = None

    def connect(self) -> sqlite3.Connection:
        """Connect to the database."""
        self.conn = sqlite3.connect(self.db_path)
        self.conn.row_factory = sqlite3.Row
        return self.conn

    def close(self):
        """Close the database connection."""
        if self.conn:
            self.conn.close()
            self.conn = None

    def __enter__(self):
        self.connect()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    def _require_conn(self) -> sqlite3.Connection:
        if not self.conn:
            raise RuntimeError("Database not connected")
        return self.conn

    def init_schema(self):
        """Initialize the schema and seed the default categories."""
        conn = self._require_conn()
        conn.executescript(SCHEMA)
        conn.executemany(
            "INSERT OR IGNORE INTO categories (id, name, is_default) VALUES (?, ?, ?)",
            [(c.id, c.name, int(c.is_default)) for c in DEFAULT_CATEGORIES],
        )
        conn.commit()

    def clear_all(self):
        """Clear the prompt library and organizer state. Saved templates are kept."""
        conn = self._require_conn()
        conn.executescript("""
            DELETE FROM prompts;
            DELETE FROM kv;
        """)
        conn.commit()

    # Prompt library

    def record_execution(self, content: str, name: str | None = None, executed_at: datetime | None = None, count: int = 1) -> str:
        """Record executions of a prompt, creating it on first use. Returns the prompt ID."""
        conn = self._require_conn()
        content = content.strip()
        if not content:
            raise ValueError("Prompt content is empty")
        executed_at = executed_at or datetime.now()

        row = conn.execute("SELECT id, last_executed_at FROM prompts WHERE content = ?", (content,)).fetchone()
        if row:
            last = max(datetime.fromisoformat(row["last_executed_at"]), executed_at)
            conn.execute(
                "UPDATE prompts SET execution_count = execution_count + ?, last_executed_at = ? WHERE id = ?",
                (count, last.isoformat(), row["id"]),
            )
            prompt_id = row["id"]
        else:
            prompt_id = f"prompt_{uuid.uuid4()}"
            conn.execute(
                """
                INSERT INTO prompts (id, name, content, execution_count, last_executed_at)
                VALUES (?, ?, ?, ?, ?)
                """,
                (prompt_id, name or content.splitlines()[0][:40], content, count, executed_at.isoformat()),
            )

        conn.commit()
        return prompt_id

    def get_all_prompts(self) -> list[SourcePrompt]:
        conn = self._require_conn()
        cursor = conn.execute("SELECT * FROM prompts ORDER BY last_executed_at DESC")
        return [_row_to_prompt(row) for row in cursor]

    def get_prompt(self, prompt_id: str) -> SourcePrompt | None:
        conn = self._require_conn()
        row = conn.execute("SELECT * FROM prompts WHERE id = ?", (prompt_id,)).fetchone()
        return _row_to_prompt(row) if row else None

    def update_prompt(self, prompt_id: str, **fields):
        """Update selected columns of a prompt."""
        conn = self._require_conn()
        unknown = set(fields) - _UPDATABLE_PROMPT_FIELDS
        if unknown:
            raise ValueError(f"Cannot update prompt fields: {', '.join(sorted(unknown))}")
        if not fields:
            return

        values = []
        for key, value in fields.items():
            if isinstance(value, datetime):
                value = value.isoformat()
            elif isinstance(value, bool):
                value = int(value)
            values.append(value)

        assignments = ", ".join(f"{key} = ?" for key in fields)
        cursor = conn.execute(f"UPDATE prompts SET {assignments} WHERE id = ?", (*values, prompt_id))
        if cursor.rowcount == 0:
            raise KeyError(f"Prompt not found: {prompt_id}")
        conn.commit()

    # Categories

    def get_all_categories(self) -> list[Category]:
        conn = self._require_conn()
        cursor = conn.execute("SELECT * FROM categories ORDER BY is_default DESC, name")
        return [Category(id=row["id"], name=row["name"], is_default=bool(row["is_default"])) for row in cursor]

    # Saved templates

    def save_templates(self, candidates: list[TemplateCandidate]) -> list[str]:
        """Persist accepted candidates as permanent templates in one transaction."""
        conn = self._require_conn()
        saved_ids = []

        try:
            for candidate in candidates:
                if candidate.user_action not in (UserAction.SAVE, UserAction.SAVE_AND_PIN):
                    raise ValueError(f"Candidate {candidate.id} is not accepted ({candidate.user_action.value})")

                meta = candidate.to_dict()["ai_metadata"]
                meta["confirmed"] = True
                template_id = f"template_{uuid.uuid4()}"
                cursor = conn.execute(
                    """
                    INSERT OR IGNORE INTO templates (id, candidate_id, title, content, use_case, category_id, variables, ai_metadata, pinned)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        template_id,
                        candidate.id,
                        candidate.title,
                        candidate.content,
                        candidate.use_case,
                        candidate.category_id,
                        json.dumps([{"name": v.name, "description": v.description} for v in candidate.variables]),
                        json.dumps(meta),
                        int(candidate.user_action == UserAction.SAVE_AND_PIN),
                    ),
                )
                # Retried commits reuse candidate ids; already saved ones are skipped
                if cursor.rowcount:
                    saved_ids.append(template_id)
            conn.commit()
        except sqlite3.Error as e:
            conn.rollback()
            raise PersistenceError(f"Failed to save templates: {e}") from e
        except ValueError:
            conn.rollback()
            raise

        return saved_ids

    def get_templates(self, pinned_only: bool = False) -> list[dict]:
        conn = self._require_conn()
        query = "SELECT * FROM templates"
        if pinned_only:
            query += " WHERE pinned = 1"
        query += " ORDER BY saved_at DESC, title"

        templates = []
        for row in conn.execute(query):
            data = dict(row)
            data["variables"] = json.loads(data["variables"] or "[]")
            data["ai_metadata"] = json.loads(data["ai_metadata"] or "{}")
            data["pinned"] = bool(data["pinned"])
            templates.append(data)
        return templates

    # Key-value area

    def get_value(self, key: str):
        """Get a JSON value, or None when missing or cleared."""
        conn = self._require_conn()
        row = conn.execute("SELECT value FROM kv WHERE key = ?", (key,)).fetchone()
        if row is None or row["value"] is None:
            return None
        return json.loads(row["value"])

    def set_value(self, key: str, value):
        """Store a JSON value. None clears the key."""
        conn = self._require_conn()
        encoded = None if value is None else json.dumps(value)
        try:
            conn.execute(
                """
                INSERT INTO kv (key, value, updated_at) VALUES (?, ?, CURRENT_TIMESTAMP)
                ON CONFLICT(key) DO UPDATE SET value = excluded.value, updated_at = excluded.updated_at
                """,
                (key, encoded),
            )
            conn.commit()
        except sqlite3.Error as e:
            raise PersistenceError(f"Failed to store {key}: {e}") from e

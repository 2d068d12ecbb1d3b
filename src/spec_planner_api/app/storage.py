"""PostgreSQL storage for specifications and their generated items.

Write path:
- ``create_spec`` commits the parent row on its own, before the model runs,
  so an identifier exists even when generation fails later.
- ``add_items`` inserts every child of one specification inside a single
  transaction: either all of them land or none do.

Read path:
- ``list_recent`` runs four queries regardless of how many specifications are
  returned (one for parents, one per child table) and groups rows in memory.

Every driver error leaves this module as ``DatabaseError``.
"""

from __future__ import annotations

from collections.abc import Iterable, Iterator, Mapping, Sequence
from contextlib import contextmanager
from typing import Any, Protocol

from .errors import DatabaseError
from .models import (
    EngineeringTaskItem,
    GeneratedPlan,
    RiskItem,
    SpecHeader,
    SpecRecord,
    UserStoryItem,
)


class SpecStorage(Protocol):
    def migrate(self) -> None: ...

    def create_spec(self, goal: str, users: str, constraints: str, template: str) -> SpecHeader: ...

    def add_items(self, spec_id: int, plan: GeneratedPlan) -> None: ...

    def list_recent(self, limit: int = 5) -> list[SpecRecord]: ...

    def ping(self) -> None: ...

    def server_info(self) -> dict[str, Any]: ...


class PostgresSpecStorage:
    """PostgreSQL-backed storage; each call opens its own connection."""

    def __init__(self, database_url: str) -> None:
        if not database_url:
            raise ValueError("database_url is required")
        self.database_url = database_url
        self._psycopg, self._dict_row = self._load_psycopg()

    def migrate(self) -> None:
        """Create the four tables and their indexes if they do not exist."""
        with self._database_errors(), self._connect() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS specs (
                    id BIGINT GENERATED ALWAYS AS IDENTITY PRIMARY KEY,
                    goal TEXT NOT NULL,
                    users TEXT NOT NULL,
                    constraints TEXT NOT NULL,
                    template TEXT NOT NULL,
                    created_at TIMESTAMPTZ NOT NULL DEFAULT now()
                )
                """)
            conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_specs_created_at
                ON specs(created_at DESC, id DESC)
                """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS user_stories (
                    id BIGINT GENERATED ALWAYS AS IDENTITY PRIMARY KEY,
                    external_id TEXT,
                    content TEXT NOT NULL,
                    spec_id BIGINT NOT NULL REFERENCES specs(id) ON DELETE CASCADE
                )
                """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS engineering_tasks (
                    id BIGINT GENERATED ALWAYS AS IDENTITY PRIMARY KEY,
                    external_id TEXT,
                    content TEXT NOT NULL,
                    spec_id BIGINT NOT NULL REFERENCES specs(id) ON DELETE CASCADE
                )
                """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS risks (
                    id BIGINT GENERATED ALWAYS AS IDENTITY PRIMARY KEY,
                    external_id TEXT,
                    risk TEXT NOT NULL,
                    mitigation TEXT NOT NULL DEFAULT '',
                    spec_id BIGINT NOT NULL REFERENCES specs(id) ON DELETE CASCADE
                )
                """)
            for table in ("user_stories", "engineering_tasks", "risks"):
                conn.execute(f"CREATE INDEX IF NOT EXISTS idx_{table}_spec_id ON {table}(spec_id)")
            conn.commit()

    def create_spec(self, goal: str, users: str, constraints: str, template: str) -> SpecHeader:
        """Insert and commit one parent row; return its id and timestamp."""
        with self._database_errors(), self._connect() as conn:
            row = conn.execute(
                """
                INSERT INTO specs (goal, users, constraints, template)
                VALUES (%s, %s, %s, %s)
                RETURNING id, created_at
                """,
                (goal, users, constraints, template),
            ).fetchone()
            conn.commit()
        return SpecHeader(specs_id=row["id"], created_at=row["created_at"])

    def add_items(self, spec_id: int, plan: GeneratedPlan) -> None:
        """Insert all child rows in model order inside one transaction."""
        with self._database_errors(), self._connect() as conn, conn.transaction():
            for story in plan.user_stories:
                conn.execute(
                    """
                    INSERT INTO user_stories (external_id, content, spec_id)
                    VALUES (%s, %s, %s)
                    """,
                    (_external_id(story.id), story.story, spec_id),
                )
            for task in plan.engineering_tasks:
                conn.execute(
                    """
                    INSERT INTO engineering_tasks (external_id, content, spec_id)
                    VALUES (%s, %s, %s)
                    """,
                    (_external_id(task.id), task.task, spec_id),
                )
            for risk in plan.risks:
                conn.execute(
                    """
                    INSERT INTO risks (external_id, risk, mitigation, spec_id)
                    VALUES (%s, %s, %s, %s)
                    """,
                    (_external_id(risk.id), risk.risk, risk.mitigation, spec_id),
                )

    def list_recent(self, limit: int = 5) -> list[SpecRecord]:
        """Newest ``limit`` specifications with their children, newest first."""
        with self._database_errors(), self._connect() as conn:
            spec_rows = conn.execute(
                """
                SELECT id, goal, users, constraints, template, created_at
                FROM specs
                ORDER BY created_at DESC, id DESC
                LIMIT %s
                """,
                (limit,),
            ).fetchall()
            if not spec_rows:
                return []
            spec_ids = [row["id"] for row in spec_rows]
            story_rows = conn.execute(
                "SELECT id, spec_id, content FROM user_stories "
                "WHERE spec_id = ANY(%s) ORDER BY id",
                (spec_ids,),
            ).fetchall()
            task_rows = conn.execute(
                "SELECT id, spec_id, content FROM engineering_tasks "
                "WHERE spec_id = ANY(%s) ORDER BY id",
                (spec_ids,),
            ).fetchall()
            risk_rows = conn.execute(
                "SELECT id, spec_id, risk, mitigation FROM risks "
                "WHERE spec_id = ANY(%s) ORDER BY id",
                (spec_ids,),
            ).fetchall()
        return assemble_records(spec_rows, story_rows, task_rows, risk_rows)

    def ping(self) -> None:
        with self._database_errors(), self._connect() as conn:
            conn.execute("SELECT 1 AS health_check").fetchone()

    def server_info(self) -> dict[str, Any]:
        with self._database_errors(), self._connect() as conn:
            row = conn.execute("""
                SELECT
                    current_database() AS database_name,
                    version() AS version,
                    current_timestamp AS server_time
                """).fetchone()
        return dict(row)

    def _connect(self) -> Any:
        """Open a psycopg connection that yields dict-like rows."""
        return self._psycopg.connect(self.database_url, row_factory=self._dict_row)

    @contextmanager
    def _database_errors(self) -> Iterator[None]:
        """Re-raise driver errors as DatabaseError carrying the SQLSTATE."""
        try:
            yield
        except self._psycopg.Error as exc:
            raise DatabaseError(str(exc), sqlstate=getattr(exc, "sqlstate", None)) from exc

    @staticmethod
    def _load_psycopg() -> tuple[Any, Any]:
        """Import psycopg with a friendly install hint on failure."""
        try:
            import psycopg
            from psycopg.rows import dict_row
        except ImportError as exc:  # pragma: no cover - exercised only without dependency
            raise RuntimeError(
                "PostgreSQL backend requires psycopg. Install with: "
                'python -m pip install "psycopg[binary]>=3.2,<4.0"'
            ) from exc
        return psycopg, dict_row


def assemble_records(
    spec_rows: Sequence[Mapping[str, Any]],
    story_rows: Iterable[Mapping[str, Any]],
    task_rows: Iterable[Mapping[str, Any]],
    risk_rows: Iterable[Mapping[str, Any]],
) -> list[SpecRecord]:
    """Group child rows under their parent and build composite records.

    Parent order is kept as given; children keep their row order. Child ``id``
    is the persisted row id, not the model-supplied one.
    """
    stories: dict[Any, list[UserStoryItem]] = {row["id"]: [] for row in spec_rows}
    tasks: dict[Any, list[EngineeringTaskItem]] = {row["id"]: [] for row in spec_rows}
    risks: dict[Any, list[RiskItem]] = {row["id"]: [] for row in spec_rows}

    for row in story_rows:
        if row["spec_id"] in stories:
            stories[row["spec_id"]].append(UserStoryItem(id=row["id"], story=row["content"]))
    for row in task_rows:
        if row["spec_id"] in tasks:
            tasks[row["spec_id"]].append(EngineeringTaskItem(id=row["id"], task=row["content"]))
    for row in risk_rows:
        if row["spec_id"] in risks:
            risks[row["spec_id"]].append(
                RiskItem(id=row["id"], risk=row["risk"], mitigation=row["mitigation"] or "")
            )

    return [
        SpecRecord(
            specs_id=row["id"],
            goal=row["goal"],
            users=row["users"],
            constraints=row["constraints"],
            template=row["template"],
            created_at=row["created_at"],
            user_stories=stories[row["id"]],
            engineering_tasks=tasks[row["id"]],
            risks=risks[row["id"]],
        )
        for row in spec_rows
    ]


def _external_id(value: int | str | None) -> str | None:
    return None if value is None else str(value)

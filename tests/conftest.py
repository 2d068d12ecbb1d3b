from __future__ import annotations

from collections.abc import Iterator
from datetime import UTC, datetime
from typing import Any

import pytest
from fastapi.testclient import TestClient

from spec_planner_api.app.config import Settings
from spec_planner_api.app.errors import DatabaseError, UpstreamError
from spec_planner_api.app.models import GeneratedPlan, SpecHeader, SpecRecord
from spec_planner_api.app.storage import assemble_records

CHAT_APP_OUTPUT = (
    '{"userStories":[{"id":1,"story":"As a user I want to send messages"}],'
    '"engineeringTasks":[{"id":1,"task":"Stand up a websocket gateway"}],'
    '"risks":[{"id":1,"risk":"Scaling under load","mitigation":"Use a managed message broker"}]}'
)

CHAT_APP_BRIEF = {
    "goal": "Build a chat app",
    "users": "remote teams",
    "constraints": "2 week timeline",
    "template": "agile",
}


class InMemorySpecStorage:
    """Test-only storage double that matches PostgresSpecStorage behavior.

    Rows are kept in the same shape the SQL queries return so listing goes
    through ``assemble_records`` exactly like the real backend.
    """

    def __init__(self) -> None:
        self.specs: list[dict[str, Any]] = []
        self.user_stories: list[dict[str, Any]] = []
        self.engineering_tasks: list[dict[str, Any]] = []
        self.risks: list[dict[str, Any]] = []
        self._next_id = 1
        # Set to a DatabaseError to make the next add_items call fail mid-batch.
        self.fail_add_items: DatabaseError | None = None
        self.healthy = True

    def migrate(self) -> None:
        return None

    def create_spec(self, goal: str, users: str, constraints: str, template: str) -> SpecHeader:
        row = {
            "id": self._take_id(),
            "goal": goal,
            "users": users,
            "constraints": constraints,
            "template": template,
            "created_at": datetime.now(tz=UTC),
        }
        self.specs.append(row)
        return SpecHeader(specs_id=row["id"], created_at=row["created_at"])

    def add_items(self, spec_id: int, plan: GeneratedPlan) -> None:
        if not any(row["id"] == spec_id for row in self.specs):
            raise DatabaseError("insert violates foreign key", sqlstate="23503")
        stories = [
            {
                "id": self._take_id(),
                "spec_id": spec_id,
                "external_id": item.id,
                "content": item.story,
            }
            for item in plan.user_stories
        ]
        tasks = [
            {
                "id": self._take_id(),
                "spec_id": spec_id,
                "external_id": item.id,
                "content": item.task,
            }
            for item in plan.engineering_tasks
        ]
        risks = [
            {
                "id": self._take_id(),
                "spec_id": spec_id,
                "external_id": item.id,
                "risk": item.risk,
                "mitigation": item.mitigation,
            }
            for item in plan.risks
        ]
        if self.fail_add_items is not None:
            # Whole batch is discarded, like a rolled-back transaction.
            error, self.fail_add_items = self.fail_add_items, None
            raise error
        self.user_stories.extend(stories)
        self.engineering_tasks.extend(tasks)
        self.risks.extend(risks)

    def list_recent(self, limit: int = 5) -> list[SpecRecord]:
        spec_rows = sorted(self.specs, key=lambda row: (row["created_at"], row["id"]), reverse=True)
        spec_rows = spec_rows[:limit]
        return assemble_records(spec_rows, self.user_stories, self.engineering_tasks, self.risks)

    def ping(self) -> None:
        if not self.healthy:
            raise DatabaseError("connection refused")

    def server_info(self) -> dict[str, Any]:
        self.ping()
        return {
            "database_name": "spec_planner_test",
            "version": "PostgreSQL 16.0 (in-memory)",
            "server_time": datetime(2026, 1, 1, tzinfo=UTC),
        }

    def children_of(self, spec_id: int) -> int:
        return sum(
            1
            for rows in (self.user_stories, self.engineering_tasks, self.risks)
            for row in rows
            if row["spec_id"] == spec_id
        )

    def _take_id(self) -> int:
        value = self._next_id
        self._next_id += 1
        return value


class ScriptedLLMAdapter:
    """Returns queued completions in order and records every call."""

    def __init__(self, *responses: str | Exception) -> None:
        self.responses: list[str | Exception] = list(responses)
        self.calls: list[dict[str, str]] = []
        self.models: list[dict[str, Any]] | Exception = [
            {"id": f"model-{index}", "object": "model"} for index in range(7)
        ]

    def complete(self, *, system_prompt: str, user_prompt: str) -> str:
        self.calls.append({"system_prompt": system_prompt, "user_prompt": user_prompt})
        if not self.responses:
            raise AssertionError("Unexpected model call")
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response

    def list_models(self) -> list[dict[str, Any]]:
        if isinstance(self.models, Exception):
            raise self.models
        return self.models


@pytest.fixture
def storage() -> InMemorySpecStorage:
    return InMemorySpecStorage()


@pytest.fixture
def llm() -> ScriptedLLMAdapter:
    return ScriptedLLMAdapter()


@pytest.fixture
def client(storage: InMemorySpecStorage, llm: ScriptedLLMAdapter) -> Iterator[TestClient]:
    from spec_planner_api.main import create_app

    app = create_app(
        storage=storage,
        llm_adapter=llm,
        settings_override=Settings(database_url="", llm_api_key="", cors_origins=[]),
    )
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def upstream_down() -> UpstreamError:
    return UpstreamError("LLM API unreachable: connection refused")


@pytest.fixture
def chat_app_brief() -> dict[str, str]:
    return dict(CHAT_APP_BRIEF)


@pytest.fixture
def chat_app_output() -> str:
    return CHAT_APP_OUTPUT

"""Pydantic models shared across API, pipeline, and storage.

Wire names follow the camelCase contract of the HTTP API (``specsId``,
``userStories``...). Python attributes stay snake_case through aliases.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

# Model-supplied item ids are not guaranteed to be integers.
ExternalId = int | str | None


class WireModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class CreateSpecRequest(BaseModel):
    """Request body for POST /api/v1/tasks.

    Every field is optional here so the request validator, not the framework,
    decides what "missing" means.
    """

    goal: Any = None
    users: Any = None
    constraints: Any = None
    template: Any = None


class UserStoryItem(WireModel):
    id: ExternalId = None
    story: str


class EngineeringTaskItem(WireModel):
    id: ExternalId = None
    task: str


class RiskItem(WireModel):
    id: ExternalId = None
    risk: str
    mitigation: str = ""


class GeneratedPlan(WireModel):
    """Normalized model output: three ordered item collections."""

    user_stories: list[UserStoryItem] = Field(default_factory=list, alias="userStories")
    engineering_tasks: list[EngineeringTaskItem] = Field(
        default_factory=list, alias="engineeringTasks"
    )
    risks: list[RiskItem] = Field(default_factory=list)

    def item_count(self) -> int:
        return len(self.user_stories) + len(self.engineering_tasks) + len(self.risks)


class SpecHeader(WireModel):
    """Parent row fields returned by the insert."""

    specs_id: int = Field(alias="specsId")
    created_at: datetime = Field(alias="createdAt")


class SpecCreated(GeneratedPlan):
    """Result of a successful creation: parent id plus the persisted items."""

    specs_id: int = Field(alias="specsId")


class SpecRecord(GeneratedPlan):
    """Composite record returned by the listing endpoint."""

    specs_id: int = Field(alias="specsId")
    goal: str
    users: str
    constraints: str
    template: str
    created_at: datetime = Field(alias="createdAt")


class ApiResponse(WireModel):
    """Success envelope wrapping every 2xx payload."""

    status_code: int = Field(alias="statusCode")
    data: Any = None
    message: str = "Success"
    success: bool = True

    @classmethod
    def build(cls, status_code: int, data: Any, message: str) -> ApiResponse:
        return cls(status_code=status_code, data=data, message=message, success=status_code < 400)

    def to_content(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


class ErrorResponse(WireModel):
    """Error envelope rendered by the exception handlers."""

    message: str
    status_code: int = Field(alias="statusCode")
    stack: str | None = None

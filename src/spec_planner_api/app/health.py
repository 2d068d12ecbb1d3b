"""Dependency health checks for the database and the model endpoint.

Independent of the creation pipeline: it only pings the collaborators.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from datetime import UTC, datetime
from typing import Any

from .errors import ApiError, ValidationError
from .llm import LLMAdapter
from .storage import SpecStorage

logger = logging.getLogger(__name__)

COMPONENTS = ("database", "llm")


class HealthProbe:
    def __init__(self, *, storage: SpecStorage, llm_adapter: LLMAdapter) -> None:
        self.storage = storage
        self.llm_adapter = llm_adapter

    def check(self) -> tuple[bool, dict[str, Any]]:
        """Return (all healthy, per-component status)."""
        started = time.perf_counter()
        status: dict[str, Any] = {
            "server": {
                "status": "healthy",
                "responseTime": 0,
                "timestamp": datetime.now(tz=UTC).isoformat(),
            },
        }
        status["server"]["responseTime"] = _elapsed_ms(started)
        status["database"] = _timed(self.storage.ping)
        status["llm"] = _timed(self.llm_adapter.list_models)
        healthy = all(part["status"] == "healthy" for part in status.values())
        if not healthy:
            logger.warning(
                "health event=degraded database=%s llm=%s",
                status["database"]["status"],
                status["llm"]["status"],
            )
        return healthy, status

    def component(self, name: str) -> dict[str, Any]:
        """Details for one component; raises ApiError when it is unreachable."""
        if name == "database":
            return self.storage.server_info()
        if name == "llm":
            models = self.llm_adapter.list_models()
            return {"available": True, "models": models[:5]}
        raise ValidationError("Invalid component")


def _timed(fn: Callable[[], Any]) -> dict[str, Any]:
    started = time.perf_counter()
    try:
        fn()
    except ApiError as exc:
        return {"status": "unhealthy", "responseTime": _elapsed_ms(started), "error": exc.message}
    return {"status": "healthy", "responseTime": _elapsed_ms(started), "error": None}


def _elapsed_ms(started: float) -> int:
    return int((time.perf_counter() - started) * 1000)

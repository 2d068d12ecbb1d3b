"""Turn raw model text into a normalized ``GeneratedPlan``.

Model output is never trusted directly. Two stages:
1) ``extract_candidate``: find the JSON object inside free-form text.
2) ``normalize_plan``: parse it and keep only items that match the expected
   per-collection shape.

Extraction uses a balanced-depth scan that skips braces inside JSON strings,
so prose containing unrelated ``{...}`` pairs does not corrupt the result.
"""

from __future__ import annotations

import json
import logging
from typing import Any

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from .errors import ExtractionError, MalformedResponseError
from .models import EngineeringTaskItem, GeneratedPlan, RiskItem, UserStoryItem

logger = logging.getLogger(__name__)

# Wire key -> (item model, required non-blank content fields).
_COLLECTIONS: dict[str, tuple[type[BaseModel], tuple[str, ...]]] = {
    "userStories": (UserStoryItem, ("story",)),
    "engineeringTasks": (EngineeringTaskItem, ("task",)),
    "risks": (RiskItem, ("risk",)),
}


def extract_candidate(raw_text: str) -> str:
    """Return the substring believed to hold the intended JSON object.

    The first top-level balanced ``{...}`` span that parses as a JSON object
    wins. A span that fails to parse is skipped whole, so fragments nested
    inside a broken object are never picked. When nothing parses, the span
    starting at the first ``{`` is returned as-is so the caller reports it as
    malformed.
    """
    start = raw_text.find("{")
    if start == -1:
        raise ExtractionError("No JSON returned from AI")

    fallback: str | None = None
    while start != -1:
        end = _matching_brace(raw_text, start)
        if end is None:
            # Unterminated: the span runs to the end of the text.
            return fallback if fallback is not None else raw_text[start:]
        span = raw_text[start : end + 1]
        if _is_json_object(span):
            return span
        if fallback is None:
            fallback = span
        start = raw_text.find("{", end + 1)
    return fallback


def normalize_plan(candidate: str) -> GeneratedPlan:
    """Parse the candidate and coerce it into three ordered item lists."""
    try:
        parsed = json.loads(candidate)
    except json.JSONDecodeError as exc:
        raise MalformedResponseError("AI returned invalid JSON") from exc
    if not isinstance(parsed, dict):
        raise MalformedResponseError("AI returned invalid JSON")

    collections: dict[str, list[BaseModel]] = {}
    for key, (item_model, required) in _COLLECTIONS.items():
        raw_items = parsed.get(key)
        if raw_items is None:
            collections[key] = []
            continue
        if not isinstance(raw_items, list):
            raise MalformedResponseError(f"AI returned invalid JSON: '{key}' is not an array")
        collections[key] = _normalize_items(key, raw_items, item_model, required)

    return GeneratedPlan.model_validate(collections)


def _normalize_items(
    key: str,
    raw_items: list[Any],
    item_model: type[BaseModel],
    required: tuple[str, ...],
) -> list[BaseModel]:
    items: list[BaseModel] = []
    for index, raw_item in enumerate(raw_items):
        if not isinstance(raw_item, dict):
            logger.warning(
                "normalize event=item_dropped collection=%s index=%d reason=not_object",
                key,
                index,
            )
            continue
        missing = [
            name
            for name in required
            if not isinstance(raw_item.get(name), str) or not raw_item[name].strip()
        ]
        if missing:
            logger.warning(
                "normalize event=item_dropped collection=%s index=%d "
                "reason=missing_fields fields=%s",
                key,
                index,
                ",".join(missing),
            )
            continue
        fields = dict(raw_item)
        fields["id"] = _coerce_external_id(raw_item.get("id"))
        if key == "risks" and not isinstance(fields.get("mitigation"), str):
            fields["mitigation"] = ""
        try:
            items.append(item_model.model_validate(fields))
        except PydanticValidationError as exc:
            logger.warning(
                "normalize event=item_dropped collection=%s index=%d reason=invalid errors=%d",
                key,
                index,
                exc.error_count(),
            )
    return items


def _coerce_external_id(value: Any) -> int | str | None:
    if value is None or isinstance(value, str):
        return value
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    return json.dumps(value)


def _matching_brace(text: str, start: int) -> int | None:
    """Index of the ``}`` closing the ``{`` at ``start``, or None if unbalanced."""
    depth = 0
    in_string = False
    escaped = False
    for index in range(start, len(text)):
        char = text[index]
        if in_string:
            if escaped:
                escaped = False
            elif char == "\\":
                escaped = True
            elif char == '"':
                in_string = False
            continue
        if char == '"':
            in_string = True
        elif char == "{":
            depth += 1
        elif char == "}":
            depth -= 1
            if depth == 0:
                return index
    return None


def _is_json_object(span: str) -> bool:
    try:
        return isinstance(json.loads(span), dict)
    except json.JSONDecodeError:
        return False

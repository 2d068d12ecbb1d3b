from __future__ import annotations

from .errors import ValidationError
from .models import CreateSpecRequest

REQUIRED_FIELDS = ("goal", "users", "constraints", "template")


def validate_request(payload: CreateSpecRequest) -> tuple[str, str, str, str]:
    """Return (goal, users, constraints, template) or raise ValidationError.

    Values are returned as received; trimming is only used for the blank check.
    """
    values: list[str] = []
    for name in REQUIRED_FIELDS:
        value = getattr(payload, name)
        if not isinstance(value, str) or not value.strip():
            raise ValidationError("All Fields are required")
        values.append(value)
    goal, users, constraints, template = values
    return goal, users, constraints, template

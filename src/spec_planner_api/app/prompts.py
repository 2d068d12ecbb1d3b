"""Prompt text sent to the model.

The JSON shape below is advisory: the model may ignore it, so nothing
downstream relies on it beyond what ``extraction.normalize_plan`` checks.
"""

from __future__ import annotations

SYSTEM_PROMPT = (
    "You are a senior product manager and software architect. "
    "Always return valid, complete JSON."
)

_TEMPLATE = """\
Generate structured planning output.

Goal: {goal}
Target Users: {users}
Constraints: {constraints}
Template Type: {template}

Return ONLY valid JSON:

{{
  "userStories": [
    {{"id": 1, "story": "As a <user>, I want <capability> so that <benefit>"}}
  ],
  "engineeringTasks": [
    {{"id": 1, "task": "<concrete engineering task>"}}
  ],
  "risks": [
    {{"id": 1, "risk": "<risk>", "mitigation": "<mitigation>"}}
  ]
}}

rules:
  - Do not include explanations or text outside JSON
  - Ensure arrays are not empty
"""


def build_prompt(goal: str, users: str, constraints: str, template: str) -> str:
    return _TEMPLATE.format(
        goal=goal,
        users=users,
        constraints=constraints,
        template=template,
    )

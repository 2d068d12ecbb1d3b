"""Creation and listing flows.

Creation order matters:
1) validate the request (no side effects before this passes)
2) insert the parent specification and commit it
3) build the prompt, call the model
4) extract and normalize the model output
5) insert all child items in one transaction

A failure after step 2 leaves the parent row with zero children. Errors are
logged and propagated unchanged; nothing here retries.
"""

from __future__ import annotations

import logging

from .errors import ApiError
from .extraction import extract_candidate, normalize_plan
from .llm import LLMAdapter
from .models import CreateSpecRequest, SpecCreated, SpecRecord
from .prompts import SYSTEM_PROMPT, build_prompt
from .storage import SpecStorage
from .validation import validate_request

logger = logging.getLogger(__name__)


class SpecPlanner:
    """Public entrypoint used by the HTTP layer."""

    def __init__(
        self,
        *,
        storage: SpecStorage,
        llm_adapter: LLMAdapter,
        recent_limit: int = 5,
    ) -> None:
        self.storage = storage
        self.llm_adapter = llm_adapter
        self.recent_limit = recent_limit

    def create(self, payload: CreateSpecRequest) -> SpecCreated:
        goal, users, constraints, template = validate_request(payload)
        logger.info("spec_create event=start template=%s", template)

        header = self.storage.create_spec(goal, users, constraints, template)
        spec_id = header.specs_id
        logger.info("spec_create event=parent_inserted spec_id=%s", spec_id)

        try:
            raw_text = self.llm_adapter.complete(
                system_prompt=SYSTEM_PROMPT,
                user_prompt=build_prompt(goal, users, constraints, template),
            )
            logger.info(
                "spec_create event=model_responded spec_id=%s chars=%d", spec_id, len(raw_text)
            )
            plan = normalize_plan(extract_candidate(raw_text))
            logger.info(
                "spec_create event=normalized spec_id=%s user_stories=%d "
                "engineering_tasks=%d risks=%d",
                spec_id,
                len(plan.user_stories),
                len(plan.engineering_tasks),
                len(plan.risks),
            )
            self.storage.add_items(spec_id, plan)
        except ApiError as exc:
            logger.warning(
                "spec_create event=failed spec_id=%s error=%s status=%d reason=%s "
                "parent_kept=true children=0",
                spec_id,
                type(exc).__name__,
                exc.status_code,
                exc.message,
            )
            raise

        logger.info(
            "spec_create event=completed spec_id=%s items=%d", spec_id, plan.item_count()
        )
        return SpecCreated(
            specs_id=spec_id,
            user_stories=plan.user_stories,
            engineering_tasks=plan.engineering_tasks,
            risks=plan.risks,
        )

    def list_recent(self) -> list[SpecRecord]:
        records = self.storage.list_recent(self.recent_limit)
        logger.info("spec_list event=fetched count=%d limit=%d", len(records), self.recent_limit)
        return records

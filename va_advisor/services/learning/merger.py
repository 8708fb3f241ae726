"""Merge pending learning events into a knowledge base.

Events are processed in batches. For each batch the merger reads the KB,
computes a patch (:func:`plan_merge`) and writes it with a
compare-and-swap on ``version``. Losing the race re-reads the KB and
recomputes the batch, so concurrent merges never overwrite each other.
"""

import copy
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional, Sequence

from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from va_advisor.models.knowledge_base import SCALAR_FIELDS, KnowledgeBase
from va_advisor.models.learning import ApplyEventsResult, LearningEvent, RestoreEventResult
from va_advisor.services.knowledge_base_store import (
    KnowledgeBaseConflictError,
    KnowledgeBaseNotFoundError,
    KnowledgeBaseStore,
)
from va_advisor.services.learning.decay import DecayConfig, adjust_confidence_by_age
from va_advisor.services.learning.event_store import LearningEventStore
from va_advisor.services.learning.field_mapping import (
    EXTRACTED_KNOWLEDGE,
    TOOL_STACK,
    FieldMapping,
    map_event_to_field,
    merge_array_field,
    merge_unique_strings,
    track_field_history,
)
from va_advisor.services.learning.priority import sort_events_by_priority

logger = logging.getLogger(__name__)

MERGE_MAX_ATTEMPTS = 5


class LearningEventNotFoundError(Exception):
    pass


class LearningEventStateError(Exception):
    """The event cannot be restored in its current state."""


@dataclass
class MergePlan:
    patch: dict = field(default_factory=dict)
    applied_fields: dict[str, list[str]] = field(default_factory=dict)
    skipped: list[str] = field(default_factory=list)
    fields_updated: list[str] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not self.patch and not self.applied_fields

    def mark_applied(self, event: LearningEvent, target: str) -> None:
        targets = self.applied_fields.setdefault(event.id, [])
        if target not in targets:
            targets.append(target)

    def mark_updated(self, target: str) -> None:
        if target not in self.fields_updated:
            self.fields_updated.append(target)


def plan_merge(
    events: Sequence[LearningEvent],
    kb: KnowledgeBase,
    *,
    min_confidence: int,
    decay_config: DecayConfig = DecayConfig(),
    now: Optional[datetime] = None,
) -> MergePlan:
    """Compute the KB patch for one batch of events without writing anything.

    Events whose decayed confidence is below ``min_confidence``, that map
    nowhere, or that lose a scalar conflict are left unapplied.
    """
    plan = MergePlan()
    extracted = copy.deepcopy(kb.extracted_knowledge)
    extracted_changed = False

    adjusted: dict[str, int] = {}
    eligible: list[LearningEvent] = []
    for event in events:
        confidence = adjust_confidence_by_age(event.confidence, event.created_at, decay_config, now)
        if confidence < min_confidence:
            plan.skipped.append(event.id)
            continue
        adjusted[event.id] = confidence
        eligible.append(event)

    groups: dict[str, list[tuple[LearningEvent, FieldMapping]]] = {}
    for event in sort_events_by_priority(eligible):
        mapping = map_event_to_field(event, kb, adjusted[event.id])
        if mapping is None or not mapping.should_apply:
            plan.skipped.append(event.id)
            continue
        groups.setdefault(mapping.field, []).append((event, mapping))

    for target_field, items in groups.items():
        if target_field == TOOL_STACK:
            new_tools: list[str] = []
            for event, mapping in items:
                new_tools.extend(mapping.value)
                plan.mark_applied(event, TOOL_STACK)
            merged = merge_unique_strings(kb.tool_stack, new_tools)
            if merged != kb.tool_stack:
                plan.patch[TOOL_STACK] = merged
                plan.mark_updated(TOOL_STACK)

        elif target_field == EXTRACTED_KNOWLEDGE:
            for event, mapping in items:
                current = extracted.get(mapping.key)
                current = current if isinstance(current, list) else []
                merged = merge_array_field(current, mapping.value)
                if len(merged) != len(current):
                    extracted[mapping.key] = merged
                    extracted_changed = True
                    plan.mark_updated(mapping.target)
                plan.mark_applied(event, mapping.target)

        else:
            # Highest decayed confidence wins; ties go to the higher priority
            best_event, best_mapping = max(items, key=lambda item: adjusted[item[0].id])
            previous = kb.field_value(target_field)
            if previous != best_mapping.value:
                track_field_history(
                    extracted, target_field, previous, best_mapping.value, best_event.id
                )
                extracted_changed = True
                plan.patch[target_field] = best_mapping.value
                plan.mark_updated(target_field)
            for event, _ in items:
                plan.mark_applied(event, target_field)

    if extracted_changed:
        plan.patch[EXTRACTED_KNOWLEDGE] = extracted

    return plan


class KnowledgeBaseMerger:
    """Applies pending learning events to a knowledge base."""

    def __init__(
        self,
        kb_store: KnowledgeBaseStore,
        event_store: LearningEventStore,
        min_confidence: int = 80,
        batch_size: int = 100,
        decay_config: DecayConfig = DecayConfig(),
    ) -> None:
        self.kb_store = kb_store
        self.event_store = event_store
        self.min_confidence = min_confidence
        self.batch_size = batch_size
        self.decay_config = decay_config

    # ------------------------------------------------------------------
    # Apply
    # ------------------------------------------------------------------

    async def apply(
        self, knowledge_base_id: str, min_confidence: Optional[int] = None
    ) -> ApplyEventsResult:
        """Apply every pending event of ``knowledge_base_id``.

        Running twice with no new events changes nothing the second time.
        """
        min_confidence = self.min_confidence if min_confidence is None else min_confidence
        result = ApplyEventsResult(success=True)

        try:
            kb = await self.kb_store.get_by_id(knowledge_base_id)
        except KnowledgeBaseNotFoundError as e:
            return ApplyEventsResult(success=False, errors=[str(e)])

        batches = await self.event_store.fetch_unapplied(
            knowledge_base_id, min_confidence, self.batch_size
        )

        for batch in batches:
            try:
                kb, plan = await self._apply_batch(knowledge_base_id, batch, min_confidence)
            except KnowledgeBaseConflictError as e:
                logger.error(
                    f"Giving up on KB {knowledge_base_id} after {MERGE_MAX_ATTEMPTS} attempts: {e}"
                )
                result.success = False
                result.errors.append(str(e))
                break

            result.events_applied += len(plan.applied_fields)
            result.events_skipped += len(plan.skipped)
            for target in plan.fields_updated:
                if target not in result.fields_updated:
                    result.fields_updated.append(target)

        result.enrichment_version = kb.enrichment_version
        result.knowledge_base_version = kb.version
        logger.info(
            f"Applied {result.events_applied} learning events to KB {knowledge_base_id} "
            f"({result.events_skipped} skipped, v{kb.version})"
        )
        return result

    @retry(
        retry=retry_if_exception_type(KnowledgeBaseConflictError),
        stop=stop_after_attempt(MERGE_MAX_ATTEMPTS),
        wait=wait_exponential(multiplier=0.1, max=2),
        reraise=True,
    )
    async def _apply_batch(
        self, knowledge_base_id: str, batch: list[LearningEvent], min_confidence: int
    ) -> tuple[KnowledgeBase, MergePlan]:
        kb = await self.kb_store.get_by_id(knowledge_base_id)
        plan = plan_merge(
            batch, kb, min_confidence=min_confidence, decay_config=self.decay_config
        )
        if plan.is_empty:
            return kb, plan

        updated = await self.kb_store.compare_and_swap(
            knowledge_base_id,
            kb.version,
            plan.patch,
            applied_fields=plan.applied_fields,
        )
        return updated, plan

    # ------------------------------------------------------------------
    # Restore
    # ------------------------------------------------------------------

    async def restore(self, knowledge_base_id: str, event_id: str) -> RestoreEventResult:
        """Undo an applied event and keep it out of future merges.

        Scalar fields revert to the value recorded in ``field_history``
        before the event was applied; merged arrays are left as they are.

        Raises:
            LearningEventNotFoundError: No such event on this knowledge base.
            LearningEventStateError: The event is not applied, or a newer
                event has since replaced the value it wrote.
        """
        event = await self.event_store.get_event(event_id)
        if event is None or event.knowledge_base_id != knowledge_base_id:
            raise LearningEventNotFoundError(f"Learning event {event_id} not found")
        if not event.applied or event.restored_at is not None:
            raise LearningEventStateError(f"Learning event {event_id} is not applied")
        return await self._restore_once(knowledge_base_id, event)

    @retry(
        retry=retry_if_exception_type(KnowledgeBaseConflictError),
        stop=stop_after_attempt(MERGE_MAX_ATTEMPTS),
        wait=wait_exponential(multiplier=0.1, max=2),
        reraise=True,
    )
    async def _restore_once(
        self, knowledge_base_id: str, event: LearningEvent
    ) -> RestoreEventResult:
        kb = await self.kb_store.get_by_id(knowledge_base_id)
        extracted = copy.deepcopy(kb.extracted_knowledge)
        history = extracted.get("field_history", {})
        patch: dict = {}
        restored_field: Optional[str] = None
        restored_value = None

        for target in event.applied_to_fields:
            if target not in SCALAR_FIELDS:
                continue
            entries = history.get(target, [])
            match = next(
                (entry for entry in reversed(entries) if entry.get("event_id") == event.id),
                None,
            )
            if match is None:
                continue
            # A later change to the field must be restored first
            if match is not entries[-1] and kb.field_value(target) != match.get("new_value"):
                raise LearningEventStateError(
                    f"Learning event {event.id} was superseded on {target}; "
                    f"restore the newer change first"
                )
            entries.remove(match)
            restored_field = target
            restored_value = match.get("previous_value")
            patch[target] = restored_value

        if restored_field:
            patch[EXTRACTED_KNOWLEDGE] = extracted

        updated = await self.kb_store.compare_and_swap(
            knowledge_base_id,
            kb.version,
            patch,
            restored_event_ids=[event.id],
            bump_enrichment=False,
        )
        logger.info(f"Restored learning event {event.id} on KB {knowledge_base_id}")
        return RestoreEventResult(
            event_id=event.id,
            field=restored_field,
            restored_value=restored_value,
            knowledge_base_version=updated.version,
        )

"""Map learning events onto knowledge-base fields.

Each event lands in exactly one place:

* a scalar KB column (currently ``biggest_bottleneck``), subject to the
  conflict rules in :func:`resolve_conflict`;
* the ``tool_stack`` array, merged case-insensitively;
* a keyed array inside ``extracted_knowledge``, appended with dedupe.

Events of a known category without a specific metadata key go to that
category's generic bucket; events of an unknown category are dropped.
"""

import json
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Optional

from va_advisor.models.knowledge_base import KnowledgeBase
from va_advisor.models.learning import LearningEvent

HIGH_CONFIDENCE_OVERRIDE = 90
FIELD_HISTORY_LIMIT = 10

TOOL_STACK = "tool_stack"
EXTRACTED_KNOWLEDGE = "extracted_knowledge"

_TOOL_STOPWORDS = {
    "the", "this", "that", "these", "those", "company", "business",
    "organization", "we", "they", "our", "your", "their", "using",
    "with", "through", "via",
}
_TOOL_PATTERN = re.compile(r"\b([A-Z][a-zA-Z0-9]+(?:\.[a-zA-Z0-9]+)?(?:\s+[A-Z][a-zA-Z0-9]+)*)\b")
_TLD_PATTERN = re.compile(r"\.(com|io|co|app|dev|net|org)$", re.IGNORECASE)

# Metadata keys that identify a workflow_patterns event as something other
# than a tool mention; the free-text tool scan is skipped for these.
_NON_TOOL_WORKFLOW_KEYS = ("implicit_need", "cluster_name", "skill_counts")


@dataclass
class ConflictResolution:
    should_apply: bool
    strategy: str  # replace | merge | keep | append
    reason: str
    track_history: bool = False


@dataclass
class FieldMapping:
    field: str
    value: Any
    should_apply: bool = True
    key: Optional[str] = None  # extracted_knowledge bucket
    resolution: Optional[ConflictResolution] = None

    @property
    def target(self) -> str:
        """Dotted path reported in ``applied_to_fields``."""
        return f"{self.field}.{self.key}" if self.key else self.field


# ------------------------------------------------------------------
# Conflict resolution
# ------------------------------------------------------------------


def _is_empty(value: Any) -> bool:
    return value is None or value == "" or (isinstance(value, (list, dict)) and not value)


def resolve_conflict(
    current: Any,
    new: Any,
    confidence: int,
    override_threshold: int = HIGH_CONFIDENCE_OVERRIDE,
) -> ConflictResolution:
    """Decide whether ``new`` may replace ``current``.

    ``confidence`` is the age-decayed confidence of the incoming event.
    """
    if _is_empty(current):
        return ConflictResolution(True, "replace", "Field is empty, applying new value")

    if isinstance(current, list) and isinstance(new, list):
        return ConflictResolution(
            True, "merge", "Both values are arrays, merging with deduplication"
        )

    if isinstance(current, str) and isinstance(new, str):
        if current.strip().lower() == new.strip().lower():
            return ConflictResolution(False, "keep", "New value is identical to current value")
        if confidence >= override_threshold:
            return ConflictResolution(
                True,
                "replace",
                f"High confidence ({confidence}%) override, replacing existing value",
                track_history=True,
            )
        return ConflictResolution(
            False,
            "keep",
            f"Confidence ({confidence}%) below threshold ({override_threshold}%), "
            "keeping existing value",
        )

    if isinstance(current, dict) and isinstance(new, dict):
        return ConflictResolution(True, "merge", "Both values are objects, merging properties")

    return ConflictResolution(
        False, "keep", f"Confidence ({confidence}%) not sufficient to override existing value"
    )


def track_field_history(
    extracted_knowledge: dict,
    field: str,
    previous_value: Any,
    new_value: Any,
    event_id: str,
) -> None:
    """Append a change record, keeping the last ``FIELD_HISTORY_LIMIT`` per field."""
    history = extracted_knowledge.setdefault("field_history", {})
    entries = history.setdefault(field, [])
    entries.append(
        {
            "previous_value": previous_value,
            "new_value": new_value,
            "changed_at": datetime.now(timezone.utc).isoformat(),
            "event_id": event_id,
        }
    )
    history[field] = entries[-FIELD_HISTORY_LIMIT:]


# ------------------------------------------------------------------
# Array merging
# ------------------------------------------------------------------


def _same_item(a: Any, b: Any) -> bool:
    if isinstance(a, str) and isinstance(b, str):
        return a.lower() == b.lower()
    if isinstance(a, dict) and isinstance(b, dict):
        return json.dumps(a, sort_keys=True, default=str) == json.dumps(
            b, sort_keys=True, default=str
        )
    return a == b


def merge_array_field(current: list, new_items: list) -> list:
    merged = list(current or [])
    for item in new_items:
        if not any(_same_item(existing, item) for existing in merged):
            merged.append(item)
    return merged


def merge_unique_strings(current: list[str], new_items: list[str]) -> list[str]:
    """Case-insensitive union; existing spelling wins."""
    result: list[str] = []
    seen: set[str] = set()
    for item in [*current, *new_items]:
        normalized = item.lower().strip()
        if normalized and normalized not in seen:
            result.append(item)
            seen.add(normalized)
    return result


# ------------------------------------------------------------------
# Tool extraction
# ------------------------------------------------------------------


def normalize_tool_name(name: str) -> str:
    name = _TLD_PATTERN.sub("", name.lower().strip())
    name = re.sub(r"[^\w\s]", "", name)
    return re.sub(r"\s+", " ", name).strip()


def is_valid_tool_name(name: str) -> bool:
    trimmed = name.strip()
    if not 2 <= len(trimmed) <= 50:
        return False
    if trimmed.lower() in _TOOL_STOPWORDS:
        return False
    return bool(re.search(r"[a-zA-Z]", trimmed))


def extract_tools_from_insight(
    insight: str, metadata: dict, existing_tool_stack: list[str]
) -> list[str]:
    """Tools named by an event, in the KB's existing spelling where known."""
    existing = {normalize_tool_name(tool): tool for tool in existing_tool_stack}
    tools: dict[str, str] = {}

    def add(name: str) -> None:
        normalized = normalize_tool_name(name)
        if normalized and normalized not in tools:
            tools[normalized] = existing.get(normalized, name.strip())

    candidates: list[str] = []
    if metadata.get("new_tool"):
        candidates.append(str(metadata["new_tool"]))
    raw_tools = metadata.get("tools")
    if raw_tools:
        if not isinstance(raw_tools, list):
            raw_tools = [raw_tools]
        candidates.extend(str(t) for t in raw_tools)

    for candidate in candidates:
        if is_valid_tool_name(candidate):
            add(candidate)

    if not tools and insight and not any(metadata.get(k) for k in _NON_TOOL_WORKFLOW_KEYS):
        # Only scan the part after the "Label: " prefix
        body = insight.split(": ", 1)[1] if ": " in insight else insight
        for match in _TOOL_PATTERN.findall(body):
            match = match.strip()
            if not is_valid_tool_name(match):
                continue
            if normalize_tool_name(match) in existing or (len(match) >= 3 and match[0].isalpha()):
                add(match)

    return [tool for tool in tools.values() if tool]


# ------------------------------------------------------------------
# Event -> field mapping
# ------------------------------------------------------------------


def _bucket(key: str, items: list) -> FieldMapping:
    return FieldMapping(field=EXTRACTED_KNOWLEDGE, key=key, value=items)


def _generic(key: str, event: LearningEvent) -> FieldMapping:
    return _bucket(
        key,
        [
            {
                "insight": event.insight,
                "evidence": event.metadata.get("evidence"),
                "source_section": event.metadata.get("source_section"),
                "confidence": event.confidence,
            }
        ],
    )


def _service_pattern(event: LearningEvent) -> FieldMapping:
    meta = event.metadata
    service = meta.get("recommended_service") or meta.get("service_type")
    if service:
        return _bucket(
            "service_patterns",
            [
                {
                    "service_type": service,
                    "confidence": meta.get("confidence"),
                    "decision_logic": meta.get("decision_logic"),
                }
            ],
        )
    return _generic("service_patterns", event)


_GENERIC_BUCKETS = {
    "skill_requirements": "skill_requirements",
    "hiring_patterns": "hiring_patterns",
    "workflow_needs": "workflow_needs",
}


def map_event_to_field(
    event: LearningEvent, kb: KnowledgeBase, confidence: Optional[int] = None
) -> Optional[FieldMapping]:
    """Work out where ``event`` goes in ``kb``.

    Args:
        event: The learning event.
        kb: Current knowledge-base state.
        confidence: Age-decayed confidence; defaults to the event's own.
    """
    meta = event.metadata
    confidence = event.confidence if confidence is None else confidence
    category = event.category

    if category == "business_context":
        if meta.get("bottleneck"):
            current = kb.field_value("biggest_bottleneck")
            new = str(meta["bottleneck"])
            resolution = resolve_conflict(current, new, confidence)
            return FieldMapping(
                field="biggest_bottleneck",
                value=new,
                should_apply=resolution.should_apply,
                resolution=resolution,
            )
        if meta.get("company_stage"):
            return _bucket("company_stages", [meta["company_stage"]])
        if meta.get("growth_indicators"):
            return _bucket("growth_indicators", [meta["growth_indicators"]])
        if meta.get("hidden_complexity"):
            return _bucket("hidden_complexities", [meta["hidden_complexity"]])
        return _generic("business_context_insights", event)

    if category == "workflow_patterns":
        tools = extract_tools_from_insight(event.insight, meta, kb.tool_stack)
        if tools:
            return FieldMapping(field=TOOL_STACK, value=tools)
        if meta.get("implicit_need"):
            return _bucket("implicit_needs", [meta["implicit_need"]])
        if meta.get("cluster_name"):
            return _bucket(
                "task_clusters",
                [
                    {
                        "name": meta["cluster_name"],
                        "workflow_type": meta.get("workflow_type"),
                        "complexity_score": meta.get("complexity_score"),
                    }
                ],
            )
        return _generic("workflow_patterns", event)

    if category == "process_optimization":
        if meta.get("pain_point"):
            return _bucket("pain_points", [meta["pain_point"]])
        if meta.get("documentation_gap"):
            return _bucket("documentation_gaps", [meta["documentation_gap"]])
        if meta.get("process_complexity"):
            return _bucket("process_complexities", [meta["process_complexity"]])
        return _generic("process_optimizations", event)

    if category in ("service_patterns", "service_preferences"):
        return _service_pattern(event)

    if category == "risk_management":
        if meta.get("risk"):
            return _bucket(
                "identified_risks",
                [
                    {
                        "risk": meta["risk"],
                        "category": meta.get("category"),
                        "severity": meta.get("severity"),
                    }
                ],
            )
        return _generic("identified_risks", event)

    if category in _GENERIC_BUCKETS:
        return _generic(_GENERIC_BUCKETS[category], event)

    # Categories outside the known set have no KB home
    return None

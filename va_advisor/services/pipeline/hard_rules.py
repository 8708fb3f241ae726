"""Rule-based service-type hint for the classification stage.

The verdict is passed to the LLM as a hint and recorded with the run; the
LLM's recommendation is what the pipeline uses.
"""

import re
from dataclasses import dataclass
from typing import Optional

from va_advisor.models.intake import IntakeForm
from va_advisor.models.pipeline import DiscoveryResult, ServiceType

MAX_DEDICATED_SKILL_DOMAINS = 3
DOMINANT_ROLE_SHARE = 0.6

_ONE_TIME_PATTERN = re.compile(r"\bone[- ]?(?:time|off)\b", re.IGNORECASE)


@dataclass(frozen=True)
class HardRuleInputs:
    weekly_hours: float
    recurring: bool
    one_time: bool
    skill_domains: int
    dominant_share: float
    specialist_needs: bool


def apply_hard_rules(
    weekly_hours: float,
    recurring: bool,
    one_time: bool,
    skill_domains: int,
    dominant_share: float,
    specialist_needs: bool,
) -> Optional[ServiceType]:
    """Evaluate the three classification rules in order.

    1. No weekly hours or explicitly one-time work: Projects on Demand.
    2. Weekly hours, recurring work, at most three skill domains: Dedicated VA.
    3. A dominant role (60%+ of the work) plus disjoint specialist needs:
       Unicorn VA Service.

    Returns ``None`` when no rule fires.
    """
    if weekly_hours <= 0 or one_time:
        return ServiceType.PROJECTS_ON_DEMAND
    if recurring and skill_domains <= MAX_DEDICATED_SKILL_DOMAINS:
        return ServiceType.DEDICATED_VA
    if dominant_share >= DOMINANT_ROLE_SHARE and specialist_needs:
        return ServiceType.UNICORN_VA
    return None


def derive_inputs(intake: IntakeForm, discovery: DiscoveryResult) -> HardRuleInputs:
    """Read the rule inputs off the intake form and the discovery output."""
    texts = [
        intake.business_goal or "",
        intake.outcome_90d or "",
        *intake.tasks_top5,
        *intake.requirements,
    ]
    one_time = any(_ONE_TIME_PATTERN.search(text) for text in texts)

    clusters = discovery.task_analysis.task_clusters
    domains = {c.workflow_type.strip().lower() for c in clusters if c.workflow_type.strip()}

    weights = [c.estimated_hours_weekly or len(c.tasks) or 1 for c in clusters]
    total = sum(weights)
    dominant_share = max(weights) / total if total else 0.0

    specialist_needs = False
    if clusters:
        dominant = clusters[weights.index(max(weights))]
        specialist_needs = any(
            c.workflow_type.strip().lower() != dominant.workflow_type.strip().lower()
            for c in clusters
            if c is not dominant
        )

    return HardRuleInputs(
        weekly_hours=intake.weekly_hours,
        recurring=intake.weekly_hours > 0 and not one_time,
        one_time=one_time,
        skill_domains=max(len(domains), 1),
        dominant_share=dominant_share,
        specialist_needs=specialist_needs,
    )


def evaluate(intake: IntakeForm, discovery: DiscoveryResult) -> Optional[ServiceType]:
    inputs = derive_inputs(intake, discovery)
    return apply_hard_rules(
        inputs.weekly_hours,
        inputs.recurring,
        inputs.one_time,
        inputs.skill_domains,
        inputs.dominant_share,
        inputs.specialist_needs,
    )

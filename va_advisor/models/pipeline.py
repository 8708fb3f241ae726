"""Typed results for each stage of the analysis pipeline.

LLM output is loosely shaped, so the field types below coerce what they
reasonably can (numbers as strings, a single string where a list was
asked for) and only reject what would break later stages: an unknown
service type, a company stage outside the three known values, or a
payload that is not an object at all.
"""

import json
import re
from enum import Enum
from typing import Annotated, Any, Literal, Optional, Union

from pydantic import BaseModel, BeforeValidator, ConfigDict, Field, field_validator


# =============================================================================
# Lenient field types
# =============================================================================


def _as_text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    if isinstance(value, (bool, int, float)):
        return str(value)
    if isinstance(value, list):
        return "; ".join(_as_text(item) for item in value if item is not None)
    return json.dumps(value)


def _as_text_list(value: Any) -> list[str]:
    if value is None:
        return []
    if isinstance(value, list):
        return [_as_text(item) for item in value if item not in (None, "")]
    text = _as_text(value)
    return [text] if text else []


def _as_number(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        match = re.search(r"-?\d+(?:\.\d+)?", value)
        return float(match.group(0)) if match else None
    return None


def _as_dict(value: Any) -> dict:
    return value if isinstance(value, dict) else {}


Text = Annotated[str, BeforeValidator(_as_text)]
TextList = Annotated[list[str], BeforeValidator(_as_text_list)]
Number = Annotated[Optional[float], BeforeValidator(_as_number)]
Loose = Annotated[dict[str, Any], BeforeValidator(_as_dict)]


class StageModel(BaseModel):
    """Base for LLM-produced payloads; unknown keys are kept."""

    model_config = ConfigDict(extra="allow", populate_by_name=True)


# =============================================================================
# Enums
# =============================================================================


class ServiceType(str, Enum):
    """Mutually exclusive engagement models."""

    DEDICATED_VA = "Dedicated VA"
    PROJECTS_ON_DEMAND = "Projects on Demand"
    UNICORN_VA = "Unicorn VA Service"

    @classmethod
    def parse(cls, value: Any) -> "ServiceType":
        if isinstance(value, ServiceType):
            return value
        text = str(value or "").strip().lower()
        if "unicorn" in text:
            return cls.UNICORN_VA
        if "project" in text:
            return cls.PROJECTS_ON_DEMAND
        if "dedicated" in text:
            return cls.DEDICATED_VA
        raise ValueError(f"Unknown service type: {value!r}")


class CompanyStage(str, Enum):
    STARTUP = "startup"
    GROWTH = "growth"
    ESTABLISHED = "established"


class ConfidenceLevel(str, Enum):
    HIGH = "High"
    MEDIUM = "Medium"
    LOW = "Low"


def _parse_company_stage(value: Any) -> CompanyStage:
    text = str(value or "").strip().lower()
    for stage in CompanyStage:
        if stage.value in text:
            return stage
    raise ValueError(f"company_stage must be startup, growth or established, got {value!r}")


def _parse_confidence(value: Any) -> Optional[ConfidenceLevel]:
    text = str(value or "").strip().lower()
    for level in ConfidenceLevel:
        if level.value.lower() == text:
            return level
    return None


# =============================================================================
# Stage 1: Discovery
# =============================================================================


class BusinessContext(StageModel):
    company_stage: Annotated[CompanyStage, BeforeValidator(_parse_company_stage)]
    primary_bottleneck: Text = ""
    hidden_complexity: Text = ""
    growth_indicators: Text = ""


class TaskCluster(StageModel):
    cluster_name: Text = ""
    tasks: TextList = Field(default_factory=list)
    workflow_type: Text = ""
    interdependencies: TextList = Field(default_factory=list)
    complexity_score: Number = None
    estimated_hours_weekly: Number = None


class SkillRequirements(StageModel):
    technical: TextList = Field(default_factory=list)
    soft: TextList = Field(default_factory=list)
    domain: TextList = Field(default_factory=list)


class TaskAnalysis(StageModel):
    task_clusters: list[TaskCluster] = Field(default_factory=list)
    skill_requirements: SkillRequirements = Field(default_factory=SkillRequirements)
    implicit_needs: TextList = Field(default_factory=list)


class SopInsights(StageModel):
    process_complexity: Text = ""
    documented_workflows: TextList = Field(default_factory=list)
    documentation_gaps: TextList = Field(default_factory=list)
    handoff_points: TextList = Field(default_factory=list)
    pain_points: TextList = Field(default_factory=list)
    tools_mentioned: TextList = Field(default_factory=list)
    implicit_requirements: TextList = Field(default_factory=list)


class ContextGap(StageModel):
    question: Text = ""
    why_it_matters: Text = ""
    assumption_if_unanswered: Text = ""


class MeasurementCapability(StageModel):
    current_tracking: TextList = Field(default_factory=list)
    tools_available: TextList = Field(default_factory=list)
    tracking_gaps: TextList = Field(default_factory=list)
    recommendations: TextList = Field(default_factory=list)


class DiscoveryResult(StageModel):
    """Stage 1 output: inferred business context and task structure."""

    business_context: BusinessContext
    task_analysis: TaskAnalysis = Field(default_factory=TaskAnalysis)
    sop_insights: Optional[SopInsights] = None
    context_gaps: list[ContextGap] = Field(default_factory=list)
    measurement_capability: MeasurementCapability = Field(
        default_factory=MeasurementCapability
    )


# =============================================================================
# Stage 1.5: Service classification
# =============================================================================


class ServiceFitScore(StageModel):
    score: Number = None
    why_fits: TextList = Field(default_factory=list)
    why_doesnt: TextList = Field(default_factory=list)


class ServiceFitScores(StageModel):
    dedicated_va: ServiceFitScore = Field(default_factory=ServiceFitScore)
    projects_on_demand: ServiceFitScore = Field(default_factory=ServiceFitScore)
    unicorn_va: ServiceFitScore = Field(default_factory=ServiceFitScore)


class ValidationQuestion(StageModel):
    question: Text = ""
    why_matters: Text = ""
    if_yes: Text = ""
    if_no: Text = ""


class ServiceTypeAnalysis(StageModel):
    recommended_service: Annotated[ServiceType, BeforeValidator(ServiceType.parse)]
    confidence: Annotated[Optional[ConfidenceLevel], BeforeValidator(_parse_confidence)] = None
    factors: Loose = Field(default_factory=dict)
    service_fit_scores: ServiceFitScores = Field(default_factory=ServiceFitScores)
    decision_logic: Text = ""
    edge_cases: TextList = Field(default_factory=list)
    client_validation_questions: list[ValidationQuestion] = Field(default_factory=list)


class ClassificationResult(StageModel):
    """Stage 1.5 output. ``hard_rule_verdict`` is filled in by the pipeline."""

    service_type_analysis: ServiceTypeAnalysis
    role_structure_by_service: Loose = Field(default_factory=dict)
    hard_rule_verdict: Optional[ServiceType] = None

    @property
    def service_type(self) -> ServiceType:
        return self.service_type_analysis.recommended_service


# =============================================================================
# Stage 2: Architecture (one shape per service type)
# =============================================================================


class DedicatedRole(StageModel):
    title: Text = ""
    hours_per_week: Number = None
    core_responsibility: Text = ""
    task_allocation: Loose = Field(default_factory=dict)
    skill_requirements: Loose = Field(default_factory=dict)
    workflow_ownership: TextList = Field(default_factory=list)
    interaction_model: Loose = Field(default_factory=dict)


class ProjectOutline(StageModel):
    project_name: Text = ""
    category: Text = ""
    objective: Text = ""
    deliverables: TextList = Field(default_factory=list)
    estimated_hours: Number = None
    timeline: Text = ""
    skills_required: TextList = Field(default_factory=list)
    dependencies: TextList = Field(default_factory=list)
    success_criteria: Text = ""


class CoreVARole(StageModel):
    title: Text = ""
    hours_per_week: Number = None
    core_responsibility: Text = ""
    recurring_tasks: TextList = Field(default_factory=list)
    skill_requirements: Loose = Field(default_factory=dict)
    workflow_ownership: TextList = Field(default_factory=list)


class TeamSupportArea(StageModel):
    skill_category: Text = ""
    use_cases: TextList = Field(default_factory=list)
    estimated_hours_monthly: Number = None
    deliverables: TextList = Field(default_factory=list)
    why_team_not_va: Text = ""
    example_requests: TextList = Field(default_factory=list)


class _ArchitectureBase(StageModel):
    pros: TextList = Field(default_factory=list)
    cons: TextList = Field(default_factory=list)
    scaling_path: Text = ""
    alternative_consideration: Text = ""


class DedicatedArchitecture(_ArchitectureBase):
    service_type: Literal["Dedicated VA"] = "Dedicated VA"
    dedicated_va_role: DedicatedRole


class ProjectsArchitecture(_ArchitectureBase):
    service_type: Literal["Projects on Demand"] = "Projects on Demand"
    projects: list[ProjectOutline] = Field(min_length=1)
    recommended_sequence: Text = ""
    total_investment: Loose = Field(default_factory=dict)


class UnicornArchitecture(_ArchitectureBase):
    service_type: Literal["Unicorn VA Service"] = "Unicorn VA Service"
    core_va_role: CoreVARole
    team_support_areas: list[TeamSupportArea] = Field(default_factory=list)
    coordination_model: Text = ""


Architecture = Annotated[
    Union[DedicatedArchitecture, ProjectsArchitecture, UnicornArchitecture],
    Field(discriminator="service_type"),
]


# =============================================================================
# Stage 3: Specification
# =============================================================================


class Responsibility(StageModel):
    category: Text = ""
    details: TextList = Field(default_factory=list)


class ToolRequirement(StageModel):
    tool: Text = ""
    use_case: Text = ""
    proficiency: Text = ""
    training_available: Text = ""


class KPI(StageModel):
    metric: Text = ""
    target: Text = ""
    frequency: Text = ""
    measurement_method: Text = ""
    leading_or_lagging: Text = ""
    instrumentation_needs: Text = ""


class PersonalityTrait(StageModel):
    trait: Text = ""
    why_critical: Text = ""
    anti_pattern: Text = ""
    example_scenario: Text = ""


class CommunicationStructure(StageModel):
    reporting_to: Text = ""
    daily_updates: Text = ""
    weekly_sync: Text = ""
    documentation_standards: Text = ""
    escalation_protocol: Text = ""
    tools: TextList = Field(default_factory=list)


class JobDescription(StageModel):
    """Detailed JD for a dedicated role or the core role of a Unicorn engagement."""

    title: Text = ""
    hours_per_week: Number = None
    mission_statement: Text = ""
    primary_outcome: Text = ""
    core_outcomes: TextList = Field(default_factory=list)
    responsibilities: list[Responsibility] = Field(default_factory=list)
    skills_required: Loose = Field(default_factory=dict)
    tools: list[ToolRequirement] = Field(default_factory=list)
    kpis: list[KPI] = Field(default_factory=list)
    personality_fit: list[PersonalityTrait] = Field(default_factory=list)
    sample_week: Loose = Field(default_factory=dict)
    communication_structure: CommunicationStructure = Field(
        default_factory=CommunicationStructure
    )
    timezone_requirements: Loose = Field(default_factory=dict)
    success_indicators: Loose = Field(default_factory=dict)

    @field_validator("responsibilities", "tools", "kpis", "personality_fit", mode="before")
    @classmethod
    def _objects_only(cls, v: Any) -> list:
        if not isinstance(v, list):
            return []
        return [item for item in v if isinstance(item, dict)]


class ProjectSpec(StageModel):
    project_name: Text = ""
    overview: Text = ""
    objectives: TextList = Field(default_factory=list)
    deliverables: list[Loose] = Field(default_factory=list)
    scope: Loose = Field(default_factory=dict)
    timeline: Loose = Field(default_factory=dict)
    requirements: Loose = Field(default_factory=dict)
    success_metrics: TextList = Field(default_factory=list)
    risks: list[Loose] = Field(default_factory=list)


class ProjectSpecifications(StageModel):
    projects: list[ProjectSpec] = Field(default_factory=list)


class UnicornSpecification(StageModel):
    core_va_jd: JobDescription
    team_support_specs: list[TeamSupportArea] = Field(default_factory=list)


Specification = Union[JobDescription, ProjectSpecifications, UnicornSpecification]


# =============================================================================
# Stage 4: Validation
# =============================================================================


class RiskItem(StageModel):
    risk: Text = ""
    category: Text = ""
    severity: Text = ""
    likelihood: Text = ""
    impact: Text = ""
    mitigation: Text = ""
    early_warning_signs: TextList = Field(default_factory=list)

    @field_validator("severity", "likelihood", mode="after")
    @classmethod
    def _lower(cls, v: str) -> str:
        return v.strip().lower()


class Assumption(StageModel):
    assumption: Text = ""
    criticality: Text = ""
    validation_method: Text = ""
    if_wrong: Text = ""

    @field_validator("criticality", mode="after")
    @classmethod
    def _lower(cls, v: str) -> str:
        return v.strip().lower()


class RedFlag(StageModel):
    flag: Text = ""
    evidence: Text = ""
    recommendation: Text = ""


class ToolAlignment(StageModel):
    tools_in_intake: TextList = Field(default_factory=list)
    tools_in_specs: TextList = Field(default_factory=list)
    missing_from_specs: TextList = Field(default_factory=list)
    not_in_intake: TextList = Field(default_factory=list)
    recommendations: TextList = Field(default_factory=list)


class ConsistencyChecks(StageModel):
    hours_balance: Loose = Field(default_factory=dict)
    tool_alignment: ToolAlignment = Field(default_factory=ToolAlignment)
    outcome_mapping: Loose = Field(default_factory=dict)
    kpi_feasibility: list[Loose] = Field(default_factory=list)


class QualityAssessment(StageModel):
    specificity: Number = None
    role_clarity: Number = None
    outcome_alignment: Number = None
    personality_depth: Number = None
    kpi_quality: Number = None
    overall_confidence: Text = ""
    areas_to_strengthen: TextList = Field(default_factory=list)


class ValidationResult(StageModel):
    """Stage 4 output. Advisory only; never blocks the pipeline."""

    consistency_checks: ConsistencyChecks = Field(default_factory=ConsistencyChecks)
    risk_analysis: list[RiskItem] = Field(default_factory=list)
    assumptions_to_validate: list[Assumption] = Field(default_factory=list)
    red_flags: list[RedFlag] = Field(default_factory=list)
    quality_assessment: QualityAssessment = Field(default_factory=QualityAssessment)
    service_type_validation: Loose = Field(default_factory=dict)
    alternative_considerations: TextList = Field(default_factory=list)


# =============================================================================
# Stage 5: Assembly output
# =============================================================================


class ClientPackage(BaseModel):
    """Client-facing package assembled from stages 1-4."""

    model_config = ConfigDict(extra="allow")

    executive_summary: dict[str, Any]
    service_structure: dict[str, Any]
    detailed_specifications: dict[str, Any]
    implementation_plan: dict[str, Any]
    risk_management: dict[str, Any]
    questions_for_you: list[dict[str, Any]]
    validation_report: dict[str, Any]
    appendix: dict[str, Any]


class Preview(BaseModel):
    """Short summary shown before the full package."""

    model_config = ConfigDict(extra="allow")

    summary: dict[str, Any]
    primary_outcome: Optional[str] = None
    service_type: ServiceType
    service_confidence: Optional[ConfidenceLevel] = None
    service_reasoning: str = ""
    confidence: str = ""
    key_risks: list[str] = Field(default_factory=list)
    critical_questions: list[str] = Field(default_factory=list)

    # Dedicated VA
    role_title: Optional[str] = None
    hours_per_week: Optional[float] = None
    # Projects on Demand
    project_count: Optional[int] = None
    total_hours: Optional[str] = None
    estimated_timeline: Optional[str] = None
    # Unicorn VA Service
    core_va_title: Optional[str] = None
    core_va_hours: Optional[float] = None
    team_support_areas: Optional[int] = None


class AnalysisMetadata(BaseModel):
    stages_completed: list[str]
    service_type: ServiceType
    service_classification_scores: dict[str, Any]
    hard_rule_verdict: Optional[ServiceType] = None
    sop_processed: bool
    discovery_insights_count: int
    risks_identified: int
    quality_scores: dict[str, Any]


class PipelineResult(BaseModel):
    """All six stage outputs of one completed analysis run."""

    discovery: DiscoveryResult
    classification: ClassificationResult
    architecture: Architecture
    specification: Specification
    validation: ValidationResult
    package: ClientPackage
    preview: Preview
    metadata: AnalysisMetadata

    @property
    def service_type(self) -> ServiceType:
        return self.classification.service_type

    def to_response(self) -> dict:
        """The ``{preview, full_package, metadata}`` body returned to clients."""
        return {
            "preview": self.preview.model_dump(mode="json", exclude_none=True),
            "full_package": self.package.model_dump(mode="json"),
            "metadata": self.metadata.model_dump(mode="json"),
        }

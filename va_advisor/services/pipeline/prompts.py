"""Prompt building for the analysis pipeline stages.

PROMPT DESIGN:
- One persona per stage (system message) and one user prompt carrying
  every upstream output as pretty-printed JSON
- The expected JSON shape is spelled out in the prompt; responses are
  validated against the stage models afterwards
- Discovery, classification and architecture see the organization's
  knowledge base; specification and validation work from upstream
  outputs only
- Architecture switches between three templates on the classified
  service type
"""

import json
from typing import Any, Optional

from va_advisor.models.intake import WebsiteContent
from va_advisor.models.pipeline import ServiceType

SOP_PROMPT_CHARS = 15000
WEBSITE_SAMPLE_CHARS = 5000

DISCOVERY_SYSTEM = "You are an expert business analyst."
CLASSIFICATION_SYSTEM = "You are a service classification expert."
ARCHITECTURE_SYSTEM = "You are a role architecture specialist."
JD_SYSTEM = "You are an expert job description writer."
PROJECT_SPECS_SYSTEM = "You are a project specification expert."
VALIDATION_SYSTEM = "You are a quality assurance specialist."


def _dump(value: Any) -> str:
    return json.dumps(value, indent=2, default=str)


def _with_kb(kb_context: str) -> str:
    return f"{kb_context}\n\n" if kb_context else ""


# ------------------------------------------------------------------
# Stage 1: Discovery
# ------------------------------------------------------------------


def format_website_content(website: Optional[WebsiteContent]) -> str:
    if website is None:
        return ""

    def _or_na(value: Any) -> str:
        if isinstance(value, list):
            value = ", ".join(str(v) for v in value if v)
        elif isinstance(value, dict):
            value = json.dumps(value) if value else ""
        return value or "Not available"

    testimonials = " | ".join(website.testimonials[:3])
    return f"""
WEBSITE CONTENT (extracted company information):
- Hero/Main Message: {_or_na(website.hero)}
- About Section: {_or_na(website.about)}
- Services/Offerings: {_or_na(website.services)}
- Company Info: {_or_na(website.company_info)}
- Team Information: {_or_na(website.team)}
- Values/Culture: {_or_na(website.values)}
- Contact Info: {_or_na(website.contact)}
- Testimonials: {testimonials or "Not available"}
- Full Website Text (sample): {website.full_text[:WEBSITE_SAMPLE_CHARS]}
- Metadata: {json.dumps(website.metadata)}
"""


def build_discovery_prompt(
    intake: dict,
    *,
    kb_context: str = "",
    website: Optional[WebsiteContent] = None,
    sop_text: Optional[str] = None,
) -> str:
    if sop_text:
        sop_section = (
            "SOP DOCUMENT (use this to understand current processes and identify "
            f"implicit needs):\n{sop_text[:SOP_PROMPT_CHARS]}"
        )
    else:
        sop_section = "No SOP provided."

    return f"""You are a business analyst conducting deep discovery for a virtual assistant placement.

{_with_kb(kb_context)}INTAKE DATA:
{_dump(intake)}

{format_website_content(website)}

{sop_section}

Your job is to extract deep insights that aren't explicitly stated. Respond with JSON:

{{
  "business_context": {{
    "company_stage": "startup | growth | established",
    "primary_bottleneck": "What's preventing the 90-day outcome?",
    "hidden_complexity": "What complexities are implied but not stated?",
    "growth_indicators": "Signs of scaling needs or trajectory"
  }},

  "task_analysis": {{
    "task_clusters": [
      {{
        "cluster_name": "Descriptive name for related tasks",
        "tasks": ["task 1", "task 2"],
        "workflow_type": "creative | analytical | operational | client-facing",
        "interdependencies": ["What other clusters does this depend on?"],
        "complexity_score": 1-10,
        "estimated_hours_weekly": 5
      }}
    ],
    "skill_requirements": {{
      "technical": ["Specific technical skills with proficiency levels"],
      "soft": ["Communication, problem-solving, etc. with context"],
      "domain": ["Industry or domain knowledge needed"]
    }},
    "implicit_needs": [
      "Requirements not explicitly stated but clearly needed",
      "Example: 'Tasks mention reporting but no BI tool listed - needs data viz skills'"
    ]
  }},

  "sop_insights": {{
    "process_complexity": "low | medium | high",
    "documented_workflows": ["List of documented processes"],
    "documentation_gaps": ["What's missing from SOPs"],
    "handoff_points": ["Where work passes between people/systems"],
    "pain_points": ["Bottlenecks or issues evident in current process"],
    "tools_mentioned": ["Tools found in SOP that aren't in intake"],
    "implicit_requirements": ["Skills/access needed based on SOP"]
  }},

  "context_gaps": [
    {{
      "question": "Clarifying question for the client",
      "why_it_matters": "How this impacts role design",
      "assumption_if_unanswered": "What we'll assume if they don't answer"
    }}
  ],

  "measurement_capability": {{
    "current_tracking": ["What metrics/KPIs are they currently tracking"],
    "tools_available": ["What tools they have for measurement"],
    "tracking_gaps": ["What they want to measure but can't currently"],
    "recommendations": ["What instrumentation/tools they should add"]
  }}
}}

Be specific and insightful. Look for what's NOT said but is clearly implied."""


# ------------------------------------------------------------------
# Stage 1.5: Service classification
# ------------------------------------------------------------------

HARD_RULES = """
HARD RULES (these override scoring):

1. If weekly_hours > 0 AND all tasks are ongoing/recurring AND tasks fit within 2-3 related skill domains → LIKELY DEDICATED VA

2. If weekly_hours = 0 OR outcome describes finite deliverables OR comments mention "one-time" → LIKELY PROJECTS ON DEMAND

3. Only classify as UNICORN VA if there's clearly a core role (60%+ of work) PLUS specialized needs that require different expertise

UNICORN VA MUST HAVE:
- A clear primary responsibility (e.g., "social media management")
- PLUS secondary needs requiring specialized skills (e.g., video editing, graphic design)
- NOT just "multiple tools" - that's normal for any role

DEDICATED VA characteristics:
- Tasks cluster around ONE core function
- Hours are weekly/recurring
- Role has ongoing operational ownership
- Skills are complementary, not disparate

PROJECTS ON DEMAND characteristics:
- Tasks have clear end states
- Work is batch/campaign-based
- Deliverables are countable (build X, create Y, migrate Z)
- Timeline is project duration, not weekly hours
"""


def format_hard_rule_hint(verdict: Optional[ServiceType]) -> str:
    if verdict is None:
        return (
            "RULE CHECK: None of the hard rules clearly applies to this intake. "
            "Decide from the classification criteria."
        )
    return (
        f"RULE CHECK: Applying the hard rules to the intake and discovery data points "
        f"to {verdict.value}. Confirm or override this with evidence from the data."
    )


def build_classification_prompt(
    intake: dict,
    discovery: dict,
    *,
    kb_context: str = "",
    hard_rule_verdict: Optional[ServiceType] = None,
) -> str:
    return f"""You are a service type classifier for a VA agency. Based on the client's needs, classify which service model fits best.

{HARD_RULES}
{format_hard_rule_hint(hard_rule_verdict)}

{_with_kb(kb_context)}INTAKE DATA:
{_dump(intake)}

DISCOVERY INSIGHTS:
{_dump(discovery)}

SERVICE TYPE DEFINITIONS:

1. DEDICATED VA
   - Best for: Ongoing, recurring operational tasks
   - Client has: Specific, well-defined role for one person
   - Tasks are: Cohesive and within related skill domains
   - Engagement: Long-term, consistent workload
   - Example: Executive assistant, customer support lead, operations coordinator

2. PROJECTS ON DEMAND
   - Best for: One-off, project-based, or sporadic needs
   - Client has: Multiple disconnected projects, not ongoing operations
   - Tasks are: Varied, non-recurring, or campaign-based
   - Engagement: Project-by-project basis with defined start/end
   - Example: Website build, funnel setup, one-time migration, content creation project

3. UNICORN VA SERVICE
   - Best for: Core ongoing role + diverse additional skill needs
   - Client has: One primary responsibility + variety of secondary needs
   - Tasks are: Mix of core competency + adjacent specialized skills
   - Engagement: Dedicated VA for core work + team access for specialized tasks
   - Example: Marketing VA (core) + graphic design + video editing + copywriting needs

CLASSIFICATION CRITERIA:

Analyze these factors:
- Task Cohesion: Do tasks naturally fit one person's skill set?
- Temporal Pattern: Ongoing daily work vs project-based?
- Skill Distribution: Single domain vs multiple specialized domains?
- Business Integration: Internal operations vs external deliverables?
- Workload Consistency: Steady hours vs fluctuating needs?

Respond with JSON:

{{
  "service_type_analysis": {{
    "recommended_service": "Dedicated VA | Projects on Demand | Unicorn VA Service",
    "confidence": "High | Medium | Low",

    "factors": {{
      "task_cohesion": {{
        "score": 1-10,
        "reasoning": "Are tasks related enough for one person?"
      }},
      "temporal_pattern": {{
        "pattern": "ongoing | project-based | hybrid",
        "reasoning": "What's the engagement timeline?"
      }},
      "skill_distribution": {{
        "core_skills": ["Primary skills needed"],
        "secondary_skills": ["Additional specialized skills"],
        "fit_assessment": "Do these fit in one person?"
      }},
      "business_integration": {{
        "type": "internal_operations | external_deliverables | mixed",
        "reasoning": "Is this about running operations or delivering projects?"
      }},
      "workload_consistency": {{
        "pattern": "steady | fluctuating | seasonal",
        "weekly_hours": "Estimated hours breakdown"
      }}
    }},

    "service_fit_scores": {{
      "dedicated_va": {{
        "score": 1-10,
        "why_fits": ["Reasons this service works"],
        "why_doesnt": ["Reasons this service doesn't work"]
      }},
      "projects_on_demand": {{
        "score": 1-10,
        "why_fits": ["Reasons this service works"],
        "why_doesnt": ["Reasons this service doesn't work"]
      }},
      "unicorn_va": {{
        "score": 1-10,
        "why_fits": ["Reasons this service works"],
        "why_doesnt": ["Reasons this service doesn't work"]
      }}
    }},

    "decision_logic": "Explain why the recommended service is the best fit",

    "edge_cases": [
      "Scenarios where this recommendation might not work",
      "Alternative service type to consider if X changes"
    ],

    "client_validation_questions": [
      {{
        "question": "Question to validate the service type choice",
        "why_matters": "How the answer affects service type",
        "if_yes": "Impact if they answer yes",
        "if_no": "Impact if they answer no"
      }}
    ]
  }},

  "role_structure_by_service": {{
    "if_dedicated_va": {{
      "role_count": 1,
      "role_description": "Single cohesive role description",
      "hours_per_week": "From intake",
      "skill_profile": "Combined skill requirements"
    }},

    "if_projects_on_demand": {{
      "project_types": [
        {{
          "project_name": "Project category",
          "estimated_hours": "Hours for this project",
          "skills_needed": ["Skills for this project"],
          "deliverables": ["What client gets"],
          "timeline": "Estimated completion time"
        }}
      ],
      "engagement_model": "How projects would be scoped and delivered"
    }},

    "if_unicorn_va": {{
      "core_role": {{
        "title": "Primary VA role title",
        "hours_per_week": "Hours for core work",
        "core_responsibilities": ["Main ongoing tasks"],
        "skills_needed": ["Core skill set"]
      }},
      "team_support_needs": [
        {{
          "skill_area": "Specialized skill category",
          "estimated_hours_monthly": "Hours needed",
          "use_cases": ["When this skill is needed"],
          "why_not_core_va": "Why this doesn't fit the core VA"
        }}
      ]
    }}
  }}
}}

Be analytical and objective. The goal is to match the client's actual needs to the right service model, not force them into a specific service."""


# ------------------------------------------------------------------
# Stage 2: Architecture
# ------------------------------------------------------------------

_PROS_CONS = """  "pros": [
    "Why this structure works well",
    "Specific advantages for this client"
  ],
  "cons": [
    "Honest limitations or tradeoffs",
    "What this structure doesn't solve"
  ],"""


def _dedicated_instructions(weekly_hours: float) -> str:
    hours = f"{weekly_hours:g}"
    return f"""
You are designing a DEDICATED VA role. Create ONE cohesive role that:
- Combines all tasks into a single, manageable position
- Has a clear core mission and outcome ownership
- Balances the workload across {hours} hours/week
- Includes all necessary skills in one person's capability range

IMPORTANT: Do NOT include "team_support_areas" in your response. This is a single dedicated VA role only.

Respond with JSON:
{{
  "service_type": "Dedicated VA",
  "dedicated_va_role": {{
    "title": "Specific role title",
    "hours_per_week": {hours},
    "core_responsibility": "Primary outcome this role owns",
    "task_allocation": {{
      "from_intake": ["All intake tasks mapped here"],
      "estimated_breakdown": "How hours split across task types"
    }},
    "skill_requirements": {{
      "required": ["Must-have skills"],
      "nice_to_have": ["Bonus skills"],
      "growth_areas": ["Skills they can develop over time"]
    }},
    "workflow_ownership": ["All workflow clusters owned by this role"],
    "interaction_model": {{
      "reports_to": "Role or person",
      "collaborates_with": ["Other roles/teams"],
      "sync_needs": "Daily | Weekly | Async-first"
    }}
  }},
{_PROS_CONS}
  "scaling_path": "How this structure evolves as needs grow",
  "alternative_consideration": "What would make you switch to a different service type"
}}"""


_PROJECTS_INSTRUCTIONS = f"""
You are scoping PROJECTS ON DEMAND. Create a project-based breakdown that:
- Groups tasks into discrete deliverable projects
- Defines clear start/end points for each project
- Specifies deliverables and acceptance criteria
- Estimates hours per project (not weekly recurring hours)
- Can be executed sequentially or in parallel

Respond with JSON:
{{
  "service_type": "Projects on Demand",
  "projects": [
    {{
      "project_name": "Descriptive project name",
      "category": "Type of project (e.g., Marketing, Tech, Operations)",
      "objective": "What this project achieves",
      "deliverables": [
        "Specific deliverable 1 with acceptance criteria",
        "Specific deliverable 2 with acceptance criteria"
      ],
      "estimated_hours": "Total hours for project",
      "timeline": "Estimated duration (e.g., 2-3 weeks)",
      "skills_required": ["Skills needed for this project"],
      "dependencies": ["What needs to exist before starting"],
      "success_criteria": "How we know it's done well"
    }}
  ],
  "recommended_sequence": "Order to execute projects and why",
  "total_investment": {{
    "hours": "Sum of all project hours",
    "timeline": "Total timeline if sequential"
  }},
{_PROS_CONS}
  "scaling_path": "How this could transition to ongoing engagement",
  "alternative_consideration": "What would make you switch to a different service type"
}}"""


_UNICORN_INSTRUCTIONS = f"""
You are designing a UNICORN VA SERVICE. Create a structure with:
1. ONE core Dedicated VA role (ongoing, recurring tasks - 60-80% of work)
2. TEAM SUPPORT AREAS (specialized skills accessed on-demand)

The core VA should handle the primary ongoing work. Team support covers specialized needs that:
- Require expertise beyond the core VA's skill set
- Are needed occasionally, not daily
- Would be inefficient to train one person on
- Benefit from specialist-level execution

Respond with JSON:
{{
  "service_type": "Unicorn VA Service",
  "core_va_role": {{
    "title": "Core VA role title",
    "hours_per_week": "Hours for recurring work",
    "core_responsibility": "Primary ongoing outcome",
    "recurring_tasks": ["Tasks the VA does daily/weekly"],
    "skill_requirements": {{
      "required": ["Core skills"],
      "nice_to_have": ["Bonus skills"]
    }},
    "workflow_ownership": ["Workflows owned by core VA"]
  }},
  "team_support_areas": [
    {{
      "skill_category": "e.g., Graphic Design",
      "use_cases": ["When this skill is needed"],
      "estimated_hours_monthly": "Hours per month",
      "deliverables": ["What the specialist produces"],
      "why_team_not_va": "Why this doesn't fit the core VA",
      "example_requests": [
        "Example task 1 for this specialist",
        "Example task 2 for this specialist"
      ]
    }}
  ],
  "coordination_model": "How core VA and team specialists collaborate",
{_PROS_CONS}
  "scaling_path": "How this structure evolves as needs grow",
  "alternative_consideration": "What would make you switch to a different service type"
}}"""


def service_instructions(service_type: ServiceType, weekly_hours: float) -> str:
    if service_type == ServiceType.DEDICATED_VA:
        return _dedicated_instructions(weekly_hours)
    if service_type == ServiceType.PROJECTS_ON_DEMAND:
        return _PROJECTS_INSTRUCTIONS
    return _UNICORN_INSTRUCTIONS


def build_architecture_prompt(
    intake: dict,
    discovery: dict,
    service_type_analysis: dict,
    service_type: ServiceType,
    *,
    weekly_hours: float,
    kb_context: str = "",
) -> str:
    return f"""You are a role design architect designing a {service_type.value} engagement.

{_with_kb(kb_context)}INTAKE DATA:
{_dump(intake)}

DISCOVERY INSIGHTS:
{_dump(discovery)}

SERVICE CLASSIFICATION:
{_dump(service_type_analysis)}

{service_instructions(service_type, weekly_hours)}

Make every section specific and actionable. Avoid generic statements."""


# ------------------------------------------------------------------
# Stage 3: Specification
# ------------------------------------------------------------------


def build_jd_prompt(role: dict, discovery: dict, intake: dict) -> str:
    title = json.dumps(role.get("title") or "")
    hours = role.get("hours_per_week")
    hours = json.dumps(hours if hours is not None else "")
    return f"""You are writing a comprehensive job description for a VA role.

ROLE OVERVIEW:
{_dump(role)}

DISCOVERY CONTEXT:
{_dump(discovery)}

CLIENT CONTEXT:
{_dump(intake)}

Generate a detailed, actionable job description following this JSON schema:

{{
  "title": {title},
  "hours_per_week": {hours},

  "mission_statement": "2-3 sentences: Why this role exists and what success looks like. Make it inspiring and clear.",

  "primary_outcome": "The single most important thing this role must deliver in 90 days (specific and measurable)",

  "core_outcomes": [
    "4-6 specific, measurable outcomes for 90 days",
    "Each should be concrete with success criteria",
    "Example: 'Build 3 lead-generation funnels with documented workflows, achieving <2% form error rate and 15+ booked calls/month'",
    "Tie each to the overall business goal"
  ],

  "responsibilities": [
    {{
      "category": "Category name (e.g., 'Workflow Automation')",
      "details": [
        "Detailed responsibility with the HOW, not just WHAT",
        "Example: 'Design GHL multi-step workflows including form logic, conditional branching, webhook integrations, and calendar booking, with full QA documentation before launch'",
        "Include frequency, tools, and output format"
      ]
    }}
  ],

  "skills_required": {{
    "technical": [
      {{
        "skill": "Specific technical skill",
        "proficiency": "beginner | intermediate | advanced",
        "application": "How it's used in this role",
        "example": "Concrete example of application"
      }}
    ],
    "soft": [
      {{
        "skill": "Soft skill",
        "why_critical": "Why it matters for this specific role",
        "demonstration": "How you'd assess this in interview/trial"
      }}
    ],
    "domain": [
      "Domain knowledge needed with context"
    ]
  }},

  "tools": [
    {{
      "tool": "Tool name",
      "use_case": "Primary use in this role",
      "proficiency": "How deep they need to know it",
      "training_available": "Will client provide training? Y/N/Partial"
    }}
  ],

  "kpis": [
    {{
      "metric": "Specific KPI",
      "target": "Target value (if applicable)",
      "frequency": "How often measured",
      "measurement_method": "How it's tracked/calculated",
      "leading_or_lagging": "leading | lagging",
      "instrumentation_needs": "What tools/setup needed to track this"
    }}
  ],

  "personality_fit": [
    {{
      "trait": "Specific personality trait",
      "why_critical": "Why this matters for success in THIS role",
      "anti_pattern": "What the opposite trait looks like (red flag)",
      "example_scenario": "Situation where this trait is tested"
    }}
  ],

  "sample_week": {{
    "Mon": {{
      "focus": "Primary focus/theme for Monday",
      "activities": ["Specific activity 1", "Specific activity 2"],
      "estimated_hours": "Hour breakdown"
    }},
    "Tue": {{ "focus": "", "activities": [], "estimated_hours": "" }},
    "Wed": {{ "focus": "", "activities": [], "estimated_hours": "" }},
    "Thu": {{ "focus": "", "activities": [], "estimated_hours": "" }},
    "Fri": {{
      "focus": "Include weekly review/reporting",
      "activities": [],
      "estimated_hours": ""
    }}
  }},

  "communication_structure": {{
    "reporting_to": "Role or person",
    "daily_updates": "Format and channel (e.g., 'Async Slack summary by 9am EST')",
    "weekly_sync": "Format, duration, purpose",
    "documentation_standards": "How work is documented",
    "escalation_protocol": "When and how to raise issues",
    "tools": ["Slack", "Loom", "ClickUp"]
  }},

  "timezone_requirements": {{
    "flexibility": "What's negotiable",
    "critical_windows": "When real-time presence is essential",
    "async_workflows": "What can be done fully async"
  }},

  "success_indicators": {{
    "30_days": ["What good looks like at 30 days"],
    "60_days": ["What good looks like at 60 days"],
    "90_days": ["What good looks like at 90 days - should match core outcomes"]
  }}
}}

Make every section rich and specific. Avoid generic statements."""


def build_project_specs_prompt(projects: list, discovery: dict, intake: dict) -> str:
    return f"""You are creating detailed project specifications for a Projects on Demand engagement.

PROJECTS:
{_dump(projects)}

DISCOVERY CONTEXT:
{_dump(discovery)}

INTAKE DATA:
{_dump(intake)}

For each project, create comprehensive specifications. Respond with JSON:

{{
  "projects": [
    {{
      "project_name": "From input",
      "overview": "2-3 sentence project summary",
      "objectives": ["Specific goals this project achieves"],
      "deliverables": [
        {{
          "item": "Deliverable name",
          "description": "Detailed description",
          "acceptance_criteria": ["How we know it's done right"],
          "file_format": "Expected output format"
        }}
      ],
      "scope": {{
        "in_scope": ["What IS included"],
        "out_of_scope": ["What IS NOT included"],
        "assumptions": ["What we're assuming about resources/access"]
      }},
      "timeline": {{
        "estimated_hours": "Total hours",
        "duration": "Calendar time",
        "milestones": [
          {{
            "milestone": "Checkpoint name",
            "timing": "When it happens",
            "deliverable": "What's delivered"
          }}
        ]
      }},
      "requirements": {{
        "from_client": ["What client must provide"],
        "skills_needed": ["Skills for execution"],
        "tools_needed": ["Tools required"]
      }},
      "success_metrics": ["How we measure success"],
      "risks": [
        {{
          "risk": "Potential issue",
          "mitigation": "How to prevent/handle it"
        }}
      ]
    }}
  ]
}}

Make each project specification detailed enough to be executed independently."""


# ------------------------------------------------------------------
# Stage 4: Validation
# ------------------------------------------------------------------


def build_validation_prompt(
    service_type: ServiceType,
    architecture: dict,
    specification: dict,
    discovery: dict,
    intake: dict,
) -> str:
    return f"""You are a quality assurance analyst reviewing a VA service design package.

SERVICE TYPE: {service_type.value}

ROLE ARCHITECTURE:
{_dump(architecture)}

DETAILED SPECIFICATIONS:
{_dump(specification)}

DISCOVERY INSIGHTS:
{_dump(discovery)}

INTAKE DATA:
{_dump(intake)}

Perform a comprehensive validation and risk analysis. Respond with JSON:

{{
  "consistency_checks": {{
    "hours_balance": {{
      "stated_hours": "Total weekly hours from intake",
      "allocated_hours": "Sum of hours across roles/projects",
      "issues": ["Any mismatches or concerns"]
    }},

    "tool_alignment": {{
      "tools_in_intake": ["From intake"],
      "tools_in_specs": ["From specifications"],
      "missing_from_specs": ["Tools needed but not listed"],
      "not_in_intake": ["Tools in specs but not provided by client"],
      "recommendations": ["What to clarify with client"]
    }},

    "outcome_mapping": {{
      "client_goal": "90-day outcome from intake",
      "role_outcomes": ["Primary outcomes from specifications"],
      "coverage": "What % of client goal is addressed",
      "gaps": ["Aspects of client goal not covered"]
    }},

    "kpi_feasibility": [
      {{
        "kpi": "KPI name",
        "measurable": true,
        "instrumentation_exists": false,
        "issue": "If not measurable, what's missing",
        "recommendation": "How to fix"
      }}
    ]
  }},

  "risk_analysis": [
    {{
      "risk": "Specific risk description",
      "category": "scope | skill | tool | process | management",
      "severity": "high | medium | low",
      "likelihood": "high | medium | low",
      "impact": "What happens if this risk materializes",
      "mitigation": "How to reduce or manage this risk",
      "early_warning_signs": ["Signals this risk is becoming real"]
    }}
  ],

  "assumptions_to_validate": [
    {{
      "assumption": "What we're assuming",
      "criticality": "high | medium | low",
      "validation_method": "How client should verify this",
      "if_wrong": "What changes if this assumption is incorrect"
    }}
  ],

  "red_flags": [
    {{
      "flag": "Specific concern",
      "evidence": "What in the data suggests this",
      "recommendation": "What to do about it"
    }}
  ],

  "quality_assessment": {{
    "specificity": "Are specifications specific enough? (1-10)",
    "role_clarity": "Is the service structure crystal clear? (1-10)",
    "outcome_alignment": "Does structure directly drive client goal? (1-10)",
    "personality_depth": "Are personality traits specific and useful? (1-10)",
    "kpi_quality": "Are KPIs measurable and meaningful? (1-10)",
    "overall_confidence": "high | medium | low",
    "areas_to_strengthen": ["What needs more depth"]
  }},

  "service_type_validation": {{
    "classification_appears_correct": true,
    "concerns": ["Any concerns about the service type choice"],
    "alternative_to_consider": "If concerns exist, what alternative service type"
  }},

  "alternative_considerations": [
    "Other structures that might work",
    "Scenarios where current design might fail",
    "What would make you change this recommendation"
  ]
}}

Be brutally honest. This is the final QA check before showing to the client."""

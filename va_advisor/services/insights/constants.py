"""Confidence assigned to each structured insight source.

Values are fixed per source field and reflect how directly the field was
stated in the analysis; they are not computed.
"""

# Discovery: business context
COMPANY_STAGE_CONFIDENCE = 85
BOTTLENECK_CONFIDENCE = 90
GROWTH_INDICATORS_CONFIDENCE = 82
HIDDEN_COMPLEXITY_CONFIDENCE = 82

# Discovery: task analysis
TASK_CLUSTER_CONFIDENCE = 82
IMPLICIT_NEED_CONFIDENCE = 75
SKILL_SUMMARY_CONFIDENCE = 75

# Discovery: SOP insights
PROCESS_COMPLEXITY_CONFIDENCE = 82
PAIN_POINT_CONFIDENCE = 85
DOCUMENTATION_GAP_CONFIDENCE = 85

# Classification
SERVICE_RECOMMENDATION_CONFIDENCE = {"High": 85, "Medium": 80, "Low": 75}
SERVICE_RECOMMENDATION_DEFAULT_CONFIDENCE = 82
FIT_SCORE_HIGH_CONFIDENCE = 85  # score >= 8
FIT_SCORE_MEDIUM_CONFIDENCE = 80  # score >= 6
FIT_SCORE_LOW_CONFIDENCE = 75

# Validation
HIGH_SEVERITY_RISK_CONFIDENCE = 90
RISK_CONFIDENCE = 75
CRITICAL_ASSUMPTION_CONFIDENCE = 85
RED_FLAG_CONFIDENCE = 90

# Conversation: LLM-structured extraction
CONVERSATION_BASE_CONFIDENCE = 75
CONVERSATION_MIN_CONFIDENCE = 50

# Conversation: keyword fallback
USER_QUESTION_CONFIDENCE = 75
USER_PAIN_POINT_CONFIDENCE = 82
USER_INFORMATION_CONFIDENCE = 78
TOPIC_DISCUSSED_CONFIDENCE = 70

# SOP generation
SOP_TOOLS_CONFIDENCE = 85
SOP_PAIN_POINT_CONFIDENCE = 82
SOP_RECURRING_PROCESS_CONFIDENCE = 80
SOP_ROLE_CONFIDENCE = 75
SOP_COMPLIANCE_CONFIDENCE = 80

"""Provider-neutral LLM access for the analysis pipeline and KB chat."""

from va_advisor.services.llm.client import (
    LLMClient,
    LLMCompletion,
    get_llm_client,
    reset_llm_client,
)
from va_advisor.services.llm.errors import LLMError, LLMErrorKind, classify_exception
from va_advisor.services.llm.json_utils import extract_json_from_response

__all__ = [
    "LLMClient",
    "LLMCompletion",
    "LLMError",
    "LLMErrorKind",
    "classify_exception",
    "extract_json_from_response",
    "get_llm_client",
    "reset_llm_client",
]

from va_advisor.services.enrichment_worker import (
    EnrichmentRequest,
    EnrichmentWorker,
    get_enrichment_worker,
    reset_enrichment_worker,
)
from va_advisor.services.llm import (
    LLMClient,
    get_llm_client,
    reset_llm_client,
)

__all__ = [
    # Enrichment worker
    "EnrichmentRequest",
    "EnrichmentWorker",
    "get_enrichment_worker",
    "reset_enrichment_worker",
    # LLM client
    "LLMClient",
    "get_llm_client",
    "reset_llm_client",
]

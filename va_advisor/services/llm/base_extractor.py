"""Abstract base class for best-effort LLM extractors.

Implements the Template Method pattern so each extractor only needs to
override content preparation and result parsing while sharing the LLM
call, JSON extraction and error handling. Extractors never raise: any
failure yields ``_empty_result()``.
"""

import logging
from abc import ABC, abstractmethod
from typing import Any, Optional

from tenacity import retry, retry_if_exception, stop_after_attempt, wait_exponential

from va_advisor.services.llm.client import LLMClient
from va_advisor.services.llm.errors import LLMError, LLMErrorKind

logger = logging.getLogger(__name__)

_TRANSIENT_KINDS = {LLMErrorKind.RATE_LIMIT, LLMErrorKind.TIMEOUT}


def _is_transient(exc: BaseException) -> bool:
    return isinstance(exc, LLMError) and exc.kind in _TRANSIENT_KINDS


class BaseLLMExtractor(ABC):
    """Template base for LLM-powered extractors.

    Subclasses must implement:
        - ``SYSTEM_PROMPT`` class attribute
        - ``_prepare_content()``: build the user message from the source
        - ``_parse_result()``: convert parsed JSON into the domain result
        - ``_empty_result()``: fallback when the source is skipped or the call fails
    """

    SYSTEM_PROMPT: str  # Override in subclass
    TEMPERATURE: float = 0.2

    def __init__(self, llm: LLMClient, model: Optional[str] = None) -> None:
        self.llm = llm
        self.model = model

    # ------------------------------------------------------------------
    # Template method
    # ------------------------------------------------------------------

    async def extract(self, source: Any, **kwargs: Any) -> Any:
        """Run the full extract pipeline: prepare → call LLM → parse.

        Args:
            source: Extractor-specific input (a message pair, page text, ...).
            **kwargs: Forwarded to ``_prepare_content`` and ``_parse_result``.

        Returns:
            Domain-specific result, or ``_empty_result()`` on failure.
        """
        if self._should_skip(source, **kwargs):
            return self._empty_result()

        content = self._prepare_content(source, **kwargs)

        try:
            data = await self._call_llm(content)
        except (LLMError, ValueError) as e:
            logger.error(f"{self.__class__.__name__} LLM call failed: {e}")
            return self._empty_result()

        try:
            return self._parse_result(data, source, **kwargs)
        except Exception as e:
            logger.error(f"{self.__class__.__name__} parse failed: {e}")
            return self._empty_result()

    # ------------------------------------------------------------------
    # LLM interaction (shared)
    # ------------------------------------------------------------------

    @retry(
        retry=retry_if_exception(_is_transient),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=30),
        reraise=True,
    )
    async def _call_llm(self, user_content: str) -> Any:
        """Call the LLM and return parsed JSON.

        Retries up to 3 times on rate-limit or timeout errors with
        exponential backoff.

        Raises:
            LLMError: On provider errors.
            ValueError: When the response holds no parseable JSON.
        """
        return await self.llm.complete_json(
            self.SYSTEM_PROMPT,
            user_content,
            temperature=self.TEMPERATURE,
            max_tokens=self._max_tokens(),
            model=self.model,
        )

    # ------------------------------------------------------------------
    # Hooks for subclasses
    # ------------------------------------------------------------------

    @abstractmethod
    def _prepare_content(self, source: Any, **kwargs: Any) -> str:
        """Build the user-message string from the source."""

    @abstractmethod
    def _parse_result(self, data: Any, source: Any, **kwargs: Any) -> Any:
        """Convert parsed JSON into the domain result."""

    @abstractmethod
    def _empty_result(self) -> Any:
        """Return a safe default when extraction cannot proceed."""

    def _should_skip(self, source: Any, **kwargs: Any) -> bool:
        """Override to skip the LLM call for unsuitable input."""
        return not source

    def _max_tokens(self) -> int:
        """Override to change max_tokens for the LLM call."""
        return 2000

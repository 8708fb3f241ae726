"""Pipeline failure types."""

from typing import Optional

from va_advisor.services.llm.errors import USER_MESSAGES, LLMError, LLMErrorKind

PARSE_ERROR_MESSAGE = "Failed to parse analysis results"


class ParseError(Exception):
    """A stage response was not JSON or did not match the stage schema."""

    def __init__(self, stage: str, details: str) -> None:
        super().__init__(f"{stage}: {details}")
        self.stage = stage
        self.details = details


class AnalysisFailure(Exception):
    """Aborts the pipeline; carries what the API caller is shown."""

    def __init__(
        self,
        stage: str,
        error: str,
        details: str = "",
        user_message: Optional[str] = None,
    ) -> None:
        super().__init__(f"{stage}: {error}")
        self.stage = stage
        self.error = error
        self.details = details
        self.user_message = user_message or USER_MESSAGES[LLMErrorKind.UNKNOWN][1]

    @classmethod
    def from_llm_error(cls, stage: str, exc: LLMError) -> "AnalysisFailure":
        return cls(stage, exc.error, exc.details, exc.user_message)

    @classmethod
    def from_parse_error(cls, exc: ParseError) -> "AnalysisFailure":
        return cls(exc.stage, PARSE_ERROR_MESSAGE, exc.details)

    def to_dict(self) -> dict:
        return {
            "error": self.error,
            "details": self.details,
            "userMessage": self.user_message,
            "stage": self.stage,
        }

"""Error types for prompt organizer.

Internal code raises the specific exception classes below. Public entry points
(`PromptOrganizer`, `ReviewSession`) convert them into `OrganizerError` with a
stable `code`, so callers only ever match on one type.
"""

from enum import Enum


class LLMErrorType(str, Enum):
    API_KEY_MISSING = "API_KEY_MISSING"
    NETWORK_ERROR = "NETWORK_ERROR"
    API_ERROR = "API_ERROR"
    CANCELLED = "CANCELLED"
    TIMEOUT = "TIMEOUT"
    INVALID_RESPONSE = "INVALID_RESPONSE"


class PromptOrganizerException(Exception):
    """Base class for internal errors."""


class LLMError(PromptOrganizerException):
    """Error raised by the LLM client."""

    def __init__(self, message: str, error_type: LLMErrorType, original_error: BaseException | None = None):
        super().__init__(message)
        self.message = message
        self.error_type = error_type
        self.original_error = original_error


class ConfigurationError(PromptOrganizerException):
    """Missing or invalid configuration (API key). Requires user action."""


class NetworkError(PromptOrganizerException):
    """Transient connectivity failure."""


class GenerationError(PromptOrganizerException):
    """The model response could not be parsed into templates."""


class CancellationError(PromptOrganizerException):
    """A run was cancelled by the user."""


class FilterError(PromptOrganizerException):
    """No prompts matched the filter settings."""


class PersistenceError(PromptOrganizerException):
    """A storage write failed."""


class ErrorCode(str, Enum):
    CONFIGURATION_ERROR = "CONFIGURATION_ERROR"
    NETWORK_ERROR = "NETWORK_ERROR"
    API_ERROR = "API_ERROR"
    GENERATION_ERROR = "GENERATION_ERROR"
    TIMEOUT = "TIMEOUT"
    CANCELLED = "CANCELLED"
    NO_PROMPTS = "NO_PROMPTS"
    PERSISTENCE_ERROR = "PERSISTENCE_ERROR"
    BUSY = "BUSY"
    UNKNOWN = "UNKNOWN"


class OrganizerError(Exception):
    """Boundary error with a discriminating code."""

    def __init__(self, code: ErrorCode, message: str):
        super().__init__(message)
        self.code = code
        self.message = message

    @property
    def is_cancellation(self) -> bool:
        return self.code == ErrorCode.CANCELLED

    def __repr__(self) -> str:
        return f"OrganizerError(code={self.code.value!r}, message={self.message!r})"


_LLM_ERROR_CODES = {
    LLMErrorType.API_KEY_MISSING: ErrorCode.CONFIGURATION_ERROR,
    LLMErrorType.NETWORK_ERROR: ErrorCode.NETWORK_ERROR,
    LLMErrorType.API_ERROR: ErrorCode.API_ERROR,
    LLMErrorType.CANCELLED: ErrorCode.CANCELLED,
    LLMErrorType.TIMEOUT: ErrorCode.TIMEOUT,
    LLMErrorType.INVALID_RESPONSE: ErrorCode.GENERATION_ERROR,
}

_ERROR_CODES = {
    ConfigurationError: ErrorCode.CONFIGURATION_ERROR,
    NetworkError: ErrorCode.NETWORK_ERROR,
    GenerationError: ErrorCode.GENERATION_ERROR,
    CancellationError: ErrorCode.CANCELLED,
    FilterError: ErrorCode.NO_PROMPTS,
    PersistenceError: ErrorCode.PERSISTENCE_ERROR,
}


def normalize_error(exc: BaseException) -> OrganizerError:
    """Map any exception to an OrganizerError, keeping the raw message."""
    if isinstance(exc, OrganizerError):
        return exc
    if isinstance(exc, LLMError):
        return OrganizerError(_LLM_ERROR_CODES[exc.error_type], exc.message)
    for error_class, code in _ERROR_CODES.items():
        if isinstance(exc, error_class):
            return OrganizerError(code, str(exc))
    return OrganizerError(ErrorCode.UNKNOWN, str(exc) or exc.__class__.__name__)

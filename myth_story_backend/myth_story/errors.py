from enum import Enum
from typing import Any, Optional


class ErrorKind(str, Enum):
    MISSING_CREDENTIAL = "missing_credential"
    INVALID_INPUT = "invalid_input"
    UPSTREAM_REJECTED = "upstream_rejected"
    MALFORMED_RESPONSE = "malformed_response"
    NETWORK_FAILURE = "network_failure"
    TASK_FAILED = "task_failed"


class ProviderError(Exception):
    """Normalized failure of a provider call. `message` is safe to show to the user."""

    kind = ErrorKind.UPSTREAM_REJECTED

    def __init__(self, message: str, *, status_code: Optional[int] = None, details: Any = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.details = details

    def to_dict(self) -> dict:
        data = {"error": self.message, "kind": self.kind.value}
        if self.details is not None:
            data["details"] = self.details
        return data


class MissingCredential(ProviderError):
    kind = ErrorKind.MISSING_CREDENTIAL


class EmptyOrInvalidInput(ProviderError):
    kind = ErrorKind.INVALID_INPUT


class EmptyPrompt(EmptyOrInvalidInput):
    pass


class UpstreamRejected(ProviderError):
    kind = ErrorKind.UPSTREAM_REJECTED

    @property
    def quota_exceeded(self) -> bool:
        return self.status_code == 429


class MalformedUpstreamResponse(ProviderError):
    kind = ErrorKind.MALFORMED_RESPONSE


class NetworkFailure(ProviderError):
    kind = ErrorKind.NETWORK_FAILURE


class TaskFailed(ProviderError):
    kind = ErrorKind.TASK_FAILED


def quota_message(provider: str) -> str:
    return f"{provider} quota exceeded. Please try again later."

"""
Error taxonomy for the orchestration core.

Every error carries a category and a retryable flag so callers (the retry
policy, the phase engine, the HTTP adapter) can decide what to do without
string matching on messages.
"""

from typing import Optional


class OpsAgentError(Exception):
    category = "internal"
    retryable = False

    def __init__(self, message: str, *, detail: Optional[dict] = None):
        super().__init__(message)
        self.message = message
        self.detail = detail or {}

    @property
    def kind(self) -> str:
        return type(self).__name__

    def to_dict(self) -> dict:
        return {
            "kind": self.kind,
            "category": self.category,
            "message": self.message,
            "detail": self.detail,
        }


# --- validation ---

class InvalidInputError(OpsAgentError):
    category = "validation"


class InvalidToolArgumentsError(InvalidInputError):
    pass


class InvalidResourceSchemaError(InvalidInputError):
    pass


class InvalidTransitionError(InvalidInputError):
    pass


class ModelResponseError(InvalidInputError):
    """The model answered, but not with something we can use."""


class ManifestConvergenceError(OpsAgentError):
    category = "validation"


# --- permission ---

class ToolPermissionError(OpsAgentError):
    category = "permission"


# --- transient infrastructure ---

class TransientServiceError(OpsAgentError):
    category = "transient"
    retryable = True


# --- precondition ---

class PreconditionError(OpsAgentError):
    category = "precondition"


class SessionNotFoundError(PreconditionError):
    pass


class SessionExpiredError(PreconditionError):
    pass


class ManifestNotFoundError(PreconditionError):
    pass


class SessionDirectoryMissingError(PreconditionError):
    pass


class ToolNotFoundError(PreconditionError):
    pass


# --- timeout ---

class ToolTimeoutError(OpsAgentError):
    category = "timeout"


# --- internal ---

class ModelServiceError(OpsAgentError):
    pass


class ToolLoopExhaustedError(OpsAgentError):
    pass


class PluginDiscoveryError(OpsAgentError):
    def __init__(self, message: str, failed_plugins: list[dict]):
        super().__init__(message, detail={"failed_plugins": failed_plugins})
        self.failed_plugins = failed_plugins


def is_transient(exc: BaseException) -> bool:
    """Default retry predicate: only errors flagged retryable are retried."""
    return isinstance(exc, OpsAgentError) and exc.retryable

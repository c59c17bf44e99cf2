# athenaflow/core/errors.py
"""
Error taxonomy shared by the gateway, extractor, deploy engine and
auto-fix orchestrator.

Recoverable failures (next model, next strategy, next round) are caught
where they happen; only the aggregate failure reaches the caller.
"""

from typing import Any, List, Optional


class AthenaFlowError(Exception):
    """Base class for all pipeline errors."""
    pass


class ConfigurationError(AthenaFlowError):
    """Missing credential or endpoint. Raised before any network call."""

    def __init__(self, message: str, setting: Optional[str] = None):
        super().__init__(message)
        self.setting = setting


class UpstreamError(AthenaFlowError):
    """Non-2xx or error-shaped response from a model provider."""

    def __init__(
        self,
        message: str,
        status: Optional[int] = None,
        provider: Optional[str] = None,
        fallback_eligible: Optional[bool] = None,
    ):
        super().__init__(message)
        self.status = status
        self.provider = provider
        # None means "let the adapter classify it".
        self.fallback_eligible = fallback_eligible

    @property
    def message(self) -> str:
        return str(self)


class FrameDecodeError(AthenaFlowError):
    """A single malformed stream frame. Never leaves the framing layer."""
    pass


class ValidationError(AthenaFlowError):
    """An attachment exceeded one of the configured caps."""

    def __init__(self, message: str, cap: str, attachment_name: Optional[str] = None):
        super().__init__(message)
        self.cap = cap
        self.attachment_name = attachment_name


class ApplyError(AthenaFlowError):
    """The repository-apply collaborator failed to create a commit."""
    pass


class DeployAttemptError(AthenaFlowError):
    """One deployment strategy candidate failed."""

    def __init__(self, message: str, failure: Any = None):
        super().__init__(message)
        self.failure = failure


class AutoFixError(AthenaFlowError):
    """The auto-fix loop stopped without a successful deployment."""

    def __init__(self, message: str, last_failure: Any = None, rounds: Optional[List[Any]] = None):
        super().__init__(message)
        self.last_failure = last_failure
        self.rounds = list(rounds or [])


class AutoFixBudgetExceeded(AutoFixError):
    """Every allowed auto-fix round ran and the deployment still fails."""
    pass


class OperationCancelled(AthenaFlowError):
    """The caller's cancellation token fired."""
    pass

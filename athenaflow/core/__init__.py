# Core modules
from .cancellation import CancellationToken
from .change_block import ChangeSet, extract_change_set, strip_change_block
from .errors import (
    AthenaFlowError,
    ApplyError,
    AutoFixBudgetExceeded,
    AutoFixError,
    ConfigurationError,
    DeployAttemptError,
    OperationCancelled,
    UpstreamError,
    ValidationError,
)

__all__ = [
    "CancellationToken",
    "ChangeSet",
    "extract_change_set",
    "strip_change_block",
    "AthenaFlowError",
    "ApplyError",
    "AutoFixBudgetExceeded",
    "AutoFixError",
    "ConfigurationError",
    "DeployAttemptError",
    "OperationCancelled",
    "UpstreamError",
    "ValidationError",
]

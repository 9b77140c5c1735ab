"""
Pipeline Errors

Error taxonomy for webhook intake, validation and ledger persistence.
Each error carries a category and metadata for structured logging.
"""

from typing import Any, Dict, Optional


class PipelineError(RuntimeError):
    """Base error for pipeline components."""

    category: str = "runtime"
    retryable: bool = False

    def __init__(self, message: str, *, metadata: Optional[Dict[str, Any]] = None, retryable: Optional[bool] = None) -> None:
        super().__init__(message)
        self.metadata = metadata or {}
        if retryable is not None:
            self.retryable = retryable


class AuthenticationFailure(PipelineError):
    """Raised when a webhook signature or token does not verify (HTTP 401)."""

    category = "auth"


class ConfigurationMissing(PipelineError):
    """Raised when a shared secret or access credential is not configured (HTTP 500)."""

    category = "config"


class BranchNamingViolation(PipelineError):
    """Raised when a branch does not match either role pattern."""

    category = "branch_naming"


class StageValidationFailure(PipelineError):
    """Raised when one or more validation stages report invalid."""

    category = "validation"


class ReviewAgentFailure(PipelineError):
    """Raised when the review agent cannot produce feedback."""

    category = "review"
    retryable = True


class NetworkSideEffectFailure(PipelineError):
    """Status or comment post failed. Logged, never fatal."""

    category = "side_effect"
    retryable = True


class PersistenceRaceFailure(PipelineError):
    """Sequence allocation exhausted its retries under contention."""

    category = "persistence"
    retryable = True


class DuplicateLedgerRow(PipelineError):
    """Insert collided with the (project, source, webhook, branch) unique key."""

    category = "persistence"
    retryable = True

class OrchestratorError(Exception):
    """Base class for deployment plan errors."""

    def __init__(self, message: str, step=None, artifacts=None):
        super().__init__(message)
        self.step = step
        self.artifacts = dict(artifacts or {})


class PlanConfigError(OrchestratorError, ValueError):
    """Raised when a plan file is malformed."""


class DependencyOrderError(OrchestratorError, ValueError):
    """Raised when a step references an artifact that no earlier step produces."""


class ChainSubmissionError(OrchestratorError):
    """Raised when the chain client fails to submit or confirm a step."""

    def __init__(self, reason: str, step=None, artifacts=None):
        super().__init__(reason, step=step, artifacts=artifacts)
        self.reason = reason


class LedgerWriteError(OrchestratorError):
    """Raised when a ledger record cannot be durably written."""


class AlreadyResolvedMismatch(OrchestratorError):
    """Raised when the ledger disagrees with itself or with the plan for a step."""

"""
Error types surfaced by the reconciliation engine.

Each error carries enough context (transaction or match ids) for the UI to
explain why an operation could not be applied.
"""

from typing import Any, Dict, Iterable, Optional


class ReconciliationError(Exception):
    """Base exception for reconciliation failures."""
    code = "reconciliation_error"

    def __init__(
        self,
        message: str,
        transaction_ids: Optional[Iterable[str]] = None,
        match_id: Optional[str] = None,
        details: Any = None,
    ):
        super().__init__(message)
        self.message = message
        self.transaction_ids = list(transaction_ids or [])
        self.match_id = match_id
        self.details = details

    def to_dict(self) -> Dict[str, Any]:
        return {
            "code": self.code,
            "message": self.message,
            "transaction_ids": self.transaction_ids,
            "match_id": self.match_id,
            "details": self.details,
        }


class NotFoundError(ReconciliationError):
    """Statement, transaction or match does not exist."""
    code = "not_found"


class ConflictError(ReconciliationError):
    """A transaction was already matched by another operation."""
    code = "conflict"


class ImbalanceError(ReconciliationError):
    """Bank and ledger sides of a candidate do not sum to the same amount."""
    code = "imbalance"


class ValidationError(ReconciliationError):
    """Ill-formed candidate, or an operation not allowed in the current state."""
    code = "validation_error"


class SearchBudgetExceeded(ReconciliationError):
    """Combinatorial search for an anchor ran out of iterations or time."""
    code = "search_budget_exceeded"

    def __init__(self, message: str, anchor_id: str, iterations: int = 0):
        super().__init__(message, transaction_ids=[anchor_id], details={"iterations": iterations})
        self.anchor_id = anchor_id
        self.iterations = iterations


class VersionConflict(ReconciliationError):
    """
    Optimistic concurrency check failed inside an atomic update.
    Raised by repositories; the resolver retries before surfacing ConflictError.
    """
    code = "version_conflict"

"""Enumerations for the bank reconciliation engine."""

from enum import Enum


class StatementStatus(str, Enum):
    """
    Lifecycle of an imported bank statement.

    IMPORTED: Created by ingestion, nothing confirmed yet
    RECONCILING: At least one match has been confirmed
    RECONCILED: Terminal, no further matching permitted
    """
    IMPORTED = "imported"
    RECONCILING = "reconciling"
    RECONCILED = "reconciled"


class BankMatchStatus(str, Enum):
    """Match state of a single bank transaction."""
    UNMATCHED = "unmatched"
    MATCHED = "matched"
    RECONCILED = "reconciled"


class MatchStatus(str, Enum):
    """State of a reconciliation match record."""
    SUGGESTED = "suggested"
    CONFIRMED = "confirmed"
    REJECTED = "rejected"


class MatchType(str, Enum):
    """Shape of a match: bank side count to ledger side count."""
    ONE_TO_ONE = "one_to_one"
    ONE_TO_MANY = "one_to_many"      # One bank line, several ledger entries
    MANY_TO_ONE = "many_to_one"      # Several bank lines, one ledger entry
    MANY_TO_MANY = "many_to_many"

    @classmethod
    def from_sizes(cls, bank_count: int, ledger_count: int) -> "MatchType":
        if bank_count == 1 and ledger_count == 1:
            return cls.ONE_TO_ONE
        if bank_count == 1:
            return cls.ONE_TO_MANY
        if ledger_count == 1:
            return cls.MANY_TO_ONE
        return cls.MANY_TO_MANY


class MatchConfidence(str, Enum):
    """Confidence level of a match."""
    HIGH = "high"          # At or above the auto-match threshold
    MEDIUM = "medium"      # Surfaced for human review
    LOW = "low"            # Below the suggest threshold


class Direction(str, Enum):
    """Direction of a cash movement."""
    INFLOW = "inflow"      # Money in (bank credit)
    OUTFLOW = "outflow"    # Money out (bank debit)


class TransactionSide(str, Enum):
    """Which side of the reconciliation a transaction comes from."""
    BANK = "bank"
    LEDGER = "ledger"


class AuditAction(str, Enum):
    """Type of audit action."""
    CANDIDATES_GENERATED = "candidates_generated"
    SEARCH_BUDGET_EXCEEDED = "search_budget_exceeded"
    MATCH_SUGGESTED = "match_suggested"
    MATCH_CONFIRMED = "match_confirmed"
    MATCH_REJECTED = "match_rejected"
    MATCH_UNMATCHED = "match_unmatched"
    MATCH_FAILED = "match_failed"
    AUTO_MATCH_COMPLETED = "auto_match_completed"
    STATEMENT_RECONCILED = "statement_reconciled"
    RECONCILIATION_BLOCKED = "reconciliation_blocked"

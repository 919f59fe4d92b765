"""Data models for the bank reconciliation engine."""

from .enums import (
    AuditAction,
    BankMatchStatus,
    Direction,
    MatchConfidence,
    MatchStatus,
    MatchType,
    StatementStatus,
    TransactionSide,
)
from .transaction import (
    AccountingTransaction,
    BankStatement,
    BankTransaction,
)
from .reconciliation import (
    AuditEntry,
    AutoMatchResult,
    ManualReviewItem,
    MatchOutcome,
    MatchStatistics,
    OutstandingCheque,
    ReconciliationMatch,
    ReconciliationReport,
    ReconciliationStats,
    ScoreBreakdown,
)

__all__ = [
    # Enums
    "AuditAction",
    "BankMatchStatus",
    "Direction",
    "MatchConfidence",
    "MatchStatus",
    "MatchType",
    "StatementStatus",
    "TransactionSide",
    # Transactions
    "AccountingTransaction",
    "BankStatement",
    "BankTransaction",
    # Reconciliation
    "AuditEntry",
    "AutoMatchResult",
    "ManualReviewItem",
    "MatchOutcome",
    "MatchStatistics",
    "OutstandingCheque",
    "ReconciliationMatch",
    "ReconciliationReport",
    "ReconciliationStats",
    "ScoreBreakdown",
]

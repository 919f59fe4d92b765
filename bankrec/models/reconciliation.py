"""Reconciliation match, result and report models."""

from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Optional, List, Dict, Any, FrozenSet, Tuple
from uuid import uuid4

from .enums import (
    AuditAction,
    MatchConfidence,
    MatchStatus,
    MatchType,
    TransactionSide,
)
from .transaction import AccountingTransaction, BankStatement, BankTransaction


@dataclass
class ScoreBreakdown:
    """How a confidence score was assembled from its signals."""
    amount_score: float = 0.0
    date_score: float = 0.0
    reference_score: float = 0.0
    description_score: float = 0.0

    raw_total: float = 0.0   # Uncapped sum of signals
    total: float = 0.0       # Capped confidence score
    level: MatchConfidence = MatchConfidence.LOW

    amount_difference_cents: int = 0
    days_apart: Optional[int] = None
    factors: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "amount_score": self.amount_score,
            "date_score": self.date_score,
            "reference_score": self.reference_score,
            "description_score": self.description_score,
            "raw_total": self.raw_total,
            "total": self.total,
            "level": self.level.value,
            "amount_difference_cents": self.amount_difference_cents,
            "days_apart": self.days_apart,
            "factors": list(self.factors),
        }


@dataclass
class ReconciliationMatch:
    """
    A grouping of bank and ledger transactions believed to be one economic event.

    One record type covers every shape; match_type tags which one.
    """
    id: str = field(default_factory=lambda: str(uuid4()))
    statement_id: str = ""

    # Members (ordered)
    bank_transaction_ids: List[str] = field(default_factory=list)
    accounting_transaction_ids: List[str] = field(default_factory=list)
    match_type: MatchType = MatchType.ONE_TO_ONE

    # Amounts (in cents, signed)
    bank_total_cents: int = 0
    accounting_total_cents: int = 0

    # Quality
    confidence_score: float = 0.0
    confidence: MatchConfidence = MatchConfidence.LOW
    score_breakdown: Optional[ScoreBreakdown] = None
    match_reason: str = ""

    status: MatchStatus = MatchStatus.SUGGESTED

    # Audit
    created_by: str = "system"
    created_at: datetime = field(default_factory=datetime.utcnow)
    confirmed_by: Optional[str] = None
    confirmed_at: Optional[datetime] = None
    rejected_by: Optional[str] = None
    rejected_at: Optional[datetime] = None

    version: int = 0

    @property
    def gap_cents(self) -> int:
        return self.bank_total_cents - self.accounting_total_cents

    @property
    def group_size(self) -> int:
        """Number of transactions involved in this match."""
        return len(self.bank_transaction_ids) + len(self.accounting_transaction_ids)

    @property
    def member_key(self) -> Tuple[FrozenSet[str], FrozenSet[str]]:
        return (
            frozenset(self.bank_transaction_ids),
            frozenset(self.accounting_transaction_ids),
        )

    def is_balanced(self, epsilon_cents: int) -> bool:
        return abs(self.gap_cents) <= epsilon_cents

    def overlaps(self, bank_ids: set, accounting_ids: set) -> bool:
        return bool(
            bank_ids.intersection(self.bank_transaction_ids) or
            accounting_ids.intersection(self.accounting_transaction_ids)
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "statement_id": self.statement_id,
            "bank_transaction_ids": list(self.bank_transaction_ids),
            "accounting_transaction_ids": list(self.accounting_transaction_ids),
            "match_type": self.match_type.value,
            "bank_total_cents": self.bank_total_cents,
            "accounting_total_cents": self.accounting_total_cents,
            "confidence_score": self.confidence_score,
            "confidence": self.confidence.value,
            "score_breakdown": self.score_breakdown.to_dict() if self.score_breakdown else None,
            "match_reason": self.match_reason,
            "status": self.status.value,
            "created_by": self.created_by,
            "created_at": self.created_at.isoformat(),
            "confirmed_by": self.confirmed_by,
            "confirmed_at": self.confirmed_at.isoformat() if self.confirmed_at else None,
            "rejected_by": self.rejected_by,
            "rejected_at": self.rejected_at.isoformat() if self.rejected_at else None,
        }


@dataclass
class ManualReviewItem:
    """An anchor the candidate search gave up on."""
    transaction_id: str = ""
    side: TransactionSide = TransactionSide.BANK
    amount_cents: int = 0
    reason: str = ""
    iterations: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "transaction_id": self.transaction_id,
            "side": self.side.value,
            "amount_cents": self.amount_cents,
            "reason": self.reason,
            "iterations": self.iterations,
        }


@dataclass
class MatchOutcome:
    """Per-candidate result of a batch operation."""
    candidate_id: str
    success: bool
    match: Optional[ReconciliationMatch] = None
    error: Optional[Exception] = None

    @property
    def error_message(self) -> Optional[str]:
        return str(self.error) if self.error else None

    def to_dict(self) -> Dict[str, Any]:
        error = None
        if self.error is not None:
            error = self.error.to_dict() if hasattr(self.error, "to_dict") else {"message": str(self.error)}
        return {
            "candidate_id": self.candidate_id,
            "success": self.success,
            "match": self.match.to_dict() if self.match else None,
            "error": error,
        }


@dataclass
class AutoMatchResult:
    """Result of an auto-match sweep over one statement."""
    statement_id: str = ""
    threshold: float = 0.0
    matched: int = 0
    skipped: int = 0
    remaining: int = 0
    errors: List[str] = field(default_factory=list)
    outcomes: List[MatchOutcome] = field(default_factory=list)
    manual_review: List[ManualReviewItem] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "statement_id": self.statement_id,
            "threshold": self.threshold,
            "matched": self.matched,
            "skipped": self.skipped,
            "remaining": self.remaining,
            "errors": list(self.errors),
            "outcomes": [o.to_dict() for o in self.outcomes],
            "manual_review": [m.to_dict() for m in self.manual_review],
        }


@dataclass
class OutstandingCheque:
    """An issued cheque the bank has not cleared against the ledger yet."""
    transaction_id: str
    cheque_number: str
    amount_cents: int
    transaction_date: Optional[date] = None
    description: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "transaction_id": self.transaction_id,
            "cheque_number": self.cheque_number,
            "amount_cents": self.amount_cents,
            "amount": self.amount_cents / 100.0,
            "transaction_date": self.transaction_date.isoformat() if self.transaction_date else None,
            "description": self.description,
        }


@dataclass
class ReconciliationStats:
    """Statement-level statistics; computed on demand, never stored."""
    statement_id: str = ""
    total_bank_transactions: int = 0
    matched_count: int = 0
    unmatched_count: int = 0
    accepted_outstanding_count: int = 0

    # Amounts (in cents)
    statement_balance_cents: int = 0
    reconciled_amount_cents: int = 0
    unreconciled_amount_cents: int = 0
    outstanding_cheques: List[OutstandingCheque] = field(default_factory=list)
    outstanding_cheques_total_cents: int = 0

    @property
    def reconciled_amount(self) -> float:
        return self.reconciled_amount_cents / 100.0

    @property
    def unreconciled_amount(self) -> float:
        return self.unreconciled_amount_cents / 100.0

    @property
    def percentage_complete(self) -> float:
        """Percentage of bank transactions matched."""
        if self.total_bank_transactions == 0:
            return 0.0
        return (self.matched_count / self.total_bank_transactions) * 100

    def to_dict(self) -> Dict[str, Any]:
        return {
            "statement_id": self.statement_id,
            "total_bank_transactions": self.total_bank_transactions,
            "matched_count": self.matched_count,
            "unmatched_count": self.unmatched_count,
            "accepted_outstanding_count": self.accepted_outstanding_count,
            "statement_balance": self.statement_balance_cents / 100.0,
            "reconciled_amount": self.reconciled_amount,
            "unreconciled_amount": self.unreconciled_amount,
            "outstanding_cheques": [c.to_dict() for c in self.outstanding_cheques],
            "outstanding_cheques_total": self.outstanding_cheques_total_cents / 100.0,
            "percentage_complete": self.percentage_complete,
        }


@dataclass
class ReconciliationReport:
    """Audit/export snapshot of a statement's reconciliation."""
    statement: BankStatement
    stats: ReconciliationStats
    matches: List[ReconciliationMatch] = field(default_factory=list)
    unmatched_bank_transactions: List[BankTransaction] = field(default_factory=list)
    unmatched_accounting_transactions: List[AccountingTransaction] = field(default_factory=list)
    generated_at: datetime = field(default_factory=datetime.utcnow)

    @property
    def statement_id(self) -> str:
        return self.statement.id

    def matches_with_status(self, status: MatchStatus) -> List[ReconciliationMatch]:
        return [m for m in self.matches if m.status == status]

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "statement_id": self.statement.id,
            "generated_at": self.generated_at.isoformat(),
            "statement": self.statement.to_dict(),
        }
        data.update(self.stats.to_dict())
        data.update({
            "matches": [m.to_dict() for m in self.matches],
            "confirmed_matches": len(self.matches_with_status(MatchStatus.CONFIRMED)),
            "suggested_matches": len(self.matches_with_status(MatchStatus.SUGGESTED)),
            "rejected_matches": len(self.matches_with_status(MatchStatus.REJECTED)),
            "unmatched_bank_transactions": [t.to_dict() for t in self.unmatched_bank_transactions],
            "unmatched_accounting_transactions": [
                t.to_dict() for t in self.unmatched_accounting_transactions
            ],
        })
        return data


@dataclass
class MatchStatistics:
    """Counts of a statement's matches by status, type and confidence."""
    statement_id: str = ""
    total: int = 0
    by_status: Dict[str, int] = field(default_factory=dict)
    by_type: Dict[str, int] = field(default_factory=dict)
    by_confidence: Dict[str, int] = field(default_factory=dict)
    average_confirmed_score: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "statement_id": self.statement_id,
            "total": self.total,
            "by_status": dict(self.by_status),
            "by_type": dict(self.by_type),
            "by_confidence": dict(self.by_confidence),
            "average_confirmed_score": self.average_confirmed_score,
        }


@dataclass
class AuditEntry:
    """An entry in the audit log."""
    id: str = field(default_factory=lambda: str(uuid4()))
    timestamp: datetime = field(default_factory=datetime.utcnow)

    # Action
    action: AuditAction = AuditAction.CANDIDATES_GENERATED

    # Context
    statement_id: Optional[str] = None
    match_id: Optional[str] = None
    transaction_ids: List[str] = field(default_factory=list)
    actor: str = "system"

    # Details
    message: str = ""
    details: Dict[str, Any] = field(default_factory=dict)

    # Outcome
    success: bool = True
    error_message: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "timestamp": self.timestamp.isoformat(),
            "action": self.action.value,
            "statement_id": self.statement_id,
            "match_id": self.match_id,
            "transaction_ids": self.transaction_ids,
            "actor": self.actor,
            "message": self.message,
            "details": self.details,
            "success": self.success,
            "error_message": self.error_message,
        }

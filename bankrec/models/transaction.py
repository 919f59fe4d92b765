"""Statement and transaction models for the bank reconciliation engine."""

from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Optional, List, Dict, Any
from uuid import uuid4

from .enums import (
    BankMatchStatus,
    Direction,
    StatementStatus,
)


@dataclass
class BankStatement:
    """
    An imported batch of bank transactions for one account and period.
    All monetary amounts are stored in CENTS (integer) to avoid floating point errors.
    """
    id: str = field(default_factory=lambda: str(uuid4()))
    account_id: str = ""

    # Period
    period_start: Optional[date] = None
    period_end: Optional[date] = None

    # Balances (cents)
    opening_balance_cents: int = 0
    closing_balance_cents: int = 0
    currency: str = "INR"

    # Lifecycle
    status: StatementStatus = StatementStatus.IMPORTED
    accepted_outstanding_ids: List[str] = field(default_factory=list)
    reconciled_at: Optional[datetime] = None
    reconciled_by: Optional[str] = None

    # Audit
    created_at: datetime = field(default_factory=datetime.utcnow)
    version: int = 0

    @property
    def opening_balance(self) -> float:
        return self.opening_balance_cents / 100.0

    @property
    def closing_balance(self) -> float:
        return self.closing_balance_cents / 100.0

    @property
    def is_reconciled(self) -> bool:
        return self.status == StatementStatus.RECONCILED

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "id": self.id,
            "account_id": self.account_id,
            "period_start": self.period_start.isoformat() if self.period_start else None,
            "period_end": self.period_end.isoformat() if self.period_end else None,
            "opening_balance_cents": self.opening_balance_cents,
            "closing_balance_cents": self.closing_balance_cents,
            "opening_balance": self.opening_balance,
            "closing_balance": self.closing_balance,
            "currency": self.currency,
            "status": self.status.value,
            "accepted_outstanding_ids": list(self.accepted_outstanding_ids),
            "reconciled_at": self.reconciled_at.isoformat() if self.reconciled_at else None,
            "reconciled_by": self.reconciled_by,
        }


@dataclass
class BankTransaction:
    """
    A single line of an imported bank statement.
    Mutated only by the match resolver; never deleted, only re-statused.
    """
    id: str = field(default_factory=lambda: str(uuid4()))
    statement_id: str = ""

    # Temporal
    transaction_date: Optional[date] = None
    value_date: Optional[date] = None

    description: str = ""

    # Financial data (ALL IN CENTS - at most one side non-zero)
    debit_cents: int = 0
    credit_cents: int = 0
    balance_cents: Optional[int] = None

    reference: Optional[str] = None
    cheque_number: Optional[str] = None

    # Reconciliation state
    match_status: BankMatchStatus = BankMatchStatus.UNMATCHED
    match_ids: List[str] = field(default_factory=list)

    version: int = 0

    def __post_init__(self):
        if self.debit_cents < 0 or self.credit_cents < 0:
            raise ValueError(f"Bank transaction {self.id} has a negative amount")
        if self.debit_cents and self.credit_cents:
            raise ValueError(
                f"Bank transaction {self.id} has both debit and credit amounts"
            )

    @property
    def amount_cents(self) -> int:
        """Absolute movement in cents."""
        return self.credit_cents or self.debit_cents

    @property
    def signed_amount_cents(self) -> int:
        """Credits positive, debits negative."""
        return self.credit_cents - self.debit_cents

    @property
    def amount(self) -> float:
        return self.amount_cents / 100.0

    @property
    def direction(self) -> Direction:
        return Direction.OUTFLOW if self.debit_cents else Direction.INFLOW

    @property
    def is_debit(self) -> bool:
        return self.debit_cents > 0

    @property
    def is_matched(self) -> bool:
        return self.match_status in (
            BankMatchStatus.MATCHED,
            BankMatchStatus.RECONCILED,
        )

    @property
    def current_match_id(self) -> Optional[str]:
        """Most recent associated match while the transaction is matched."""
        if self.is_matched and self.match_ids:
            return self.match_ids[-1]
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "statement_id": self.statement_id,
            "transaction_date": self.transaction_date.isoformat() if self.transaction_date else None,
            "value_date": self.value_date.isoformat() if self.value_date else None,
            "description": self.description,
            "debit_cents": self.debit_cents,
            "credit_cents": self.credit_cents,
            "amount": self.amount,
            "balance_cents": self.balance_cents,
            "reference": self.reference,
            "cheque_number": self.cheque_number,
            "match_status": self.match_status.value,
            "match_ids": list(self.match_ids),
        }


@dataclass
class AccountingTransaction:
    """
    Read-only view over a ledger transaction.
    The engine only reads open ones and writes back the reconciled flag.
    """
    id: str = field(default_factory=lambda: str(uuid4()))
    account_id: str = ""

    transaction_date: Optional[date] = None
    amount_cents: int = 0
    direction: Direction = Direction.INFLOW
    currency: str = "INR"

    reference: Optional[str] = None
    cheque_number: Optional[str] = None
    description: str = ""

    # Reconciliation state
    reconciled: bool = False
    match_id: Optional[str] = None

    version: int = 0

    def __post_init__(self):
        if self.amount_cents < 0:
            raise ValueError(
                f"Ledger transaction {self.id} amount must be absolute; use direction"
            )

    @property
    def signed_amount_cents(self) -> int:
        """Inflows positive, outflows negative."""
        if self.direction == Direction.OUTFLOW:
            return -self.amount_cents
        return self.amount_cents

    @property
    def amount(self) -> float:
        return self.amount_cents / 100.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "account_id": self.account_id,
            "transaction_date": self.transaction_date.isoformat() if self.transaction_date else None,
            "amount_cents": self.amount_cents,
            "amount": self.amount,
            "direction": self.direction.value,
            "currency": self.currency,
            "reference": self.reference,
            "cheque_number": self.cheque_number,
            "description": self.description,
            "reconciled": self.reconciled,
            "match_id": self.match_id,
        }

"""
Repository contract used by the reconciliation engine.

Storage is an external collaborator; the engine only needs versioned reads
and a single multi-record compare-and-swap write.
"""

from abc import ABC, abstractmethod
from datetime import date
from typing import Dict, Iterable, List, Optional, Tuple, Union

from ..models import (
    AccountingTransaction,
    BankStatement,
    BankTransaction,
    MatchStatus,
    ReconciliationMatch,
)

Record = Union[BankStatement, BankTransaction, AccountingTransaction, ReconciliationMatch]
RecordKey = Tuple[str, str]

STATEMENT = "statement"
BANK = "bank"
LEDGER = "ledger"
MATCH = "match"


def record_key(record: Record) -> RecordKey:
    """(kind, id) key under which a record is versioned."""
    if isinstance(record, BankStatement):
        return (STATEMENT, record.id)
    if isinstance(record, BankTransaction):
        return (BANK, record.id)
    if isinstance(record, AccountingTransaction):
        return (LEDGER, record.id)
    if isinstance(record, ReconciliationMatch):
        return (MATCH, record.id)
    raise TypeError(f"Unsupported record type: {type(record).__name__}")


class ReconciliationRepository(ABC):
    """Persistence operations the engine depends on."""

    # Reads

    @abstractmethod
    def get_statement(self, statement_id: str) -> Optional[BankStatement]:
        ...

    @abstractmethod
    def read_statement_transactions(self, statement_id: str) -> List[BankTransaction]:
        ...

    @abstractmethod
    def read_open_ledger_transactions(
        self,
        account_id: str,
        start: Optional[date] = None,
        end: Optional[date] = None,
    ) -> List[AccountingTransaction]:
        """Unreconciled ledger transactions of an account, optionally date-bounded."""
        ...

    @abstractmethod
    def get_bank_transaction(self, transaction_id: str) -> Optional[BankTransaction]:
        ...

    @abstractmethod
    def get_ledger_transaction(self, transaction_id: str) -> Optional[AccountingTransaction]:
        ...

    @abstractmethod
    def get_match(self, match_id: str) -> Optional[ReconciliationMatch]:
        ...

    @abstractmethod
    def list_matches(
        self,
        statement_id: str,
        status: Optional[MatchStatus] = None,
    ) -> List[ReconciliationMatch]:
        ...

    # Writes

    @abstractmethod
    def create_match(self, match: ReconciliationMatch) -> ReconciliationMatch:
        ...

    @abstractmethod
    def update_match(self, match: ReconciliationMatch) -> ReconciliationMatch:
        """Compare-and-swap a single match on its version."""
        ...

    @abstractmethod
    def atomic_update(
        self,
        expected_versions: Dict[RecordKey, int],
        writes: Iterable[Record],
    ) -> List[Record]:
        """
        Apply all writes or none.

        Every existing record touched must be listed in expected_versions with
        its current version; records not yet stored are inserted. Raises
        VersionConflict when any version has moved.

        Returns:
            The stored records with their new versions
        """
        ...

    # Seeding (ingestion / ledger collaborators)

    @abstractmethod
    def add_statement(self, statement: BankStatement) -> BankStatement:
        ...

    @abstractmethod
    def add_bank_transactions(self, transactions: Iterable[BankTransaction]) -> List[BankTransaction]:
        ...

    @abstractmethod
    def add_ledger_transactions(
        self,
        transactions: Iterable[AccountingTransaction],
    ) -> List[AccountingTransaction]:
        ...

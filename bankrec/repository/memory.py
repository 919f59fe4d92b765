"""
In-memory repository with optimistic versioning.
"""

import copy
import threading
from datetime import date
from typing import Dict, Iterable, List, Optional

import structlog

from ..errors import NotFoundError, ValidationError, VersionConflict
from ..models import (
    AccountingTransaction,
    BankStatement,
    BankTransaction,
    MatchStatus,
    ReconciliationMatch,
)
from .base import (
    BANK,
    LEDGER,
    MATCH,
    STATEMENT,
    Record,
    RecordKey,
    ReconciliationRepository,
    record_key,
)

logger = structlog.get_logger()


class InMemoryRepository(ReconciliationRepository):
    """
    Thread-safe dict-backed store.

    Records are copied on the way in and out so callers never hold a
    reference to stored state.
    """

    def __init__(self):
        self._lock = threading.RLock()
        self._records: Dict[str, Dict[str, Record]] = {
            STATEMENT: {},
            BANK: {},
            LEDGER: {},
            MATCH: {},
        }

    def _get(self, kind: str, record_id: str):
        with self._lock:
            record = self._records[kind].get(record_id)
            return copy.deepcopy(record) if record is not None else None

    def _insert(self, record: Record) -> Record:
        kind, record_id = record_key(record)
        with self._lock:
            if record_id in self._records[kind]:
                raise ValidationError(f"{kind} {record_id} already exists", details={"kind": kind})
            self._records[kind][record_id] = copy.deepcopy(record)
            return copy.deepcopy(record)

    # Reads

    def get_statement(self, statement_id: str) -> Optional[BankStatement]:
        return self._get(STATEMENT, statement_id)

    def read_statement_transactions(self, statement_id: str) -> List[BankTransaction]:
        with self._lock:
            rows = [
                copy.deepcopy(t) for t in self._records[BANK].values()
                if t.statement_id == statement_id
            ]
        rows.sort(key=lambda t: (t.transaction_date or date.min, t.id))
        return rows

    def read_open_ledger_transactions(
        self,
        account_id: str,
        start: Optional[date] = None,
        end: Optional[date] = None,
    ) -> List[AccountingTransaction]:
        with self._lock:
            rows = []
            for txn in self._records[LEDGER].values():
                if txn.account_id != account_id or txn.reconciled:
                    continue
                if txn.transaction_date is not None:
                    if start and txn.transaction_date < start:
                        continue
                    if end and txn.transaction_date > end:
                        continue
                rows.append(copy.deepcopy(txn))
        rows.sort(key=lambda t: (t.transaction_date or date.min, t.id))
        return rows

    def get_bank_transaction(self, transaction_id: str) -> Optional[BankTransaction]:
        return self._get(BANK, transaction_id)

    def get_ledger_transaction(self, transaction_id: str) -> Optional[AccountingTransaction]:
        return self._get(LEDGER, transaction_id)

    def get_match(self, match_id: str) -> Optional[ReconciliationMatch]:
        return self._get(MATCH, match_id)

    def list_matches(
        self,
        statement_id: str,
        status: Optional[MatchStatus] = None,
    ) -> List[ReconciliationMatch]:
        with self._lock:
            matches = [
                copy.deepcopy(m) for m in self._records[MATCH].values()
                if m.statement_id == statement_id and (status is None or m.status == status)
            ]
        matches.sort(key=lambda m: (m.created_at, m.id))
        return matches

    # Writes

    def create_match(self, match: ReconciliationMatch) -> ReconciliationMatch:
        return self._insert(match)

    def update_match(self, match: ReconciliationMatch) -> ReconciliationMatch:
        stored = self.atomic_update({(MATCH, match.id): match.version}, [match])
        return stored[0]

    def atomic_update(
        self,
        expected_versions: Dict[RecordKey, int],
        writes: Iterable[Record],
    ) -> List[Record]:
        writes = list(writes)
        with self._lock:
            for (kind, record_id), version in expected_versions.items():
                current = self._records[kind].get(record_id)
                if current is None:
                    raise NotFoundError(f"{kind} {record_id} not found")
                if current.version != version:
                    logger.debug(
                        "Version conflict",
                        kind=kind,
                        record_id=record_id,
                        expected=version,
                        actual=current.version,
                    )
                    raise VersionConflict(
                        f"{kind} {record_id} changed (expected version {version}, "
                        f"found {current.version})",
                        transaction_ids=[record_id] if kind in (BANK, LEDGER) else None,
                        match_id=record_id if kind == MATCH else None,
                    )

            # Everything checked; nothing below can fail halfway
            staged = []
            for record in writes:
                kind, record_id = record_key(record)
                current = self._records[kind].get(record_id)
                if current is not None and (kind, record_id) not in expected_versions:
                    raise VersionConflict(
                        f"{kind} {record_id} written without an expected version"
                    )
                stored = copy.deepcopy(record)
                stored.version = current.version + 1 if current is not None else record.version
                staged.append((kind, record_id, stored))

            for kind, record_id, stored in staged:
                self._records[kind][record_id] = stored

            return [copy.deepcopy(stored) for _, _, stored in staged]

    # Seeding

    def add_statement(self, statement: BankStatement) -> BankStatement:
        return self._insert(statement)

    def add_bank_transactions(self, transactions: Iterable[BankTransaction]) -> List[BankTransaction]:
        added = []
        for txn in transactions:
            if self.get_statement(txn.statement_id) is None:
                raise NotFoundError(
                    f"Statement {txn.statement_id} not found",
                    transaction_ids=[txn.id],
                )
            added.append(self._insert(txn))
        return added

    def add_ledger_transactions(
        self,
        transactions: Iterable[AccountingTransaction],
    ) -> List[AccountingTransaction]:
        return [self._insert(txn) for txn in transactions]

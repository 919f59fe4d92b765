"""
Shared fixtures: a seeded in-memory repository and engine components.
"""

from datetime import date

import pytest

from bankrec.config import Settings
from bankrec.models import (
    AccountingTransaction,
    BankStatement,
    BankTransaction,
    Direction,
)
from bankrec.reconciliation import (
    CandidateGenerator,
    MatchResolver,
    ReconciliationTracker,
    ScoringEngine,
)
from bankrec.repository import InMemoryRepository
from bankrec.utils import AuditLogger

ACCOUNT = "acct-main"


@pytest.fixture
def settings(tmp_path):
    return Settings(_env_file=None, reports_dir=tmp_path / "reports")


@pytest.fixture
def repo():
    return InMemoryRepository()


@pytest.fixture
def audit(settings):
    return AuditLogger(trail_id="test", settings=settings)


@pytest.fixture
def statement(repo):
    return repo.add_statement(BankStatement(
        id="stmt-1",
        account_id=ACCOUNT,
        period_start=date(2025, 1, 1),
        period_end=date(2025, 1, 31),
        opening_balance_cents=0,
        closing_balance_cents=100000,
    ))


@pytest.fixture
def scoring(settings):
    return ScoringEngine(settings)


@pytest.fixture
def generator(repo, settings, audit):
    return CandidateGenerator(repo, settings=settings, audit_logger=audit)


@pytest.fixture
def resolver(repo, settings, audit):
    return MatchResolver(repo, settings=settings, audit_logger=audit)


@pytest.fixture
def tracker(repo, settings, audit):
    return ReconciliationTracker(repo, settings=settings, audit_logger=audit)


def bank_txn(txn_id, amount_cents, day=15, statement_id="stmt-1", **kwargs):
    """Positive amounts are credits, negative amounts debits."""
    if amount_cents >= 0:
        kwargs.setdefault("credit_cents", amount_cents)
    else:
        kwargs.setdefault("debit_cents", -amount_cents)
    return BankTransaction(
        id=txn_id,
        statement_id=statement_id,
        transaction_date=date(2025, 1, day),
        **kwargs,
    )


def ledger_txn(txn_id, amount_cents, day=15, account_id=ACCOUNT, **kwargs):
    """Positive amounts are inflows, negative amounts outflows."""
    return AccountingTransaction(
        id=txn_id,
        account_id=account_id,
        transaction_date=date(2025, 1, day),
        amount_cents=abs(amount_cents),
        direction=Direction.INFLOW if amount_cents >= 0 else Direction.OUTFLOW,
        **kwargs,
    )

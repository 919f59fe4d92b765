"""
Tests for candidate generation and the bounded subset-sum search.
"""

import itertools

import pytest
from datetime import date

from bankrec.errors import NotFoundError, SearchBudgetExceeded
from bankrec.models import (
    AccountingTransaction,
    AuditAction,
    BankMatchStatus,
    BankStatement,
    Direction,
    MatchConfidence,
    MatchStatus,
    MatchType,
    StatementStatus,
    TransactionSide,
)
from bankrec.reconciliation import CandidateGenerator, SearchConfig, SubsetSumSearch

from conftest import ACCOUNT, bank_txn, ledger_txn


class TestCandidateGenerator:
    """Test suite for CandidateGenerator."""

    def test_one_to_one_exact(self, repo, statement, generator):
        """Test an exact 1:1 candidate."""
        repo.add_bank_transactions([bank_txn("b1", 10000)])
        repo.add_ledger_transactions([ledger_txn("l1", 10000)])

        result = generator.generate(statement.id)

        assert len(result.candidates) == 1
        candidate = result.candidates[0]
        assert candidate.match_type == MatchType.ONE_TO_ONE
        assert candidate.bank_transaction_ids == ["b1"]
        assert candidate.accounting_transaction_ids == ["l1"]
        assert candidate.confidence_score == 1.0
        assert candidate.confidence == MatchConfidence.HIGH
        assert candidate.status == MatchStatus.SUGGESTED

    def test_one_bank_to_many_ledger(self, repo, statement, generator):
        """Bank 30000 against three ledger entries of 10000."""
        repo.add_bank_transactions([bank_txn("b1", 30000)])
        repo.add_ledger_transactions([ledger_txn(f"l{i}", 10000) for i in range(1, 4)])

        result = generator.generate(statement.id)

        assert len(result.candidates) == 1
        candidate = result.candidates[0]
        assert candidate.match_type == MatchType.ONE_TO_MANY
        assert candidate.bank_transaction_ids == ["b1"]
        assert sorted(candidate.accounting_transaction_ids) == ["l1", "l2", "l3"]
        assert candidate.bank_total_cents == 30000
        assert candidate.accounting_total_cents == 30000
        assert result.stats["one_to_many"] == 1

    def test_many_bank_to_one_ledger(self, repo, statement, generator):
        """Test several bank lines settling one ledger entry."""
        repo.add_bank_transactions([bank_txn("b1", 6000), bank_txn("b2", 4000)])
        repo.add_ledger_transactions([ledger_txn("l1", 10000)])

        result = generator.generate(statement.id)

        assert len(result.candidates) == 1
        candidate = result.candidates[0]
        assert candidate.match_type == MatchType.MANY_TO_ONE
        assert sorted(candidate.bank_transaction_ids) == ["b1", "b2"]
        assert candidate.accounting_transaction_ids == ["l1"]

    def test_anchor_with_acceptable_pair_is_not_searched(self, repo, statement, generator):
        """Test that a covered anchor skips the combination search."""
        repo.add_bank_transactions([bank_txn("b1", 10000)])
        repo.add_ledger_transactions([
            ledger_txn("l1", 10000),
            ledger_txn("l2", 6000),
            ledger_txn("l3", 4000),
        ])

        result = generator.generate(statement.id)

        assert [c.match_type for c in result.candidates] == [MatchType.ONE_TO_ONE]

    def test_directions_must_agree(self, repo, statement, generator):
        """Test that credits never pair with outflows."""
        repo.add_bank_transactions([bank_txn("b1", 10000)])
        repo.add_ledger_transactions([ledger_txn("l1", -10000)])

        result = generator.generate(statement.id)

        assert result.candidates == []

    def test_ledger_outside_window_ignored(self, repo, statement, generator):
        """Test the date window on ledger entries."""
        repo.add_bank_transactions([bank_txn("b1", 10000)])
        repo.add_ledger_transactions([
            AccountingTransaction(
                id="l-late",
                account_id=ACCOUNT,
                transaction_date=date(2025, 3, 20),
                amount_cents=10000,
                direction=Direction.INFLOW,
            ),
        ])

        result = generator.generate(statement.id)

        assert result.candidates == []
        assert result.stats["ledger_transactions"] == 0

    def test_other_account_ignored(self, repo, statement, generator):
        """Test that other accounts' ledger entries are ignored."""
        repo.add_bank_transactions([bank_txn("b1", 10000)])
        repo.add_ledger_transactions([ledger_txn("l1", 10000, account_id="acct-other")])

        assert generator.generate(statement.id).candidates == []

    def test_matched_and_zero_bank_lines_skipped(self, repo, statement, generator):
        """Test that matched and zero-amount bank lines are skipped."""
        repo.add_bank_transactions([
            bank_txn("b1", 10000, match_status=BankMatchStatus.MATCHED),
            bank_txn("b0", 0),
        ])
        repo.add_ledger_transactions([ledger_txn("l1", 10000)])

        result = generator.generate(statement.id)

        assert result.candidates == []
        assert result.stats["bank_transactions"] == 0

    def test_sorted_by_score_then_signals(self, repo, statement, generator):
        """Test candidate ordering."""
        repo.add_bank_transactions([bank_txn("b1", 10000), bank_txn("b2", 50000, day=1)])
        repo.add_ledger_transactions([
            ledger_txn("l-near", 10000, day=17),
            ledger_txn("l-same", 10000, day=15),
            ledger_txn("l-tol", 49600, day=25),
        ])

        result = generator.generate(statement.id)
        pairs = [(c.bank_transaction_ids[0], c.accounting_transaction_ids[0]) for c in result.candidates]

        # Both exact pairs cap at 1.0; the same-day one has the larger raw total
        assert pairs == [("b1", "l-same"), ("b1", "l-near"), ("b2", "l-tol")]
        scores = [c.confidence_score for c in result.candidates]
        assert scores == sorted(scores, reverse=True)

    def test_below_suggest_threshold_discarded(self, repo, statement, settings, audit):
        """Test that weak candidates are discarded."""
        settings.suggest_threshold = 0.85
        generator = CandidateGenerator(repo, settings=settings, audit_logger=audit)
        repo.add_bank_transactions([bank_txn("b1", 10000, day=1)])
        repo.add_ledger_transactions([ledger_txn("l1", 9950, day=20)])

        result = generator.generate(statement.id)

        assert result.candidates == []
        assert result.stats["discarded"] == 1

    def test_reconciled_statement_yields_nothing(self, repo, generator):
        """Test that a reconciled statement has no candidates."""
        repo.add_statement(BankStatement(
            id="stmt-closed",
            account_id=ACCOUNT,
            period_start=date(2025, 1, 1),
            period_end=date(2025, 1, 31),
            status=StatementStatus.RECONCILED,
        ))
        repo.add_bank_transactions([bank_txn("b1", 10000, statement_id="stmt-closed")])
        repo.add_ledger_transactions([ledger_txn("l1", 10000)])

        result = generator.generate("stmt-closed")

        assert result.candidates == []
        assert result.manual_review == []

    def test_unknown_statement(self, generator):
        """Test an unknown statement."""
        with pytest.raises(NotFoundError):
            generator.generate("missing")

    def test_iteration_budget_sends_anchor_to_manual_review(self, repo, statement, settings, audit):
        """Test that an exhausted iteration budget flags the anchor for review."""
        generator = CandidateGenerator(
            repo,
            settings=settings,
            audit_logger=audit,
            search_config=SearchConfig(max_iterations=5),
        )
        repo.add_bank_transactions([bank_txn("b1", 10000)])
        amounts = [3000, 3000, 3000, 2500, 2500, 2500, 2000, 2000]
        repo.add_ledger_transactions([ledger_txn(f"l{i}", a) for i, a in enumerate(amounts)])

        result = generator.generate(statement.id)

        assert result.candidates == []
        assert len(result.manual_review) == 1
        item = result.manual_review[0]
        assert item.transaction_id == "b1"
        assert item.side == TransactionSide.BANK
        assert "manual match" in item.reason.lower()
        assert audit.get_entries(action_filter=AuditAction.SEARCH_BUDGET_EXCEEDED.value)

    def test_time_budget_uses_injected_clock(self, repo, statement, settings, audit):
        """Test the time budget with a fake clock."""
        ticks = itertools.count()
        generator = CandidateGenerator(
            repo,
            settings=settings,
            audit_logger=audit,
            search_config=SearchConfig(time_budget_seconds=0.5, clock=lambda: float(next(ticks))),
        )
        repo.add_bank_transactions([bank_txn("b1", 30000)])
        repo.add_ledger_transactions([ledger_txn(f"l{i}", 10000) for i in range(3)])

        result = generator.generate(statement.id)

        assert result.candidates == []
        assert [m.transaction_id for m in result.manual_review] == ["b1"]


class TestSubsetSumSearch:
    """Test suite for the bounded subset-sum search."""

    ITEMS = [("a", 5000), ("b", 3000), ("c", 2000), ("d", 5000)]

    def test_finds_all_groups(self):
        """Test that every balancing group is found."""
        search = SubsetSumSearch(SearchConfig(), epsilon_cents=1)

        groups = search.find("anchor", 10000, self.ITEMS)

        assert sorted(sorted(g) for g in groups) == [
            ["a", "b", "c"],
            ["a", "d"],
            ["b", "c", "d"],
        ]

    def test_group_size_limit(self):
        """Test the maximum group size."""
        search = SubsetSumSearch(SearchConfig(max_group_size=2), epsilon_cents=1)

        groups = search.find("anchor", 10000, self.ITEMS)

        assert [sorted(g) for g in groups] == [["a", "d"]]

    def test_candidate_cap(self):
        """Test the per-anchor candidate cap."""
        search = SubsetSumSearch(SearchConfig(max_candidates_per_anchor=1), epsilon_cents=1)

        assert len(search.find("anchor", 10000, self.ITEMS)) == 1

    def test_single_item_is_not_a_group(self):
        """Test that one item alone is not returned as a group."""
        search = SubsetSumSearch(SearchConfig(), epsilon_cents=1)

        assert search.find("anchor", 5000, [("a", 5000), ("b", 7000)]) == []

    def test_within_epsilon(self):
        """Test groups that balance within epsilon."""
        search = SubsetSumSearch(SearchConfig(), epsilon_cents=1)

        groups = search.find("anchor", 10001, [("a", 5000), ("b", 5000)])

        assert [sorted(g) for g in groups] == [["a", "b"]]

    def test_unreachable_target_returns_quickly(self):
        """Test pruning when the target cannot be reached."""
        search = SubsetSumSearch(SearchConfig(max_iterations=3), epsilon_cents=1)

        assert search.find("anchor", 100000, self.ITEMS) == []
        assert search.iterations == 0

    def test_budget_exceeded(self):
        """Test the search raising when over budget."""
        search = SubsetSumSearch(SearchConfig(max_iterations=2), epsilon_cents=1)

        with pytest.raises(SearchBudgetExceeded) as exc_info:
            search.find("anchor", 10000, self.ITEMS)

        assert exc_info.value.anchor_id == "anchor"
        assert exc_info.value.iterations == 3


if __name__ == "__main__":
    pytest.main([__file__, "-v"])

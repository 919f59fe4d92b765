"""
Tests for the confidence scoring engine.
"""

import pytest
from datetime import date

from bankrec.models import MatchConfidence
from bankrec.reconciliation import ScoringEngine, ScoringWeights

from conftest import bank_txn, ledger_txn


class TestScoringEngine:
    """Test suite for ScoringEngine."""

    def test_exact_amount_same_date(self, scoring):
        """Exact amount on the same day is a capped, auto-eligible score."""
        result = scoring.score([bank_txn("b1", 10000)], [ledger_txn("l1", 10000)])

        assert result.total == 1.0
        assert result.raw_total == 1.5
        assert result.level == MatchConfidence.HIGH
        assert "Exact amount match" in result.factors
        assert "Same date" in result.factors

    def test_amount_within_tolerance(self, scoring):
        """Test the tolerance amount signal."""
        result = scoring.score(
            [bank_txn("b1", 10000, day=1)],
            [ledger_txn("l1", 9950, day=20)],
        )

        assert result.amount_score == 0.8
        assert result.date_score == 0.0
        assert result.total == 0.8
        assert result.level == MatchConfidence.MEDIUM
        assert result.amount_difference_cents == 50

    def test_amount_outside_tolerance_scores_nothing(self, scoring):
        """Test amounts beyond tolerance."""
        result = scoring.score(
            [bank_txn("b1", 10000, day=1)],
            [ledger_txn("l1", 8000, day=20)],
        )

        assert result.amount_score == 0.0
        assert result.level == MatchConfidence.LOW

    def test_opposite_directions_never_score_amount(self, scoring):
        """Test opposite directions."""
        result = scoring.score([bank_txn("b1", 10000)], [ledger_txn("l1", -10000)])

        assert result.amount_score == 0.0
        assert "Direction mismatch" in result.factors

    def test_debit_matches_outflow(self, scoring):
        """Test a debit against an outflow."""
        result = scoring.score([bank_txn("b1", -2500)], [ledger_txn("l1", -2500)])

        assert result.amount_score == 1.0

    def test_date_proximity(self, scoring):
        """Test the date proximity signal."""
        near = scoring.score([bank_txn("b1", 10000, day=15)], [ledger_txn("l1", 10000, day=17)])
        far = scoring.score([bank_txn("b1", 10000, day=15)], [ledger_txn("l1", 10000, day=25)])

        assert near.date_score == 0.3
        assert near.days_apart == 2
        assert far.date_score == 0.0
        assert far.days_apart == 10

    def test_value_date_counts_when_closer(self, scoring):
        """Test the value date signal."""
        bank = bank_txn("b1", 10000, day=10, value_date=date(2025, 1, 12))

        result = scoring.score([bank], [ledger_txn("l1", 10000, day=12)])

        assert result.days_apart == 0
        assert result.date_score == 0.5

    def test_cheque_number_matches_reference_case_insensitive(self, scoring):
        """Test matching cheque numbers to references."""
        bank = bank_txn("b1", -5000, day=2, cheque_number="CHQ-001")
        ledger = ledger_txn("l1", -4000, day=25, reference=" chq-001 ")

        result = scoring.score([bank], [ledger])

        assert result.reference_score == 0.9
        assert "Reference match" in result.factors

    def test_reference_never_lowers_score(self, scoring):
        """Adding a true signal can only raise the score."""
        without = scoring.score(
            [bank_txn("b1", 10000, day=1)],
            [ledger_txn("l1", 9950, day=20)],
        )
        with_ref = scoring.score(
            [bank_txn("b1", 10000, day=1, reference="INV-42")],
            [ledger_txn("l1", 9950, day=20, reference="inv-42")],
        )

        assert with_ref.total >= without.total
        assert with_ref.raw_total > without.raw_total
        assert with_ref.total == 1.0

    def test_description_similarity(self, scoring):
        """Test the description signal."""
        result = scoring.score(
            [bank_txn("b1", 10000, day=1, description="NEFT Acme Corp payment")],
            [ledger_txn("l1", 9950, day=20, description="Payment from Acme Corp")],
        )

        assert result.description_score == 0.1
        assert result.total == pytest.approx(0.9)
        assert result.level == MatchConfidence.HIGH

    def test_group_amounts_compare_totals(self, scoring):
        """Test amount scoring on groups."""
        ledgers = [ledger_txn(f"l{i}", 10000) for i in range(3)]

        result = scoring.score([bank_txn("b1", 30000)], ledgers)

        assert result.amount_score == 1.0
        assert result.total == 1.0

    def test_group_date_gap_is_largest_pair(self, scoring):
        """Test the date gap for groups."""
        ledgers = [ledger_txn("l1", 5000, day=15), ledger_txn("l2", 5000, day=18)]

        result = scoring.score([bank_txn("b1", 10000, day=15)], ledgers)

        assert result.days_apart == 3
        assert result.date_score == 0.3

    def test_empty_side_scores_zero(self, scoring):
        """Test scoring with an empty side."""
        result = scoring.score([bank_txn("b1", 10000)], [])

        assert result.total == 0.0
        assert result.level == MatchConfidence.LOW

    def test_injected_weights(self, settings):
        """Test custom weights."""
        engine = ScoringEngine(settings, weights=ScoringWeights(reference=0.0))

        result = engine.score(
            [bank_txn("b1", 10000, day=1, reference="X1")],
            [ledger_txn("l1", 8000, day=20, reference="x1")],
        )

        assert result.reference_score == 0.0
        assert result.total == 0.0

    def test_classify_thresholds(self, scoring):
        """Test confidence levels."""
        assert scoring.classify(0.95) == MatchConfidence.HIGH
        assert scoring.classify(0.9) == MatchConfidence.HIGH
        assert scoring.classify(0.6) == MatchConfidence.MEDIUM
        assert scoring.classify(0.59) == MatchConfidence.LOW


if __name__ == "__main__":
    pytest.main([__file__, "-v"])

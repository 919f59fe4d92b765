"""
Confidence scoring for bank/ledger match candidates.

Signals are additive and non-negative; the confidence score is the sum
capped at max_score. Adding a true signal can therefore never lower a score.
"""

from dataclasses import dataclass
from datetime import date
from typing import List, Optional, Sequence

import structlog

from ..config import Settings, get_settings
from ..models import (
    AccountingTransaction,
    BankTransaction,
    MatchConfidence,
    ScoreBreakdown,
)
from ..utils.text_similarity import TextSimilarityEngine

logger = structlog.get_logger()


@dataclass(frozen=True)
class ScoringWeights:
    """Signal weights and confidence thresholds."""
    exact_amount: float = 1.0
    amount_tolerance: float = 0.8
    same_date: float = 0.5
    date_proximity: float = 0.3
    reference: float = 0.9
    description: float = 0.1
    max_score: float = 1.0
    auto_match_threshold: float = 0.9
    suggest_threshold: float = 0.6

    @classmethod
    def from_settings(cls, settings: Settings) -> "ScoringWeights":
        return cls(
            exact_amount=settings.score_weight_exact_amount,
            amount_tolerance=settings.score_weight_amount_tolerance,
            same_date=settings.score_weight_same_date,
            date_proximity=settings.score_weight_date_proximity,
            reference=settings.score_weight_reference,
            description=settings.score_weight_description,
            max_score=settings.max_score,
            auto_match_threshold=settings.auto_match_threshold,
            suggest_threshold=settings.suggest_threshold,
        )


class ScoringEngine:
    """
    Scores a set of bank transactions against a set of ledger transactions.

    Pure: reads nothing but its arguments and configuration.
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        weights: Optional[ScoringWeights] = None,
        similarity_engine: Optional[TextSimilarityEngine] = None,
    ):
        self.settings = settings or get_settings()
        self.weights = weights or ScoringWeights.from_settings(self.settings)
        self.similarity = similarity_engine or TextSimilarityEngine(self.settings)

    def score(
        self,
        bank_transactions: Sequence[BankTransaction],
        accounting_transactions: Sequence[AccountingTransaction],
    ) -> ScoreBreakdown:
        """
        Score a candidate.

        Args:
            bank_transactions: Bank side members
            accounting_transactions: Ledger side members

        Returns:
            ScoreBreakdown with per-signal scores, capped total and level
        """
        breakdown = ScoreBreakdown()
        if not bank_transactions or not accounting_transactions:
            breakdown.level = self.classify(0.0)
            return breakdown

        self._score_amount(breakdown, bank_transactions, accounting_transactions)
        self._score_dates(breakdown, bank_transactions, accounting_transactions)
        self._score_reference(breakdown, bank_transactions, accounting_transactions)
        self._score_description(breakdown, bank_transactions, accounting_transactions)

        raw_total = (
            breakdown.amount_score +
            breakdown.date_score +
            breakdown.reference_score +
            breakdown.description_score
        )
        breakdown.raw_total = round(raw_total, 6)
        breakdown.total = round(min(raw_total, self.weights.max_score), 6)
        breakdown.level = self.classify(breakdown.total)
        return breakdown

    def classify(self, score: float) -> MatchConfidence:
        if score >= self.weights.auto_match_threshold:
            return MatchConfidence.HIGH
        if score >= self.weights.suggest_threshold:
            return MatchConfidence.MEDIUM
        return MatchConfidence.LOW

    def _score_amount(self, breakdown, bank_transactions, accounting_transactions) -> None:
        bank_total = sum(t.signed_amount_cents for t in bank_transactions)
        ledger_total = sum(t.signed_amount_cents for t in accounting_transactions)
        difference = abs(bank_total - ledger_total)
        breakdown.amount_difference_cents = difference

        # Money in on one side and out on the other never matches
        if bank_total * ledger_total < 0:
            breakdown.factors.append("Direction mismatch")
            return

        if difference <= self.settings.amount_epsilon_cents:
            breakdown.amount_score = self.weights.exact_amount
            breakdown.factors.append("Exact amount match")
        elif difference <= self.settings.amount_tolerance_cents(max(abs(bank_total), abs(ledger_total))):
            breakdown.amount_score = self.weights.amount_tolerance
            breakdown.factors.append(
                f"Amount within {self.settings.amount_tolerance_ratio:.0%} tolerance"
            )

    def _score_dates(self, breakdown, bank_transactions, accounting_transactions) -> None:
        days_apart = self.days_apart(bank_transactions, accounting_transactions)
        breakdown.days_apart = days_apart
        if days_apart is None:
            return

        if days_apart == 0:
            breakdown.date_score = self.weights.same_date
            breakdown.factors.append("Same date")
        elif days_apart <= self.settings.date_proximity_days:
            breakdown.date_score = self.weights.date_proximity
            breakdown.factors.append(f"Date within {days_apart} day(s)")

    def _score_reference(self, breakdown, bank_transactions, accounting_transactions) -> None:
        bank_refs = self.similarity.reference_keys(
            ref for t in bank_transactions for ref in (t.reference, t.cheque_number)
        )
        ledger_refs = self.similarity.reference_keys(
            ref for t in accounting_transactions for ref in (t.reference, t.cheque_number)
        )
        if bank_refs & ledger_refs:
            breakdown.reference_score = self.weights.reference
            breakdown.factors.append("Reference match")

    def _score_description(self, breakdown, bank_transactions, accounting_transactions) -> None:
        similarity, _, _ = self.similarity.best_match(
            [t.description for t in bank_transactions],
            [t.description for t in accounting_transactions],
        )
        if similarity >= self.similarity.threshold:
            breakdown.description_score = self.weights.description
            breakdown.factors.append(f"Description similarity {similarity:.0%}")

    @staticmethod
    def days_apart(
        bank_transactions: Sequence[BankTransaction],
        accounting_transactions: Sequence[AccountingTransaction],
    ) -> Optional[int]:
        """
        Largest day distance between any bank and any ledger member.
        A bank value date counts when it is closer than the transaction date.
        """
        gaps: List[int] = []
        for bank_txn in bank_transactions:
            bank_dates = [d for d in (bank_txn.transaction_date, bank_txn.value_date) if d]
            if not bank_dates:
                continue
            for ledger_txn in accounting_transactions:
                if ledger_txn.transaction_date is None:
                    continue
                gaps.append(min(_day_gap(d, ledger_txn.transaction_date) for d in bank_dates))
        return max(gaps) if gaps else None

    @staticmethod
    def describe(breakdown: ScoreBreakdown) -> str:
        """Human readable reason for a match."""
        return ", ".join(breakdown.factors) if breakdown.factors else "No matching signals"


def _day_gap(first: date, second: date) -> int:
    return abs((first - second).days)

"""
Candidate generation.

Enumerates 1:1 pairs between unmatched bank transactions and open ledger
transactions, then runs a bounded subset-sum search for anchors that have no
acceptable 1:1 partner:

- Bank anchor vs several ledger entries (ONE_TO_MANY)
- Ledger anchor vs several bank lines (MANY_TO_ONE)
"""

import time
from dataclasses import dataclass, field
from datetime import date, timedelta
from typing import Callable, Dict, List, Optional, Sequence, Set, Tuple

import structlog

from ..config import Settings, get_settings
from ..errors import NotFoundError, SearchBudgetExceeded
from ..models import (
    AccountingTransaction,
    AuditAction,
    BankMatchStatus,
    BankTransaction,
    ManualReviewItem,
    MatchStatus,
    MatchType,
    ReconciliationMatch,
    TransactionSide,
)
from ..repository import ReconciliationRepository
from ..utils.audit_logger import AuditLogger
from .scoring import ScoringEngine

logger = structlog.get_logger()


@dataclass
class SearchConfig:
    """Budget for the per-anchor subset-sum search."""
    max_group_size: int = 5
    max_iterations: int = 20000
    time_budget_seconds: float = 0.5
    max_candidates_per_anchor: int = 10
    clock: Callable[[], float] = time.monotonic

    @classmethod
    def from_settings(cls, settings: Settings) -> "SearchConfig":
        return cls(
            max_group_size=settings.max_group_size,
            max_iterations=settings.search_max_iterations,
            time_budget_seconds=settings.search_time_budget_seconds,
            max_candidates_per_anchor=settings.max_candidates_per_anchor,
        )


@dataclass
class CandidateResult:
    """Ranked, unpersisted candidates for one statement."""
    statement_id: str
    candidates: List[ReconciliationMatch] = field(default_factory=list)
    manual_review: List[ManualReviewItem] = field(default_factory=list)
    stats: Dict[str, int] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "statement_id": self.statement_id,
            "candidates": [c.to_dict() for c in self.candidates],
            "manual_review": [m.to_dict() for m in self.manual_review],
            "stats": dict(self.stats),
        }


class SubsetSumSearch:
    """
    Depth-first search for groups of 2..max_group_size items whose amounts
    sum to a target within epsilon.

    Items are explored largest first with a suffix-sum bound, so branches that
    cannot reach the target are cut early.
    """

    def __init__(self, config: SearchConfig, epsilon_cents: int):
        self.config = config
        self.epsilon = epsilon_cents
        self.iterations = 0

    def find(
        self,
        anchor_id: str,
        target_cents: int,
        items: Sequence[Tuple[str, int]],
    ) -> List[List[str]]:
        """
        Args:
            anchor_id: Id reported when the budget runs out
            target_cents: Absolute amount to reach
            items: (id, absolute amount in cents) pairs

        Returns:
            Groups of ids, at most max_candidates_per_anchor of them

        Raises:
            SearchBudgetExceeded: iteration or wall-clock budget exhausted
        """
        self.iterations = 0
        self._anchor_id = anchor_id
        self._started = self.config.clock()
        self._pool = sorted(
            (item for item in items if 0 < item[1] <= target_cents + self.epsilon),
            key=lambda item: (-item[1], item[0]),
        )
        self._suffix = [0] * (len(self._pool) + 1)
        for i in range(len(self._pool) - 1, -1, -1):
            self._suffix[i] = self._suffix[i + 1] + self._pool[i][1]

        self._results: List[List[str]] = []
        self._chosen: List[str] = []
        if self._suffix[0] >= target_cents - self.epsilon:
            self._descend(0, target_cents)
        return self._results

    def _tick(self) -> None:
        self.iterations += 1
        if self.iterations > self.config.max_iterations:
            raise SearchBudgetExceeded(
                f"Iteration budget of {self.config.max_iterations} exhausted",
                anchor_id=self._anchor_id,
                iterations=self.iterations,
            )
        if self.config.clock() - self._started > self.config.time_budget_seconds:
            raise SearchBudgetExceeded(
                f"Time budget of {self.config.time_budget_seconds}s exhausted",
                anchor_id=self._anchor_id,
                iterations=self.iterations,
            )

    def _descend(self, start: int, remaining: int) -> bool:
        """Returns True once enough groups were found."""
        for i in range(start, len(self._pool)):
            self._tick()

            # Even taking every remaining item cannot reach the target
            if self._suffix[i] < remaining - self.epsilon:
                return False

            item_id, amount = self._pool[i]
            if amount > remaining + self.epsilon:
                continue

            self._chosen.append(item_id)
            rest = remaining - amount
            if abs(rest) <= self.epsilon:
                if len(self._chosen) >= 2:
                    self._results.append(list(self._chosen))
                    if len(self._results) >= self.config.max_candidates_per_anchor:
                        self._chosen.pop()
                        return True
            elif len(self._chosen) < self.config.max_group_size:
                if self._descend(i + 1, rest):
                    self._chosen.pop()
                    return True
            self._chosen.pop()
        return False


class CandidateGenerator:
    """
    Builds ranked match candidates for a statement. Read-only.
    """

    def __init__(
        self,
        repository: ReconciliationRepository,
        settings: Optional[Settings] = None,
        scoring_engine: Optional[ScoringEngine] = None,
        search_config: Optional[SearchConfig] = None,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self.repository = repository
        self.settings = settings or get_settings()
        self.scoring = scoring_engine or ScoringEngine(self.settings)
        self.search_config = search_config or SearchConfig.from_settings(self.settings)
        self.audit = audit_logger or AuditLogger(settings=self.settings)
        self.window = timedelta(days=self.settings.date_window_days)

    def generate(self, statement_id: str) -> CandidateResult:
        """
        Generate candidates for a statement.

        Args:
            statement_id: Statement to reconcile

        Returns:
            CandidateResult sorted best first
        """
        statement = self.repository.get_statement(statement_id)
        if statement is None:
            raise NotFoundError(f"Bank statement {statement_id} not found")

        result = CandidateResult(statement_id=statement_id)
        if statement.is_reconciled:
            logger.info("Statement already reconciled, no candidates", statement_id=statement_id)
            result.stats = self._empty_stats()
            return result

        bank_pool = [
            t for t in self.repository.read_statement_transactions(statement_id)
            if t.match_status == BankMatchStatus.UNMATCHED and t.amount_cents > 0
        ]
        start = statement.period_start - self.window if statement.period_start else None
        end = statement.period_end + self.window if statement.period_end else None
        ledger_pool = [
            t for t in self.repository.read_open_ledger_transactions(statement.account_id, start, end)
            if t.amount_cents > 0
        ]

        logger.info(
            "Generating candidates",
            statement_id=statement_id,
            bank_transactions=len(bank_pool),
            ledger_transactions=len(ledger_pool),
        )

        scored: List[Tuple[tuple, ReconciliationMatch]] = []
        discarded = 0

        # 1:1 pairs
        covered_bank: Set[str] = set()
        covered_ledger: Set[str] = set()
        one_to_one = 0
        for bank_txn in bank_pool:
            for ledger_txn in ledger_pool:
                if not self._compatible(bank_txn, ledger_txn, tolerance=True):
                    continue
                candidate, sort_key = self._build(statement_id, [bank_txn], [ledger_txn])
                if not self._acceptable(candidate):
                    discarded += 1
                    continue
                scored.append((sort_key, candidate))
                one_to_one += 1
                if candidate.is_balanced(self.settings.amount_epsilon_cents):
                    covered_bank.add(bank_txn.id)
                    covered_ledger.add(ledger_txn.id)

        # Subset-sum search for anchors without an acceptable 1:1
        one_to_many = many_to_one = 0
        for bank_txn in bank_pool:
            if bank_txn.id in covered_bank:
                continue
            compatible = [l for l in ledger_pool if self._compatible(bank_txn, l, tolerance=False)]
            groups = self._search(result, bank_txn.id, TransactionSide.BANK, bank_txn.amount_cents, compatible)
            by_id = {l.id: l for l in compatible}
            for group in groups:
                candidate, sort_key = self._build(statement_id, [bank_txn], [by_id[i] for i in group])
                if self._acceptable(candidate):
                    scored.append((sort_key, candidate))
                    one_to_many += 1
                else:
                    discarded += 1

        for ledger_txn in ledger_pool:
            if ledger_txn.id in covered_ledger:
                continue
            compatible = [b for b in bank_pool if self._compatible(b, ledger_txn, tolerance=False)]
            groups = self._search(
                result, ledger_txn.id, TransactionSide.LEDGER, ledger_txn.amount_cents, compatible
            )
            by_id = {b.id: b for b in compatible}
            for group in groups:
                candidate, sort_key = self._build(statement_id, [by_id[i] for i in group], [ledger_txn])
                if self._acceptable(candidate):
                    scored.append((sort_key, candidate))
                    many_to_one += 1
                else:
                    discarded += 1

        scored.sort(key=lambda item: item[0])
        seen = set()
        for _, candidate in scored:
            if candidate.member_key in seen:
                continue
            seen.add(candidate.member_key)
            result.candidates.append(candidate)

        result.stats = {
            "bank_transactions": len(bank_pool),
            "ledger_transactions": len(ledger_pool),
            "one_to_one": one_to_one,
            "one_to_many": one_to_many,
            "many_to_one": many_to_one,
            "discarded": discarded,
            "manual_review": len(result.manual_review),
            "total_candidates": len(result.candidates),
        }

        self.audit.record(
            AuditAction.CANDIDATES_GENERATED,
            f"Generated {len(result.candidates)} candidates",
            statement_id=statement_id,
            **result.stats,
        )
        return result

    def _search(
        self,
        result: CandidateResult,
        anchor_id: str,
        side: TransactionSide,
        amount_cents: int,
        compatible: Sequence,
    ) -> List[List[str]]:
        if len(compatible) < 2:
            return []

        search = SubsetSumSearch(self.search_config, self.settings.amount_epsilon_cents)
        try:
            return search.find(anchor_id, amount_cents, [(t.id, t.amount_cents) for t in compatible])
        except SearchBudgetExceeded as exc:
            # Partial groups are discarded; a person has to match this one
            result.manual_review.append(ManualReviewItem(
                transaction_id=anchor_id,
                side=side,
                amount_cents=amount_cents,
                reason=f"Requires manual match: {exc.message}",
                iterations=exc.iterations,
            ))
            self.audit.record(
                AuditAction.SEARCH_BUDGET_EXCEEDED,
                "Combination search budget exceeded",
                statement_id=result.statement_id,
                transaction_ids=[anchor_id],
                success=False,
                error_message=exc.message,
                side=side.value,
                iterations=exc.iterations,
            )
            return []

    def _compatible(
        self,
        bank_txn: BankTransaction,
        ledger_txn: AccountingTransaction,
        tolerance: bool,
    ) -> bool:
        """Same direction, within the date window and, for pairs, within amount tolerance."""
        if bank_txn.direction != ledger_txn.direction:
            return False

        if bank_txn.transaction_date and ledger_txn.transaction_date:
            if abs((bank_txn.transaction_date - ledger_txn.transaction_date).days) > self.window.days:
                return False

        if tolerance:
            larger = max(bank_txn.amount_cents, ledger_txn.amount_cents)
            limit = max(
                self.settings.amount_epsilon_cents,
                int(larger * self.settings.candidate_amount_tolerance),
            )
            if abs(bank_txn.amount_cents - ledger_txn.amount_cents) > limit:
                return False
        return True

    def _acceptable(self, candidate: ReconciliationMatch) -> bool:
        return candidate.confidence_score >= self.scoring.weights.suggest_threshold

    def _build(
        self,
        statement_id: str,
        bank_txns: List[BankTransaction],
        ledger_txns: List[AccountingTransaction],
    ) -> Tuple[ReconciliationMatch, tuple]:
        breakdown = self.scoring.score(bank_txns, ledger_txns)
        candidate = ReconciliationMatch(
            statement_id=statement_id,
            bank_transaction_ids=[t.id for t in bank_txns],
            accounting_transaction_ids=[t.id for t in ledger_txns],
            match_type=MatchType.from_sizes(len(bank_txns), len(ledger_txns)),
            bank_total_cents=sum(t.signed_amount_cents for t in bank_txns),
            accounting_total_cents=sum(t.signed_amount_cents for t in ledger_txns),
            confidence_score=breakdown.total,
            confidence=breakdown.level,
            score_breakdown=breakdown,
            match_reason=ScoringEngine.describe(breakdown),
            status=MatchStatus.SUGGESTED,
        )

        dates = [t.transaction_date for t in bank_txns if t.transaction_date]
        dates += [t.transaction_date for t in ledger_txns if t.transaction_date]
        earliest = min(dates) if dates else date.max
        sort_key = (
            -candidate.confidence_score,
            candidate.group_size,
            -breakdown.raw_total,
            earliest,
            tuple(candidate.bank_transaction_ids),
            tuple(candidate.accounting_transaction_ids),
        )
        return candidate, sort_key

    @staticmethod
    def _empty_stats() -> Dict[str, int]:
        return {
            "bank_transactions": 0,
            "ledger_transactions": 0,
            "one_to_one": 0,
            "one_to_many": 0,
            "many_to_one": 0,
            "discarded": 0,
            "manual_review": 0,
            "total_candidates": 0,
        }

"""
Match resolution: confirm, reject and unmatch candidates.

Every mutation reads the versions of the records it touches, validates, then
commits once through the repository's atomic_update. A version conflict
re-runs the whole cycle a bounded number of times.
"""

from datetime import datetime
from typing import Callable, List, Optional, Sequence, TypeVar
from uuid import uuid4

import structlog

from ..config import Settings, get_settings
from ..errors import (
    ConflictError,
    ImbalanceError,
    NotFoundError,
    ReconciliationError,
    ValidationError,
    VersionConflict,
)
from ..models import (
    AccountingTransaction,
    AuditAction,
    AutoMatchResult,
    BankMatchStatus,
    BankTransaction,
    MatchOutcome,
    MatchStatus,
    MatchType,
    ReconciliationMatch,
    StatementStatus,
)
from ..repository import ReconciliationRepository, record_key
from ..utils.audit_logger import AuditLogger
from .candidates import CandidateGenerator
from .scoring import ScoringEngine

logger = structlog.get_logger()

T = TypeVar("T")


class MatchResolver:
    """
    Applies match decisions to bank and ledger transactions.

    State changes:
    - confirm: bank UNMATCHED -> MATCHED, ledger open -> reconciled,
      statement IMPORTED -> RECONCILING
    - unmatch: reverses a confirm, the match becomes REJECTED
    """

    def __init__(
        self,
        repository: ReconciliationRepository,
        settings: Optional[Settings] = None,
        scoring_engine: Optional[ScoringEngine] = None,
        candidate_generator: Optional[CandidateGenerator] = None,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self.repository = repository
        self.settings = settings or get_settings()
        self.audit = audit_logger or AuditLogger(settings=self.settings)
        self.scoring = scoring_engine or ScoringEngine(self.settings)
        self.generator = candidate_generator or CandidateGenerator(
            repository,
            settings=self.settings,
            scoring_engine=self.scoring,
            audit_logger=self.audit,
        )

    # ------------------------------------------------------------------
    # Confirm
    # ------------------------------------------------------------------

    def match_transactions(self, candidate: ReconciliationMatch, user_id: str) -> ReconciliationMatch:
        """
        Confirm a candidate.

        Args:
            candidate: Suggested or hand-built match
            user_id: Who confirmed it

        Returns:
            The CONFIRMED match as stored

        Raises:
            ValidationError: Malformed candidate or statement already reconciled
            ConflictError: A member is already matched
            ImbalanceError: Sides do not sum to the same amount
        """
        self._validate_shape(candidate)
        try:
            return self._with_retries(
                lambda: self._confirm_once(candidate, user_id),
                operation="confirm",
                match_id=candidate.id,
            )
        except ReconciliationError as exc:
            self.audit.record(
                AuditAction.MATCH_FAILED,
                "Match confirmation failed",
                statement_id=candidate.statement_id,
                match_id=candidate.id,
                transaction_ids=candidate.bank_transaction_ids + candidate.accounting_transaction_ids,
                actor=user_id,
                success=False,
                error_message=exc.message,
                code=exc.code,
            )
            raise

    def _confirm_once(self, candidate: ReconciliationMatch, user_id: str) -> ReconciliationMatch:
        statement = self.repository.get_statement(candidate.statement_id)
        if statement is None:
            raise NotFoundError(f"Bank statement {candidate.statement_id} not found")

        existing = self.repository.get_match(candidate.id)
        if existing is not None and existing.status == MatchStatus.CONFIRMED:
            if existing.member_key == candidate.member_key:
                logger.info("Match already confirmed", match_id=existing.id)
                return existing
            raise ConflictError(
                f"Match {existing.id} is already confirmed with different transactions",
                match_id=existing.id,
            )

        if statement.is_reconciled:
            raise ValidationError(
                f"Statement {statement.id} is reconciled; no further matching allowed",
                match_id=candidate.id,
            )

        bank_txns = [self._load_bank(i) for i in candidate.bank_transaction_ids]
        ledger_txns = [self._load_ledger(i) for i in candidate.accounting_transaction_ids]

        foreign = [t.id for t in bank_txns if t.statement_id != statement.id]
        if foreign:
            raise ConflictError(
                f"Bank transactions do not belong to statement {statement.id}: {', '.join(foreign)}",
                transaction_ids=foreign,
            )

        other_account = [t.id for t in ledger_txns if t.account_id != statement.account_id]
        if other_account:
            raise ValidationError(
                f"Ledger transactions belong to another account: {', '.join(other_account)}",
                transaction_ids=other_account,
            )

        taken = [t.id for t in bank_txns if t.match_status != BankMatchStatus.UNMATCHED]
        taken += [t.id for t in ledger_txns if t.reconciled]
        if taken:
            raise ConflictError(
                f"Transactions already matched: {', '.join(taken)}",
                transaction_ids=taken,
            )

        bank_total = sum(t.signed_amount_cents for t in bank_txns)
        ledger_total = sum(t.signed_amount_cents for t in ledger_txns)
        if abs(bank_total - ledger_total) > self.settings.amount_epsilon_cents:
            raise ImbalanceError(
                f"Bank total {bank_total / 100:.2f} does not equal ledger total "
                f"{ledger_total / 100:.2f}",
                transaction_ids=[t.id for t in bank_txns] + [t.id for t in ledger_txns],
                details={
                    "bank_total_cents": bank_total,
                    "accounting_total_cents": ledger_total,
                    "difference_cents": bank_total - ledger_total,
                },
            )

        breakdown = self.scoring.score(bank_txns, ledger_txns)
        now = datetime.utcnow()

        expected = {record_key(statement): statement.version}
        if existing is not None and existing.status == MatchStatus.SUGGESTED:
            # Suggestion confirmed in place
            match = existing
            expected[record_key(match)] = match.version
        else:
            match = ReconciliationMatch(
                id=candidate.id if existing is None else str(uuid4()),
                created_by=user_id,
                created_at=now,
            )

        match.statement_id = statement.id
        match.bank_transaction_ids = [t.id for t in bank_txns]
        match.accounting_transaction_ids = [t.id for t in ledger_txns]
        match.match_type = MatchType.from_sizes(len(bank_txns), len(ledger_txns))
        match.bank_total_cents = bank_total
        match.accounting_total_cents = ledger_total
        match.confidence_score = breakdown.total
        match.confidence = breakdown.level
        match.score_breakdown = breakdown
        match.match_reason = candidate.match_reason or ScoringEngine.describe(breakdown)
        match.status = MatchStatus.CONFIRMED
        match.confirmed_by = user_id
        match.confirmed_at = now

        writes = [match]
        for txn in bank_txns:
            expected[record_key(txn)] = txn.version
            txn.match_status = BankMatchStatus.MATCHED
            txn.match_ids.append(match.id)
            writes.append(txn)
        for txn in ledger_txns:
            expected[record_key(txn)] = txn.version
            txn.reconciled = True
            txn.match_id = match.id
            writes.append(txn)

        if statement.status == StatementStatus.IMPORTED:
            statement.status = StatementStatus.RECONCILING
            writes.append(statement)

        # Suggestions sharing a member can no longer be confirmed
        superseded = []
        for suggestion in self.repository.list_matches(statement.id, MatchStatus.SUGGESTED):
            if suggestion.id == match.id:
                continue
            if not suggestion.overlaps(set(match.bank_transaction_ids), set(match.accounting_transaction_ids)):
                continue
            expected[record_key(suggestion)] = suggestion.version
            suggestion.status = MatchStatus.REJECTED
            suggestion.rejected_by = user_id
            suggestion.rejected_at = now
            writes.append(suggestion)
            superseded.append(suggestion.id)

        stored = self.repository.atomic_update(expected, writes)
        confirmed = stored[0]

        self.audit.record(
            AuditAction.MATCH_CONFIRMED,
            "Match confirmed",
            statement_id=statement.id,
            match_id=confirmed.id,
            transaction_ids=confirmed.bank_transaction_ids + confirmed.accounting_transaction_ids,
            actor=user_id,
            match_type=confirmed.match_type.value,
            confidence_score=confirmed.confidence_score,
            superseded_suggestions=superseded,
        )
        return confirmed

    def match_multiple_transactions(
        self,
        candidates: Sequence[ReconciliationMatch],
        user_id: str,
    ) -> List[MatchOutcome]:
        """Confirm candidates one by one; failures are reported, not raised."""
        outcomes = []
        for candidate in candidates:
            try:
                match = self.match_transactions(candidate, user_id)
                outcomes.append(MatchOutcome(candidate_id=candidate.id, success=True, match=match))
            except ReconciliationError as exc:
                outcomes.append(MatchOutcome(candidate_id=candidate.id, success=False, error=exc))

        logger.info(
            "Batch match completed",
            total=len(outcomes),
            succeeded=sum(1 for o in outcomes if o.success),
        )
        return outcomes

    # ------------------------------------------------------------------
    # Unmatch / reject
    # ------------------------------------------------------------------

    def unmatch_transaction(self, match_id: str, user_id: str) -> ReconciliationMatch:
        """
        Reverse a confirmed match. Calling it again on the same match is a no-op.

        Raises:
            NotFoundError: Unknown match
            ValidationError: Match never confirmed, or statement reconciled
        """
        return self._with_retries(
            lambda: self._unmatch_once(match_id, user_id),
            operation="unmatch",
            match_id=match_id,
        )

    def _unmatch_once(self, match_id: str, user_id: str) -> ReconciliationMatch:
        match = self._load_match(match_id)
        if match.status == MatchStatus.REJECTED:
            return match
        if match.status != MatchStatus.CONFIRMED:
            raise ValidationError(
                f"Match {match_id} was never confirmed; reject the suggestion instead",
                match_id=match_id,
            )

        statement = self.repository.get_statement(match.statement_id)
        if statement is None:
            raise NotFoundError(f"Bank statement {match.statement_id} not found", match_id=match_id)
        if statement.is_reconciled:
            raise ValidationError(
                f"Statement {statement.id} is reconciled; matches can no longer be undone",
                match_id=match_id,
            )

        now = datetime.utcnow()
        expected = {
            record_key(statement): statement.version,
            record_key(match): match.version,
        }
        match.status = MatchStatus.REJECTED
        match.rejected_by = user_id
        match.rejected_at = now
        writes = [match]

        for txn_id in match.bank_transaction_ids:
            txn = self._load_bank(txn_id)
            if txn.match_status == BankMatchStatus.MATCHED and txn.current_match_id == match.id:
                expected[record_key(txn)] = txn.version
                txn.match_status = BankMatchStatus.UNMATCHED
                writes.append(txn)

        for txn_id in match.accounting_transaction_ids:
            txn = self._load_ledger(txn_id)
            if txn.match_id == match.id:
                expected[record_key(txn)] = txn.version
                txn.reconciled = False
                txn.match_id = None
                writes.append(txn)

        stored = self.repository.atomic_update(expected, writes)
        self.audit.record(
            AuditAction.MATCH_UNMATCHED,
            "Match reversed",
            statement_id=match.statement_id,
            match_id=match.id,
            transaction_ids=match.bank_transaction_ids + match.accounting_transaction_ids,
            actor=user_id,
        )
        return stored[0]

    def reject_suggestion(self, match_id: str, user_id: str) -> ReconciliationMatch:
        """Dismiss a SUGGESTED match."""
        def reject_once() -> ReconciliationMatch:
            match = self._load_match(match_id)
            if match.status == MatchStatus.REJECTED:
                return match
            if match.status != MatchStatus.SUGGESTED:
                raise ValidationError(
                    f"Match {match_id} is {match.status.value}; only suggestions can be rejected",
                    match_id=match_id,
                )
            match.status = MatchStatus.REJECTED
            match.rejected_by = user_id
            match.rejected_at = datetime.utcnow()
            rejected = self.repository.update_match(match)
            self.audit.record(
                AuditAction.MATCH_REJECTED,
                "Suggestion rejected",
                statement_id=match.statement_id,
                match_id=match.id,
                actor=user_id,
            )
            return rejected

        return self._with_retries(reject_once, operation="reject", match_id=match_id)

    # ------------------------------------------------------------------
    # Statement-wide sweeps
    # ------------------------------------------------------------------

    def suggest_matches(self, statement_id: str, user_id: str = "system") -> List[ReconciliationMatch]:
        """
        Persist generated candidates as SUGGESTED.

        Member sets that are already suggested, or were rejected or unmatched
        before, are not suggested again.
        """
        result = self.generator.generate(statement_id)
        existing = {
            m.member_key for m in self.repository.list_matches(statement_id)
            if m.status in (MatchStatus.SUGGESTED, MatchStatus.REJECTED)
        }

        created = []
        for candidate in result.candidates:
            if candidate.member_key in existing:
                continue
            candidate.created_by = user_id
            stored = self.repository.create_match(candidate)
            existing.add(stored.member_key)
            created.append(stored)
            self.audit.record(
                AuditAction.MATCH_SUGGESTED,
                "Match suggested",
                statement_id=statement_id,
                match_id=stored.id,
                transaction_ids=stored.bank_transaction_ids + stored.accounting_transaction_ids,
                actor=user_id,
                confidence_score=stored.confidence_score,
            )

        logger.info("Suggestions stored", statement_id=statement_id, created=len(created))
        return created

    def auto_match_transactions(
        self,
        statement_id: str,
        threshold: Optional[float] = None,
        user_id: str = "system",
    ) -> AutoMatchResult:
        """
        Confirm every balanced candidate at or above the threshold, best first.

        Args:
            statement_id: Statement to sweep
            threshold: Minimum confidence (defaults to auto_match_threshold)
            user_id: Recorded as the confirmer

        Returns:
            AutoMatchResult with matched / skipped / remaining counts and errors
        """
        if threshold is None:
            threshold = self.settings.auto_match_threshold

        generated = self.generator.generate(statement_id)
        result = AutoMatchResult(
            statement_id=statement_id,
            threshold=threshold,
            manual_review=list(generated.manual_review),
        )

        consumed_bank = set()
        consumed_ledger = set()
        for candidate in generated.candidates:
            if candidate.confidence_score < threshold:
                continue
            if not candidate.is_balanced(self.settings.amount_epsilon_cents):
                continue
            if candidate.overlaps(consumed_bank, consumed_ledger):
                result.skipped += 1
                continue

            try:
                match = self.match_transactions(candidate, user_id)
            except ReconciliationError as exc:
                result.skipped += 1
                result.errors.append(
                    f"Failed to match {', '.join(candidate.bank_transaction_ids)}: {exc.message}"
                )
                result.outcomes.append(MatchOutcome(candidate_id=candidate.id, success=False, error=exc))
                continue

            consumed_bank.update(match.bank_transaction_ids)
            consumed_ledger.update(match.accounting_transaction_ids)
            result.matched += 1
            result.outcomes.append(MatchOutcome(candidate_id=candidate.id, success=True, match=match))

        result.remaining = sum(
            1 for t in self.repository.read_statement_transactions(statement_id)
            if t.match_status == BankMatchStatus.UNMATCHED
        )

        self.audit.record(
            AuditAction.AUTO_MATCH_COMPLETED,
            "Auto-match completed",
            statement_id=statement_id,
            success=not result.errors,
            matched=result.matched,
            skipped=result.skipped,
            remaining=result.remaining,
            threshold=threshold,
        )
        return result

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _with_retries(self, attempt: Callable[[], T], operation: str, match_id: Optional[str] = None) -> T:
        attempts = self.settings.commit_retries + 1
        last_conflict = None
        for number in range(1, attempts + 1):
            try:
                return attempt()
            except VersionConflict as exc:
                last_conflict = exc
                logger.warning(
                    "Concurrent update detected",
                    operation=operation,
                    match_id=match_id,
                    attempt=number,
                    max_attempts=attempts,
                )

        raise ConflictError(
            f"Could not {operation} match: records changed concurrently",
            transaction_ids=last_conflict.transaction_ids,
            match_id=match_id,
            details={"attempts": attempts},
        ) from last_conflict

    @staticmethod
    def _validate_shape(candidate: ReconciliationMatch) -> None:
        if not candidate.bank_transaction_ids:
            raise ValidationError("Candidate has no bank transactions", match_id=candidate.id)
        if not candidate.accounting_transaction_ids:
            raise ValidationError("Candidate has no ledger transactions", match_id=candidate.id)

        for ids, side in (
            (candidate.bank_transaction_ids, "bank"),
            (candidate.accounting_transaction_ids, "ledger"),
        ):
            duplicates = sorted({i for i in ids if ids.count(i) > 1})
            if duplicates:
                raise ValidationError(
                    f"Duplicate {side} transaction ids: {', '.join(duplicates)}",
                    transaction_ids=duplicates,
                    match_id=candidate.id,
                )

    def _load_bank(self, transaction_id: str) -> BankTransaction:
        txn = self.repository.get_bank_transaction(transaction_id)
        if txn is None:
            raise NotFoundError(
                f"Bank transaction {transaction_id} not found",
                transaction_ids=[transaction_id],
            )
        return txn

    def _load_ledger(self, transaction_id: str) -> AccountingTransaction:
        txn = self.repository.get_ledger_transaction(transaction_id)
        if txn is None:
            raise NotFoundError(
                f"Ledger transaction {transaction_id} not found",
                transaction_ids=[transaction_id],
            )
        return txn

    def _load_match(self, match_id: str) -> ReconciliationMatch:
        match = self.repository.get_match(match_id)
        if match is None:
            raise NotFoundError(f"Match {match_id} not found", match_id=match_id)
        return match

"""
Reconciliation progress tracking, reporting and completion.
"""

import csv
import json
from collections import Counter
from datetime import datetime, timedelta
from pathlib import Path
from typing import Iterable, List, Optional

import structlog

from ..config import Settings, get_settings
from ..errors import ConflictError, NotFoundError, ValidationError, VersionConflict
from ..models import (
    AuditAction,
    BankMatchStatus,
    BankStatement,
    BankTransaction,
    MatchStatistics,
    MatchStatus,
    OutstandingCheque,
    ReconciliationReport,
    ReconciliationStats,
    StatementStatus,
)
from ..repository import ReconciliationRepository, record_key
from ..utils.audit_logger import AuditLogger

logger = structlog.get_logger()

REPORT_FORMATS = ("json", "csv")


class ReconciliationTracker:
    """
    Computes statement statistics and reports, and gates the terminal
    RECONCILED transition.
    """

    def __init__(
        self,
        repository: ReconciliationRepository,
        settings: Optional[Settings] = None,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self.repository = repository
        self.settings = settings or get_settings()
        self.audit = audit_logger or AuditLogger(settings=self.settings)

    def _load_statement(self, statement_id: str) -> BankStatement:
        statement = self.repository.get_statement(statement_id)
        if statement is None:
            raise NotFoundError(f"Bank statement {statement_id} not found")
        return statement

    def get_reconciliation_stats(self, statement_id: str) -> ReconciliationStats:
        """Statistics for a statement, computed from current transaction state."""
        statement = self._load_statement(statement_id)
        transactions = self.repository.read_statement_transactions(statement_id)
        return self._compute_stats(statement, transactions)

    def _compute_stats(
        self,
        statement: BankStatement,
        transactions: List[BankTransaction],
    ) -> ReconciliationStats:
        matched = [t for t in transactions if t.is_matched]
        unmatched = [t for t in transactions if t.match_status == BankMatchStatus.UNMATCHED]
        accepted = set(statement.accepted_outstanding_ids)

        cheques = [
            OutstandingCheque(
                transaction_id=t.id,
                cheque_number=t.cheque_number,
                amount_cents=t.amount_cents,
                transaction_date=t.transaction_date,
                description=t.description,
            )
            for t in unmatched
            if t.is_debit and t.cheque_number
        ]

        reconciled_amount = sum(t.amount_cents for t in matched)
        return ReconciliationStats(
            statement_id=statement.id,
            total_bank_transactions=len(transactions),
            matched_count=len(matched),
            unmatched_count=len(unmatched),
            accepted_outstanding_count=sum(1 for t in unmatched if t.id in accepted),
            statement_balance_cents=statement.closing_balance_cents,
            reconciled_amount_cents=reconciled_amount,
            unreconciled_amount_cents=statement.closing_balance_cents - reconciled_amount,
            outstanding_cheques=cheques,
            outstanding_cheques_total_cents=sum(c.amount_cents for c in cheques),
        )

    def generate_reconciliation_report(self, statement_id: str) -> ReconciliationReport:
        """Snapshot of a statement's reconciliation for audit and export."""
        statement = self._load_statement(statement_id)
        transactions = self.repository.read_statement_transactions(statement_id)
        stats = self._compute_stats(statement, transactions)

        window = timedelta(days=self.settings.date_window_days)
        start = statement.period_start - window if statement.period_start else None
        end = statement.period_end + window if statement.period_end else None
        open_ledger = self.repository.read_open_ledger_transactions(statement.account_id, start, end)

        report = ReconciliationReport(
            statement=statement,
            stats=stats,
            matches=self.repository.list_matches(statement_id),
            unmatched_bank_transactions=[
                t for t in transactions if t.match_status == BankMatchStatus.UNMATCHED
            ],
            unmatched_accounting_transactions=open_ledger,
        )

        logger.info(
            "Reconciliation report generated",
            statement_id=statement_id,
            matched=stats.matched_count,
            unmatched=stats.unmatched_count,
        )
        return report

    def mark_statement_as_reconciled(
        self,
        statement_id: str,
        accepted_outstanding_ids: Optional[Iterable[str]] = None,
        user_id: str = "system",
    ) -> BankStatement:
        """
        Close a statement. Every transaction must be matched or explicitly
        accepted as outstanding; MATCHED transactions become RECONCILED.

        Raises:
            ValidationError: Unresolved transactions or unknown accepted ids
        """
        accepted_ids = list(dict.fromkeys(accepted_outstanding_ids or []))
        attempts = self.settings.commit_retries + 1
        for attempt in range(1, attempts + 1):
            try:
                return self._reconcile_once(statement_id, accepted_ids, user_id)
            except VersionConflict:
                logger.warning(
                    "Concurrent update while reconciling statement",
                    statement_id=statement_id,
                    attempt=attempt,
                )

        raise ConflictError(
            f"Could not reconcile statement {statement_id}: records changed concurrently",
            details={"attempts": attempts},
        )

    def _reconcile_once(self, statement_id: str, accepted_ids: List[str], user_id: str) -> BankStatement:
        statement = self._load_statement(statement_id)
        if statement.is_reconciled:
            logger.info("Statement already reconciled", statement_id=statement_id)
            return statement

        transactions = self.repository.read_statement_transactions(statement_id)
        known_ids = {t.id for t in transactions}
        accepted = set(accepted_ids)

        unknown = [i for i in accepted_ids if i not in known_ids]
        if unknown:
            raise ValidationError(
                f"Accepted outstanding transactions not on statement: {', '.join(unknown)}",
                transaction_ids=unknown,
            )

        unresolved = [
            t.id for t in transactions
            if t.match_status == BankMatchStatus.UNMATCHED and t.id not in accepted
        ]
        if unresolved:
            self.audit.record(
                AuditAction.RECONCILIATION_BLOCKED,
                "Statement has unresolved transactions",
                statement_id=statement_id,
                transaction_ids=unresolved,
                actor=user_id,
                success=False,
                error_message=f"{len(unresolved)} unmatched transaction(s)",
            )
            raise ValidationError(
                f"{len(unresolved)} transaction(s) are neither matched nor accepted as "
                f"outstanding: {', '.join(unresolved)}",
                transaction_ids=unresolved,
            )

        expected = {record_key(statement): statement.version}
        statement.status = StatementStatus.RECONCILED
        statement.accepted_outstanding_ids = accepted_ids
        statement.reconciled_at = datetime.utcnow()
        statement.reconciled_by = user_id
        writes = [statement]

        # Every line is pinned so a concurrent match aborts the commit
        reconciled = 0
        for txn in transactions:
            expected[record_key(txn)] = txn.version
            if txn.match_status == BankMatchStatus.MATCHED:
                txn.match_status = BankMatchStatus.RECONCILED
                writes.append(txn)
                reconciled += 1

        # Open suggestions are closed along with the statement
        withdrawn = 0
        for suggestion in self.repository.list_matches(statement_id, MatchStatus.SUGGESTED):
            expected[record_key(suggestion)] = suggestion.version
            suggestion.status = MatchStatus.REJECTED
            suggestion.rejected_by = user_id
            suggestion.rejected_at = statement.reconciled_at
            writes.append(suggestion)
            withdrawn += 1

        stored = self.repository.atomic_update(expected, writes)
        self.audit.record(
            AuditAction.STATEMENT_RECONCILED,
            "Statement reconciled",
            statement_id=statement_id,
            actor=user_id,
            reconciled_transactions=reconciled,
            withdrawn_suggestions=withdrawn,
            accepted_outstanding=len(accepted_ids),
        )
        return stored[0]

    def get_match_statistics(self, statement_id: str) -> MatchStatistics:
        """Counts of a statement's matches by status, type and confidence."""
        self._load_statement(statement_id)
        matches = self.repository.list_matches(statement_id)
        confirmed = [m for m in matches if m.status == MatchStatus.CONFIRMED]

        average = 0.0
        if confirmed:
            average = round(sum(m.confidence_score for m in confirmed) / len(confirmed), 4)

        return MatchStatistics(
            statement_id=statement_id,
            total=len(matches),
            by_status=dict(Counter(m.status.value for m in matches)),
            by_type=dict(Counter(m.match_type.value for m in matches)),
            by_confidence=dict(Counter(m.confidence.value for m in matches)),
            average_confirmed_score=average,
        )

    def export_report(
        self,
        statement_id: str,
        output_path: Optional[Path] = None,
        fmt: str = "json",
    ) -> Path:
        """
        Write the reconciliation report to disk.

        Args:
            statement_id: Statement to export
            output_path: Target file (defaults to reports_dir)
            fmt: "json" or "csv"

        Returns:
            Path of the written file
        """
        fmt = fmt.lower()
        if fmt not in REPORT_FORMATS:
            raise ValidationError(f"Unsupported report format: {fmt}")

        report = self.generate_reconciliation_report(statement_id)
        if output_path is None:
            output_path = self.settings.reports_dir / f"reconciliation_{statement_id}.{fmt}"
        output_path = Path(output_path)
        output_path.parent.mkdir(parents=True, exist_ok=True)

        if fmt == "json":
            with open(output_path, "w", encoding="utf-8") as f:
                json.dump(report.to_dict(), f, indent=2, ensure_ascii=False, default=str)
        else:
            self._write_csv(report, output_path)

        logger.info("Reconciliation report exported", path=str(output_path), format=fmt)
        return output_path

    @staticmethod
    def _write_csv(report: ReconciliationReport, output_path: Path) -> None:
        """Summary, matches, then unmatched bank and ledger sections separated by blank rows."""
        stats = report.stats
        with open(output_path, "w", encoding="utf-8", newline="") as f:
            writer = csv.writer(f)

            writer.writerow(["Summary"])
            writer.writerow(["statement_id", report.statement.id])
            writer.writerow(["generated_at", report.generated_at.isoformat()])
            writer.writerow(["statement_balance", f"{stats.statement_balance_cents / 100:.2f}"])
            writer.writerow(["reconciled_amount", f"{stats.reconciled_amount_cents / 100:.2f}"])
            writer.writerow(["unreconciled_amount", f"{stats.unreconciled_amount_cents / 100:.2f}"])
            writer.writerow(["matched_count", stats.matched_count])
            writer.writerow(["unmatched_count", stats.unmatched_count])
            writer.writerow(["outstanding_cheques_total", f"{stats.outstanding_cheques_total_cents / 100:.2f}"])
            writer.writerow(["percentage_complete", f"{stats.percentage_complete:.2f}"])
            writer.writerow([])

            writer.writerow(["Matches"])
            writer.writerow([
                "match_id", "status", "match_type", "confidence",
                "bank_transaction_ids", "accounting_transaction_ids",
                "bank_total", "accounting_total", "reason",
            ])
            for match in report.matches:
                writer.writerow([
                    match.id,
                    match.status.value,
                    match.match_type.value,
                    f"{match.confidence_score:.2f}",
                    ";".join(match.bank_transaction_ids),
                    ";".join(match.accounting_transaction_ids),
                    f"{match.bank_total_cents / 100:.2f}",
                    f"{match.accounting_total_cents / 100:.2f}",
                    match.match_reason,
                ])
            writer.writerow([])

            for title, transactions in (
                ("Unmatched bank transactions", report.unmatched_bank_transactions),
                ("Unmatched ledger transactions", report.unmatched_accounting_transactions),
            ):
                writer.writerow([title])
                writer.writerow(["transaction_id", "date", "reference", "amount", "description"])
                for txn in transactions:
                    writer.writerow([
                        txn.id,
                        txn.transaction_date.isoformat() if txn.transaction_date else "",
                        txn.reference or "",
                        f"{txn.signed_amount_cents / 100:.2f}",
                        txn.description,
                    ])
                writer.writerow([])

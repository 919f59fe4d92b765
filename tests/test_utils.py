"""
Tests for the audit logger and text similarity helpers.
"""

import json

import pytest

from bankrec.models import AuditAction
from bankrec.utils import AuditLogger, TextSimilarityEngine


@pytest.fixture
def similarity(settings):
    return TextSimilarityEngine(settings)


class TestTextSimilarityEngine:
    """Test suite for TextSimilarityEngine."""

    def test_normalize_reference(self):
        """Test reference normalisation."""
        assert TextSimilarityEngine.normalize_reference("  CHQ   001 ") == "chq 001"
        assert TextSimilarityEngine.normalize_reference("   ") is None
        assert TextSimilarityEngine.normalize_reference(None) is None

    def test_reference_keys_skip_blanks(self, similarity):
        """Test that blank references are skipped."""
        assert similarity.reference_keys(["A1", None, "", "a1"]) == {"a1"}

    def test_similar_descriptions(self, similarity):
        """Test similar descriptions."""
        assert similarity.similarity("Payment from Acme Corp", "ACME CORP payment") == 1.0

    def test_blank_descriptions(self, similarity):
        """Test blank descriptions."""
        assert similarity.similarity("", "Acme") == 0.0
        assert similarity.similarity(None, "Acme") == 0.0

    def test_best_match(self, similarity):
        """Test picking the best description pair."""
        score, left, right = similarity.best_match(
            ["Salary January", "Office rent"],
            ["Rent office", "Electricity"],
        )

        assert score == 1.0
        assert (left, right) == ("Office rent", "Rent office")


class TestAuditLogger:
    """Test suite for AuditLogger."""

    def test_record_and_filter(self, audit):
        """Test recording and filtering entries."""
        audit.record(AuditAction.MATCH_CONFIRMED, "Match confirmed", statement_id="s1", match_id="m1")
        audit.record(
            AuditAction.MATCH_FAILED,
            "Match failed",
            statement_id="s2",
            success=False,
            error_message="conflict",
        )

        assert len(audit.get_entries()) == 2
        assert len(audit.get_entries(statement_id="s1")) == 1
        assert len(audit.get_entries(success_only=True)) == 1
        assert audit.get_entries(action_filter="match_failed")[0].error_message == "conflict"

    def test_summary(self, audit):
        """Test the audit summary."""
        audit.record(AuditAction.MATCH_CONFIRMED, "a")
        audit.record(AuditAction.MATCH_CONFIRMED, "b")
        audit.record(AuditAction.MATCH_FAILED, "c", success=False)

        summary = audit.summary()

        assert summary["total_entries"] == 3
        assert summary["error_count"] == 1
        assert summary["action_counts"] == {"match_confirmed": 2, "match_failed": 1}

    def test_export(self, settings):
        """Test exporting the audit log."""
        logger = AuditLogger(trail_id="export", settings=settings)
        logger.record(AuditAction.STATEMENT_RECONCILED, "Statement reconciled", statement_id="s1", count=3)

        path = logger.export_to_file()

        data = json.loads(path.read_text(encoding="utf-8"))
        assert path.name == "audit_export.json"
        assert data["total_entries"] == 1
        assert data["entries"][0]["details"] == {"count": 3}

    def test_trail_keeps_most_recent_entries(self, settings):
        """Test the audit trail size limit."""
        settings.audit_max_entries = 2
        logger = AuditLogger(settings=settings)

        for message in ("a", "b", "c"):
            logger.record(AuditAction.CANDIDATES_GENERATED, message)

        assert [e.message for e in logger.get_entries()] == ["b", "c"]
        assert logger.summary()["total_entries"] == 2

    def test_clear(self, audit):
        """Test clearing the audit trail."""
        audit.record(AuditAction.MATCH_CONFIRMED, "a")

        assert audit.clear() == 1
        assert audit.get_entries() == []


if __name__ == "__main__":
    pytest.main([__file__, "-v"])

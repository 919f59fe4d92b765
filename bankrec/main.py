"""
FastAPI application exposing the reconciliation engine to the UI.
"""

import logging
import sys
from contextlib import asynccontextmanager
from datetime import datetime
from typing import List, Optional

import structlog
from fastapi import Depends, FastAPI, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from .config import get_settings
from .errors import (
    ConflictError,
    ImbalanceError,
    NotFoundError,
    ReconciliationError,
    ValidationError,
    VersionConflict,
)
from .models import ReconciliationMatch
from .reconciliation import MatchResolver, ReconciliationTracker
from .repository import InMemoryRepository, ReconciliationRepository
from .utils.audit_logger import AuditLogger

logger = structlog.get_logger()
settings = get_settings()


def setup_logging():
    """Configure stdlib logging and the structlog processor chain."""
    handlers = [logging.StreamHandler(sys.stdout)]
    if settings.log_file:
        settings.log_file.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(settings.log_file, encoding="utf-8"))

    logging.basicConfig(
        level=getattr(logging, settings.app_log_level.upper(), logging.INFO),
        format="%(message)s",
        handlers=handlers,
    )

    renderer = (
        structlog.processors.JSONRenderer()
        if settings.is_production
        else structlog.dev.ConsoleRenderer()
    )
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            renderer,
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )


# Shared state; storage is swapped out through the get_repository dependency
_repository = InMemoryRepository()
_audit_logger = AuditLogger(trail_id="api", settings=settings)


def get_repository() -> ReconciliationRepository:
    return _repository


def get_audit_logger() -> AuditLogger:
    return _audit_logger


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager."""
    setup_logging()
    logger.info("Starting bank reconciliation API", env=settings.app_env)
    settings.reports_dir.mkdir(parents=True, exist_ok=True)
    yield
    logger.info("Shutting down bank reconciliation API")


app = FastAPI(
    title="Bank Reconciliation",
    description="Matching engine for bank statements against ledger transactions",
    version="1.0.0",
    lifespan=lifespan,
)

ERROR_STATUS = {
    NotFoundError: 404,
    ConflictError: 409,
    VersionConflict: 409,
    ImbalanceError: 422,
    ValidationError: 422,
}


@app.exception_handler(ReconciliationError)
async def reconciliation_error_handler(request: Request, exc: ReconciliationError):
    status_code = ERROR_STATUS.get(type(exc), 400)
    logger.warning(
        "Request failed",
        path=request.url.path,
        code=exc.code,
        status_code=status_code,
        error=exc.message,
    )
    return JSONResponse(status_code=status_code, content={"detail": exc.to_dict()})


# Request models
class CandidateRequest(BaseModel):
    statement_id: str
    bank_transaction_ids: List[str]
    accounting_transaction_ids: List[str]
    match_id: Optional[str] = None
    match_reason: str = ""
    user_id: str = "system"

    def to_candidate(self) -> ReconciliationMatch:
        candidate = ReconciliationMatch(
            statement_id=self.statement_id,
            bank_transaction_ids=list(self.bank_transaction_ids),
            accounting_transaction_ids=list(self.accounting_transaction_ids),
            match_reason=self.match_reason,
            created_by=self.user_id,
        )
        if self.match_id:
            candidate.id = self.match_id
        return candidate


class BatchMatchRequest(BaseModel):
    candidates: List[CandidateRequest]
    user_id: str = "system"


class AutoMatchRequest(BaseModel):
    threshold: Optional[float] = Field(default=None, ge=0)
    user_id: str = "system"


class ReconcileRequest(BaseModel):
    accepted_outstanding_ids: List[str] = Field(default_factory=list)
    user_id: str = "system"


class UserRequest(BaseModel):
    user_id: str = "system"


def get_resolver(
    repository: ReconciliationRepository = Depends(get_repository),
    audit_logger: AuditLogger = Depends(get_audit_logger),
) -> MatchResolver:
    return MatchResolver(repository, settings=settings, audit_logger=audit_logger)


def get_tracker(
    repository: ReconciliationRepository = Depends(get_repository),
    audit_logger: AuditLogger = Depends(get_audit_logger),
) -> ReconciliationTracker:
    return ReconciliationTracker(repository, settings=settings, audit_logger=audit_logger)


# API Endpoints
@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy", "timestamp": datetime.utcnow().isoformat()}


@app.get("/api/statements/{statement_id}/candidates")
def list_candidates(statement_id: str, resolver: MatchResolver = Depends(get_resolver)):
    return resolver.generator.generate(statement_id).to_dict()


@app.post("/api/statements/{statement_id}/suggestions")
def create_suggestions(statement_id: str, request: UserRequest, resolver: MatchResolver = Depends(get_resolver)):
    created = resolver.suggest_matches(statement_id, user_id=request.user_id)
    return {"created": len(created), "matches": [m.to_dict() for m in created]}


@app.post("/api/statements/{statement_id}/auto-match")
def auto_match(statement_id: str, request: AutoMatchRequest, resolver: MatchResolver = Depends(get_resolver)):
    result = resolver.auto_match_transactions(
        statement_id,
        threshold=request.threshold,
        user_id=request.user_id,
    )
    return result.to_dict()


@app.get("/api/statements/{statement_id}/stats")
def statement_stats(statement_id: str, tracker: ReconciliationTracker = Depends(get_tracker)):
    return tracker.get_reconciliation_stats(statement_id).to_dict()


@app.get("/api/statements/{statement_id}/report")
def statement_report(statement_id: str, tracker: ReconciliationTracker = Depends(get_tracker)):
    return tracker.generate_reconciliation_report(statement_id).to_dict()


@app.get("/api/statements/{statement_id}/match-statistics")
def match_statistics(statement_id: str, tracker: ReconciliationTracker = Depends(get_tracker)):
    return tracker.get_match_statistics(statement_id).to_dict()


@app.post("/api/statements/{statement_id}/reconcile")
def reconcile_statement(
    statement_id: str,
    request: ReconcileRequest,
    tracker: ReconciliationTracker = Depends(get_tracker),
):
    statement = tracker.mark_statement_as_reconciled(
        statement_id,
        accepted_outstanding_ids=request.accepted_outstanding_ids,
        user_id=request.user_id,
    )
    return statement.to_dict()


@app.post("/api/matches")
def confirm_match(request: CandidateRequest, resolver: MatchResolver = Depends(get_resolver)):
    match = resolver.match_transactions(request.to_candidate(), request.user_id)
    return match.to_dict()


@app.post("/api/matches/batch")
def confirm_matches(request: BatchMatchRequest, resolver: MatchResolver = Depends(get_resolver)):
    outcomes = resolver.match_multiple_transactions(
        [c.to_candidate() for c in request.candidates],
        request.user_id,
    )
    return {
        "total": len(outcomes),
        "succeeded": sum(1 for o in outcomes if o.success),
        "outcomes": [o.to_dict() for o in outcomes],
    }


@app.post("/api/matches/{match_id}/unmatch")
def unmatch(match_id: str, request: UserRequest, resolver: MatchResolver = Depends(get_resolver)):
    return resolver.unmatch_transaction(match_id, request.user_id).to_dict()


@app.post("/api/matches/{match_id}/reject")
def reject(match_id: str, request: UserRequest, resolver: MatchResolver = Depends(get_resolver)):
    return resolver.reject_suggestion(match_id, request.user_id).to_dict()


@app.get("/api/audit")
def audit_trail(statement_id: Optional[str] = None, audit_logger: AuditLogger = Depends(get_audit_logger)):
    """Audit summary plus the retained entries, optionally for one statement."""
    entries = audit_logger.get_entries(statement_id=statement_id)
    return {
        "summary": audit_logger.summary(),
        "entries": [e.to_dict() for e in entries],
    }


@app.post("/api/audit/export")
def export_audit_trail(audit_logger: AuditLogger = Depends(get_audit_logger)):
    """Write the audit trail to reports_dir and start a fresh one."""
    path = audit_logger.export_to_file()
    exported = audit_logger.clear()
    return {"path": str(path), "exported": exported}

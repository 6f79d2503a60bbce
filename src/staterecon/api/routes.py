"""API routes for the reconciliation core."""

import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

from fastapi import APIRouter, Header, HTTPException, Query, Request
from pydantic import BaseModel

from .. import __version__
from ..audit import AuditQuery, RiskLevel
from ..auth import Principal
from ..engine import retry_transient
from ..errors import (
    AuditWriteFailed,
    InvariantViolation,
    PermissionDenied,
    RecordShapeError,
    SessionStateError,
    StateReconError,
    TransactionAborted,
    TransientError,
    UnknownCanonicalState,
    UnknownUncleanValue,
)
from ..reconcile import ReconciliationSession, SessionPhase

logger = logging.getLogger(__name__)

router = APIRouter()

# Open reconciliation sessions, keyed by session id
_sessions: dict[str, ReconciliationSession] = {}

_FINISHED_PHASES = frozenset({SessionPhase.DONE, SessionPhase.FAILED, SessionPhase.DISCARDED})

_STATUS_CODES = [
    (UnknownCanonicalState, 422),
    (PermissionDenied, 403),
    (AuditWriteFailed, 500),
    (TransientError, 503),
    (InvariantViolation, 500),
    (RecordShapeError, 500),
    (SessionStateError, 409),
    (UnknownUncleanValue, 404),
    (TransactionAborted, 500),
]


def get_context():
    """Get the global core context."""
    from .app import get_context as _get_context

    return _get_context()


def _http_error(exc: StateReconError) -> HTTPException:
    for kind, status_code in _STATUS_CODES:
        if isinstance(exc, kind):
            return HTTPException(status_code=status_code, detail=str(exc))
    return HTTPException(status_code=500, detail=str(exc))


def get_principal(
    request: Request,
    x_principal_id: Optional[str],
    x_principal_email: Optional[str],
    x_session_id: Optional[str],
    user_agent: Optional[str],
) -> Principal:
    """
    Build the caller's principal from identity headers.

    Headers carry identity only. The role always comes from the role
    directory, so a client cannot grant itself one.
    """
    if not x_principal_id:
        raise HTTPException(status_code=401, detail="Missing X-Principal-Id header")
    return Principal(
        id=x_principal_id,
        email=x_principal_email,
        session_id=x_session_id,
        ip=request.client.host if request.client else None,
        user_agent=user_agent,
    )


def _forget_if_finished(session: ReconciliationSession):
    if session.phase in _FINISHED_PHASES:
        _sessions.pop(session.id, None)
        logger.info(f"Session {session.id} released ({session.phase.value})")


def prune_sessions(ttl_seconds: int, now: Optional[datetime] = None) -> int:
    """Drop finished sessions and sessions idle longer than ``ttl_seconds``."""
    cutoff = (now or datetime.now(timezone.utc)) - timedelta(seconds=ttl_seconds)
    expired = [
        session
        for session in _sessions.values()
        if session.phase in _FINISHED_PHASES
        or (session.phase != SessionPhase.COMMITTING and session.last_active < cutoff)
    ]
    for session in expired:
        _sessions.pop(session.id, None)
    if expired:
        logger.info(f"Pruned {len(expired)} idle or finished sessions")
    return len(expired)


def _get_session(session_id: str) -> ReconciliationSession:
    prune_sessions(get_context().settings.session_ttl_seconds)
    session = _sessions.get(session_id)
    if session is None:
        raise HTTPException(status_code=404, detail="Session not found")
    session.touch()
    return session


class ApproveRequest(BaseModel):
    """Request to approve a canonical state for an unclean value."""

    unclean_value: str
    canonical_id: int


class EntryRequest(BaseModel):
    """Request naming one unclean value."""

    unclean_value: str


# Health


@router.get("/health")
async def health_check():
    """Health check endpoint with non-secret configuration."""
    context = get_context()
    return {
        "status": "ok",
        "version": __version__,
        "config": {
            "records_table": context.settings.records_table,
            "state_field": context.settings.state_field,
            "auto_threshold": context.settings.auto_threshold,
            "auto_margin": context.settings.auto_margin,
            "match_min_score": context.settings.match_min_score,
        },
        "open_sessions": len(_sessions),
    }


# Catalogue


@router.get("/states")
async def list_states():
    """List canonical states."""
    context = get_context()
    try:
        catalogue = await retry_transient(
            context.catalogue_repo.load, context.settings.retry_delays_ms
        )
    except StateReconError as e:
        raise _http_error(e)
    return {
        "count": len(catalogue),
        "states": [
            {"id": s.id, "name": s.name, "aliases": list(s.aliases)} for s in catalogue
        ],
    }


# Reconciliation sessions


@router.post("/reconciliation/sessions")
async def create_session():
    """Load distinct state values and propose mappings."""
    context = get_context()
    prune_sessions(context.settings.session_ttl_seconds)
    session = context.new_session()
    _sessions[session.id] = session
    try:
        await retry_transient(session.load, context.settings.retry_delays_ms)
    except StateReconError as e:
        _sessions.pop(session.id, None)
        raise _http_error(e)
    return session.view().model_dump(mode="json")


@router.get("/reconciliation/sessions/{session_id}")
async def get_session(session_id: str):
    """Get a session with its mapping entries."""
    return _get_session(session_id).view().model_dump(mode="json")


@router.post("/reconciliation/sessions/{session_id}/approve")
async def approve_entry(session_id: str, request: ApproveRequest):
    """Approve a canonical state for an unclean value."""
    session = _get_session(session_id)
    try:
        entry = session.approve(request.unclean_value, request.canonical_id)
    except StateReconError as e:
        raise _http_error(e)
    return {"entry": entry.model_dump(mode="json"), "summary": session.summary().model_dump()}


@router.post("/reconciliation/sessions/{session_id}/reject")
async def reject_entry(session_id: str, request: EntryRequest):
    """Reject the mapping for an unclean value."""
    session = _get_session(session_id)
    try:
        entry = session.reject(request.unclean_value)
    except StateReconError as e:
        raise _http_error(e)
    return {"entry": entry.model_dump(mode="json"), "summary": session.summary().model_dump()}


@router.post("/reconciliation/sessions/{session_id}/reset")
async def reset_entry(session_id: str, request: EntryRequest):
    """Re-apply auto-selection to an unclean value."""
    session = _get_session(session_id)
    try:
        entry = session.reset(request.unclean_value)
    except StateReconError as e:
        raise _http_error(e)
    return {"entry": entry.model_dump(mode="json"), "summary": session.summary().model_dump()}


@router.post("/reconciliation/sessions/{session_id}/commit")
async def commit_session(
    session_id: str,
    request: Request,
    x_principal_id: Optional[str] = Header(None),
    x_principal_email: Optional[str] = Header(None),
    x_session_id: Optional[str] = Header(None),
    user_agent: Optional[str] = Header(None),
):
    """Apply the approved mappings as one audited batch."""
    principal = get_principal(request, x_principal_id, x_principal_email, x_session_id, user_agent)
    session = _get_session(session_id)
    context = get_context()
    try:
        result = await session.commit(context.commit_engine(principal))
    except StateReconError as e:
        _forget_if_finished(session)
        raise _http_error(e)
    _forget_if_finished(session)
    return result.model_dump(mode="json")


@router.delete("/reconciliation/sessions/{session_id}")
async def discard_session(session_id: str):
    """Discard a session before commit."""
    session = _get_session(session_id)
    try:
        session.discard()
    except StateReconError as e:
        raise _http_error(e)
    _forget_if_finished(session)
    return {"status": "ok", "message": f"Session {session_id} discarded"}


# Audit


@router.get("/audit")
async def audit_feed(
    search: Optional[str] = None,
    action_type: list[str] = Query(default=[]),
    risk_level: list[RiskLevel] = Query(default=[]),
    principal_role: list[str] = Query(default=[]),
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    page: int = Query(default=1, ge=1),
    page_size: int = Query(default=50, ge=1, le=500),
):
    """Filtered, paginated activity feed."""
    context = get_context()
    query = AuditQuery(
        search=search,
        action_types=action_type,
        risk_levels=risk_level,
        principal_roles=principal_role,
        start=start,
        end=end,
        page=page,
        page_size=page_size,
    )
    try:
        result = await retry_transient(
            lambda: context.audit.query(query), context.settings.retry_delays_ms
        )
    except StateReconError as e:
        raise _http_error(e)
    return result.model_dump(mode="json")


@router.get("/audit/statistics")
async def audit_statistics(principal_id: Optional[str] = None):
    """Aggregate counts over the audit trail."""
    context = get_context()
    try:
        stats = await retry_transient(
            lambda: context.audit.statistics(principal_id), context.settings.retry_delays_ms
        )
    except StateReconError as e:
        raise _http_error(e)
    return stats.model_dump(mode="json")


@router.get("/audit/records/{table_name}/{record_id}")
async def record_history(table_name: str, record_id: str, limit: int = Query(default=50, ge=1)):
    """Audit history for one record, newest first."""
    context = get_context()
    try:
        entries = await retry_transient(
            lambda: context.audit.history_for_record(table_name, record_id, limit),
            context.settings.retry_delays_ms,
        )
    except StateReconError as e:
        raise _http_error(e)
    return {"count": len(entries), "entries": [e.model_dump(mode="json") for e in entries]}


@router.get("/audit/batches/{batch_id}")
async def get_batch(batch_id: str):
    """A batch header with its details."""
    context = get_context()
    try:
        header = await context.audit.get_batch(batch_id)
        if header is None:
            raise HTTPException(status_code=404, detail="Batch not found")
        details = await context.audit.details_for_batch(batch_id)
    except StateReconError as e:
        raise _http_error(e)
    return {
        "header": header.model_dump(mode="json"),
        "details": [d.model_dump(mode="json") for d in details],
    }

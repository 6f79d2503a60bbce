"""Data models for the append-only audit trail."""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from .risk import RiskLevel, risk_of


def _utc_now() -> datetime:
    """Return current UTC time as timezone-aware datetime."""
    return datetime.now(timezone.utc)


class DetailStatus(str, Enum):
    """Outcome of one row of a batch."""

    COMPLETED = "completed"
    ERROR = "error"


class AuditMetadata(BaseModel):
    """Correlation data attached to every audit row. Extra keys are kept."""

    model_config = ConfigDict(frozen=True, extra="allow")

    transaction_id: Optional[str] = None
    session_id: Optional[str] = None
    user_agent: Optional[str] = None


class AuditLogEntry(BaseModel):
    """A single audit row (general actions and batch headers alike)."""

    model_config = ConfigDict(frozen=True)

    id: str
    action_type: str
    table_name: Optional[str] = None
    record_id: Optional[str] = None
    old_value: Optional[str] = None
    new_value: Optional[str] = None
    principal_id: Optional[str] = None
    principal_email: Optional[str] = None
    principal_role: Optional[str] = None
    ip: Optional[str] = None
    timestamp: datetime = Field(default_factory=_utc_now)
    risk_level: RiskLevel = RiskLevel.LOW
    metadata: AuditMetadata = Field(default_factory=AuditMetadata)

    @model_validator(mode="before")
    @classmethod
    def _classify(cls, data: Any) -> Any:
        if isinstance(data, dict) and data.get("risk_level") is None:
            data = {**data, "risk_level": risk_of(data.get("action_type", ""))}
        return data


class BatchAuditHeader(BaseModel):
    """Summary row written once per committed batch."""

    model_config = ConfigDict(frozen=True)

    id: str
    action_type: str
    table_name: Optional[str] = None
    principal_id: Optional[str] = None
    principal_email: Optional[str] = None
    principal_role: Optional[str] = None
    ip: Optional[str] = None
    user_agent: Optional[str] = None
    started_at: datetime
    finished_at: datetime
    total_attempted: int = Field(ge=0)
    total_succeeded: int = Field(ge=0)
    total_failed: int = Field(ge=0)
    risk_level: RiskLevel = RiskLevel.HIGH
    metadata: AuditMetadata = Field(default_factory=AuditMetadata)


class BatchAuditDetail(BaseModel):
    """One row of a batch, ordered by sequence number. Linked to its header by id."""

    model_config = ConfigDict(frozen=True)

    batch_id: str
    sequence_number: int = Field(ge=1)
    record_identifier: str
    field_name: str
    old_value: Optional[str] = None
    new_value: Optional[str] = None
    updated_count: int = Field(default=0, ge=0)
    status: DetailStatus = DetailStatus.COMPLETED
    error_message: Optional[str] = None


class BatchView(BaseModel):
    """A header together with its details."""

    header: BatchAuditHeader
    details: list[BatchAuditDetail]


class AuditQuery(BaseModel):
    """Filters for the activity feed."""

    search: Optional[str] = None
    action_types: list[str] = Field(default_factory=list)
    risk_levels: list[RiskLevel] = Field(default_factory=list)
    principal_roles: list[str] = Field(default_factory=list)
    start: Optional[datetime] = None
    end: Optional[datetime] = None
    page: int = Field(default=1, ge=1)
    page_size: int = Field(default=50, ge=1, le=500)


class AuditPage(BaseModel):
    """One page of the activity feed."""

    items: list[AuditLogEntry]
    total: int
    page: int
    page_size: int


class AuditStatistics(BaseModel):
    """Aggregate counts over the audit trail."""

    total: int = 0
    by_action_type: dict[str, int] = Field(default_factory=dict)
    by_table: dict[str, int] = Field(default_factory=dict)
    by_risk_level: dict[str, int] = Field(default_factory=dict)
    earliest: Optional[datetime] = None
    latest: Optional[datetime] = None

"""Append-only audit trail with batch details and risk classification."""

from .models import (
    AuditLogEntry,
    AuditMetadata,
    AuditPage,
    AuditQuery,
    AuditStatistics,
    BatchAuditDetail,
    BatchAuditHeader,
    BatchView,
    DetailStatus,
)
from .risk import (
    BULK_UPDATE,
    HIGH_RISK_ACTIONS,
    OPERATION_FAILED,
    PERMISSIONS_CHECK_FAILED,
    RiskLevel,
    risk_of,
)
from .store import AuditStore

__all__ = [
    "AuditLogEntry",
    "AuditMetadata",
    "AuditPage",
    "AuditQuery",
    "AuditStatistics",
    "BatchAuditDetail",
    "BatchAuditHeader",
    "BatchView",
    "DetailStatus",
    "BULK_UPDATE",
    "HIGH_RISK_ACTIONS",
    "OPERATION_FAILED",
    "PERMISSIONS_CHECK_FAILED",
    "RiskLevel",
    "risk_of",
    "AuditStore",
]

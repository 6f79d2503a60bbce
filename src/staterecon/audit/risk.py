"""Risk classification for audit action types."""

from enum import Enum


class RiskLevel(str, Enum):
    """Risk classification of an audit entry."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


MASS_DELETE = "MASS_DELETE"
BULK_UPDATE = "BULK_UPDATE"
PERMISSIONS_CHANGE = "PERMISSIONS_CHANGE"
DATA_EXPORT = "DATA_EXPORT"
DELETE_ALL = "DELETE_ALL"
PERMISSIONS_CHECK_FAILED = "PERMISSIONS_CHECK_FAILED"
OPERATION_FAILED = "OPERATION_FAILED"

HIGH_RISK_ACTIONS = frozenset({MASS_DELETE, BULK_UPDATE, PERMISSIONS_CHANGE, DATA_EXPORT, DELETE_ALL})


def risk_of(action_type: str) -> RiskLevel:
    """Fixed mapping from action type to risk level."""
    action = (action_type or "").upper()
    if action in HIGH_RISK_ACTIONS:
        return RiskLevel.HIGH
    if "DELETE" in action or "UPDATE" in action:
        return RiskLevel.MEDIUM
    return RiskLevel.LOW

"""Error kinds surfaced by the reconciliation core."""

from typing import Optional


class StateReconError(Exception):
    """Base class for all reconciliation core errors."""


class UnknownCanonicalState(StateReconError):
    """Raised when an approval references an id absent from the catalogue."""

    def __init__(self, canonical_id: int):
        self.canonical_id = canonical_id
        super().__init__(f"Canonical state {canonical_id!r} is not in the catalogue")


class UnknownUncleanValue(StateReconError):
    """Raised when a mapping operation names a value that is not in the set."""

    def __init__(self, unclean_value: str):
        self.unclean_value = unclean_value
        super().__init__(f"No mapping entry for unclean value {unclean_value!r}")


class PermissionDenied(StateReconError):
    """Raised when the principal lacks the role an operation requires."""

    def __init__(self, principal_id: str, required_role: str, actual_role: Optional[str] = None):
        self.principal_id = principal_id
        self.required_role = required_role
        self.actual_role = actual_role
        super().__init__(
            f"Principal {principal_id!r} (role={actual_role or 'none'}) "
            f"requires role {required_role!r}"
        )


class AuditWriteFailed(StateReconError):
    """Raised when an audit insert fails; the surrounding batch is rolled back."""


class TransientError(StateReconError):
    """Remote timeout or connectivity failure. Callers may retry outside a commit."""


class InvariantViolation(StateReconError):
    """A mapping entry broke one of its invariants. Indicates a programming error."""


class RecordShapeError(StateReconError):
    """A row read from the store does not match its declared row type."""


class SessionStateError(StateReconError):
    """An operation is not allowed in the session's current phase."""

    def __init__(self, phase: str, operation: str):
        self.phase = phase
        self.operation = operation
        super().__init__(f"Cannot {operation} while session is {phase}")


class TransactionAborted(StateReconError):
    """The database ended or refused the commit transaction; nothing was applied."""

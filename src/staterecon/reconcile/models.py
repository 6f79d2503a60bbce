"""Data models for state reconciliation."""

from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from ..errors import InvariantViolation


class CanonicalState(BaseModel):
    """An authoritative state name with its known aliases."""

    model_config = ConfigDict(frozen=True)

    id: int
    name: str
    aliases: tuple[str, ...] = ()


class MatchReason(str, Enum):
    """Which scoring rule produced a candidate."""

    EXACT = "exact"
    ALIAS = "alias"
    PREFIX = "prefix"
    FUZZY = "fuzzy"


# Earlier rules win when two rules give the same canonical state the same score.
REASON_PRIORITY = {
    MatchReason.EXACT: 0,
    MatchReason.ALIAS: 1,
    MatchReason.PREFIX: 2,
    MatchReason.FUZZY: 3,
}


class Candidate(BaseModel):
    """A proposed canonical state for an unclean value."""

    model_config = ConfigDict(frozen=True)

    canonical_id: int
    canonical_name: str
    score: int = Field(ge=0, le=100)
    reason: MatchReason


class EntryStatus(str, Enum):
    """Lifecycle of a mapping entry. COMMITTED and DISCARDED are terminal."""

    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    COMMITTED = "committed"
    DISCARDED = "discarded"


TERMINAL_STATUSES = frozenset({EntryStatus.COMMITTED, EntryStatus.DISCARDED})


class MappingEntry(BaseModel):
    """One unclean value and the canonical state chosen for it."""

    unclean_value: str  # raw value as stored; the record-store predicate uses it verbatim
    normalized: str
    chosen_canonical_id: Optional[int] = None
    chosen_canonical_name: Optional[str] = None
    top_candidates: list[Candidate] = Field(default_factory=list, max_length=5)
    confidence: int = Field(default=0, ge=0, le=100)
    auto_selected: bool = False
    user_overridden: bool = False
    status: EntryStatus = EntryStatus.PENDING
    auto_choice_id: Optional[int] = None  # what the policy picked, if anything

    def candidate_for(self, canonical_id: int) -> Optional[Candidate]:
        for candidate in self.top_candidates:
            if candidate.canonical_id == canonical_id:
                return candidate
        return None

    def check_invariants(self, auto_threshold: int):
        """Raise InvariantViolation if the entry is in an impossible state."""
        if self.auto_selected and self.confidence < auto_threshold:
            raise InvariantViolation(
                f"{self.unclean_value!r}: auto-selected below threshold "
                f"({self.confidence} < {auto_threshold})"
            )
        if self.auto_selected and self.user_overridden:
            raise InvariantViolation(f"{self.unclean_value!r}: both auto-selected and overridden")
        if self.user_overridden and self.chosen_canonical_id is None:
            raise InvariantViolation(f"{self.unclean_value!r}: overridden without a choice")
        if self.status in (EntryStatus.APPROVED, EntryStatus.COMMITTED) and (
            self.chosen_canonical_id is None
        ):
            raise InvariantViolation(f"{self.unclean_value!r}: approved without a choice")
        if self.status == EntryStatus.REJECTED and self.chosen_canonical_id is not None:
            raise InvariantViolation(f"{self.unclean_value!r}: rejected but still has a choice")


class MappingSummary(BaseModel):
    """Counts over a mapping set."""

    total: int = 0
    approved: int = 0
    pending: int = 0
    rejected: int = 0
    auto_selected: int = 0
    user_overridden: int = 0


class MatchReport(BaseModel):
    """Result of matching a batch of unclean values."""

    results: dict[str, list[Candidate]] = Field(default_factory=dict)
    total_processed: int = 0
    high_confidence: int = 0
    medium_confidence: int = 0
    low_confidence: int = 0

"""The editable, in-session proposal linking unclean values to canonical states."""

import logging
from dataclasses import dataclass
from typing import Iterable, Iterator, Optional

from ..config import Settings, settings as default_settings
from ..errors import (
    InvariantViolation,
    SessionStateError,
    UnknownCanonicalState,
    UnknownUncleanValue,
)
from .catalogue import Catalogue
from .matcher import StateMatcher
from .models import (
    TERMINAL_STATUSES,
    Candidate,
    EntryStatus,
    MappingEntry,
    MappingSummary,
)
from .normalizer import normalize

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AutoSelectionPolicy:
    """Approve the top candidate without user action when it clearly wins."""

    threshold: int = 90
    margin: int = 10

    @classmethod
    def from_settings(cls, config: Optional[Settings] = None) -> "AutoSelectionPolicy":
        config = config or default_settings
        return cls(threshold=config.auto_threshold, margin=config.auto_margin)

    def select(self, candidates: list[Candidate]) -> Optional[Candidate]:
        if not candidates:
            return None
        top = candidates[0]
        if top.score < self.threshold:
            return None
        runner_up = candidates[1].score if len(candidates) > 1 else 0
        if runner_up == top.score:
            return None
        if top.score - runner_up < self.margin:
            return None
        return top


class MappingSet:
    """
    Ordered set of mapping entries keyed by unclean value.

    Lives for one reconciliation session and is discarded after commit.
    """

    def __init__(self, catalogue: Catalogue, policy: Optional[AutoSelectionPolicy] = None):
        self.catalogue = catalogue
        self.policy = policy or AutoSelectionPolicy.from_settings()
        self._entries: dict[str, MappingEntry] = {}

    @classmethod
    def build(
        cls,
        unclean_values: Iterable[str],
        matcher: StateMatcher,
        policy: Optional[AutoSelectionPolicy] = None,
    ) -> "MappingSet":
        """Run every distinct value through the matcher and apply the auto-selection policy."""
        mapping_set = cls(matcher.catalogue, policy)
        for value in unclean_values:
            if value not in mapping_set:
                mapping_set.add(value, matcher.match(value))
        return mapping_set

    @classmethod
    async def propose(
        cls,
        unclean_values: Iterable[str],
        matcher: StateMatcher,
        policy: Optional[AutoSelectionPolicy] = None,
        chunk_size: Optional[int] = None,
    ) -> "MappingSet":
        """Like ``build`` but matches in chunks so the event loop stays responsive."""
        mapping_set = cls(matcher.catalogue, policy)
        report = await matcher.match_many(
            unclean_values, chunk_size=chunk_size, auto_threshold=mapping_set.policy.threshold
        )
        for value, candidates in report.results.items():
            mapping_set.add(value, candidates)
        return mapping_set

    def add(self, unclean_value: str, candidates: list[Candidate]) -> MappingEntry:
        if unclean_value in self._entries:
            raise ValueError(f"Duplicate unclean value {unclean_value!r}")
        entry = MappingEntry(
            unclean_value=unclean_value,
            normalized=normalize(unclean_value),
            top_candidates=candidates,
        )
        self._apply_policy(entry)
        self._entries[unclean_value] = entry
        return entry

    def _apply_policy(self, entry: MappingEntry):
        selected = self.policy.select(entry.top_candidates)
        entry.user_overridden = False
        entry.confidence = entry.top_candidates[0].score if entry.top_candidates else 0
        if selected is not None:
            entry.chosen_canonical_id = selected.canonical_id
            entry.chosen_canonical_name = selected.canonical_name
            entry.auto_selected = True
            entry.auto_choice_id = selected.canonical_id
            entry.status = EntryStatus.APPROVED
            logger.debug(f"Auto-selected {selected.canonical_name!r} for {entry.unclean_value!r}")
        else:
            entry.chosen_canonical_id = None
            entry.chosen_canonical_name = None
            entry.auto_selected = False
            entry.auto_choice_id = None
            entry.status = EntryStatus.PENDING
        self._check(entry)

    def _editable(self, unclean_value: str, operation: str) -> MappingEntry:
        entry = self._entries.get(unclean_value)
        if entry is None:
            raise UnknownUncleanValue(unclean_value)
        if entry.status in TERMINAL_STATUSES:
            raise SessionStateError(entry.status.value, operation)
        return entry

    def _check(self, entry: MappingEntry):
        try:
            entry.check_invariants(self.policy.threshold)
        except InvariantViolation:
            logger.exception(f"Mapping entry invariant broken for {entry.unclean_value!r}")
            raise

    def approve(self, unclean_value: str, canonical_id: int) -> MappingEntry:
        """Choose ``canonical_id`` for the value; any catalogue state may be entered manually."""
        entry = self._editable(unclean_value, "approve")
        state = self.catalogue.by_id(canonical_id)
        if state is None:
            raise UnknownCanonicalState(canonical_id)

        candidate = entry.candidate_for(canonical_id)
        entry.chosen_canonical_id = state.id
        entry.chosen_canonical_name = state.name
        entry.auto_selected = False
        entry.user_overridden = (
            entry.auto_choice_id is not None and entry.auto_choice_id != canonical_id
        )
        entry.confidence = candidate.score if candidate else 0
        entry.status = EntryStatus.APPROVED
        self._check(entry)
        return entry

    def reject(self, unclean_value: str) -> MappingEntry:
        entry = self._editable(unclean_value, "reject")
        entry.chosen_canonical_id = None
        entry.chosen_canonical_name = None
        entry.auto_selected = False
        entry.user_overridden = False
        entry.status = EntryStatus.REJECTED
        self._check(entry)
        return entry

    def reset(self, unclean_value: str) -> MappingEntry:
        """Forget user edits and re-apply the auto-selection policy."""
        entry = self._editable(unclean_value, "reset")
        self._apply_policy(entry)
        return entry

    def summary(self) -> MappingSummary:
        summary = MappingSummary(total=len(self._entries))
        for entry in self._entries.values():
            if entry.status == EntryStatus.APPROVED:
                summary.approved += 1
            elif entry.status == EntryStatus.PENDING:
                summary.pending += 1
            elif entry.status == EntryStatus.REJECTED:
                summary.rejected += 1
            if entry.auto_selected:
                summary.auto_selected += 1
            if entry.user_overridden:
                summary.user_overridden += 1
        return summary

    def approved_entries(self) -> list[MappingEntry]:
        """Approved entries in insertion order."""
        return [e for e in self._entries.values() if e.status == EntryStatus.APPROVED]

    def committable_entries(self) -> list[MappingEntry]:
        """Approved entries plus already-committed ones, so re-running a commit is audited."""
        return [
            e
            for e in self._entries.values()
            if e.status in (EntryStatus.APPROVED, EntryStatus.COMMITTED)
        ]

    def mark_committed(self):
        """Approved entries become committed; everything else is discarded."""
        for entry in self._entries.values():
            if entry.status == EntryStatus.APPROVED:
                entry.status = EntryStatus.COMMITTED
            elif entry.status not in TERMINAL_STATUSES:
                entry.status = EntryStatus.DISCARDED

    def mark_discarded(self):
        for entry in self._entries.values():
            if entry.status not in TERMINAL_STATUSES:
                entry.status = EntryStatus.DISCARDED

    def get(self, unclean_value: str) -> Optional[MappingEntry]:
        return self._entries.get(unclean_value)

    def __getitem__(self, unclean_value: str) -> MappingEntry:
        entry = self._entries.get(unclean_value)
        if entry is None:
            raise UnknownUncleanValue(unclean_value)
        return entry

    def __contains__(self, unclean_value: object) -> bool:
        return unclean_value in self._entries

    def __iter__(self) -> Iterator[MappingEntry]:
        return iter(self._entries.values())

    def __len__(self) -> int:
        return len(self._entries)

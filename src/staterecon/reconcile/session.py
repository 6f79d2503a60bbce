"""One reconciliation run, modelled as an explicit state machine."""

import logging
import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import TYPE_CHECKING, Optional

from pydantic import BaseModel, Field

from ..config import Settings, settings as default_settings
from ..errors import PermissionDenied, SessionStateError, TransientError
from ..records import RecordStore
from .catalogue import CatalogueRepository
from .mapping_set import AutoSelectionPolicy, MappingSet
from .matcher import StateMatcher
from .models import MappingEntry, MappingSummary

if TYPE_CHECKING:
    from ..engine import CommitEngine, CommitResult

logger = logging.getLogger(__name__)


class SessionPhase(str, Enum):
    """loading -> proposed -> editing -> committing -> done | failed, or discarded."""

    LOADING = "loading"
    PROPOSED = "proposed"
    EDITING = "editing"
    COMMITTING = "committing"
    DONE = "done"
    FAILED = "failed"
    DISCARDED = "discarded"


EDITABLE_PHASES = frozenset({SessionPhase.PROPOSED, SessionPhase.EDITING})
DISCARDABLE_PHASES = frozenset(
    {SessionPhase.LOADING, SessionPhase.PROPOSED, SessionPhase.EDITING, SessionPhase.FAILED}
)


class SessionView(BaseModel):
    """Serializable snapshot of a session for the UI."""

    id: str
    phase: SessionPhase
    created_at: datetime
    summary: Optional[MappingSummary] = None
    entries: list[MappingEntry] = Field(default_factory=list)
    result: Optional[dict] = None
    error: Optional[str] = None


class ReconciliationSession:
    """
    Loads the distinct state values, proposes mappings, accepts edits and
    hands the approved set to a commit engine.

    Transitions happen only at phase boundaries; an operation requested in
    the wrong phase raises SessionStateError.
    """

    def __init__(
        self,
        records: RecordStore,
        catalogue_repo: CatalogueRepository,
        config: Optional[Settings] = None,
        session_id: Optional[str] = None,
    ):
        self.id = session_id or uuid.uuid4().hex
        self.records = records
        self.catalogue_repo = catalogue_repo
        self.settings = config or default_settings
        self.phase = SessionPhase.LOADING
        self.mapping_set: Optional[MappingSet] = None
        self.result: Optional["CommitResult"] = None
        self.error: Optional[str] = None
        self.created_at = datetime.now(timezone.utc)
        self.last_active = self.created_at

    def touch(self):
        """Mark the session as in use now."""
        self.last_active = datetime.now(timezone.utc)

    def _require(self, allowed: frozenset, operation: str):
        self.touch()
        if self.phase not in allowed:
            raise SessionStateError(self.phase.value, operation)

    async def load(self) -> Optional[MappingSet]:
        """Read the catalogue and distinct values, then build the proposal."""
        self._require(frozenset({SessionPhase.LOADING}), "load")
        try:
            catalogue = await self.catalogue_repo.load()
            values = await self.records.select_distinct(
                self.settings.records_table, self.settings.state_field
            )
            unclean = [value for value in values if not catalogue.is_canonical(value)]
            matcher = StateMatcher(
                catalogue,
                min_score=self.settings.match_min_score,
                max_candidates=self.settings.max_candidates,
            )
            mapping_set = await MappingSet.propose(
                unclean,
                matcher,
                policy=AutoSelectionPolicy.from_settings(self.settings),
                chunk_size=self.settings.chunk_size,
            )
        except TransientError:
            # Still loading; the caller may retry.
            raise
        except Exception as exc:
            if self.phase == SessionPhase.LOADING:
                self.phase = SessionPhase.FAILED
                self.error = str(exc)
            raise

        if self.phase == SessionPhase.DISCARDED:
            logger.info(f"Session {self.id} was discarded while loading")
            return None

        self.mapping_set = mapping_set
        self.phase = SessionPhase.PROPOSED
        summary = mapping_set.summary()
        logger.info(
            f"Session {self.id} proposed {summary.total} mappings "
            f"({summary.auto_selected} auto-selected, {summary.pending} pending)"
        )
        return mapping_set

    def _edit(self, operation: str) -> MappingSet:
        self._require(EDITABLE_PHASES, operation)
        self.phase = SessionPhase.EDITING
        return self.mapping_set

    def approve(self, unclean_value: str, canonical_id: int) -> MappingEntry:
        return self._edit("approve").approve(unclean_value, canonical_id)

    def reject(self, unclean_value: str) -> MappingEntry:
        return self._edit("reject").reject(unclean_value)

    def reset(self, unclean_value: str) -> MappingEntry:
        return self._edit("reset").reset(unclean_value)

    async def commit(self, engine: "CommitEngine") -> "CommitResult":
        """
        Hand the approved entries to ``engine``.

        A permission denial leaves the session editable; any other failure
        is terminal because the engine has already rolled back and audited it.
        """
        self._require(EDITABLE_PHASES, "commit")
        previous = self.phase
        self.phase = SessionPhase.COMMITTING
        try:
            result = await engine.commit(self.mapping_set)
        except PermissionDenied:
            self.phase = previous
            raise
        except Exception as exc:
            self.phase = SessionPhase.FAILED
            self.error = str(exc)
            raise

        self.result = result
        self.phase = SessionPhase.DONE
        self.mapping_set = None
        return result

    def discard(self):
        """Drop the proposal. Writes no audit."""
        self._require(DISCARDABLE_PHASES, "discard")
        if self.mapping_set is not None:
            self.mapping_set.mark_discarded()
        self.mapping_set = None
        self.phase = SessionPhase.DISCARDED
        logger.info(f"Session {self.id} discarded")

    def summary(self) -> Optional[MappingSummary]:
        return self.mapping_set.summary() if self.mapping_set is not None else None

    def view(self) -> SessionView:
        return SessionView(
            id=self.id,
            phase=self.phase,
            created_at=self.created_at,
            summary=self.summary(),
            entries=list(self.mapping_set) if self.mapping_set is not None else [],
            result=self.result.model_dump(mode="json") if self.result is not None else None,
            error=self.error,
        )

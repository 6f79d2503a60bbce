"""Normalization, matching and the editable mapping proposal."""

from .catalogue import Catalogue, CatalogueRepository, default_states
from .mapping_set import AutoSelectionPolicy, MappingSet
from .matcher import StateMatcher, similarity_score
from .models import (
    CanonicalState,
    Candidate,
    EntryStatus,
    MappingEntry,
    MappingSummary,
    MatchReason,
    MatchReport,
)
from .normalizer import expand_abbreviation, normalize
from .session import ReconciliationSession, SessionPhase, SessionView

__all__ = [
    "Catalogue",
    "CatalogueRepository",
    "default_states",
    "AutoSelectionPolicy",
    "MappingSet",
    "StateMatcher",
    "similarity_score",
    "CanonicalState",
    "Candidate",
    "EntryStatus",
    "MappingEntry",
    "MappingSummary",
    "MatchReason",
    "MatchReport",
    "expand_abbreviation",
    "normalize",
    "ReconciliationSession",
    "SessionPhase",
    "SessionView",
]

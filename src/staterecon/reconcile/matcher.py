"""Fuzzy matcher proposing canonical states for unclean values."""

import asyncio
import logging
import math
from typing import Iterable, Optional

from rapidfuzz.distance import DamerauLevenshtein

from ..config import settings
from .catalogue import Catalogue
from .models import REASON_PRIORITY, Candidate, MatchReason, MatchReport
from .normalizer import expand_abbreviation, normalize

logger = logging.getLogger(__name__)

EXACT_SCORE = 100
ALIAS_SCORE = 95
PREFIX_BASE_SCORE = 85
PREFIX_FLOOR = 60
PREFIX_MIN_LENGTH = 3
MEDIUM_CONFIDENCE = 70


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def similarity_score(a: str, b: str) -> int:
    """100 * (1 - d / max(|a|, |b|)) with d the Damerau-Levenshtein distance."""
    longest = max(len(a), len(b))
    if longest == 0:
        return 100
    distance = DamerauLevenshtein.distance(a, b)
    return max(0, _round_half_up(100 * (1 - distance / longest)))


def prefix_score(value: str, name: str) -> Optional[int]:
    """Score for ``value`` being a prefix of ``name``, or None if the rule doesn't apply."""
    if len(value) < PREFIX_MIN_LENGTH or value == name or not name.startswith(value):
        return None
    return max(PREFIX_FLOOR, PREFIX_BASE_SCORE - (len(name) - len(value)) * 2)


class StateMatcher:
    """
    Ranks canonical states for a raw value.

    ``match`` is a pure function of the value and the catalogue: it never
    suspends and repeated calls return identical lists.
    """

    def __init__(
        self,
        catalogue: Catalogue,
        min_score: Optional[int] = None,
        max_candidates: Optional[int] = None,
    ):
        self.catalogue = catalogue
        self.min_score = settings.match_min_score if min_score is None else min_score
        self.max_candidates = max_candidates or settings.max_candidates
        self._names = [(normalize(state.name), state) for state in catalogue]

    def match(self, raw_value: str) -> list[Candidate]:
        """Candidates sorted by descending score, then canonical name."""
        value = normalize(raw_value)
        if not value:
            return []

        best: dict[int, Candidate] = {}

        def offer(candidate: Candidate):
            current = best.get(candidate.canonical_id)
            if current is None or (candidate.score, -REASON_PRIORITY[candidate.reason]) > (
                current.score,
                -REASON_PRIORITY[current.reason],
            ):
                best[candidate.canonical_id] = candidate

        exact = self.catalogue.by_name(value)
        if exact is not None:
            offer(Candidate(canonical_id=exact.id, canonical_name=exact.name,
                            score=EXACT_SCORE, reason=MatchReason.EXACT))

        alias = self.catalogue.by_alias(value)
        if alias is None:
            expanded = expand_abbreviation(value)
            alias = self.catalogue.by_name(expanded) if expanded else None
        if alias is not None:
            offer(Candidate(canonical_id=alias.id, canonical_name=alias.name,
                            score=ALIAS_SCORE, reason=MatchReason.ALIAS))

        for name, state in self._names:
            score = prefix_score(value, name)
            if score is not None:
                offer(Candidate(canonical_id=state.id, canonical_name=state.name,
                                score=score, reason=MatchReason.PREFIX))
            score = similarity_score(value, name)
            if score >= self.min_score:
                offer(Candidate(canonical_id=state.id, canonical_name=state.name,
                                score=score, reason=MatchReason.FUZZY))

        ranked = sorted(
            (c for c in best.values() if c.score >= self.min_score),
            key=lambda c: (-c.score, c.canonical_name),
        )
        return ranked[: self.max_candidates]

    async def match_many(
        self,
        raw_values: Iterable[str],
        chunk_size: Optional[int] = None,
        auto_threshold: Optional[int] = None,
    ) -> MatchReport:
        """
        Match many values, yielding to the event loop between chunks.

        Also buckets the top scores the way the import screens report them:
        high (>= auto threshold), medium (>= 70) and low.
        """
        chunk_size = chunk_size or settings.chunk_size
        threshold = settings.auto_threshold if auto_threshold is None else auto_threshold
        values = list(dict.fromkeys(raw_values))
        report = MatchReport(total_processed=len(values))

        for start in range(0, len(values), chunk_size):
            for value in values[start:start + chunk_size]:
                candidates = self.match(value)
                report.results[value] = candidates
                top = candidates[0].score if candidates else 0
                if top >= threshold:
                    report.high_confidence += 1
                elif top >= MEDIUM_CONFIDENCE:
                    report.medium_confidence += 1
                else:
                    report.low_confidence += 1
            await asyncio.sleep(0)

        logger.info(
            f"Matched {report.total_processed} values: {report.high_confidence} high, "
            f"{report.medium_confidence} medium, {report.low_confidence} low confidence"
        )
        return report

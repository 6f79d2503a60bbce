"""Tests for the state matcher."""

import pytest

from staterecon.reconcile import CanonicalState, Catalogue, MatchReason, StateMatcher
from staterecon.reconcile.matcher import prefix_score, similarity_score


class TestScoring:
    """Test the scoring formulas."""

    def test_similarity_of_one_typo(self):
        """A single substitution in fourteen characters scores 93."""
        assert similarity_score("madhya predesh", "madhya pradesh") == 93
        # One edit over six characters: 100 * 5/6 = 83.3, so 83 and below the
        # auto threshold. Panjab is a manual approval, not an auto-selection.
        assert similarity_score("panjab", "punjab") == 83

    def test_similarity_rounds_half_up(self):
        """62.5 rounds to 63."""
        assert similarity_score("abcdefgh", "abcdexyz") == 63

    def test_transposition_counts_once(self):
        """Swapped neighbours cost a single edit."""
        assert similarity_score("keraal", "kerala") == 83

    def test_identical_and_empty(self):
        """Identical strings score 100."""
        assert similarity_score("goa", "goa") == 100
        assert similarity_score("", "") == 100

    def test_prefix_score(self):
        """Prefix score drops by two per missing character down to a floor."""
        assert prefix_score("maha", "maharashtra") == 71
        assert prefix_score("and", "andaman and nicobar islands") == 60
        assert prefix_score("ma", "maharashtra") is None
        assert prefix_score("goa", "goa") is None
        assert prefix_score("kera", "karnataka") is None


class TestStateMatcher:
    """Test candidate ranking."""

    def test_alias_with_trailing_space(self, matcher):
        """'up ' resolves to Uttar Pradesh through its alias."""
        candidates = matcher.match("up ")
        assert candidates[0].canonical_name == "Uttar Pradesh"
        assert candidates[0].score == 95
        assert candidates[0].reason == MatchReason.ALIAS

    def test_fuzzy_typo(self, matcher):
        """A one-letter typo is a fuzzy candidate well ahead of the rest."""
        candidates = matcher.match("Madhya Predesh")
        assert candidates[0].canonical_name == "Madhya Pradesh"
        assert candidates[0].score == 93
        assert candidates[0].reason == MatchReason.FUZZY
        assert all(c.score <= 83 for c in candidates[1:])

    def test_exact_beats_alias(self, matcher):
        """An exact name match scores 100 even when the compact form is also an alias."""
        candidates = matcher.match("  tamil   NADU. ")
        assert candidates[0].canonical_name == "Tamil Nadu"
        assert candidates[0].score == 100
        assert candidates[0].reason == MatchReason.EXACT
        assert [c.canonical_name for c in candidates].count("Tamil Nadu") == 1

    def test_diacritics_match_exactly(self, matcher):
        """Accented spellings are exact matches."""
        assert matcher.match("Kérala")[0].score == 100

    def test_historic_name_is_alias(self, matcher):
        """'orissa' maps to Odisha through the abbreviation table."""
        top = matcher.match("orissa")[0]
        assert (top.canonical_name, top.score, top.reason) == ("Odisha", 95, MatchReason.ALIAS)

    def test_prefix_candidates_sorted(self, matcher):
        """Shorter completions rank higher."""
        candidates = matcher.match("Uttar")
        assert [(c.canonical_name, c.score) for c in candidates[:2]] == [
            ("Uttarakhand", 73),
            ("Uttar Pradesh", 69),
        ]
        assert candidates[0].reason == MatchReason.PREFIX

    def test_ties_sorted_by_name(self):
        """Equal scores are ordered by canonical name."""
        catalogue = Catalogue(
            [CanonicalState(id=1, name="Abd"), CanonicalState(id=2, name="Abc")]
        )
        candidates = StateMatcher(catalogue, min_score=50).match("abx")
        assert [c.canonical_name for c in candidates] == ["Abc", "Abd"]
        assert candidates[0].score == candidates[1].score == 67

    def test_below_min_score_discarded(self, matcher):
        """Nothing close enough yields no candidates."""
        assert matcher.match("zzzzzz") == []
        assert matcher.match("   ") == []

    def test_max_candidates(self, catalogue):
        """The candidate list is truncated."""
        matcher = StateMatcher(catalogue, min_score=0, max_candidates=2)
        assert len(matcher.match("pradesh")) == 2

    def test_match_is_deterministic(self, matcher):
        """Repeated calls return identical lists."""
        for value in ["up ", "Panjab", "Madhya Predesh", "Uttar", "west bangal"]:
            assert matcher.match(value) == matcher.match(value)


class TestMatchMany:
    """Test batch matching."""

    @pytest.mark.asyncio
    async def test_buckets_and_dedup(self, matcher):
        """Duplicates are matched once and top scores are bucketed."""
        report = await matcher.match_many(
            ["up", "Panjab", "zzzzzz", "up"], chunk_size=1, auto_threshold=90
        )
        assert report.total_processed == 3
        assert list(report.results) == ["up", "Panjab", "zzzzzz"]
        assert report.high_confidence == 1
        assert report.medium_confidence == 1
        assert report.low_confidence == 1

    @pytest.mark.asyncio
    async def test_same_results_as_match(self, matcher):
        """Chunking does not change the candidates."""
        values = ["Madhya Predesh", "orissa", "Uttar"]
        report = await matcher.match_many(values, chunk_size=2)
        for value in values:
            assert report.results[value] == matcher.match(value)


@pytest.mark.parametrize(
    "raw,expected",
    [
        ("UP", "Uttar Pradesh"),
        ("u.p.", "Uttar Pradesh"),
        ("New Delhi", "Delhi"),
        ("west bengal", "West Bengal"),
        ("Karnatka", "Karnataka"),
    ],
)
def test_top_candidate(matcher, raw, expected):
    """Common CRM spellings resolve to the right state."""
    assert matcher.match(raw)[0].canonical_name == expected

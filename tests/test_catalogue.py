"""Tests for the canonical state catalogue."""

import pytest

from staterecon.reconcile import CanonicalState, Catalogue
from staterecon.reconcile.catalogue import DEFAULT_STATE_NAMES


class TestCatalogue:
    """Test in-memory catalogue lookups."""

    def test_default_has_all_states_and_territories(self, catalogue):
        """The built-in catalogue lists 36 states and union territories."""
        assert len(catalogue) == 36
        assert catalogue.by_id(1).name == DEFAULT_STATE_NAMES[0]

    def test_lookup_by_name_is_normalized(self, catalogue):
        """Name lookup ignores case and spacing."""
        assert catalogue.by_name("  uttar  PRADESH").name == "Uttar Pradesh"

    def test_lookup_by_alias(self, catalogue):
        """Abbreviations are registered as aliases."""
        assert catalogue.by_alias("UP").name == "Uttar Pradesh"
        assert catalogue.by_alias("j&k").name == "Jammu and Kashmir"
        assert catalogue.by_alias("nowhere") is None

    def test_is_canonical_requires_exact_spelling(self, catalogue):
        """Only the exact stored spelling counts as canonical."""
        assert catalogue.is_canonical("Goa")
        assert not catalogue.is_canonical("goa")
        assert not catalogue.is_canonical("Goa ")

    def test_iterates_sorted_by_name(self, catalogue):
        """Iteration order is alphabetical."""
        names = [state.name for state in catalogue]
        assert names == sorted(names)
        assert names == catalogue.names

    def test_contains_by_id(self, catalogue):
        """Membership is checked by id."""
        assert 1 in catalogue
        assert 999 not in catalogue

    def test_duplicate_id_rejected(self):
        """Two states with one id are refused."""
        with pytest.raises(ValueError):
            Catalogue([CanonicalState(id=1, name="A"), CanonicalState(id=1, name="B")])

    def test_duplicate_name_rejected(self):
        """Names that normalize alike are refused."""
        with pytest.raises(ValueError):
            Catalogue([CanonicalState(id=1, name="Goa"), CanonicalState(id=2, name="GOA ")])

    def test_conflicting_alias_rejected(self):
        """An alias cannot point at two states."""
        with pytest.raises(ValueError):
            Catalogue(
                [
                    CanonicalState(id=1, name="Alpha", aliases=("AX",)),
                    CanonicalState(id=2, name="Beta", aliases=("ax",)),
                ]
            )


class TestCatalogueRepository:
    """Test loading the catalogue from the database."""

    @pytest.mark.asyncio
    async def test_seeds_default_catalogue(self, context):
        """Opening a context seeds the built-in states."""
        catalogue = await context.catalogue_repo.load()
        assert len(catalogue) == 36
        assert catalogue.by_alias("UP").name == "Uttar Pradesh"

    @pytest.mark.asyncio
    async def test_initialize_is_idempotent(self, context):
        """Seeding twice does not duplicate rows."""
        await context.catalogue_repo.initialize()
        row = await context.db.fetchone("SELECT COUNT(*) FROM canonical_states")
        assert row[0] == 36

"""Read-only catalogue of canonical states."""

import json
import logging
from collections import defaultdict
from typing import Iterable, Iterator, Optional

from ..db import Database
from .models import CanonicalState
from .normalizer import ABBREVIATIONS, normalize

logger = logging.getLogger(__name__)

DEFAULT_STATE_NAMES = [
    "Andhra Pradesh", "Arunachal Pradesh", "Assam", "Bihar", "Chhattisgarh", "Goa",
    "Gujarat", "Haryana", "Himachal Pradesh", "Jharkhand", "Karnataka", "Kerala",
    "Madhya Pradesh", "Maharashtra", "Manipur", "Meghalaya", "Mizoram", "Nagaland",
    "Odisha", "Punjab", "Rajasthan", "Sikkim", "Tamil Nadu", "Telangana",
    "Tripura", "Uttar Pradesh", "Uttarakhand", "West Bengal",
    "Andaman and Nicobar Islands", "Chandigarh", "Dadra and Nagar Haveli and Daman and Diu",
    "Delhi", "Jammu and Kashmir", "Ladakh", "Lakshadweep", "Puducherry",
]


def default_states() -> list[CanonicalState]:
    """The built-in states and union territories, with abbreviation aliases."""
    aliases: dict[str, list[str]] = defaultdict(list)
    for abbreviation, name in ABBREVIATIONS.items():
        aliases[name].append(abbreviation.upper() if len(abbreviation) <= 3 else abbreviation)
    return [
        CanonicalState(id=index, name=name, aliases=tuple(aliases.get(name, ())))
        for index, name in enumerate(DEFAULT_STATE_NAMES, start=1)
    ]


class Catalogue:
    """
    In-memory, read-only set of canonical states.

    Holds two indices over normalized forms: one for names and one for aliases.
    """

    def __init__(self, states: Iterable[CanonicalState]):
        self._by_id: dict[int, CanonicalState] = {}
        self._by_name: dict[str, CanonicalState] = {}
        self._aliases: dict[str, int] = {}

        for state in states:
            key = normalize(state.name)
            if state.id in self._by_id:
                raise ValueError(f"Duplicate canonical state id {state.id}")
            if key in self._by_name:
                raise ValueError(f"Duplicate canonical state name {state.name!r}")
            self._by_id[state.id] = state
            self._by_name[key] = state

        for state in self._by_id.values():
            for alias in state.aliases:
                alias_key = normalize(alias)
                if not alias_key or alias_key in self._by_name:
                    continue
                owner = self._aliases.get(alias_key)
                if owner is not None and owner != state.id:
                    raise ValueError(
                        f"Alias {alias!r} claimed by both {self._by_id[owner].name!r} "
                        f"and {state.name!r}"
                    )
                self._aliases[alias_key] = state.id

    @classmethod
    def default(cls) -> "Catalogue":
        return cls(default_states())

    def by_id(self, canonical_id: int) -> Optional[CanonicalState]:
        return self._by_id.get(canonical_id)

    def by_name(self, name: str) -> Optional[CanonicalState]:
        """Look up a state by name, comparing normalized forms."""
        return self._by_name.get(normalize(name))

    def by_alias(self, alias: str) -> Optional[CanonicalState]:
        canonical_id = self._aliases.get(normalize(alias))
        return self._by_id.get(canonical_id) if canonical_id is not None else None

    def all_aliases(self) -> Iterator[tuple[str, int]]:
        """(normalized alias, canonical id) pairs."""
        return iter(self._aliases.items())

    def is_canonical(self, raw_value: str) -> bool:
        """True only for a value spelled exactly like a canonical name."""
        state = self._by_name.get(normalize(raw_value))
        return state is not None and state.name == raw_value

    @property
    def names(self) -> list[str]:
        return sorted(state.name for state in self._by_id.values())

    def __iter__(self) -> Iterator[CanonicalState]:
        return iter(sorted(self._by_id.values(), key=lambda state: state.name))

    def __len__(self) -> int:
        return len(self._by_id)

    def __contains__(self, canonical_id: object) -> bool:
        return canonical_id in self._by_id


class CatalogueRepository:
    """Loads the catalogue from the ``canonical_states`` table."""

    def __init__(self, db: Database):
        self.db = db

    async def initialize(self):
        """Seed the built-in catalogue when the table is empty."""
        async with self.db.transaction():
            row = await self.db.fetchone("SELECT COUNT(*) FROM canonical_states")
            if row and row[0]:
                return
            await self.db.executemany(
                "INSERT INTO canonical_states (id, name, aliases) VALUES (?, ?, ?)",
                [
                    (state.id, state.name, json.dumps(list(state.aliases)))
                    for state in default_states()
                ],
            )
        logger.info(f"Seeded {len(DEFAULT_STATE_NAMES)} canonical states")

    async def load(self) -> Catalogue:
        async with self.db.snapshot():
            rows = await self.db.fetchall("SELECT id, name, aliases FROM canonical_states ORDER BY id")
        catalogue = Catalogue(
            CanonicalState(
                id=row["id"],
                name=row["name"],
                aliases=tuple(json.loads(row["aliases"]) if row["aliases"] else ()),
            )
            for row in rows
        )
        logger.info(f"Loaded catalogue with {len(catalogue)} states")
        return catalogue

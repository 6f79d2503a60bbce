"""Row types for the record store, decoded through a validating boundary."""

from collections.abc import Mapping
from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, ValidationError

from ..errors import RecordShapeError


class CreatorRow(BaseModel):
    """A creator record. Unknown or missing columns are rejected."""

    model_config = ConfigDict(extra="forbid")

    id: int
    full_name: str
    state: Optional[str] = None
    city: Optional[str] = None
    instagram_handle: Optional[str] = None
    followers: Optional[int] = None
    updated_at: Optional[datetime] = None


ROW_TYPES: dict[str, type[BaseModel]] = {
    "creators": CreatorRow,
}

# Text columns that reconciliation may rewrite, per table.
TEXT_FIELDS: dict[str, frozenset[str]] = {
    "creators": frozenset({"state", "city"}),
}


def decode_row(table: str, row: Mapping[str, Any]) -> BaseModel:
    """Decode a raw row into its declared row type."""
    row_type = ROW_TYPES.get(table)
    if row_type is None:
        raise RecordShapeError(f"No row type declared for table {table!r}")
    try:
        return row_type.model_validate(dict(row))
    except ValidationError as exc:
        raise RecordShapeError(f"Row from {table!r} does not match {row_type.__name__}: {exc}") from exc

"""Record store access for the rows whose state field is reconciled."""

from .models import CreatorRow, ROW_TYPES, decode_row
from .store import RecordStore

__all__ = ["CreatorRow", "ROW_TYPES", "decode_row", "RecordStore"]

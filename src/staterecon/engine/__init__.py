"""Batch commit engine and caller retry policy."""

from .commit import CommitEngine, CommitResult, EntryResult, TransactionIdGenerator, transaction_ids
from .retry import retry_transient

__all__ = [
    "CommitEngine",
    "CommitResult",
    "EntryResult",
    "TransactionIdGenerator",
    "transaction_ids",
    "retry_transient",
]

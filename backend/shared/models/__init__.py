"""Shared data models for the extension backend."""

from .credential import DelegatedCredential
from .gallery import Comment, Photo
from .ledger import LedgerEntry, LedgerKind

__all__ = [
    "Comment",
    "DelegatedCredential",
    "LedgerEntry",
    "LedgerKind",
    "Photo",
]

"""Repository layer for the extension backend."""

from .credential import CredentialRepository
from .gallery import GalleryRepository
from .ledger import LedgerRepository, PhotoNotFoundError

__all__ = [
    "CredentialRepository",
    "GalleryRepository",
    "LedgerRepository",
    "PhotoNotFoundError",
]

"""Expose constructed client wrappers."""

from .oauth_provider import ProviderOAuthClient
from .record_store import RecordCollection, RecordNotFound, RecordStore, StoredRecord
from .vault import Vault, VaultPathError

__all__ = [
    "ProviderOAuthClient",
    "RecordCollection",
    "RecordNotFound",
    "RecordStore",
    "StoredRecord",
    "Vault",
    "VaultPathError",
]

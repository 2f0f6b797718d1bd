from abc import ABC, abstractmethod
from typing import BinaryIO

from enrichdesk.core.config import get_settings


class StorageBackend(ABC):
    """Opaque blob store keyed by path. The ledger and job code only ever hold the key."""

    @abstractmethod
    async def put(self, key: str, body: BinaryIO | bytes, content_type: str | None = None) -> str:
        """Store file; return the key it was stored under."""
        ...

    @abstractmethod
    async def get(self, key: str) -> bytes:
        """Retrieve file bytes."""
        ...

    @abstractmethod
    async def delete(self, key: str) -> None:
        """Delete file."""
        ...

    @abstractmethod
    async def signed_url(self, key: str, expires_in: int) -> str | None:
        """Time-limited download URL, or None when the backend cannot produce one."""
        ...


def get_storage() -> StorageBackend:
    settings = get_settings()
    if settings.storage_backend == "gcs":
        from enrichdesk.storage.gcs import GCSStorage
        return GCSStorage()
    from enrichdesk.storage.local import LocalStorage
    return LocalStorage()

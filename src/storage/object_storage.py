"""
Contract: Object Storage

Stores report photos in binary object storage and returns a public URL
plus an opaque identifier used to destroy the object later.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass


@dataclass(frozen=True)
class UploadOptions:
    """Upload target and size-limiting transformation."""
    folder: str = "reports"
    format: str = "jpg"
    max_width: int = 800


@dataclass(frozen=True)
class StoredObject:
    """Reference to an uploaded image."""
    url: str
    public_id: str


class StorageUploadError(Exception):
    """Upload or destroy failed at the storage provider."""


class ObjectStorage(ABC):
    """
    Port: Object Storage

    Implementations may block; callers bound uploads with a deadline.
    """

    @abstractmethod
    def upload(self, data: bytes, options: UploadOptions) -> StoredObject:
        """
        Upload an image.

        Args:
            data: Image bytes.
            options: Folder, output format and max width.

        Returns:
            StoredObject with URL and identifier.

        Raises:
            StorageUploadError: On provider or transport failure.
        """
        ...

    @abstractmethod
    def destroy(self, public_id: str) -> None:
        """
        Delete a previously uploaded image.

        Raises:
            StorageUploadError: On provider or transport failure.
        """
        ...


class UnconfiguredStorage(ObjectStorage):
    """Stand-in used when no storage credentials are configured. Every call fails."""

    def upload(self, data: bytes, options: UploadOptions) -> StoredObject:
        raise StorageUploadError("Object storage is not configured")

    def destroy(self, public_id: str) -> None:
        raise StorageUploadError("Object storage is not configured")

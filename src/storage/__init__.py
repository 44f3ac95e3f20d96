"""
WasteWatch - Storage Module
Binary object storage for report photos.
"""

from src.storage.object_storage import (
    ObjectStorage,
    StoredObject,
    StorageUploadError,
    UnconfiguredStorage,
    UploadOptions,
)
from src.storage.cloudinary_storage import CloudinaryStorage

__all__ = [
    "ObjectStorage",
    "StoredObject",
    "StorageUploadError",
    "UnconfiguredStorage",
    "UploadOptions",
    "CloudinaryStorage",
]

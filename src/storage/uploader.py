"""
Deadline-bounded image uploads
"""

import logging
from concurrent.futures import Executor, ThreadPoolExecutor
from typing import Optional

from src.core.deadline import DeadlineExceeded, call_with_deadline
from src.core.errors import ErrorCode, StorageError, StorageTimeout
from src.storage.object_storage import ObjectStorage, StoredObject, UploadOptions

logger = logging.getLogger(__name__)


class BoundedUploader:
    """
    Races each upload against a deadline.

    When the deadline wins, the caller gets CLOUDINARY_TIMEOUT immediately.
    The upload keeps running in the background; if it lands later, the
    orphaned object is destroyed so it does not outlive the failed request.
    """

    def __init__(
        self,
        storage: ObjectStorage,
        options: Optional[UploadOptions] = None,
        timeout: float = 15.0,
        executor: Optional[Executor] = None
    ):
        """
        Initialize uploader.

        Args:
            storage: Object storage backend
            options: Folder, format and size limit for uploads
            timeout: Upload deadline in seconds
            executor: Executor running uploads
        """
        self.storage = storage
        self.options = options or UploadOptions()
        self.timeout = timeout
        self._executor = executor or ThreadPoolExecutor(
            max_workers=4, thread_name_prefix="upload"
        )

    def upload(self, data: bytes) -> StoredObject:
        """
        Upload image bytes within the deadline.

        Raises:
            StorageTimeout: CLOUDINARY_TIMEOUT when the deadline fires first
            StorageError: CLOUDINARY_ERROR when the upload fails
        """
        try:
            return call_with_deadline(
                self._executor,
                self.storage.upload,
                data,
                self.options,
                timeout=self.timeout,
                on_late_result=self._discard_late_upload,
            )
        except DeadlineExceeded:
            logger.warning(f"Image upload exceeded {self.timeout}s deadline")
            raise StorageTimeout(ErrorCode.CLOUDINARY_TIMEOUT, "Image upload timed out")
        except Exception as e:
            logger.error(f"Image upload failed: {e}")
            raise StorageError(
                ErrorCode.CLOUDINARY_ERROR,
                "Image upload failed",
                details={"error": str(e)},
            )

    def discard(self, public_id: str) -> bool:
        """Best-effort destroy of a stored image. Returns False on failure."""
        try:
            self.storage.destroy(public_id)
            return True
        except Exception as e:
            logger.error(f"Failed to destroy image {public_id}: {e}")
            return False

    def _discard_late_upload(self, stored: StoredObject) -> None:
        logger.warning(f"Upload {stored.public_id} finished after its deadline, discarding")
        self.discard(stored.public_id)

"""
Adapter: Cloudinary Storage

Implements the ObjectStorage contract over the Cloudinary upload REST API.

API Documentation: https://cloudinary.com/documentation/image_upload_api_reference
"""

import base64
import hashlib
import logging
import time
from typing import Callable, Dict, Optional

import httpx

from src.storage.object_storage import (
    ObjectStorage,
    StoredObject,
    StorageUploadError,
    UploadOptions,
)

logger = logging.getLogger(__name__)


def sign_params(params: Dict[str, str], api_secret: str) -> str:
    """
    Compute the Cloudinary request signature.

    Parameters are sorted by name, joined as k=v with '&', suffixed with
    the API secret and hashed with SHA-1.
    """
    to_sign = "&".join(f"{key}={params[key]}" for key in sorted(params) if params[key] != "")
    return hashlib.sha1(f"{to_sign}{api_secret}".encode("utf-8")).hexdigest()


class CloudinaryStorage(ObjectStorage):
    """
    Image storage on Cloudinary.

    Usage:
        storage = CloudinaryStorage("cloud", "key", "secret")
        stored = storage.upload(image_bytes, UploadOptions())
    """

    BASE_URL = "https://api.cloudinary.com/v1_1"

    def __init__(
        self,
        cloud_name: str,
        api_key: str,
        api_secret: str,
        timeout: float = 60.0,
        http_client: Optional[httpx.Client] = None,
        clock: Callable[[], float] = time.time
    ):
        """
        Initialize Cloudinary storage.

        Args:
            cloud_name: Cloudinary cloud name
            api_key: API key
            api_secret: API secret used for signing
            timeout: Transport timeout in seconds
            http_client: Preconfigured HTTP client (tests inject a mock transport)
            clock: Source of the signature timestamp
        """
        if not (cloud_name and api_key and api_secret):
            raise ValueError("Cloudinary credentials are required")

        self.cloud_name = cloud_name
        self.api_key = api_key
        self._api_secret = api_secret
        self._clock = clock
        self._client = http_client or httpx.Client(timeout=timeout)

    def close(self) -> None:
        self._client.close()

    @property
    def upload_url(self) -> str:
        return f"{self.BASE_URL}/{self.cloud_name}/image/upload"

    @property
    def destroy_url(self) -> str:
        return f"{self.BASE_URL}/{self.cloud_name}/image/destroy"

    def upload(self, data: bytes, options: UploadOptions) -> StoredObject:
        params = {
            "folder": options.folder,
            "format": options.format,
            "transformation": f"c_limit,w_{options.max_width}/q_auto:good",
            "timestamp": str(int(self._clock())),
        }
        encoded = base64.b64encode(data).decode("ascii")

        body = self._post(self.upload_url, {
            **params,
            "file": f"data:image/jpeg;base64,{encoded}",
            "api_key": self.api_key,
            "signature": sign_params(params, self._api_secret),
        })

        try:
            stored = StoredObject(url=body["secure_url"], public_id=body["public_id"])
        except KeyError as e:
            raise StorageUploadError(f"Upload response missing {e}")

        logger.info(f"Uploaded image {stored.public_id} ({len(data)} bytes)")
        return stored

    def destroy(self, public_id: str) -> None:
        params = {
            "public_id": public_id,
            "timestamp": str(int(self._clock())),
        }
        body = self._post(self.destroy_url, {
            **params,
            "api_key": self.api_key,
            "signature": sign_params(params, self._api_secret),
        })

        if body.get("result") not in ("ok", "not found"):
            raise StorageUploadError(f"Destroy of {public_id} failed: {body.get('result')}")

        logger.info(f"Destroyed image {public_id}")

    def _post(self, url: str, form: Dict[str, str]) -> dict:
        try:
            response = self._client.post(url, data=form)
        except httpx.HTTPError as e:
            raise StorageUploadError(f"Cloudinary request failed: {e}")

        try:
            body = response.json()
        except ValueError:
            body = {}

        if not response.is_success:
            message = (body.get("error") or {}).get("message") if isinstance(body, dict) else None
            raise StorageUploadError(
                f"Cloudinary returned {response.status_code}: {message or response.text}"
            )

        if not isinstance(body, dict):
            raise StorageUploadError("Cloudinary returned an unexpected response")

        return body

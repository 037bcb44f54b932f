"""
Signed upload of finished postcards to the media host.

The relay signs the upload parameters with the account secret, posts the
video bytes, and returns a delivery URL that applies a messaging-friendly
transformation (mp4, 512x512, H.264, progressive).
"""

import hashlib
import logging
import os
import time
from typing import Dict, Optional, Protocol

import requests

from .exceptions import UploadFailedError
from .models import EncodedArtifact, UploadResult

logger = logging.getLogger(__name__)

UPLOAD_URL = "https://api.cloudinary.com/v1_1/{cloud_name}/video/upload"
DELIVERY_URL = "https://res.cloudinary.com/{cloud_name}/video/upload/{transformation}/{public_id}.mp4"
OPTIMIZED_TRANSFORMATION = "f_mp4,q_auto:best,w_512,h_512,c_fill,ac_mp4,vc_h264,fl_progressive,br_200k"


class UploadRelay(Protocol):
    def upload(self, artifact: EncodedArtifact) -> UploadResult:
        ...


class SignedUploadRelay:
    """Uploads artifacts with a signed request and returns the shareable URL."""

    def __init__(self, cloud_name: str, api_key: str, api_secret: str,
                 folder: str = "diwali-postcards/videos", timeout: float = 120.0,
                 session: Optional[requests.Session] = None):
        if not (cloud_name and api_key and api_secret):
            raise UploadFailedError("Media host credentials are incomplete")
        self.cloud_name = cloud_name
        self.api_key = api_key
        self.api_secret = api_secret
        self.folder = folder
        self.timeout = timeout
        self.session = session or requests.Session()

    @classmethod
    def from_env(cls, folder: str = "diwali-postcards/videos",
                 timeout: float = 120.0) -> "SignedUploadRelay":
        """Build a relay from CLOUDINARY_CLOUD_NAME, CLOUDINARY_API_KEY and CLOUDINARY_API_SECRET."""
        cloud_name = os.environ.get("CLOUDINARY_CLOUD_NAME", "")
        api_key = os.environ.get("CLOUDINARY_API_KEY", "")
        api_secret = os.environ.get("CLOUDINARY_API_SECRET", "")
        missing = [name for name, value in (("CLOUDINARY_CLOUD_NAME", cloud_name),
                                            ("CLOUDINARY_API_KEY", api_key),
                                            ("CLOUDINARY_API_SECRET", api_secret)) if not value]
        if missing:
            raise UploadFailedError(f"Missing environment variables: {', '.join(missing)}")
        return cls(cloud_name, api_key, api_secret, folder=folder, timeout=timeout)

    def sign(self, params: Dict[str, object]) -> str:
        """SHA-1 over the sorted ``key=value`` pairs joined by ``&``, followed by the secret."""
        to_sign = "&".join(f"{key}={params[key]}" for key in sorted(params))
        return hashlib.sha1(f"{to_sign}{self.api_secret}".encode("utf-8")).hexdigest()

    def optimized_url(self, public_id: str) -> str:
        return DELIVERY_URL.format(cloud_name=self.cloud_name,
                                   transformation=OPTIMIZED_TRANSFORMATION,
                                   public_id=public_id)

    def upload(self, artifact: EncodedArtifact, timestamp: Optional[int] = None) -> UploadResult:
        """
        Upload ``artifact`` and return its durable location.

        Raises:
            UploadFailedError: on network errors or a non-2xx response
        """
        timestamp = int(time.time()) if timestamp is None else timestamp
        public_id = f"{self.folder}/festive-postcard-{timestamp}"
        params = {"public_id": public_id, "timestamp": timestamp}

        form = {
            "api_key": self.api_key,
            "signature": self.sign(params),
            "resource_type": "video",
            **params,
        }
        extension = artifact.container or "mp4"
        files = {"file": (f"festive-postcard-{timestamp}.{extension}", artifact.data,
                          artifact.mime_type.split(";", 1)[0])}

        url = UPLOAD_URL.format(cloud_name=self.cloud_name)
        logger.info(f"Uploading {artifact.size_mb:.2f}MB to {url}")
        try:
            response = self.session.post(url, data=form, files=files, timeout=self.timeout)
            response.raise_for_status()
            payload = response.json()
        except requests.HTTPError as e:
            status = e.response.status_code if e.response is not None else None
            raise UploadFailedError(f"Upload rejected with HTTP {status}", status_code=status) from e
        except (requests.RequestException, ValueError) as e:
            raise UploadFailedError(f"Upload failed: {e}") from e

        returned_id = payload.get("public_id", public_id)
        result = UploadResult(
            secure_url=self.optimized_url(returned_id),
            public_id=returned_id,
            original_url=payload.get("secure_url"),
        )
        logger.info(f"Upload complete: {result.secure_url}")
        return result

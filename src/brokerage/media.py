"""Image hosting through the Cloudinary REST API."""

from __future__ import annotations

import base64
import hashlib
import json
import logging
import time
from dataclasses import dataclass
from typing import Dict, Optional
from urllib.error import HTTPError, URLError
from urllib.parse import urlencode
from urllib.request import Request as URLRequest, urlopen

logger = logging.getLogger(__name__)

UPLOAD_ROOT_FOLDER = "hyi-broker"
ALLOWED_IMAGE_TYPES = ("image/jpeg", "image/png", "image/webp", "image/gif")
MAX_IMAGE_BYTES = 10 * 1024 * 1024


@dataclass(slots=True)
class UploadResult:
    success: bool
    url: Optional[str] = None
    public_id: Optional[str] = None
    error: Optional[str] = None


def sign_params(params: Dict[str, str], api_secret: str) -> str:
    """Cloudinary signature: SHA-1 of the sorted ``k=v`` pairs plus the secret."""

    payload = "&".join(f"{key}={params[key]}" for key in sorted(params))
    return hashlib.sha1((payload + api_secret).encode("utf-8")).hexdigest()


def optimized_url(url: str, width: Optional[int] = None) -> str:
    if "cloudinary.com" not in (url or ""):
        return url
    transformations = ["f_auto", "q_auto"]
    if width:
        transformations.append(f"w_{width}")
    return url.replace("/upload/", f"/upload/{','.join(transformations)}/", 1)


class CloudinaryUploader:
    """Signed uploads for KYC documents and payment proofs."""

    def __init__(self, cloud_name: str, api_key: str, api_secret: str) -> None:
        self.cloud_name = cloud_name
        self.api_key = api_key
        self.api_secret = api_secret

    @property
    def configured(self) -> bool:
        return bool(self.cloud_name and self.api_key and self.api_secret)

    def _endpoint(self, action: str) -> str:
        return f"https://api.cloudinary.com/v1_1/{self.cloud_name}/image/{action}"

    def _post(self, action: str, params: Dict[str, str], *, unsigned: Optional[Dict[str, str]] = None) -> dict:
        signed = dict(params)
        signed["timestamp"] = str(int(time.time()))
        signed["signature"] = sign_params(signed, self.api_secret)
        signed["api_key"] = self.api_key
        signed.update(unsigned or {})
        req = URLRequest(
            self._endpoint(action),
            data=urlencode(signed).encode("utf-8"),
            headers={"User-Agent": "Mozilla/5.0"},
            method="POST",
        )
        with urlopen(req, timeout=20) as resp:
            return json.loads(resp.read().decode("utf-8"))

    def upload(self, content: bytes, content_type: str, *, folder: str = "kyc") -> UploadResult:
        if not self.configured:
            logger.warning("Cloudinary not configured")
            return UploadResult(False, error="Upload service not configured")
        if content_type not in ALLOWED_IMAGE_TYPES:
            return UploadResult(False, error="Only JPEG, PNG, WebP or GIF images are allowed")
        if not content or len(content) > MAX_IMAGE_BYTES:
            return UploadResult(False, error="Image must be between 1 byte and 10 MB")
        data_uri = f"data:{content_type};base64,{base64.b64encode(content).decode('ascii')}"
        try:
            # The file body is not part of the signature.
            result = self._post(
                "upload",
                {"folder": f"{UPLOAD_ROOT_FOLDER}/{folder}"},
                unsigned={"file": data_uri},
            )
        except (URLError, HTTPError, TimeoutError, ValueError, KeyError) as exc:
            logger.error("Cloudinary upload error: %s", exc)
            return UploadResult(False, error="Failed to upload image")
        return UploadResult(True, url=result.get("secure_url"), public_id=result.get("public_id"))


__all__ = [
    "ALLOWED_IMAGE_TYPES",
    "CloudinaryUploader",
    "UploadResult",
    "optimized_url",
    "sign_params",
]

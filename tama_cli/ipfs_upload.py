"""
IPFS Upload — token image upload through the tama.meme API
============================================================

POST multipart/form-data (field "file") to /api/uploads/ipfs.
The endpoint needs a logged-in tama.meme session: pass the browser's
Cookie header (or any extra headers) at construction.

Response: {"imageUrl": "ipfs://…" | "https://…"}

Failures are classified with the upload table (errors.UPLOAD_RULES):
401/403 → AUTHENTICATION_ERROR, 413 → UPLOAD_FAILED, 5xx/429/transport →
NETWORK_ERROR, anything else → UPLOAD_FAILED.
"""

import mimetypes
from typing import Dict, Optional

import httpx

from tama_cli.central_config import api
from tama_cli.errors import UploadError, classify_upload_error


class IpfsUploader:
    """Upload capability: bytes in, image URL out."""

    def __init__(
        self,
        upload_url: str = api.IPFS_UPLOAD,
        cookie: Optional[str] = None,
        headers: Optional[Dict[str, str]] = None,
        timeout: int = api.TIMEOUT_SECONDS,
    ):
        self.upload_url = upload_url
        self.timeout = timeout
        self.headers = dict(headers or {})
        if cookie:
            self.headers["Cookie"] = cookie

    async def upload(self, payload: bytes, filename: str = "image.png") -> str:
        """
        Upload one image.

        Returns:
            The image URL reported by the API.

        Raises:
            ClassifiedError: Any upload failure, already classified.
        """
        content_type = mimetypes.guess_type(filename)[0] or "application/octet-stream"
        print(f"  📤 Uploading {filename} ({len(payload):,} bytes) to IPFS…")
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                resp = await client.post(
                    self.upload_url,
                    files={"file": (filename, payload, content_type)},
                    headers=self.headers,
                )
            if resp.status_code >= 400:
                body = resp.text
                raise UploadError(
                    f"Upload failed: {resp.status_code} {resp.reason_phrase}. {body}",
                    status=resp.status_code,
                    body=body,
                )
            data = resp.json()
            image_url = data.get("imageUrl") if isinstance(data, dict) else None
            if not image_url:
                raise UploadError(
                    "Upload succeeded but no image URL was returned",
                    status=resp.status_code,
                    body=str(data),
                )
        except Exception as exc:  # noqa: BLE001
            raise classify_upload_error(exc) from exc

        print(f"  ✅ Image uploaded: {image_url}")
        return image_url

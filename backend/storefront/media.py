import logging
import os
import re
from typing import Dict, Optional
from urllib.parse import urlparse

import cloudinary.exceptions
import cloudinary.uploader
from werkzeug.utils import secure_filename

from .errors import ServiceUnavailableError, UpstreamError, ValidationError

logger = logging.getLogger(__name__)

ALLOWED_IMAGE_EXTENSIONS = {"jpg", "jpeg", "png", "webp"}
DELETED_RESULTS = {"ok", "not found", "not_found"}
VERSION_SEGMENT = re.compile(r"^v\d+$")


def allowed_image_extension(filename: str) -> bool:
    extension = os.path.splitext(filename)[1].lower().lstrip(".")
    if not extension:
        return False
    return extension in ALLOWED_IMAGE_EXTENSIONS


def public_id_from_url(url: Optional[str]) -> str:
    """Best-effort guess of a public id from a delivery URL.

    ``.../image/upload/v1712/jesko-products/abc.jpg`` gives
    ``jesko-products/abc``; any other URL gives its last path segment
    without the extension. Transformation segments are not recognised.
    """
    path = urlparse(str(url or "").strip()).path
    segments = [segment for segment in path.split("/") if segment]
    if not segments:
        return ""

    if "upload" in segments:
        tail = segments[segments.index("upload") + 1:]
        if tail and VERSION_SEGMENT.match(tail[0]):
            tail = tail[1:]
        if tail:
            segments = tail
        else:
            segments = segments[-1:]
    else:
        segments = segments[-1:]

    segments[-1] = os.path.splitext(segments[-1])[0]
    return "/".join(segment for segment in segments if segment)


class CloudinaryMediaStore:
    def __init__(self, cloud_name: str, api_key: str, api_secret: str, folder: str, timeout: int = 60):
        self.credentials = {
            "cloud_name": cloud_name,
            "api_key": api_key,
            "api_secret": api_secret,
        }
        self.folder = folder
        self.timeout = timeout

    def upload(self, image_file) -> Dict[str, str]:
        try:
            result = cloudinary.uploader.upload(
                image_file,
                folder=self.folder,
                resource_type="image",
                allowed_formats=sorted(ALLOWED_IMAGE_EXTENSIONS),
                timeout=self.timeout,
                **self.credentials,
            )
        except cloudinary.exceptions.Error as exc:
            logger.error("Cloudinary upload failed: %s", exc)
            raise UpstreamError("Upload failed.")
        return {"url": result.get("secure_url") or result.get("url"), "public_id": result.get("public_id")}

    def destroy(self, public_id: str) -> Dict[str, object]:
        try:
            return cloudinary.uploader.destroy(
                public_id,
                resource_type="image",
                invalidate=True,
                timeout=self.timeout,
                **self.credentials,
            )
        except cloudinary.exceptions.Error as exc:
            logger.error("Cloudinary delete of %s failed: %s", public_id, exc)
            raise UpstreamError("Image deletion failed.")


class MediaService:
    def __init__(self, store=None):
        self.store = store

    def _require_store(self):
        if self.store is None:
            raise ServiceUnavailableError("Image uploads are not configured on this server.")
        return self.store

    def upload_image(self, image_file) -> Dict[str, str]:
        store = self._require_store()
        if not image_file or not getattr(image_file, "filename", ""):
            raise ValidationError("No file uploaded.")

        filename = secure_filename(image_file.filename)
        if not filename:
            raise ValidationError("Please choose a valid file name.")
        if not allowed_image_extension(filename):
            raise ValidationError("Unsupported image format. Upload JPG, JPEG, PNG or WEBP files.")

        uploaded = store.upload(image_file)
        logger.info("Uploaded image %s as %s", filename, uploaded.get("public_id"))
        return uploaded

    def delete_image(self, public_id: Optional[str] = None, url: Optional[str] = None) -> Dict[str, object]:
        store = self._require_store()
        target_id = str(public_id or "").strip()
        if not target_id and url:
            target_id = public_id_from_url(url)
        if not target_id:
            raise ValidationError("public_id or url required.")

        result = store.destroy(target_id) or {}
        outcome = str(result.get("result") or "")
        if outcome not in DELETED_RESULTS:
            logger.error("Cloudinary deletion of %s returned %r", target_id, result)
            raise UpstreamError("Cloudinary deletion failed.")
        return {"deleted": True, "publicId": target_id, "raw": result}

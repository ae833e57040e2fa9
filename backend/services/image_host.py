"""
Image hosting for report photos.

``LocalImageHost`` keeps files under ``UPLOAD_DIR`` and builds thumbnails with
Pillow; ``CloudinaryImageHost`` talks to the Cloudinary upload API over httpx.
Both raise ``DependencyError`` when the upload itself fails, so the report
lifecycle can fall back to a text-only report.
"""
from __future__ import annotations

import hashlib
import io
import logging
import time
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

import httpx
from PIL import Image, ImageOps, UnidentifiedImageError

from ..config import settings
from ..errors import DependencyError, ValidationError

logger = logging.getLogger(__name__)

MAIN_MAX_SIDE = 1200
THUMBNAIL_SIZE = (300, 300)

# Leading bytes per type; WebP is RIFF....WEBP.
_SIGNATURES = (
    (b"\xff\xd8\xff", "image/jpeg"),
    (b"\x89PNG", "image/png"),
    (b"GIF8", "image/gif"),
)

_EXTENSIONS = {
    "image/jpeg": "jpg",
    "image/png": "png",
    "image/gif": "gif",
    "image/webp": "webp",
}


@dataclass
class UploadedImage:
    url: str
    public_id: str


def detect_image_type(data: bytes) -> Optional[str]:
    for signature, content_type in _SIGNATURES:
        if data.startswith(signature):
            return content_type
    if len(data) >= 12 and data[:4] == b"RIFF" and data[8:12] == b"WEBP":
        return "image/webp"
    return None


def validate_image(data: bytes, content_type: Optional[str]) -> str:
    """Check declared type, size and magic number; return the sniffed type."""
    if not data:
        raise ValidationError("Image file is empty", code="INVALID_IMAGE")
    max_bytes = settings.MAX_UPLOAD_SIZE_MB * 1024 * 1024
    if len(data) > max_bytes:
        raise ValidationError(
            f"Image exceeds {settings.MAX_UPLOAD_SIZE_MB}MB",
            code="IMAGE_TOO_LARGE",
        )
    declared = (content_type or "").lower()
    if declared and declared not in settings.ALLOWED_IMAGE_TYPES:
        raise ValidationError(f"Unsupported image type: {declared}", code="INVALID_IMAGE_TYPE")
    detected = detect_image_type(data)
    if detected is None:
        raise ValidationError("File content is not a supported image", code="INVALID_IMAGE_TYPE")
    return detected


class ImageHost(ABC):
    @abstractmethod
    def upload(self, data: bytes) -> UploadedImage:
        ...

    @abstractmethod
    def upload_thumbnail(self, data: bytes) -> UploadedImage:
        ...

    @abstractmethod
    def delete(self, public_id: str) -> None:
        ...


class LocalImageHost(ImageHost):
    def __init__(self, root: Optional[str] = None, base_url: Optional[str] = None):
        self.root = Path(root or settings.UPLOAD_DIR)
        self.base_url = (base_url or settings.UPLOAD_BASE_URL).rstrip("/")

    def _write(self, data: bytes, extension: str, subdir: str) -> UploadedImage:
        folder = self.root / subdir
        try:
            folder.mkdir(parents=True, exist_ok=True)
            name = f"{uuid.uuid4().hex}.{extension}"
            (folder / name).write_bytes(data)
        except OSError as exc:
            raise DependencyError(f"Could not store image: {exc}", code="IMAGE_UPLOAD_FAILED")
        public_id = f"{subdir}/{name}"
        return UploadedImage(url=f"{self.base_url}/{public_id}", public_id=public_id)

    def upload(self, data: bytes) -> UploadedImage:
        content_type = detect_image_type(data) or "image/jpeg"
        extension = _EXTENSIONS[content_type]
        if content_type != "image/gif":
            data = _limit_size(data, MAIN_MAX_SIDE)
        return self._write(data, extension, "reports")

    def upload_thumbnail(self, data: bytes) -> UploadedImage:
        return self._write(_thumbnail(data), "jpg", "thumbnails")

    def delete(self, public_id: str) -> None:
        path = self.root / public_id
        try:
            path.unlink()
        except FileNotFoundError:
            logger.info("Image %s already removed", public_id)


def _open(data: bytes) -> Image.Image:
    try:
        return Image.open(io.BytesIO(data))
    except (UnidentifiedImageError, OSError) as exc:
        raise DependencyError(f"Could not decode image: {exc}", code="IMAGE_UPLOAD_FAILED")


def _limit_size(data: bytes, max_side: int) -> bytes:
    image = _open(data)
    if max(image.size) <= max_side:
        return data
    fmt = image.format or "JPEG"
    image.thumbnail((max_side, max_side))
    out = io.BytesIO()
    image.save(out, format=fmt)
    return out.getvalue()


def _thumbnail(data: bytes) -> bytes:
    image = _open(data).convert("RGB")
    thumb = ImageOps.fit(image, THUMBNAIL_SIZE)
    out = io.BytesIO()
    thumb.save(out, format="JPEG", quality=70)
    return out.getvalue()


class CloudinaryImageHost(ImageHost):
    API_BASE = "https://api.cloudinary.com/v1_1"

    def __init__(
        self,
        cloud_name: str,
        api_key: str,
        api_secret: str,
        folder: str = "ecoreports",
        timeout: float = 20.0,
        client: Optional[httpx.Client] = None,
    ):
        self.cloud_name = cloud_name
        self.api_key = api_key
        self.api_secret = api_secret
        self.folder = folder
        self.client = client or httpx.Client(timeout=timeout)

    def _sign(self, params: dict) -> str:
        to_sign = "&".join(f"{k}={params[k]}" for k in sorted(params))
        return hashlib.sha1((to_sign + self.api_secret).encode("utf-8")).hexdigest()

    def _post(self, action: str, data: dict, files: Optional[dict] = None) -> dict:
        params = dict(data, timestamp=int(time.time()))
        params["signature"] = self._sign(params)
        params["api_key"] = self.api_key
        url = f"{self.API_BASE}/{self.cloud_name}/image/{action}"
        try:
            response = self.client.post(url, data=params, files=files)
            response.raise_for_status()
            return response.json()
        except httpx.HTTPError as exc:
            logger.warning("Cloudinary %s failed: %s", action, exc)
            raise DependencyError("Image host request failed", code="IMAGE_UPLOAD_FAILED")

    def _upload(self, data: bytes, subfolder: str, transformation: str) -> UploadedImage:
        body = self._post(
            "upload",
            {"folder": f"{self.folder}/{subfolder}", "transformation": transformation},
            files={"file": ("upload", data)},
        )
        return UploadedImage(url=body["secure_url"], public_id=body["public_id"])

    def upload(self, data: bytes) -> UploadedImage:
        return self._upload(data, "reportes", f"c_limit,w_{MAIN_MAX_SIDE},h_{MAIN_MAX_SIDE}/q_auto:good")

    def upload_thumbnail(self, data: bytes) -> UploadedImage:
        w, h = THUMBNAIL_SIZE
        return self._upload(data, "thumbnails", f"c_fill,w_{w},h_{h}/q_auto:low")

    def delete(self, public_id: str) -> None:
        self._post("destroy", {"public_id": public_id})


_host: Optional[ImageHost] = None


def get_image_host() -> ImageHost:
    """FastAPI dependency; the host is built once from settings."""
    global _host
    if _host is None:
        if settings.IMAGE_HOST == "cloudinary":
            if not (settings.CLOUDINARY_CLOUD_NAME and settings.CLOUDINARY_API_KEY and settings.CLOUDINARY_API_SECRET):
                raise DependencyError("Cloudinary credentials are not configured", code="IMAGE_HOST_MISCONFIGURED")
            _host = CloudinaryImageHost(
                settings.CLOUDINARY_CLOUD_NAME,
                settings.CLOUDINARY_API_KEY,
                settings.CLOUDINARY_API_SECRET,
                folder=settings.CLOUDINARY_FOLDER,
                timeout=settings.CLOUDINARY_TIMEOUT_SECONDS,
            )
        else:
            _host = LocalImageHost()
    return _host

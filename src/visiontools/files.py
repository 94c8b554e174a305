"""
File references: turning ``/abs/path.png`` or ``https://host/img.jpg``
arguments into bytes the vision API can consume.

Two modes:
  resolve()         -> LoadedFile (bytes + content type + filename) for
                       multipart attachments
  resolve_inline()  -> base64 string for bodies that embed files inline

Relative local paths are always refused, before the filesystem is touched.
"""
from __future__ import annotations

import base64
import io
import logging
import os
from dataclasses import dataclass
from pathlib import PurePosixPath
from urllib.parse import urlparse

import httpx
from PIL import Image, UnidentifiedImageError

from .errors import ABSOLUTE_PATH_MESSAGE, FileAccessError
from .transport import send

_log = logging.getLogger(__name__)

# Argument / form field names whose string values are file references.
FILE_FIELDS = ("image", "pdf", "video")

DEFAULT_IMAGE_FORMAT = "png"

_MIME_TYPES = {
    "png": "image/png",
    "jpg": "image/jpeg",
    "jpeg": "image/jpeg",
    "gif": "image/gif",
    "webp": "image/webp",
    "bmp": "image/bmp",
    "svg": "image/svg+xml",
    "mp4": "video/mp4",
    "mov": "video/quicktime",
    "avi": "video/x-msvideo",
    "webm": "video/webm",
    "pdf": "application/pdf",
}

_VIDEO_EXTS = {"mp4", "mov", "avi", "wmv", "flv", "mkv", "webm"}
_IMAGE_EXTS = {"jpg", "jpeg", "png", "gif", "bmp", "webp", "svg", "tiff"}

# Pillow format names for the output formats we know how to write.
_PIL_FORMATS = {"png": "PNG", "jpg": "JPEG", "jpeg": "JPEG", "webp": "WEBP", "gif": "GIF", "bmp": "BMP", "tiff": "TIFF"}


@dataclass(frozen=True)
class FileReference:
    """A body field whose value names a file rather than carrying data."""

    field: str
    reference: str

    @property
    def location(self) -> str:
        return strip_sigil(self.reference)

    @property
    def kind(self) -> str:
        return self.field


@dataclass(frozen=True)
class LoadedFile:
    data: bytes
    content_type: str
    filename: str

    @property
    def size_bytes(self) -> int:
        return len(self.data)


def strip_sigil(reference: str) -> str:
    reference = reference.strip()
    return reference[1:] if reference.startswith("@") else reference


def is_url(reference: str) -> bool:
    return reference.startswith("http://") or reference.startswith("https://")


def check_reference(reference: str) -> str:
    """Strip the ``@`` sigil and refuse anything that is neither a URL nor an absolute path."""
    location = strip_sigil(reference)
    if is_url(location):
        return location
    if not location or not os.path.isabs(os.path.normpath(location)):
        raise FileAccessError(ABSOLUTE_PATH_MESSAGE)
    return location


def _extension(name: str) -> str:
    base = name.rsplit("/", 1)[-1].rsplit("\\", 1)[-1]
    return base.rsplit(".", 1)[-1].lower() if "." in base else ""


def mime_type_for(name: str) -> str:
    return _MIME_TYPES.get(_extension(name), "application/octet-stream")


def detect_file_kind(reference: str) -> str:
    ext = _extension(urlparse(reference).path if is_url(reference) else reference)
    if ext == "pdf":
        return "pdf"
    if ext in _VIDEO_EXTS:
        return "video"
    if ext in _IMAGE_EXTS:
        return "image"
    return "binary"


def _filename_for(location: str) -> str:
    if is_url(location):
        name = PurePosixPath(urlparse(location).path).name
    else:
        name = location.replace("\\", "/").rsplit("/", 1)[-1]
    return name or "file"


async def _fetch(location: str, client: httpx.AsyncClient | None) -> tuple[bytes, str]:
    """Return (bytes, content type header or "") for a URL or an absolute path."""
    if is_url(location):
        if client is None:
            async with httpx.AsyncClient(follow_redirects=True) as own_client:
                response = await send(own_client, "GET", location)
        else:
            response = await send(client, "GET", location, follow_redirects=True)
        content_type = response.headers.get("content-type", "").split(";")[0].strip().lower()
        return response.content, content_type
    try:
        with open(location, "rb") as fh:
            data = fh.read()
    except OSError as exc:
        raise FileAccessError(f"Failed to read file {location}: {exc.strerror or exc}") from exc
    return data, mime_type_for(location)


def reencode_image(data: bytes, *, output_format: str = DEFAULT_IMAGE_FORMAT, keep_alpha: bool = False) -> bytes:
    """Re-encode image bytes in ``output_format``, dropping the alpha channel unless ``keep_alpha``."""
    pil_format = _PIL_FORMATS.get(output_format.lower())
    if pil_format is None:
        raise FileAccessError(f"Unsupported image output format: {output_format}")
    try:
        with Image.open(io.BytesIO(data)) as img:
            img.load()
            if not keep_alpha:
                img = _strip_alpha(img)
            if pil_format == "JPEG" and img.mode not in ("RGB", "L", "CMYK"):
                img = img.convert("RGB")
            buf = io.BytesIO()
            img.save(buf, format=pil_format)
    except (UnidentifiedImageError, Image.DecompressionBombError, OSError) as exc:
        raise FileAccessError(f"Could not decode image data: {exc}") from exc
    return buf.getvalue()


def _source_format(content_type: str) -> str:
    subtype = content_type.split("/", 1)[-1].lower()
    return subtype if subtype in _PIL_FORMATS else DEFAULT_IMAGE_FORMAT


def _strip_alpha(img: Image.Image) -> Image.Image:
    if img.mode == "LA":
        return img.convert("L")
    if img.mode in ("RGBA", "PA", "RGBa", "La") or (img.mode == "P" and "transparency" in img.info):
        return img.convert("RGB")
    return img


async def resolve(
    reference: str,
    kind: str | None = None,
    *,
    client: httpx.AsyncClient | None = None,
    content_type: str | None = None,
    skip_image_processing: bool = False,
    keep_alpha: bool = False,
    output_format: str | None = DEFAULT_IMAGE_FORMAT,
    filename: str | None = None,
) -> LoadedFile:
    """Load a file reference.

    Images are re-encoded (alpha stripped unless ``keep_alpha``) in
    ``output_format``; ``None`` keeps the source format when Pillow can
    write it, falling back to PNG.
    """
    location = check_reference(reference)
    data, detected = await _fetch(location, client)
    content_type = content_type or detected or "application/octet-stream"
    name = _filename_for(location)
    _log.debug("Loaded %s (%s, %d bytes) for %s", name, content_type, len(data), kind or "file")

    if content_type.startswith("image/") and not skip_image_processing:
        fmt = (output_format or _source_format(content_type)).lower()
        data = reencode_image(data, output_format=fmt, keep_alpha=keep_alpha)
        new_type = _MIME_TYPES.get(fmt, f"image/{fmt}")
        if "." not in name:
            name = f"{name}.{fmt}"
        elif mime_type_for(name) != new_type:
            name = f"{name.rsplit('.', 1)[0]}.{fmt}"
        content_type = new_type
    elif content_type.startswith("video/"):
        if "." not in name:
            name = f"{name}.{content_type.split('/', 1)[1] or 'mp4'}"
    elif content_type == "application/pdf":
        if "." not in name:
            name = f"{name}.pdf"

    return LoadedFile(data=data, content_type=content_type, filename=filename or name)


async def resolve_inline(
    reference: str,
    kind: str | None = None,
    *,
    client: httpx.AsyncClient | None = None,
) -> str:
    """Fetch a file and return it base64-encoded; images always come back as PNG."""
    location = check_reference(reference)
    kind = kind or detect_file_kind(location)
    data, _ = await _fetch(location, client)
    if kind == "image":
        data = reencode_image(data, output_format=DEFAULT_IMAGE_FORMAT)
    return base64.standard_b64encode(data).decode("ascii")

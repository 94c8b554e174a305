from __future__ import annotations

import base64
import binascii
import io
import json
import logging
import re
from pathlib import Path
from typing import Any

import httpx
from PIL import Image, UnidentifiedImageError

from .errors import SerializationError

_log = logging.getLogger(__name__)

OUTPUT_FILENAME = "output.png"

# Shorter strings are never treated as an embedded image.
MIN_IMAGE_B64_CHARS = 1000
# Inline images above this many base64 characters are downscaled first.
MAX_INLINE_B64_CHARS = 1_000_000
INLINE_BOX = (512, 512)

_B64_RE = re.compile(r"^[A-Za-z0-9+/]*={0,2}$")


def text_block(text: str) -> dict[str, Any]:
    return {"type": "text", "text": text}


def image_block(data: str, mime_type: str) -> dict[str, Any]:
    return {"type": "image", "data": data, "mimeType": mime_type}


def is_valid_base64(value: Any) -> bool:
    if not isinstance(value, str) or not _B64_RE.match(value):
        return False
    if len(value) % 4 != 0 or len(value) < MIN_IMAGE_B64_CHARS:
        return False
    try:
        decoded = base64.b64decode(value, validate=True)
    except (binascii.Error, ValueError):
        return False
    reencoded = base64.b64encode(decoded).decode("ascii")
    return reencoded.rstrip("=") == value.rstrip("=")


def extract_image(payload: Any) -> str | None:
    """Return ``payload["data"][0]`` when it is a plausible base64 image."""
    if not isinstance(payload, dict):
        return None
    data = payload.get("data")
    if not isinstance(data, list) or not data:
        return None
    candidate = data[0]
    return candidate if is_valid_base64(candidate) else None


def sniff_mime_type(data: bytes, default: str = "image/png") -> str:
    try:
        with Image.open(io.BytesIO(data)) as img:
            return Image.MIME.get(img.format or "", default)
    except (UnidentifiedImageError, Image.DecompressionBombError, OSError):
        return default


def downscale_image(b64_image: str, box: tuple[int, int] = INLINE_BOX) -> str:
    """Shrink a base64 image to fit ``box`` and re-encode it as JPEG."""
    raw = base64.b64decode(b64_image)
    with Image.open(io.BytesIO(raw)) as img:
        img = img.convert("RGB")
        img.thumbnail(box, Image.LANCZOS)
        buf = io.BytesIO()
        img.save(buf, format="JPEG", quality=85)
    return base64.standard_b64encode(buf.getvalue()).decode("ascii")


def inline_image(b64_image: str) -> dict[str, Any]:
    if len(b64_image) > MAX_INLINE_B64_CHARS:
        try:
            return image_block(downscale_image(b64_image), "image/jpeg")
        except (UnidentifiedImageError, Image.DecompressionBombError, OSError) as exc:
            _log.warning("Could not downscale returned image: %s", exc)
    return image_block(b64_image, sniff_mime_type(base64.b64decode(b64_image)))


def save_image(b64_image: str, output_directory: str | Path | None) -> Path | None:
    if not output_directory:
        return None
    target = Path(output_directory) / OUTPUT_FILENAME
    target.write_bytes(base64.b64decode(b64_image))
    return target


def _parse_json(response: httpx.Response) -> Any:
    try:
        return response.json()
    except ValueError:
        return None


def response_text(response: httpx.Response) -> tuple[str, Any]:
    """Return (display text, parsed JSON or None) for a successful response."""
    content_type = response.headers.get("content-type", "").lower()
    parsed = _parse_json(response) if response.content else None
    if "application/json" in content_type and isinstance(parsed, (dict, list)):
        try:
            return json.dumps(parsed, indent=2, ensure_ascii=False), parsed
        except (TypeError, ValueError) as exc:
            raise SerializationError(f"Could not serialize API response: {exc}") from exc
    if response.content:
        return response.text, parsed
    return f"(Status: {response.status_code} - No body content)", None


def interpret(
    response: httpx.Response,
    *,
    output_directory: str | Path | None = None,
    image_display_enabled: bool = False,
) -> list[dict[str, Any]]:
    text, parsed = response_text(response)
    b64_image = extract_image(parsed)
    if b64_image is None:
        return [text_block(f"API Text Response (Status: {response.status_code}):\n{text}")]

    try:
        saved = save_image(b64_image, output_directory)
    except OSError as exc:
        _log.error("Failed to save image to %s: %s", output_directory, exc)
        summary = f"Image successfully generated but could not be saved: {exc.strerror or exc}"
    else:
        if saved is not None:
            summary = f"Image successfully generated and saved to {saved}"
        else:
            summary = "Image successfully generated (no output directory configured, so it was not saved)"
    blocks = [text_block(f"API Image Response (Status: {response.status_code}):\n{summary}")]
    if image_display_enabled:
        _log.debug("Returned image is %d base64 characters", len(b64_image))
        blocks.append(inline_image(b64_image))
    return blocks

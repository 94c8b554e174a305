from __future__ import annotations

import base64
import io
import sys
from pathlib import Path

import httpx
import pytest
from PIL import Image

sys.path.insert(0, str(Path(__file__).resolve().parents[1] / "src"))

from visiontools.errors import ABSOLUTE_PATH_MESSAGE, FileAccessError, RemoteApiError
from visiontools.files import (
    FileReference,
    check_reference,
    detect_file_kind,
    mime_type_for,
    reencode_image,
    resolve,
    resolve_inline,
)


def _image_bytes(mode: str = "RGB", fmt: str = "PNG", size: tuple[int, int] = (8, 8)) -> bytes:
    color = (10, 20, 30, 128) if mode == "RGBA" else (10, 20, 30)
    buf = io.BytesIO()
    Image.new(mode, size, color).save(buf, format=fmt)
    return buf.getvalue()


def _open(data: bytes) -> Image.Image:
    img = Image.open(io.BytesIO(data))
    img.load()
    return img


# ---------------------------------------------------------------------------
# Reference checks
# ---------------------------------------------------------------------------


def test_sigil_is_stripped() -> None:
    assert check_reference("@/abs/photo.jpg") == "/abs/photo.jpg"
    assert FileReference("image", "@/abs/photo.jpg").location == "/abs/photo.jpg"


def test_urls_are_accepted() -> None:
    assert check_reference("https://host/img.png") == "https://host/img.png"


@pytest.mark.parametrize("reference", ["./img.png", "img.png", "@data/a.pdf", ""])
def test_relative_paths_are_refused(reference: str) -> None:
    with pytest.raises(FileAccessError) as exc:
        check_reference(reference)
    assert str(exc.value) == ABSOLUTE_PATH_MESSAGE


@pytest.mark.asyncio
async def test_relative_path_refused_even_when_file_exists(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    (tmp_path / "img.png").write_bytes(_image_bytes())
    monkeypatch.chdir(tmp_path)
    with pytest.raises(FileAccessError, match="absolute"):
        await resolve("img.png", "image")


def test_mime_and_kind_detection() -> None:
    assert mime_type_for("/a/b.JPG") == "image/jpeg"
    assert mime_type_for("/a/clip.mov") == "video/quicktime"
    assert mime_type_for("/a/blob") == "application/octet-stream"
    assert detect_file_kind("https://host/path/doc.pdf?x=1") == "pdf"
    assert detect_file_kind("/clips/run.mkv") == "video"
    assert detect_file_kind("/pics/a.webp") == "image"
    assert detect_file_kind("/data/archive.zip") == "binary"


# ---------------------------------------------------------------------------
# Image re-encoding
# ---------------------------------------------------------------------------


def test_reencode_strips_alpha() -> None:
    out = reencode_image(_image_bytes("RGBA"), output_format="png")
    img = _open(out)
    assert img.format == "PNG"
    assert img.mode == "RGB"


def test_reencode_keeps_alpha_when_asked() -> None:
    out = reencode_image(_image_bytes("RGBA"), output_format="png", keep_alpha=True)
    assert _open(out).mode == "RGBA"


def test_reencode_rejects_garbage() -> None:
    with pytest.raises(FileAccessError, match="Could not decode image"):
        reencode_image(b"definitely not an image")


def test_reencode_rejects_unknown_format() -> None:
    with pytest.raises(FileAccessError, match="Unsupported image output format"):
        reencode_image(_image_bytes(), output_format="xyz")


# ---------------------------------------------------------------------------
# resolve()
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_resolve_local_png_with_alpha(tmp_path: Path) -> None:
    path = tmp_path / "shape.png"
    path.write_bytes(_image_bytes("RGBA"))
    loaded = await resolve(str(path), "image")
    assert loaded.content_type == "image/png"
    assert loaded.filename == "shape.png"
    assert _open(loaded.data).mode == "RGB"


@pytest.mark.asyncio
async def test_resolve_converts_to_png_and_renames(tmp_path: Path) -> None:
    path = tmp_path / "photo.jpg"
    path.write_bytes(_image_bytes(fmt="JPEG"))
    loaded = await resolve("@" + str(path), "image")
    assert loaded.content_type == "image/png"
    assert loaded.filename == "photo.png"
    assert _open(loaded.data).format == "PNG"


@pytest.mark.asyncio
async def test_resolve_keeps_source_format_when_unset(tmp_path: Path) -> None:
    path = tmp_path / "photo.jpg"
    path.write_bytes(_image_bytes(fmt="JPEG"))
    loaded = await resolve(str(path), "image", output_format=None)
    assert loaded.content_type == "image/jpeg"
    assert loaded.filename == "photo.jpg"
    assert _open(loaded.data).format == "JPEG"


@pytest.mark.asyncio
async def test_resolve_skip_image_processing(tmp_path: Path) -> None:
    original = _image_bytes("RGBA")
    path = tmp_path / "raw.png"
    path.write_bytes(original)
    loaded = await resolve(str(path), "image", skip_image_processing=True)
    assert loaded.data == original


@pytest.mark.asyncio
async def test_resolve_overrides(tmp_path: Path) -> None:
    path = tmp_path / "clip.bin"
    path.write_bytes(b"\x00\x01")
    loaded = await resolve(str(path), "video", content_type="video/mp4", filename="upload.mp4")
    assert loaded.content_type == "video/mp4"
    assert loaded.filename == "upload.mp4"
    assert loaded.size_bytes == 2


@pytest.mark.asyncio
async def test_resolve_pdf_passes_through(tmp_path: Path) -> None:
    path = tmp_path / "doc.pdf"
    path.write_bytes(b"%PDF-1.4 fake")
    loaded = await resolve(str(path), "pdf")
    assert loaded.data == b"%PDF-1.4 fake"
    assert loaded.content_type == "application/pdf"
    assert loaded.filename == "doc.pdf"


@pytest.mark.asyncio
async def test_resolve_missing_file(tmp_path: Path) -> None:
    with pytest.raises(FileAccessError, match="Failed to read file"):
        await resolve(str(tmp_path / "missing.png"), "image")


@pytest.mark.asyncio
async def test_resolve_url_uses_response_content_type() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/media/clip"
        return httpx.Response(200, content=b"\x00\x00video", headers={"content-type": "video/mp4; charset=binary"})

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        loaded = await resolve("https://cdn.example/media/clip", "video", client=client)
    assert loaded.content_type == "video/mp4"
    assert loaded.filename == "clip.mp4"
    assert loaded.data == b"\x00\x00video"


@pytest.mark.asyncio
async def test_resolve_url_error_status_propagates() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(403, text="denied")

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        with pytest.raises(RemoteApiError) as exc:
            await resolve("https://cdn.example/a.png", "image", client=client)
    assert exc.value.status_code == 403


# ---------------------------------------------------------------------------
# resolve_inline()
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_inline_image_is_png_base64(tmp_path: Path) -> None:
    path = tmp_path / "photo.jpg"
    path.write_bytes(_image_bytes(fmt="JPEG"))
    encoded = await resolve_inline(str(path), "image")
    assert _open(base64.b64decode(encoded)).format == "PNG"


@pytest.mark.asyncio
async def test_inline_pdf_is_verbatim(tmp_path: Path) -> None:
    path = tmp_path / "doc.pdf"
    path.write_bytes(b"%PDF-1.7 bytes")
    encoded = await resolve_inline(str(path), "pdf")
    assert base64.b64decode(encoded) == b"%PDF-1.7 bytes"


@pytest.mark.asyncio
async def test_inline_kind_detected_from_extension(tmp_path: Path) -> None:
    path = tmp_path / "clip.mp4"
    path.write_bytes(b"not really a video")
    encoded = await resolve_inline(str(path))
    assert base64.b64decode(encoded) == b"not really a video"


@pytest.mark.asyncio
async def test_inline_relative_path_refused() -> None:
    with pytest.raises(FileAccessError) as exc:
        await resolve_inline("./img.png", "image")
    assert str(exc.value) == ABSOLUTE_PATH_MESSAGE

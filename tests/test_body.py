from __future__ import annotations

import base64
import io
import json
import sys
from pathlib import Path
from urllib.parse import parse_qsl

import httpx
import pytest
from PIL import Image

sys.path.insert(0, str(Path(__file__).resolve().parents[1] / "src"))

from visiontools.body import build_body, prepare_request
from visiontools.catalog import BodyContentType
from visiontools.errors import RequestSetupError
from visiontools.router import parse_body


def _write_image(path: Path, fmt: str = "PNG") -> Path:
    Image.new("RGB", (6, 6), (200, 10, 10)).save(path, format=fmt)
    return path


def _encode(kwargs: dict, headers: dict | None = None) -> httpx.Request:
    """Build the httpx request the encoded body would produce."""
    return httpx.Request("POST", "https://api.test/v1/tools/x", headers=headers, **kwargs)


@pytest.mark.asyncio
async def test_json_body_inlines_files(tmp_path: Path) -> None:
    image = _write_image(tmp_path / "cat.png")
    body = parse_body({"image": str(image), "prompts": ["cat"], "confidence": 0.2})
    encoded = await build_body(BodyContentType.JSON, body)
    payload = encoded["json"]
    assert payload["prompts"] == ["cat"]
    assert payload["confidence"] == 0.2
    decoded = Image.open(io.BytesIO(base64.b64decode(payload["image"])))
    assert decoded.format == "PNG"


@pytest.mark.asyncio
async def test_json_raw_body_is_sent_unchanged() -> None:
    encoded = await build_body(BodyContentType.JSON, parse_body([{"a": 1}]))
    assert encoded == {"json": [{"a": 1}]}


@pytest.mark.asyncio
async def test_no_content_type_means_no_body() -> None:
    assert await build_body(None, parse_body({"x": 1})) == {}
    assert await build_body(BodyContentType.JSON, None) == {}


@pytest.mark.asyncio
async def test_multipart_files_first_then_text(tmp_path: Path) -> None:
    photo = _write_image(tmp_path / "photo.jpg", fmt="JPEG")
    body = parse_body(f"prompt=find+cats&image=@{photo}&grayscale=true")
    encoded = await build_body(BodyContentType.MULTIPART, body)
    request = _encode(encoded)
    content = request.read()

    assert request.headers["content-type"].startswith("multipart/form-data; boundary=")
    image_at = content.index(b'name="image"; filename="photo.jpg"')
    prompt_at = content.index(b'name="prompt"\r\n\r\nfind cats')
    assert image_at < prompt_at
    assert b"Content-Type: image/jpeg" in content
    assert b'name="grayscale"\r\n\r\ntrue' in content


@pytest.mark.asyncio
async def test_multipart_lists_repeat_and_objects_are_json(tmp_path: Path) -> None:
    body = parse_body({"labels": ["a", "b"], "bboxes": {"x": [1, 2]}, "skip": None, "flag": False})
    encoded = await build_body(BodyContentType.MULTIPART, body)
    content = _encode(encoded).read()
    assert content.count(b'name="labels"') == 2
    assert b'name="bboxes"\r\n\r\n{"x": [1, 2]}' in content
    assert b'name="skip"' not in content
    assert b'name="flag"\r\n\r\nfalse' in content


@pytest.mark.asyncio
async def test_urlencoded_body_inlines_files(tmp_path: Path) -> None:
    image = _write_image(tmp_path / "street.png")
    body = parse_body({"image": str(image), "prompts": ["car", "bus"], "confidence": 0.5})
    encoded = await build_body(BodyContentType.URLENCODED, body)
    assert encoded["headers"] == {"content-type": "application/x-www-form-urlencoded"}
    pairs = parse_qsl(encoded["content"])
    names = [name for name, _ in pairs]
    assert names == ["image", "prompts", "prompts", "confidence"]
    assert dict(pairs)["confidence"] == "0.5"
    assert base64.b64decode(pairs[0][1])[:8] == b"\x89PNG\r\n\x1a\n"


@pytest.mark.asyncio
async def test_form_types_reject_raw_bodies() -> None:
    for content_type in (BodyContentType.MULTIPART, BodyContentType.URLENCODED):
        with pytest.raises(RequestSetupError):
            await build_body(content_type, parse_body([1, 2]))


@pytest.mark.asyncio
async def test_prepare_request_merges_body_headers() -> None:
    prepared = await prepare_request(
        "POST",
        "https://api.test/v1/tools/flux1",
        params={"timeout": 480},
        headers={"Accept": "application/json", "authorization": "Basic k"},
        content_type=BodyContentType.URLENCODED,
        body=parse_body("prompt=a+red+fox"),
    )
    assert prepared.headers == {
        "Accept": "application/json",
        "authorization": "Basic k",
        "content-type": "application/x-www-form-urlencoded",
    }
    kwargs = prepared.httpx_kwargs()
    assert kwargs["params"] == {"timeout": 480}
    assert kwargs["content"] == "prompt=a+red+fox"


@pytest.mark.asyncio
async def test_prepare_request_without_query() -> None:
    prepared = await prepare_request(
        "POST",
        "https://api.test/v1/tools/x",
        params={},
        headers={},
        content_type=BodyContentType.JSON,
        body=parse_body({"a": 1}),
    )
    kwargs = prepared.httpx_kwargs()
    assert kwargs["params"] is None
    assert json.loads(_encode({"json": kwargs["json"]}).read()) == {"a": 1}

from __future__ import annotations

import asyncio
import base64
from io import BytesIO

import httpx
import pytest
from PIL import Image

from sifapass.core.errors import AssetUnavailable, RenderFailed
from sifapass.services.renderer import (
    AssetFetcher,
    Renderer,
    default_layout,
    parse_design,
    substitute,
)
from tests.conftest import TINY_PNG

DATA = {
    "participantName": "Ada Lovelace",
    "eventTitle": "E1",
    "verificationUrl": "https://example.test/verify/" + "a" * 64,
}


def _renderer(handler=None) -> Renderer:
    fetcher = AssetFetcher()
    fetcher._transport = httpx.MockTransport(handler or (lambda r: httpx.Response(404)))
    return Renderer(fetcher)


def _open(data: bytes) -> Image.Image:
    return Image.open(BytesIO(data))


# ---- placeholders ----


def test_substitute_replaces_known_tokens() -> None:
    assert substitute("Awarded to {{participantName}}", DATA) == "Awarded to Ada Lovelace"
    assert substitute("{{ eventTitle }}", DATA) == "E1"


def test_substitute_uses_literal_fallbacks() -> None:
    assert substitute("{{participantName}}", {}) == "Participant Name"
    assert substitute("{{eventTitle}}", {}) == "Event Title"


def test_substitute_fills_missing_dates_with_today() -> None:
    out = substitute("{{issueDate}}", {})
    assert out != "{{issueDate}}"
    assert "," in out


def test_substitute_keeps_unknown_tokens_visible() -> None:
    assert substitute("{{nope}}", DATA) == "{{nope}}"


# ---- design parsing ----


def test_parse_design_accepts_nested_properties() -> None:
    spec = parse_design(
        {
            "canvas": {"width": 800, "height": 600},
            "elements": [
                {"type": "text", "x": 10, "y": 20, "properties": {"fontSize": 32, "color": "#ff0000"}},
                {"type": "qr-code", "x": 0, "y": 0},
            ],
        }
    )
    assert spec.canvas.width == 800
    assert spec.elements[0].font_size == 32
    assert spec.elements[0].color == "#ff0000"
    assert spec.elements[1].type == "qrcode"


def test_parse_design_rejects_unknown_element_type() -> None:
    with pytest.raises(RenderFailed) as info:
        parse_design({"elements": [{"type": "video"}]})
    assert info.value.sub_kind == "InvalidTemplate"
    assert info.value.retriable is False


def test_parse_design_rejects_non_object() -> None:
    with pytest.raises(RenderFailed):
        parse_design(["not", "a", "design"])  # type: ignore[arg-type]


def test_default_layout_draws_participant_name() -> None:
    elements = default_layout(parse_design({}))
    assert any("{{participantName}}" in e.content for e in elements)


# ---- rendering ----


def test_render_empty_design_uses_default_size() -> None:
    artifact = asyncio.run(_renderer().render({}, DATA, "png"))
    img = _open(artifact.data)
    assert img.format == "PNG"
    assert img.size == (1200, 800)
    assert artifact.mime_type == "image/png"


def test_render_respects_canvas_and_scale() -> None:
    design = {"canvas": {"width": 400, "height": 300}}
    artifact = asyncio.run(_renderer().render(design, DATA, "png", scale=0.5))
    assert (artifact.width, artifact.height) == (200, 150)


def test_render_jpeg_and_pdf() -> None:
    renderer = _renderer()
    jpeg = asyncio.run(renderer.render({}, DATA, "jpeg"))
    assert _open(jpeg.data).format == "JPEG"
    pdf = asyncio.run(renderer.render({}, DATA, "pdf"))
    assert pdf.data.startswith(b"%PDF")
    assert pdf.mime_type == "application/pdf"


def test_render_unknown_format_is_invalid_template() -> None:
    with pytest.raises(RenderFailed) as info:
        asyncio.run(_renderer().render({}, DATA, "gif"))
    assert info.value.sub_kind == "InvalidTemplate"


def test_render_solid_background_colour() -> None:
    design = {
        "canvas": {"width": 200, "height": 200},
        "background": {"type": "solid", "primaryColor": "#ff0000"},
        "elements": [{"type": "shape", "x": 0, "y": 0, "width": 1, "height": 1}],
    }
    data = {"participantName": "X"}
    img = _open(asyncio.run(_renderer().render(design, data, "png")).data).convert("RGB")
    assert img.getpixel((100, 100)) == (255, 0, 0)


def test_unreachable_background_without_colour_raises_asset_unavailable() -> None:
    design = {"background": {"type": "image", "backgroundImage": "https://cdn.invalid/bg.png"}}
    with pytest.raises(AssetUnavailable):
        asyncio.run(_renderer().render(design, DATA, "png"))


def test_unreachable_background_falls_back_to_primary_colour() -> None:
    design = {
        "canvas": {"width": 200, "height": 200},
        "background": {
            "type": "image",
            "backgroundImage": "https://cdn.invalid/bg.png",
            "primaryColor": "#00ff00",
        },
        "elements": [{"type": "shape", "x": 0, "y": 0, "width": 1, "height": 1}],
    }
    artifact = asyncio.run(_renderer().render(design, {}, "png"))
    assert _open(artifact.data).convert("RGB").getpixel((100, 100)) == (0, 255, 0)


def test_reachable_background_image_is_drawn() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, content=TINY_PNG)

    design = {
        "canvas": {"width": 100, "height": 100},
        "background": {"type": "image", "backgroundImage": "https://assets.example.test/bg.png"},
        "elements": [{"type": "shape", "x": 0, "y": 0, "width": 1, "height": 1}],
    }
    artifact = asyncio.run(_renderer(handler).render(design, {}, "png"))
    # TINY_PNG is solid navy.
    assert _open(artifact.data).convert("RGB").getpixel((50, 50)) == (0, 0, 128)


def test_unreachable_image_element_becomes_placeholder() -> None:
    design = {
        "canvas": {"width": 200, "height": 200},
        "elements": [
            {"type": "image", "src": "https://cdn.invalid/logo.png", "x": 0, "y": 0, "width": 50, "height": 50}
        ],
    }
    artifact = asyncio.run(_renderer().render(design, {}, "png"))
    assert _open(artifact.data).convert("RGB").getpixel((25, 25)) == (208, 208, 208)


def test_bad_colour_is_invalid_template() -> None:
    design = {"background": {"type": "solid", "primaryColor": "not-a-colour"}}
    with pytest.raises(RenderFailed) as info:
        asyncio.run(_renderer().render(design, DATA, "png"))
    assert info.value.sub_kind == "InvalidTemplate"


def test_data_uri_assets_are_decoded_locally() -> None:
    uri = "data:image/png;base64," + base64.b64encode(TINY_PNG).decode()
    fetcher = AssetFetcher()
    assert asyncio.run(fetcher.fetch(uri)) == TINY_PNG


def test_fetch_rejects_unsupported_scheme() -> None:
    with pytest.raises(AssetUnavailable):
        asyncio.run(AssetFetcher().fetch("file:///etc/passwd"))

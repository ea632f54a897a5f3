from __future__ import annotations

import base64
from io import BytesIO

import pytest
from PIL import Image

from sifapass.services import qr_encoder


def test_encode_image_has_requested_size() -> None:
    img = qr_encoder.encode_image("https://example.test/verify/abc", size=150)
    assert img.size == (150, 150)
    assert img.mode == "RGB"


def test_encode_image_rejects_non_positive_size() -> None:
    with pytest.raises(ValueError):
        qr_encoder.encode_image("https://example.test", size=0)


def test_encode_data_uri_is_inline_png() -> None:
    uri = qr_encoder.encode_data_uri("https://example.test/verify/abc")
    prefix = "data:image/png;base64,"
    assert uri.startswith(prefix)
    img = Image.open(BytesIO(base64.b64decode(uri[len(prefix):])))
    assert img.format == "PNG"
    assert img.size == (qr_encoder.DEFAULT_SIZE, qr_encoder.DEFAULT_SIZE)


def test_qr_has_dark_and_light_modules() -> None:
    img = qr_encoder.encode_image("https://example.test/verify/abc", size=100)
    colors = {c for _, c in img.getcolors(maxcolors=256) or []}
    assert (0, 0, 0) in colors
    assert (255, 255, 255) in colors

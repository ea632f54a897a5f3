"""QR codes for verification URLs.

``encode_data_uri`` produces the inline ``data:image/png;base64,...``
stored on the credential record and returned by the verifier.
``encode_image`` returns a Pillow image for the renderer to paste onto
the canvas at an exact pixel size.
"""

from __future__ import annotations

import base64
from io import BytesIO

import qrcode
from PIL import Image

DEFAULT_SIZE = 200
DEFAULT_MARGIN = 1


def encode_image(
    url: str,
    *,
    size: int = DEFAULT_SIZE,
    margin: int = DEFAULT_MARGIN,
    fill_color: str = "black",
    back_color: str = "white",
) -> Image.Image:
    """Encode ``url`` as a square RGB image of ``size`` x ``size`` pixels."""
    if size <= 0:
        raise ValueError("QR size must be positive")
    qr = qrcode.QRCode(
        version=None,
        error_correction=qrcode.constants.ERROR_CORRECT_M,
        box_size=10,
        border=max(margin, 0),
    )
    qr.add_data(url)
    qr.make(fit=True)
    img = qr.make_image(fill_color=fill_color, back_color=back_color).get_image()
    # Nearest-neighbour keeps module edges sharp for scanners.
    return img.convert("RGB").resize((size, size), Image.NEAREST)


def encode_data_uri(
    url: str, *, size: int = DEFAULT_SIZE, margin: int = DEFAULT_MARGIN
) -> str:
    img = encode_image(url, size=size, margin=margin)
    buffer = BytesIO()
    img.save(buffer, format="PNG")
    return "data:image/png;base64," + base64.b64encode(buffer.getvalue()).decode(
        "ascii"
    )

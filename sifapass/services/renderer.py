"""Credential renderer: design document + participant data -> PNG/JPEG/PDF.

RENDER PIPELINE
---------------
  1. Parse the design (pydantic).  A design that does not parse, or that
     names a colour Pillow cannot read, is an InvalidTemplate failure.
  2. Prefetch every remote asset (background image, image elements)
     concurrently with httpx.  ``data:`` URIs are decoded locally.
  3. Draw on a worker thread (``asyncio.to_thread``), because Pillow
     drawing is CPU-bound and would otherwise stall the event loop:
       background -> elements in ascending zIndex -> verification QR
  4. Encode to the requested format.  PDF pages embed the raster image
     in a reportlab canvas sized to the design.

DEGRADATION RULES
-----------------
  background image unavailable -> paint the declared primary colour and
                                  log a warning.  With no colour to fall
                                  back to, raise AssetUnavailable.
  image element unavailable    -> grey placeholder rectangle
  empty element list           -> the default certificate layout

SHARED STATE
------------
The font cache (``_load_font``, an lru_cache) is the only state shared
between renders.  Everything else lives on the stack of one render.
"""

from __future__ import annotations

import asyncio
import base64
import binascii
import logging
import re
import time
from dataclasses import dataclass
from datetime import date
from functools import lru_cache
from io import BytesIO
from typing import Any

import httpx
from PIL import Image, ImageColor, ImageDraw, ImageFont, UnidentifiedImageError
from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError
from pydantic import model_validator
from reportlab.lib.utils import ImageReader
from reportlab.pdfgen import canvas as pdf_canvas

from sifapass.core.errors import AssetUnavailable, RenderFailed
from sifapass.core.metrics import RENDER_DURATION
from sifapass.services import qr_encoder

logger = logging.getLogger(__name__)

DEFAULT_WIDTH = 1200
DEFAULT_HEIGHT = 800

MIME_TYPES = {"png": "image/png", "jpeg": "image/jpeg", "pdf": "application/pdf"}

# Literal text used when the participant-data bundle lacks a placeholder.
PLACEHOLDER_FALLBACKS = {
    "participantName": "Participant Name",
    "eventTitle": "Event Title",
    "skills": "",
}
_DATE_PLACEHOLDERS = ("eventDate", "issueDate")

_TOKEN_RE = re.compile(r"\{\{\s*([A-Za-z_][A-Za-z0-9_]*)\s*\}\}")

AUTO_QR_SIZE = 120
AUTO_QR_MARGIN = 30
AUTO_QR_PAD = 8

PLACEHOLDER_FILL = (208, 208, 208)
PLACEHOLDER_OUTLINE = (160, 160, 160)

MAX_ASSET_BYTES = 10 * 1024 * 1024


def today_label(d: date | None = None) -> str:
    d = d or date.today()
    return f"{d.strftime('%B')} {d.day}, {d.year}"


# ---------------------------------------------------------------------------
# Design schema
# ---------------------------------------------------------------------------


class _DesignModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class CanvasSpec(_DesignModel):
    width: int = Field(DEFAULT_WIDTH, ge=50, le=10000)
    height: int = Field(DEFAULT_HEIGHT, ge=50, le=10000)


class BackgroundSpec(_DesignModel):
    type: str | None = None  # solid|gradient|image
    primary_color: str | None = Field(
        None, validation_alias=AliasChoices("primaryColor", "primary_color", "color")
    )
    secondary_color: str | None = Field(
        None, validation_alias=AliasChoices("secondaryColor", "secondary_color")
    )
    gradient_direction: str = Field(
        "to right",
        validation_alias=AliasChoices("gradientDirection", "gradient_direction"),
    )
    image_url: str | None = Field(
        None,
        validation_alias=AliasChoices(
            "backgroundImage", "imageUrl", "image_url", "image"
        ),
    )


class ElementSpec(_DesignModel):
    """One drawable element.

    The designer UI stores style either on the element or under a nested
    ``properties`` object; both are accepted, the element's own keys win.
    """

    id: str | None = None
    type: str
    x: float = 0
    y: float = 0
    width: float | None = None
    height: float | None = None
    z_index: int = Field(0, validation_alias=AliasChoices("zIndex", "z_index"))
    content: str = ""
    src: str | None = None
    font_family: str = Field(
        "DejaVu Sans", validation_alias=AliasChoices("fontFamily", "font_family")
    )
    font_size: float = Field(
        16, gt=0, le=1000, validation_alias=AliasChoices("fontSize", "font_size")
    )
    font_weight: str = Field(
        "normal", validation_alias=AliasChoices("fontWeight", "font_weight")
    )
    color: str | None = None
    text_align: str = Field(
        "left", validation_alias=AliasChoices("textAlign", "text_align")
    )
    shape: str = Field(
        "rectangle", validation_alias=AliasChoices("shape", "shapeType", "shape_type")
    )
    fill_color: str | None = Field(
        None, validation_alias=AliasChoices("fillColor", "fill_color", "backgroundColor")
    )
    stroke_color: str | None = Field(
        None, validation_alias=AliasChoices("strokeColor", "stroke_color", "borderColor")
    )
    stroke_width: float = Field(
        0, ge=0, validation_alias=AliasChoices("strokeWidth", "stroke_width", "borderWidth")
    )
    size: int | None = Field(None, gt=0, le=4000)
    margin: int = Field(qr_encoder.DEFAULT_MARGIN, ge=0, le=20)

    @model_validator(mode="before")
    @classmethod
    def _flatten_properties(cls, data: Any) -> Any:
        if isinstance(data, dict) and isinstance(data.get("properties"), dict):
            merged = dict(data["properties"])
            merged.update({k: v for k, v in data.items() if k != "properties"})
            data = merged
        if isinstance(data, dict) and isinstance(data.get("type"), str):
            kind = data["type"].lower()
            data = {**data, "type": "qrcode" if kind in ("qr", "qr-code") else kind}
        return data

    @property
    def is_bold(self) -> bool:
        weight = self.font_weight.lower()
        if weight in ("bold", "bolder"):
            return True
        return weight.isdigit() and int(weight) >= 600


ELEMENT_TYPES = ("text", "image", "shape", "line", "qrcode")


class DesignSpec(_DesignModel):
    canvas: CanvasSpec = Field(
        default_factory=CanvasSpec,
        validation_alias=AliasChoices("canvas", "canvasSettings"),
    )
    background: BackgroundSpec = Field(default_factory=BackgroundSpec)
    elements: list[ElementSpec] = Field(default_factory=list)
    content: dict[str, Any] = Field(default_factory=dict)

    @model_validator(mode="after")
    def _known_element_types(self) -> DesignSpec:
        for index, element in enumerate(self.elements):
            if element.type not in ELEMENT_TYPES:
                raise ValueError(f"element {index} has unknown type {element.type!r}")
        return self


def parse_design(design: dict[str, Any] | DesignSpec | None) -> DesignSpec:
    """Validate a design document, raising RenderFailed/InvalidTemplate."""
    if isinstance(design, DesignSpec):
        return design
    if design is None:
        return DesignSpec()
    if not isinstance(design, dict):
        raise RenderFailed("Design must be a JSON object", sub_kind="InvalidTemplate")
    try:
        return DesignSpec.model_validate(design)
    except ValidationError as exc:
        first = exc.errors()[0]
        where = ".".join(str(p) for p in first.get("loc", ()))
        message = f"{where}: {first.get('msg')}" if where else str(first.get("msg"))
        raise RenderFailed(
            f"Invalid design: {message}", sub_kind="InvalidTemplate"
        ) from None


# ---------------------------------------------------------------------------
# Placeholders
# ---------------------------------------------------------------------------


def substitute(text: str, data: dict[str, str]) -> str:
    """Replace ``{{token}}`` with bundle values or literal fallbacks.

    Unknown tokens without a fallback are left as written, so a typo in
    a template is visible on the artifact instead of silently vanishing.
    """

    def _replace(m: re.Match[str]) -> str:
        key = m.group(1)
        value = data.get(key)
        if value:
            return str(value)
        if key in PLACEHOLDER_FALLBACKS:
            return PLACEHOLDER_FALLBACKS[key]
        if key in _DATE_PLACEHOLDERS:
            return today_label()
        return m.group(0)

    return _TOKEN_RE.sub(_replace, text)


def default_layout(spec: DesignSpec) -> list[ElementSpec]:
    """The certificate drawn when a design has no elements of its own."""
    w, h = spec.canvas.width, spec.canvas.height
    content = spec.content
    base = float(content.get("fontSize") or max(16, h // 25))
    color = content.get("textColor") or "#1f2937"
    family = str(content.get("fontFamily") or "DejaVu Sans").split(",")[0].strip()
    title = content.get("titleText") or "Certificate of Achievement"
    phrase = content.get("eventDescription") or "has successfully completed {{eventTitle}}"

    def line(text: str, y_frac: float, scale: float, weight: str = "normal") -> ElementSpec:
        return ElementSpec(
            type="text",
            x=w * 0.1,
            y=h * y_frac,
            width=w * 0.8,
            content=text,
            font_family=family,
            font_size=base * scale,
            font_weight=weight,
            color=color,
            text_align="center",
        )

    return [
        line(title, 0.18, 1.5, "bold"),
        line("This is to certify that", 0.34, 0.8),
        line("{{participantName}}", 0.44, 1.3, "bold"),
        line(phrase, 0.58, 0.8),
        line("Date: {{issueDate}}", 0.74, 0.7),
    ]


# ---------------------------------------------------------------------------
# Asset fetching
# ---------------------------------------------------------------------------


class AssetFetcher:
    """Fetch design assets over HTTP(S) or from ``data:`` URIs.

    ``_transport`` can be replaced with an ``httpx.MockTransport`` in tests.
    """

    def __init__(self, timeout: float = 10.0) -> None:
        self._timeout = timeout
        self._transport: httpx.AsyncBaseTransport | None = None

    async def fetch(self, url: str) -> bytes:
        if url.startswith("data:"):
            return _decode_data_uri(url)
        if not url.startswith(("http://", "https://")):
            raise AssetUnavailable(f"Unsupported asset URL: {url[:80]}")
        try:
            async with httpx.AsyncClient(
                timeout=self._timeout,
                transport=self._transport,
                follow_redirects=True,
            ) as client:
                resp = await client.get(url)
        except httpx.HTTPError as exc:
            raise AssetUnavailable(f"Could not fetch {url}: {exc}") from exc
        if resp.status_code != 200:
            raise AssetUnavailable(f"Could not fetch {url}: HTTP {resp.status_code}")
        if len(resp.content) > MAX_ASSET_BYTES:
            raise AssetUnavailable(f"Asset too large: {url}")
        return resp.content

    async def fetch_many(self, urls: list[str]) -> dict[str, bytes | None]:
        """Fetch all URLs concurrently; failed ones map to None."""
        unique = list(dict.fromkeys(urls))
        results = await asyncio.gather(
            *(self.fetch(u) for u in unique), return_exceptions=True
        )
        assets: dict[str, bytes | None] = {}
        for url, result in zip(unique, results):
            if isinstance(result, BaseException):
                if not isinstance(result, AssetUnavailable):
                    raise result
                logger.warning("Asset unavailable: %s", result.message)
                assets[url] = None
            else:
                assets[url] = result
        return assets


def _decode_data_uri(uri: str) -> bytes:
    header, sep, payload = uri.partition(",")
    if not sep:
        raise AssetUnavailable("Malformed data URI")
    try:
        if header.endswith(";base64"):
            return base64.b64decode(payload, validate=True)
        return payload.encode("utf-8")
    except (binascii.Error, ValueError) as exc:
        raise AssetUnavailable("Malformed data URI") from exc


# ---------------------------------------------------------------------------
# Drawing
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class RenderedArtifact:
    data: bytes
    width: int
    height: int
    mime_type: str
    format: str


_FONT_FILES = {
    "arial": ("Arial", "LiberationSans"),
    "helvetica": ("Helvetica", "LiberationSans"),
    "times new roman": ("Times New Roman", "LiberationSerif"),
    "georgia": ("Georgia", "DejaVuSerif"),
    "courier new": ("Courier New", "LiberationMono"),
}


@lru_cache(maxsize=128)
def _load_font(family: str, size: int, bold: bool) -> ImageFont.ImageFont | ImageFont.FreeTypeFont:
    names = list(_FONT_FILES.get(family.lower(), (family.replace(" ", ""),)))
    names.append("DejaVuSans")
    for name in names:
        for candidate in (f"{name}-Bold.ttf", f"{name}Bold.ttf") if bold else (f"{name}.ttf",):
            try:
                return ImageFont.truetype(candidate, size)
            except OSError:
                continue
    return ImageFont.load_default(size=size)


def _color(value: str | None, default: str | None) -> tuple[int, ...] | None:
    value = value if value is not None else default
    if value is None or value.strip().lower() in ("", "transparent", "none"):
        return None
    try:
        return ImageColor.getrgb(value.strip())
    except ValueError:
        raise RenderFailed(
            f"Unrecognised colour {value!r}", sub_kind="InvalidTemplate"
        ) from None


def _open_image(data: bytes | None) -> Image.Image | None:
    if data is None:
        return None
    try:
        img = Image.open(BytesIO(data))
        img.load()
    except (UnidentifiedImageError, OSError):
        return None
    return img.convert("RGBA")


class _Painter:
    """Draws one design onto one RGB canvas."""

    def __init__(
        self, spec: DesignSpec, data: dict[str, str], assets: dict[str, bytes | None]
    ) -> None:
        self.spec = spec
        self.data = data
        self.assets = assets
        self.width = spec.canvas.width
        self.height = spec.canvas.height
        self.image = Image.new("RGB", (self.width, self.height), (255, 255, 255))
        self.draw = ImageDraw.Draw(self.image)

    def paint(self) -> Image.Image:
        self._background()
        elements = self.spec.elements or default_layout(self.spec)
        for element in sorted(elements, key=lambda e: e.z_index):
            handler = getattr(self, "_draw_" + element.type)
            handler(element)
        verification_url = self.data.get("verificationUrl")
        if verification_url and not any(e.type == "qrcode" for e in elements):
            self._corner_qr(verification_url)
        return self.image

    # --- background ---

    def _background(self) -> None:
        bg = self.spec.background
        primary = _color(bg.primary_color, None)
        kind = (bg.type or ("image" if bg.image_url else "solid")).lower()

        if kind == "gradient":
            start = primary or (52, 152, 219)
            end = _color(bg.secondary_color, None) or (231, 76, 60)
            self._gradient(start, end, bg.gradient_direction.lower())
            return

        if kind == "image" and bg.image_url:
            img = _open_image(self.assets.get(bg.image_url))
            if img is not None:
                img = img.resize((self.width, self.height))
                self.image.paste(img, (0, 0), img)
                return
            if primary is None:
                raise AssetUnavailable(
                    "Background image unavailable and no fallback colour declared",
                    url=bg.image_url,
                )
            logger.warning(
                "Background image unavailable, using primary colour url=%s",
                bg.image_url,
            )

        if primary is not None:
            self.draw.rectangle((0, 0, self.width, self.height), fill=primary)

    def _gradient(self, start: tuple[int, ...], end: tuple[int, ...], direction: str) -> None:
        # linear_gradient("L") runs 0 at the top to 255 at the bottom.
        mask = Image.linear_gradient("L")
        if "right" in direction:
            mask = mask.rotate(90)
        elif "left" in direction:
            mask = mask.rotate(-90)
        elif "top" in direction:
            mask = mask.rotate(180)
        elif "bottom" not in direction:
            mask = mask.rotate(90)
        mask = mask.resize((self.width, self.height))
        first = Image.new("RGB", (self.width, self.height), start[:3])
        second = Image.new("RGB", (self.width, self.height), end[:3])
        self.image.paste(Image.composite(second, first, mask))

    # --- elements ---

    def _box(self, e: ElementSpec, default_w: float, default_h: float) -> tuple[int, int, int, int]:
        w = e.width if e.width is not None else default_w
        h = e.height if e.height is not None else default_h
        x0, y0 = int(round(e.x)), int(round(e.y))
        return x0, y0, x0 + max(int(round(w)), 1), y0 + max(int(round(h)), 1)

    def _draw_text(self, e: ElementSpec) -> None:
        text = substitute(e.content, self.data)
        if not text.strip():
            return
        font = _load_font(e.font_family.split(",")[0].strip().strip('"'), int(e.font_size), e.is_bold)
        fill = _color(e.color, "#000000") or (0, 0, 0)
        box_w = e.width if e.width is not None else max(self.width - e.x, 1)
        line_h = e.font_size * 1.25
        y = e.y
        for line in self._wrap(text, font, box_w):
            line_w = self.draw.textlength(line, font=font)
            align = e.text_align.lower()
            if align == "center":
                x = e.x + (box_w - line_w) / 2
            elif align == "right":
                x = e.x + box_w - line_w
            else:
                x = e.x
            self.draw.text((x, y), line, font=font, fill=fill)
            y += line_h

    def _wrap(self, text: str, font: Any, max_width: float) -> list[str]:
        lines: list[str] = []
        for paragraph in text.split("\n"):
            current = ""
            for word in paragraph.split(" "):
                candidate = f"{current} {word}" if current else word
                if current and self.draw.textlength(candidate, font=font) > max_width:
                    lines.append(current)
                    current = word
                else:
                    current = candidate
            lines.append(current)
        return lines

    def _draw_image(self, e: ElementSpec) -> None:
        box = self._box(e, 100, 100)
        img = _open_image(self.assets.get(e.src)) if e.src else None
        if img is None:
            self.draw.rectangle(box, fill=PLACEHOLDER_FILL, outline=PLACEHOLDER_OUTLINE)
            return
        img = img.resize((box[2] - box[0], box[3] - box[1]))
        self.image.paste(img, box[:2], img)

    def _draw_shape(self, e: ElementSpec) -> None:
        box = self._box(e, 100, 100)
        fill = _color(e.fill_color if e.fill_color is not None else e.color, None)
        stroke = _color(e.stroke_color, None)
        width = int(round(e.stroke_width)) if stroke is not None else 0
        if e.shape.lower() == "circle":
            side = min(box[2] - box[0], box[3] - box[1])
            cx, cy = (box[0] + box[2]) // 2, (box[1] + box[3]) // 2
            box = (cx - side // 2, cy - side // 2, cx + side // 2, cy + side // 2)
            self.draw.ellipse(box, fill=fill, outline=stroke, width=width)
        else:
            self.draw.rectangle(box, fill=fill, outline=stroke, width=width)

    def _draw_line(self, e: ElementSpec) -> None:
        x0, y0, x1, _ = self._box(e, 100, 0)
        color = _color(e.stroke_color or e.color, "#000000")
        self.draw.line((x0, y0, x1, y0), fill=color, width=max(int(e.stroke_width), 1))

    def _draw_qrcode(self, e: ElementSpec) -> None:
        url = self.data.get("verificationUrl")
        size = e.size or int(min(e.width or 120, e.height or 120))
        x, y = int(round(e.x)), int(round(e.y))
        if not url:
            self.draw.rectangle(
                (x, y, x + size, y + size), fill=PLACEHOLDER_FILL, outline=PLACEHOLDER_OUTLINE
            )
            return
        self.image.paste(qr_encoder.encode_image(url, size=size, margin=e.margin), (x, y))

    def _corner_qr(self, url: str) -> None:
        x = self.width - AUTO_QR_SIZE - AUTO_QR_MARGIN
        y = self.height - AUTO_QR_SIZE - AUTO_QR_MARGIN
        self.draw.rectangle(
            (x - AUTO_QR_PAD, y - AUTO_QR_PAD, x + AUTO_QR_SIZE + AUTO_QR_PAD, y + AUTO_QR_SIZE + AUTO_QR_PAD),
            fill=(255, 255, 255),
        )
        self.image.paste(qr_encoder.encode_image(url, size=AUTO_QR_SIZE), (x, y))


def _encode(image: Image.Image, fmt: str) -> bytes:
    buffer = BytesIO()
    if fmt == "png":
        image.save(buffer, format="PNG", optimize=True)
    elif fmt == "jpeg":
        image.convert("RGB").save(buffer, format="JPEG", quality=90)
    else:
        w, h = image.size
        page = pdf_canvas.Canvas(buffer, pagesize=(w, h))
        page.drawImage(ImageReader(image), 0, 0, width=w, height=h)
        page.showPage()
        page.save()
    return buffer.getvalue()


def _render_sync(
    spec: DesignSpec,
    data: dict[str, str],
    assets: dict[str, bytes | None],
    fmt: str,
    scale: float,
) -> RenderedArtifact:
    image = _Painter(spec, data, assets).paint()
    if scale != 1.0:
        image = image.resize(
            (max(int(image.width * scale), 1), max(int(image.height * scale), 1)),
            Image.LANCZOS,
        )
    return RenderedArtifact(
        data=_encode(image, fmt),
        width=image.width,
        height=image.height,
        mime_type=MIME_TYPES[fmt],
        format=fmt,
    )


class Renderer:
    def __init__(self, fetcher: AssetFetcher | None = None) -> None:
        self.fetcher = fetcher or AssetFetcher()

    async def render(
        self,
        design: dict[str, Any] | DesignSpec | None,
        data: dict[str, str],
        fmt: str = "png",
        scale: float = 1.0,
    ) -> RenderedArtifact:
        """Render ``design`` with ``data`` substituted.

        ``scale`` is a resolution hint clamped to [0.25, 4].  Raises
        RenderFailed with sub_kind AssetUnavailable, InvalidTemplate or
        Internal.
        """
        if fmt not in MIME_TYPES:
            raise RenderFailed(f"Unsupported format {fmt!r}", sub_kind="InvalidTemplate")
        spec = parse_design(design)
        scale = min(max(scale, 0.25), 4.0)

        urls = [e.src for e in spec.elements if e.type == "image" and e.src]
        bg_kind = (spec.background.type or "image").lower()
        if spec.background.image_url and bg_kind == "image":
            urls.append(spec.background.image_url)
        assets = await self.fetcher.fetch_many(urls) if urls else {}

        start = time.monotonic()
        try:
            return await asyncio.to_thread(_render_sync, spec, data, assets, fmt, scale)
        except RenderFailed:
            raise
        except Exception as exc:
            logger.exception("Render failed")
            raise RenderFailed(f"Rendering failed: {exc}", sub_kind="Internal") from exc
        finally:
            RENDER_DURATION.labels(format=fmt).observe(time.monotonic() - start)

"""Overlay mileage and disclaimer bands on generated images.

Annotation always starts from the raw generated artifact, so the overlay
geometry depends only on the image size and whether kilometers were given.
"""

import io
import logging
import re
from pathlib import Path
from typing import List, NamedTuple, Optional, Union

from PIL import Image, ImageDraw, ImageFont

from eai_studio.scenes.models import AnnotatedArtifact, EncodedImage, GeneratedArtifact

logger = logging.getLogger(__name__)

DISCLAIMER_BAND_RATIO = 0.07
MILEAGE_BAND_RATIO = 0.10
DISCLAIMER_FONT_RATIO = 0.40
MILEAGE_FONT_RATIO = 0.45
MAX_TEXT_WIDTH_RATIO = 0.92
MIN_FONT_SIZE = 8

BAND_COLOR = (0, 0, 0, 153)  # 60% black
TEXT_COLOR = (255, 255, 255, 255)

MILEAGE_TEMPLATE = "Kilometraje: {kilometers} km"
DISCLAIMER_TEXT = (
    "Imagen generada con IA con fines ilustrativos. El vehículo real puede presentar diferencias."
)

GENERIC_FILENAME = "escena-coche"

SAVE_FORMATS = {
    "image/jpeg": "JPEG",
    "image/png": "PNG",
    "image/webp": "WEBP",
}

FontType = Union[ImageFont.FreeTypeFont, ImageFont.ImageFont]


class Band(NamedTuple):
    """One horizontal overlay strip."""

    name: str  # "mileage" or "disclaimer"
    top: int
    height: int
    text: str
    font_ratio: float


def compute_bands(width: int, height: int, kilometers: Optional[str] = None) -> List[Band]:
    """
    Geometry of the overlay bands, top to bottom.

    The disclaimer band is always present at the very bottom; the mileage band
    is stacked right above it only when kilometers is non-blank.

    Example:
        >>> [(b.name, b.top, b.height) for b in compute_bands(1000, 600, "95000")]
        [('mileage', 498, 60), ('disclaimer', 558, 42)]
    """
    disclaimer_height = round(height * DISCLAIMER_BAND_RATIO)
    bands = [
        Band("disclaimer", height - disclaimer_height, disclaimer_height, DISCLAIMER_TEXT, DISCLAIMER_FONT_RATIO)
    ]

    km = kilometers.strip() if kilometers else ""
    if km:
        mileage_height = round(height * MILEAGE_BAND_RATIO)
        top = height - disclaimer_height - mileage_height
        bands.insert(0, Band("mileage", top, mileage_height, MILEAGE_TEMPLATE.format(kilometers=km), MILEAGE_FONT_RATIO))
    return bands


def _load_font(size: int, font_path: Optional[Path]) -> FontType:
    if font_path is not None:
        try:
            return ImageFont.truetype(str(font_path), size)
        except OSError as e:
            logger.warning(f"Could not load font {font_path}: {e}; using default font")
    try:
        return ImageFont.load_default(size=size)
    except TypeError:
        # Pillow < 10.1 has no scalable default font
        return ImageFont.load_default()


def _fit_font(draw: ImageDraw.ImageDraw, text: str, size: int, max_width: float, font_path: Optional[Path]) -> FontType:
    """Largest font not above ``size`` whose rendering fits in max_width."""
    font = _load_font(size, font_path)
    while size > MIN_FONT_SIZE and draw.textlength(text, font=font) > max_width:
        size -= 1
        font = _load_font(size, font_path)
    return font


def _draw_centered(draw: ImageDraw.ImageDraw, band: Band, width: int, font: FontType) -> None:
    left, top, right, bottom = draw.textbbox((0, 0), band.text, font=font)
    x = (width - (right - left)) / 2 - left
    y = band.top + (band.height - (bottom - top)) / 2 - top
    draw.text((x, y), band.text, font=font, fill=TEXT_COLOR)


def render_overlay(image: Image.Image, kilometers: Optional[str] = None, font_path: Optional[Path] = None) -> Image.Image:
    """Return a new RGBA image with the bands composited onto ``image``."""
    base = image.convert("RGBA")
    width, height = base.size
    overlay = Image.new("RGBA", base.size, (0, 0, 0, 0))
    draw = ImageDraw.Draw(overlay)

    for band in compute_bands(width, height, kilometers):
        if band.height <= 0:
            continue
        draw.rectangle([0, band.top, width, band.top + band.height - 1], fill=BAND_COLOR)
        font_size = max(MIN_FONT_SIZE, round(band.height * band.font_ratio))
        font = _fit_font(draw, band.text, font_size, width * MAX_TEXT_WIDTH_RATIO, font_path)
        _draw_centered(draw, band, width, font)

    return Image.alpha_composite(base, overlay)


def _encode(image: Image.Image, mime_type: str) -> EncodedImage:
    image_format = SAVE_FORMATS.get(mime_type, "PNG")
    if image_format == "JPEG":
        image = image.convert("RGB")
    buffer = io.BytesIO()
    image.save(buffer, format=image_format)
    out_mime = mime_type if mime_type in SAVE_FORMATS else "image/png"
    return EncodedImage(data=buffer.getvalue(), mime_type=out_mime)


def slugify(text: str) -> str:
    """Lowercase, whitespace to hyphens, strip non-word characters."""
    slug = re.sub(r"\s+", "-", text.strip().lower())
    slug = re.sub(r"[^\w-]", "", slug)
    return re.sub(r"-{2,}", "-", slug).strip("-_")


def download_filename(identified_model: Optional[str], extension: str = "jpg") -> str:
    """
    Filename for downloading a result.

    Example:
        >>> download_filename("Volkswagen Golf GTI", "jpg")
        'volkswagen-golf-gti.jpg'
        >>> download_filename(None, "png")
        'escena-coche.png'
    """
    slug = slugify(identified_model) if identified_model else ""
    return f"{slug or GENERIC_FILENAME}.{extension}"


def annotate(
    artifact: GeneratedArtifact,
    kilometers: Optional[str] = None,
    font_path: Optional[Path] = None,
) -> AnnotatedArtifact:
    """
    Add the disclaimer (and mileage, when given) bands to a generated image.

    Never raises: when the image cannot be loaded or drawn, the original bytes
    are returned with ``annotated=False``.

    Args:
        artifact: Raw generated artifact (never an already annotated image)
        kilometers: Odometer value; adds the "Kilometraje" band when non-blank
        font_path: Optional TrueType font for the overlay text

    Returns:
        AnnotatedArtifact with the new image and its download filename
    """
    label = artifact.identified_model if artifact.identified else None

    try:
        with Image.open(io.BytesIO(artifact.image.data)) as raw:
            raw.load()
            annotated_image = render_overlay(raw, kilometers, font_path)
        encoded = _encode(annotated_image, artifact.image.mime_type)
    except Exception as e:
        logger.warning(f"Annotation failed, returning original image: {e}")
        return AnnotatedArtifact(
            image=artifact.image,
            filename=download_filename(label, artifact.image.extension),
            annotated=False,
            source=artifact,
        )

    logger.info(
        f"Annotated {annotated_image.width}x{annotated_image.height} image"
        f"{' with mileage ' + kilometers.strip() if kilometers and kilometers.strip() else ''}"
    )
    return AnnotatedArtifact(
        image=encoded,
        filename=download_filename(label, encoded.extension),
        annotated=True,
        source=artifact,
    )

"""Turn local files and remote URLs into EncodedImage payloads.

Both paths return the same EncodedImage shape, so downstream code does not
care where an image came from.
"""

import base64
import io
import logging
from pathlib import Path
from typing import Optional, Union

import httpx
from PIL import Image, UnidentifiedImageError
from pydantic import BaseModel, ConfigDict, field_validator

from eai_studio.exceptions import CORS_HINT, FetchError, InvalidContentError, ReadError

logger = logging.getLogger(__name__)

DEFAULT_FETCH_TIMEOUT = 15.0

# Some image hosts refuse requests without a browser-like agent
FETCH_HEADERS = {
    "User-Agent": "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/124.0 Safari/537.36",
    "Accept": "image/avif,image/webp,image/apng,image/svg+xml,image/*,*/*;q=0.8",
}


class EncodedImage(BaseModel):
    """Raw image payload plus its media type."""

    model_config = ConfigDict(frozen=True)

    data: bytes
    mime_type: str  # e.g. "image/jpeg"
    filename: Optional[str] = None

    @field_validator('data')
    @classmethod
    def validate_data_not_empty(cls, v: bytes) -> bytes:
        """Ensure payload is not empty."""
        if not v:
            raise ValueError("Image payload cannot be empty")
        return v

    @field_validator('mime_type')
    @classmethod
    def validate_mime_type(cls, v: str) -> str:
        """Normalize and require an image/* media type."""
        v = v.split(';')[0].strip().lower()
        if not v.startswith("image/"):
            raise ValueError(f"Not an image media type: {v!r}")
        return v

    def to_base64(self) -> str:
        """Payload as base64 text (no data: prefix)."""
        return base64.b64encode(self.data).decode("ascii")

    @classmethod
    def from_base64(cls, data: str, mime_type: str, filename: Optional[str] = None) -> "EncodedImage":
        """Build from base64 text, tolerating a data URL prefix."""
        if data.startswith("data:") and "," in data:
            data = data.split(",", 1)[1]
        return cls(data=base64.b64decode(data), mime_type=mime_type, filename=filename)

    @property
    def extension(self) -> str:
        """File extension for the media type ("jpg", "png", ...)."""
        subtype = self.mime_type.split("/", 1)[1]
        return "jpg" if subtype in ("jpeg", "pjpeg") else subtype

    def __repr__(self) -> str:
        return f"EncodedImage(mime_type={self.mime_type!r}, size={len(self.data)}, filename={self.filename!r})"


def _detect_mime_type(data: bytes) -> str:
    """Decode the container with Pillow and return its media type.

    Raises:
        ReadError: If the bytes are not a readable image
    """
    try:
        with Image.open(io.BytesIO(data)) as img:
            img.verify()
            image_format = img.format
    except (UnidentifiedImageError, OSError, SyntaxError, ValueError) as e:
        raise ReadError(f"Bytes are not a readable image: {e}") from e

    mime_type = Image.MIME.get(image_format or "")
    if not mime_type:
        raise ReadError(f"Unsupported image format: {image_format}")
    return mime_type


def encode_local_file(
    source: Union[str, Path, bytes],
    mime_type: Optional[str] = None,
    filename: Optional[str] = None,
) -> EncodedImage:
    """
    Read a local image fully into memory.

    Args:
        source: Path to the image, or its raw bytes (e.g. an upload body)
        mime_type: Declared media type; detected from the content when omitted
            or not an image type
        filename: Original filename, kept for prompt selection and downloads

    Returns:
        EncodedImage with payload and media type

    Raises:
        ReadError: If the file cannot be read or is not a decodable image
    """
    if isinstance(source, (str, Path)):
        path = Path(source)
        try:
            data = path.read_bytes()
        except OSError as e:
            raise ReadError(f"Failed to read image file '{path}': {e}") from e
        filename = filename or path.name
    else:
        data = bytes(source)

    if not data:
        raise ReadError("Image file is empty")

    detected = _detect_mime_type(data)
    declared = (mime_type or "").split(";")[0].strip().lower()
    if not declared.startswith("image/"):
        declared = detected

    logger.debug(f"Encoded local image {filename or '<bytes>'} ({len(data)} bytes, {declared})")
    return EncodedImage(data=data, mime_type=declared, filename=filename)


async def encode_from_url(
    url: str,
    client: Optional[httpx.AsyncClient] = None,
    timeout: float = DEFAULT_FETCH_TIMEOUT,
) -> EncodedImage:
    """
    Download a remote image.

    Args:
        url: Direct link to an image
        client: Optional shared httpx client (a short-lived one is created otherwise)
        timeout: Request timeout in seconds

    Returns:
        EncodedImage with the response body and its declared media type

    Raises:
        FetchError: If the request fails or returns a non-success status
        InvalidContentError: If the response is not declared as image/*
    """
    logger.info(f"Downloading background image from {url}")

    owns_client = client is None
    if owns_client:
        client = httpx.AsyncClient(follow_redirects=True, timeout=timeout, headers=FETCH_HEADERS)

    try:
        response = await client.get(url)
        response.raise_for_status()
    except httpx.HTTPStatusError as e:
        status = e.response.status_code
        raise FetchError(
            f"Image server returned {status} for {url}",
            user_message=f"No se pudo descargar la imagen de fondo (HTTP {status}). {CORS_HINT}",
        ) from e
    except (httpx.HTTPError, httpx.InvalidURL, ValueError) as e:
        raise FetchError(
            f"Failed to fetch {url}: {e}",
            user_message=f"No se pudo descargar la imagen de fondo: {e}. {CORS_HINT}",
        ) from e
    finally:
        if owns_client:
            await client.aclose()

    content_type = response.headers.get("content-type", "")
    mime_type = content_type.split(";")[0].strip().lower()
    if not mime_type.startswith("image/"):
        raise InvalidContentError(
            f"URL did not return an image (content-type: {content_type or 'missing'})",
            user_message=f"La URL no apunta a una imagen directa (tipo de contenido: {content_type or 'desconocido'}). {CORS_HINT}",
        )

    if not response.content:
        raise FetchError(f"Empty response body from {url}")

    # filename stays unset so only uploads can match the preset background
    logger.info(f"Downloaded background image ({len(response.content)} bytes, {mime_type})")
    return EncodedImage(data=response.content, mime_type=mime_type)


def decode_image(image: EncodedImage) -> Image.Image:
    """Load an EncodedImage into a Pillow image (fully decoded).

    Raises:
        ReadError: If the payload cannot be decoded
    """
    try:
        img = Image.open(io.BytesIO(image.data))
        img.load()
    except (UnidentifiedImageError, OSError, ValueError) as e:
        raise ReadError(f"Failed to decode {image.mime_type} payload: {e}") from e
    return img

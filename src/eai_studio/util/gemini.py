"""
Gemini API utilities for E•AI Studio.

Centralized module for all Google Generative AI (Gemini) interactions: client
setup, request part construction, async invocation and response parsing.
"""

import asyncio
import logging
from typing import Any, Optional, Sequence, Union

from google import genai
from google.genai import types

from eai_studio.config import DEFAULT_IMAGE_MODEL, get_gemini_api_key
from eai_studio.exceptions import EmptyResultError, ModelInvocationError
from eai_studio.util.image_codec import EncodedImage

logger = logging.getLogger(__name__)

# Finish reasons that mean the request was refused rather than failed
SAFETY_FINISH_REASONS = {
    "SAFETY",
    "PROHIBITED_CONTENT",
    "IMAGE_SAFETY",
    "IMAGE_PROHIBITED_CONTENT",
    "BLOCKLIST",
    "SPII",
}

RequestPart = Union[str, EncodedImage]


class GeminiAPI:
    """Wrapper for Gemini API operations.

    The client is either injected or built once from the API key; nothing in
    this class reads ambient state after construction.
    """

    def __init__(
        self,
        model_name: str = DEFAULT_IMAGE_MODEL,
        api_key: Optional[str] = None,
        client: Optional[Any] = None,
    ):
        """
        Initialize Gemini API client.

        Args:
            model_name: Default model for generate_content()
            api_key: API key (if None and no client given, loads from environment)
            client: Pre-built genai.Client (or a test double)
        """
        self.model_name = model_name
        if client is not None:
            self.client = client
        else:
            self.client = genai.Client(api_key=api_key or get_gemini_api_key())

    def generate_content(
        self,
        parts: Sequence[RequestPart],
        model: Optional[str] = None,
        response_modalities: Optional[Sequence[str]] = None,
    ) -> Any:
        """
        Blocking generate_content call.

        Args:
            parts: Ordered text and image parts
            model: Model override (defaults to self.model_name)
            response_modalities: e.g. ["IMAGE"] to request an image result

        Returns:
            Raw genai response

        Raises:
            ModelInvocationError: If the SDK call fails
        """
        config = None
        if response_modalities:
            config = types.GenerateContentConfig(response_modalities=list(response_modalities))

        try:
            return self.client.models.generate_content(
                model=model or self.model_name,
                contents=build_contents(parts),
                config=config,
            )
        except Exception as e:
            logger.error(f"Gemini call to {model or self.model_name} failed: {e}")
            raise ModelInvocationError(f"Gemini request failed: {e}") from e

    async def generate_content_async(
        self,
        parts: Sequence[RequestPart],
        model: Optional[str] = None,
        response_modalities: Optional[Sequence[str]] = None,
    ) -> Any:
        """
        Async wrapper for generate_content using asyncio.to_thread.

        The google.genai synchronous client blocks; running it in a worker
        thread keeps the event loop responsive.
        """
        return await asyncio.to_thread(
            self.generate_content,
            parts,
            model=model,
            response_modalities=response_modalities,
        )

    async def generate_image(self, parts: Sequence[RequestPart], model: Optional[str] = None) -> EncodedImage:
        """
        Request an image and return the first inline image part.

        Raises:
            ModelInvocationError: If the call fails or is blocked by safety filters
            EmptyResultError: If the response carries no image
        """
        response = await self.generate_content_async(parts, model=model, response_modalities=["IMAGE"])
        return extract_image(response)

    async def generate_text(self, parts: Sequence[RequestPart], model: Optional[str] = None) -> str:
        """
        Request a text answer.

        Raises:
            ModelInvocationError: If the call fails, is blocked, or returns no text
        """
        response = await self.generate_content_async(parts, model=model)
        raise_if_blocked(response)
        text = getattr(response, "text", None)
        if not text or not text.strip():
            raise ModelInvocationError("Gemini returned no text")
        return text.strip()


def build_contents(parts: Sequence[RequestPart]) -> list:
    """Convert text/EncodedImage parts into genai Part objects, keeping order."""
    contents = []
    for part in parts:
        if isinstance(part, EncodedImage):
            contents.append(types.Part.from_bytes(data=part.data, mime_type=part.mime_type))
        else:
            contents.append(types.Part.from_text(text=part))
    return contents


def _reason_name(reason: Any) -> str:
    if reason is None:
        return ""
    return str(getattr(reason, "name", reason)).split(".")[-1].upper()


def raise_if_blocked(response: Any) -> None:
    """Raise ModelInvocationError(safety_blocked=True) for safety rejections."""
    feedback = getattr(response, "prompt_feedback", None)
    block_reason = _reason_name(getattr(feedback, "block_reason", None))
    if block_reason and block_reason != "BLOCK_REASON_UNSPECIFIED":
        raise ModelInvocationError(f"Prompt blocked by Gemini: {block_reason}", safety_blocked=True)

    for candidate in getattr(response, "candidates", None) or []:
        finish_reason = _reason_name(getattr(candidate, "finish_reason", None))
        if finish_reason in SAFETY_FINISH_REASONS:
            raise ModelInvocationError(f"Generation stopped by Gemini: {finish_reason}", safety_blocked=True)


def extract_image(response: Any) -> EncodedImage:
    """
    Return the first part carrying inline image bytes.

    Raises:
        ModelInvocationError: If the response was blocked by safety filters
        EmptyResultError: If no image part is present
    """
    for candidate in getattr(response, "candidates", None) or []:
        content = getattr(candidate, "content", None)
        for part in getattr(content, "parts", None) or []:
            inline_data = getattr(part, "inline_data", None)
            if inline_data is None or not inline_data.data:
                continue
            mime_type = (inline_data.mime_type or "image/png").split(";")[0].strip().lower()
            if not mime_type.startswith("image/"):
                logger.warning(f"Skipping non-image inline part from Gemini ({mime_type})")
                continue
            logger.debug(f"Gemini returned image ({len(inline_data.data)} bytes, {mime_type})")
            return EncodedImage(data=inline_data.data, mime_type=mime_type)

    raise_if_blocked(response)
    raise EmptyResultError("Gemini response contained no inline image data")

"""
Shared pytest fixtures for E•AI Studio tests.
"""

import io
import os
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

import pytest
from PIL import Image

from eai_studio.config import Settings
from eai_studio.scenes.models import (
    EncodedImage,
    SceneKind,
    SceneOptions,
    SceneRequest,
    UploadedBackground,
    UploadedCar,
)

DEFAULT_MARKEXPR = "smoke or (not integration and not slow)"


def pytest_addoption(parser):
    """Add --full flag to run entire test suite"""
    parser.addoption(
        "--full",
        action="store_true",
        default=False,
        help="Run full test suite, including integration tests against Gemini"
    )


def pytest_configure(config):
    """Drop the default marker filter when --full is given"""
    if config.getoption("--full") and config.option.markexpr == DEFAULT_MARKEXPR:
        config.option.markexpr = ""


# Project root
PROJECT_ROOT = Path(__file__).parent.parent


def make_image_bytes(width: int = 64, height: int = 48, fmt: str = "PNG", color=(255, 255, 255)) -> bytes:
    """Create a solid-color image in memory."""
    img = Image.new("RGB", (width, height), color)
    buffer = io.BytesIO()
    img.save(buffer, format=fmt)
    return buffer.getvalue()


@pytest.fixture
def image_factory():
    """Factory for in-memory test images."""
    return make_image_bytes


@pytest.fixture(scope="session")
def project_root():
    """Return the project root directory."""
    return PROJECT_ROOT


@pytest.fixture
def car_image():
    """Uploaded car photo (PNG)."""
    return EncodedImage(data=make_image_bytes(color=(200, 0, 0)), mime_type="image/png", filename="coche.png")


@pytest.fixture
def background_image():
    """Uploaded background (JPEG)."""
    return EncodedImage(data=make_image_bytes(fmt="JPEG", color=(0, 0, 200)), mime_type="image/jpeg", filename="fondo.jpg")


@pytest.fixture
def result_image():
    """Image returned by the mocked model."""
    return EncodedImage(data=make_image_bytes(100, 60, color=(10, 200, 10)), mime_type="image/png")


@pytest.fixture
def exterior_request(car_image, background_image):
    """Complete exterior request with uploaded car and background."""
    return SceneRequest(
        scene_kind=SceneKind.EXTERIOR,
        car_source=UploadedCar(image=car_image),
        background_file=UploadedBackground(image=background_image),
        options=SceneOptions(license_plate="1234ABC"),
    )


@pytest.fixture
def interior_request(car_image):
    """Complete interior request."""
    return SceneRequest(
        scene_kind=SceneKind.INTERIOR,
        car_source=UploadedCar(image=car_image),
        options=SceneOptions(extreme_clean=True, kilometers="95000"),
    )


@pytest.fixture
def mock_gemini(result_image):
    """GeminiAPI double: identification answers a model, generation returns an image."""
    gemini = MagicMock()
    gemini.generate_text = AsyncMock(return_value="Volkswagen Golf GTI")
    gemini.generate_image = AsyncMock(return_value=result_image)
    return gemini


@pytest.fixture
def settings():
    """Settings with short timeouts and no optional assets."""
    return Settings(model_timeout=5.0, fetch_timeout=5.0)


@pytest.fixture(scope="session")
def check_api_key():
    """Check if Gemini API key is available."""
    from dotenv import load_dotenv
    load_dotenv(PROJECT_ROOT / ".env")
    api_key = os.getenv("GEMINI_API_KEY") or os.getenv("API_KEY")
    if not api_key:
        pytest.skip("Gemini API key not found. Set GEMINI_API_KEY in .env file.")
    return api_key

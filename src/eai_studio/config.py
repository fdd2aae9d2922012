"""Centralized configuration for E•AI Studio.

This module provides:
- PROJECT_ROOT and PACKAGE_DIR paths
- Environment variable access with get_env()
- Automatic .env loading
- Settings for model names, timeouts and optional assets

Usage:
    from eai_studio.config import get_gemini_api_key, Settings

    api_key = get_gemini_api_key()
    settings = Settings.from_env()
"""

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional
from dotenv import load_dotenv

from eai_studio.exceptions import ConfigurationError

# Calculate paths once at import time
PACKAGE_DIR = Path(__file__).parent.resolve()
PROJECT_ROOT = PACKAGE_DIR.parent.parent.resolve()

# Load .env from project root
_env_path = PROJECT_ROOT / ".env"
if _env_path.exists():
    load_dotenv(_env_path)

# Primary key name, then the name the web build used
API_KEY_ENV_VARS = ("GEMINI_API_KEY", "API_KEY")

DEFAULT_IMAGE_MODEL = "gemini-2.5-flash-image"
DEFAULT_TEXT_MODEL = "gemini-2.5-flash"
PRESET_BACKGROUND_FILENAME = "fondo-final.jpg"


def get_env(key: str, default: Optional[str] = None) -> str:
    """Get environment variable value.

    Args:
        key: Environment variable name
        default: Default value if not set. If None and key not found, raises KeyError.

    Returns:
        Environment variable value or default

    Raises:
        KeyError: If key not found and no default provided
    """
    value = os.environ.get(key)
    if value is not None:
        return value
    if default is not None:
        return default
    raise KeyError(f"Environment variable '{key}' not set and no default provided")


def get_gemini_api_key() -> str:
    """Get Gemini API key from environment.

    Raises:
        ConfigurationError: If none of the supported variables is set
    """
    for key in API_KEY_ENV_VARS:
        value = os.environ.get(key)
        if value:
            return value
    raise ConfigurationError(
        f"Gemini API key not set (checked {', '.join(API_KEY_ENV_VARS)})",
        user_message=(
            "Falta la clave de la API. Por favor, asegúrate de que esté configurada en el entorno "
            f"({' o '.join(API_KEY_ENV_VARS)})."
        ),
    )


def _env_bool(key: str, default: bool) -> bool:
    value = os.environ.get(key)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def _env_path(key: str) -> Optional[Path]:
    value = os.environ.get(key)
    return Path(value) if value else None


@dataclass(frozen=True)
class Settings:
    """Runtime settings for scene generation."""

    image_model: str = DEFAULT_IMAGE_MODEL
    text_model: str = DEFAULT_TEXT_MODEL
    model_timeout: float = 120.0  # seconds, per model call
    fetch_timeout: float = 15.0  # seconds, background URL download
    identify_model: bool = True
    logo_path: Optional[Path] = None  # attached to description-based exterior scenes
    font_path: Optional[Path] = None  # TrueType font for overlays
    preset_background_filename: str = PRESET_BACKGROUND_FILENAME
    max_sessions: int = 64  # generators kept by the HTTP host, least recently used evicted

    @classmethod
    def from_env(cls) -> "Settings":
        """Build settings from EAI_* environment variables."""
        return cls(
            image_model=get_env("EAI_IMAGE_MODEL", default=DEFAULT_IMAGE_MODEL),
            text_model=get_env("EAI_TEXT_MODEL", default=DEFAULT_TEXT_MODEL),
            model_timeout=float(get_env("EAI_MODEL_TIMEOUT", default="120")),
            fetch_timeout=float(get_env("EAI_FETCH_TIMEOUT", default="15")),
            identify_model=_env_bool("EAI_IDENTIFY_MODEL", True),
            logo_path=_env_path("EAI_LOGO_PATH"),
            font_path=_env_path("EAI_FONT_PATH"),
            preset_background_filename=get_env(
                "EAI_PRESET_BACKGROUND", default=PRESET_BACKGROUND_FILENAME
            ),
            max_sessions=int(get_env("EAI_MAX_SESSIONS", default="64")),
        )

"""E•AI Studio: photorealistic car scene generation with Gemini."""

__version__ = "0.1.0"

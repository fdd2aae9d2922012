"""Shared utilities (Gemini client wrapper, image codec)."""

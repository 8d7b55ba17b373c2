"""Nabd - anonymous prompt gallery with Gemini image generation."""

__version__ = "1.0.0"

from nabd.core.config import NabdConfig, config

__all__ = [
    "NabdConfig",
    "config",
]

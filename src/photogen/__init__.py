"""PhotoGen - asynchronous AI image generation and editing task service."""

__version__ = "0.3.0"

from photogen.core.config import PhotogenConfig, config

__all__ = [
    "PhotogenConfig",
    "config",
]

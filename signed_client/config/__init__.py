"""Configuration package exports.

Unified access point for the settings model and the procedural loader.
"""

from .core import load_settings, print_settings_summary
from .model import ClientSettings

__all__ = [
    "ClientSettings",
    "load_settings",
    "print_settings_summary",
]

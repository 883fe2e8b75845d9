"""Utility functions for configuration, logging, and helpers."""

from image_sanitizer.utils.config import Config
from image_sanitizer.utils.logger import setup_logger

__all__ = ["Config", "setup_logger"]

"""
Image Sanitizer - Duplicate removal and metadata sanitization for image batches.

This package removes exact and near-duplicate images from a directory and
replaces every surviving image with a stripped, re-encoded, optimized copy,
never destroying an original before its replacement is verified.
"""

__version__ = "0.1.0"
__author__ = "Image Sanitizer Contributors"

from image_sanitizer.core.fingerprint import FingerprintBuilder
from image_sanitizer.core.index import DuplicateIndex
from image_sanitizer.core.runner import BatchRunner

__all__ = ["BatchRunner", "DuplicateIndex", "FingerprintBuilder", "__version__"]

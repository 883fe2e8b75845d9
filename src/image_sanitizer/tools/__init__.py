"""Adapters for the external tools the core delegates to."""

from image_sanitizer.tools.base import ImageInfo, find_binary, run_command
from image_sanitizer.tools.metadata import MetadataChain
from image_sanitizer.tools.optimizers import build_optimizers
from image_sanitizer.tools.shred import SecureDeleter
from image_sanitizer.tools.transform import ReencodeOptions, select_transform

__all__ = [
    "ImageInfo",
    "MetadataChain",
    "ReencodeOptions",
    "SecureDeleter",
    "build_optimizers",
    "find_binary",
    "run_command",
    "select_transform",
]

"""Content sniffing of image formats."""

from pathlib import Path
from typing import Optional

# Magic numbers checked against the first bytes of a file
_SIGNATURES = (
    (b"\xff\xd8\xff", "JPEG"),
    (b"\x89PNG\r\n\x1a\n", "PNG"),
    (b"GIF87a", "GIF"),
    (b"GIF89a", "GIF"),
    (b"II*\x00", "TIFF"),
    (b"MM\x00*", "TIFF"),
    (b"BM", "BMP"),
)

SNIFF_BYTES = 16

# Formats the sanitization pipeline knows how to re-encode
PROCESSABLE_FORMATS = {"JPEG", "PNG", "WEBP"}

CANONICAL_EXTENSIONS = {
    "JPEG": ".jpg",
    "PNG": ".png",
    "WEBP": ".webp",
}

# Extensions that make a file worth reporting even when its content is not an image
IMAGE_EXTENSIONS = {
    ".jpg",
    ".jpeg",
    ".jpe",
    ".png",
    ".webp",
    ".gif",
    ".bmp",
    ".tif",
    ".tiff",
}


def sniff_header(header: bytes) -> Optional[str]:
    """
    Identify an image format from leading bytes.

    Returns:
        Upper-case format name (``JPEG``, ``PNG``, ...) or None
    """
    if header[:4] == b"RIFF" and header[8:12] == b"WEBP":
        return "WEBP"
    for magic, name in _SIGNATURES:
        if header.startswith(magic):
            return name
    return None


def sniff_format(path: Path) -> Optional[str]:
    """Identify the image format of a file from its content, never its name."""
    with open(path, "rb") as f:
        return sniff_header(f.read(SNIFF_BYTES))


def canonical_extension(image_format: str) -> str:
    """File extension used for committed files of the given format."""
    return CANONICAL_EXTENSIONS.get(image_format.upper(), "." + image_format.lower())

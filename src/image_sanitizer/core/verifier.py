"""Integrity checks a candidate must pass before it may replace its original."""

from pathlib import Path

from image_sanitizer.core.models import ImageRecord
from image_sanitizer.errors import FailureReason, IntegrityError, ToolError, ToolTimeout
from image_sanitizer.formats import sniff_format
from image_sanitizer.tools.base import ImageInfo
from image_sanitizer.tools.transform import TransformTool
from image_sanitizer.utils.logger import setup_logger

logger = setup_logger(__name__)


class IntegrityVerifier:
    """Confirms a candidate is a decodable image of the original's format and size."""

    def __init__(self, transform: TransformTool):
        self.transform = transform

    def verify(self, record: ImageRecord, candidate: Path) -> ImageInfo:
        """
        Check ``candidate`` against the original ``record``.

        A candidate byte-identical to the original is valid: it means there
        was nothing to remove.

        Returns:
            What the transform tool reported about the candidate

        Raises:
            IntegrityError: zero-byte, unreadable, format-mismatch or dimension-mismatch
            ToolTimeout: If inspection timed out (retryable)
        """
        try:
            size = candidate.stat().st_size
        except OSError as e:
            raise IntegrityError(
                candidate, FailureReason.UNREADABLE, f"candidate missing: {candidate.name}"
            ) from e
        if size == 0:
            raise IntegrityError(candidate, FailureReason.ZERO_BYTE, f"empty candidate: {candidate.name}")

        try:
            sniffed = sniff_format(candidate)
            info = self.transform.inspect(candidate)
        except ToolTimeout:
            raise
        except (ToolError, OSError) as e:
            raise IntegrityError(
                candidate, FailureReason.UNREADABLE, f"candidate not decodable: {e}"
            ) from e

        if sniffed != record.format or info.format != record.format:
            raise IntegrityError(
                candidate,
                FailureReason.FORMAT_MISMATCH,
                f"expected {record.format}, got {sniffed or info.format}",
            )
        if info.dimensions != record.dimensions:
            raise IntegrityError(
                candidate,
                FailureReason.DIMENSION_MISMATCH,
                f"expected {record.width}x{record.height}, got {info.width}x{info.height}",
            )
        logger.debug(f"Verified {candidate.name}: {info.format} {info.width}x{info.height}")
        return info

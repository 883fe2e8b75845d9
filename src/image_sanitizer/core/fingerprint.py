"""
Composite similarity fingerprints.

A fingerprint has three independently computed components:

* structural: digest of a heavily downsampled luminance grid, each cell
  reduced to a few brightness levels
* histogram: digest of soft colour-bucket shares, each rounded to a coarse
  step of the image area
* provenance: digest of a whitelist of capture metadata fields

Identical pixel content and identical metadata values always yield the same
fingerprint, regardless of file name or processing order.

Re-encoding moves cell means and bucket shares by small amounts. A feature
whose value lies within ``tolerance`` of a quantization boundary is
borderline: the fingerprint also carries the signatures obtained by moving
the nearest borderline features to the neighbouring level, so two encodings
of the same picture still match when noise pushes a feature across.
"""

import math
from collections import defaultdict
from itertools import product
from pathlib import Path
from typing import Dict, List, NamedTuple, Optional, Sequence, Tuple

from PIL import Image, UnidentifiedImageError

from image_sanitizer.core.models import Fingerprint, ImageRecord
from image_sanitizer.errors import FailureReason, FingerprintError, ToolTimeout
from image_sanitizer.formats import IMAGE_EXTENSIONS, sniff_format
from image_sanitizer.tools.metadata import MetadataChain
from image_sanitizer.utils.config import Config
from image_sanitizer.utils.hashing import compute_sha256, digest_bytes, digest_text
from image_sanitizer.utils.logger import setup_logger
from image_sanitizer.utils.timeouts import with_timeout

logger = setup_logger(__name__)

_DECODE_ERRORS = (OSError, UnidentifiedImageError, ValueError, SyntaxError, Image.DecompressionBombError)

STRUCTURAL = 0
HISTOGRAM = 1


class Borderline(NamedTuple):
    """A quantized feature close enough to a boundary to flip under re-encoding."""

    distance: float  # to the boundary, in quantization steps
    component: int
    index: int
    alternative: int


class FingerprintBuilder:
    """Builds ImageRecords and Fingerprints for single files."""

    def __init__(self, config: Config, metadata: MetadataChain):
        """
        Initialize the builder.

        Args:
            config: Configuration instance
            metadata: Metadata tools used for the provenance component
        """
        self.metadata = metadata
        self.formats = set(config.get_formats())
        self.grid_size = int(config.get("fingerprint.grid_size", 8))
        self.histogram_grid = int(config.get("fingerprint.histogram_grid", 16))
        self.levels = max(2, min(256, int(config.get("fingerprint.levels", 4))))
        self.histogram_levels = max(1, min(16, int(config.get("fingerprint.histogram_levels", 2))))
        self.histogram_steps = max(1, int(config.get("fingerprint.histogram_steps", 20)))
        self.tolerance = max(0.0, min(0.5, float(config.get("fingerprint.tolerance", 0.1))))
        self.max_borderline = max(0, min(16, int(config.get("fingerprint.max_borderline", 10))))
        self.provenance_fields: List[str] = list(
            config.get("fingerprint.provenance_fields", ["Make", "Model", "DateTimeOriginal"])
        )
        self.timeout = config.get_command_timeout()

    def build_record(self, path: Path) -> ImageRecord:
        """
        Sniff, decode and hash one file.

        Raises:
            FingerprintError: unreadable, zero-byte, unsupported-format or corrupt
        """
        try:
            size = path.stat().st_size
            if size == 0:
                raise FingerprintError(path, FailureReason.ZERO_BYTE, f"empty file: {path.name}")
            image_format = sniff_format(path)
        except OSError as e:
            raise FingerprintError(path, FailureReason.UNREADABLE, f"cannot read {path.name}: {e}") from e

        if image_format is None:
            # Named like an image but the content is not one
            if path.suffix.lower() in IMAGE_EXTENSIONS:
                raise FingerprintError(path, FailureReason.CORRUPT, f"not an image: {path.name}")
            raise FingerprintError(
                path, FailureReason.UNSUPPORTED_FORMAT, f"unknown format: {path.name}"
            )
        if image_format not in self.formats:
            raise FingerprintError(
                path, FailureReason.UNSUPPORTED_FORMAT, f"{image_format} is not enabled: {path.name}"
            )

        try:
            width, height = self._run(_decode_dimensions, path)
        except _DECODE_ERRORS as e:
            raise FingerprintError(path, FailureReason.CORRUPT, f"cannot decode {path.name}: {e}") from e

        try:
            content_hash = compute_sha256(path)
        except OSError as e:
            raise FingerprintError(path, FailureReason.UNREADABLE, str(e)) from e

        return ImageRecord(
            path=path,
            format=image_format,
            size=size,
            width=width,
            height=height,
            content_hash=content_hash,
        )

    def fingerprint(self, record: ImageRecord) -> Fingerprint:
        """
        Compute the composite fingerprint of a decoded record.

        Raises:
            FingerprintError: If the pixels cannot be decoded
            ToolError: If the metadata tool fails (retryable)
        """
        try:
            luminance, shares = self._run(
                _pixel_features,
                record.path,
                self.grid_size,
                self.histogram_grid,
                self.histogram_levels,
            )
        except _DECODE_ERRORS as e:
            raise FingerprintError(
                record.path, FailureReason.CORRUPT, f"cannot decode {record.path.name}: {e}"
            ) from e

        fields = self.metadata.read_fields(record.path, self.provenance_fields)
        provenance = provenance_digest(fields, self.provenance_fields)
        return self.compose(luminance, shares, provenance)

    def compose(self, luminance: Sequence[float], shares: Sequence[float], provenance: str) -> Fingerprint:
        """
        Quantize raw pixel features into a Fingerprint.

        Args:
            luminance: Mean brightness (0-255) of each structural grid cell
            shares: Fraction of the image area in each colour bucket
            provenance: Provenance component digest
        """
        borderline: List[Borderline] = []
        structural: List[int] = []
        for i, value in enumerate(luminance):
            level, alternative, distance = bucket(
                value * self.levels / 256, self.levels - 1, self.tolerance
            )
            structural.append(level)
            if alternative is not None:
                borderline.append(Borderline(distance, STRUCTURAL, i, alternative))

        histogram: List[int] = []
        for i, share in enumerate(shares):
            # Round to the nearest step: boundaries sit halfway between steps
            level, alternative, distance = bucket(
                share * self.histogram_steps + 0.5, self.histogram_steps, self.tolerance
            )
            histogram.append(level)
            if alternative is not None:
                borderline.append(Borderline(distance, HISTOGRAM, i, alternative))

        fingerprint = Fingerprint(
            structural=_structural_digest(structural),
            histogram=self._histogram_digest(histogram),
            provenance=provenance,
        )

        chosen = sorted(borderline)[: self.max_borderline]
        if len(borderline) > len(chosen):
            logger.debug(f"{len(borderline)} borderline features, keeping the nearest {len(chosen)}")

        near: Dict[str, None] = {}
        for mask in range(1, 1 << len(chosen)):
            moved = {STRUCTURAL: list(structural), HISTOGRAM: list(histogram)}
            for bit, feature in enumerate(chosen):
                if mask >> bit & 1:
                    moved[feature.component][feature.index] = feature.alternative
            signature = (
                _structural_digest(moved[STRUCTURAL])
                + self._histogram_digest(moved[HISTOGRAM])
                + provenance
            )
            if signature != fingerprint.signature:
                near[signature] = None

        return Fingerprint(
            structural=fingerprint.structural,
            histogram=fingerprint.histogram,
            provenance=provenance,
            near=tuple(near),
        )

    def _histogram_digest(self, histogram: Sequence[int]) -> str:
        buckets = product(range(self.histogram_levels), repeat=3)
        return digest_text(
            ";".join(f"{r},{g},{b}:{level}" for (r, g, b), level in zip(buckets, histogram) if level)
        )

    def _run(self, fn, *args):
        try:
            return with_timeout(fn, self.timeout, *args)
        except TimeoutError as e:
            raise ToolTimeout("pillow", str(e)) from e


def bucket(value: float, top: int, tolerance: float) -> Tuple[int, Optional[int], float]:
    """
    Quantize ``value`` to ``floor(value)`` clamped to [0, top].

    Returns:
        Tuple of (level, neighbouring level or None, distance to the nearest
        boundary). The neighbour is only given when ``value`` lies within
        ``tolerance`` of the boundary shared with it.
    """
    level = min(max(int(math.floor(value)), 0), top)
    offset = value - level
    if offset < tolerance and level > 0:
        return level, level - 1, max(offset, 0.0)
    if offset > 1 - tolerance and level < top:
        return level, level + 1, min(1 - offset, 1.0)
    return level, None, min(abs(offset), abs(1 - offset))


def channel_weights(value: float, levels: int) -> List[Tuple[int, float]]:
    """
    Split one 8-bit channel value between its two nearest colour levels.

    Level ``k`` is centred on ``(k + 0.5) * 256 / levels``; values beyond the
    outer centres belong wholly to the outer level.
    """
    position = min(max(value * levels / 256 - 0.5, 0.0), levels - 1)
    low = int(position)
    fraction = position - low
    if fraction == 0 or low == levels - 1:
        return [(low, 1.0)]
    return [(low, 1.0 - fraction), (low + 1, fraction)]


def provenance_digest(fields: Dict[str, str], whitelist: Sequence[str]) -> str:
    """Order-independent digest of the whitelisted metadata fields (empty string if none)."""
    allowed = {name.lower() for name in whitelist}
    canonical = "\n".join(
        sorted(
            f"{name.lower()}={' '.join(str(value).split())}"
            for name, value in fields.items()
            if name.lower() in allowed and str(value).strip()
        )
    )
    return digest_text(canonical)


def _structural_digest(levels: Sequence[int]) -> str:
    return digest_bytes(bytes(levels))


def _flatten(img: Image.Image) -> Image.Image:
    """RGB view of an image, with any transparency composited over white."""
    if img.mode in ("RGBA", "LA", "PA") or (img.mode == "P" and "transparency" in img.info):
        rgba = img.convert("RGBA")
        background = Image.new("RGBA", rgba.size, (255, 255, 255, 255))
        return Image.alpha_composite(background, rgba).convert("RGB")
    return img.convert("RGB")


def _decode_dimensions(path: Path) -> Tuple[int, int]:
    with Image.open(path) as img:
        img.load()
        return img.size


def _pixel_features(
    path: Path, grid: int, histogram_grid: int, histogram_levels: int
) -> Tuple[List[float], List[float]]:
    """Cell luminance means and soft colour-bucket shares, before quantization."""
    with Image.open(path) as img:
        img.load()
        rgb = _flatten(img)

    # Float mode keeps the cell means unrounded
    luminance = _pixels(rgb.convert("L").convert("F").resize((grid, grid), Image.BOX))

    cells = _pixels(rgb.resize((histogram_grid, histogram_grid), Image.BOX))
    totals: Dict[Tuple[int, int, int], float] = defaultdict(float)
    for r, g, b in cells:
        for (ri, rw), (gi, gw), (bi, bw) in product(
            channel_weights(r, histogram_levels),
            channel_weights(g, histogram_levels),
            channel_weights(b, histogram_levels),
        ):
            totals[(ri, gi, bi)] += rw * gw * bw
    shares = [totals.get(key, 0.0) / len(cells) for key in product(range(histogram_levels), repeat=3)]
    return luminance, shares


def _pixels(img: Image.Image) -> list:
    width, height = img.size
    load = img.load()
    return [load[x, y] for y in range(height) for x in range(width)]

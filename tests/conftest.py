"""
Shared fixtures for the image-sanitizer test suite.

Every test runs against the Pillow tool backends so no external binaries are
needed.
"""

import random
from pathlib import Path

import pytest
from PIL import Image, ImageFilter

from image_sanitizer.tools.registry import ToolSet
from image_sanitizer.utils.config import Config

# Quadrant colours keep their luminance and colour-bucket shares away from the
# fingerprint quantization boundaries, and quadrant borders fall on JPEG block
# boundaries, so re-encoding at another quality never moves a feature to
# another level.
QUADRANTS = (
    (32, 96, 160),
    (224, 32, 96),
    (96, 224, 32),
    (160, 160, 224),
)

ALT_QUADRANTS = (
    (224, 224, 32),
    (32, 32, 224),
    (160, 32, 32),
    (32, 160, 96),
)

MAKE = 0x010F
MODEL = 0x0110


def quadrant_image(size=(128, 128), colors=QUADRANTS, mode="RGB") -> Image.Image:
    width, height = size
    img = Image.new("RGB", size)
    half_w, half_h = width // 2, height // 2
    boxes = [
        (0, 0, half_w, half_h),
        (half_w, 0, width, half_h),
        (0, half_h, half_w, height),
        (half_w, half_h, width, height),
    ]
    for box, color in zip(boxes, colors):
        img.paste(color, box)
    return img.convert(mode) if mode != "RGB" else img


def photo_image(size=(256, 192), seed: int = 7) -> Image.Image:
    """Smooth colour gradients under blurred sensor-like noise."""
    width, height = size
    rng = random.Random(seed)
    noise = Image.frombytes("L", size, bytes(rng.randrange(256) for _ in range(width * height)))
    noise = noise.filter(ImageFilter.GaussianBlur(2))
    vertical = Image.linear_gradient("L").resize(size)
    horizontal = Image.linear_gradient("L").rotate(90).resize(size)
    red = Image.blend(horizontal, noise, 0.3)
    green = Image.blend(vertical, noise, 0.3)
    blue = Image.blend(horizontal.transpose(Image.Transpose.FLIP_LEFT_RIGHT), vertical, 0.5)
    return Image.merge("RGB", (red, green, blue)).filter(ImageFilter.GaussianBlur(1))


def camera_exif(make: str = "Canon", model: str = "EOS 5D") -> bytes:
    exif = Image.Exif()
    exif[MAKE] = make
    exif[MODEL] = model
    return exif.tobytes()


@pytest.fixture
def exif():
    """Factory for EXIF blocks carrying camera make and model."""
    return camera_exif


@pytest.fixture
def make_image():
    """Factory writing a four-quadrant test image."""

    def _make(
        path: Path,
        fmt: str = "JPEG",
        quality: int = 95,
        exif: bytes = b"",
        size=(128, 128),
        alt: bool = False,
    ) -> Path:
        path.parent.mkdir(parents=True, exist_ok=True)
        img = quadrant_image(size, ALT_QUADRANTS if alt else QUADRANTS)
        params = {}
        if exif:
            params["exif"] = exif
        if fmt == "JPEG":
            params["quality"] = quality
        img.save(path, fmt, **params)
        return path

    return _make


@pytest.fixture
def make_photo():
    """Factory writing a photo-like gradient and noise JPEG."""

    def _make(path: Path, quality: int = 95, exif: bytes = b"", seed: int = 7) -> Path:
        path.parent.mkdir(parents=True, exist_ok=True)
        params = {"quality": quality}
        if exif:
            params["exif"] = exif
        photo_image(seed=seed).save(path, "JPEG", **params)
        return path

    return _make


@pytest.fixture
def config(tmp_path: Path) -> Config:
    """In-memory configuration pinned to the Pillow backends, with no retry delay."""
    scratch = tmp_path / "scratch"
    scratch.mkdir()

    config = Config.defaults()
    config.set("tools.metadata", ["pillow"])
    config.set("tools.transform", "pillow")
    config.set("tools.optimizers", {"JPEG": ["pillow"], "PNG": ["pillow"], "WEBP": ["pillow"]})
    config.set("retry.delay_seconds", 0)
    config.set("workers", 2)
    config.set("scratch_dir", str(scratch))
    config.set("secure_delete.passes", 1)
    return config


@pytest.fixture
def tools(config: Config) -> ToolSet:
    return ToolSet.from_config(config)


@pytest.fixture
def root(tmp_path: Path) -> Path:
    """Empty directory to be sanitized."""
    d = tmp_path / "photos"
    d.mkdir()
    return d


@pytest.fixture
def config_file(tmp_path: Path, config: Config) -> Path:
    """The pinned configuration written to disk, for CLI tests."""
    path = tmp_path / "config.json"
    config.config_file = path
    config.save()
    return path

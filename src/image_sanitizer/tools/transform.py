"""
Image transform tool adapters: ``reencode`` and ``inspect``.

ImageMagick is used when installed; Pillow is the in-process fallback.
"""

from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from PIL import Image, UnidentifiedImageError

from image_sanitizer.errors import MissingToolError, ToolError, ToolTimeout, ToolUnavailable
from image_sanitizer.tools.base import ImageInfo, find_binary, require_output, run_command
from image_sanitizer.utils.logger import setup_logger
from image_sanitizer.utils.timeouts import with_timeout

logger = setup_logger(__name__)

# ImageMagick reports some formats under different names
_MAGICK_FORMATS = {"JPG": "JPEG", "JPE": "JPEG", "PNG8": "PNG", "PNG24": "PNG", "PNG32": "PNG"}

# Modes each format can carry without conversion
_KEEP_MODES = {
    "JPEG": {"L", "RGB"},
    "PNG": {"1", "L", "LA", "P", "RGB", "RGBA", "I;16"},
    "WEBP": {"RGB", "RGBA"},
}


@dataclass(frozen=True)
class ReencodeOptions:
    """Options for the re-encode stage."""

    format: str
    jpeg_quality: int = 95


class TransformTool:
    """Base class for transform adapters."""

    name = "transform"

    def __init__(self, timeout: Optional[float] = None):
        self.timeout = timeout

    def is_available(self) -> bool:
        raise NotImplementedError

    def inspect(self, path: Path) -> ImageInfo:
        raise NotImplementedError

    def reencode(self, src: Path, dst: Path, options: ReencodeOptions) -> Path:
        raise NotImplementedError


class MagickTransform(TransformTool):
    """ImageMagick 7 (``magick``) or 6 (``convert`` + ``identify``)."""

    name = "magick"

    def __init__(self, timeout: Optional[float] = None):
        super().__init__(timeout)
        magick = find_binary("magick")
        if magick:
            self.convert_cmd = [magick]
            self.identify_cmd = [magick, "identify"]
        else:
            convert = find_binary("convert")
            identify = find_binary("identify")
            self.convert_cmd = [convert] if convert else None
            self.identify_cmd = [identify] if identify else None

    def is_available(self) -> bool:
        return bool(self.convert_cmd and self.identify_cmd)

    def inspect(self, path: Path) -> ImageInfo:
        if not self.identify_cmd:
            raise ToolUnavailable(self.name, "identify not installed")
        proc = run_command(
            self.identify_cmd + ["-regard-warnings", "-format", "%m %w %h\n", f"{path}[0]"],
            self.timeout,
            tool=self.name,
        )
        line = proc.stdout.decode("utf-8", errors="replace").strip().splitlines()
        try:
            fmt, width, height = line[0].split()
            fmt = fmt.upper()
            return ImageInfo(_MAGICK_FORMATS.get(fmt, fmt), int(width), int(height))
        except (IndexError, ValueError) as e:
            raise ToolError(self.name, f"unexpected identify output for {path.name}") from e

    def reencode(self, src: Path, dst: Path, options: ReencodeOptions) -> Path:
        if not self.convert_cmd:
            raise ToolUnavailable(self.name, "convert not installed")
        fmt = options.format.upper()
        args = self.convert_cmd + [f"{src}[0]", "-strip", "-colorspace", "sRGB"]
        if fmt == "JPEG":
            args += ["-quality", str(options.jpeg_quality)]
        elif fmt == "PNG":
            # Keep ImageMagick from writing its own timestamp chunks
            args += ["-define", "png:exclude-chunks=date,time"]
        args.append(f"{fmt}:{dst}")
        run_command(args, self.timeout, tool=self.name)
        return require_output(self.name, dst)


class PillowTransform(TransformTool):
    """In-process fallback built on Pillow."""

    name = "pillow"

    def is_available(self) -> bool:
        return True

    def inspect(self, path: Path) -> ImageInfo:
        try:
            return with_timeout(_pillow_inspect, self.timeout, path)
        except TimeoutError as e:
            raise ToolTimeout(self.name, str(e)) from e
        except (OSError, UnidentifiedImageError, ValueError, SyntaxError) as e:
            raise ToolError(self.name, f"cannot decode {path.name}: {e}") from e

    def reencode(self, src: Path, dst: Path, options: ReencodeOptions) -> Path:
        try:
            with_timeout(_pillow_reencode, self.timeout, src, dst, options)
        except TimeoutError as e:
            raise ToolTimeout(self.name, str(e)) from e
        except (OSError, UnidentifiedImageError, ValueError, SyntaxError) as e:
            raise ToolError(self.name, f"cannot re-encode {src.name}: {e}") from e
        return require_output(self.name, dst)


def _pillow_inspect(path: Path) -> ImageInfo:
    with Image.open(path) as img:
        # load() decodes every pixel, so truncated data is caught here
        img.load()
        if not img.format:
            raise ValueError("unknown format")
        return ImageInfo(img.format.upper(), img.width, img.height)


def _pillow_reencode(src: Path, dst: Path, options: ReencodeOptions) -> None:
    fmt = options.format.upper()
    with Image.open(src) as img:
        img.load()
        keep_modes = _KEEP_MODES.get(fmt, {"RGB", "RGBA"})
        converted = img.mode not in keep_modes
        if converted:
            has_alpha = "A" in img.mode or "transparency" in img.info
            target = "RGBA" if has_alpha and "RGBA" in keep_modes else "RGB"
            out = img.convert(target)
        else:
            out = img
        params = {"exif": b"", "icc_profile": None}
        if fmt == "JPEG":
            params["comment"] = b""
            if img.format == "JPEG" and not converted:
                params.update(quality="keep", subsampling="keep")
            else:
                params["quality"] = options.jpeg_quality
        elif fmt == "PNG":
            transparency = img.info.get("transparency")
            if transparency is not None and not converted:
                params["transparency"] = transparency
        elif fmt == "WEBP":
            params["lossless"] = True
        out.save(dst, fmt, **params)


TRANSFORM_TOOLS = {"magick": MagickTransform, "pillow": PillowTransform}


def select_transform(preference: str, timeout: Optional[float]) -> TransformTool:
    """
    Pick the transform backend.

    Args:
        preference: ``auto`` (ImageMagick if installed, else Pillow), ``magick`` or ``pillow``
        timeout: Per-invocation timeout

    Raises:
        MissingToolError: If the requested backend is not installed
    """
    preference = (preference or "auto").lower()
    if preference == "auto":
        magick = MagickTransform(timeout=timeout)
        if magick.is_available():
            return magick
        return PillowTransform(timeout=timeout)

    tool_class = TRANSFORM_TOOLS.get(preference)
    if tool_class is None:
        raise MissingToolError(f"Unknown image transform tool: {preference}")
    tool = tool_class(timeout=timeout)
    if not tool.is_available():
        raise MissingToolError(f"Image transform tool '{preference}' is not installed")
    logger.debug(f"Using {tool.name} for re-encoding and inspection")
    return tool

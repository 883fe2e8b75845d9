"""
Size-reduction tool adapters, one or more per image format.

An optimizer reads ``src`` and writes a new file ``dst``. ``quality=None``
asks for a lossless run; an integer asks for a lossy run at that quality.
Optimizers that cannot honour the request raise ``ToolError``.
"""

from pathlib import Path
from typing import Dict, List, Optional, Sequence, Type

from PIL import Image, UnidentifiedImageError

from image_sanitizer.errors import ToolError, ToolTimeout, ToolUnavailable
from image_sanitizer.tools.base import find_binary, require_output, run_command
from image_sanitizer.utils.logger import setup_logger
from image_sanitizer.utils.timeouts import with_timeout

logger = setup_logger(__name__)


class Optimizer:
    """Base class for optimizer adapters."""

    name = "optimizer"
    binary_names: Sequence[str] = ()
    supports_lossless = True
    supports_lossy = False

    def __init__(self, timeout: Optional[float] = None, level: int = 2):
        self.timeout = timeout
        self.level = level
        self.binary = find_binary(*self.binary_names) if self.binary_names else None

    def is_available(self) -> bool:
        return self.binary is not None

    def supports(self, quality: Optional[int]) -> bool:
        return self.supports_lossless if quality is None else self.supports_lossy

    def optimize(self, src: Path, dst: Path, quality: Optional[int] = None) -> Path:
        if not self.is_available():
            raise ToolUnavailable(self.name, "not installed")
        if not self.supports(quality):
            mode = "lossless" if quality is None else "lossy"
            raise ToolError(self.name, f"{mode} optimization is not supported")
        self._run(src, dst, quality)
        return require_output(self.name, dst)

    def _run(self, src: Path, dst: Path, quality: Optional[int]) -> None:
        raise NotImplementedError


class JpegoptimOptimizer(Optimizer):
    name = "jpegoptim"
    binary_names = ("jpegoptim",)
    supports_lossy = True

    def _run(self, src: Path, dst: Path, quality: Optional[int]) -> None:
        args = [self.binary, "--quiet", "--strip-all", "--all-progressive", "--stdout"]
        if quality is not None:
            args.append(f"--max={quality}")
        args.append(str(src))
        proc = run_command(args, self.timeout, tool=self.name)
        dst.write_bytes(proc.stdout)


class PngquantOptimizer(Optimizer):
    name = "pngquant"
    binary_names = ("pngquant",)
    supports_lossless = False
    supports_lossy = True

    def _run(self, src: Path, dst: Path, quality: Optional[int]) -> None:
        # Exit codes 98/99 mean the quality floor could not be met
        floor = max(0, quality - 20)
        run_command(
            [
                self.binary,
                f"--quality={floor}-{quality}",
                "--strip",
                "--force",
                "--output",
                str(dst),
                str(src),
            ],
            self.timeout,
            tool=self.name,
        )


class OptipngOptimizer(Optimizer):
    name = "optipng"
    binary_names = ("optipng",)

    def _run(self, src: Path, dst: Path, quality: Optional[int]) -> None:
        run_command(
            [self.binary, "-quiet", f"-o{self.level}", "-strip", "all", "-out", str(dst), str(src)],
            self.timeout,
            tool=self.name,
        )


class PngcrushOptimizer(Optimizer):
    name = "pngcrush"
    binary_names = ("pngcrush",)

    def _run(self, src: Path, dst: Path, quality: Optional[int]) -> None:
        run_command(
            [self.binary, "-q", "-rem", "allb", "-reduce", str(src), str(dst)],
            self.timeout,
            tool=self.name,
        )


class _PillowOptimizer(Optimizer):
    name = "pillow"

    def is_available(self) -> bool:
        return True

    def _run(self, src: Path, dst: Path, quality: Optional[int]) -> None:
        try:
            with_timeout(self._save, self.timeout, src, dst, quality)
        except TimeoutError as e:
            raise ToolTimeout(self.name, str(e)) from e
        except (OSError, UnidentifiedImageError, ValueError, SyntaxError) as e:
            raise ToolError(self.name, f"cannot optimize {src.name}: {e}") from e

    def _save(self, src: Path, dst: Path, quality: Optional[int]) -> None:
        raise NotImplementedError


class PillowJpegOptimizer(_PillowOptimizer):
    supports_lossless = False
    supports_lossy = True

    def _save(self, src: Path, dst: Path, quality: Optional[int]) -> None:
        with Image.open(src) as img:
            img.save(
                dst,
                "JPEG",
                quality=quality,
                optimize=True,
                progressive=True,
                subsampling="4:2:0",
                exif=b"",
                icc_profile=None,
                comment=b"",
            )


class PillowPngOptimizer(_PillowOptimizer):
    def _save(self, src: Path, dst: Path, quality: Optional[int]) -> None:
        with Image.open(src) as img:
            params = {"optimize": True, "exif": b"", "icc_profile": None}
            if "transparency" in img.info:
                params["transparency"] = img.info["transparency"]
            img.save(dst, "PNG", **params)


class PillowWebpOptimizer(_PillowOptimizer):
    supports_lossy = True

    def _save(self, src: Path, dst: Path, quality: Optional[int]) -> None:
        with Image.open(src) as img:
            if quality is None:
                img.save(dst, "WEBP", lossless=True, quality=100, method=6, exif=b"")
            else:
                img.save(dst, "WEBP", quality=quality, method=6, exif=b"")


OPTIMIZERS: Dict[str, Dict[str, Type[Optimizer]]] = {
    "JPEG": {"jpegoptim": JpegoptimOptimizer, "pillow": PillowJpegOptimizer},
    "PNG": {
        "pngquant": PngquantOptimizer,
        "optipng": OptipngOptimizer,
        "pngcrush": PngcrushOptimizer,
        "pillow": PillowPngOptimizer,
    },
    "WEBP": {"pillow": PillowWebpOptimizer},
}


def build_optimizers(
    image_format: str,
    names: Sequence[str],
    timeout: Optional[float] = None,
    level: int = 2,
) -> List[Optimizer]:
    """
    Instantiate the available optimizers for one format, in configured order.

    Unknown or uninstalled optimizers are skipped; an empty result means the
    optimize stage is skipped for that format.
    """
    registry = OPTIMIZERS.get(image_format.upper(), {})
    optimizers: List[Optimizer] = []
    for name in names:
        optimizer_class = registry.get(name.lower())
        if optimizer_class is None:
            logger.warning(f"No optimizer '{name}' for {image_format}, ignoring")
            continue
        optimizer = optimizer_class(timeout=timeout, level=level)
        if optimizer.is_available():
            optimizers.append(optimizer)
        else:
            logger.debug(f"Optimizer '{name}' is not available")
    return optimizers

"""Discovery of the tool capabilities a run will use."""

from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

from image_sanitizer.errors import MissingToolError
from image_sanitizer.tools.base import find_binary
from image_sanitizer.tools.metadata import MetadataChain
from image_sanitizer.tools.optimizers import Optimizer, build_optimizers
from image_sanitizer.tools.shred import SecureDeleter
from image_sanitizer.tools.transform import TransformTool, select_transform
from image_sanitizer.utils.config import Config
from image_sanitizer.utils.logger import setup_logger

logger = setup_logger(__name__)

# (binary candidates, capability) for the availability table
KNOWN_TOOLS: List[Tuple[Tuple[str, ...], str]] = [
    (("exiftool",), "metadata: strip, read fields"),
    (("mat2",), "metadata: strip (fallback)"),
    (("magick", "convert"), "transform: re-encode"),
    (("magick", "identify"), "transform: inspect"),
    (("jpegoptim",), "optimize: JPEG"),
    (("pngquant",), "optimize: PNG (lossy)"),
    (("optipng",), "optimize: PNG (lossless)"),
    (("pngcrush",), "optimize: PNG (lossless)"),
    (("shred",), "secure deletion"),
]


@dataclass
class ToolSet:
    """Every tool capability a run needs, resolved once up front."""

    metadata: MetadataChain
    transform: TransformTool
    deleter: SecureDeleter
    optimizers: Dict[str, List[Optimizer]] = field(default_factory=dict)

    @classmethod
    def from_config(cls, config: Config) -> "ToolSet":
        """
        Resolve tools from configuration.

        Raises:
            MissingToolError: If no metadata tool or no transform tool is usable
        """
        timeout = config.get_command_timeout()

        metadata = MetadataChain.from_names(config.get("tools.metadata", ["pillow"]), timeout)
        if not metadata.tools:
            raise MissingToolError(
                "No metadata tool available (configured: "
                f"{', '.join(config.get('tools.metadata', []))})"
            )

        transform = select_transform(config.get("tools.transform", "auto"), timeout)

        level = int(config.get("optimize.optipng_level", 2))
        optimizers: Dict[str, List[Optimizer]] = {}
        for image_format in config.get_formats():
            names = config.get(f"tools.optimizers.{image_format}", [])
            optimizers[image_format] = build_optimizers(image_format, names, timeout, level)

        deleter = SecureDeleter(
            passes=config.get("secure_delete.passes", 3),
            zero=config.get("secure_delete.zero", True),
            timeout=timeout,
        )

        logger.debug(
            f"Tools: metadata={metadata.names}, transform={transform.name}, "
            + ", ".join(
                f"{fmt}={[o.name for o in opts]}" for fmt, opts in optimizers.items()
            )
        )
        return cls(metadata=metadata, transform=transform, deleter=deleter, optimizers=optimizers)

    def optimizers_for(self, image_format: str) -> List[Optimizer]:
        return self.optimizers.get(image_format.upper(), [])


def tool_status() -> List[Tuple[str, str, Optional[str]]]:
    """
    Availability of every known external tool.

    Returns:
        List of (tool name, capability, resolved path or None)
    """
    rows = []
    for names, capability in KNOWN_TOOLS:
        if names[0] == "magick":
            path = find_binary(names[0]) or find_binary(names[1])
            label = f"{names[0]} / {names[1]}"
        else:
            path = find_binary(*names)
            label = names[0]
        rows.append((label, capability, path))
    return rows

"""
Metadata tool adapters.

Each adapter strips every metadata field from ``src`` into a new file ``dst``
and optionally reads a set of fields. Adapters are tried in configured order;
the first available one is primary, the rest are fallbacks.
"""

import json
import shutil
from pathlib import Path
from typing import Dict, List, Optional, Sequence

from PIL import ExifTags, Image, UnidentifiedImageError

from image_sanitizer.errors import ToolError, ToolTimeout, ToolUnavailable
from image_sanitizer.tools.base import find_binary, require_output, run_command
from image_sanitizer.utils.logger import setup_logger
from image_sanitizer.utils.timeouts import with_timeout

logger = setup_logger(__name__)

EXIF_IFD_POINTER = 0x8769
_TAG_IDS = {name: tag for tag, name in ExifTags.TAGS.items()}


class MetadataTool:
    """Base class for metadata adapters."""

    name = "metadata"
    can_read = True

    def __init__(self, timeout: Optional[float] = None):
        self.timeout = timeout

    def is_available(self) -> bool:
        raise NotImplementedError

    def strip(self, src: Path, dst: Path) -> Path:
        raise NotImplementedError

    def read_fields(self, path: Path, fields: Sequence[str]) -> Dict[str, str]:
        raise NotImplementedError


class ExifToolMetadata(MetadataTool):
    """ExifTool (``exiftool``)."""

    name = "exiftool"

    def __init__(self, timeout: Optional[float] = None):
        super().__init__(timeout)
        self.binary = find_binary("exiftool")

    def is_available(self) -> bool:
        return self.binary is not None

    def _binary(self) -> str:
        if not self.binary:
            raise ToolUnavailable(self.name, "not installed")
        return self.binary

    def strip(self, src: Path, dst: Path) -> Path:
        run_command(
            [self._binary(), "-q", "-q", "-all=", "-o", str(dst), str(src)],
            self.timeout,
            tool=self.name,
        )
        if not dst.exists():
            # Nothing to strip; exiftool does not write an output in that case
            shutil.copyfile(src, dst)
        return require_output(self.name, dst)

    def read_fields(self, path: Path, fields: Sequence[str]) -> Dict[str, str]:
        args = [self._binary(), "-j", "-q", "-q"]
        args += [f"-{field}" for field in fields]
        args.append(str(path))
        proc = run_command(args, self.timeout, tool=self.name)
        try:
            entries = json.loads(proc.stdout.decode("utf-8", errors="replace") or "[]")
        except json.JSONDecodeError as e:
            raise ToolError(self.name, f"unparseable output: {e}") from e
        if not entries:
            return {}
        entry = entries[0]
        return {
            field: str(entry[field]).strip()
            for field in fields
            if field in entry and str(entry[field]).strip()
        }


class Mat2Metadata(MetadataTool):
    """Metadata Anonymisation Toolkit (``mat2``); strip only."""

    name = "mat2"
    can_read = False

    def __init__(self, timeout: Optional[float] = None):
        super().__init__(timeout)
        self.binary = find_binary("mat2")

    def is_available(self) -> bool:
        return self.binary is not None

    def strip(self, src: Path, dst: Path) -> Path:
        if not self.binary:
            raise ToolUnavailable(self.name, "not installed")
        shutil.copyfile(src, dst)
        run_command([self.binary, "--inplace", str(dst)], self.timeout, tool=self.name)
        return require_output(self.name, dst)

    def read_fields(self, path: Path, fields: Sequence[str]) -> Dict[str, str]:
        raise ToolError(self.name, "reading fields is not supported")


class PillowMetadata(MetadataTool):
    """In-process fallback built on Pillow."""

    name = "pillow"

    def is_available(self) -> bool:
        return True

    def strip(self, src: Path, dst: Path) -> Path:
        try:
            with_timeout(_pillow_strip, self.timeout, src, dst)
        except TimeoutError as e:
            raise ToolTimeout(self.name, str(e)) from e
        except (OSError, UnidentifiedImageError, ValueError, SyntaxError) as e:
            raise ToolError(self.name, f"cannot strip {src.name}: {e}") from e
        return require_output(self.name, dst)

    def read_fields(self, path: Path, fields: Sequence[str]) -> Dict[str, str]:
        try:
            return with_timeout(_pillow_read_fields, self.timeout, path, fields)
        except TimeoutError as e:
            raise ToolTimeout(self.name, str(e)) from e
        except (OSError, UnidentifiedImageError, ValueError) as e:
            raise ToolError(self.name, f"cannot read {path.name}: {e}") from e


def _pillow_strip(src: Path, dst: Path) -> None:
    with Image.open(src) as img:
        if img.format == "JPEG":
            # Reuse the source quantization so the strip step adds no generation loss
            img.save(
                dst,
                "JPEG",
                quality="keep",
                subsampling="keep",
                exif=b"",
                icc_profile=None,
                comment=b"",
            )
        else:
            img.load()
            clean = img.copy()
            transparency = img.info.get("transparency")
            clean.info = {}
            params = {"exif": b"", "icc_profile": None}
            if transparency is not None:
                params["transparency"] = transparency
            clean.save(dst, img.format, **params)


def _pillow_read_fields(path: Path, fields: Sequence[str]) -> Dict[str, str]:
    with Image.open(path) as img:
        exif = img.getexif()
        values: Dict[str, str] = {}
        sub_ifd = exif.get_ifd(EXIF_IFD_POINTER) if exif else {}
        for field in fields:
            tag = _TAG_IDS.get(field)
            if tag is None:
                continue
            raw = exif.get(tag) if tag in exif else sub_ifd.get(tag)
            if raw is None:
                continue
            if isinstance(raw, bytes):
                raw = raw.decode("utf-8", errors="replace")
            text = str(raw).strip("\x00 ").strip()
            if text:
                values[field] = text
        return values


METADATA_TOOLS = {
    "exiftool": ExifToolMetadata,
    "mat2": Mat2Metadata,
    "pillow": PillowMetadata,
}


class MetadataChain:
    """Ordered metadata tools: primary first, fallbacks after."""

    def __init__(self, tools: List[MetadataTool]):
        self.tools = tools

    @classmethod
    def from_names(cls, names: Sequence[str], timeout: Optional[float]) -> "MetadataChain":
        tools = []
        for name in names:
            tool_class = METADATA_TOOLS.get(name.lower())
            if tool_class is None:
                logger.warning(f"Unknown metadata tool '{name}', ignoring")
                continue
            tool = tool_class(timeout=timeout)
            if tool.is_available():
                tools.append(tool)
            else:
                logger.debug(f"Metadata tool '{name}' is not available")
        return cls(tools)

    @property
    def names(self) -> List[str]:
        return [tool.name for tool in self.tools]

    def strip(self, src: Path, dst: Path) -> str:
        """
        Strip metadata from ``src`` into ``dst``, falling back along the chain.

        Returns:
            Name of the tool that succeeded

        Raises:
            ToolError: The last failure, if every tool failed
        """
        last_error: Optional[ToolError] = None
        for tool in self.tools:
            try:
                tool.strip(src, dst)
                return tool.name
            except ToolError as e:
                logger.debug(f"{tool.name} failed to strip {src.name}: {e}")
                last_error = e
                dst.unlink(missing_ok=True)
        if last_error is None:
            raise ToolUnavailable("metadata", "no metadata tool available")
        raise last_error

    def read_fields(self, path: Path, fields: Sequence[str]) -> Dict[str, str]:
        """Read ``fields`` with the first tool that can read metadata."""
        last_error: Optional[ToolError] = None
        for tool in self.tools:
            if not tool.can_read:
                continue
            try:
                return tool.read_fields(path, fields)
            except ToolError as e:
                logger.debug(f"{tool.name} failed to read {path.name}: {e}")
                last_error = e
        if last_error is None:
            raise ToolUnavailable("metadata", "no metadata reader available")
        raise last_error

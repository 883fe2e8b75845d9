"""Process plumbing shared by the external tool adapters."""

import shutil
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Sequence

from image_sanitizer.errors import ToolError, ToolTimeout, ToolUnavailable
from image_sanitizer.utils.logger import setup_logger

logger = setup_logger(__name__)


@dataclass(frozen=True)
class ImageInfo:
    """What ``inspect`` reports about a decodable image."""

    format: str
    width: int
    height: int

    @property
    def dimensions(self) -> tuple:
        return (self.width, self.height)


def find_binary(*names: str) -> Optional[str]:
    """Return the full path of the first binary found on PATH."""
    for name in names:
        found = shutil.which(name)
        if found:
            return found
    return None


def run_command(
    args: Sequence[str],
    timeout: Optional[float],
    tool: Optional[str] = None,
    ok_codes: Sequence[int] = (0,),
) -> subprocess.CompletedProcess:
    """
    Run an external command with a hard timeout.

    Args:
        args: Command line, binary first
        timeout: Seconds before the child is killed (None for no limit)
        tool: Name used in error messages (default: the binary)
        ok_codes: Exit codes treated as success

    Returns:
        The completed process with captured stdout/stderr (bytes)

    Raises:
        ToolUnavailable: If the binary cannot be executed
        ToolTimeout: If the command exceeded ``timeout``
        ToolError: If the command exited with an unexpected code
    """
    tool = tool or Path(args[0]).name
    logger.debug(f"Running: {' '.join(str(a) for a in args)}")
    try:
        proc = subprocess.run(
            [str(a) for a in args],
            capture_output=True,
            timeout=timeout,
            stdin=subprocess.DEVNULL,
        )
    except FileNotFoundError as e:
        raise ToolUnavailable(tool, f"not found ({e})") from e
    except PermissionError as e:
        raise ToolUnavailable(tool, f"not executable ({e})") from e
    except subprocess.TimeoutExpired as e:
        raise ToolTimeout(tool, f"timed out after {timeout} seconds") from e

    if proc.returncode not in ok_codes:
        stderr = proc.stderr.decode("utf-8", errors="replace").strip()
        raise ToolError(
            tool,
            f"exit code {proc.returncode}" + (f": {stderr[:200]}" if stderr else ""),
            returncode=proc.returncode,
        )
    return proc


def require_output(tool: str, path: Path) -> Path:
    """Raise ToolError unless ``path`` exists and is non-empty."""
    try:
        if path.stat().st_size > 0:
            return path
    except FileNotFoundError:
        pass
    raise ToolError(tool, f"produced no output at {path.name}")

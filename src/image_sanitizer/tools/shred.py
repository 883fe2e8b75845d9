"""Secure deletion: overwrite-then-unlink, falling back to plain unlink."""

import os
from pathlib import Path
from typing import Optional

from image_sanitizer.errors import ToolError
from image_sanitizer.tools.base import find_binary, run_command
from image_sanitizer.utils.logger import setup_logger

logger = setup_logger(__name__)

_CHUNK = 1024 * 1024


class SecureDeleter:
    """Destroys files, preferring ``shred`` and falling back to an in-process overwrite."""

    def __init__(
        self,
        passes: int = 3,
        zero: bool = True,
        timeout: Optional[float] = None,
        use_shred: bool = True,
    ):
        """
        Initialize the deleter.

        Args:
            passes: Number of random overwrite passes
            zero: Finish with a pass of zeros
            timeout: Timeout for the ``shred`` invocation
            use_shred: Use the ``shred`` binary when installed
        """
        self.passes = max(0, int(passes))
        self.zero = zero
        self.timeout = timeout
        self.shred_binary = find_binary("shred") if use_shred else None

    def delete(self, path: Path) -> str:
        """
        Destroy ``path``.

        Returns:
            Method that removed the file: ``shred``, ``overwrite`` or ``unlink``

        Raises:
            OSError: If the file could not be removed at all
        """
        if self.shred_binary:
            try:
                args = [self.shred_binary, "-f", "-u", "-n", str(self.passes)]
                if self.zero:
                    args.append("-z")
                run_command(args + [str(path)], self.timeout, tool="shred")
                if not path.exists():
                    return "shred"
            except ToolError as e:
                logger.debug(f"shred failed for {path.name}, overwriting in-process: {e}")

        try:
            self._overwrite(path)
            method = "overwrite"
        except OSError as e:
            logger.debug(f"Overwrite failed for {path.name}, unlinking: {e}")
            method = "unlink"

        path.unlink()
        return method

    def delete_quietly(self, path: Path) -> bool:
        """Destroy ``path`` if it exists, logging instead of raising."""
        try:
            if path.exists():
                self.delete(path)
            return True
        except OSError as e:
            logger.warning(f"Failed to delete {path}: {e}")
            return False

    def _overwrite(self, path: Path) -> None:
        size = path.stat().st_size
        with open(path, "r+b", buffering=0) as f:
            for _ in range(self.passes):
                self._fill(f, size, random=True)
            if self.zero:
                self._fill(f, size, random=False)

    @staticmethod
    def _fill(f, size: int, random: bool) -> None:
        f.seek(0)
        remaining = size
        while remaining > 0:
            n = min(_CHUNK, remaining)
            f.write(os.urandom(n) if random else b"\x00" * n)
            remaining -= n
        os.fsync(f.fileno())

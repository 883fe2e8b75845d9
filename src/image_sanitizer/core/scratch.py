"""Worker-private scratch areas, torn down on every exit path."""

import itertools
import shutil
import tempfile
from pathlib import Path
from typing import Iterable, Optional

from image_sanitizer.errors import ScratchSpaceError
from image_sanitizer.tools.shred import SecureDeleter
from image_sanitizer.utils.logger import setup_logger

logger = setup_logger(__name__)

SCRATCH_PREFIX = "image-sanitizer-"

# Stage copies alive at once per worker: input copy, stage output, optimizer candidates
_COPIES_PER_FILE = 4


class ScratchArea:
    """
    Private working directory for one file.

    Use as a context manager; every file created inside is destroyed on exit,
    securely if a deleter is given.
    """

    def __init__(
        self,
        root: Optional[Path] = None,
        deleter: Optional[SecureDeleter] = None,
        label: str = "",
    ):
        self.root = root
        self.deleter = deleter
        self.label = label
        self.path: Optional[Path] = None
        self._counter = itertools.count(1)

    def __enter__(self) -> "ScratchArea":
        try:
            # mkdtemp creates the directory with mode 0700
            self.path = Path(
                tempfile.mkdtemp(prefix=SCRATCH_PREFIX, dir=str(self.root) if self.root else None)
            )
        except OSError as e:
            raise ScratchSpaceError(f"Cannot create scratch directory: {e}") from e
        logger.debug(f"Scratch area {self.path} for {self.label}")
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def new_file(self, stage: str, suffix: str = "") -> Path:
        """Fresh, not-yet-existing path for a stage output."""
        if self.path is None:
            raise RuntimeError("Scratch area is not open")
        return self.path / f"{next(self._counter):02d}-{stage}{suffix}"

    def discard(self, path: Optional[Path]) -> None:
        """Destroy a single working file early."""
        if path is None or not path.exists():
            return
        if self.deleter is not None:
            self.deleter.delete_quietly(path)
        else:
            path.unlink(missing_ok=True)

    def close(self) -> None:
        if self.path is None:
            return
        path, self.path = self.path, None
        if self.deleter is not None:
            for item in sorted(path.rglob("*"), reverse=True):
                if item.is_file():
                    self.deleter.delete_quietly(item)
        try:
            shutil.rmtree(path)
        except OSError as e:
            logger.warning(f"Failed to remove scratch area {path}: {e}")


def check_scratch_space(
    root: Optional[Path], file_sizes: Iterable[int], workers: int
) -> int:
    """
    Make sure the scratch filesystem can hold the working copies of a run.

    Returns:
        Bytes required

    Raises:
        ScratchSpaceError: If the scratch root is unusable or too small
    """
    scratch_root = Path(root) if root else Path(tempfile.gettempdir())
    if not scratch_root.is_dir():
        raise ScratchSpaceError(f"Scratch directory does not exist: {scratch_root}")
    sizes = sorted(file_sizes, reverse=True)[: max(1, workers)]
    required = sum(sizes) * _COPIES_PER_FILE
    try:
        free = shutil.disk_usage(scratch_root).free
    except OSError as e:
        raise ScratchSpaceError(f"Cannot query free space on {scratch_root}: {e}") from e
    if free < required:
        raise ScratchSpaceError(
            f"Insufficient scratch space on {scratch_root}: "
            f"{required} bytes needed, {free} available"
        )
    return required

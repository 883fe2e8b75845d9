"""File scanner for discovering images in the root directory."""

import os
from pathlib import Path
from typing import List, Optional

from tqdm import tqdm

from image_sanitizer.errors import InvalidRootError
from image_sanitizer.formats import IMAGE_EXTENSIONS, sniff_format
from image_sanitizer.utils.config import Config
from image_sanitizer.utils.logger import setup_logger

logger = setup_logger(__name__)


class ImageScanner:
    """Scans a directory's direct children for image files, in deterministic order."""

    def __init__(self, config: Config, show_progress: bool = True):
        """
        Initialize the image scanner.

        Args:
            config: Configuration instance
            show_progress: Show progress bar during scanning
        """
        self.config = config
        self.show_progress = show_progress

    def scan_directory(self, directory: Path, skip_hidden: bool = True) -> List[Path]:
        """
        Scan a directory for image files.

        A file is an image if its content sniffs as one. Files named like an
        image whose content does not sniff (empty, truncated, mislabelled) are
        included too, so they can be reported instead of silently ignored.

        Args:
            directory: Directory path to scan
            skip_hidden: Skip hidden files

        Returns:
            Image file paths in lexicographic order

        Raises:
            InvalidRootError: If the directory is missing or not accessible
        """
        validate_root(directory)
        logger.info(f"Scanning directory: {directory}")

        all_files = self._discover_files(directory, skip_hidden)
        logger.info(f"Found {len(all_files)} files to check")

        image_files: List[Path] = []
        if self.show_progress:
            file_iter = tqdm(all_files, desc="Filtering images", unit="file")
        else:
            file_iter = all_files

        for file_path in file_iter:
            if self._is_image_file(file_path):
                image_files.append(file_path)

        logger.info(f"Found {len(image_files)} image files")
        return image_files

    def _discover_files(self, directory: Path, skip_hidden: bool) -> List[Path]:
        """
        Discover the regular files directly inside ``directory``.

        Returns:
            Sorted list of file paths
        """
        files: List[Path] = []
        try:
            for item in directory.iterdir():
                # Skip symlinks so nothing outside the root is ever touched
                if item.is_symlink() or not item.is_file():
                    continue
                if skip_hidden and (item.name.startswith(".") or self._is_hidden_windows(item)):
                    continue
                files.append(item)
        except PermissionError as e:
            raise InvalidRootError(f"Permission denied reading {directory}: {e}") from e
        return sorted(files)

    def _is_image_file(self, file_path: Path) -> bool:
        """
        Check whether a file should enter the pipeline.

        Args:
            file_path: File path to check

        Returns:
            True if the content sniffs as an image or the name says it is one
        """
        if file_path.suffix.lower() in IMAGE_EXTENSIONS:
            return True
        try:
            return sniff_format(file_path) is not None
        except OSError as e:
            logger.warning(f"Cannot read {file_path.name}, skipping: {e}")
            return False

    def _is_hidden_windows(self, path: Path) -> bool:
        """
        Check if a path is hidden on Windows.

        Args:
            path: Path to check

        Returns:
            True if path is hidden on Windows
        """
        if os.name != "nt":
            return False

        import ctypes

        FILE_ATTRIBUTE_HIDDEN = 0x02
        attrs = ctypes.windll.kernel32.GetFileAttributesW(str(path))
        return attrs != -1 and bool(attrs & FILE_ATTRIBUTE_HIDDEN)


def validate_root(directory: Optional[Path]) -> Path:
    """
    Check that ``directory`` is an existing, readable directory.

    Raises:
        InvalidRootError: Otherwise
    """
    if directory is None:
        raise InvalidRootError("No root directory given")
    if not directory.exists():
        raise InvalidRootError(f"Directory not found: {directory}")
    if not directory.is_dir():
        raise InvalidRootError(f"Not a directory: {directory}")
    if not os.access(directory, os.R_OK | os.W_OK | os.X_OK):
        raise InvalidRootError(f"Directory is not readable and writable: {directory}")
    return directory

"""
Atomic replace protocol.

The verified candidate is published under a fresh name (its own content hash
or a random identifier) with an exclusive link, re-hashed in place, and only
then is the original securely destroyed. Placement may be retried; the
destruction step never is.
"""

import os
import secrets
import shutil
import uuid
from dataclasses import dataclass
from pathlib import Path

from image_sanitizer.core.models import ImageRecord
from image_sanitizer.core.retry import OperationFailed, RetryController
from image_sanitizer.errors import (
    CollisionError,
    FailureReason,
    FileFailure,
    ReplaceError,
    reason_for,
)
from image_sanitizer.formats import canonical_extension
from image_sanitizer.tools.shred import SecureDeleter
from image_sanitizer.utils.hashing import compute_sha256
from image_sanitizer.utils.logger import setup_logger

logger = setup_logger(__name__)

PARTIAL_PREFIX = ".isz-partial-"
CONTENT_NAME_LENGTH = 32
NAMING_SCHEMES = ("content", "uuid")

# Dash-separated group widths of a random name (48 hex characters)
_UUID_GROUPS = (6, 8, 8, 8, 8, 6, 4)


def content_name(content_hash: str, image_format: str) -> str:
    """File name derived from the committed bytes."""
    return content_hash[:CONTENT_NAME_LENGTH] + canonical_extension(image_format)


def random_name(image_format: str) -> str:
    """File name made of 48 random hex characters."""
    digits = secrets.token_hex(sum(_UUID_GROUPS) // 2)
    groups = []
    start = 0
    for width in _UUID_GROUPS:
        groups.append(digits[start : start + width])
        start += width
    return "-".join(groups) + canonical_extension(image_format)


@dataclass(frozen=True)
class Placement:
    """Where a commit left the sanitized content."""

    path: Path
    # Identical bytes were already published under the destination name
    existing: bool = False


class AtomicReplacer:
    """Swaps a verified candidate in for its original."""

    def __init__(self, deleter: SecureDeleter, retry: RetryController, naming: str = "content"):
        if naming not in NAMING_SCHEMES:
            raise ValueError(f"Unknown naming scheme: {naming}")
        self.deleter = deleter
        self.retry = retry
        self.naming = naming

    def is_already_sanitized(self, record: ImageRecord) -> bool:
        """True if the file already carries the name a commit would give it."""
        return self.naming == "content" and record.path.name == content_name(
            record.content_hash, record.format
        )

    def destination_for(self, record: ImageRecord, candidate_hash: str) -> Path:
        if self.naming == "content":
            name = content_name(candidate_hash, record.format)
        else:
            name = random_name(record.format)
        return record.path.parent / name

    def commit(self, record: ImageRecord, candidate: Path) -> Placement:
        """
        Publish ``candidate`` next to the original, then destroy the original.

        Two originals that differ only in stripped metadata sanitize to the
        same bytes and therefore the same content name. When the destination
        already holds exactly the candidate's bytes, the original is a
        duplicate after sanitization: it is destroyed and the existing file
        is reported with ``existing=True``.

        Args:
            record: The admitted original
            candidate: Verified output inside the worker's scratch area

        Returns:
            Placement of the committed content

        Raises:
            CollisionError: The destination name holds different bytes (original intact)
            ReplaceError: Placement failed (original intact) or the original
                could not be deleted (``delete-failed``; the replacement stays)
            Cancelled: Interrupted before placement began
        """
        candidate_hash = compute_sha256(candidate)
        try:
            attempted = self.retry.call(
                self._place, record, candidate, candidate_hash, label=f"place {record.path.name}"
            )
        except OperationFailed as e:
            if (
                isinstance(e.error, CollisionError)
                and e.error.destination != record.path
                and _holds(e.error.destination, candidate_hash)
            ):
                placement = Placement(e.error.destination, existing=True)
            elif isinstance(e.error, FileFailure):
                raise e.error
            else:
                raise ReplaceError(record.path, reason_for(e.error), str(e)) from e.error
        else:
            placement = Placement(attempted.value)
        destination = placement.path

        # Past this point the outcome is decided once: no retries, no cancellation
        try:
            method = self.deleter.delete(record.path)
        except OSError as e:
            raise ReplaceError(
                record.path,
                FailureReason.DELETE_FAILED,
                f"replacement committed as {destination.name} but original could not be deleted: {e}",
            ) from e
        if placement.existing:
            logger.info(
                f"{record.path.name} sanitized to the same bytes as {destination.name}; "
                f"original removed by {method}"
            )
        else:
            logger.debug(f"Committed {record.path.name} -> {destination.name} (original removed by {method})")
        return placement

    def _place(self, record: ImageRecord, candidate: Path, candidate_hash: str) -> Path:
        destination = self.destination_for(record, candidate_hash)
        if destination.exists() or destination.is_symlink():
            raise CollisionError(record.path, destination)

        partial = destination.parent / f"{PARTIAL_PREFIX}{uuid.uuid4().hex}"
        try:
            _copy_synced(candidate, partial)
            _link_exclusive(record.path, partial, destination)
        finally:
            partial.unlink(missing_ok=True)
        _fsync_dir(destination.parent)

        if compute_sha256(destination) != candidate_hash:
            destination.unlink(missing_ok=True)
            raise OSError(f"placed file {destination.name} does not match the verified candidate")
        return destination


def _holds(path: Path, content_hash: str) -> bool:
    """True if ``path`` is a regular file with exactly the given content."""
    try:
        return path.is_file() and not path.is_symlink() and compute_sha256(path) == content_hash
    except OSError:
        return False


def sweep_stale_partials(root: Path, deleter: SecureDeleter) -> int:
    """
    Destroy partial files left behind by an interrupted replacement.

    Returns:
        Number of files removed
    """
    removed = 0
    for path in sorted(root.iterdir()):
        if path.name.startswith(PARTIAL_PREFIX) and path.is_file() and not path.is_symlink():
            if deleter.delete_quietly(path):
                logger.info(f"Removed stale partial file {path.name}")
                removed += 1
    return removed


def _copy_synced(src: Path, dst: Path) -> None:
    with open(src, "rb") as fin, open(dst, "xb") as fout:
        shutil.copyfileobj(fin, fout)
        fout.flush()
        os.fsync(fout.fileno())


def _link_exclusive(original: Path, partial: Path, destination: Path) -> None:
    """Give ``partial`` the name ``destination``, failing if that name exists."""
    try:
        os.link(partial, destination)
        return
    except FileExistsError as e:
        raise CollisionError(original, destination) from e
    except OSError as e:
        logger.debug(f"Hard links unavailable in {destination.parent} ({e}), copying exclusively")

    try:
        with open(partial, "rb") as fin, open(destination, "xb") as fout:
            try:
                shutil.copyfileobj(fin, fout)
                fout.flush()
                os.fsync(fout.fileno())
            except OSError:
                fout.close()
                destination.unlink(missing_ok=True)
                raise
    except FileExistsError as e:
        raise CollisionError(original, destination) from e


def _fsync_dir(directory: Path) -> None:
    try:
        fd = os.open(directory, os.O_RDONLY)
    except OSError as e:
        logger.debug(f"Cannot open {directory} for fsync: {e}")
        return
    try:
        os.fsync(fd)
    except OSError as e:
        logger.debug(f"Directory fsync not supported for {directory}: {e}")
    finally:
        os.close(fd)

"""Content digests used for the exact-duplicate fast path and for reporting."""

import hashlib
from pathlib import Path

CHUNK_SIZE = 65536  # 64 KB


def compute_sha256(file_path: Path) -> str:
    """Stream-read file and return hex SHA256 digest."""
    h = hashlib.sha256()
    try:
        with open(file_path, "rb") as f:
            while chunk := f.read(CHUNK_SIZE):
                h.update(chunk)
    except OSError as e:
        raise OSError(f"Cannot read {file_path}: {e}") from e
    return h.hexdigest()


def digest_text(text: str) -> str:
    """Short digest of a string, used for fingerprint components."""
    return hashlib.md5(text.encode("utf-8"), usedforsecurity=False).hexdigest()


def digest_bytes(data: bytes) -> str:
    """Short digest of raw bytes, used for fingerprint components."""
    return hashlib.md5(data, usedforsecurity=False).hexdigest()

"""Tests for the Integrity Verifier."""

import shutil

import pytest
from PIL import Image

from image_sanitizer.core.models import ImageRecord
from image_sanitizer.core.verifier import IntegrityVerifier
from image_sanitizer.errors import FailureReason, IntegrityError
from image_sanitizer.tools.transform import PillowTransform
from image_sanitizer.utils.hashing import compute_sha256


@pytest.fixture
def verifier():
    return IntegrityVerifier(PillowTransform(timeout=30))


@pytest.fixture
def original(make_image, tmp_path):
    path = make_image(tmp_path / "original.jpg")
    return ImageRecord(
        path=path,
        format="JPEG",
        size=path.stat().st_size,
        width=128,
        height=128,
        content_hash=compute_sha256(path),
    )


def _reason(verifier, record, candidate):
    with pytest.raises(IntegrityError) as exc_info:
        verifier.verify(record, candidate)
    return exc_info.value.reason


class TestIntegrityVerifier:
    def test_valid_candidate(self, verifier, original, make_image, tmp_path):
        candidate = make_image(tmp_path / "candidate.jpg", quality=70)

        info = verifier.verify(original, candidate)

        assert info.dimensions == (128, 128)

    def test_identical_bytes_are_valid(self, verifier, original, tmp_path):
        candidate = tmp_path / "same.jpg"
        shutil.copyfile(original.path, candidate)

        verifier.verify(original, candidate)

    def test_zero_byte(self, verifier, original, tmp_path):
        candidate = tmp_path / "empty.jpg"
        candidate.touch()

        assert _reason(verifier, original, candidate) is FailureReason.ZERO_BYTE

    def test_missing(self, verifier, original, tmp_path):
        assert _reason(verifier, original, tmp_path / "missing.jpg") is FailureReason.UNREADABLE

    def test_undecodable(self, verifier, original, tmp_path):
        candidate = tmp_path / "broken.jpg"
        candidate.write_bytes(original.path.read_bytes()[:300])

        assert _reason(verifier, original, candidate) is FailureReason.UNREADABLE

    def test_dimension_mismatch(self, verifier, original, make_image, tmp_path):
        candidate = make_image(tmp_path / "small.jpg", size=(64, 128))

        assert _reason(verifier, original, candidate) is FailureReason.DIMENSION_MISMATCH

    def test_format_mismatch(self, verifier, original, make_image, tmp_path):
        # Named like the original but PNG inside
        candidate = make_image(tmp_path / "candidate.jpg", fmt="PNG")

        assert _reason(verifier, original, candidate) is FailureReason.FORMAT_MISMATCH

    def test_format_checked_before_dimensions(self, verifier, original, tmp_path):
        candidate = tmp_path / "tiny.png"
        Image.new("RGB", (4, 4)).save(candidate, "PNG")

        assert _reason(verifier, original, candidate) is FailureReason.FORMAT_MISMATCH

"""Tests for worker-private scratch areas."""

import pytest

from image_sanitizer.core.scratch import SCRATCH_PREFIX, ScratchArea, check_scratch_space
from image_sanitizer.errors import ScratchSpaceError
from image_sanitizer.tools.shred import SecureDeleter


class TestScratchArea:
    def test_torn_down_on_success(self, tmp_path):
        with ScratchArea(tmp_path, SecureDeleter(passes=1, use_shred=False)) as scratch:
            path = scratch.new_file("strip", ".jpg")
            path.write_bytes(b"working copy")
            directory = scratch.path
            assert directory.name.startswith(SCRATCH_PREFIX)

        assert not directory.exists()

    def test_torn_down_on_error(self, tmp_path):
        with pytest.raises(RuntimeError):
            with ScratchArea(tmp_path) as scratch:
                scratch.new_file("copy", ".jpg").write_bytes(b"x")
                directory = scratch.path
                raise RuntimeError("stage failed")

        assert not directory.exists()

    def test_new_files_are_unique_and_ordered(self, tmp_path):
        with ScratchArea(tmp_path) as scratch:
            first = scratch.new_file("strip", ".jpg")
            second = scratch.new_file("strip", ".jpg")

        assert first != second
        assert first.name == "01-strip.jpg"
        assert second.name == "02-strip.jpg"

    def test_discard(self, tmp_path):
        with ScratchArea(tmp_path) as scratch:
            path = scratch.new_file("copy")
            path.write_bytes(b"x")
            scratch.discard(path)
            assert not path.exists()
            scratch.discard(path)
            scratch.discard(None)

    def test_unusable_root(self, tmp_path):
        with pytest.raises(ScratchSpaceError):
            with ScratchArea(tmp_path / "missing"):
                pass


class TestCheckScratchSpace:
    def test_enough_space(self, tmp_path):
        required = check_scratch_space(tmp_path, [100, 200, 300], workers=2)

        assert required == (300 + 200) * 4

    def test_insufficient_space(self, tmp_path):
        with pytest.raises(ScratchSpaceError):
            check_scratch_space(tmp_path, [10 ** 18], workers=1)

    def test_missing_root(self, tmp_path):
        with pytest.raises(ScratchSpaceError):
            check_scratch_space(tmp_path / "missing", [1], workers=1)

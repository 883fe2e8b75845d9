"""Tests for the external tool adapters."""

import sys
from subprocess import CompletedProcess
from unittest.mock import patch

import pytest
from PIL import Image

from image_sanitizer.errors import MissingToolError, ToolError, ToolTimeout, ToolUnavailable
from image_sanitizer.tools.base import run_command
from image_sanitizer.tools.metadata import (
    ExifToolMetadata,
    MetadataChain,
    MetadataTool,
    PillowMetadata,
)
from image_sanitizer.tools.optimizers import JpegoptimOptimizer, build_optimizers
from image_sanitizer.tools.registry import ToolSet, tool_status
from image_sanitizer.tools.shred import SecureDeleter
from image_sanitizer.tools.transform import PillowTransform, ReencodeOptions, select_transform


class TestRunCommand:
    def test_captures_output(self):
        proc = run_command([sys.executable, "-c", "print('hello')"], timeout=30)

        assert proc.stdout.strip() == b"hello"

    def test_nonzero_exit_is_tool_error(self):
        with pytest.raises(ToolError) as exc_info:
            run_command(
                [sys.executable, "-c", "import sys; sys.stderr.write('bad'); sys.exit(3)"],
                timeout=30,
                tool="python",
            )
        assert exc_info.value.returncode == 3
        assert "bad" in str(exc_info.value)

    def test_timeout(self):
        with pytest.raises(ToolTimeout):
            run_command([sys.executable, "-c", "import time; time.sleep(5)"], timeout=0.5)

    def test_missing_binary(self, tmp_path):
        with pytest.raises(ToolUnavailable):
            run_command([str(tmp_path / "no-such-tool")], timeout=5)


class FailingTool(MetadataTool):
    name = "failing"

    def is_available(self):
        return True

    def strip(self, src, dst):
        dst.write_bytes(b"partial")
        raise ToolError(self.name, "crashed")

    def read_fields(self, path, fields):
        raise ToolError(self.name, "crashed")


class TestMetadata:
    def test_pillow_strip_removes_exif(self, make_image, tmp_path, exif):
        src = make_image(tmp_path / "a.jpg", exif=exif())
        dst = tmp_path / "out.jpg"

        PillowMetadata(timeout=30).strip(src, dst)

        with Image.open(dst) as img:
            assert len(img.getexif()) == 0
            assert img.size == (128, 128)

    def test_pillow_read_fields(self, make_image, tmp_path, exif):
        src = make_image(tmp_path / "a.jpg", exif=exif("Canon", "EOS 5D"))

        fields = PillowMetadata(timeout=30).read_fields(src, ["Make", "Model", "DateTimeOriginal"])

        assert fields == {"Make": "Canon", "Model": "EOS 5D"}

    def test_chain_falls_back(self, make_image, tmp_path):
        src = make_image(tmp_path / "a.jpg")
        dst = tmp_path / "out.jpg"
        chain = MetadataChain([FailingTool(), PillowMetadata(timeout=30)])

        used = chain.strip(src, dst)

        assert used == "pillow"
        with Image.open(dst) as img:
            assert img.format == "JPEG"

    def test_chain_raises_last_error(self, make_image, tmp_path):
        src = make_image(tmp_path / "a.jpg")
        dst = tmp_path / "out.jpg"

        with pytest.raises(ToolError, match="crashed"):
            MetadataChain([FailingTool()]).strip(src, dst)
        assert not dst.exists()

    def test_empty_chain(self, tmp_path):
        with pytest.raises(ToolUnavailable):
            MetadataChain([]).strip(tmp_path / "a", tmp_path / "b")

    def test_unknown_names_are_ignored(self):
        chain = MetadataChain.from_names(["nonsense", "pillow"], timeout=None)

        assert chain.names == ["pillow"]

    def test_exiftool_strip_arguments(self, tmp_path):
        src = tmp_path / "a.jpg"
        src.write_bytes(b"\xff\xd8\xffdata")
        dst = tmp_path / "out.jpg"

        with patch("image_sanitizer.tools.metadata.find_binary", return_value="/usr/bin/exiftool"):
            tool = ExifToolMetadata(timeout=10)
        with patch("image_sanitizer.tools.metadata.run_command") as mock_run:
            tool.strip(src, dst)

        args = mock_run.call_args[0][0]
        assert args[:5] == ["/usr/bin/exiftool", "-q", "-q", "-all=", "-o"]
        # exiftool wrote nothing, so the input was copied through
        assert dst.read_bytes() == src.read_bytes()

    def test_exiftool_read_fields_parses_json(self, tmp_path):
        stdout = b'[{"SourceFile": "a.jpg", "Make": "Canon", "Model": " "}]'
        with patch("image_sanitizer.tools.metadata.find_binary", return_value="/usr/bin/exiftool"):
            tool = ExifToolMetadata(timeout=10)
        with patch(
            "image_sanitizer.tools.metadata.run_command",
            return_value=CompletedProcess([], 0, stdout=stdout, stderr=b""),
        ):
            fields = tool.read_fields(tmp_path / "a.jpg", ["Make", "Model"])

        assert fields == {"Make": "Canon"}


class TestTransform:
    def test_pillow_inspect(self, make_image, tmp_path):
        info = PillowTransform(timeout=30).inspect(make_image(tmp_path / "a.png", fmt="PNG"))

        assert (info.format, info.width, info.height) == ("PNG", 128, 128)

    def test_pillow_reencode_keeps_format_and_size(self, make_image, tmp_path, exif):
        src = make_image(tmp_path / "a.jpg", exif=exif())
        dst = tmp_path / "out.jpg"

        PillowTransform(timeout=30).reencode(src, dst, ReencodeOptions(format="JPEG"))

        with Image.open(dst) as img:
            assert img.format == "JPEG"
            assert img.size == (128, 128)
            assert "exif" not in img.info

    def test_pillow_reencode_converts_cmyk_jpeg(self, tmp_path):
        src = tmp_path / "cmyk.jpg"
        Image.new("CMYK", (32, 32), (0, 128, 255, 0)).save(src, "JPEG")
        dst = tmp_path / "out.jpg"

        PillowTransform(timeout=30).reencode(src, dst, ReencodeOptions(format="JPEG"))

        with Image.open(dst) as img:
            assert img.mode == "RGB"

    def test_inspect_garbage_raises_tool_error(self, tmp_path):
        path = tmp_path / "bad.png"
        path.write_bytes(b"\x89PNG\r\n\x1a\ngarbage")

        with pytest.raises(ToolError):
            PillowTransform(timeout=30).inspect(path)

    def test_select_transform(self):
        assert select_transform("pillow", None).name == "pillow"
        with pytest.raises(MissingToolError):
            select_transform("gimp", None)

    def test_select_magick_when_missing(self):
        with patch("image_sanitizer.tools.base.shutil.which", return_value=None):
            with pytest.raises(MissingToolError):
                select_transform("magick", None)
            assert select_transform("auto", None).name == "pillow"


class TestOptimizers:
    def test_build_skips_unknown_and_missing(self):
        with patch("image_sanitizer.tools.base.shutil.which", return_value=None):
            optimizers = build_optimizers("PNG", ["optipng", "bogus", "pillow"])

        assert [o.name for o in optimizers] == ["pillow"]

    def test_pillow_jpeg_is_lossy_only(self, make_image, tmp_path):
        optimizer = build_optimizers("JPEG", ["pillow"])[0]
        src = make_image(tmp_path / "a.jpg", quality=95)

        with pytest.raises(ToolError):
            optimizer.optimize(src, tmp_path / "lossless.jpg")
        out = optimizer.optimize(src, tmp_path / "q50.jpg", quality=50)

        assert out.stat().st_size < src.stat().st_size

    def test_jpegoptim_arguments(self, tmp_path):
        with patch("image_sanitizer.tools.optimizers.find_binary", return_value="/usr/bin/jpegoptim"):
            optimizer = JpegoptimOptimizer(timeout=10)
        with patch(
            "image_sanitizer.tools.optimizers.run_command",
            return_value=CompletedProcess([], 0, stdout=b"\xff\xd8\xffjpeg", stderr=b""),
        ) as mock_run:
            out = optimizer.optimize(tmp_path / "a.jpg", tmp_path / "b.jpg", quality=80)

        args = mock_run.call_args[0][0]
        assert "--max=80" in args
        assert "--stdout" in args
        assert out.read_bytes() == b"\xff\xd8\xffjpeg"


class TestSecureDeleter:
    def test_overwrite_fallback_when_shred_missing(self, tmp_path):
        path = tmp_path / "secret.jpg"
        path.write_bytes(b"sensitive" * 100)

        with patch("image_sanitizer.tools.base.shutil.which", return_value=None):
            deleter = SecureDeleter(passes=1)
        method = deleter.delete(path)

        assert method == "overwrite"
        assert not path.exists()

    def test_shred_failure_falls_back(self, tmp_path):
        path = tmp_path / "secret.jpg"
        path.write_bytes(b"sensitive")

        with patch("image_sanitizer.tools.shred.find_binary", return_value="/usr/bin/shred"):
            deleter = SecureDeleter(passes=1)
        with patch(
            "image_sanitizer.tools.shred.run_command", side_effect=ToolError("shred", "failed")
        ):
            method = deleter.delete(path)

        assert method == "overwrite"
        assert not path.exists()

    def test_missing_file_raises(self, tmp_path):
        deleter = SecureDeleter(use_shred=False)

        with pytest.raises(OSError):
            deleter.delete(tmp_path / "gone.jpg")
        assert deleter.delete_quietly(tmp_path / "gone.jpg")


class TestRegistry:
    def test_toolset_from_pinned_config(self, config):
        tools = ToolSet.from_config(config)

        assert tools.metadata.names == ["pillow"]
        assert tools.transform.name == "pillow"
        assert [o.name for o in tools.optimizers_for("png")] == ["pillow"]

    def test_no_metadata_tool_is_fatal(self, config):
        config.set("tools.metadata", [])

        with pytest.raises(MissingToolError):
            ToolSet.from_config(config)

    def test_tool_status_rows(self):
        with patch("image_sanitizer.tools.base.shutil.which", return_value=None):
            rows = tool_status()

        assert ("exiftool", "metadata: strip, read fields", None) in rows
        assert all(location is None for _, _, location in rows)

"""Tests for the command-line interface."""

import shutil

import pytest
from click.testing import CliRunner

from image_sanitizer import __version__
from image_sanitizer.cli import cli
from image_sanitizer.utils.config import Config
from image_sanitizer.utils.hashing import compute_sha256
from image_sanitizer.utils.logger import PACKAGE_LOGGER, setup_logger


@pytest.fixture(autouse=True)
def restore_logging():
    yield
    # The CLI binds log handlers to the runner's captured streams
    setup_logger(PACKAGE_LOGGER)


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture
def photos(root, make_image, exif):
    original = make_image(root / "A.jpg", exif=exif())
    shutil.copyfile(original, root / "copy.jpg")
    return root


def _invoke(runner, config_file, *args):
    return runner.invoke(cli, ["--config", str(config_file), *args], obj={})


def test_version(runner):
    result = runner.invoke(cli, ["--version"])

    assert result.exit_code == 0
    assert __version__ in result.output


def test_run_success(runner, config_file, photos):
    result = _invoke(runner, config_file, "run", str(photos), "--no-progress")

    assert result.exit_code == 0, result.output
    assert "Sanitization Summary" in result.output
    assert len(list(photos.iterdir())) == 1


def test_run_reports_failures(runner, config_file, photos):
    (photos / "broken.jpg").write_bytes(b"\xff\xd8\xff\xe0garbage")

    result = _invoke(runner, config_file, "run", str(photos), "--no-progress")

    assert result.exit_code == 1
    assert "Failure Report" in result.output
    assert (photos / "broken.jpg").exists()


def test_run_missing_directory_is_fatal(runner, config_file, tmp_path):
    result = _invoke(runner, config_file, "run", str(tmp_path / "nope"), "--no-progress")

    assert result.exit_code == 2


def test_dry_run(runner, config_file, photos):
    before = {p.name: compute_sha256(p) for p in photos.iterdir()}

    result = _invoke(runner, config_file, "run", str(photos), "--dry-run", "--no-progress")

    assert result.exit_code == 0, result.output
    assert {p.name: compute_sha256(p) for p in photos.iterdir()} == before


def test_command_line_overrides_are_not_saved(runner, config_file, photos):
    result = _invoke(
        runner, config_file, "run", str(photos), "--naming", "uuid", "--retries", "5", "--no-progress"
    )

    assert result.exit_code == 0, result.output
    saved = Config(config_file)
    assert saved.get("naming") == "content"
    assert saved.get("retry.max_attempts") == 3


def test_check_tools(runner, config_file):
    result = _invoke(runner, config_file, "check-tools")

    assert result.exit_code == 0, result.output
    assert "External Tools" in result.output
    assert "Metadata chain" in result.output


def test_check_tools_without_metadata_tool(runner, tmp_path, config):
    config.set("tools.metadata", ["no-such-tool"])
    config.config_file = tmp_path / "broken.json"
    config.save()

    result = _invoke(runner, config.config_file, "check-tools")

    assert result.exit_code == 2


def test_fingerprint(runner, config_file, photos):
    files = sorted(str(p) for p in photos.iterdir())

    result = _invoke(runner, config_file, "fingerprint", *files)

    assert result.exit_code == 0, result.output
    assert "Fingerprints" in result.output


def test_fingerprint_unreadable_file(runner, config_file, tmp_path):
    empty = tmp_path / "empty.jpg"
    empty.touch()

    result = _invoke(runner, config_file, "fingerprint", str(empty))

    assert result.exit_code == 1

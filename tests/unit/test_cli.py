"""Unit tests for CLI interface."""

import json
import zipfile
from pathlib import Path
from unittest.mock import patch

import click
import pytest
from click.testing import CliRunner

from tests.conftest import encode_image
from webp_lab.cli import build_options, format_bytes, main
from webp_lab.logging_config import setup_logging


def write_png(name: str) -> Path:
    path = Path(name)
    path.write_bytes(encode_image())
    return path


class TestCLIVersionAndHelp:
    """Test CLI version and help flags."""

    def test_version_flag(self) -> None:
        """Test --version flag displays version information."""
        result = CliRunner().invoke(main, ["--version"])

        assert result.exit_code == 0
        assert "WebP Lab" in result.output
        assert "0.1.0" in result.output

    def test_help_flag(self) -> None:
        """Test --help lists the commands."""
        result = CliRunner().invoke(main, ["--help"])

        assert result.exit_code == 0
        assert "transform" in result.output
        assert "serve" in result.output

    def test_transform_help(self) -> None:
        """Test transform --help lists its options."""
        result = CliRunner().invoke(main, ["transform", "--help"])

        assert result.exit_code == 0
        for flag in ("--options", "--preset", "--format", "--quality", "--output-dir", "--verbose"):
            assert flag in result.output

    def test_no_files_shows_error(self) -> None:
        """Test that transform without files shows an error."""
        result = CliRunner().invoke(main, ["transform"])

        assert result.exit_code == 1
        assert "No files specified" in result.output


class TestCLITransform:
    """Test the transform command end to end."""

    def test_single_file(self) -> None:
        """Test one image is written as a single file."""
        runner = CliRunner()
        with runner.isolated_filesystem():
            write_png("Photo One.png")

            result = runner.invoke(main, ["transform", "Photo One.png", "-o", "out"])

            assert result.exit_code == 0, result.output
            assert Path("out/photo-one.webp").exists()
            assert "Transform Summary" in result.output

    def test_format_and_quality_flags(self) -> None:
        """Test --format overrides the default codec."""
        runner = CliRunner()
        with runner.isolated_filesystem():
            write_png("a.png")

            result = runner.invoke(main, ["transform", "a.png", "--format", "jpeg", "-q", "70"])

            assert result.exit_code == 0, result.output
            assert Path("a.jpg").exists()

    def test_several_files_make_archive(self) -> None:
        """Test several images produce a zip archive."""
        runner = CliRunner()
        with runner.isolated_filesystem():
            write_png("a.png")
            write_png("b.png")

            result = runner.invoke(main, ["transform", "a.png", "b.png"])

            assert result.exit_code == 0, result.output
            with zipfile.ZipFile("webp-lab-results.zip") as archive:
                assert set(archive.namelist()) == {"a-1.webp", "b-2.webp", "manifest.json"}

    def test_partial_failure_exits_one(self) -> None:
        """Test exit code 1 when some items failed."""
        runner = CliRunner()
        with runner.isolated_filesystem():
            write_png("a.png")
            Path("notes.txt").write_text("hello")

            result = runner.invoke(main, ["transform", "a.png", "notes.txt"])

            assert result.exit_code == 1
            assert Path("webp-lab-results.zip").exists()
            assert "notes.txt" in result.output

    def test_all_failed(self) -> None:
        """Test a batch where nothing could be transformed."""
        runner = CliRunner()
        with runner.isolated_filesystem():
            Path("notes.txt").write_text("hello")

            result = runner.invoke(main, ["transform", "notes.txt"])

            assert result.exit_code == 1
            assert "No images could be transformed." in result.output
            assert not Path("webp-lab-results.zip").exists()

    def test_limits_rejection(self, monkeypatch) -> None:
        """Test a rejected batch exits with code 1."""
        monkeypatch.setenv("MAX_BATCH_FILES", "1")
        runner = CliRunner()
        with runner.isolated_filesystem():
            write_png("a.png")
            write_png("b.png")

            result = runner.invoke(main, ["transform", "a.png", "b.png"])

            assert result.exit_code == 1
            assert "Batch too large" in result.output

    def test_invalid_options_json(self) -> None:
        """Test malformed --options is a usage error."""
        runner = CliRunner()
        with runner.isolated_filesystem():
            write_png("a.png")

            result = runner.invoke(main, ["transform", "a.png", "--options", "{bad"])

            assert result.exit_code == 2
            assert "Options must be JSON" in result.output

    def test_oversized_option_numbers_use_defaults(self) -> None:
        """Test an integer too large for a float in --options is ignored."""
        runner = CliRunner()
        with runner.isolated_filesystem():
            write_png("a.png")

            result = runner.invoke(
                main, ["transform", "a.png", "--options", '{"width": ' + "9" * 400 + "}"]
            )

            assert result.exit_code == 0
            assert Path("a.webp").exists()

    def test_unexpected_error_exits_one(self) -> None:
        """Test an unexpected failure is reported instead of a traceback."""
        runner = CliRunner()
        with runner.isolated_filesystem():
            write_png("a.png")

            with patch("webp_lab.cli.TransformOrchestrator") as mock_orchestrator:
                mock_orchestrator.return_value.run.side_effect = RuntimeError("decoder exploded")
                result = runner.invoke(main, ["transform", "a.png"])

            assert result.exit_code == 1
            assert isinstance(result.exception, SystemExit)
            assert "Error:" in result.output
            assert "decoder exploded" in result.output

    def test_log_file(self) -> None:
        """Test --log-file appends the run's log records to a file."""
        runner = CliRunner()
        with runner.isolated_filesystem():
            write_png("a.png")

            result = runner.invoke(main, ["transform", "a.png", "--log-file", "logs/run.log"])
            setup_logging()

            assert result.exit_code == 0
            assert "Starting request: files=1" in Path("logs/run.log").read_text(encoding="utf-8")

    def test_missing_file(self) -> None:
        """Test a nonexistent path is rejected by click."""
        result = CliRunner().invoke(main, ["transform", "missing.png"])

        assert result.exit_code == 2


class TestBuildOptions:
    """Test option merging."""

    def test_flags_override_json(self) -> None:
        """Test explicit flags win over JSON options."""
        options = build_options(json.dumps({"format": "png", "quality": 50}), None, "avif", 90)

        assert options["format"] == "avif"
        assert options["quality"] == 90

    def test_preset_over_json(self) -> None:
        """Test presets merge over JSON options."""
        options = build_options('{"grayscale": true}', "social-1200", None, None)

        assert options["width"] == 1200
        assert options["grayscale"] is True

    def test_non_object_json_ignored(self) -> None:
        """Test JSON that is not an object is ignored."""
        assert build_options("[1]", None, None, None) == {}

    def test_invalid_json(self) -> None:
        """Test malformed JSON."""
        with pytest.raises(click.BadParameter):
            build_options("{", None, None, None)


class TestFormatBytes:
    """Test byte formatting."""

    @pytest.mark.parametrize(
        ("size", "expected"),
        [
            (0, "0 B"),
            (512, "512 B"),
            (2048, "2.0 KB"),
            (150 * 1024, "150 KB"),
            (5 * 1024 * 1024, "5.0 MB"),
            (3 * 1024**3, "3.0 GB"),
            (-1, "0 B"),
        ],
    )
    def test_format(self, size, expected) -> None:
        """Test binary unit formatting."""
        assert format_bytes(size) == expected


class TestServe:
    """Test the serve command."""

    def test_runs_uvicorn(self) -> None:
        """Test serve hands the app to uvicorn."""
        with patch("uvicorn.run") as mock_run:
            result = CliRunner().invoke(main, ["serve", "--port", "9000"])

        assert result.exit_code == 0
        mock_run.assert_called_once_with("webp_lab.api:app", host="127.0.0.1", port=9000)

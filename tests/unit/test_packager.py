"""Unit tests for result packaging."""

import json
import zipfile
from io import BytesIO
from unittest.mock import patch

import pytest

from webp_lab.errors import NoSuccessfulTransformsError, PackagingError
from webp_lab.models import OutputFormat, TransformFailure, TransformSuccess
from webp_lab.options import normalize_config
from webp_lab.packager import (
    ARCHIVE_NAME,
    ERROR_REPORT_NAME,
    MANIFEST_NAME,
    ResultPackager,
    archive_entry_name,
    build_error_report,
)


def success(index, name, safe, fmt=OutputFormat.WEBP, input_bytes=100, data=b"abc"):
    return TransformSuccess(
        index=index,
        original_name=name,
        safe_base_name=safe,
        format=fmt,
        input_bytes=input_bytes,
        output_bytes=len(data),
        data=data,
    )


def failure(index, name, reason="Unsupported file. Only images are accepted."):
    return TransformFailure(index=index, original_name=name, reason=reason)


def open_archive(response):
    return zipfile.ZipFile(BytesIO(response.data))


class TestSingleFile:
    """Test the single-file branch."""

    def test_single_success_returns_image(self, default_config):
        """Test one success and no failures returns the image itself."""
        response = ResultPackager().pack([success(0, "Cat.PNG", "cat", data=b"webpdata")], default_config)

        assert response.is_archive is False
        assert response.filename == "cat.webp"
        assert response.content_type == "image/webp"
        assert response.data == b"webpdata"
        assert response.processed == 1
        assert response.failed == 0

    def test_jpeg_extension(self):
        """Test JPEG outputs use the .jpg extension."""
        config = normalize_config({"format": "jpeg"})
        response = ResultPackager().pack([success(0, "a.png", "a", fmt=OutputFormat.JPEG)], config)

        assert response.filename == "a.jpg"
        assert response.content_type == "image/jpeg"


class TestArchive:
    """Test the archive branch."""

    def test_two_successes(self, default_config):
        """Test several successes produce an archive without an error report."""
        outcomes = [success(0, "a.png", "photo", data=b"1"), success(1, "b.png", "photo", data=b"22")]
        response = ResultPackager().pack(outcomes, default_config)

        assert response.is_archive is True
        assert response.filename == ARCHIVE_NAME
        assert response.content_type == "application/zip"
        with open_archive(response) as archive:
            names = archive.namelist()
            assert names == ["photo-1.webp", "photo-2.webp", MANIFEST_NAME]
            assert archive.read("photo-2.webp") == b"22"
            assert all(info.compress_type == zipfile.ZIP_DEFLATED for info in archive.infolist())

    def test_success_with_failure(self, default_config):
        """Test one success plus one failure still produces an archive."""
        outcomes = [failure(0, "notes.txt"), success(1, "b.png", "b")]
        response = ResultPackager().pack(outcomes, default_config)

        assert response.is_archive is True
        assert response.processed == 1
        assert response.failed == 1
        assert response.failures == [outcomes[0]]
        with open_archive(response) as archive:
            assert "b-1.webp" in archive.namelist()
            report = archive.read(ERROR_REPORT_NAME).decode("utf-8")
        assert "1. notes.txt -> Unsupported file. Only images are accepted." in report
        assert "Processed: 1" in report
        assert "Failed: 1" in report

    def test_positions_count_successes_only(self, default_config):
        """Test entry positions are 1-based among successes."""
        outcomes = [success(0, "a.png", "a"), failure(1, "x.txt"), success(2, "c.png", "c")]
        response = ResultPackager().pack(outcomes, default_config)

        with open_archive(response) as archive:
            assert "a-1.webp" in archive.namelist()
            assert "c-2.webp" in archive.namelist()

    def test_manifest(self, default_config):
        """Test the manifest totals and items."""
        outcomes = [
            success(0, "a.png", "a", input_bytes=1000, data=b"x" * 10),
            failure(1, "bad.png", "The file does not look like a valid image."),
            success(2, "c.png", "c", input_bytes=500, data=b"y" * 5),
        ]
        response = ResultPackager().pack(outcomes, default_config)

        with open_archive(response) as archive:
            manifest = json.loads(archive.read(MANIFEST_NAME))

        assert manifest["totals"] == {
            "processed": 2,
            "failed": 1,
            "inputBytes": 1500,
            "outputBytes": 15,
        }
        assert manifest["options"] == default_config.to_dict()
        assert manifest["generatedAt"].endswith("Z")
        assert [item["status"] for item in manifest["items"]] == ["ok", "error", "ok"]
        assert manifest["items"][1]["reason"] == "The file does not look like a valid image."
        assert manifest["items"][0]["outputExt"] == "webp"

    def test_byte_totals_over_successes_only(self, default_config):
        """Test response byte totals ignore failures."""
        outcomes = [success(0, "a.png", "a", input_bytes=40, data=b"1234"), failure(1, "b.txt")]
        response = ResultPackager().pack(outcomes, default_config)

        assert response.total_input_bytes == 40
        assert response.total_output_bytes == 4

    def test_archive_error_raises_packaging_error(self, default_config):
        """Test archive construction failures."""
        outcomes = [success(0, "a.png", "a"), success(1, "b.png", "b")]

        with patch("webp_lab.packager.create_archive", side_effect=OSError("no memory")):
            with pytest.raises(PackagingError, match="no memory"):
                ResultPackager().pack(outcomes, default_config)


class TestNoSuccesses:
    """Test the zero-success branch."""

    def test_all_failed(self, default_config):
        """Test that no archive is produced when everything failed."""
        outcomes = [failure(0, "a.txt"), failure(1, "b.png", "The file does not look like a valid image.")]

        with pytest.raises(NoSuccessfulTransformsError) as exc_info:
            ResultPackager().pack(outcomes, default_config)

        assert exc_info.value.status_code == 422
        assert exc_info.value.to_dict()["failures"] == [
            {"file": "a.txt", "reason": "Unsupported file. Only images are accepted."},
            {"file": "b.png", "reason": "The file does not look like a valid image."},
        ]


class TestHelpers:
    """Test module helpers."""

    def test_archive_entry_name(self):
        """Test entry names."""
        assert archive_entry_name(success(0, "x.png", "x", fmt=OutputFormat.AVIF), 3) == "x-3.avif"

    def test_error_report_layout(self):
        """Test the error report layout."""
        config = normalize_config({"format": "png", "quality": 90})
        report = build_error_report([failure(0, "a.txt")], [], config)
        lines = report.splitlines()

        assert lines[0] == "WebP Lab transform report"
        assert lines[1].startswith("Generated: ")
        assert "Output format: png" in lines
        assert "Quality: 90" in lines
        assert lines[-2] == "Failures:"

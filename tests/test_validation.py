"""
Tests for submission validation
"""
import pytest
from datetime import datetime, timezone

import sys
sys.path.insert(0, '.')

from src.core.errors import ErrorCode, SubmissionValidationError
from src.crowdsource.models import ReportCategory
from src.crowdsource.validation import (
    ReportSubmission,
    SubmissionValidator,
    decode_image,
    decoded_size,
    parse_coordinate,
    validate_submission,
)
from conftest import make_image_b64

MAX_BYTES = 5 * 1024 * 1024
FIXED_NOW = datetime(2026, 1, 15, 12, 0, tzinfo=timezone.utc)


def submission(**overrides):
    fields = dict(
        title="Overflowing bin",
        image=make_image_b64(128),
        details="Bags spilling onto the pavement",
        address="Main Street 1",
        latitude=-23.55,
        longitude=-46.63,
    )
    fields.update(overrides)
    return ReportSubmission(**fields)


class TestSubmissionValidator:
    """Test suite for SubmissionValidator."""

    def setup_method(self):
        self.validator = SubmissionValidator(max_image_bytes=MAX_BYTES, clock=lambda: FIXED_NOW)

    def _error(self, sub):
        with pytest.raises(SubmissionValidationError) as exc:
            self.validator.validate(sub)
        return exc.value

    def test_valid_submission(self):
        result = self.validator.validate(submission())

        assert result.title == "Overflowing bin"
        assert result.latitude == -23.55
        assert result.image_size == 128
        assert result.category == ReportCategory.STANDARD
        assert result.photo_timestamp == FIXED_NOW
        assert result.content_type == "image/jpeg"

    def test_missing_fields_are_aggregated(self):
        error = self._error(submission(title="", details=None, longitude=None))

        assert error.code == ErrorCode.MISSING_FIELDS
        assert error.status_code == 400
        assert error.details["missing_fields"] == ["title", "details", "location"]

    def test_whitespace_counts_as_missing(self):
        error = self._error(submission(address="   "))

        assert error.details["missing_fields"] == ["address"]

    def test_image_at_limit_is_accepted(self):
        result = self.validator.validate(submission(image=make_image_b64(MAX_BYTES)))

        assert result.image_size == MAX_BYTES

    def test_image_one_byte_over_limit(self):
        error = self._error(submission(image=make_image_b64(MAX_BYTES + 1)))

        assert error.code == ErrorCode.IMAGE_TOO_LARGE
        assert error.status_code == 413

    def test_size_checked_before_format(self):
        oversized_garbage = "!" * (MAX_BYTES * 2)

        assert self._error(submission(image=oversized_garbage)).code == ErrorCode.IMAGE_TOO_LARGE

    def test_invalid_base64(self):
        assert self._error(submission(image="not base64!")).code == ErrorCode.INVALID_IMAGE_FORMAT

    def test_data_url_prefix_accepted(self):
        result = self.validator.validate(
            submission(image=make_image_b64(32, prefix=True).replace("jpeg", "png"))
        )

        assert result.content_type == "image/png"
        assert result.image_size == 32

    def test_null_island_is_valid(self):
        result = self.validator.validate(submission(latitude=0, longitude=0))

        assert (result.latitude, result.longitude) == (0.0, 0.0)

    def test_latitude_out_of_range(self):
        error = self._error(submission(latitude=91, longitude=0))

        assert error.code == ErrorCode.INVALID_COORDINATES_RANGE
        assert error.details["valid_latitude_range"] == [-90.0, 90.0]
        assert error.details["received"] == {"latitude": 91.0, "longitude": 0.0}

    def test_non_numeric_coordinate(self):
        assert self._error(submission(latitude="abc", longitude=12)).code == ErrorCode.INVALID_COORDINATES

    def test_numeric_strings_accepted(self):
        result = self.validator.validate(submission(latitude="-23.5", longitude=" -46.6 "))

        assert result.latitude == -23.5
        assert result.longitude == -46.6

    def test_boundary_coordinates(self):
        result = self.validator.validate(submission(latitude=-90, longitude=180))

        assert (result.latitude, result.longitude) == (-90.0, 180.0)

    def test_unknown_category(self):
        error = self._error(submission(category="radioactive"))

        assert error.code == ErrorCode.INVALID_CATEGORY
        assert "hazardous" in error.details["valid_categories"]

    def test_category_parsed(self):
        assert self.validator.validate(submission(category="hazardous")).category == ReportCategory.HAZARDOUS

    def test_photo_timestamp_parsed(self):
        result = self.validator.validate(submission(photo_timestamp="2026-01-10T08:30:00Z"))

        assert result.photo_timestamp == datetime(2026, 1, 10, 8, 30, tzinfo=timezone.utc)

    def test_invalid_photo_timestamp(self):
        assert self._error(submission(photo_timestamp="yesterday")).code == ErrorCode.VALIDATION_ERROR

    def test_module_level_helper(self):
        assert validate_submission(submission()).address == "Main Street 1"


class TestHelpers:
    """Test suite for payload helpers."""

    def test_decoded_size_matches_decoding(self):
        for size in (1, 2, 3, 100, 1001):
            image = make_image_b64(size)
            assert decoded_size(image) == size
            assert len(decode_image(image)) == size

    def test_decode_tolerates_missing_padding(self):
        assert decode_image("QUJD") == b"ABC"
        assert decode_image("QUI") == b"AB"

    def test_parse_coordinate(self):
        assert parse_coordinate(12) == 12.0
        assert parse_coordinate("1e1") == 10.0
        assert parse_coordinate("nan") is None
        assert parse_coordinate(True) is None
        assert parse_coordinate(None) is None
        assert parse_coordinate([1]) is None

"""
Tests for sanitization, input validation and the rate limiter.
"""

import math

import pytest

from utils.input_security import (
    MAX_QR_PAYLOAD_LENGTH,
    RateLimiter,
    parse_coordinate,
    sanitize_input,
    validate_file_size,
    validate_gps_coordinates,
    validate_qr_payload,
    validate_text_input,
)


class FakeClock:
    def __init__(self, start=1000.0):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


class TestSanitizeInput:

    def test_strips_markup_characters_and_whitespace(self):
        assert sanitize_input('  <b>Main "Gate" & \'Lobby\'</b>  ') == 'bMain Gate  Lobby/b'

    def test_none_becomes_empty_string(self):
        assert sanitize_input(None) == ''

    def test_plain_text_is_unchanged(self):
        assert sanitize_input('CP-0042 North') == 'CP-0042 North'


class TestValidateQrPayload:

    def test_accepts_ordinary_payload(self):
        assert validate_qr_payload('SITE-12/CORNER-3') == (True, None)

    def test_rejects_empty_payload(self):
        is_valid, error = validate_qr_payload('')
        assert not is_valid
        assert error == 'QR code data is required'

    def test_rejects_non_string_payload(self):
        assert validate_qr_payload(None)[0] is False
        assert validate_qr_payload(42)[0] is False

    def test_length_limit_is_inclusive(self):
        assert validate_qr_payload('x' * MAX_QR_PAYLOAD_LENGTH)[0] is True
        is_valid, error = validate_qr_payload('x' * (MAX_QR_PAYLOAD_LENGTH + 1))
        assert not is_valid
        assert error == 'QR code data is too long'

    @pytest.mark.parametrize('payload', [
        '<script>alert(1)</script>',
        'JavaScript:void(0)',
        'data:text/html;base64,AAAA',
        'VBSCRIPT:msgbox',
    ])
    def test_rejects_executable_content(self, payload):
        is_valid, error = validate_qr_payload(payload)
        assert not is_valid
        assert error == 'QR code contains invalid or potentially harmful content'


class TestValidateGpsCoordinates:

    def test_accepts_bounds(self):
        assert validate_gps_coordinates(90, 180)
        assert validate_gps_coordinates(-90, -180)
        assert validate_gps_coordinates(-33.8688, 151.2093)

    def test_rejects_out_of_range(self):
        assert not validate_gps_coordinates(90.0001, 0)
        assert not validate_gps_coordinates(0, -180.5)

    def test_rejects_non_numeric_and_non_finite(self):
        assert not validate_gps_coordinates('10', '20')
        assert not validate_gps_coordinates(None, 20)
        assert not validate_gps_coordinates(True, 20)
        assert not validate_gps_coordinates(math.nan, 20)
        assert not validate_gps_coordinates(10, math.inf)

    def test_parse_coordinate(self):
        assert parse_coordinate('-33.5') == -33.5
        assert parse_coordinate('') is None
        assert parse_coordinate('north') is None


class TestValidateTextInput:

    def test_requires_content_after_sanitization(self):
        assert validate_text_input('Central Station', 100)
        assert not validate_text_input('', 100)
        assert not validate_text_input('<>&', 100)
        assert not validate_text_input(None, 100)

    def test_raw_length_is_checked(self):
        assert validate_text_input('a' * 20, 20)
        assert not validate_text_input('a' * 21, 20)


class TestValidateFileSize:

    def test_limit_in_megabytes(self):
        assert validate_file_size(10 * 1024 * 1024, 10)
        assert not validate_file_size(10 * 1024 * 1024 + 1, 10)
        assert not validate_file_size(None, 10)


class TestRateLimiter:

    def test_blocks_after_limit_within_window(self):
        clock = FakeClock()
        limiter = RateLimiter(max_attempts=3, window_seconds=60, clock=clock)

        assert [limiter.is_allowed('guard-1') for _ in range(4)] == [True, True, True, False]
        assert limiter.get_remaining_attempts('guard-1') == 0

    def test_window_slides(self):
        clock = FakeClock()
        limiter = RateLimiter(max_attempts=2, window_seconds=60, clock=clock)
        limiter.is_allowed('guard-1')
        clock.advance(30)
        limiter.is_allowed('guard-1')
        assert not limiter.is_allowed('guard-1')

        clock.advance(31)
        assert limiter.is_allowed('guard-1')

    def test_identifiers_are_independent(self):
        limiter = RateLimiter(max_attempts=1, window_seconds=60, clock=FakeClock())
        assert limiter.is_allowed('guard-1')
        assert limiter.is_allowed('guard-2')
        assert not limiter.is_allowed('guard-1')

    def test_reset(self):
        limiter = RateLimiter(max_attempts=1, window_seconds=60, clock=FakeClock())
        limiter.is_allowed('guard-1')
        limiter.reset('guard-1')
        assert limiter.is_allowed('guard-1')

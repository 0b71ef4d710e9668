"""
Input Security Utilities for SecureRounds
=========================================

Validation and sanitization for everything a guard's device submits:
QR corner payloads, GPS fixes, selfie uploads and free-text form fields.
Also provides the sliding-window rate limiter used for scans and submissions.
"""

import math
import re
import time
from collections import defaultdict, deque
from numbers import Real

# QR payload limits
MAX_QR_PAYLOAD_LENGTH = 500
DANGEROUS_QR_PATTERN = re.compile(r'<script|javascript:|data:|vbscript:', re.IGNORECASE)

# Characters stripped from every stored text value
SANITIZE_PATTERN = re.compile(r'[<>"\'&]')

# Photo limits
MAX_PHOTO_MB = 10

# Form field limits (field name -> (label, max length))
FIELD_LIMITS = {
    'state': ('State', 50),
    'site_code': ('Site code', 20),
    'site_name': ('Site name', 100),
    'guard_name': ('Guard name', 100),
    'employee_code': ('Employee code', 50),
}

def sanitize_input(value):
    """
    Strip HTML-significant characters and surrounding whitespace

    Args:
        value (str): Raw text

    Returns:
        str: Sanitized text ('' for None)
    """
    if value is None:
        return ''
    return SANITIZE_PATTERN.sub('', str(value)).strip()

def validate_qr_payload(raw):
    """
    Validate a decoded QR payload before it is accepted as a corner scan

    Args:
        raw (str): Decoded QR string

    Returns:
        tuple: (is_valid, error message or None)
    """
    if not raw or not isinstance(raw, str):
        return False, 'QR code data is required'

    if len(raw) > MAX_QR_PAYLOAD_LENGTH:
        return False, 'QR code data is too long'

    if DANGEROUS_QR_PATTERN.search(raw):
        return False, 'QR code contains invalid or potentially harmful content'

    return True, None

def validate_gps_coordinates(latitude, longitude):
    """
    Check that a coordinate pair is numeric and inside valid bounds

    Args:
        latitude: Latitude in degrees
        longitude: Longitude in degrees

    Returns:
        bool: True if both values are finite numbers within range
    """
    for value in (latitude, longitude):
        if isinstance(value, bool) or not isinstance(value, Real):
            return False
        if not math.isfinite(value):
            return False

    return -90 <= latitude <= 90 and -180 <= longitude <= 180

def parse_coordinate(value):
    """Convert a submitted form value to float, or None if it is missing or not numeric"""
    if value is None or value == '':
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None

def validate_text_input(value, max_length=100):
    """
    Check a free-text field: non-empty after sanitization, raw length within limit

    Args:
        value (str): Raw field value
        max_length (int): Maximum raw length

    Returns:
        bool: True if the field is acceptable
    """
    if not value or not isinstance(value, str):
        return False
    return len(sanitize_input(value)) > 0 and len(value) <= max_length

def validate_file_size(size, max_size_mb=MAX_PHOTO_MB):
    """Check an upload size in bytes against the limit in megabytes"""
    return size is not None and size <= max_size_mb * 1024 * 1024

class RateLimiter:
    """
    Sliding-window rate limiter keyed by identity

    Usage:
        qr_scan_limiter = RateLimiter(max_attempts=10, window_seconds=60)
        if not qr_scan_limiter.is_allowed(user_id):
            ...
    """

    def __init__(self, max_attempts, window_seconds, clock=time.monotonic):
        self.max_attempts = max_attempts
        self.window_seconds = window_seconds
        self.clock = clock
        self.attempts = defaultdict(deque)

    def _prune(self, identifier, now):
        history = self.attempts[identifier]
        while history and now - history[0] >= self.window_seconds:
            history.popleft()
        return history

    def is_allowed(self, identifier):
        """Record an attempt and report whether it is within the limit"""
        now = self.clock()
        history = self._prune(identifier, now)
        if len(history) >= self.max_attempts:
            return False
        history.append(now)
        return True

    def get_remaining_attempts(self, identifier):
        history = self._prune(identifier, self.clock())
        return max(0, self.max_attempts - len(history))

    def reset(self, identifier=None):
        if identifier is None:
            self.attempts.clear()
        else:
            self.attempts.pop(identifier, None)

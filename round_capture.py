"""
Round Capture State Machine
===========================

Guides a guard through the evidence required for one checkpoint round:
four corner QR scans, a selfie with an optional GPS fix, and the site/guard
form fields. Nothing reaches the store until every piece has been validated
and sanitized.

The capture state is an immutable ``CaptureState`` record. Each transition
is a plain function that takes a state and returns ``(new_state, error)``;
when a transition is refused the original state object is returned
unchanged, so callers can retry without cleanup.

``CaptureController`` binds the transitions to device collaborators
(QR scanner, camera, geolocation) and ``CaptureSessionStore`` keeps one
in-progress capture per identity for the HTTP API.
"""

import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeoutError
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import NamedTuple, Optional, Tuple

from utils.input_security import (
    FIELD_LIMITS,
    MAX_PHOTO_MB,
    sanitize_input,
    validate_file_size,
    validate_gps_coordinates,
    validate_qr_payload,
    validate_text_input,
)

logger = logging.getLogger('secure_rounds_app.capture')

CORNER_COUNT = 4
GPS_TIMEOUT_SECONDS = 10.0
SUBMISSION_FAILED_MESSAGE = 'Unable to save checkpoint data. Please try again.'
NOT_AUTHENTICATED_MESSAGE = 'Please log in to submit checkpoint data.'


class CaptureCancelled(Exception):
    """Raised by a capture collaborator when the operator closes the scanner or camera"""


@dataclass(frozen=True)
class Coordinates:
    lat: float
    lng: float

    def to_dict(self):
        return {'lat': self.lat, 'lng': self.lng}


@dataclass(frozen=True)
class CapturedPhoto:
    data: bytes = field(repr=False)
    size: int
    name: str
    content_type: str = 'image/jpeg'


@dataclass(frozen=True)
class RoundFields:
    state: str = ''
    site_code: str = ''
    site_name: str = ''
    guard_name: str = ''
    employee_code: str = ''


@dataclass(frozen=True)
class CaptureState:
    corners: Tuple[Optional[str], ...] = (None,) * CORNER_COUNT
    photo: Optional[CapturedPhoto] = None
    coordinates: Optional[Coordinates] = None
    active_corner: int = 1
    fields: RoundFields = RoundFields()

    @property
    def corners_scanned(self):
        return sum(1 for corner in self.corners if corner)

    def summary(self):
        """JSON-friendly view of the state (photo bytes omitted)"""
        return {
            'corners': list(self.corners),
            'corners_scanned': self.corners_scanned,
            'active_corner': self.active_corner,
            'photo': {'name': self.photo.name, 'size': self.photo.size} if self.photo else None,
            'coordinates': self.coordinates.to_dict() if self.coordinates else None,
            'fields': {
                'state': self.fields.state,
                'site_code': self.fields.site_code,
                'site_name': self.fields.site_name,
                'guard_name': self.fields.guard_name,
                'employee_code': self.fields.employee_code,
            },
        }


@dataclass(frozen=True)
class RoundSubmission:
    """Fully validated round, ready for a single insert"""
    owner_id: int
    location: str
    guard_name: str
    employee_id: str
    corners: Tuple[str, ...]
    photo: CapturedPhoto
    gps_coordinates: Optional[Coordinates]
    timestamp: datetime

    def to_record(self):
        return {
            'user_id': self.owner_id,
            'location': self.location,
            'guard_name': self.guard_name,
            'employee_id': self.employee_id,
            'qr_code_corner_1': self.corners[0],
            'qr_code_corner_2': self.corners[1],
            'qr_code_corner_3': self.corners[2],
            'qr_code_corner_4': self.corners[3],
            'gps_coordinates': self.gps_coordinates.to_dict() if self.gps_coordinates else None,
            'timestamp': self.timestamp,
        }


class SubmitOutcome(NamedTuple):
    state: CaptureState
    record: object = None
    errors: tuple = ()

    @property
    def accepted(self):
        return not self.errors


def initial_state():
    return CaptureState()


def reset(state):
    """Discard everything captured so far"""
    return CaptureState()


def _valid_corner(corner):
    return isinstance(corner, int) and not isinstance(corner, bool) and 1 <= corner <= CORNER_COUNT


def select_corner(state, corner):
    """Manually choose which corner the next scan fills"""
    if not _valid_corner(corner):
        return state, f'Corner must be between 1 and {CORNER_COUNT}'
    return replace(state, active_corner=corner), None


def scan_corner(state, raw, corner=None):
    """
    Accept a decoded QR payload for a corner

    The payload is validated before anything is stored; on success it is
    sanitized, written to the corner (overwriting an earlier scan) and the
    active corner advances, stopping at the last one.
    """
    if corner is None:
        corner = state.active_corner
    if not _valid_corner(corner):
        return state, f'Corner must be between 1 and {CORNER_COUNT}'

    is_valid, error = validate_qr_payload(raw)
    if not is_valid:
        return state, error

    sanitized = sanitize_input(raw)
    if not sanitized:
        return state, 'QR code data is required'

    corners = list(state.corners)
    corners[corner - 1] = sanitized
    return replace(state, corners=tuple(corners), active_corner=min(corner + 1, CORNER_COUNT)), None


def _coerce_coordinates(coordinates):
    if coordinates is None:
        return None
    if isinstance(coordinates, Coordinates):
        lat, lng = coordinates.lat, coordinates.lng
    elif isinstance(coordinates, dict):
        lat, lng = coordinates.get('lat'), coordinates.get('lng')
    else:
        try:
            lat, lng = coordinates
        except (TypeError, ValueError):
            return None
    if not validate_gps_coordinates(lat, lng):
        return None
    return Coordinates(lat=float(lat), lng=float(lng))


def capture_photo(state, photo, coordinates=None, max_size_mb=MAX_PHOTO_MB):
    """
    Store the selfie and, when valid, the GPS fix taken with it

    Returns ``(new_state, error, warning)``. An oversized photo is refused
    outright. Out-of-range coordinates are dropped with a warning while the
    photo is still kept.
    """
    if photo is None or not photo.data:
        return state, 'Photo is required', None

    if not validate_file_size(photo.size, max_size_mb):
        return state, f'Photo must be smaller than {max_size_mb}MB. Please try again.', None

    warning = None
    accepted = _coerce_coordinates(coordinates)
    if coordinates is not None and accepted is None:
        warning = 'GPS coordinates appear to be invalid. Photo captured without location.'
        logger.warning('Discarded invalid GPS coordinates for captured photo %s', photo.name)

    return replace(state, photo=photo, coordinates=accepted), None, warning


def update_fields(capture, /, **values):
    """Set one or more form fields (state, site_code, site_name, guard_name, employee_code)"""
    unknown = sorted(set(values) - set(FIELD_LIMITS))
    if unknown:
        return capture, f'Unknown field: {", ".join(unknown)}'

    cleaned = {}
    for name, value in values.items():
        cleaned[name] = '' if value is None else str(value)

    return replace(capture, fields=replace(capture.fields, **cleaned)), None


def validate_submission(state):
    """
    Collect every reason the current state cannot be submitted

    Returns:
        list: Error messages, empty when the round may be submitted
    """
    errors = []

    for name, (label, max_length) in FIELD_LIMITS.items():
        if not validate_text_input(getattr(state.fields, name), max_length):
            errors.append(f'{label} is required and must be valid')

    for index, corner in enumerate(state.corners, start=1):
        if not corner or not validate_qr_payload(corner)[0]:
            errors.append(f'Valid QR code scan is required for corner {index}')

    if state.photo is None:
        errors.append('Selfie photo is required')

    return errors


def build_submission(state, owner_id, timestamp):
    """Assemble the sanitized submission; call only after ``validate_submission`` passes"""
    fields = state.fields
    return RoundSubmission(
        owner_id=owner_id,
        location=f'{sanitize_input(fields.state)} - {sanitize_input(fields.site_name)}',
        guard_name=sanitize_input(fields.guard_name),
        employee_id=sanitize_input(fields.employee_code),
        corners=tuple(state.corners),
        photo=state.photo,
        gps_coordinates=state.coordinates,
        timestamp=timestamp,
    )


def submit(state, get_identity, insert, now=None):
    """
    Validate and persist the round with exactly one ``insert`` call

    Args:
        state (CaptureState): Current capture state
        get_identity (callable): Returns the authenticated identity or None
        insert (callable): Persists a RoundSubmission and returns the stored record
        now (callable): Clock used for the submission timestamp

    Returns:
        SubmitOutcome: initial state and the stored record on success;
        the unchanged state and the list of errors otherwise
    """
    errors = validate_submission(state)
    if errors:
        return SubmitOutcome(state=state, errors=tuple(errors))

    owner_id = get_identity()
    if owner_id is None:
        logger.warning('Round submission refused: no authenticated identity')
        return SubmitOutcome(state=state, errors=(NOT_AUTHENTICATED_MESSAGE,))

    timestamp = (now or datetime.utcnow)()
    submission = build_submission(state, owner_id, timestamp)

    try:
        record = insert(submission)
    except Exception as e:
        logger.error('Round submission insert failed for user %s: %s', owner_id, e, exc_info=True)
        return SubmitOutcome(state=state, errors=(SUBMISSION_FAILED_MESSAGE,))

    return SubmitOutcome(state=initial_state(), record=record)


class CaptureController:
    """
    Device-side driver for one guard session

    Collaborators:
        scan_qr(): returns the decoded QR string
        take_photo(): returns a CapturedPhoto
        locate(): returns (lat, lng) / Coordinates, or None when no fix is available
        get_identity(): returns the authenticated identity or None
        insert(submission): persists the round

    Any collaborator may raise CaptureCancelled when the operator closes the
    scanner or camera; the stored corners and photo stay as they were.
    """

    def __init__(self, scan_qr, take_photo, locate, get_identity, insert, gps_timeout=GPS_TIMEOUT_SECONDS):
        self.scan_qr = scan_qr
        self.take_photo = take_photo
        self.locate = locate
        self.get_identity = get_identity
        self.insert = insert
        self.gps_timeout = gps_timeout
        self.state = initial_state()
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix='gps-fix')

    def close(self):
        self._executor.shutdown(wait=False)

    def select_corner(self, corner):
        self.state, error = select_corner(self.state, corner)
        return error

    def scan(self, corner=None):
        """Scan one corner; returns an error message or None"""
        try:
            raw = self.scan_qr()
        except CaptureCancelled:
            logger.info('QR scan cancelled by operator')
            return None
        self.state, error = scan_corner(self.state, raw, corner)
        return error

    def acquire_coordinates(self):
        """Wait up to ``gps_timeout`` seconds for a fix; None on timeout or failure"""
        future = self._executor.submit(self.locate)
        try:
            return future.result(timeout=self.gps_timeout)
        except FutureTimeoutError:
            future.cancel()
            logger.warning('GPS fix timed out after %.1f seconds', self.gps_timeout)
        except Exception as e:
            logger.warning('GPS fix unavailable: %s', e)
        return None

    def take_selfie(self):
        """Capture the selfie with a best-effort GPS fix; returns (error, warning)"""
        try:
            photo = self.take_photo()
        except CaptureCancelled:
            logger.info('Photo capture cancelled by operator')
            return None, None
        coordinates = self.acquire_coordinates()
        self.state, error, warning = capture_photo(self.state, photo, coordinates)
        if error is None and coordinates is None and warning is None:
            warning = 'GPS coordinates unavailable'
        return error, warning

    def fill(self, **values):
        self.state, error = update_fields(self.state, **values)
        return error

    def submit(self):
        outcome = submit(self.state, self.get_identity, self.insert)
        self.state = outcome.state
        return outcome


class CaptureSessionStore:
    """
    In-memory drafts keyed by identity

    Drafts never touch the database; an abandoned draft expires after
    ``ttl_seconds`` of inactivity.
    """

    def __init__(self, ttl_seconds=2 * 60 * 60, clock=time.monotonic):
        self.ttl_seconds = ttl_seconds
        self.clock = clock
        self._drafts = {}
        self._submitting = set()
        self._lock = threading.Lock()

    def _expire(self, now):
        stale = [key for key, (_, touched) in self._drafts.items() if now - touched > self.ttl_seconds]
        for key in stale:
            del self._drafts[key]

    def get(self, identity):
        with self._lock:
            now = self.clock()
            self._expire(now)
            entry = self._drafts.get(identity)
            return entry[0] if entry else initial_state()

    def put(self, identity, state):
        with self._lock:
            self._drafts[identity] = (state, self.clock())

    def checkout(self, identity):
        """
        Take the draft out of the store for submission

        Returns None while another submission for the same identity is in
        flight. Every successful checkout must be followed by ``checkin``.
        """
        with self._lock:
            if identity in self._submitting:
                return None
            self._expire(self.clock())
            entry = self._drafts.pop(identity, None)
            self._submitting.add(identity)
            return entry[0] if entry else initial_state()

    def checkin(self, identity, state=None):
        """End a submission; a refused draft is put back"""
        with self._lock:
            self._submitting.discard(identity)
            if state is not None:
                self._drafts[identity] = (state, self.clock())

    def discard(self, identity):
        with self._lock:
            self._drafts.pop(identity, None)

    def clear(self):
        with self._lock:
            self._drafts.clear()
            self._submitting.clear()

    def __len__(self):
        with self._lock:
            return len(self._drafts)

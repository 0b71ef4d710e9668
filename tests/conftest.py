"""
Shared fixtures: an in-memory SQLite database behind the Flask app, and
helpers to create users, role assignments and rounds.
"""

import io
import os
import tempfile
from datetime import datetime

import pytest
from PIL import Image

_TMP_ROOT = tempfile.mkdtemp(prefix='secure_rounds_tests_')

# Configuration must be in place before the app module is imported
os.environ['DATABASE_URL'] = 'sqlite://'
os.environ['SECRET_KEY'] = 'test-secret-key'
os.environ['LOG_DIR'] = os.path.join(_TMP_ROOT, 'logs')
os.environ['UPLOAD_FOLDER'] = os.path.join(_TMP_ROOT, 'uploads')
os.environ.pop('DEFAULT_ADMIN_PASSWORD', None)

from utils.validation import Role  # noqa: E402


@pytest.fixture
def flask_app():
    """Application with freshly created tables inside a pushed app context."""
    import app as app_module

    app_module.app.config.update(TESTING=True)
    app_module.qr_scan_limiter.reset()
    app_module.submission_limiter.reset()
    app_module.capture_sessions.clear()

    with app_module.app.app_context():
        app_module.db.drop_all()
        app_module.db.create_all()
        yield app_module.app
        app_module.db.session.remove()
        app_module.db.drop_all()


@pytest.fixture
def client(flask_app):
    return flask_app.test_client()


@pytest.fixture
def db(flask_app):
    import app as app_module
    return app_module.db


@pytest.fixture
def access_control(flask_app):
    return flask_app.access_control


@pytest.fixture
def make_user(flask_app):
    """Create a user with the default role, optionally promoted and location-scoped."""
    import app as app_module

    def _make_user(username, role=None, locations=None):
        user = app_module.User(
            full_name=username.replace('_', ' ').title(),
            email=f'{username}@example.com',
            username=username,
            employee_id=f'E-{username.upper()}'
        )
        user.set_password('password123')
        app_module.db.session.add(user)
        app_module.db.session.commit()

        control = app_module.access_control
        control.assign_default_role(user.id)
        if role is not None:
            control.bootstrap_role(user.id, Role(role))
        if locations is not None:
            assignment = control.get_user_role(user.id)
            assignment.location_access = list(locations)
            app_module.db.session.commit()
        return user

    return _make_user


@pytest.fixture
def make_round(flask_app):
    """Insert a round directly, bypassing capture."""
    import app as app_module

    def _make_round(owner, location='NSW - Central Station', created_at=None, photo_url=None, **overrides):
        values = {
            'user_id': owner.id,
            'location': location,
            'guard_name': owner.full_name,
            'employee_id': owner.employee_id or 'E-1',
            'qr_code_corner_1': 'CP-1',
            'qr_code_corner_2': 'CP-2',
            'qr_code_corner_3': 'CP-3',
            'qr_code_corner_4': 'CP-4',
            'photo_url': photo_url,
            'timestamp': created_at or datetime.utcnow(),
            'created_at': created_at or datetime.utcnow(),
        }
        values.update(overrides)
        security_round = app_module.SecurityRound(**values)
        app_module.db.session.add(security_round)
        app_module.db.session.commit()
        return security_round

    return _make_round


@pytest.fixture
def login(client):
    """Put an identity into the test client's session."""
    def _login(user):
        with client.session_transaction() as sess:
            sess['user_id'] = user.id
            sess['username'] = user.username
            sess['login_time'] = datetime.now().isoformat()
        return client

    return _login


def make_image_bytes(image_format='PNG', size=(8, 8)):
    buffer = io.BytesIO()
    Image.new('RGB', size, color=(200, 30, 30)).save(buffer, format=image_format)
    return buffer.getvalue()


@pytest.fixture
def png_bytes():
    return make_image_bytes('PNG')

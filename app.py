from flask import Flask, request, session, jsonify, send_file, Response, stream_with_context
from flask_sqlalchemy import SQLAlchemy
from datetime import datetime, time
from sqlalchemy import func
from dotenv import load_dotenv
import os
# Import the logging handler
from logger_handler import AppLogger, log_database_operations

from models import set_db
from utils import (
    get_current_identity, login_required, admin_required,
    Role, VALID_ROLES, is_valid_role, get_role_display_name, get_role_permissions,
    RateLimiter
)
from utils.input_security import MAX_PHOTO_MB, parse_coordinate
from access_policy import (
    AccessControl, PermissionDenied, AUTH_REQUIRED_MESSAGE,
    can_read_round, role_write_denial
)
from round_capture import (
    CaptureSessionStore, CapturedPhoto, SUBMISSION_FAILED_MESSAGE,
    capture_photo, reset, scan_corner, select_corner, submit, update_fields
)
from round_events import RoundEventBus
from photo_storage import PhotoStorage, InvalidPhoto, inspect_image
from retention_scheduler import cleanup_old_rounds

# Load environment variables in .env
load_dotenv()

# Initialize Flask application
app = Flask(__name__)
app.config['SECRET_KEY'] = os.environ.get('SECRET_KEY', 'change-this-secret-key')
app.config['SQLALCHEMY_DATABASE_URI'] = os.environ.get('DATABASE_URL', 'sqlite:///secure_rounds.db')
app.config['SQLALCHEMY_TRACK_MODIFICATIONS'] = False
app.config['UPLOAD_FOLDER'] = os.environ.get('UPLOAD_FOLDER', os.path.join(app.root_path, 'uploads'))
app.config['LOG_DIR'] = os.environ.get('LOG_DIR', os.path.join(app.root_path, 'logs'))
app.config['MAX_PHOTO_MB'] = int(os.environ.get('MAX_PHOTO_MB', MAX_PHOTO_MB))
app.config['MAX_CONTENT_LENGTH'] = (app.config['MAX_PHOTO_MB'] + 1) * 1024 * 1024
app.config['ROUND_RETENTION_DAYS'] = int(os.environ.get('ROUND_RETENTION_DAYS', 7))
app.config['CLEANUP_TIME'] = os.environ.get('CLEANUP_TIME', '02:00')

# Initialize database
db = SQLAlchemy(app)

User, SecurityRound, UserRole, RoleAuditLog, LogEvent = set_db(db)

# Initialize logging
logger_handler = AppLogger(app, db, LogEvent)

# Policy, storage and realtime wiring
app.access_control = AccessControl(db, User, SecurityRound, UserRole, RoleAuditLog, logger_handler)
app.round_model = SecurityRound
app.photo_storage = PhotoStorage(app.config['UPLOAD_FOLDER'])
app.round_events = RoundEventBus(SecurityRound)
app.round_events.bind(SecurityRound)
app.capture_sessions = CaptureSessionStore()

access_control = app.access_control
photo_storage = app.photo_storage
capture_sessions = app.capture_sessions

# Rate limiting
qr_scan_limiter = RateLimiter(max_attempts=10, window_seconds=60)
submission_limiter = RateLimiter(max_attempts=5, window_seconds=60)

MIN_PASSWORD_LENGTH = 8

@app.errorhandler(413)
def handle_payload_too_large(error):
    return jsonify({
        'success': False,
        'message': f"Photo must be smaller than {app.config['MAX_PHOTO_MB']}MB. Please try again."
    }), 413

def _json_body():
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}

def _capture_response(state, status=200, errors=None, warning=None, message=None, **extra):
    payload = {
        'success': not errors,
        'capture': state.summary()
    }
    payload.update(extra)
    if errors:
        payload['errors'] = list(errors)
        payload['message'] = errors[0]
    if warning:
        payload['warning'] = warning
    if message:
        payload['message'] = message
    return jsonify(payload), status

def _rate_limited(message):
    return jsonify({'success': False, 'message': message}), 429

def _user_summary(user):
    data = user.to_dict()
    assignment = access_control.get_user_role(user.id)
    data['role'] = assignment.role if assignment else None
    data['role_display_name'] = get_role_display_name(data['role'])
    data['location_access'] = assignment.location_access if assignment else None
    data['role_version'] = assignment.version if assignment else None
    return data

def _create_user(data, created_by=None):
    """
    Validate and create a user, then give it the default role

    Returns:
        tuple: (user or None, list of errors, HTTP status)
    """
    full_name = (data.get('full_name') or '').strip()
    email = (data.get('email') or '').strip().lower()
    username = (data.get('username') or '').strip()
    password = data.get('password') or ''
    employee_id = (data.get('employee_id') or '').strip() or None

    errors = []
    if not full_name:
        errors.append('Full name is required')
    if not email or '@' not in email:
        errors.append('A valid email address is required')
    if not username:
        errors.append('Username is required')
    if len(password) < MIN_PASSWORD_LENGTH:
        errors.append(f'Password must be at least {MIN_PASSWORD_LENGTH} characters')
    if errors:
        return None, errors, 400

    # Check if user already exists
    if User.query.filter(func.lower(User.username) == username.lower()).first():
        return None, ['Username already exists.'], 409
    if User.query.filter_by(email=email).first():
        return None, ['Email already registered.'], 409

    new_user = User(
        full_name=full_name,
        email=email,
        username=username,
        employee_id=employee_id,
        created_by=created_by
    )
    new_user.set_password(password)

    db.session.add(new_user)
    db.session.commit()

    # Role assignment never blocks identity creation
    access_control.assign_default_role(new_user.id, actor_id=created_by)

    return new_user, [], 201

# AUTHENTICATION ROUTES

@app.route('/api/register', methods=['POST'])
def register():
    """Self-registration; new accounts start as security guards"""
    try:
        user, errors, status = _create_user(_json_body())
        if errors:
            return jsonify({'success': False, 'message': errors[0], 'errors': errors}), status

        logger_handler.logger.info(f"New user registered: {user.username} ({user.email})")
        return jsonify({
            'success': True,
            'message': 'Registration successful! Please log in.',
            'user': _user_summary(user)
        }), 201

    except Exception as e:
        db.session.rollback()
        logger_handler.log_database_error('user_registration', e)
        return jsonify({'success': False, 'message': 'Registration failed. Please try again.'}), 500

@app.route('/api/login', methods=['POST'])
def login():
    """User authentication"""
    data = _json_body()
    username = (data.get('username') or '').strip()
    password = data.get('password') or ''

    if not username or not password:
        return jsonify({'success': False, 'message': 'Please enter both username and password.'}), 400

    try:
        # Find user (case-insensitive username)
        user = User.query.filter(
            func.lower(User.username) == username.lower(),
            User.active_status == True
        ).first()

        if not user or not user.check_password(password):
            logger_handler.log_user_login(
                user_id=user.id if user else None,
                username=username,
                success=False,
                failure_reason='invalid_credentials'
            )
            return jsonify({'success': False, 'message': 'Invalid username or password.'}), 401

        session.clear()
        session['user_id'] = user.id
        session['username'] = user.username
        session['full_name'] = user.full_name
        session['login_time'] = datetime.now().isoformat()

        # Update last login date
        user.last_login_date = datetime.utcnow()
        db.session.commit()

        logger_handler.log_user_login(user_id=user.id, username=user.username, success=True)

        return jsonify({
            'success': True,
            'message': f'Welcome back, {user.full_name}!',
            'user': _user_summary(user)
        })

    except Exception as e:
        db.session.rollback()
        logger_handler.log_database_error('user_login', e)
        return jsonify({'success': False, 'message': 'Login failed. Please try again.'}), 500

@app.route('/api/logout', methods=['POST'])
@login_required
def logout():
    """Log out and drop any unsubmitted capture"""
    user_id = get_current_identity()
    username = session.get('username')

    session_duration = None
    login_time = session.get('login_time')
    if login_time:
        try:
            elapsed = datetime.now() - datetime.fromisoformat(login_time)
            session_duration = round(elapsed.total_seconds() / 60, 1)
        except ValueError:
            session_duration = None

    capture_sessions.discard(user_id)
    session.clear()
    logger_handler.log_user_logout(user_id, username, session_duration)

    return jsonify({'success': True, 'message': 'You have been logged out.'})

@app.route('/api/me')
@login_required
def current_user_api():
    user = db.session.get(User, get_current_identity())
    if user is None:
        session.clear()
        return jsonify({'success': False, 'message': 'Please log in to access this resource.'}), 401
    return jsonify({'success': True, 'user': _user_summary(user)})

# CAPTURE ROUTES

@app.route('/api/capture', methods=['GET'])
@login_required
def capture_state_api():
    """Current unsubmitted capture for the logged-in guard"""
    return _capture_response(capture_sessions.get(get_current_identity()))

@app.route('/api/capture', methods=['DELETE'])
@login_required
def capture_reset_api():
    """Discard the current capture"""
    identity = get_current_identity()
    state = reset(capture_sessions.get(identity))
    capture_sessions.discard(identity)
    return _capture_response(state, message='Capture cleared.')

@app.route('/api/capture/corners', methods=['POST'])
@login_required
def capture_scan_api():
    """Record a decoded corner QR payload"""
    identity = get_current_identity()
    if not qr_scan_limiter.is_allowed(identity):
        logger_handler.log_security_event(
            event_type='qr_scan_rate_limited',
            description=f'User {identity} exceeded the QR scan rate limit',
            severity='LOW'
        )
        return _rate_limited('Too many scans. Please wait a moment and try again.')

    data = _json_body()
    state = capture_sessions.get(identity)
    new_state, error = scan_corner(state, data.get('payload'), data.get('corner'))
    if error:
        return _capture_response(state, 400, errors=[error])

    capture_sessions.put(identity, new_state)
    return _capture_response(new_state)

@app.route('/api/capture/corners/<int:corner>/select', methods=['POST'])
@login_required
def capture_select_corner_api(corner):
    identity = get_current_identity()
    state = capture_sessions.get(identity)
    new_state, error = select_corner(state, corner)
    if error:
        return _capture_response(state, 400, errors=[error])

    capture_sessions.put(identity, new_state)
    return _capture_response(new_state)

@app.route('/api/capture/photo', methods=['POST'])
@login_required
def capture_photo_api():
    """Attach the selfie and the GPS fix taken with it"""
    identity = get_current_identity()
    state = capture_sessions.get(identity)

    upload = request.files.get('photo')
    if upload is None or not upload.filename:
        return _capture_response(state, 400, errors=['Photo is required'])

    data = upload.read()
    try:
        content_type, _ = inspect_image(data)
    except InvalidPhoto as e:
        logger_handler.logger.warning(f'Rejected photo upload from user {identity}: {e}')
        return _capture_response(state, 400, errors=['Photo must be a JPEG, PNG or WEBP image'])

    photo = CapturedPhoto(data=data, size=len(data), name=upload.filename, content_type=content_type)

    latitude = request.form.get('latitude')
    longitude = request.form.get('longitude')
    coordinates = None
    if latitude not in (None, '') or longitude not in (None, ''):
        coordinates = (parse_coordinate(latitude), parse_coordinate(longitude))

    new_state, error, warning = capture_photo(state, photo, coordinates, app.config['MAX_PHOTO_MB'])
    if error:
        return _capture_response(state, 400, errors=[error])
    if coordinates is None:
        warning = 'GPS coordinates unavailable'

    capture_sessions.put(identity, new_state)
    return _capture_response(new_state, warning=warning)

@app.route('/api/capture/fields', methods=['PUT'])
@login_required
def capture_fields_api():
    identity = get_current_identity()
    state = capture_sessions.get(identity)

    new_state, error = update_fields(state, **_json_body())
    if error:
        return _capture_response(state, 400, errors=[error])

    capture_sessions.put(identity, new_state)
    return _capture_response(new_state)

def _store_submission(submission):
    """Save the photo, then insert the round; the photo is removed again if the insert fails"""
    photo_url = photo_storage.save(submission.owner_id, submission.photo)
    record = submission.to_record()
    record['photo_url'] = photo_url

    try:
        return access_control.insert_round(get_current_identity(), record)
    except Exception:
        db.session.rollback()
        try:
            photo_storage.delete(photo_url)
        except OSError as e:
            logger_handler.logger.warning(f'Could not remove orphaned photo {photo_url}: {e}')
        raise

@app.route('/api/capture/submit', methods=['POST'])
@login_required
def capture_submit_api():
    """Validate the capture and store it as one security round"""
    identity = get_current_identity()
    if not submission_limiter.is_allowed(identity):
        logger_handler.log_security_event(
            event_type='submission_rate_limited',
            description=f'User {identity} exceeded the submission rate limit',
            severity='MEDIUM'
        )
        return _rate_limited('Too many submissions. Please wait a moment and try again.')

    state = capture_sessions.checkout(identity)
    if state is None:
        return jsonify({'success': False, 'message': 'A submission is already in progress.'}), 409

    outcome = None
    try:
        outcome = submit(state, get_current_identity, _store_submission)
    finally:
        # A refused or interrupted submission hands the draft back unchanged
        capture_sessions.checkin(identity, None if outcome is not None and outcome.accepted else state)

    if not outcome.accepted:
        if outcome.errors == (SUBMISSION_FAILED_MESSAGE,):
            return _capture_response(state, 500, errors=outcome.errors)
        logger_handler.log_round_rejected(identity, outcome.errors)
        return _capture_response(state, 400, errors=outcome.errors)

    security_round = outcome.record
    logger_handler.log_round_submitted(
        round_id=security_round.id,
        user_id=identity,
        location=security_round.location,
        has_coordinates=security_round.has_location_data
    )

    return _capture_response(
        outcome.state, 201,
        message='Checkpoint data saved successfully.',
        round=security_round.to_dict()
    )

# SECURITY ROUND ROUTES

def _parse_date(value, end_of_day=False):
    parsed = datetime.strptime(value, '%Y-%m-%d')
    return datetime.combine(parsed.date(), time.max) if end_of_day else parsed

@app.route('/api/rounds')
@login_required
@log_database_operations('list_security_rounds')
def list_rounds_api():
    """Rounds visible to the requester with optional filters"""
    filters = {
        'location': (request.args.get('location') or '').strip() or None,
        'guard_name': (request.args.get('guard_name') or '').strip() or None,
        'completion': request.args.get('completion') or None,
    }

    errors = []
    for name, end_of_day in (('date_from', False), ('date_to', True)):
        value = request.args.get(name)
        if value:
            try:
                filters[name] = _parse_date(value, end_of_day)
            except ValueError:
                errors.append(f'{name} must be a date in YYYY-MM-DD format')
    if filters['completion'] not in (None, 'complete', 'incomplete'):
        errors.append("completion must be 'complete' or 'incomplete'")
    if errors:
        return jsonify({'success': False, 'message': errors[0], 'errors': errors}), 400

    rounds = access_control.visible_rounds(get_current_identity(), filters)
    return jsonify({
        'success': True,
        'count': len(rounds),
        'rounds': [security_round.to_dict() for security_round in rounds]
    })

@app.route('/api/rounds/<int:round_id>')
@login_required
def get_round_api(round_id):
    security_round = access_control.get_visible_round(get_current_identity(), round_id)
    if security_round is None:
        return jsonify({'success': False, 'message': 'Security round not found.'}), 404
    return jsonify({'success': True, 'round': security_round.to_dict()})

@app.route('/api/rounds/<int:round_id>/photo')
@login_required
def round_photo_api(round_id):
    """Serve a round's selfie to identities allowed to read the round"""
    identity = get_current_identity()
    security_round = db.session.get(SecurityRound, round_id)
    if security_round is None or not can_read_round(identity, access_control.get_user_role(identity), security_round):
        return jsonify({'success': False, 'message': 'Photo not found.'}), 404

    path = photo_storage.resolve(security_round.photo_url)
    if path is None:
        return jsonify({'success': False, 'message': 'Photo not found.'}), 404
    return send_file(path)

@app.route('/api/rounds/<int:round_id>', methods=['PATCH'])
@login_required
def update_round_api(round_id):
    identity = get_current_identity()
    try:
        security_round = access_control.update_own_round(identity, round_id, _json_body())
    except PermissionDenied as e:
        db.session.rollback()
        return jsonify({'success': False, 'message': str(e)}), 403
    except ValueError as e:
        db.session.rollback()
        return jsonify({'success': False, 'message': str(e), 'errors': [str(e)]}), 400
    except Exception as e:
        db.session.rollback()
        logger_handler.log_database_error('update_security_round', e)
        return jsonify({'success': False, 'message': 'Unable to update the security round.'}), 500

    logger_handler.logger.info(f'Security round {round_id} updated by user {identity}')
    return jsonify({'success': True, 'round': security_round.to_dict()})

@app.route('/api/rounds/<int:round_id>', methods=['DELETE'])
@login_required
def delete_round_api(round_id):
    identity = get_current_identity()
    try:
        photo_url = access_control.delete_own_round(identity, round_id)
    except PermissionDenied as e:
        db.session.rollback()
        return jsonify({'success': False, 'message': str(e)}), 403
    except Exception as e:
        db.session.rollback()
        logger_handler.log_database_error('delete_security_round', e)
        return jsonify({'success': False, 'message': 'Unable to delete the security round.'}), 500

    try:
        photo_storage.delete(photo_url)
    except OSError as e:
        logger_handler.logger.warning(f'Could not delete photo {photo_url}: {e}')

    logger_handler.logger.info(f'Security round {round_id} deleted by user {identity}')
    return jsonify({'success': True, 'message': 'Security round deleted.'})

def _stream_filter(identity):
    """Read check for stream frames; the assignment is re-read per frame so role changes apply at once"""
    def accept(action, payload):
        return can_read_round(identity, access_control.get_user_role(identity, refresh=True), payload)
    return accept

@app.route('/api/rounds/stream')
@login_required
def round_stream_api():
    """Server-sent events for round changes the requester may read"""
    identity = get_current_identity()

    return Response(
        stream_with_context(app.round_events.stream(_stream_filter(identity))),
        mimetype='text/event-stream',
        headers={'Cache-Control': 'no-cache', 'X-Accel-Buffering': 'no'}
    )

# USER AND ROLE MANAGEMENT ROUTES

@app.route('/api/users')
@admin_required
def list_users_api():
    users = User.query.order_by(User.full_name).all()
    return jsonify({'success': True, 'users': [_user_summary(user) for user in users]})

@app.route('/api/users', methods=['POST'])
@admin_required
def create_user_api():
    """Admin user creation; an optional role is applied through the audited role change"""
    identity = get_current_identity()
    data = _json_body()
    requested_role = data.get('role')
    if requested_role is not None and not is_valid_role(requested_role):
        return jsonify({'success': False, 'message': 'Invalid role selected.', 'errors': ['Invalid role selected.']}), 400

    try:
        user, errors, status = _create_user(data, created_by=identity)
    except Exception as e:
        db.session.rollback()
        logger_handler.log_database_error('create_user', e)
        return jsonify({'success': False, 'message': 'Error creating user. Please try again.'}), 500

    if errors:
        return jsonify({'success': False, 'message': errors[0], 'errors': errors}), status

    message = f'User {user.username} created successfully.'
    if requested_role is not None and Role.parse(requested_role) is not Role.SECURITY_GUARD:
        if not access_control.change_role(identity, user.id, requested_role):
            message += ' The requested role could not be assigned.'

    logger_handler.logger.info(f'User {user.username} created by admin {session.get("username")}')
    return jsonify({'success': True, 'message': message, 'user': _user_summary(user)}), 201

def _role_change_failure(identity, user_id, role=None):
    """Translate a refused role write into a response"""
    denial = role_write_denial(identity, access_control.get_user_role(identity), user_id)
    if denial:
        status = 401 if denial == AUTH_REQUIRED_MESSAGE else 403
        return jsonify({'success': False, 'message': denial}), status
    if role is not None and not is_valid_role(role):
        return jsonify({'success': False, 'message': 'Invalid role selected.'}), 400
    if db.session.get(User, user_id) is None:
        return jsonify({'success': False, 'message': 'User not found.'}), 404
    return jsonify({
        'success': False,
        'message': 'Role assignment could not be updated. Reload the user and try again.'
    }), 409

@app.route('/api/users/<int:user_id>/role', methods=['POST'])
@login_required
def change_user_role_api(user_id):
    """Change another user's role (admins only, never your own)"""
    identity = get_current_identity()
    data = _json_body()
    role = data.get('role')
    expected_version = data.get('expected_version')
    if expected_version is not None and (isinstance(expected_version, bool) or not isinstance(expected_version, int)):
        return jsonify({'success': False, 'message': 'expected_version must be an integer'}), 400

    if not access_control.change_role(identity, user_id, role, expected_version):
        return _role_change_failure(identity, user_id, role)

    target = db.session.get(User, user_id)
    return jsonify({
        'success': True,
        'message': f'{target.full_name} is now {get_role_display_name(role)}.',
        'user': _user_summary(target)
    })

@app.route('/api/users/<int:user_id>/role', methods=['DELETE'])
@login_required
def revoke_user_role_api(user_id):
    identity = get_current_identity()
    if not access_control.revoke_role(identity, user_id):
        return _role_change_failure(identity, user_id)
    return jsonify({'success': True, 'message': 'Role assignment removed.'})

@app.route('/api/users/<int:user_id>/location-access', methods=['POST'])
@login_required
def set_location_access_api(user_id):
    """Restrict a user's round visibility to a list of locations (null lifts the restriction)"""
    identity = get_current_identity()
    data = _json_body()
    if 'locations' not in data:
        return jsonify({'success': False, 'message': 'locations is required (list or null)'}), 400

    locations = data.get('locations')
    if locations is not None and not isinstance(locations, list):
        return jsonify({'success': False, 'message': 'locations must be a list of locations or null'}), 400

    if not access_control.set_location_access(identity, user_id, locations):
        return _role_change_failure(identity, user_id)

    return jsonify({'success': True, 'user': _user_summary(db.session.get(User, user_id))})

@app.route('/api/roles/me')
@login_required
def my_role_api():
    identity = get_current_identity()
    assignment = access_control.read_role(identity, identity)
    role = assignment.role if assignment else None
    return jsonify({
        'success': True,
        'role': role,
        'role_display_name': get_role_display_name(role),
        'assignment': assignment.to_dict() if assignment else None,
        'permissions': get_role_permissions(role)
    })

@app.route('/api/roles/permissions')
@login_required
def role_permissions_api():
    """API endpoint to get role permissions data"""
    permissions_data = {}
    for role in VALID_ROLES:
        permissions_data[role] = get_role_permissions(role)

    return jsonify({
        'success': True,
        'roles': permissions_data,
        'valid_roles': VALID_ROLES
    })

@app.route('/api/audit/roles')
@admin_required
def role_audit_api():
    limit = request.args.get('limit', 200, type=int)
    limit = max(1, min(limit, 1000))
    try:
        entries = access_control.visible_audit_entries(get_current_identity(), limit=limit)
    except PermissionDenied as e:
        return jsonify({'success': False, 'message': str(e)}), 403
    return jsonify({'success': True, 'entries': [entry.to_dict() for entry in entries]})

@app.route('/api/maintenance/cleanup', methods=['POST'])
@admin_required
def retention_cleanup_api():
    """Run the retention sweep on demand"""
    retention_days = app.config['ROUND_RETENTION_DAYS']
    deleted_count = cleanup_old_rounds(
        db, SecurityRound,
        photo_storage=photo_storage,
        retention_days=retention_days,
        logger_handler=logger_handler
    )
    return jsonify({
        'success': True,
        'message': f'Deleted {deleted_count} security rounds older than {retention_days} days.',
        'deleted_count': deleted_count
    })

# INITIALIZATION

def create_tables():
    """Create database tables and the first administrator"""
    try:
        db.create_all()

        username = os.environ.get('DEFAULT_ADMIN_USERNAME', 'admin')
        password = os.environ.get('DEFAULT_ADMIN_PASSWORD')

        admin = User.query.filter_by(username=username).first()
        if not admin:
            if not password:
                print("⚠️ DEFAULT_ADMIN_PASSWORD not set, skipping default admin creation")
                return

            admin = User(
                full_name=os.environ.get('DEFAULT_ADMIN_NAME', 'System Administrator'),
                email=os.environ.get('DEFAULT_ADMIN_EMAIL', 'admin@example.com'),
                username=username
            )
            admin.set_password(password)
            db.session.add(admin)
            db.session.commit()

            logger_handler.logger.info("Default admin user created during initialization")

        access_control.bootstrap_role(admin.id, Role.ADMIN)

    except Exception as e:
        db.session.rollback()
        logger_handler.log_database_error('database_initialization', e)
        raise

if __name__ == '__main__':
    with app.app_context():
        try:
            create_tables()
            logger_handler.logger.info("SecureRounds started successfully")

        except Exception as e:
            print(f"❌ Application startup failed: {e}")
            logger_handler.log_flask_error(
                error_type="application_startup_error",
                error_message=str(e)
            )
            raise

    app.run(debug=os.environ.get('DEBUG', '').lower() in ('1', 'true', 'yes'),
            host=os.environ.get('FLASK_HOST', '127.0.0.1'),
            port=int(os.environ.get('FLASK_PORT', 5000)),
            threaded=True)

#!/usr/bin/env python3
"""
Logging Handler for SecureRounds
================================

This module provides logging for:
- User login/logout activities
- Security round submissions and rejections
- Role changes and denied privilege changes
- Database transaction errors
- Flask application errors and security events

Features:
- Structured JSON messages
- Size-capped rotating log files
- Separate security log for sensitive events
- Database table for critical events
"""

import logging
import logging.handlers
import json
import os
import traceback
import uuid
from datetime import datetime, timedelta
from functools import wraps

from flask import current_app, has_request_context, jsonify, request, session
from werkzeug.exceptions import HTTPException

APP_LOGGER_NAME = 'secure_rounds_app'
SECURITY_LOGGER_NAME = 'secure_rounds_security'

# (file name, max bytes, backups kept, level, destination logger)
LOG_FILES = (
    ('application.log', 10 * 1024 * 1024, 5, logging.INFO, 'app'),
    ('errors.log', 5 * 1024 * 1024, 10, logging.ERROR, 'app'),
    ('security.log', 2 * 1024 * 1024, 20, logging.WARNING, 'security'),
)

class AppLogger:
    """
    Application logger with file, console and database destinations
    """

    def __init__(self, app=None, db=None, log_model=None):
        """Bind to the app immediately when one is given"""
        self.app = app
        self.db = db
        self.LogEvent = log_model
        self.logger = None
        self.security_logger = None

        if app:
            self.init_app(app, db, log_model)

    def init_app(self, app, db, log_model=None):
        """Configure loggers, handlers and JSON error pages for ``app``"""
        self.app = app
        self.db = db
        self.LogEvent = log_model

        log_dir = app.config.get('LOG_DIR') or os.path.join(app.root_path, 'logs')
        os.makedirs(log_dir, exist_ok=True)

        # Main application logger; module loggers ('secure_rounds_app.*') propagate here
        self.logger = logging.getLogger(APP_LOGGER_NAME)
        self.logger.setLevel(logging.INFO)

        # Security logger for sensitive events
        self.security_logger = logging.getLogger(SECURITY_LOGGER_NAME)
        self.security_logger.setLevel(logging.WARNING)

        # Re-initialization (tests, reloader) must not stack handlers
        for existing in (self.logger, self.security_logger):
            for handler in list(existing.handlers):
                existing.removeHandler(handler)
                handler.close()

        self._setup_file_handlers(log_dir)
        self._setup_console_handler()
        self._register_error_handlers()

        app.logger_handler = self

    def _setup_file_handlers(self, log_dir):
        """Attach one rotating file per entry in LOG_FILES"""
        formatter = logging.Formatter(
            '%(asctime)s | %(levelname)s | %(name)s | %(message)s',
            datefmt='%Y-%m-%d %H:%M:%S'
        )
        destinations = {'app': self.logger, 'security': self.security_logger}

        for filename, max_bytes, backup_count, level, destination in LOG_FILES:
            handler = logging.handlers.RotatingFileHandler(
                os.path.join(log_dir, filename),
                maxBytes=max_bytes,
                backupCount=backup_count,
                encoding='utf-8'
            )
            handler.setLevel(level)
            handler.setFormatter(formatter)
            destinations[destination].addHandler(handler)

    def _setup_console_handler(self):
        """Echo application logs to stderr in debug mode"""
        if not self.app.debug:
            return

        stream = logging.StreamHandler()
        stream.setLevel(logging.DEBUG)
        stream.setFormatter(logging.Formatter('%(asctime)s [%(levelname)s] %(name)s: %(message)s', datefmt='%H:%M:%S'))
        self.logger.addHandler(stream)

    def _register_error_handlers(self):
        """JSON error responses; 500s are logged with their traceback"""

        @self.app.errorhandler(500)
        def handle_internal_error(error):
            """Log internal server errors; never expose details to the client"""
            self.log_flask_error(
                error_type="InternalServerError",
                error_message=str(error),
                stack_trace=traceback.format_exc()
            )
            return jsonify({
                'success': False,
                'message': 'Something went wrong. Please try again later.'
            }), 500

        @self.app.errorhandler(404)
        def handle_not_found(error):
            return jsonify({
                'success': False,
                'message': 'Resource not found.'
            }), 404

        @self.app.errorhandler(405)
        def handle_method_not_allowed(error):
            return jsonify({
                'success': False,
                'message': 'Method not allowed.'
            }), 405

    def _get_request_context(self):
        """Request metadata for log entries, empty outside a request"""
        if not has_request_context():
            return {}

        return {
            'ip_address': request.environ.get('HTTP_X_FORWARDED_FOR', request.remote_addr),
            'user_agent': request.headers.get('User-Agent', ''),
            'request_path': request.path,
            'request_method': request.method,
            'user_id': session.get('user_id'),
            'username': session.get('username')
        }

    def _log_to_database(self, event_type, event_category, description, event_data=None, severity='INFO'):
        """Log critical events to the log_events table"""
        if self.db is None or self.LogEvent is None:
            return

        try:
            context = self._get_request_context()

            self.db.session.add(self.LogEvent(
                event_id=str(uuid.uuid4()),
                event_type=event_type,
                event_category=event_category,
                user_id=context.get('user_id'),
                username=context.get('username'),
                event_description=description,
                event_data=event_data,
                ip_address=context.get('ip_address'),
                user_agent=context.get('user_agent'),
                request_path=context.get('request_path'),
                severity_level=severity
            ))
            self.db.session.commit()

        except Exception as e:
            # Logging never fails the request
            self.logger.error(f"Database logging error: {e}")
            try:
                self.db.session.rollback()
            except Exception:
                pass

    # AUTHENTICATION

    def log_user_login(self, user_id, username, success=True, failure_reason=None):
        """Log user login attempts"""
        context = self._get_request_context()

        event_data = {
            'user_id': user_id,
            'username': username,
            'success': success,
            'login_timestamp': datetime.now().isoformat(),
            'ip_address': context.get('ip_address'),
            'user_agent': context.get('user_agent')
        }

        if failure_reason:
            event_data['failure_reason'] = failure_reason

        if success:
            self.logger.info(json.dumps({'event': 'user_login_success', 'data': event_data}))
            self._log_to_database(
                event_type='user_login_success',
                event_category='authentication',
                description=f"User login successful: {username} (ID: {user_id})",
                event_data=event_data
            )
        else:
            self.security_logger.warning(json.dumps({'event': 'user_login_failure', 'data': event_data}))
            self._log_to_database(
                event_type='user_login_failure',
                event_category='security',
                description=f"User login failed: {username} - {failure_reason}",
                event_data=event_data,
                severity='WARNING'
            )

    def log_user_logout(self, user_id, username, session_duration=None):
        """Log a logout; duration is in minutes"""
        event_data = {
            'user_id': user_id,
            'username': username,
            'logout_timestamp': datetime.now().isoformat(),
            'session_duration_minutes': session_duration
        }

        self.logger.info(json.dumps({'event': 'user_logout', 'data': event_data}))

    # SECURITY ROUND LOGGING METHODS

    def log_round_submitted(self, round_id, user_id, location, has_coordinates):
        """Log an accepted checkpoint submission"""
        event_data = {
            'round_id': round_id,
            'user_id': user_id,
            'location': location,
            'has_coordinates': has_coordinates,
            'submitted_timestamp': datetime.now().isoformat()
        }

        self.logger.info(json.dumps({'event': 'round_submitted', 'data': event_data}))
        self._log_to_database(
            event_type='round_submitted',
            event_category='security_rounds',
            description=f"Security round {round_id} submitted by user {user_id} at {location}",
            event_data=event_data
        )

    def log_round_rejected(self, user_id, errors):
        """Log a refused submission (validation only, nothing was written)"""
        self.logger.info(json.dumps({
            'event': 'round_rejected',
            'data': {'user_id': user_id, 'errors': list(errors)}
        }))

    # ROLE LOGGING METHODS

    def log_role_changed(self, performed_by, target_user, old_role, new_role):
        """Log a successful role mutation"""
        event_data = {
            'performed_by': performed_by,
            'target_user': target_user,
            'old_role': old_role,
            'new_role': new_role,
            'changed_timestamp': datetime.now().isoformat()
        }

        message = f"Role changed for user {target_user}: {old_role} -> {new_role} by user {performed_by}"
        self.security_logger.warning(json.dumps({'event': 'role_changed', 'data': event_data}))
        self._log_to_database(
            event_type='role_changed',
            event_category='role_management',
            description=message,
            event_data=event_data,
            severity='WARNING'
        )

    # ERROR LOGGING METHODS

    def log_database_error(self, operation, error, query=None):
        """Log database transaction errors"""
        event_data = {
            'operation': operation,
            'error_type': type(error).__name__,
            'error_message': str(error),
            'error_timestamp': datetime.now().isoformat()
        }

        if query:
            event_data['query'] = query[:1000]

        self.logger.error(json.dumps({'event': 'database_error', 'data': event_data}))
        self._log_to_database(
            event_type='database_error',
            event_category='database',
            description=f"Database error in {operation}: {error}",
            event_data=event_data,
            severity='ERROR'
        )

    def log_flask_error(self, error_type, error_message, stack_trace=None):
        """Log an unhandled application error"""
        event_data = {
            'error_type': error_type,
            'error_message': error_message,
            'error_timestamp': datetime.now().isoformat(),
            'request_context': self._get_request_context()
        }

        if stack_trace:
            event_data['stack_trace'] = stack_trace

        self.logger.error(json.dumps({'event': 'flask_error', 'data': event_data}))
        self._log_to_database(
            event_type='flask_error',
            event_category='application',
            description=f"Flask error: {error_type} - {error_message}",
            event_data=event_data,
            severity='ERROR'
        )

    # SECURITY EVENTS

    def log_security_event(self, event_type, description, severity='MEDIUM', additional_data=None):
        """Log to the security log and the log_events table"""
        event_data = {
            'security_event_type': event_type,
            'severity': severity,
            'event_timestamp': datetime.now().isoformat(),
            'request_context': self._get_request_context()
        }

        if additional_data:
            event_data['additional_data'] = additional_data

        self.security_logger.warning(json.dumps({'event': 'security_event', 'data': event_data}))
        self._log_to_database(
            event_type='security_event',
            event_category='security',
            description=f"Security event: {event_type} - {description}",
            event_data=event_data,
            severity='WARNING'
        )

    # MAINTENANCE

    def log_cleanup(self, table_name, deleted_count, cutoff_date):
        """Log a retention sweep"""
        self.logger.info(json.dumps({
            'event': 'retention_cleanup',
            'data': {
                'table': table_name,
                'deleted_count': deleted_count,
                'cutoff_date': cutoff_date.isoformat()
            }
        }))

    def cleanup_old_logs(self, days_to_keep=90):
        """Delete non-critical log_events rows older than ``days_to_keep`` days"""
        if self.db is None or self.LogEvent is None:
            return 0

        try:
            cutoff_date = datetime.utcnow() - timedelta(days=days_to_keep)
            deleted_count = (self.db.session.query(self.LogEvent)
                             .filter(self.LogEvent.created_timestamp < cutoff_date,
                                     self.LogEvent.severity_level.notin_(['ERROR', 'CRITICAL', 'HIGH']))
                             .delete(synchronize_session=False))
            self.db.session.commit()

            self.log_cleanup('log_events', deleted_count, cutoff_date)
            return deleted_count

        except Exception as e:
            self.db.session.rollback()
            self.logger.error(f"Error in cleanup_old_logs: {e}")
            return 0

# VIEW DECORATORS

def log_database_operations(operation_name):
    """Decorator to log database errors raised by a view, then re-raise"""
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            try:
                return f(*args, **kwargs)
            except HTTPException:
                raise
            except Exception as e:
                logger_handler = getattr(current_app, 'logger_handler', None)
                if logger_handler:
                    logger_handler.db.session.rollback()
                    logger_handler.log_database_error(operation=operation_name, error=e)
                raise

        return decorated_function
    return decorator

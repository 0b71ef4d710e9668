"""
Access Policy for SecureRounds
==============================

Row-level authorization for security rounds, role assignments and the role
audit log.

The ``can_*`` functions are pure: they take the requester identity, the
requester's role assignment (or None) and the row, and never touch the
database. ``AccessControl`` wraps them around the SQLAlchemy session:
every read and write of rounds and roles in the application goes through
it, and every role mutation appends its audit entry in the same
transaction.

Role lookups use ``get_user_role``, a plain read of ``user_roles`` that
does not evaluate any policy, so checking a role can never recurse into
the policy that protects the role table.
"""

from datetime import datetime

from sqlalchemy import and_, or_, true

from utils.input_security import sanitize_input
from utils.validation import DEFAULT_ROLE, Role, has_admin_privileges, has_supervisor_access

SELF_ROLE_CHANGE_MESSAGE = 'Cannot modify own role'
ADMIN_REQUIRED_MESSAGE = 'Admin privileges required'
AUTH_REQUIRED_MESSAGE = 'Authentication required'

# Own-row update: field name -> max length
ROUND_UPDATABLE_FIELDS = {
    'location': 160,
    'guard_name': 100,
    'employee_id': 50,
}


class PermissionDenied(Exception):
    """Raised when the access policy refuses an operation"""


class StaleRoleAssignment(Exception):
    """Raised when a role assignment changed since the caller last read it"""


def _field(row, name):
    if isinstance(row, dict):
        return row.get(name)
    return getattr(row, name, None)


def role_of(assignment):
    """Role held by an assignment row, or None for 'no role'"""
    if assignment is None:
        return None
    return Role.parse(_field(assignment, 'role'))


def can_read_round(identity, assignment, row):
    """
    Owner always; managers and admins when the row's location is in their
    ``location_access`` list or the list is None
    """
    if identity is None or row is None:
        return False

    if _field(row, 'user_id') == identity:
        return True

    if not has_supervisor_access(role_of(assignment)):
        return False

    location_access = _field(assignment, 'location_access')
    return location_access is None or _field(row, 'location') in location_access


def can_write_round(identity, row):
    """Insert, update and delete are limited to the row owner"""
    return identity is not None and row is not None and _field(row, 'user_id') == identity


def can_read_role(identity, assignment, target_identity):
    """Everyone may read their own role; admins may read any role"""
    if identity is None:
        return False
    return target_identity == identity or has_admin_privileges(role_of(assignment))


def role_write_denial(identity, assignment, target_identity):
    """
    Reason a role write would be refused, or None if it is allowed

    Nobody may change their own role assignment, whatever role they hold.
    """
    if identity is None:
        return AUTH_REQUIRED_MESSAGE
    if target_identity == identity:
        return SELF_ROLE_CHANGE_MESSAGE
    if not has_admin_privileges(role_of(assignment)):
        return ADMIN_REQUIRED_MESSAGE
    return None


def can_write_role(identity, assignment, target_identity):
    return role_write_denial(identity, assignment, target_identity) is None


def can_read_audit(assignment):
    return has_admin_privileges(role_of(assignment))


def _normalize_locations(locations):
    if locations is None:
        return None
    if isinstance(locations, str) or not isinstance(locations, (list, tuple, set)):
        raise ValueError('location_access must be a list of locations or null')

    cleaned = []
    for location in locations:
        value = sanitize_input(location)
        if value and value not in cleaned:
            cleaned.append(value)
    return cleaned


class AccessControl:
    """
    Policy-enforcing access to rounds, roles and the role audit log
    """

    def __init__(self, db, user_model, round_model, role_model, audit_model, logger_handler=None):
        self.db = db
        self.User = user_model
        self.SecurityRound = round_model
        self.UserRole = role_model
        self.RoleAuditLog = audit_model
        self.logger_handler = logger_handler

    # ROLE LOOKUP

    def get_user_role(self, identity, refresh=False):
        """
        Role assignment row for an identity, or None. Plain read, no policy evaluation.

        ``refresh`` reloads the row from the database even when the session
        already holds it, for long-lived readers such as the round stream.
        """
        if identity is None:
            return None
        query = self.db.session.query(self.UserRole).filter_by(user_id=identity)
        if refresh:
            query = query.populate_existing()
        return query.first()

    def get_role(self, identity):
        return role_of(self.get_user_role(identity))

    def read_role(self, identity, target_identity):
        assignment = self.get_user_role(identity)
        if not can_read_role(identity, assignment, target_identity):
            raise PermissionDenied('Cannot view this role assignment')
        return self.get_user_role(target_identity)

    # ROLE MUTATIONS

    def _append_audit(self, actor, target, old_role, new_role, action):
        """Audit hook; runs inside the mutation's transaction"""
        self.db.session.add(self.RoleAuditLog(
            performed_by=actor,
            target_user=target,
            old_role=old_role,
            new_role=new_role,
            action=action,
            timestamp=datetime.utcnow()
        ))

    def _authorize_role_write(self, caller_id, target_id):
        denial = role_write_denial(caller_id, self.get_user_role(caller_id), target_id)
        if denial:
            raise PermissionDenied(denial)

    def _log_role_failure(self, operation, caller_id, target_id, error):
        if not self.logger_handler:
            return
        if isinstance(error, PermissionDenied):
            self.logger_handler.log_security_event(
                event_type='role_change_denied',
                description=f'User {caller_id} denied {operation} on user {target_id}: {error}',
                severity='HIGH',
                additional_data={'caller_id': caller_id, 'target_id': target_id, 'reason': str(error)}
            )
        elif isinstance(error, (ValueError, LookupError, StaleRoleAssignment)):
            self.logger_handler.logger.warning(f'{operation} rejected for user {target_id}: {error}')
        else:
            self.logger_handler.log_database_error(operation, error)

    def change_role(self, caller_id, target_id, new_role, expected_version=None):
        """
        Privileged role change

        Steps: caller must be admin, target must not be the caller, then the
        role is applied together with its audit entry. Never raises; returns
        False on any failure after logging it.

        Args:
            caller_id (int): Identity performing the change
            target_id (int): Identity whose role changes
            new_role (str | Role): Role to assign
            expected_version (int): Version the caller last read; a mismatch fails the change

        Returns:
            bool: True if the role was changed
        """
        try:
            role = Role.parse(new_role)
            if role is None:
                raise ValueError(f'Invalid role: {new_role}')

            self._authorize_role_write(caller_id, target_id)

            if self.db.session.get(self.User, target_id) is None:
                raise LookupError(f'User {target_id} not found')

            assignment = self.get_user_role(target_id)
            if expected_version is not None and (assignment is None or assignment.version != expected_version):
                raise StaleRoleAssignment(f'Role assignment for user {target_id} was modified concurrently')

            if assignment is None:
                self.db.session.add(self.UserRole(user_id=target_id, role=role.value))
                self._append_audit(caller_id, target_id, None, role.value, 'INSERT')
                old_role = None
            else:
                old_role = assignment.role
                assignment.role = role.value
                assignment.updated_at = datetime.utcnow()
                self._append_audit(caller_id, target_id, old_role, role.value, 'UPDATE')

            self.db.session.commit()

            if self.logger_handler:
                self.logger_handler.log_role_changed(caller_id, target_id, old_role, role.value)
            return True

        except Exception as e:
            self.db.session.rollback()
            self._log_role_failure('change_role', caller_id, target_id, e)
            return False

    def set_location_access(self, caller_id, target_id, locations):
        """Restrict (list) or lift (None) a user's location scope; same write policy as role changes"""
        try:
            self._authorize_role_write(caller_id, target_id)
            cleaned = _normalize_locations(locations)

            assignment = self.get_user_role(target_id)
            if assignment is None:
                raise LookupError(f'User {target_id} has no role assignment')

            assignment.location_access = cleaned
            assignment.updated_at = datetime.utcnow()
            self._append_audit(caller_id, target_id, assignment.role, assignment.role, 'UPDATE')
            self.db.session.commit()

            if self.logger_handler:
                self.logger_handler.logger.info(
                    f'User {caller_id} set location access for user {target_id}: {cleaned}'
                )
            return True

        except Exception as e:
            self.db.session.rollback()
            self._log_role_failure('set_location_access', caller_id, target_id, e)
            return False

    def revoke_role(self, caller_id, target_id):
        """Delete another user's role assignment, leaving them with no role"""
        try:
            self._authorize_role_write(caller_id, target_id)

            assignment = self.get_user_role(target_id)
            if assignment is None:
                raise LookupError(f'User {target_id} has no role assignment')

            old_role = assignment.role
            self.db.session.delete(assignment)
            self._append_audit(caller_id, target_id, old_role, None, 'DELETE')
            self.db.session.commit()

            if self.logger_handler:
                self.logger_handler.log_role_changed(caller_id, target_id, old_role, None)
            return True

        except Exception as e:
            self.db.session.rollback()
            self._log_role_failure('revoke_role', caller_id, target_id, e)
            return False

    def assign_default_role(self, identity, actor_id=None):
        """
        Give a newly created identity the default role if it has none

        Runs with system privileges (no policy check). Failures are logged
        and swallowed so identity creation is never blocked.

        Returns:
            bool: True if a role row was created
        """
        try:
            if self.get_user_role(identity) is not None:
                return False

            self.db.session.add(self.UserRole(user_id=identity, role=DEFAULT_ROLE.value))
            self._append_audit(actor_id, identity, None, DEFAULT_ROLE.value, 'INSERT')
            self.db.session.commit()
            return True

        except Exception as e:
            self.db.session.rollback()
            if self.logger_handler:
                self.logger_handler.log_database_error('assign_default_role', e)
            return False

    def bootstrap_role(self, identity, role):
        """
        Seed a role during initialization (e.g. the first administrator)

        System path, not reachable from the API.
        """
        assignment = self.get_user_role(identity)
        old_role = assignment.role if assignment else None
        if assignment is None:
            self.db.session.add(self.UserRole(user_id=identity, role=role.value))
            self._append_audit(None, identity, None, role.value, 'INSERT')
        elif assignment.role != role.value:
            assignment.role = role.value
            self._append_audit(None, identity, old_role, role.value, 'UPDATE')
        self.db.session.commit()

    # AUDIT LOG

    def visible_audit_entries(self, identity, limit=200):
        if not can_read_audit(self.get_user_role(identity)):
            raise PermissionDenied(ADMIN_REQUIRED_MESSAGE)
        return (self.db.session.query(self.RoleAuditLog)
                .order_by(self.RoleAuditLog.timestamp.desc(), self.RoleAuditLog.id.desc())
                .limit(limit)
                .all())

    # SECURITY ROUNDS

    def _visibility_clause(self, identity, assignment):
        SecurityRound = self.SecurityRound
        own = SecurityRound.user_id == identity

        if not has_supervisor_access(role_of(assignment)):
            return own

        if assignment.location_access is None:
            return true()
        return or_(own, SecurityRound.location.in_(list(assignment.location_access)))

    def visible_rounds(self, identity, filters=None):
        """
        Rounds the identity may read, newest first

        Filters: location / guard_name (case-insensitive substring),
        date_from / date_to (datetime, on created_at), completion
        ('complete' or 'incomplete').
        """
        if identity is None:
            raise PermissionDenied(AUTH_REQUIRED_MESSAGE)

        SecurityRound = self.SecurityRound
        assignment = self.get_user_role(identity)
        query = self.db.session.query(SecurityRound).filter(self._visibility_clause(identity, assignment))

        filters = filters or {}
        if filters.get('location'):
            query = query.filter(SecurityRound.location.ilike(f"%{filters['location']}%"))
        if filters.get('guard_name'):
            query = query.filter(SecurityRound.guard_name.ilike(f"%{filters['guard_name']}%"))
        if filters.get('date_from'):
            query = query.filter(SecurityRound.created_at >= filters['date_from'])
        if filters.get('date_to'):
            query = query.filter(SecurityRound.created_at <= filters['date_to'])

        all_corners = and_(*[
            getattr(SecurityRound, f'qr_code_corner_{index}').isnot(None) for index in range(1, 5)
        ])
        if filters.get('completion') == 'complete':
            query = query.filter(all_corners)
        elif filters.get('completion') == 'incomplete':
            query = query.filter(~all_corners)

        return query.order_by(SecurityRound.created_at.desc(), SecurityRound.id.desc()).all()

    def get_visible_round(self, identity, round_id):
        """Round by id if the identity may read it, else None (no existence leak)"""
        row = self.db.session.get(self.SecurityRound, round_id)
        if row is None or not can_read_round(identity, self.get_user_role(identity), row):
            return None
        return row

    def insert_round(self, identity, record):
        """
        Insert a round; the record's owner must be the requesting identity

        Args:
            identity (int): Authenticated requester
            record (dict): Column values including user_id

        Returns:
            SecurityRound: The committed row
        """
        if not can_write_round(identity, record):
            raise PermissionDenied('Rounds can only be submitted for your own account')

        row = self.SecurityRound(**record)
        self.db.session.add(row)
        self.db.session.commit()
        return row

    def update_own_round(self, identity, round_id, changes):
        row = self.db.session.get(self.SecurityRound, round_id)
        if row is None or not can_write_round(identity, row):
            raise PermissionDenied('Cannot modify this round')

        forbidden = sorted(set(changes) - set(ROUND_UPDATABLE_FIELDS))
        if forbidden:
            raise ValueError(f'Fields cannot be modified: {", ".join(forbidden)}')

        errors = []
        cleaned = {}
        for name, value in changes.items():
            max_length = ROUND_UPDATABLE_FIELDS[name]
            sanitized = sanitize_input(value)
            if not sanitized or len(str(value)) > max_length:
                errors.append(f'{name} is required and must be at most {max_length} characters')
            cleaned[name] = sanitized
        if errors:
            raise ValueError('; '.join(errors))

        for name, value in cleaned.items():
            setattr(row, name, value)
        self.db.session.commit()
        return row

    def delete_own_round(self, identity, round_id):
        """Delete an owned round; returns the photo path so the caller can remove the file"""
        row = self.db.session.get(self.SecurityRound, round_id)
        if row is None or not can_write_round(identity, row):
            raise PermissionDenied('Cannot delete this round')

        photo_url = row.photo_url
        self.db.session.delete(row)
        self.db.session.commit()
        return photo_url

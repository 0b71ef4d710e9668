"""
Role Models for SecureRounds
===========================

``UserRole`` holds the single role assignment of an identity, optionally
restricted to a list of locations for manager-level reads.
``RoleAuditLog`` is the append-only trail written on every role mutation.
"""

from datetime import datetime
from . import base

class UserRole(base.db.Model):
    """
    Role assignment for one user. ``location_access`` of None means the
    holder may read rounds from every location.
    """
    __tablename__ = 'user_roles'

    id = base.db.Column(base.db.Integer, primary_key=True)
    user_id = base.db.Column(base.db.Integer, base.db.ForeignKey('users.id', ondelete='CASCADE'), unique=True, nullable=False)
    role = base.db.Column(base.db.String(20), nullable=False, default='security_guard')
    location_access = base.db.Column(base.db.JSON, nullable=True)
    version = base.db.Column(base.db.Integer, nullable=False)
    created_at = base.db.Column(base.db.DateTime, nullable=False, default=datetime.utcnow)
    updated_at = base.db.Column(base.db.DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Concurrent updates by two admins fail with StaleDataError instead of
    # silently overwriting each other.
    __mapper_args__ = {'version_id_col': version}

    user = base.db.relationship('User', backref=base.db.backref('role_assignment', uselist=False, passive_deletes=True))

    def to_dict(self):
        return {
            'user_id': self.user_id,
            'role': self.role,
            'location_access': self.location_access,
            'version': self.version,
            'updated_at': self.updated_at.isoformat() if self.updated_at else None,
        }

    def __repr__(self):
        return f'<UserRole user_id={self.user_id} role={self.role}>'


class RoleAuditLog(base.db.Model):
    """Append-only record of role assignment changes"""
    __tablename__ = 'role_audit_log'

    id = base.db.Column(base.db.Integer, primary_key=True)
    performed_by = base.db.Column(base.db.Integer, nullable=True)  # None when the system assigned the role
    target_user = base.db.Column(base.db.Integer, nullable=False, index=True)
    old_role = base.db.Column(base.db.String(20), nullable=True)
    new_role = base.db.Column(base.db.String(20), nullable=True)
    action = base.db.Column(base.db.String(10), nullable=False)  # INSERT, UPDATE, DELETE
    timestamp = base.db.Column(base.db.DateTime, nullable=False, default=datetime.utcnow, index=True)

    def to_dict(self):
        return {
            'id': self.id,
            'performed_by': self.performed_by,
            'target_user': self.target_user,
            'old_role': self.old_role,
            'new_role': self.new_role,
            'action': self.action,
            'timestamp': self.timestamp.isoformat() if self.timestamp else None,
        }

    def __repr__(self):
        return f'<RoleAuditLog {self.action} target={self.target_user} by={self.performed_by}>'

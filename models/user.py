"""
User Model for SecureRounds
===========================

System identities (guards, managers, administrators). The role itself lives
in ``user_roles``; this table only carries the login identity and profile.
"""

from werkzeug.security import generate_password_hash, check_password_hash
from datetime import datetime

from . import base

class User(base.db.Model):
    """
    User model holding login credentials and the guard profile
    """
    __tablename__ = 'users'

    id = base.db.Column(base.db.Integer, primary_key=True)
    full_name = base.db.Column(base.db.String(100), nullable=False)
    email = base.db.Column(base.db.String(120), unique=True, nullable=False)
    username = base.db.Column(base.db.String(80), unique=True, nullable=False)
    employee_id = base.db.Column(base.db.String(50), nullable=True)
    password_hash = base.db.Column(base.db.String(255), nullable=False)
    created_by = base.db.Column(base.db.Integer, base.db.ForeignKey('users.id'), nullable=True)
    created_date = base.db.Column(base.db.DateTime, default=datetime.utcnow)
    active_status = base.db.Column(base.db.Boolean, default=True)
    last_login_date = base.db.Column(base.db.DateTime, nullable=True)

    def set_password(self, password):
        """Hash and set user password"""
        self.password_hash = generate_password_hash(password)

    def check_password(self, password):
        """Verify user password"""
        return check_password_hash(self.password_hash, password)

    def to_dict(self):
        return {
            'id': self.id,
            'full_name': self.full_name,
            'email': self.email,
            'username': self.username,
            'employee_id': self.employee_id,
            'active_status': self.active_status,
            'created_date': self.created_date.isoformat() if self.created_date else None,
        }

    def __repr__(self):
        return f'<User {self.username}>'

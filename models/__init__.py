"""
Models package for SecureRounds
===============================

SQLAlchemy models for patrol rounds, users, role assignments and the
role audit trail. Models are bound to the application's database instance
through ``set_db``.
"""

from . import base

def set_db(database):
    """Set the database instance for all models"""
    base.db = database

    # Now import all models (they will use base.db)
    from .user import User
    from .security_round import SecurityRound
    from .roles import UserRole, RoleAuditLog
    from .log_event import LogEvent

    return User, SecurityRound, UserRole, RoleAuditLog, LogEvent

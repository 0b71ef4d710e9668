"""
Log Event Model for SecureRounds
================================

Critical application events mirrored to the database by ``AppLogger``.
"""

from datetime import datetime
from . import base

class LogEvent(base.db.Model):
    __tablename__ = 'log_events'

    id = base.db.Column(base.db.Integer, primary_key=True)
    event_id = base.db.Column(base.db.String(36), unique=True, nullable=False)
    event_type = base.db.Column(base.db.String(50), nullable=False, index=True)
    event_category = base.db.Column(base.db.String(30), nullable=False, index=True)
    user_id = base.db.Column(base.db.Integer, nullable=True, index=True)
    username = base.db.Column(base.db.String(80), nullable=True)
    event_description = base.db.Column(base.db.Text, nullable=False)
    event_data = base.db.Column(base.db.JSON, nullable=True)
    ip_address = base.db.Column(base.db.String(45), nullable=True)
    user_agent = base.db.Column(base.db.Text, nullable=True)
    request_path = base.db.Column(base.db.String(500), nullable=True)
    severity_level = base.db.Column(base.db.String(20), default='INFO', index=True)
    created_timestamp = base.db.Column(base.db.DateTime, default=datetime.utcnow, index=True)

    def __repr__(self):
        return f'<LogEvent {self.event_type} {self.severity_level}>'

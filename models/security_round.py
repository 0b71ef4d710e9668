"""
Security Round Model for SecureRounds
=====================================

One row per accepted checkpoint submission: four corner QR payloads, the
guard's selfie and the optional GPS fix taken with it.
"""

from datetime import datetime
from . import base

CORNER_COUNT = 4

class SecurityRound(base.db.Model):
    """Patrol round submitted by a guard"""
    __tablename__ = 'security_rounds'

    id = base.db.Column(base.db.Integer, primary_key=True)
    user_id = base.db.Column(base.db.Integer, base.db.ForeignKey('users.id', ondelete='CASCADE'), nullable=False, index=True)
    location = base.db.Column(base.db.String(160), nullable=False, index=True)
    guard_name = base.db.Column(base.db.String(100), nullable=False)
    employee_id = base.db.Column(base.db.String(50), nullable=False)
    qr_code_corner_1 = base.db.Column(base.db.String(500), nullable=True)
    qr_code_corner_2 = base.db.Column(base.db.String(500), nullable=True)
    qr_code_corner_3 = base.db.Column(base.db.String(500), nullable=True)
    qr_code_corner_4 = base.db.Column(base.db.String(500), nullable=True)
    photo_url = base.db.Column(base.db.String(255), nullable=True)
    gps_coordinates = base.db.Column(base.db.JSON, nullable=True)  # {"lat": .., "lng": ..}
    timestamp = base.db.Column(base.db.DateTime, nullable=False, default=datetime.utcnow)
    created_at = base.db.Column(base.db.DateTime, nullable=False, default=datetime.utcnow, index=True)

    owner = base.db.relationship('User', backref=base.db.backref('security_rounds', lazy='dynamic', passive_deletes=True))

    @property
    def corners(self):
        return [
            self.qr_code_corner_1,
            self.qr_code_corner_2,
            self.qr_code_corner_3,
            self.qr_code_corner_4,
        ]

    @property
    def corners_scanned(self):
        return len([corner for corner in self.corners if corner])

    @property
    def is_complete(self):
        """Check if all four corners were scanned"""
        return self.corners_scanned == CORNER_COUNT

    @property
    def has_location_data(self):
        """Check if this round has GPS coordinates"""
        return bool(self.gps_coordinates)

    def to_dict(self):
        return {
            'id': self.id,
            'user_id': self.user_id,
            'location': self.location,
            'guard_name': self.guard_name,
            'employee_id': self.employee_id,
            'qr_code_corner_1': self.qr_code_corner_1,
            'qr_code_corner_2': self.qr_code_corner_2,
            'qr_code_corner_3': self.qr_code_corner_3,
            'qr_code_corner_4': self.qr_code_corner_4,
            'has_photo': bool(self.photo_url),
            'gps_coordinates': self.gps_coordinates,
            'timestamp': self.timestamp.isoformat() if self.timestamp else None,
            'created_at': self.created_at.isoformat() if self.created_at else None,
            'completion': {
                'is_complete': self.is_complete,
                'count': self.corners_scanned,
                'total': CORNER_COUNT,
            },
        }

    def __repr__(self):
        return f'<SecurityRound {self.employee_id} at {self.location} on {self.timestamp}>'

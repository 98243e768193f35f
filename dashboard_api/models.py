from dashboard_api.database import db
from datetime import datetime, timezone
import uuid

FLIGHT_STATUSES = ('SCHEDULED', 'BOARDING', 'DEPARTED', 'DELAYED', 'CANCELLED')
ANNOUNCEMENT_TYPES = ('1st', '2nd', 'Boarding', 'LastCall')


def utc_now():
    # Stored naive, always UTC
    return datetime.now(timezone.utc).replace(tzinfo=None)


def iso_utc(value):
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.isoformat()


def new_id():
    return str(uuid.uuid4())


class Flight(db.Model):
    __tablename__ = 'flights'

    id = db.Column(db.String(36), primary_key=True, default=new_id)
    flight_number = db.Column(db.String(10), nullable=False)
    airline_code = db.Column(db.String(3), nullable=False)
    origin_airport = db.Column(db.String(4), nullable=False)
    destination_airport = db.Column(db.String(4), nullable=False)
    scheduled_time = db.Column(db.DateTime, nullable=False, index=True)
    actual_time = db.Column(db.DateTime, nullable=True)
    status = db.Column(db.String(10), nullable=False, default='SCHEDULED')
    gate = db.Column(db.String(10), nullable=True)
    terminal = db.Column(db.String(10), nullable=True)
    aircraft_type = db.Column(db.String(20), nullable=True)
    airport_code = db.Column(db.String(4), nullable=False, index=True)

    announcements = db.relationship('Announcement', back_populates='flight', cascade='all, delete-orphan')

    def to_dict(self):
        return {
            'id': self.id,
            'flight_number': self.flight_number,
            'airline_code': self.airline_code,
            'origin_airport': self.origin_airport,
            'destination_airport': self.destination_airport,
            'scheduled_time': iso_utc(self.scheduled_time),
            'actual_time': iso_utc(self.actual_time),
            'status': self.status,
            'gate': self.gate,
            'terminal': self.terminal,
            'aircraft_type': self.aircraft_type,
            'airport_code': self.airport_code
        }


class Announcement(db.Model):
    __tablename__ = 'announcements'

    id = db.Column(db.String(36), primary_key=True, default=new_id)
    flight_id = db.Column(db.String(36), db.ForeignKey('flights.id', ondelete='CASCADE'), nullable=False)
    announcement_type = db.Column(db.String(10), nullable=False)
    played_at = db.Column(db.DateTime, nullable=False, default=utc_now, index=True)
    played_by = db.Column(db.String(36), nullable=True)  # NULL for automatic playback
    airport_code = db.Column(db.String(4), nullable=False, index=True)

    flight = db.relationship('Flight', back_populates='announcements')

    # At most one playback per (flight, type), whichever station plays it
    __table_args__ = (db.UniqueConstraint('flight_id', 'announcement_type', name='unique_flight_announcement'),)

    def to_dict(self):
        return {
            'id': self.id,
            'flight_id': self.flight_id,
            'announcement_type': self.announcement_type,
            'played_at': iso_utc(self.played_at),
            'played_by': self.played_by,
            'airport_code': self.airport_code,
            'flight_number': self.flight.flight_number if self.flight else None,
            'destination_airport': self.flight.destination_airport if self.flight else None
        }

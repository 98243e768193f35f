from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional


class FlightStatus(Enum):
    SCHEDULED = 'SCHEDULED'
    BOARDING = 'BOARDING'
    DEPARTED = 'DEPARTED'
    DELAYED = 'DELAYED'
    CANCELLED = 'CANCELLED'


# Flights in these states never get new announcements
CLOSED_STATUSES = (FlightStatus.DEPARTED, FlightStatus.CANCELLED)


def parse_instant(value) -> Optional[datetime]:
    if value is None or value == '':
        return None
    if isinstance(value, datetime):
        dt = value
    else:
        dt = datetime.fromisoformat(str(value).replace('Z', '+00:00'))
    # Naive instants are UTC
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


@dataclass
class Flight:
    id: str
    flight_number: str
    destination_airport: str
    scheduled_time: datetime
    gate: str
    airport_code: str
    status: FlightStatus = FlightStatus.SCHEDULED
    airline_code: str = ''
    origin_airport: str = ''
    terminal: str = ''
    aircraft_type: str = ''
    actual_time: Optional[datetime] = None

    @classmethod
    def from_dict(cls, data):
        return cls(
            id=str(data['id']),
            flight_number=data.get('flight_number') or '',
            destination_airport=data.get('destination_airport') or '',
            scheduled_time=parse_instant(data['scheduled_time']),
            gate=data.get('gate') or '',
            airport_code=data.get('airport_code') or '',
            status=FlightStatus(data.get('status') or 'SCHEDULED'),
            airline_code=data.get('airline_code') or '',
            origin_airport=data.get('origin_airport') or '',
            terminal=data.get('terminal') or '',
            aircraft_type=data.get('aircraft_type') or '',
            actual_time=parse_instant(data.get('actual_time'))
        )

    @property
    def is_open(self):
        return self.status not in CLOSED_STATUSES

    def to_dict(self):
        return {
            'id': self.id,
            'flight_number': self.flight_number,
            'airline_code': self.airline_code,
            'origin_airport': self.origin_airport,
            'destination_airport': self.destination_airport,
            'scheduled_time': self.scheduled_time.isoformat(),
            'actual_time': self.actual_time.isoformat() if self.actual_time else None,
            'status': self.status.value,
            'gate': self.gate,
            'terminal': self.terminal,
            'aircraft_type': self.aircraft_type,
            'airport_code': self.airport_code
        }


@dataclass
class Announcement:
    id: str
    flight_id: str
    announcement_type: str
    played_at: Optional[datetime]
    airport_code: str
    played_by: Optional[str] = None
    flight_number: Optional[str] = None
    destination_airport: Optional[str] = None

    @classmethod
    def from_dict(cls, data):
        return cls(
            id=str(data.get('id')),
            flight_id=str(data['flight_id']),
            announcement_type=data['announcement_type'],
            played_at=parse_instant(data.get('played_at')),
            airport_code=data.get('airport_code') or '',
            played_by=data.get('played_by'),
            flight_number=data.get('flight_number'),
            destination_airport=data.get('destination_airport')
        )

    def to_dict(self):
        return {
            'id': self.id,
            'flight_id': self.flight_id,
            'announcement_type': self.announcement_type,
            'played_at': self.played_at.isoformat() if self.played_at else None,
            'played_by': self.played_by,
            'airport_code': self.airport_code,
            'flight_number': self.flight_number,
            'destination_airport': self.destination_airport
        }


@dataclass
class User:
    id: str
    email: str
    role: str
    airport_codes: List[str] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data):
        return cls(
            id=str(data['id']),
            email=data.get('email', ''),
            role=data.get('role', 'operator'),
            airport_codes=[str(code).upper() for code in (data.get('airport_codes') or [])]
        )

    @property
    def is_admin(self):
        return self.role == 'admin'

    def can_view(self, airport_code):
        return airport_code.upper() in self.airport_codes

    def to_dict(self):
        return {
            'id': self.id,
            'email': self.email,
            'role': self.role,
            'airport_codes': list(self.airport_codes)
        }

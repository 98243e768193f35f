"""
Test doubles for the announcer.

FakeTimers runs on a virtual clock, so scheduling tests never sleep and are
fully deterministic.
"""

from datetime import datetime, timedelta, timezone
import itertools

from announcer.errors import DataAccessError, DuplicateAnnouncementError, PlaybackError
from announcer.models import Announcement, Flight, FlightStatus

BASE_TIME = datetime(2026, 10, 19, 12, 0, tzinfo=timezone.utc)


class FakeClock:
    def __init__(self, now=BASE_TIME):
        self.now = now

    def __call__(self):
        return self.now

    def set(self, now):
        self.now = now


class FakeTimers:
    def __init__(self, clock):
        self.clock = clock
        self.jobs = {}
        self.intervals = {}
        self._ids = itertools.count(1)

    def call_at(self, when, callback, *args):
        handle = next(self._ids)
        self.jobs[handle] = (when, callback, args)
        return handle

    def call_every(self, seconds, callback, *args):
        handle = next(self._ids)
        period = timedelta(seconds=seconds)
        self.intervals[handle] = (self.clock() + period, period, callback, args)
        return handle

    def cancel(self, handle):
        self.jobs.pop(handle, None)
        self.intervals.pop(handle, None)

    def pending(self):
        return len(self.jobs)

    def _next_due(self, when):
        due = [(job_when, handle) for handle, (job_when, _, _) in self.jobs.items() if job_when <= when]
        due += [(job_when, handle) for handle, (job_when, _, _, _) in self.intervals.items() if job_when <= when]
        return min(due) if due else None

    def advance_to(self, when):
        """Fire every timer due up to `when`, each at its own due time."""
        while True:
            nearest = self._next_due(when)
            if nearest is None:
                break
            job_when, handle = nearest
            self.clock.set(job_when)
            if handle in self.jobs:
                _, callback, args = self.jobs.pop(handle)
            else:
                _, period, callback, args = self.intervals[handle]
                self.intervals[handle] = (job_when + period, period, callback, args)
            callback(*args)
        self.clock.set(when)

    def wake_late(self, when):
        """Simulate a process resuming at `when`: every overdue timer elapses together."""
        self.clock.set(when)
        for handle in sorted(self.jobs):
            if handle not in self.jobs:
                continue
            job_when, callback, args = self.jobs[handle]
            if job_when <= when:
                del self.jobs[handle]
                callback(*args)


class FakeAudioSink:
    def __init__(self):
        self.played = []
        self.failing_paths = set()

    def play(self, audio_path):
        if audio_path in self.failing_paths:
            raise PlaybackError(f"File audio non trovato: {audio_path}")
        self.played.append(audio_path)

    def stop(self):
        pass


class FakeDataSource:
    def __init__(self, flights=None, announcements=None):
        self.flights = dict(flights or {})
        self.announcements = dict(announcements or {})
        self.recorded = []
        self.fail_fetch = False
        self.fail_record = False
        self.duplicate_record = False
        self.on_fetch = None
        self.fetch_calls = []
        self.history_calls = []
        self.window_clock = None

    def use_window(self, clock):
        """Filter flights like the dashboard API: a whole UTC day, or now -> +24h."""
        self.window_clock = clock

    def _in_window(self, flight, date):
        if date:
            return flight.scheduled_time.date().isoformat() == date
        now = self.window_clock()
        return now <= flight.scheduled_time <= now + timedelta(hours=24)

    def fetch_flights(self, airport_code, date=None):
        self.fetch_calls.append(airport_code)
        if self.fail_fetch:
            raise DataAccessError("Dashboard API 500: errore interno")
        flights = list(self.flights.get(airport_code, []))
        if self.window_clock is not None:
            flights = [f for f in flights if self._in_window(f, date)]
        if self.on_fetch is not None:
            hook, self.on_fetch = self.on_fetch, None
            hook(airport_code)
        return flights

    def fetch_announcements(self, airport_code, departure_from=None, departure_to=None):
        self.history_calls.append((airport_code, departure_from, departure_to))
        return list(self.announcements.get(airport_code, []))

    def record_announcement(self, record):
        if self.duplicate_record:
            raise DuplicateAnnouncementError("Annuncio già registrato per questo volo")
        if self.fail_record:
            raise DataAccessError("Dashboard API non raggiungibile")
        self.recorded.append(record)


class FakeSubscription:
    def __init__(self, feed, table, airport_code, callback):
        self.feed = feed
        self.table = table
        self.airport_code = airport_code
        self.callback = callback

    def unsubscribe(self):
        if self in self.feed.subscriptions:
            self.feed.subscriptions.remove(self)


class FakeChangeFeed:
    def __init__(self):
        self.subscriptions = []

    def subscribe(self, table, airport_code, callback):
        subscription = FakeSubscription(self, table, airport_code, callback)
        self.subscriptions.append(subscription)
        return subscription

    def emit(self, table, airport_code, event='UPDATE'):
        signal = {'table': table, 'event': event, 'airport_code': airport_code}
        for subscription in list(self.subscriptions):
            if subscription.table == table and subscription.airport_code == airport_code:
                subscription.callback(signal)


def make_flight(flight_id='f1', departure=None, flight_number='SK123', destination='JFK', gate='14',
                airport_code='CPH', status=FlightStatus.SCHEDULED):
    return Flight(
        id=flight_id,
        flight_number=flight_number,
        destination_airport=destination,
        scheduled_time=departure or BASE_TIME + timedelta(minutes=61),
        gate=gate,
        airport_code=airport_code,
        status=status,
        airline_code=flight_number[:2],
        origin_airport=airport_code
    )


def make_announcement(flight_id, announcement_type, airport_code='CPH'):
    return Announcement(
        id=f"a-{flight_id}-{announcement_type}",
        flight_id=flight_id,
        announcement_type=announcement_type,
        played_at=BASE_TIME,
        airport_code=airport_code
    )

"""
Announcement scheduler for the flight board.

For every visible flight the scheduler arms one timer per announcement type
(first call, second call, boarding, last call) at ``scheduled_time - offset``.
A key ``(flight_id, announcement_type)`` is played at most once: the set of
played keys is seeded from the persisted announcement history, so a second
station or a restart never replays what another instance already recorded.

All state is guarded by a single re-entrant lock. Timer callbacks, change
signals and operator requests arrive on different threads, but they are
applied one at a time, as if on one logical thread.
"""

from dataclasses import dataclass
from datetime import datetime, timezone
import itertools
import threading

from announcer import metrics
from announcer.announcements import AnnouncementType, due_time, resolve_audio_path
from announcer.errors import DataAccessError, DuplicateAnnouncementError, PlaybackError


@dataclass
class ScheduleEntry:
    flight_id: str
    announcement_type: AnnouncementType
    due_time: datetime
    played: bool = False


@dataclass
class PendingTimer:
    due_time: datetime
    handle: object
    token: int = 0


class AnnouncementScheduler:
    def __init__(self, timers, audio_sink, data_source, notices, clock=None):
        self.timers = timers
        self.audio_sink = audio_sink
        self.data_source = data_source
        self.notices = notices
        self.clock = clock or (lambda: datetime.now(timezone.utc))

        self.played_keys = set()
        self.pending_timers = {}
        # Airport of the current board, for metrics about flights no longer listed
        self.airport_code = None
        self._tokens = itertools.count(1)
        # Latest snapshot, used to resolve gate/destination at firing time
        self.flights = {}

        self.lock = threading.RLock()

    # ------------------------------------------------------------------
    # Schedule maintenance
    # ------------------------------------------------------------------

    def mark_played(self, keys):
        """Record keys already played elsewhere and drop their timers."""
        with self.lock:
            for key in keys:
                self.played_keys.add(key)
                self._cancel(key)
            self._update_gauge()

    def reconcile(self, flights):
        """
        Rebuild the pending timers from a fresh flight snapshot.

        Flights missing from the snapshot, departed or cancelled lose every
        pending timer. Entries already due are never armed, so a late join does
        not produce a backlog of past announcements.

        Returns the number of timers armed by this call.
        """
        with self.lock:
            now = self.clock()
            self.flights = {flight.id: flight for flight in flights}
            open_flights = {flight.id: flight for flight in flights if flight.is_open}

            for key in list(self.pending_timers):
                flight_id, _ = key
                if flight_id not in open_flights or key in self.played_keys:
                    self._cancel(key)

            armed = 0
            for flight in open_flights.values():
                for announcement_type in AnnouncementType:
                    key = (flight.id, announcement_type)
                    if key in self.played_keys:
                        continue

                    due = due_time(flight, announcement_type)
                    pending = self.pending_timers.get(key)
                    if pending is not None:
                        if pending.due_time == due:
                            continue
                        # Flight re-timed: the old timer is stale
                        self._cancel(key)

                    if due <= now:
                        continue

                    token = next(self._tokens)
                    handle = self.timers.call_at(due, self._on_timer, flight.id, announcement_type, token)
                    self.pending_timers[key] = PendingTimer(due_time=due, handle=handle, token=token)
                    armed += 1

            self._update_gauge()
            print(f"Riconciliazione completata: {len(open_flights)} voli attivi, {armed} nuovi timer, "
                  f"{len(self.pending_timers)} in attesa.", flush=True)
            return armed

    def reset(self):
        with self.lock:
            for key in list(self.pending_timers):
                self._cancel(key)
            self.played_keys.clear()
            self.flights = {}
            self._update_gauge()
            print("Scheduler annunci azzerato.", flush=True)

    def _cancel(self, key):
        pending = self.pending_timers.pop(key, None)
        if pending is not None:
            self.timers.cancel(pending.handle)

    def _update_gauge(self):
        metrics.set_pending_timers(len(self.pending_timers))

    # ------------------------------------------------------------------
    # Firing
    # ------------------------------------------------------------------

    def _on_timer(self, flight_id, announcement_type, token):
        with self.lock:
            elapsed = (flight_id, announcement_type)
            pending = self.pending_timers.get(elapsed)
            if pending is None or pending.token != token:
                # Cancelled, drained, or replaced by a re-armed timer while this job was in flight
                return

            now = self.clock()
            due_keys = [key for key, pending in self.pending_timers.items()
                        if key == elapsed or pending.due_time <= now]
            due_keys.sort(key=lambda k: (self.pending_timers[k].due_time, k[1].rank))

            for key in due_keys:
                pending = self.pending_timers.pop(key)
                if key != elapsed:
                    self.timers.cancel(pending.handle)
                try:
                    self.fire(*key)
                except Exception as e:
                    # One failing flight must not stop the others
                    self.notices.error("Errore annuncio", f"Errore imprevisto per {key[0]} {key[1].value}: {e}")
            self._update_gauge()

    def fire(self, flight_id, announcement_type, played_by=None):
        with self.lock:
            key = (flight_id, announcement_type)
            if key in self.played_keys:
                print(f"SKIP {flight_id} {announcement_type.value}: già riprodotto.", flush=True)
                metrics.count_announcement(self.airport_code, announcement_type, 'skipped')
                return False

            flight = self.flights.get(flight_id)
            if flight is None:
                self.notices.error("Annuncio non riprodotto", f"Volo {flight_id} non presente sul tabellone")
                metrics.count_announcement(self.airport_code, announcement_type, 'failed')
                return False

            try:
                audio_path = resolve_audio_path(flight, announcement_type)
                self.audio_sink.play(audio_path)
            except PlaybackError as e:
                self.notices.error(
                    "Annuncio non riprodotto",
                    f"{announcement_type.value} per il volo {flight.flight_number}: {e}"
                )
                metrics.count_announcement(flight.airport_code, announcement_type, 'failed')
                return False

            record = {
                'flight_id': flight.id,
                'announcement_type': announcement_type.value,
                'played_at': self.clock().isoformat(),
                'played_by': played_by,
                'airport_code': flight.airport_code
            }

            try:
                self.data_source.record_announcement(record)
            except DuplicateAnnouncementError:
                self.played_keys.add(key)
                self.notices.warning(
                    "Annuncio già registrato",
                    f"{announcement_type.value} per il volo {flight.flight_number} era già stato registrato da un'altra postazione"
                )
                metrics.count_announcement(flight.airport_code, announcement_type, 'duplicate')
                return False
            except DataAccessError as e:
                self.notices.error(
                    "Registrazione annuncio fallita",
                    f"{announcement_type.value} per il volo {flight.flight_number}: {e}"
                )
                metrics.count_announcement(flight.airport_code, announcement_type, 'failed')
                return False

            self.played_keys.add(key)
            self.notices.info(
                "Annuncio in riproduzione",
                f"{announcement_type.value} call per il volo {flight.flight_number}"
            )
            metrics.count_announcement(flight.airport_code, announcement_type, 'played')
            return True

    def manual_play(self, flight_id, announcement_type, played_by=None):
        with self.lock:
            key = (flight_id, announcement_type)
            if key in self.played_keys:
                self.notices.warning(
                    "Annuncio già riprodotto",
                    f"{announcement_type.value} per il volo {flight_id} è già stato riprodotto"
                )
                return False

            played = self.fire(flight_id, announcement_type, played_by=played_by)
            if played:
                self._cancel(key)
                self._update_gauge()
            return played

    # ------------------------------------------------------------------
    # Display
    # ------------------------------------------------------------------

    def entries_for(self, flight):
        with self.lock:
            return [
                ScheduleEntry(
                    flight_id=flight.id,
                    announcement_type=announcement_type,
                    due_time=due_time(flight, announcement_type),
                    played=(flight.id, announcement_type) in self.played_keys
                )
                for announcement_type in AnnouncementType
            ]

    def next_announcement(self, flight):
        now = self.clock()
        upcoming = [entry for entry in self.entries_for(flight)
                    if not entry.played and entry.due_time > now]
        if not upcoming:
            return None
        return min(upcoming, key=lambda entry: (entry.due_time, entry.announcement_type.rank))

    def is_pending(self, flight_id, announcement_type):
        with self.lock:
            return (flight_id, announcement_type) in self.pending_timers

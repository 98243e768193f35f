from datetime import datetime, timezone
from enum import Enum

from announcer import metrics
from announcer.announcements import parse_announcement_type
from announcer.errors import DataAccessError, ReconciliationRace

WATCHED_TABLES = ('flights', 'announcements')

# The live list covers the next 24h; flights entering it are picked up by the periodic refresh
DEFAULT_REFRESH_INTERVAL = 300


class BoardState(Enum):
    IDLE = 'IDLE'
    FETCHING = 'FETCHING'
    RECONCILING = 'RECONCILING'


class FlightBoard:
    def __init__(self, data_source, scheduler, change_feed, notices, clock=None,
                 refresh_interval=DEFAULT_REFRESH_INTERVAL):
        self.data_source = data_source
        self.scheduler = scheduler
        self.timers = scheduler.timers
        self.change_feed = change_feed
        self.notices = notices
        self.clock = clock or (lambda: datetime.now(timezone.utc))
        self.refresh_interval = refresh_interval

        self.airport_code = None
        # Live list (now -> +24h), the only one the scheduler reconciles against
        self.flights = []
        # Day picked by the operator; display only
        self.view_date = None
        self.view_flights = []
        self.state = BoardState.IDLE
        self.last_refresh = None

        # Bumped on every airport switch; completions carrying an old epoch are stale
        self.epoch = 0
        # Last-write-wins between refreshes of the same epoch
        self._requested_seq = 0
        self._applied_seq = 0

        self._subscriptions = []
        self._refresh_job = None
        self.lock = scheduler.lock

    def select_airport(self, airport_code):
        airport_code = airport_code.strip().upper()
        with self.lock:
            self.epoch += 1
            self._stop_watching()
            self.scheduler.reset()
            self.scheduler.airport_code = airport_code

            self.airport_code = airport_code
            self.flights = []
            self.view_date = None
            self.view_flights = []
            self._requested_seq = 0
            self._applied_seq = 0
            self.state = BoardState.IDLE

            for table in WATCHED_TABLES:
                self._subscriptions.append(
                    self.change_feed.subscribe(table, airport_code, self._on_change)
                )
            if self.refresh_interval:
                self._refresh_job = self.timers.call_every(self.refresh_interval, self._on_tick)
            print(f"Aeroporto selezionato: {airport_code} (epoch {self.epoch})", flush=True)

        return self.refresh()

    def _stop_watching(self):
        for subscription in self._subscriptions:
            subscription.unsubscribe()
        self._subscriptions = []
        if self._refresh_job is not None:
            self.timers.cancel(self._refresh_job)
            self._refresh_job = None

    def _on_change(self, signal):
        print(f"Modifica ricevuta su {signal.get('table')} ({signal.get('event')}) per {signal.get('airport_code')}, aggiorno...", flush=True)
        self.refresh()

    def _on_tick(self):
        print(f"Aggiornamento periodico del tabellone {self.airport_code}...", flush=True)
        self.refresh()

    def show_date(self, date):
        """Show the flights of one day (YYYY-MM-DD) next to the live schedule; None goes back to live."""
        with self.lock:
            if self.airport_code is None:
                return False
            self.view_date = date or None
            if self.view_date is None:
                self.view_flights = []
        return self.refresh()

    def refresh(self):
        with self.lock:
            if self.airport_code is None:
                return False
            epoch = self.epoch
            airport_code = self.airport_code
            view_date = self.view_date
            self._requested_seq += 1
            seq = self._requested_seq
            self.state = BoardState.FETCHING

        # Network I/O runs outside the lock so an airport switch is never blocked
        try:
            flights = self.data_source.fetch_flights(airport_code)
            view_flights = self.data_source.fetch_flights(airport_code, view_date) if view_date else []
            history = self._fetch_history(airport_code, flights + view_flights)
        except DataAccessError as e:
            with self.lock:
                if epoch == self.epoch:
                    self.state = BoardState.IDLE
                    self.notices.error("Aggiornamento tabellone fallito", f"{airport_code}: {e}")
            metrics.count_refresh('error')
            return False

        try:
            self._apply_snapshot(epoch, seq, flights, history, view_flights)
        except ReconciliationRace as e:
            print(f"Snapshot scartato: {e}", flush=True)
            metrics.count_refresh('superseded')
            return False

        metrics.count_refresh('applied')
        return True

    def _fetch_history(self, airport_code, flights):
        # Every announcement of the fetched flights, however old, so none is replayed
        if not flights:
            return []
        departures = [flight.scheduled_time for flight in flights]
        return self.data_source.fetch_announcements(
            airport_code,
            departure_from=min(departures),
            departure_to=max(departures)
        )

    def _own_flights(self, flights):
        flights = [f for f in flights if f.airport_code.upper() == self.airport_code]
        flights.sort(key=lambda f: f.scheduled_time)
        return flights

    def _apply_snapshot(self, epoch, seq, flights, history, view_flights=()):
        with self.lock:
            if epoch != self.epoch:
                raise ReconciliationRace(f"epoch {epoch} superata da {self.epoch}")
            if seq < self._applied_seq:
                raise ReconciliationRace(f"richiesta {seq} superata da {self._applied_seq}")

            self.state = BoardState.RECONCILING
            try:
                played = set()
                for announcement in history:
                    try:
                        played.add((announcement.flight_id, parse_announcement_type(announcement.announcement_type)))
                    except ValueError as e:
                        print(f"Annuncio storico ignorato: {e}", flush=True)
                self.scheduler.mark_played(played)

                flights = self._own_flights(flights)
                self.scheduler.reconcile(flights)

                self.flights = flights
                self.view_flights = self._own_flights(view_flights)
                self._applied_seq = seq
                self.last_refresh = self.clock()
            finally:
                self.state = BoardState.IDLE

    def play(self, flight_id, announcement_type, played_by=None):
        announcement_type = parse_announcement_type(announcement_type)
        return self.scheduler.manual_play(flight_id, announcement_type, played_by=played_by)

    def history(self):
        with self.lock:
            airport_code = self.airport_code
        if airport_code is None:
            return []
        return self.data_source.fetch_announcements(airport_code)

    def snapshot(self, query=None):
        with self.lock:
            flights = list(self.view_flights if self.view_date else self.flights)
            view = {
                'airport_code': self.airport_code,
                'date': self.view_date,
                'state': self.state.value,
                'epoch': self.epoch,
                'last_refresh': self.last_refresh.isoformat() if self.last_refresh else None,
            }

        if query:
            needle = query.strip().lower()
            flights = [f for f in flights
                       if needle in f.flight_number.lower() or needle in f.destination_airport.lower()]

        rows = []
        for flight in flights:
            row = flight.to_dict()
            upcoming = self.scheduler.next_announcement(flight)
            row['next_announcement'] = None if upcoming is None else {
                'type': upcoming.announcement_type.value,
                'time': upcoming.due_time.isoformat()
            }
            rows.append(row)

        view['flights'] = rows
        return view

    def close(self):
        with self.lock:
            self.epoch += 1
            self._stop_watching()
            self.scheduler.reset()
            self.scheduler.airport_code = None
            self.airport_code = None
            self.flights = []
            self.view_date = None
            self.view_flights = []
            self.state = BoardState.IDLE

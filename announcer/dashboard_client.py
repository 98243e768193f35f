import os
import requests

from announcer.circuit_breaker import CircuitBreaker
from announcer.errors import DataAccessError, DuplicateAnnouncementError
from announcer.models import Announcement, Flight


class DashboardClient:
    def __init__(self, base_url=None, token_provider=None, timeout=10, session=None, circuit_breaker=None):
        self.base_url = (base_url or os.getenv('DASHBOARD_API_URL', 'http://dashboard-api:5001')).rstrip('/')
        self.token_provider = token_provider or (lambda: None)
        self.timeout = timeout
        self.session = session or requests.Session()
        self.cb = circuit_breaker or CircuitBreaker(failure_threshold=3, recovery_timeout=30)

    def _headers(self):
        token = self.token_provider()
        if not token:
            return {}
        return {'Authorization': f'Bearer {token}'}

    def _send(self, method, path, **kwargs):
        response = self.session.request(
            method,
            f"{self.base_url}{path}",
            headers=self._headers(),
            timeout=self.timeout,
            **kwargs
        )
        # Only server-side failures count against the circuit
        if response.status_code >= 500:
            raise DataAccessError(f"Dashboard API {response.status_code}: {self._error_text(response)}")
        return response

    def _request(self, method, path, **kwargs):
        try:
            return self.cb.call(self._send, method, path, **kwargs)
        except DataAccessError:
            raise
        except requests.RequestException as e:
            raise DataAccessError(f"Dashboard API non raggiungibile: {e}") from e

    @staticmethod
    def _error_text(response):
        try:
            return response.json().get('error', response.text)
        except ValueError:
            return response.text

    def _check(self, response, what):
        if response.status_code != 200 and response.status_code != 201:
            raise DataAccessError(f"{what} fallito ({response.status_code}): {self._error_text(response)}")
        try:
            return response.json()
        except ValueError:
            raise DataAccessError(f"{what}: risposta JSON non valida")

    def fetch_flights(self, airport_code, date=None):
        params = {'airport': airport_code}
        if date:
            params['date'] = date
        print(f"Recupero voli per {airport_code}...", flush=True)
        data = self._check(self._request('GET', '/flights', params=params), f"Recupero voli {airport_code}")
        try:
            return [Flight.from_dict(item) for item in data.get('flights', [])]
        except (KeyError, ValueError) as e:
            raise DataAccessError(f"Volo non valido nella risposta: {e}")

    def fetch_announcements(self, airport_code, departure_from=None, departure_to=None):
        params = {'airport': airport_code}
        # With a departure range the API returns every row for those flights, uncapped
        if departure_from is not None:
            params['departure_from'] = departure_from.isoformat()
        if departure_to is not None:
            params['departure_to'] = departure_to.isoformat()
        data = self._check(self._request('GET', '/announcements', params=params), f"Recupero annunci {airport_code}")
        try:
            return [Announcement.from_dict(item) for item in data.get('announcements', [])]
        except (KeyError, ValueError) as e:
            raise DataAccessError(f"Annuncio non valido nella risposta: {e}")

    def record_announcement(self, record):
        response = self._request('POST', '/announcements', json=record)
        if response.status_code == 409:
            raise DuplicateAnnouncementError(self._error_text(response))
        self._check(response, "Registrazione annuncio")

    def close(self):
        self.session.close()

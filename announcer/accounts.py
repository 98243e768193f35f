import os
import threading
import requests

from announcer.errors import DataAccessError
from announcer.models import User


class AccountClient:
    """Session of the operator logged in at this station."""

    def __init__(self, base_url=None, timeout=10, session=None):
        self.base_url = (base_url or os.getenv('USER_MANAGER_URL', 'http://user-manager:5000')).rstrip('/')
        self.timeout = timeout
        self.session = session or requests.Session()
        self._token = None
        self._user = None
        self._lock = threading.Lock()

    @property
    def token(self):
        return self._token

    def login(self, email, password):
        try:
            response = self.session.post(
                f"{self.base_url}/login",
                json={'email': email, 'password': password},
                timeout=self.timeout
            )
        except requests.RequestException as e:
            raise DataAccessError(f"User Manager non raggiungibile: {e}") from e

        if response.status_code != 200:
            print(f"Login fallito per {email}: {response.status_code}", flush=True)
            return None

        data = response.json()
        with self._lock:
            self._token = data['token']
            self._user = User.from_dict(data['user'])
        print(f"Login effettuato: {self._user.email} ({self._user.role})", flush=True)
        return self._user

    def logout(self):
        with self._lock:
            token, self._token, self._user = self._token, None, None
        if not token:
            return
        try:
            self.session.post(
                f"{self.base_url}/logout",
                headers={'Authorization': f'Bearer {token}'},
                timeout=self.timeout
            )
        except requests.RequestException as e:
            # The local session is gone either way
            print(f"Errore logout remoto: {e}", flush=True)

    def current_user(self, refresh=False):
        if not self._token:
            return None
        if self._user is not None and not refresh:
            return self._user

        try:
            response = self.session.get(
                f"{self.base_url}/me",
                headers={'Authorization': f'Bearer {self._token}'},
                timeout=self.timeout
            )
        except requests.RequestException as e:
            raise DataAccessError(f"User Manager non raggiungibile: {e}") from e

        if response.status_code == 401:
            with self._lock:
                self._token, self._user = None, None
            return None
        if response.status_code != 200:
            raise DataAccessError(f"Verifica sessione fallita ({response.status_code})")

        with self._lock:
            self._user = User.from_dict(response.json()['user'])
        return self._user

import os
import requests


class UserManagerClient:
    def __init__(self, base_url=None, timeout=10):
        self.base_url = (base_url or os.getenv('USER_MANAGER_URL', 'http://user-manager:5000')).rstrip('/')
        self.timeout = timeout
        self.session = requests.Session()

    def get_current_user(self, token):
        """Returns (user_dict or None, message)."""
        try:
            response = self.session.get(
                f"{self.base_url}/me",
                headers={'Authorization': f'Bearer {token}'},
                timeout=self.timeout
            )
        except requests.RequestException as e:
            print(f"Errore di comunicazione con User Manager: {e}", flush=True)
            return None, f"Errore di comunicazione: {e}"

        if response.status_code == 200:
            return response.json().get('user'), "Utente trovato"
        if response.status_code == 401:
            return None, "Sessione non valida o scaduta"

        print(f"User Manager ha risposto {response.status_code}: {response.text}", flush=True)
        return None, f"Errore User Manager ({response.status_code})"

    def close(self):
        self.session.close()

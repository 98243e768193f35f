from unittest.mock import Mock

import pytest
import requests

from announcer.accounts import AccountClient
from announcer.errors import DataAccessError

USER = {'id': 'op-1', 'email': 'op@airport.example', 'role': 'operator', 'airport_codes': ['cph']}


def response(status_code, body=None):
    return Mock(status_code=status_code, json=Mock(return_value=body or {}))


@pytest.fixture
def session():
    return Mock()


@pytest.fixture
def accounts(session):
    return AccountClient(base_url='http://user-manager:5000', session=session)


def test_login_keeps_token_and_user(accounts, session):
    session.post.return_value = response(200, {'token': 'tok', 'user': USER})

    user = accounts.login('op@airport.example', 'op-secret')

    assert accounts.token == 'tok'
    assert user.airport_codes == ['CPH']
    assert accounts.current_user() is user
    session.get.assert_not_called()


def test_failed_login(accounts, session):
    session.post.return_value = response(401, {'error': 'Credenziali non valide'})

    assert accounts.login('op@airport.example', 'wrong') is None
    assert accounts.token is None
    assert accounts.current_user() is None


def test_unreachable_user_manager(accounts, session):
    session.post.side_effect = requests.ConnectionError('refused')

    with pytest.raises(DataAccessError):
        accounts.login('op@airport.example', 'op-secret')


def test_expired_session_clears_token(accounts, session):
    session.post.return_value = response(200, {'token': 'tok', 'user': USER})
    accounts.login('op@airport.example', 'op-secret')
    session.get.return_value = response(401)

    assert accounts.current_user(refresh=True) is None
    assert accounts.token is None


def test_logout_revokes_remote_session(accounts, session):
    session.post.return_value = response(200, {'token': 'tok', 'user': USER})
    accounts.login('op@airport.example', 'op-secret')

    accounts.logout()

    session.post.assert_called_with(
        'http://user-manager:5000/logout', headers={'Authorization': 'Bearer tok'}, timeout=10
    )
    assert accounts.current_user() is None

import os

# The Flask services read their database URI at import time
os.environ.setdefault('DASHBOARD_DB_URI', 'sqlite://')
os.environ.setdefault('USER_DB_URI', 'sqlite://')
os.environ.pop('ADMIN_EMAIL', None)
os.environ.pop('ADMIN_PASSWORD', None)

import pytest

from announcer.board import FlightBoard
from announcer.notices import NoticeBoard
from announcer.scheduler import AnnouncementScheduler
from tests.doubles import FakeAudioSink, FakeChangeFeed, FakeClock, FakeDataSource, FakeTimers


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def timers(clock):
    return FakeTimers(clock)


@pytest.fixture
def sink():
    return FakeAudioSink()


@pytest.fixture
def data_source():
    return FakeDataSource()


@pytest.fixture
def notices(clock):
    return NoticeBoard(clock=clock)


@pytest.fixture
def scheduler(timers, sink, data_source, notices, clock):
    return AnnouncementScheduler(timers, sink, data_source, notices, clock=clock)


@pytest.fixture
def change_feed():
    return FakeChangeFeed()


@pytest.fixture
def board(data_source, scheduler, change_feed, notices, clock):
    # Periodic refresh off by default so fetch counts stay exact; covered in its own tests
    return FlightBoard(data_source, scheduler, change_feed, notices, clock=clock, refresh_interval=None)

import os
from prometheus_client import Counter, Gauge

NODE_NAME = os.getenv('K8S_NODE_NAME', 'unknown-node')
SERVICE_NAME = 'announcer'

ANNOUNCEMENTS_TOTAL = Counter(
    'announcements_total',
    'Announcements handled by the scheduler',
    ['service', 'node', 'airport', 'type', 'status']
)

PENDING_TIMERS = Gauge(
    'announcement_pending_timers',
    'Announcement timers currently armed',
    ['service', 'node']
)

BOARD_REFRESHES_TOTAL = Counter(
    'board_refreshes_total',
    'Flight board refreshes by outcome',
    ['service', 'node', 'outcome']
)


def count_announcement(airport, announcement_type, status):
    ANNOUNCEMENTS_TOTAL.labels(
        service=SERVICE_NAME,
        node=NODE_NAME,
        airport=airport or 'unknown',
        type=announcement_type.value,
        status=status
    ).inc()


def set_pending_timers(count):
    PENDING_TIMERS.labels(service=SERVICE_NAME, node=NODE_NAME).set(count)


def count_refresh(outcome):
    BOARD_REFRESHES_TOTAL.labels(service=SERVICE_NAME, node=NODE_NAME, outcome=outcome).inc()

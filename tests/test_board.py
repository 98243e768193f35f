from datetime import timedelta

from prometheus_client import REGISTRY

from announcer import metrics
from announcer.announcements import AnnouncementType
from announcer.board import BoardState, FlightBoard
from tests.doubles import BASE_TIME, make_announcement, make_flight


def cph_flight(flight_id='f1', minutes=61, **kwargs):
    return make_flight(flight_id, departure=BASE_TIME + timedelta(minutes=minutes), airport_code='CPH', **kwargs)


def osl_flight(flight_id='o1', minutes=61, **kwargs):
    return make_flight(flight_id, departure=BASE_TIME + timedelta(minutes=minutes), airport_code='OSL',
                       flight_number='DY700', destination='LHR', **kwargs)


def test_select_airport_loads_and_schedules(board, data_source, timers, change_feed):
    data_source.flights['CPH'] = [cph_flight()]

    assert board.select_airport('cph') is True

    assert board.airport_code == 'CPH'
    assert [f.id for f in board.flights] == ['f1']
    assert timers.pending() == 4
    assert board.state is BoardState.IDLE
    assert sorted(s.table for s in change_feed.subscriptions) == ['announcements', 'flights']


def test_history_seeds_played_keys(board, data_source, timers):
    data_source.flights['CPH'] = [cph_flight()]
    data_source.announcements['CPH'] = [make_announcement('f1', '1st'), make_announcement('f1', 'Boarding')]

    board.select_airport('CPH')

    assert timers.pending() == 2
    assert ('f1', AnnouncementType.FIRST_CALL) in board.scheduler.played_keys


def test_change_signal_triggers_full_refetch(board, data_source, change_feed, timers, sink):
    data_source.flights['CPH'] = [cph_flight()]
    board.select_airport('CPH')

    # Flight cancelled upstream: the next snapshot no longer lists it
    data_source.flights['CPH'] = []
    change_feed.emit('flights', 'CPH', event='DELETE')
    timers.advance_to(BASE_TIME + timedelta(hours=2))

    assert data_source.fetch_calls == ['CPH', 'CPH']
    assert sink.played == []


def test_announcement_from_another_station_cancels_local_timer(board, data_source, change_feed, timers, sink):
    data_source.flights['CPH'] = [cph_flight()]
    board.select_airport('CPH')

    data_source.announcements['CPH'] = [make_announcement('f1', '1st')]
    change_feed.emit('announcements', 'CPH', event='INSERT')
    timers.advance_to(BASE_TIME + timedelta(minutes=2))

    assert sink.played == []
    assert timers.pending() == 3


def test_switching_airport_cancels_previous_timers(board, data_source, change_feed, timers, sink):
    data_source.flights['CPH'] = [cph_flight()]
    data_source.flights['OSL'] = []
    board.select_airport('CPH')

    board.select_airport('OSL')
    timers.advance_to(BASE_TIME + timedelta(hours=2))

    assert sink.played == []
    assert all(s.airport_code == 'OSL' for s in change_feed.subscriptions)
    # Signals for the old airport reach nobody
    change_feed.emit('flights', 'CPH')
    assert data_source.fetch_calls == ['CPH', 'OSL']


def test_fetch_completing_after_switch_is_discarded(board, data_source, timers):
    data_source.flights['CPH'] = [cph_flight()]
    data_source.flights['OSL'] = [osl_flight()]
    # The operator switches to OSL while the CPH fetch is still in flight
    data_source.on_fetch = lambda airport: board.select_airport('OSL')

    assert board.select_airport('CPH') is False

    assert board.airport_code == 'OSL'
    assert [f.id for f in board.flights] == ['o1']
    assert not board.scheduler.is_pending('f1', AnnouncementType.FIRST_CALL)
    assert timers.pending() == 4


def test_later_snapshot_wins_over_slower_earlier_one(board, data_source, change_feed, timers):
    data_source.flights['CPH'] = [cph_flight()]
    board.select_airport('CPH')

    stale = [cph_flight(), cph_flight('f2', minutes=90, flight_number='SK900')]
    data_source.flights['CPH'] = stale

    def newer_push(airport):
        data_source.flights['CPH'] = [cph_flight()]
        change_feed.emit('flights', 'CPH')

    # While the first refresh is fetching, a second push arrives and completes first
    data_source.on_fetch = newer_push
    assert board.refresh() is False

    assert [f.id for f in board.flights] == ['f1']
    assert not board.scheduler.is_pending('f2', AnnouncementType.FIRST_CALL)


def test_fetch_failure_raises_notice_and_keeps_board(board, data_source, notices):
    data_source.flights['CPH'] = [cph_flight()]
    board.select_airport('CPH')

    data_source.fail_fetch = True
    assert board.refresh() is False

    assert [f.id for f in board.flights] == ['f1']
    assert board.state is BoardState.IDLE
    assert notices.recent()[-1]['title'] == 'Aggiornamento tabellone fallito'


def test_snapshot_filters_other_airports_and_searches(board, data_source):
    data_source.flights['CPH'] = [
        cph_flight('f1', minutes=61),
        cph_flight('f2', minutes=120, flight_number='LH404', destination='FRA'),
        osl_flight('o1'),
    ]
    board.select_airport('CPH')

    view = board.snapshot()
    assert [row['id'] for row in view['flights']] == ['f1', 'f2']
    assert view['flights'][0]['next_announcement'] == {
        'type': '1st',
        'time': (BASE_TIME + timedelta(minutes=1)).isoformat()
    }

    assert [row['id'] for row in board.snapshot(query='fra')['flights']] == ['f2']
    assert [row['id'] for row in board.snapshot(query='sk1')['flights']] == ['f1']


def test_snapshot_has_no_next_announcement_when_all_due_times_passed(board, data_source):
    data_source.flights['CPH'] = [cph_flight(minutes=10)]
    board.select_airport('CPH')

    assert board.snapshot()['flights'][0]['next_announcement'] is None


def test_manual_play_through_board(board, data_source, sink):
    data_source.flights['CPH'] = [cph_flight()]
    board.select_airport('CPH')

    assert board.play('f1', 'Boarding', played_by='op-1') is True
    assert board.play('f1', 'BOARDING_CALL', played_by='op-1') is False
    assert sink.played == ['/mp3/DEP/SK/SK123/SK123JFKDEP_Boarding_Gate14_sr_en.mp3']


def test_close_drops_subscriptions_and_timers(board, data_source, change_feed, timers):
    data_source.flights['CPH'] = [cph_flight()]
    board.select_airport('CPH')

    board.close()

    assert change_feed.subscriptions == []
    assert timers.pending() == 0


def test_flight_entering_the_window_is_armed_by_periodic_refresh(data_source, scheduler, change_feed, notices,
                                                                   clock, timers, sink):
    data_source.use_window(clock)
    data_source.flights['CPH'] = [
        cph_flight('near', minutes=120),
        cph_flight('far', minutes=24 * 60 + 30, flight_number='SK900'),
    ]
    board = FlightBoard(data_source, scheduler, change_feed, notices, clock=clock, refresh_interval=300)
    board.select_airport('CPH')
    assert not scheduler.is_pending('far', AnnouncementType.FIRST_CALL)

    timers.advance_to(BASE_TIME + timedelta(hours=24, minutes=30))

    assert len([path for path in sink.played if '/SK900/' in path]) == 4
    assert len([path for path in sink.played if '/SK123/' in path]) == 4


def test_periodic_refresh_stops_on_switch_and_close(data_source, scheduler, change_feed, notices, clock, timers):
    board = FlightBoard(data_source, scheduler, change_feed, notices, clock=clock, refresh_interval=300)
    board.select_airport('CPH')
    board.select_airport('OSL')
    assert len(timers.intervals) == 1

    timers.advance_to(BASE_TIME + timedelta(minutes=10))
    assert data_source.fetch_calls == ['CPH', 'OSL', 'OSL', 'OSL']

    board.close()
    assert timers.intervals == {}


def test_viewing_another_day_keeps_the_live_schedule(board, data_source, change_feed, timers, clock):
    data_source.use_window(clock)
    data_source.flights['CPH'] = [
        cph_flight('f1', minutes=90),
        # 2026-10-20 14:00 UTC, past the live 24h window
        cph_flight('t1', minutes=26 * 60, flight_number='SK900'),
    ]
    board.select_airport('CPH')
    assert timers.pending() == 4

    assert board.show_date('2026-10-20') is True

    assert timers.pending() == 4
    assert [f.id for f in board.flights] == ['f1']
    view = board.snapshot()
    assert view['date'] == '2026-10-20'
    assert [row['id'] for row in view['flights']] == ['t1']
    assert not board.scheduler.is_pending('t1', AnnouncementType.FIRST_CALL)

    # Change signals refresh both lists and keep the chosen day
    change_feed.emit('flights', 'CPH')
    assert board.view_date == '2026-10-20'
    assert [row['id'] for row in board.snapshot()['flights']] == ['t1']
    assert timers.pending() == 4

    board.show_date(None)
    assert [row['id'] for row in board.snapshot()['flights']] == ['f1']


def test_history_is_fetched_for_the_departures_on_the_board(board, data_source):
    data_source.flights['CPH'] = [cph_flight('f1', minutes=61), cph_flight('f2', minutes=300, flight_number='SK900')]

    board.select_airport('CPH')

    assert data_source.history_calls == [
        ('CPH', BASE_TIME + timedelta(minutes=61), BASE_TIME + timedelta(minutes=300))
    ]


def test_failed_play_of_unlisted_flight_is_counted_for_the_board_airport(board, data_source):
    labels = {'service': 'announcer', 'node': metrics.NODE_NAME, 'airport': 'CPH', 'type': '2nd', 'status': 'failed'}
    before = REGISTRY.get_sample_value('announcements_total', labels) or 0
    board.select_airport('CPH')

    assert board.play('ghost', '2nd') is False

    assert REGISTRY.get_sample_value('announcements_total', labels) == before + 1

class DataAccessError(Exception):
    pass

class DuplicateAnnouncementError(DataAccessError):
    # The store already holds an announcement for this (flight, type)
    pass

class PlaybackError(Exception):
    pass

class ReconciliationRace(Exception):
    # A newer snapshot or an airport switch superseded this one
    pass

class CircuitOpenError(DataAccessError):
    pass

from datetime import timedelta
from enum import Enum

from announcer.errors import PlaybackError


class AnnouncementType(Enum):
    # Declaration order is the urgency order used to break ties
    FIRST_CALL = '1st'
    SECOND_CALL = '2nd'
    BOARDING_CALL = 'Boarding'
    LAST_CALL = 'LastCall'

    @property
    def rank(self):
        return list(AnnouncementType).index(self)


# Minutes before the scheduled departure
ANNOUNCEMENT_OFFSETS = {
    AnnouncementType.FIRST_CALL: 60,
    AnnouncementType.SECOND_CALL: 40,
    AnnouncementType.BOARDING_CALL: 30,
    AnnouncementType.LAST_CALL: 15,
}

AUDIO_PATH_TEMPLATE = "/mp3/DEP/{airline}/{flight}/{flight}{destination}DEP_{call}_Gate{gate}_sr_en.mp3"


def parse_announcement_type(value):
    # Accepts both the wire value ('Boarding') and the member name ('BOARDING_CALL')
    if isinstance(value, AnnouncementType):
        return value
    raw = str(value).strip()
    try:
        return AnnouncementType(raw)
    except ValueError:
        pass
    try:
        return AnnouncementType[raw.upper()]
    except KeyError:
        raise ValueError(f"Tipo di annuncio non valido: {value}")


def due_time(flight, announcement_type):
    return flight.scheduled_time - timedelta(minutes=ANNOUNCEMENT_OFFSETS[announcement_type])


def resolve_audio_path(flight, announcement_type):
    flight_number = (flight.flight_number or '').strip()
    destination = (flight.destination_airport or '').strip()
    gate = (flight.gate or '').strip()

    if len(flight_number) < 2:
        raise PlaybackError(f"Numero volo non valido per l'audio: '{flight_number}'")
    if not destination:
        raise PlaybackError(f"Destinazione mancante per il volo {flight_number}")
    if not gate:
        raise PlaybackError(f"Gate non assegnato per il volo {flight_number}")

    return AUDIO_PATH_TEMPLATE.format(
        airline=flight_number[:2],
        flight=flight_number,
        destination=destination,
        call=announcement_type.value,
        gate=gate
    )

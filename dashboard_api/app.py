from flask import Flask, request, jsonify
from flask_cors import CORS
from dashboard_api.database import db
from dashboard_api.models import Flight, Announcement, FLIGHT_STATUSES, ANNOUNCEMENT_TYPES, utc_now
from dashboard_api.change_feed import ChangePublisher
from dashboard_api.user_manager_client import UserManagerClient
from sqlalchemy.exc import IntegrityError
from datetime import datetime, timedelta, timezone, time as dt_time
import os
import re

app = Flask(__name__)
CORS(app)

# Configs for Database (DASHBOARD_DB_URI overrides the MySQL settings, e.g. for local runs)
app.config['SQLALCHEMY_DATABASE_URI'] = os.getenv('DASHBOARD_DB_URI') or \
    f"mysql+pymysql://{os.getenv('DATA_DB_USER')}:{os.getenv('DATA_DB_PASSWORD')}@{os.getenv('DATA_DB_HOST')}:{os.getenv('DATA_DB_PORT')}/{os.getenv('DATA_DB_NAME')}"
app.config['SQLALCHEMY_TRACK_MODIFICATIONS'] = False

db.init_app(app)

with app.app_context():
    db.create_all()

user_manager_client = UserManagerClient()
change_publisher = ChangePublisher()

DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")
AIRPORT_RE = re.compile(r"^[A-Z]{3,4}$")
REQUIRED_FLIGHT_FIELDS = ('flight_number', 'origin_airport', 'destination_airport', 'scheduled_time', 'airport_code')
FLIGHT_TEXT_FIELDS = ('flight_number', 'airline_code', 'origin_airport', 'destination_airport',
                      'gate', 'terminal', 'aircraft_type', 'airport_code')
UPPERCASE_FIELDS = ('flight_number', 'airline_code', 'origin_airport', 'destination_airport', 'airport_code')


def parse_instant(value):
    # ISO-8601 in, naive UTC out (naive input is already UTC)
    dt = datetime.fromisoformat(str(value).strip().replace('Z', '+00:00'))
    if dt.tzinfo is not None:
        dt = dt.astimezone(timezone.utc).replace(tzinfo=None)
    return dt


def flight_window(date_value):
    if date_value:
        day = datetime.strptime(date_value, '%Y-%m-%d').date()
        return datetime.combine(day, dt_time.min), datetime.combine(day, dt_time(23, 59, 59))
    now = utc_now()
    return now, now + timedelta(hours=24)


def authorize(airport_code=None):
    header = request.headers.get('Authorization', '')
    if not header.startswith('Bearer ') or not header[7:].strip():
        return None, (jsonify({"error": "Token di accesso mancante"}), 401)

    user, message = user_manager_client.get_current_user(header[7:].strip())
    if not user:
        return None, (jsonify({"error": "Utente non autenticato", "message": message}), 401)

    if airport_code:
        allowed = [str(code).upper() for code in user.get('airport_codes') or []]
        if airport_code not in allowed:
            return None, (jsonify({"error": "Aeroporto non assegnato all'utente"}), 403)

    return user, None


def parse_flight_payload(data, partial=False):
    values = {}

    if not partial:
        missing = [f for f in REQUIRED_FLIGHT_FIELDS if not str(data.get(f) or '').strip()]
        if missing:
            return None, f"Campi obbligatori mancanti: {', '.join(missing)}"

    for field in FLIGHT_TEXT_FIELDS:
        if field in data:
            value = str(data[field] or '').strip()
            values[field] = value.upper() if field in UPPERCASE_FIELDS else value

    if 'airport_code' in values and not AIRPORT_RE.match(values['airport_code']):
        return None, "Formato codice aeroporto non valido"

    if 'flight_number' in values and len(values['flight_number']) < 3:
        return None, "Numero volo non valido"

    if not values.get('airline_code') and values.get('flight_number'):
        # The airline designator is the first two characters of the flight number
        values['airline_code'] = values['flight_number'][:2]

    for field in ('scheduled_time', 'actual_time'):
        if field in data:
            if data[field] in (None, '') and field == 'actual_time':
                values[field] = None
                continue
            try:
                values[field] = parse_instant(data[field])
            except (TypeError, ValueError):
                return None, f"Formato data non valido per '{field}' (atteso ISO-8601)"

    if 'status' in data:
        status = str(data['status'] or '').strip().upper()
        if status not in FLIGHT_STATUSES:
            return None, f"Stato non valido, valori ammessi: {', '.join(FLIGHT_STATUSES)}"
        values['status'] = status

    return values, None


@app.route('/health', methods=['GET'])
def health_check():
    return jsonify({"status": "healthy", "service": "dashboard-api"}), 200


@app.route('/flights', methods=['GET'])
def get_flights():
    try:
        airport_raw = request.args.get('airport')
        if not airport_raw:
            return jsonify({"error": "Parametro 'airport' obbligatorio"}), 400

        airport_code = airport_raw.strip().upper()
        date_value = request.args.get('date')

        if date_value and not DATE_RE.match(date_value):
            return jsonify({"error": "Formato data non valido (atteso YYYY-MM-DD)"}), 400

        user, error = authorize(airport_code)
        if error:
            return error

        try:
            start, end = flight_window(date_value)
        except ValueError:
            return jsonify({"error": "Data non valida"}), 400

        query = db.select(Flight).filter(
            Flight.airport_code == airport_code,
            Flight.scheduled_time >= start,
            Flight.scheduled_time <= end
        ).order_by(Flight.scheduled_time.asc())

        flights = db.session.execute(query).scalars().all()

        return jsonify({
            "airport_code": airport_code,
            "from": start.replace(tzinfo=timezone.utc).isoformat(),
            "to": end.replace(tzinfo=timezone.utc).isoformat(),
            "flights": [f.to_dict() for f in flights],
            "count": len(flights)
        }), 200

    except Exception as e:
        return jsonify({"error": f"Errore: {str(e)}"}), 500


@app.route('/flights/<flight_id>', methods=['GET'])
def get_flight(flight_id):
    try:
        flight = db.session.get(Flight, flight_id)
        if not flight:
            return jsonify({"error": "Volo non trovato"}), 404

        user, error = authorize(flight.airport_code)
        if error:
            return error

        return jsonify({"flight": flight.to_dict()}), 200

    except Exception as e:
        return jsonify({"error": f"Errore: {str(e)}"}), 500


@app.route('/flights', methods=['POST'])
def create_flight():
    try:
        if not request.is_json:
            return jsonify({"error": "Content-Type must be application/json"}), 415

        values, message = parse_flight_payload(request.json)
        if message:
            return jsonify({"error": message}), 400

        user, error = authorize(values['airport_code'])
        if error:
            return error

        flight = Flight(**values)
        db.session.add(flight)
        db.session.commit()

        change_publisher.publish('flights', 'INSERT', flight.airport_code)

        return jsonify({
            "message": "Volo creato con successo",
            "flight": flight.to_dict()
        }), 201

    except Exception as e:
        db.session.rollback()
        return jsonify({"error": f"Errore: {str(e)}"}), 500


@app.route('/flights/<flight_id>', methods=['PUT'])
def update_flight(flight_id):
    try:
        if not request.is_json:
            return jsonify({"error": "Content-Type must be application/json"}), 415

        flight = db.session.get(Flight, flight_id)
        if not flight:
            return jsonify({"error": "Volo non trovato"}), 404

        user, error = authorize(flight.airport_code)
        if error:
            return error

        values, message = parse_flight_payload(request.json, partial=True)
        if message:
            return jsonify({"error": message}), 400

        if 'airport_code' in values and values['airport_code'] != flight.airport_code:
            return jsonify({"error": "Il codice aeroporto di un volo non può essere modificato"}), 400

        for field, value in values.items():
            setattr(flight, field, value)
        db.session.commit()

        change_publisher.publish('flights', 'UPDATE', flight.airport_code)

        return jsonify({
            "message": "Volo aggiornato con successo",
            "flight": flight.to_dict()
        }), 200

    except Exception as e:
        db.session.rollback()
        return jsonify({"error": f"Errore: {str(e)}"}), 500


@app.route('/flights/<flight_id>', methods=['DELETE'])
def delete_flight(flight_id):
    try:
        flight = db.session.get(Flight, flight_id)
        if not flight:
            return jsonify({"error": "Volo non trovato"}), 404

        user, error = authorize(flight.airport_code)
        if error:
            return error

        flight_dict = flight.to_dict()
        db.session.delete(flight)
        db.session.commit()

        change_publisher.publish('flights', 'DELETE', flight_dict['airport_code'])

        return jsonify({
            "message": "Volo eliminato con successo",
            "removed": flight_dict
        }), 200

    except Exception as e:
        db.session.rollback()
        return jsonify({"error": f"Errore: {str(e)}"}), 500


@app.route('/announcements', methods=['GET'])
def get_announcements():
    try:
        airport_raw = request.args.get('airport')
        if not airport_raw:
            return jsonify({"error": "Parametro 'airport' obbligatorio"}), 400

        airport_code = airport_raw.strip().upper()

        user, error = authorize(airport_code)
        if error:
            return error

        departure_from = request.args.get('departure_from')
        departure_to = request.args.get('departure_to')

        query = db.select(Announcement).filter_by(airport_code=airport_code) \
            .order_by(Announcement.played_at.desc())

        if departure_from or departure_to:
            # Scoped to the flights departing in the range: complete history, no cap
            try:
                query = query.join(Flight, Announcement.flight_id == Flight.id)
                if departure_from:
                    query = query.filter(Flight.scheduled_time >= parse_instant(departure_from))
                if departure_to:
                    query = query.filter(Flight.scheduled_time <= parse_instant(departure_to))
            except ValueError:
                return jsonify({"error": "Formato 'departure_from'/'departure_to' non valido (atteso ISO-8601)"}), 400
        else:
            limit = int(request.args.get('limit', 500))
            # Hard cap on the history size
            if limit > 1000:
                limit = 1000
            query = query.limit(limit)

        announcements = db.session.execute(query).scalars().all()

        return jsonify({
            "airport_code": airport_code,
            "announcements": [a.to_dict() for a in announcements],
            "count": len(announcements)
        }), 200

    except ValueError:
        return jsonify({"error": "Parametro 'limit' non valido"}), 400
    except Exception as e:
        return jsonify({"error": f"Errore: {str(e)}"}), 500


@app.route('/announcements', methods=['POST'])
def record_announcement():
    try:
        if not request.is_json:
            return jsonify({"error": "Content-Type must be application/json"}), 415

        data = request.json
        flight_id = str(data.get('flight_id') or '').strip()
        announcement_type = str(data.get('announcement_type') or '').strip()
        airport_code = str(data.get('airport_code') or '').strip().upper()

        if not flight_id or not announcement_type or not airport_code:
            return jsonify({"error": "Campi 'flight_id', 'announcement_type' e 'airport_code' obbligatori"}), 400

        if announcement_type not in ANNOUNCEMENT_TYPES:
            return jsonify({"error": f"Tipo di annuncio non valido, valori ammessi: {', '.join(ANNOUNCEMENT_TYPES)}"}), 400

        user, error = authorize(airport_code)
        if error:
            return error

        flight = db.session.get(Flight, flight_id)
        if not flight:
            return jsonify({"error": "Volo non trovato"}), 404
        if flight.airport_code != airport_code:
            return jsonify({"error": "Il volo non appartiene all'aeroporto indicato"}), 400

        played_at = utc_now()
        if data.get('played_at'):
            try:
                played_at = parse_instant(data['played_at'])
            except (TypeError, ValueError):
                return jsonify({"error": "Formato 'played_at' non valido (atteso ISO-8601)"}), 400

        announcement = Announcement(
            flight_id=flight_id,
            announcement_type=announcement_type,
            played_at=played_at,
            played_by=data.get('played_by'),
            airport_code=airport_code
        )
        db.session.add(announcement)
        db.session.commit()

        change_publisher.publish('announcements', 'INSERT', airport_code)

        return jsonify({
            "message": "Annuncio registrato",
            "announcement": announcement.to_dict()
        }), 201

    except IntegrityError as e:
        db.session.rollback()
        print(f"IntegrityError DB: {e.orig}", flush=True)
        return jsonify({"error": "Annuncio già registrato per questo volo"}), 409

    except Exception as e:
        db.session.rollback()
        return jsonify({"error": f"Errore: {str(e)}"}), 500


if __name__ == '__main__':
    print("Avvio Dashboard API...", flush=True)
    print("REST API sulla porta 5001", flush=True)
    try:
        app.run(host='0.0.0.0', port=5001, debug=False)
    finally:
        change_publisher.close()
        user_manager_client.close()

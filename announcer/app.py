from flask import Flask, request, jsonify
from flask_cors import CORS
from prometheus_client import start_http_server
import os
import re

from announcer.accounts import AccountClient
from announcer.audio_sink import PygameAudioSink
from announcer.board import FlightBoard
from announcer.change_listener import ChangeListener
from announcer.dashboard_client import DashboardClient
from announcer.errors import DataAccessError
from announcer.notices import NoticeBoard
from announcer.scheduler import AnnouncementScheduler
from announcer.timers import APSchedulerTimers

DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")


def create_app(board, accounts, notices):
    app = Flask(__name__)
    CORS(app)

    def require_user():
        try:
            user = accounts.current_user()
        except DataAccessError as e:
            return None, (jsonify({"error": f"Errore: {str(e)}"}), 503)
        if user is None:
            return None, (jsonify({"error": "Login richiesto"}), 401)
        return user, None

    @app.route('/health', methods=['GET'])
    def health_check():
        return jsonify({
            "status": "healthy",
            "service": "announcer",
            "airport_code": board.airport_code,
            "board_state": board.state.value,
            "pending_timers": len(board.scheduler.pending_timers)
        }), 200

    @app.route('/login', methods=['POST'])
    def login():
        try:
            if not request.is_json:
                return jsonify({"error": "Content-Type must be application/json"}), 415

            data = request.json
            email = str(data.get('email') or '').strip().lower()
            password = str(data.get('password') or '')

            if not email or not password:
                return jsonify({"error": "Campi 'email' e 'password' obbligatori"}), 400

            user = accounts.login(email, password)
            if user is None:
                return jsonify({"error": "Credenziali non valide"}), 401

            # The station switches to the new operator's first airport, like the board does on load
            if user.airport_codes and not (board.airport_code and user.can_view(board.airport_code)):
                board.select_airport(user.airport_codes[0])

            return jsonify({"user": user.to_dict()}), 200

        except DataAccessError as e:
            return jsonify({"error": f"Errore: {str(e)}"}), 503

    @app.route('/logout', methods=['POST'])
    def logout():
        accounts.logout()
        board.close()
        return jsonify({"message": "Logout effettuato"}), 200

    @app.route('/me', methods=['GET'])
    def me():
        user, error = require_user()
        if error:
            return error
        return jsonify({"user": user.to_dict()}), 200

    @app.route('/board', methods=['GET'])
    def get_board():
        user, error = require_user()
        if error:
            return error
        view = board.snapshot(query=request.args.get('q'))
        view['airport_codes'] = user.airport_codes
        return jsonify(view), 200

    @app.route('/board/airport', methods=['POST'])
    def select_airport():
        user, error = require_user()
        if error:
            return error

        if not request.is_json:
            return jsonify({"error": "Content-Type must be application/json"}), 415

        airport_code = str(request.json.get('airport_code') or '').strip().upper()
        if not airport_code:
            return jsonify({"error": "Campo 'airport_code' obbligatorio"}), 400

        if not user.can_view(airport_code):
            return jsonify({"error": "Aeroporto non assegnato all'utente"}), 403

        refreshed = board.select_airport(airport_code)
        return jsonify({
            "airport_code": airport_code,
            "refreshed": refreshed,
            "flights": len(board.flights)
        }), 200

    @app.route('/board/refresh', methods=['POST'])
    def refresh_board():
        user, error = require_user()
        if error:
            return error
        if board.airport_code is None:
            return jsonify({"error": "Nessun aeroporto selezionato"}), 409
        if 'date' in request.args:
            date_value = request.args.get('date').strip()
            if date_value and not DATE_RE.match(date_value):
                return jsonify({"error": "Formato data non valido (atteso YYYY-MM-DD)"}), 400
            # Only the displayed list changes, the announcement schedule stays on the live list
            refreshed = board.show_date(date_value or None)
        else:
            refreshed = board.refresh()
        return jsonify({
            "refreshed": refreshed,
            "date": board.view_date,
            "flights": len(board.view_flights if board.view_date else board.flights)
        }), 200

    @app.route('/board/announcements', methods=['POST'])
    def play_announcement():
        user, error = require_user()
        if error:
            return error

        if not request.is_json:
            return jsonify({"error": "Content-Type must be application/json"}), 415

        data = request.json
        flight_id = str(data.get('flight_id') or '').strip()
        if not flight_id or not data.get('announcement_type'):
            return jsonify({"error": "Campi 'flight_id' e 'announcement_type' obbligatori"}), 400

        try:
            played = board.play(flight_id, data['announcement_type'], played_by=user.id)
        except ValueError as e:
            return jsonify({"error": str(e)}), 400

        if not played:
            latest = notices.recent(limit=1)
            return jsonify({
                "played": False,
                "notice": latest[0] if latest else None
            }), 409

        return jsonify({"played": True}), 200

    @app.route('/board/history', methods=['GET'])
    def announcement_history():
        user, error = require_user()
        if error:
            return error
        try:
            announcements = board.history()
        except DataAccessError as e:
            notices.error("Storico annunci non disponibile", str(e))
            return jsonify({"error": f"Errore: {str(e)}"}), 503
        return jsonify({
            "airport_code": board.airport_code,
            "announcements": [a.to_dict() for a in announcements],
            "count": len(announcements)
        }), 200

    @app.route('/notices', methods=['GET'])
    def get_notices():
        try:
            limit = int(request.args.get('limit', 20))
        except ValueError:
            return jsonify({"error": "Parametro 'limit' non valido"}), 400
        return jsonify({"notices": notices.recent(limit=limit)}), 200

    return app


def main():
    print("Avvio Announcer...", flush=True)

    notices = NoticeBoard()
    accounts = AccountClient()
    data_source = DashboardClient(token_provider=lambda: accounts.token)
    timers = APSchedulerTimers()
    listener = ChangeListener()
    sink = PygameAudioSink()

    scheduler = AnnouncementScheduler(timers, sink, data_source, notices)
    refresh_interval = int(os.getenv('REFRESH_INTERVAL_SECONDS', '300'))
    board = FlightBoard(data_source, scheduler, listener, notices, refresh_interval=refresh_interval)
    app = create_app(board, accounts, notices)

    metrics_port = int(os.getenv('METRICS_PORT', '8000'))
    start_http_server(metrics_port)
    print(f"Metriche Prometheus sulla porta {metrics_port}", flush=True)

    timers.start()
    listener.start()

    email = os.getenv('ANNOUNCER_EMAIL')
    password = os.getenv('ANNOUNCER_PASSWORD')
    if email and password:
        try:
            user = accounts.login(email, password)
            if user and user.airport_codes:
                airport_code = os.getenv('ANNOUNCER_AIRPORT', user.airport_codes[0]).upper()
                if user.can_view(airport_code):
                    board.select_airport(airport_code)
                else:
                    print(f"Aeroporto {airport_code} non assegnato a {email}", flush=True)
        except DataAccessError as e:
            print(f"Login automatico fallito: {e}", flush=True)

    print("REST API sulla porta 5002", flush=True)
    try:
        app.run(host='0.0.0.0', port=5002, debug=False)
    finally:
        board.close()
        timers.stop()
        listener.stop()
        sink.stop()
        data_source.close()


if __name__ == '__main__':
    main()

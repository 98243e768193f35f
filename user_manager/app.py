from flask import Flask, request, jsonify
from flask_cors import CORS
from user_manager.database import db
from user_manager.models import User, AuthSession, ROLES, hash_token, utc_now
from sqlalchemy.exc import IntegrityError
from datetime import timedelta
import threading
import secrets
import os
import re
import time

app = Flask(__name__)
CORS(app)

# Configs for Database (USER_DB_URI overrides the MySQL settings, e.g. for local runs)
app.config['SQLALCHEMY_DATABASE_URI'] = os.getenv('USER_DB_URI') or \
    f"mysql+pymysql://{os.getenv('DB_USER')}:{os.getenv('DB_PASSWORD')}@{os.getenv('DB_HOST')}:{os.getenv('DB_PORT')}/{os.getenv('DB_NAME')}"
app.config['SQLALCHEMY_TRACK_MODIFICATIONS'] = False

db.init_app(app)

SESSION_TTL_HOURS = int(os.getenv('SESSION_TTL_HOURS', '12'))
AIRPORT_RE = re.compile(r'^[A-Z]{3,4}$')


def ensure_admin():
    # Without a first admin nobody could create accounts
    email = (os.getenv('ADMIN_EMAIL') or '').strip().lower()
    password = os.getenv('ADMIN_PASSWORD')
    if not email or not password:
        return None

    existing = db.session.execute(db.select(User).filter_by(email=email)).scalar_one_or_none()
    if existing:
        return existing

    admin = User(email=email, role='admin', airport_codes=[])
    admin.set_password(password)
    db.session.add(admin)
    db.session.commit()
    print(f"Amministratore iniziale creato: {email}", flush=True)
    return admin


with app.app_context():
    db.create_all()
    ensure_admin()


# Session Cleaner Thread
def clean_expired_sessions():
    while True:
        with app.app_context():
            try:
                deleted = db.session.execute(
                    db.delete(AuthSession).where(AuthSession.expires_at < utc_now())
                )
                db.session.commit()
                if deleted.rowcount > 0:
                    print(f"[Session Cleaner] Rimosse {deleted.rowcount} sessioni scadute.", flush=True)
            except Exception as e:
                db.session.rollback()
                print(f"[Session Cleaner] Errore: {e}", flush=True)
            finally:
                db.session.remove()

        # Run every 5 minutes
        time.sleep(300)


def start_session_cleaner():
    cleaner_thread = threading.Thread(target=clean_expired_sessions, daemon=True)
    cleaner_thread.start()
    return cleaner_thread


def is_valid_email(email):
    email_regex = r'^[a-zA-Z0-9_.+-]+@[a-zA-Z0-9-]+\.[a-zA-Z0-9-.]+$'
    return re.match(email_regex, email) is not None


# Helper for robust input sanitization: handles None values (JSON null) gracefully
def get_clean_input(data, key):
    val = data.get(key)
    if val is None:
        return ""
    return str(val).strip()


def clean_airport_codes(value):
    if value is None:
        return [], None
    if not isinstance(value, list):
        return None, "Il campo 'airport_codes' deve essere una lista"
    codes = []
    for code in value:
        clean = str(code or '').strip().upper()
        if not AIRPORT_RE.match(clean):
            return None, f"Codice aeroporto non valido: {code}"
        if clean not in codes:
            codes.append(clean)
    return codes, None


def get_bearer_token():
    header = request.headers.get('Authorization', '')
    if header.startswith('Bearer '):
        return header[7:].strip() or None
    return None


def current_user():
    token = get_bearer_token()
    if not token:
        return None

    session = db.session.get(AuthSession, hash_token(token))
    if not session or session.is_expired():
        return None
    return session.user


def require_admin():
    user = current_user()
    if user is None:
        return None, (jsonify({"error": "Utente non autenticato"}), 401)
    if not user.is_admin:
        return None, (jsonify({"error": "Operazione riservata agli amministratori"}), 403)
    return user, None


@app.route('/health', methods=['GET'])
def health_check():
    return jsonify({"status": "healthy", "service": "user-manager"}), 200


@app.route('/login', methods=['POST'])
def login():
    try:
        if not request.is_json:
            return jsonify({"error": "Content-Type must be application/json"}), 415

        data = request.json
        email = get_clean_input(data, 'email').lower()
        password = get_clean_input(data, 'password')

        if not email or not password:
            return jsonify({"error": "Campi 'email' e 'password' obbligatori"}), 400

        user = db.session.execute(db.select(User).filter_by(email=email)).scalar_one_or_none()
        if not user or not user.check_password(password):
            return jsonify({"error": "Credenziali non valide"}), 401

        token = secrets.token_urlsafe(32)
        db.session.add(AuthSession(
            token_hash=hash_token(token),
            user_id=user.id,
            expires_at=utc_now() + timedelta(hours=SESSION_TTL_HOURS)
        ))
        db.session.commit()

        print(f"Login effettuato: {email}", flush=True)
        return jsonify({
            "token": token,
            "expires_in": SESSION_TTL_HOURS * 3600,
            "user": user.to_dict()
        }), 200

    except Exception as e:
        db.session.rollback()
        return jsonify({"error": f"Errore durante il login: {str(e)}"}), 500


@app.route('/logout', methods=['POST'])
def logout():
    try:
        token = get_bearer_token()
        if not token:
            return jsonify({"error": "Token di accesso mancante"}), 401

        session = db.session.get(AuthSession, hash_token(token))
        if session:
            db.session.delete(session)
            db.session.commit()

        return jsonify({"message": "Logout effettuato"}), 200

    except Exception as e:
        db.session.rollback()
        return jsonify({"error": f"Errore durante il logout: {str(e)}"}), 500


@app.route('/me', methods=['GET'])
def me():
    try:
        user = current_user()
        if user is None:
            return jsonify({"error": "Sessione non valida o scaduta"}), 401
        return jsonify({"user": user.to_dict()}), 200

    except Exception as e:
        return jsonify({"error": f"Errore durante la verifica: {str(e)}"}), 500


@app.route('/users', methods=['GET'])
def get_all_users():
    try:
        admin, error = require_admin()
        if error:
            return error

        users = db.session.execute(db.select(User).order_by(User.created_at.desc())).scalars().all()

        return jsonify({
            "count": len(users),
            "users": [user.to_dict() for user in users]
        }), 200

    except Exception as e:
        return jsonify({"error": f"Errore durante il recupero: {str(e)}"}), 500


@app.route('/users', methods=['POST'])
def create_user():
    try:
        admin, error = require_admin()
        if error:
            return error

        if not request.is_json:
            return jsonify({"error": "Content-Type must be application/json"}), 415

        data = request.json
        email = get_clean_input(data, 'email').lower()
        role = get_clean_input(data, 'role').lower() or 'operator'
        password = get_clean_input(data, 'password')

        if not email:
            return jsonify({"error": "Campo 'email' obbligatorio"}), 400

        if not is_valid_email(email):
            return jsonify({"error": "Formato email non valido"}), 400

        if role not in ROLES:
            return jsonify({"error": f"Ruolo non valido, valori ammessi: {', '.join(ROLES)}"}), 400

        airport_codes, message = clean_airport_codes(data.get('airport_codes'))
        if message:
            return jsonify({"error": message}), 400

        # A temporary password is generated when the admin does not set one
        generated = not password
        if generated:
            password = secrets.token_urlsafe(9)

        new_user = User(email=email, role=role, airport_codes=airport_codes)
        new_user.set_password(password)
        db.session.add(new_user)
        db.session.commit()

        response_body = {
            "message": "Utente creato con successo",
            "user": new_user.to_dict()
        }
        if generated:
            response_body["temporary_password"] = password

        return jsonify(response_body), 201

    except IntegrityError as e:
        db.session.rollback()
        print(f"IntegrityError DB: {e.orig}", flush=True)
        return jsonify({"error": "Email già registrata"}), 409

    except Exception as e:
        db.session.rollback()
        return jsonify({"error": f"Errore durante la registrazione: {str(e)}"}), 500


@app.route('/users/<user_id>', methods=['GET'])
def get_user(user_id):
    try:
        admin, error = require_admin()
        if error:
            return error

        user = db.session.get(User, user_id)
        if not user:
            return jsonify({"error": "Utente non trovato"}), 404

        return jsonify({"user": user.to_dict()}), 200

    except Exception as e:
        return jsonify({"error": f"Errore durante il recupero: {str(e)}"}), 500


@app.route('/users/<user_id>', methods=['PUT'])
def update_user(user_id):
    try:
        admin, error = require_admin()
        if error:
            return error

        if not request.is_json:
            return jsonify({"error": "Content-Type must be application/json"}), 415

        user = db.session.get(User, user_id)
        if not user:
            return jsonify({"error": "Utente non trovato"}), 404

        data = request.json

        if 'role' in data:
            role = get_clean_input(data, 'role').lower()
            if role not in ROLES:
                return jsonify({"error": f"Ruolo non valido, valori ammessi: {', '.join(ROLES)}"}), 400
            if user.id == admin.id and role != 'admin':
                return jsonify({"error": "Non puoi revocare il tuo ruolo di amministratore"}), 409
            user.role = role

        if 'airport_codes' in data:
            airport_codes, message = clean_airport_codes(data.get('airport_codes'))
            if message:
                return jsonify({"error": message}), 400
            user.airport_codes = airport_codes

        if get_clean_input(data, 'password'):
            user.set_password(get_clean_input(data, 'password'))

        db.session.commit()

        return jsonify({
            "message": "Utente aggiornato con successo",
            "user": user.to_dict()
        }), 200

    except Exception as e:
        db.session.rollback()
        return jsonify({"error": f"Errore durante l'aggiornamento: {str(e)}"}), 500


@app.route('/users/<user_id>', methods=['DELETE'])
def delete_user(user_id):
    try:
        admin, error = require_admin()
        if error:
            return error

        user = db.session.get(User, user_id)
        if not user:
            return jsonify({"error": "Utente non trovato"}), 404

        if user.id == admin.id:
            return jsonify({"error": "Non puoi eliminare il tuo stesso account"}), 409

        user_dict = user.to_dict()
        # Sessions go with the user (cascade), so its tokens stop working immediately
        db.session.delete(user)
        db.session.commit()

        return jsonify({
            "message": "Utente eliminato con successo",
            "user": user_dict
        }), 200

    except Exception as e:
        db.session.rollback()
        return jsonify({"error": f"Errore durante l'eliminazione: {str(e)}"}), 500


if __name__ == '__main__':
    print("Avvio User Manager Service...", flush=True)
    print("REST API sulla porta 5000", flush=True)
    start_session_cleaner()
    app.run(host='0.0.0.0', port=5000, debug=False)

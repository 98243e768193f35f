from user_manager.database import db
from werkzeug.security import generate_password_hash, check_password_hash
from datetime import datetime, timezone
import hashlib
import uuid

ROLES = ('admin', 'operator')


def utc_now():
    return datetime.now(timezone.utc).replace(tzinfo=None)


def hash_token(token):
    # Only the SHA-256 of a bearer token is stored
    return hashlib.sha256(token.encode()).hexdigest()


class User(db.Model):
    __tablename__ = 'users'

    id = db.Column(db.String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    email = db.Column(db.String(255), unique=True, nullable=False)
    role = db.Column(db.String(20), nullable=False, default='operator')
    airport_codes = db.Column(db.JSON, nullable=False, default=lambda: [])
    password_hash = db.Column(db.String(255), nullable=False)
    created_at = db.Column(db.DateTime, default=utc_now)

    sessions = db.relationship('AuthSession', back_populates='user', cascade='all, delete-orphan')

    def set_password(self, password):
        self.password_hash = generate_password_hash(password)

    def check_password(self, password):
        return check_password_hash(self.password_hash, password)

    @property
    def is_admin(self):
        return self.role == 'admin'

    def to_dict(self):
        return {
            'id': self.id,
            'email': self.email,
            'role': self.role,
            'airport_codes': list(self.airport_codes or []),
            'created_at': self.created_at.replace(tzinfo=timezone.utc).isoformat() if self.created_at else None
        }


class AuthSession(db.Model):
    __tablename__ = 'auth_sessions'

    token_hash = db.Column(db.String(64), primary_key=True)
    user_id = db.Column(db.String(36), db.ForeignKey('users.id', ondelete='CASCADE'), nullable=False, index=True)
    created_at = db.Column(db.DateTime, default=utc_now)
    expires_at = db.Column(db.DateTime, nullable=False, index=True)

    user = db.relationship('User', back_populates='sessions')

    def is_expired(self, now=None):
        return (now or utc_now()) >= self.expires_at

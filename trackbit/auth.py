"""
Authentication — session tokens, password hashing and the identity dependencies.

Requests authenticate with ``Authorization: Bearer <token>``. The token is
looked up in auth_sessions and resolved to an Identity, which handlers and
CRUD hooks receive explicitly.
"""

import datetime
import secrets
import sqlite3
from dataclasses import dataclass
from typing import Optional

from fastapi import Depends, HTTPException
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from passlib.context import CryptContext

from .crud_engine import CrudEngine
from .db import get_db
from .tables import AUTH_SESSIONS

pwd_context = CryptContext(schemes=['bcrypt'], deprecated='auto')
bearer_scheme = HTTPBearer(auto_error=False)
ADMIN_ROLE = 'admin'


@dataclass(frozen=True)
class Identity:
    id: str
    email: str
    role: str = 'user'
    name: str = ''

    @property
    def is_admin(self) -> bool:
        return self.role == ADMIN_ROLE


def utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


def parse_timestamp(value: str) -> datetime.datetime:
    """Parse a stored ISO-8601 timestamp, treating naive values as UTC."""
    parsed = datetime.datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=datetime.timezone.utc)
    return parsed


def hash_password(password: str, rounds: int | None = None) -> str:
    """bcrypt hash of a password; ``rounds`` overrides the work factor."""
    if rounds is None:
        return pwd_context.hash(password)
    return pwd_context.handler().using(rounds=rounds).hash(password)


def verify_password(password: str, encoded: str) -> bool:
    """Check a password against a stored hash; unrecognised hashes never match."""
    if not pwd_context.identify(encoded):
        return False
    return pwd_context.verify(password, encoded)


def create_session(conn: sqlite3.Connection, user_id: str, ttl_days: int = 30) -> dict:
    """Issue a new session token for a user."""
    engine = CrudEngine(conn, AUTH_SESSIONS)
    return engine.insert({
        'token': secrets.token_urlsafe(32),
        'user_id': user_id,
        'expires_at': utcnow() + datetime.timedelta(days=ttl_days),
    })


def resolve_token(conn: sqlite3.Connection, token: str) -> Optional[Identity]:
    row = conn.execute(
        """SELECT u.id, u.email, u.role, u.name, s.expires_at
           FROM auth_sessions s
           JOIN users u ON u.id = s.user_id
           WHERE s.token = ?""",
        (token,),
    ).fetchone()
    if row is None:
        return None
    if parse_timestamp(row['expires_at']) <= utcnow():
        return None
    return Identity(id=row['id'], email=row['email'], role=row['role'], name=row['name'])


def get_optional_identity(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    conn: sqlite3.Connection = Depends(get_db),
) -> Optional[Identity]:
    """Resolve the caller, or None for anonymous requests."""
    if credentials is None:
        return None
    return resolve_token(conn, credentials.credentials)


def require_identity(identity: Optional[Identity] = Depends(get_optional_identity)) -> Identity:
    """Raise 401 unless the request carries a valid session."""
    if identity is None:
        raise HTTPException(status_code=401, detail="Unauthorized")
    return identity


def require_admin(identity: Identity = Depends(require_identity)) -> Identity:
    """Raise 403 unless the caller has the admin role."""
    if not identity.is_admin:
        raise HTTPException(status_code=403, detail="Admin role required")
    return identity

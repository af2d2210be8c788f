"""
Account endpoints — invite-gated sign-up, sign-in, sign-out and session lookup.
"""

import dataclasses
import logging
import sqlite3
import uuid
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import JSONResponse
from fastapi.security import HTTPAuthorizationCredentials
from pydantic import BaseModel, StringConstraints, field_validator

from ..auth import (
    Identity, bearer_scheme, create_session, hash_password, parse_timestamp,
    require_identity, utcnow, verify_password,
)
from ..crud_engine import CrudEngine, transaction
from ..db import get_db
from ..errors import HookRejected
from ..tables import AUTH_SESSIONS, INVITES, USERS

logger = logging.getLogger(__name__)

router = APIRouter()

NonBlank = Annotated[str, StringConstraints(strip_whitespace=True, min_length=1)]


class SignUpBody(BaseModel):
    name: NonBlank
    email: NonBlank
    password: Annotated[str, StringConstraints(min_length=8, max_length=128)]
    invite_code: NonBlank

    @field_validator('email')
    @classmethod
    def normalize_email(cls, value):
        value = value.lower()
        if '@' not in value:
            raise ValueError('Invalid e-mail address')
        return value


class SignInBody(BaseModel):
    email: NonBlank
    password: str

    @field_validator('email')
    @classmethod
    def normalize_email(cls, value):
        return value.lower()


def _session_payload(session: dict, user: dict) -> dict:
    return {
        'token': session['token'],
        'expires_at': session['expires_at'],
        'user': {'id': user['id'], 'name': user['name'], 'email': user['email'],
                 'role': user['role']},
    }


def _session_ttl(request: Request) -> int:
    return request.app.state.settings.session_ttl_days


def _redeem_invite(conn: sqlite3.Connection, code: str, email: str) -> dict:
    """Validate an invite for an e-mail address and consume one use."""
    invites = CrudEngine(conn, INVITES)
    invite = invites.find_one({'code': code})
    now = utcnow()
    if (invite is None
            or invite['uses'] >= invite['max_uses']
            or (invite['expires_at'] and parse_timestamp(invite['expires_at']) <= now)
            or (invite['email'] and invite['email'] != email)):
        raise HookRejected('Invalid or expired invite code', path='invite_code',
                           code='invalid_invite')
    uses = invite['uses'] + 1
    changes = {'uses': uses}
    if uses >= invite['max_uses']:
        changes['consumed_at'] = now
    return invites.update(changes, {'id': invite['id']})


@router.post('/sign-up', status_code=201)
def api_sign_up(body: SignUpBody, request: Request,
                conn: sqlite3.Connection = Depends(get_db)):
    with transaction(conn):
        invite = _redeem_invite(conn, body.invite_code, body.email)
        user = CrudEngine(conn, USERS).insert({
            'id': str(uuid.uuid4()),
            'name': body.name,
            'email': body.email,
            'role': invite['role'],
            'password_hash': hash_password(body.password),
        })
        session = create_session(conn, user['id'], _session_ttl(request))
    logger.info("User %s signed up with role %s", user['id'], user['role'])
    return JSONResponse(_session_payload(session, user), status_code=201)


@router.post('/sign-in')
def api_sign_in(body: SignInBody, request: Request,
                conn: sqlite3.Connection = Depends(get_db)):
    user = CrudEngine(conn, USERS).find_one({'email': body.email})
    if user is None or not verify_password(body.password, user['password_hash']):
        raise HTTPException(status_code=401, detail="Invalid email or password")
    with transaction(conn):
        session = create_session(conn, user['id'], _session_ttl(request))
    logger.info("User %s signed in", user['id'])
    return _session_payload(session, user)


@router.post('/sign-out')
def api_sign_out(identity: Identity = Depends(require_identity),
                 credentials: HTTPAuthorizationCredentials = Depends(bearer_scheme),
                 conn: sqlite3.Connection = Depends(get_db)):
    CrudEngine(conn, AUTH_SESSIONS).delete({'token': credentials.credentials})
    return {'success': True}


@router.get('/session')
def api_session(identity: Identity = Depends(require_identity)):
    return dataclasses.asdict(identity)

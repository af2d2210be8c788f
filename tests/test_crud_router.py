"""
Tests for generate_crud_router() on synthetic tables.

Uses a notes table (owner column, unique title) and a scores table with a
composite (player, round) key, mounted on a bare FastAPI app that shares
the Trackbit users/sessions for authentication.
"""

import sqlite3
import threading
from concurrent.futures import ThreadPoolExecutor

import pytest
from fastapi import Depends, FastAPI
from starlette.testclient import TestClient

from trackbit.auth import Identity, require_identity
from trackbit.crud_router import CrudContext, CustomEndpoint, generate_crud_router
from trackbit.db import get_connection, get_db
from trackbit.entity_schema import ColumnDef, TableDescriptor, compile_schemas
from trackbit.errors import HookRejected, install_error_handlers

NOTES = TableDescriptor(
    name='notes',
    columns=(
        ColumnDef('id', 'integer', server_managed=True),
        ColumnDef('user_id', 'text'),
        ColumnDef('title', 'text'),
        ColumnDef('body', 'text', nullable=True),
        ColumnDef('created_at', 'timestamp', server_managed=True),
    ),
    primary_key=('id',),
    owner_column='user_id',
)

SCORES = TableDescriptor(
    name='scores',
    columns=(
        ColumnDef('player', 'text'),
        ColumnDef('round', 'integer'),
        ColumnDef('points', 'integer', has_default=True),
    ),
    primary_key=('player', 'round'),
)

DDL = """
    CREATE TABLE notes (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        user_id TEXT NOT NULL REFERENCES users(id),
        title TEXT NOT NULL UNIQUE,
        body TEXT,
        created_at TEXT NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%fZ', 'now'))
    );
    CREATE TABLE scores (
        player TEXT NOT NULL,
        round INTEGER NOT NULL,
        points INTEGER NOT NULL DEFAULT 0,
        PRIMARY KEY (player, round)
    );
    INSERT INTO notes (user_id, title, body) VALUES ('u-alice', 'Groceries', 'milk');
    INSERT INTO notes (user_id, title, body) VALUES ('u-bob', 'Secrets', 'hidden');
    INSERT INTO scores (player, round, points) VALUES ('ann', 1, 10);
    INSERT INTO scores (player, round, points) VALUES ('ann', 2, 20);
    INSERT INTO scores (player, round, points) VALUES ('bob', 1, 5);
"""

note_schemas = compile_schemas(NOTES, omit_from_create_update=['user_id'])
score_schemas = compile_schemas(SCORES)


def _stamp_owner(ctx: CrudContext, data: dict) -> dict:
    if data['title'] == 'forbidden':
        raise HookRejected('Title is reserved', path='title')
    if data['title'] == 'bad':
        raise ValueError('Plain value errors are rejected too')
    return {**data, 'user_id': ctx.identity.id}


def _add_length(ctx: CrudContext, row: dict, data: dict) -> dict:
    return {**row, 'title_length': len(row['title'])}


def _count_notes(identity: Identity = Depends(require_identity),
                 conn: sqlite3.Connection = Depends(get_db)):
    count = conn.execute("SELECT COUNT(*) FROM notes WHERE user_id = ?",
                         (identity.id,)).fetchone()[0]
    return {'count': count}


def _explode(ctx: CrudContext):
    raise RuntimeError('database on fire')


@pytest.fixture
def router_app(trackbit_db):
    conn = get_connection(trackbit_db)
    conn.executescript(DDL)
    conn.close()

    app = FastAPI()
    app.state.db_path = trackbit_db
    install_error_handlers(app)

    app.include_router(generate_crud_router(
        NOTES, note_schemas,
        ownership_check=lambda ctx, row: row['user_id'] == ctx.identity.id,
        before_create=_stamp_owner,
        after_create=_add_length,
        custom_endpoints=[CustomEndpoint('GET', '/count', _count_notes)],
    ), prefix='/notes')
    app.include_router(generate_crud_router(SCORES, score_schemas, is_public=True),
                       prefix='/scores')
    app.include_router(generate_crud_router(
        NOTES, note_schemas,
        omit_operations=['update', 'delete'],
        overrides={'list': lambda ctx: [{'title': r['title']} for r in ctx.engine().select()]},
    ), prefix='/titles')
    app.include_router(generate_crud_router(
        NOTES, note_schemas, overrides={'list': _explode},
    ), prefix='/broken')
    return app


@pytest.fixture
def alice(router_app):
    with TestClient(router_app, headers={'Authorization': 'Bearer token-alice'}) as client:
        yield client


@pytest.fixture
def bob(router_app):
    with TestClient(router_app, headers={'Authorization': 'Bearer token-bob'}) as client:
        yield client


@pytest.fixture
def anon(router_app):
    with TestClient(router_app) as client:
        yield client


# ═══════════════════════════════════════════════════════════════════════
# Canonical operations
# ═══════════════════════════════════════════════════════════════════════

def test_create_returns_inserted_row(alice):
    """POST creates the row and returns server-assigned columns."""
    resp = alice.post('/notes', json={'title': 'Todo', 'body': None})
    assert resp.status_code == 201
    data = resp.json()
    assert data['id'] == 3
    assert data['user_id'] == 'u-alice'
    assert data['created_at']
    assert data['title_length'] == 4


def test_list_scoped_to_owner(alice):
    resp = alice.get('/notes')
    assert resp.status_code == 200
    assert [n['title'] for n in resp.json()] == ['Groceries']


def test_get_own_row(alice):
    resp = alice.get('/notes/1')
    assert resp.status_code == 200
    assert resp.json()['body'] == 'milk'


def test_update_returns_updated_row(alice):
    resp = alice.patch('/notes/1', json={'body': 'eggs'})
    assert resp.status_code == 200
    assert resp.json()['body'] == 'eggs'
    assert resp.json()['title'] == 'Groceries'


def test_delete_returns_key(alice):
    resp = alice.delete('/notes/1')
    assert resp.status_code == 200
    assert resp.json() == {'success': True, 'pk': {'id': 1}}
    assert alice.get('/notes/1').status_code == 404


# ═══════════════════════════════════════════════════════════════════════
# Not found / unauthorized collapsing
# ═══════════════════════════════════════════════════════════════════════

def test_foreign_and_missing_rows_are_indistinguishable(alice):
    """A row owned by someone else looks exactly like a missing row."""
    foreign = alice.get('/notes/2')
    missing = alice.get('/notes/999')
    assert foreign.status_code == missing.status_code == 404
    assert foreign.content == missing.content
    assert foreign.json() == {'error': 'Not found or unauthorized'}


def test_foreign_update_and_delete_leave_row_intact(alice, bob):
    assert alice.patch('/notes/2', json={'body': 'pwned'}).status_code == 404
    assert alice.delete('/notes/2').status_code == 404
    resp = bob.get('/notes/2')
    assert resp.status_code == 200
    assert resp.json()['body'] == 'hidden'


def test_requires_identity(anon):
    assert anon.get('/notes').status_code == 401
    assert anon.post('/notes', json={'title': 'x'}).status_code == 401


# ═══════════════════════════════════════════════════════════════════════
# Validation
# ═══════════════════════════════════════════════════════════════════════

def test_update_with_empty_body(alice):
    resp = alice.patch('/notes/1', json={})
    assert resp.status_code == 400
    data = resp.json()
    assert data['message'] == 'Validation failed'
    assert 'At least one field must be provided for update' in data['errors'][0]['message']


def test_create_rejects_server_managed_column(alice):
    resp = alice.post('/notes', json={'title': 'Todo', 'id': 50})
    assert resp.status_code == 400
    assert resp.json()['errors'][0] == {
        'path': 'id', 'message': 'Extra inputs are not permitted', 'code': 'extra_forbidden'}


def test_create_rejects_owner_column(alice):
    resp = alice.post('/notes', json={'title': 'Todo', 'user_id': 'u-bob'})
    assert resp.status_code == 400
    assert resp.json()['errors'][0]['path'] == 'user_id'


def test_invalid_key_parameter(alice):
    for bad in ('0', '-1', 'abc'):
        resp = alice.get(f'/notes/{bad}')
        assert resp.status_code == 400
        assert resp.json()['errors'][0]['path'] == 'id'


def test_malformed_json(alice):
    resp = alice.post('/notes', content=b'{"title": ', headers={'Content-Type': 'application/json'})
    assert resp.status_code == 400
    assert resp.json()['message'] == 'Validation failed'


# ═══════════════════════════════════════════════════════════════════════
# Composite keys and public routers
# ═══════════════════════════════════════════════════════════════════════

def test_composite_key_exact_match(anon):
    resp = anon.get('/scores/ann/2')
    assert resp.status_code == 200
    assert resp.json() == {'player': 'ann', 'round': 2, 'points': 20}
    assert anon.get('/scores/ann/3').status_code == 404
    assert anon.get('/scores/carl/1').status_code == 404


def test_composite_key_update_touches_one_row(anon):
    resp = anon.patch('/scores/ann/1', json={'points': 99})
    assert resp.status_code == 200
    assert resp.json()['points'] == 99
    assert anon.get('/scores/ann/2').json()['points'] == 20
    assert anon.get('/scores/bob/1').json()['points'] == 5


def test_composite_key_delete(anon):
    resp = anon.delete('/scores/bob/1')
    assert resp.json() == {'success': True, 'pk': {'player': 'bob', 'round': 1}}
    assert [s['player'] for s in anon.get('/scores').json()] == ['ann', 'ann']


def test_public_create_uses_database_default(anon):
    resp = anon.post('/scores', json={'player': 'dee', 'round': 1})
    assert resp.status_code == 201
    assert resp.json()['points'] == 0


def test_duplicate_key_conflict(anon):
    resp = anon.post('/scores', json={'player': 'ann', 'round': 1})
    assert resp.status_code == 409
    body = resp.json()
    assert body['message'] == 'Conflict'
    assert body['errors'][0]['code'] == 'unique_violation'


# ═══════════════════════════════════════════════════════════════════════
# Hooks, overrides, omitted operations, custom endpoints
# ═══════════════════════════════════════════════════════════════════════

def test_hook_rejection(alice):
    resp = alice.post('/notes', json={'title': 'forbidden'})
    assert resp.status_code == 400
    assert resp.json()['errors'] == [
        {'path': 'title', 'message': 'Title is reserved', 'code': 'hook_rejected'}]


def test_hook_value_error(alice):
    resp = alice.post('/notes', json={'title': 'bad'})
    assert resp.status_code == 400
    assert resp.json()['errors'][0]['code'] == 'hook_rejected'


def test_unique_violation(alice):
    resp = alice.post('/notes', json={'title': 'Secrets'})
    assert resp.status_code == 409
    assert resp.json()['errors'][0]['code'] == 'unique_violation'
    assert resp.json()['errors'][0]['path'] == 'title'


def test_concurrent_duplicate_creates(alice, bob):
    """Two simultaneous creates of the same unique title: one 201, one 409."""
    barrier = threading.Barrier(2)

    def post(client):
        barrier.wait()
        return client.post('/notes', json={'title': 'Race'})

    with ThreadPoolExecutor(max_workers=2) as pool:
        responses = list(pool.map(post, [alice, bob]))

    assert sorted(r.status_code for r in responses) == [201, 409]
    conflict = [r for r in responses if r.status_code == 409][0]
    assert conflict.json()['errors'][0]['code'] == 'unique_violation'


def test_custom_endpoint_not_shadowed_by_key_route(alice):
    resp = alice.get('/notes/count')
    assert resp.status_code == 200
    assert resp.json() == {'count': 1}


def test_list_override(alice):
    resp = alice.get('/titles')
    assert resp.json() == [{'title': 'Groceries'}, {'title': 'Secrets'}]


def test_omitted_operations_not_registered(alice):
    assert alice.get('/titles/1').status_code == 200
    assert alice.patch('/titles/1', json={'body': 'x'}).status_code == 405
    assert alice.delete('/titles/1').status_code == 405


def test_unhandled_error_is_opaque(router_app):
    with TestClient(router_app, raise_server_exceptions=False,
                    headers={'Authorization': 'Bearer token-alice'}) as client:
        resp = client.get('/broken')
    assert resp.status_code == 500
    assert resp.json() == {'message': 'Internal Server Error'}


def test_unknown_operation_rejected():
    with pytest.raises(ValueError, match='Unknown CRUD operation'):
        generate_crud_router(NOTES, note_schemas, omit_operations=['purge'])

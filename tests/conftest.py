"""
Shared test fixtures for the Trackbit test suite.

  - trackbit_db: schema + default seed + sample users, sessions and habits
  - app: create_app() bound to trackbit_db (rate limiting disabled)
  - anon_client / alice_client / bob_client / admin_client / free_client:
    TestClients with (or without) a session token

Sample data:
  users:    alice (tester), bob (tester), root (admin), frank (user, no limits)
  habits:   1 "Read" (alice), 2 "Run" (alice, complex), 3 "Stretch" (bob)
  day_logs: (1, 2024-01-01) rating 3
"""

import pytest
from starlette.testclient import TestClient

from trackbit.app import create_app
from trackbit.auth import hash_password
from trackbit.config import Settings
from trackbit.db import init_db, seed_defaults

PASSWORD = 'correct-horse'

# (id, name, email, role, session token)
USERS = [
    ('u-alice', 'Alice', 'alice@example.com', 'tester', 'token-alice'),
    ('u-bob', 'Bob', 'bob@example.com', 'tester', 'token-bob'),
    ('u-root', 'Root', 'root@example.com', 'admin', 'token-root'),
    ('u-frank', 'Frank', 'frank@example.com', 'user', 'token-frank'),
]


@pytest.fixture
def trackbit_db(tmp_path):
    """Create a seeded Trackbit database with sample users and habits."""
    db_path = str(tmp_path / "trackbit.db")
    conn = init_db(db_path)
    seed_defaults(conn)

    # Minimum bcrypt work factor keeps the fixture fast; verify reads it from the hash.
    password_hash = hash_password(PASSWORD, rounds=4)
    for user_id, name, email, role, token in USERS:
        conn.execute(
            "INSERT INTO users (id, name, email, role, password_hash) VALUES (?, ?, ?, ?, ?)",
            (user_id, name, email, role, password_hash))
        conn.execute(
            "INSERT INTO auth_sessions (token, user_id, expires_at) VALUES (?, ?, ?)",
            (token, user_id, '2999-01-01T00:00:00+00:00'))

    conn.executescript("""
        INSERT INTO habits (id, user_id, name, type, created_at)
            VALUES (1, 'u-alice', 'Read', 'simple', '2024-01-01T08:00:00.000Z');
        INSERT INTO habits (id, user_id, name, type, created_at)
            VALUES (2, 'u-alice', 'Run', 'complex', '2024-01-01T09:00:00.000Z');
        INSERT INTO habits (id, user_id, name, type, created_at)
            VALUES (3, 'u-bob', 'Stretch', 'simple', '2024-01-02T08:00:00.000Z');

        INSERT INTO day_logs (habit_id, date, rating) VALUES (1, '2024-01-01', 3);
    """)
    conn.close()
    return db_path


@pytest.fixture
def app(trackbit_db):
    return create_app(settings=Settings(db_path=trackbit_db, rate_limit=0))


def _client(app, token=None):
    headers = {'Authorization': f'Bearer {token}'} if token else None
    return TestClient(app, headers=headers)


@pytest.fixture
def anon_client(app):
    with _client(app) as client:
        yield client


@pytest.fixture
def alice_client(app):
    with _client(app, 'token-alice') as client:
        yield client


@pytest.fixture
def bob_client(app):
    with _client(app, 'token-bob') as client:
        yield client


@pytest.fixture
def admin_client(app):
    with _client(app, 'token-root') as client:
        yield client


@pytest.fixture
def free_client(app):
    with _client(app, 'token-frank') as client:
        yield client


@pytest.fixture
def make_client(app):
    """Factory for extra clients (e.g. freshly signed-up users)."""
    clients = []

    def factory(token=None):
        client = _client(app, token)
        client.__enter__()
        clients.append(client)
        return client

    yield factory
    for client in clients:
        client.__exit__(None, None, None)

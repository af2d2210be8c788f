"""
Database helpers — schema creation, connections and the per-request dependency.

Every connection runs in autocommit mode with foreign keys enabled; writes
that must be atomic go through crud_engine.transaction().
"""

import logging
import sqlite3
from collections.abc import Generator
from pathlib import Path

from fastapi import Request

logger = logging.getLogger(__name__)

_NOW = "(strftime('%Y-%m-%dT%H:%M:%fZ', 'now'))"

SCHEMA_SQL = f"""
    CREATE TABLE IF NOT EXISTS users (
        id TEXT PRIMARY KEY,
        role TEXT NOT NULL DEFAULT 'user',
        name TEXT NOT NULL,
        email TEXT NOT NULL UNIQUE,
        email_verified INTEGER NOT NULL DEFAULT 0,
        image TEXT,
        password_hash TEXT NOT NULL,
        created_at TEXT NOT NULL DEFAULT {_NOW},
        updated_at TEXT NOT NULL DEFAULT {_NOW}
    );

    CREATE TABLE IF NOT EXISTS auth_sessions (
        token TEXT PRIMARY KEY,
        user_id TEXT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
        expires_at TEXT NOT NULL,
        created_at TEXT NOT NULL DEFAULT {_NOW}
    );

    CREATE TABLE IF NOT EXISTS invites (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        code TEXT NOT NULL UNIQUE,
        email TEXT,
        invited_by TEXT REFERENCES users(id),
        role TEXT NOT NULL DEFAULT 'tester',
        max_uses INTEGER NOT NULL DEFAULT 1,
        uses INTEGER NOT NULL DEFAULT 0,
        expires_at TEXT,
        created_at TEXT NOT NULL DEFAULT {_NOW},
        consumed_at TEXT
    );

    CREATE TABLE IF NOT EXISTS app_limits (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        role TEXT NOT NULL UNIQUE,
        max_habits INTEGER DEFAULT 10,
        max_custom_exercises INTEGER DEFAULT 5,
        allowed_habit_types TEXT DEFAULT '["simple", "complex"]'
    );

    CREATE TABLE IF NOT EXISTS habits (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        user_id TEXT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
        name TEXT NOT NULL,
        description TEXT,
        type TEXT NOT NULL DEFAULT 'simple'
            CHECK (type IN ('simple', 'complex', 'negative', 'timed')),
        color_stops TEXT NOT NULL DEFAULT
            '[{{"position": 0, "color": [241, 245, 249]}}, {{"position": 1, "color": [16, 185, 129]}}]',
        icon TEXT NOT NULL DEFAULT 'star',
        weekly_goal INTEGER NOT NULL DEFAULT 5,
        daily_goal INTEGER NOT NULL DEFAULT 1,
        created_at TEXT NOT NULL DEFAULT {_NOW}
    );

    CREATE TABLE IF NOT EXISTS day_logs (
        habit_id INTEGER NOT NULL REFERENCES habits(id) ON DELETE CASCADE,
        date TEXT NOT NULL,
        rating INTEGER,
        notes TEXT,
        created_at TEXT NOT NULL DEFAULT {_NOW},
        PRIMARY KEY (habit_id, date)
    );

    CREATE TABLE IF NOT EXISTS exercises (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        user_id TEXT REFERENCES users(id) ON DELETE CASCADE,
        name TEXT NOT NULL,
        category TEXT NOT NULL DEFAULT 'strength',
        description TEXT,
        default_weight_unit TEXT DEFAULT 'kg',
        default_distance_unit TEXT DEFAULT 'km',
        created_at TEXT NOT NULL DEFAULT {_NOW},
        UNIQUE (user_id, name)
    );

    CREATE TABLE IF NOT EXISTS muscle_groups (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        name TEXT NOT NULL UNIQUE,
        description TEXT
    );

    CREATE TABLE IF NOT EXISTS exercise_muscle_groups (
        exercise_id INTEGER NOT NULL REFERENCES exercises(id) ON DELETE CASCADE,
        muscle_group_id INTEGER NOT NULL REFERENCES muscle_groups(id) ON DELETE CASCADE,
        PRIMARY KEY (exercise_id, muscle_group_id)
    );

    CREATE TABLE IF NOT EXISTS exercise_sessions (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        habit_id INTEGER NOT NULL,
        date TEXT NOT NULL,
        created_at TEXT NOT NULL DEFAULT {_NOW},
        FOREIGN KEY (habit_id, date) REFERENCES day_logs(habit_id, date) ON DELETE CASCADE
    );

    CREATE TABLE IF NOT EXISTS exercise_logs (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        exercise_id INTEGER NOT NULL REFERENCES exercises(id),
        session_id INTEGER NOT NULL REFERENCES exercise_sessions(id) ON DELETE CASCADE,
        created_at TEXT NOT NULL DEFAULT {_NOW},
        distance REAL,
        duration INTEGER,
        distance_unit TEXT DEFAULT 'km',
        weight_unit TEXT DEFAULT 'kg'
    );

    CREATE TABLE IF NOT EXISTS exercise_performances (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        exercise_log_id INTEGER NOT NULL REFERENCES exercise_logs(id) ON DELETE CASCADE,
        number INTEGER NOT NULL DEFAULT 1,
        reps INTEGER,
        weight REAL,
        duration_ms INTEGER,
        distance REAL,
        rpe INTEGER,
        created_at TEXT NOT NULL DEFAULT {_NOW}
    );

    CREATE INDEX IF NOT EXISTS idx_habits_user ON habits(user_id);
    CREATE INDEX IF NOT EXISTS idx_sessions_day_log ON exercise_sessions(habit_id, date);
    CREATE INDEX IF NOT EXISTS idx_logs_session ON exercise_logs(session_id);
    CREATE INDEX IF NOT EXISTS idx_performances_log ON exercise_performances(exercise_log_id);
"""

DEFAULT_MUSCLE_GROUPS = [
    'chest', 'back', 'shoulders', 'biceps', 'triceps',
    'quadriceps', 'hamstrings', 'glutes', 'calves', 'core',
]

# (name, category, muscle groups)
DEFAULT_EXERCISES = [
    ('Bench Press', 'strength', ['chest', 'triceps', 'shoulders']),
    ('Squat', 'strength', ['quadriceps', 'glutes', 'hamstrings']),
    ('Deadlift', 'strength', ['back', 'hamstrings', 'glutes']),
    ('Pull Up', 'strength', ['back', 'biceps']),
    ('Plank', 'flexibility', ['core']),
    ('Running', 'cardio', ['quadriceps', 'calves']),
]


def get_connection(db_path: str | Path) -> sqlite3.Connection:
    """Open a connection in autocommit mode with WAL and foreign keys enabled."""
    db_path = Path(db_path)
    db_path.parent.mkdir(parents=True, exist_ok=True)

    # Dependencies and sync endpoints may run on different threadpool workers.
    conn = sqlite3.connect(str(db_path), isolation_level=None,
                           check_same_thread=False, timeout=30)
    conn.execute("PRAGMA journal_mode=WAL")
    conn.execute("PRAGMA foreign_keys=ON")
    conn.row_factory = sqlite3.Row
    return conn


def init_db(db_path: str | Path) -> sqlite3.Connection:
    """Create the schema if missing and return an open connection."""
    conn = get_connection(db_path)
    conn.executescript(SCHEMA_SQL)
    logger.debug("Schema ready at %s", db_path)
    return conn


def seed_defaults(conn: sqlite3.Connection) -> None:
    """Insert role limits, system muscle groups and system exercises (idempotent)."""
    conn.execute("BEGIN IMMEDIATE")
    try:
        conn.execute(
            "INSERT OR IGNORE INTO app_limits (role, max_habits, max_custom_exercises, allowed_habit_types) "
            "VALUES ('tester', 10, 5, '[\"simple\", \"complex\"]')")
        for name in DEFAULT_MUSCLE_GROUPS:
            conn.execute("INSERT OR IGNORE INTO muscle_groups (name) VALUES (?)", (name,))
        groups = {r['name']: r['id'] for r in conn.execute("SELECT id, name FROM muscle_groups")}
        for name, category, muscles in DEFAULT_EXERCISES:
            existing = conn.execute(
                "SELECT id FROM exercises WHERE user_id IS NULL AND name = ?", (name,)).fetchone()
            if existing:
                continue
            cursor = conn.execute(
                "INSERT INTO exercises (user_id, name, category) VALUES (NULL, ?, ?)",
                (name, category))
            for muscle in muscles:
                conn.execute(
                    "INSERT INTO exercise_muscle_groups (exercise_id, muscle_group_id) VALUES (?, ?)",
                    (cursor.lastrowid, groups[muscle]))
    except BaseException:
        conn.rollback()
        raise
    conn.commit()
    logger.info("Seeded default limits, muscle groups and exercises")


def get_db(request: Request) -> Generator[sqlite3.Connection, None, None]:
    """FastAPI dependency that yields a DB connection per request."""
    conn = get_connection(request.app.state.db_path)
    try:
        yield conn
    finally:
        conn.close()

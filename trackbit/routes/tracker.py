"""
Tracker — day logs, exercise sessions, exercise logs and performances.

None of these tables has an owner column; a row belongs to whoever owns the
habit at the top of its chain:

    habit -> day_log (habit_id, date) -> exercise_session -> exercise_log
          -> exercise_performance

Ownership checks and the list overrides resolve that chain with a single
join. Also serves the nested history used by the heatmap and the one-call
day rating upsert.
"""

import datetime
import sqlite3
from typing import Annotated, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field, NonNegativeFloat, NonNegativeInt, PositiveInt

from ..auth import Identity, require_identity
from ..crud_engine import CrudEngine, transaction
from ..crud_router import CrudContext, generate_crud_router
from ..db import get_db
from ..entity_schema import compile_schemas
from ..errors import HookRejected, NotFoundOrUnauthorized
from ..tables import DAY_LOGS, EXERCISE_LOGS, EXERCISE_PERFORMANCES, EXERCISE_SESSIONS, HABITS
from .habits import habit_schemas, owns_habit

Rating = Annotated[int, Field(ge=0, le=5)]


# ---------------------------------------------------------------------------
# Ownership chain
# ---------------------------------------------------------------------------

def owns_session(conn: sqlite3.Connection, session_id, user_id: str) -> bool:
    row = conn.execute(
        """SELECT 1 FROM exercise_sessions s
           JOIN habits h ON h.id = s.habit_id
           WHERE s.id = ? AND h.user_id = ?""",
        (session_id, user_id),
    ).fetchone()
    return row is not None


def owns_exercise_log(conn: sqlite3.Connection, log_id, user_id: str) -> bool:
    row = conn.execute(
        """SELECT 1 FROM exercise_logs el
           JOIN exercise_sessions s ON s.id = el.session_id
           JOIN habits h ON h.id = s.habit_id
           WHERE el.id = ? AND h.user_id = ?""",
        (log_id, user_id),
    ).fetchone()
    return row is not None


def _can_use_exercise(conn: sqlite3.Connection, exercise_id, user_id: str) -> bool:
    row = conn.execute(
        "SELECT 1 FROM exercises WHERE id = ? AND (user_id IS NULL OR user_id = ?)",
        (exercise_id, user_id),
    ).fetchone()
    return row is not None


def _guard(ctx: CrudContext, data: dict, field: str, owns, label: str):
    if field in data and not owns(ctx.conn, data[field], ctx.identity.id):
        raise HookRejected(f'{label} not found', path=field)


def _owned_rows(ctx: CrudContext, sql: str) -> list[dict]:
    engine = ctx.engine()
    rows = ctx.conn.execute(sql, (ctx.identity.id,)).fetchall()
    return [ctx.serialize(engine.decode(r)) for r in rows]


# ---------------------------------------------------------------------------
# Day logs (composite key habit_id + date)
# ---------------------------------------------------------------------------

def _refine_day_log(model):
    class DayLogCreate(model):
        rating: Optional[Rating] = None

    return DayLogCreate


day_log_schemas = compile_schemas(DAY_LOGS, refine=_refine_day_log)


def _guard_day_log(ctx: CrudContext, data: dict) -> dict:
    _guard(ctx, data, 'habit_id', owns_habit, 'Habit')
    return data


day_logs_router = generate_crud_router(
    DAY_LOGS,
    day_log_schemas,
    primary_key_fields=['habit_id', 'date'],
    ownership_check=lambda ctx, row: owns_habit(ctx.conn, row['habit_id'], ctx.identity.id),
    before_create=_guard_day_log,
    before_update=_guard_day_log,
    overrides={'list': lambda ctx: _owned_rows(ctx, """
        SELECT d.* FROM day_logs d
        JOIN habits h ON h.id = d.habit_id
        WHERE h.user_id = ?
        ORDER BY d.habit_id, d.date""")},
)


# ---------------------------------------------------------------------------
# Exercise sessions
# ---------------------------------------------------------------------------

session_schemas = compile_schemas(EXERCISE_SESSIONS)


def _before_create_session(ctx: CrudContext, data: dict) -> dict:
    _guard(ctx, data, 'habit_id', owns_habit, 'Habit')
    day_logs = ctx.engine(DAY_LOGS)
    key = {'habit_id': data['habit_id'], 'date': data['date']}
    if day_logs.find_one(key) is None:
        day_logs.insert(key)
    return data


def _before_update_session(ctx: CrudContext, data: dict) -> dict:
    _guard(ctx, data, 'habit_id', owns_habit, 'Habit')
    return data


sessions_router = generate_crud_router(
    EXERCISE_SESSIONS,
    session_schemas,
    ownership_check=lambda ctx, row: owns_habit(ctx.conn, row['habit_id'], ctx.identity.id),
    before_create=_before_create_session,
    before_update=_before_update_session,
    overrides={'list': lambda ctx: _owned_rows(ctx, """
        SELECT s.* FROM exercise_sessions s
        JOIN habits h ON h.id = s.habit_id
        WHERE h.user_id = ?
        ORDER BY s.id""")},
)


# ---------------------------------------------------------------------------
# Exercise performances (sets)
# ---------------------------------------------------------------------------

class PerformanceInput(BaseModel):
    number: Optional[PositiveInt] = None
    reps: Optional[NonNegativeInt] = None
    weight: Optional[NonNegativeFloat] = None
    duration_ms: Optional[NonNegativeInt] = None
    distance: Optional[NonNegativeFloat] = None
    rpe: Optional[Annotated[int, Field(ge=1, le=10)]] = None


def _refine_performance(model):
    class ExercisePerformanceCreate(model):
        number: PositiveInt = None
        reps: Optional[NonNegativeInt] = None
        weight: Optional[NonNegativeFloat] = None
        rpe: Optional[Annotated[int, Field(ge=1, le=10)]] = None

    return ExercisePerformanceCreate


performance_schemas = compile_schemas(EXERCISE_PERFORMANCES, refine=_refine_performance)


def _guard_performance(ctx: CrudContext, data: dict) -> dict:
    _guard(ctx, data, 'exercise_log_id', owns_exercise_log, 'Exercise log')
    return data


performances_router = generate_crud_router(
    EXERCISE_PERFORMANCES,
    performance_schemas,
    ownership_check=lambda ctx, row: owns_exercise_log(
        ctx.conn, row['exercise_log_id'], ctx.identity.id),
    before_create=_guard_performance,
    before_update=_guard_performance,
    overrides={'list': lambda ctx: _owned_rows(ctx, """
        SELECT p.* FROM exercise_performances p
        JOIN exercise_logs el ON el.id = p.exercise_log_id
        JOIN exercise_sessions s ON s.id = el.session_id
        JOIN habits h ON h.id = s.habit_id
        WHERE h.user_id = ?
        ORDER BY p.exercise_log_id, p.number, p.id""")},
)


# ---------------------------------------------------------------------------
# Exercise logs
# ---------------------------------------------------------------------------

def _refine_exercise_log(model):
    class ExerciseLogCreate(model):
        performances: list[PerformanceInput] = None

    return ExerciseLogCreate


exercise_log_schemas = compile_schemas(EXERCISE_LOGS, refine=_refine_exercise_log)


def _guard_exercise_log(ctx: CrudContext, data: dict) -> dict:
    _guard(ctx, data, 'session_id', owns_session, 'Exercise session')
    _guard(ctx, data, 'exercise_id', _can_use_exercise, 'Exercise')
    return data


def _insert_sets(ctx: CrudContext, log_id: int, performances) -> list[dict]:
    """Insert a log's sets, numbered by position unless given; one empty set if none."""
    sets = ctx.engine(EXERCISE_PERFORMANCES)
    inserted = []
    for number, perf in enumerate(performances or [{}], start=1):
        record = {k: v for k, v in perf.items() if v is not None}
        record.setdefault('number', number)
        record['exercise_log_id'] = log_id
        inserted.append(performance_schemas.serialize(sets.insert(record)))
    return inserted


def _create_exercise_log(ctx: CrudContext, data: dict):
    """Insert the log and its sets in one transaction."""
    values = {k: v for k, v in data.items() if EXERCISE_LOGS.has_column(k)}
    with transaction(ctx.conn):
        _guard_exercise_log(ctx, values)
        log = ctx.engine().insert(values)
        sets = _insert_sets(ctx, log['id'], data.get('performances'))
    return {**ctx.serialize(log), 'sets': sets}


def _replace_sets(ctx: CrudContext, row: dict, data: dict) -> dict:
    # A performances list in an update replaces every set of the log.
    if 'performances' not in data:
        return row
    ctx.engine(EXERCISE_PERFORMANCES).delete({'exercise_log_id': row['id']})
    return {**row, 'sets': _insert_sets(ctx, row['id'], data['performances'])}


exercise_logs_router = generate_crud_router(
    EXERCISE_LOGS,
    exercise_log_schemas,
    ownership_check=lambda ctx, row: owns_session(ctx.conn, row['session_id'], ctx.identity.id),
    before_update=_guard_exercise_log,
    after_update=_replace_sets,
    overrides={
        'create': _create_exercise_log,
        'list': lambda ctx: _owned_rows(ctx, """
            SELECT el.* FROM exercise_logs el
            JOIN exercise_sessions s ON s.id = el.session_id
            JOIN habits h ON h.id = s.habit_id
            WHERE h.user_id = ?
            ORDER BY el.created_at, el.id"""),
    },
)


# ---------------------------------------------------------------------------
# History and check-in
# ---------------------------------------------------------------------------

class CheckIn(BaseModel):
    habit_id: PositiveInt
    date: datetime.date
    rating: Rating


def _group(rows, key: str) -> dict:
    grouped = {}
    for row in rows:
        grouped.setdefault(row[key], []).append(row)
    return grouped


def _fetch(conn, table, sql: str, user_id: str) -> list[dict]:
    engine = CrudEngine(conn, table)
    return [engine.decode(r) for r in conn.execute(sql, (user_id,)).fetchall()]


def build_history(conn: sqlite3.Connection, user_id: str) -> list[dict]:
    """The user's habits with nested day logs, sessions, exercise logs and sets."""
    habits = _fetch(conn, HABITS, """
        SELECT * FROM habits WHERE user_id = ? ORDER BY created_at, id""", user_id)
    day_logs = _fetch(conn, DAY_LOGS, """
        SELECT d.* FROM day_logs d JOIN habits h ON h.id = d.habit_id
        WHERE h.user_id = ? ORDER BY d.date""", user_id)
    sessions = _fetch(conn, EXERCISE_SESSIONS, """
        SELECT s.* FROM exercise_sessions s JOIN habits h ON h.id = s.habit_id
        WHERE h.user_id = ? ORDER BY s.created_at, s.id""", user_id)
    logs = _fetch(conn, EXERCISE_LOGS, """
        SELECT el.* FROM exercise_logs el
        JOIN exercise_sessions s ON s.id = el.session_id
        JOIN habits h ON h.id = s.habit_id
        WHERE h.user_id = ? ORDER BY el.created_at, el.id""", user_id)
    performances = _fetch(conn, EXERCISE_PERFORMANCES, """
        SELECT p.* FROM exercise_performances p
        JOIN exercise_logs el ON el.id = p.exercise_log_id
        JOIN exercise_sessions s ON s.id = el.session_id
        JOIN habits h ON h.id = s.habit_id
        WHERE h.user_id = ? ORDER BY p.created_at, p.id""", user_id)

    perfs_by_log = _group(performances, 'exercise_log_id')
    logs_by_session = _group(logs, 'session_id')
    sessions_by_day = {}
    for s in sessions:
        sessions_by_day.setdefault((s['habit_id'], s['date']), []).append(s)
    days_by_habit = _group(day_logs, 'habit_id')

    result = []
    for habit in habits:
        days = []
        for day in days_by_habit.get(habit['id'], []):
            day_sessions = []
            for s in sessions_by_day.get((day['habit_id'], day['date']), []):
                session_logs = [
                    {**exercise_log_schemas.serialize(el),
                     'exercise_performances': [performance_schemas.serialize(p)
                                               for p in perfs_by_log.get(el['id'], [])]}
                    for el in logs_by_session.get(s['id'], [])
                ]
                day_sessions.append({**session_schemas.serialize(s),
                                     'exercise_logs': session_logs})
            days.append({**day_log_schemas.serialize(day), 'exercise_sessions': day_sessions})
        result.append({**habit_schemas.serialize(habit), 'day_logs': days})
    return result


router = APIRouter(dependencies=[Depends(require_identity)])


@router.get('/history')
def api_history(identity: Identity = Depends(require_identity),
                conn: sqlite3.Connection = Depends(get_db)):
    return build_history(conn, identity.id)


@router.post('/check')
def api_check(body: CheckIn,
              identity: Identity = Depends(require_identity),
              conn: sqlite3.Connection = Depends(get_db)):
    """Set the rating for a habit on a date, creating the day log if needed."""
    with transaction(conn):
        if not owns_habit(conn, body.habit_id, identity.id):
            raise NotFoundOrUnauthorized()
        row = conn.execute(
            """INSERT INTO day_logs (habit_id, date, rating) VALUES (?, ?, ?)
               ON CONFLICT (habit_id, date) DO UPDATE SET rating = excluded.rating
               RETURNING *""",
            (body.habit_id, body.date.isoformat(), body.rating),
        ).fetchall()[0]
    return {'success': True, **day_log_schemas.serialize(CrudEngine(conn, DAY_LOGS).decode(row))}


router.include_router(day_logs_router, prefix='/day-logs')
router.include_router(sessions_router, prefix='/exercise-sessions')
router.include_router(exercise_logs_router, prefix='/exercise-logs')
router.include_router(performances_router, prefix='/exercise-performances')

"""
Exercise library — exercises and muscle groups.

Exercises with a NULL user_id are system defaults: every user can read them,
nobody can modify them through the API. Custom exercises belong to their
creator and count against the role's max_custom_exercises limit. The
``muscle_groups`` field (list of muscle group ids) is stored in
exercise_muscle_groups.
"""

import sqlite3
from typing import Optional

from pydantic import PositiveInt, field_validator

from ..crud_router import CrudContext, generate_crud_router
from ..entity_schema import compile_schemas
from ..errors import HookRejected, NotFoundOrUnauthorized
from ..tables import EXERCISE_MUSCLE_GROUPS, EXERCISES, MUSCLE_GROUPS
from .config import role_limits


def _refine_exercise(model):
    class ExerciseCreate(model):
        muscle_groups: Optional[list[PositiveInt]] = None

        @field_validator('name')
        @classmethod
        def name_required(cls, value):
            if not value.strip():
                raise ValueError('Exercise name is required')
            return value.strip()

    return ExerciseCreate


def _refine_muscle_group(model):
    class MuscleGroupCreate(model):
        @field_validator('name')
        @classmethod
        def name_required(cls, value):
            if not value.strip():
                raise ValueError('Muscle group name is required')
            return value.strip()

    return MuscleGroupCreate


exercise_schemas = compile_schemas(
    EXERCISES,
    omit_from_create_update=['user_id'],
    omit_from_select=['created_at'],
    refine=_refine_exercise,
)

muscle_group_schemas = compile_schemas(MUSCLE_GROUPS, refine=_refine_muscle_group)


# ---------------------------------------------------------------------------
# Muscle group links
# ---------------------------------------------------------------------------

def muscle_group_ids(conn: sqlite3.Connection, exercise_ids) -> dict[int, list[int]]:
    """Map exercise id -> sorted muscle group ids."""
    ids = list(exercise_ids)
    result = {i: [] for i in ids}
    if not ids:
        return result
    placeholders = ', '.join('?' for _ in ids)
    rows = conn.execute(
        f"SELECT exercise_id, muscle_group_id FROM exercise_muscle_groups "
        f"WHERE exercise_id IN ({placeholders}) ORDER BY exercise_id, muscle_group_id",
        ids,
    ).fetchall()
    for r in rows:
        result[r['exercise_id']].append(r['muscle_group_id'])
    return result


def _sync_muscle_groups(ctx: CrudContext, row: dict, data: dict) -> dict:
    if data.get('muscle_groups') is not None:
        links = ctx.engine(EXERCISE_MUSCLE_GROUPS)
        links.delete({'exercise_id': row['id']})
        for group_id in dict.fromkeys(data['muscle_groups']):
            links.insert({'exercise_id': row['id'], 'muscle_group_id': group_id})
    return {**row, 'muscle_groups': muscle_group_ids(ctx.conn, [row['id']])[row['id']]}


# ---------------------------------------------------------------------------
# Hooks and overrides
# ---------------------------------------------------------------------------

def _is_owner(ctx: CrudContext, row: dict) -> bool:
    # System exercises (user_id NULL) never match.
    return row['user_id'] == ctx.identity.id


def _before_create(ctx: CrudContext, data: dict) -> dict:
    limits = role_limits(ctx.conn, ctx.identity.role)
    if limits and limits.get('max_custom_exercises') is not None:
        count = ctx.conn.execute("SELECT COUNT(*) FROM exercises WHERE user_id = ?",
                                 (ctx.identity.id,)).fetchone()[0]
        if count >= limits['max_custom_exercises']:
            raise HookRejected(
                f"Custom exercise limit reached ({limits['max_custom_exercises']})")
    return {**data, 'user_id': ctx.identity.id}


_LATEST_PERFORMANCE_SQL = """
    WITH ranked AS (
        SELECT el.exercise_id, p.id, p.weight, p.reps, p.distance, p.duration_ms, p.created_at,
               ROW_NUMBER() OVER (PARTITION BY el.exercise_id
                                  ORDER BY p.created_at DESC, p.id DESC) AS rn
        FROM exercise_performances p
        JOIN exercise_logs el ON el.id = p.exercise_log_id
        JOIN exercise_sessions s ON s.id = el.session_id
        JOIN habits h ON h.id = s.habit_id
        WHERE h.user_id = ?
    )
    SELECT exercise_id, id, weight, reps, distance, duration_ms, created_at
    FROM ranked WHERE rn = 1
"""


def _list_exercises(ctx: CrudContext):
    """System exercises plus the caller's own, each with its latest recorded set."""
    rows = ctx.conn.execute(
        "SELECT * FROM exercises WHERE user_id IS NULL OR user_id = ? "
        "ORDER BY user_id IS NOT NULL, name, id",
        (ctx.identity.id,),
    ).fetchall()
    engine = ctx.engine()
    exercises = [engine.decode(r) for r in rows]

    latest = {}
    for r in ctx.conn.execute(_LATEST_PERFORMANCE_SQL, (ctx.identity.id,)):
        perf = dict(r)
        latest[perf.pop('exercise_id')] = perf
    groups = muscle_group_ids(ctx.conn, [e['id'] for e in exercises])

    return [
        {**ctx.serialize(e),
         'muscle_groups': groups[e['id']],
         'last_performance': latest.get(e['id'])}
        for e in exercises
    ]


def _get_exercise(ctx: CrudContext, pk: dict):
    row = ctx.engine().find_one(pk)
    if row is None or row['user_id'] not in (None, ctx.identity.id):
        raise NotFoundOrUnauthorized()
    return ctx.serialize({**row, 'muscle_groups': muscle_group_ids(ctx.conn, [row['id']])[row['id']]})


router = generate_crud_router(
    EXERCISES,
    exercise_schemas,
    ownership_check=_is_owner,
    before_create=_before_create,
    after_create=_sync_muscle_groups,
    after_update=_sync_muscle_groups,
    overrides={'list': _list_exercises, 'get': _get_exercise},
)

muscle_groups_router = generate_crud_router(MUSCLE_GROUPS, muscle_group_schemas)

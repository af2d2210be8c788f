"""
Habits — generated CRUD router scoped to the owning user.

Creation is subject to the caller role's app_limits (maximum habit count and
allowed habit types).
"""

import sqlite3
from typing import Annotated, Optional

from pydantic import BaseModel, Field, field_validator

from ..crud_router import CrudContext, generate_crud_router
from ..entity_schema import compile_schemas
from ..errors import HookRejected
from ..tables import HABITS
from .config import role_limits


class ColorStop(BaseModel):
    position: Annotated[float, Field(ge=0, le=1)]
    color: tuple[Annotated[int, Field(ge=0, le=255)],
                 Annotated[int, Field(ge=0, le=255)],
                 Annotated[int, Field(ge=0, le=255)]]


def _refine(model):
    class HabitCreate(model):
        color_stops: list[ColorStop] = None
        weekly_goal: Annotated[int, Field(ge=1, le=7)] = None
        daily_goal: Annotated[int, Field(ge=1)] = None

        @field_validator('name')
        @classmethod
        def name_required(cls, value):
            if not value.strip():
                raise ValueError('Habit name is required')
            return value.strip()

    return HabitCreate


habit_schemas = compile_schemas(
    HABITS,
    omit_from_create_update=['user_id'],
    refine=_refine,
)


def owns_habit(conn: sqlite3.Connection, habit_id, user_id: str) -> bool:
    row = conn.execute("SELECT 1 FROM habits WHERE id = ? AND user_id = ?",
                       (habit_id, user_id)).fetchone()
    return row is not None


def _check_type(limits: Optional[dict], habit_type: str):
    allowed = limits.get('allowed_habit_types') if limits else None
    if allowed is not None and habit_type not in allowed:
        raise HookRejected(f"Habit type '{habit_type}' is not available for your account",
                           path='type')


def _before_create(ctx: CrudContext, data: dict) -> dict:
    limits = role_limits(ctx.conn, ctx.identity.role)
    if limits and limits.get('max_habits') is not None:
        count = ctx.conn.execute("SELECT COUNT(*) FROM habits WHERE user_id = ?",
                                 (ctx.identity.id,)).fetchone()[0]
        if count >= limits['max_habits']:
            raise HookRejected(f"Habit limit reached ({limits['max_habits']})")
    _check_type(limits, data.get('type', 'simple'))
    return {**data, 'user_id': ctx.identity.id}


def _before_update(ctx: CrudContext, data: dict) -> dict:
    if 'type' in data:
        _check_type(role_limits(ctx.conn, ctx.identity.role), data['type'])
    return data


def _is_owner(ctx: CrudContext, row: dict) -> bool:
    return row['user_id'] == ctx.identity.id


router = generate_crud_router(
    HABITS,
    habit_schemas,
    ownership_check=_is_owner,
    before_create=_before_create,
    before_update=_before_update,
)

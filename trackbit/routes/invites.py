"""
Invites — admin-only management of sign-up codes.

Codes are generated server-side; an invite cannot be edited once issued
(delete it and create a new one).
"""

import secrets
import sqlite3
from typing import Annotated, Optional

from fastapi import Depends
from pydantic import Field, field_validator

from ..auth import require_admin
from ..crud_engine import CrudEngine
from ..crud_router import CrudContext, generate_crud_router
from ..entity_schema import compile_schemas
from ..tables import INVITES


def _refine(model):
    class InviteCreate(model):
        max_uses: Annotated[int, Field(ge=1)] = None

        @field_validator('email')
        @classmethod
        def normalize_email(cls, value):
            if value is None:
                return value
            value = value.strip().lower()
            if '@' not in value:
                raise ValueError('Invalid e-mail address')
            return value

    return InviteCreate


invite_schemas = compile_schemas(
    INVITES,
    omit_from_create_update=['code', 'invited_by', 'uses', 'consumed_at'],
    refine=_refine,
)


def generate_code() -> str:
    return secrets.token_urlsafe(9)


def issue_invite(conn: sqlite3.Connection, invited_by: Optional[str] = None, **values) -> dict:
    """Insert an invite with a fresh code."""
    return CrudEngine(conn, INVITES).insert({**values, 'code': generate_code(),
                                             'invited_by': invited_by})


def _before_create(ctx: CrudContext, data: dict) -> dict:
    return {**data, 'code': generate_code(), 'invited_by': ctx.identity.id}


router = generate_crud_router(
    INVITES,
    invite_schemas,
    before_create=_before_create,
    omit_operations=['update'],
    dependencies=[Depends(require_admin)],
)

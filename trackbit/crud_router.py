"""
CRUD Router — generate a FastAPI router for a table descriptor.

generate_crud_router() wires the five canonical operations of a resource:

    GET    ""                   list
    GET    "/{k1}[/{k2}...]"    get
    POST   ""                   create
    PATCH  "/{k1}[/{k2}...]"    update
    DELETE "/{k1}[/{k2}...]"    delete

with one path segment per primary-key field. Path parameters and bodies are
validated against the compiled contracts, rows are scoped by the ownership
policy, and hooks/overrides let resources customise any step. Absent rows
and rows the caller may not access produce the same 404.
"""

from __future__ import annotations

import logging
import sqlite3
from dataclasses import dataclass
from typing import Any, Callable, Optional

from fastapi import APIRouter, Body, Depends, Request
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse, Response
from pydantic import ValidationError

from .auth import Identity, get_optional_identity, require_identity
from .crud_engine import CrudEngine, transaction
from .db import get_db
from .entity_schema import CrudSchemas, TableDescriptor, validate_payload
from .errors import (
    HookRejected, NotFoundOrUnauthorized, PayloadValidationError, format_error_items,
)

logger = logging.getLogger(__name__)

OPERATIONS = ('list', 'get', 'create', 'update', 'delete')


@dataclass
class CrudContext:
    """Per-request state handed to hooks, ownership checks and overrides."""
    identity: Optional[Identity]
    conn: sqlite3.Connection
    request: Request
    table: TableDescriptor
    schemas: CrudSchemas

    def engine(self, table: TableDescriptor | None = None) -> CrudEngine:
        return CrudEngine(self.conn, table or self.table)

    def serialize(self, row: dict) -> dict:
        return self.schemas.serialize(row)


@dataclass
class CustomEndpoint:
    method: str
    path: str
    handler: Callable
    status_code: int | None = None


def _run_hook(hook: Callable, *args):
    """Call a hook, turning its failures into 400 responses."""
    try:
        return hook(*args)
    except ValidationError as e:
        raise PayloadValidationError(format_error_items(e)) from e
    except HookRejected:
        raise
    except ValueError as e:
        raise HookRejected(str(e)) from e


def _respond(result: Any, status_code: int = 200) -> Response:
    if isinstance(result, Response):
        return result
    return JSONResponse(jsonable_encoder(result), status_code=status_code)


def generate_crud_router(
    table: TableDescriptor,
    schemas: CrudSchemas,
    primary_key_fields=None,
    *,
    ownership_check: Callable[[CrudContext, dict], bool] | None = None,
    before_create: Callable[[CrudContext, dict], dict] | None = None,
    before_update: Callable[[CrudContext, dict], dict] | None = None,
    after_create: Callable[[CrudContext, dict, dict], dict] | None = None,
    after_update: Callable[[CrudContext, dict, dict], dict] | None = None,
    overrides: dict[str, Callable] | None = None,
    omit_operations=(),
    custom_endpoints=(),
    is_public: bool = False,
    dependencies=(),
) -> APIRouter:
    """Build the router for one resource.

    Args:
        table: Table descriptor operated on
        schemas: Contracts from compile_schemas(table, ...)
        primary_key_fields: Ordered key columns used as path parameters
            (defaults to the descriptor's primary key)
        ownership_check: (ctx, row) -> bool gate for get/update/delete; with an
            owner column it also scopes list to the caller's rows
        before_create / before_update: (ctx, data) -> data, may raise HookRejected
        after_create / after_update: (ctx, row, data) -> row, run in the write
            transaction (e.g. to store extension fields)
        overrides: operation name -> replacement handler, called after
            validation as list(ctx), get(ctx, pk), create(ctx, data),
            update(ctx, pk, data), delete(ctx, pk)
        omit_operations: operations for which no route is registered
        custom_endpoints: extra CustomEndpoint routes on the same router
        is_public: when False every route requires an authenticated caller
        dependencies: extra FastAPI dependencies applied to every route

    Returns:
        APIRouter to be mounted with include_router(prefix=...)
    """
    overrides = dict(overrides or {})
    omitted = set(omit_operations)
    for op in set(overrides) | omitted:
        if op not in OPERATIONS:
            raise ValueError(f"Unknown CRUD operation: {op}")

    pk_fields = tuple(primary_key_fields or table.primary_key)
    if not pk_fields:
        raise ValueError(f"No primary key fields for '{table.name}'")
    for f in pk_fields:
        table.column(f)
    pk_model = schemas.pk_model(pk_fields)
    pk_path = '/' + '/'.join(f'{{{f}}}' for f in pk_fields)

    router_deps = [] if is_public else [Depends(require_identity)]
    router_deps.extend(dependencies)
    router = APIRouter(dependencies=router_deps)
    identity_dep = get_optional_identity if is_public else require_identity

    logger.debug("CRUD routes for %s: key path %s, omitted %s",
                 table.name, pk_path, sorted(omitted) or '-')

    def context(request: Request, identity, conn) -> CrudContext:
        return CrudContext(identity=identity, conn=conn, request=request,
                           table=table, schemas=schemas)

    def parse_pk(request: Request) -> dict:
        raw = {f: request.path_params.get(f) for f in pk_fields}
        parsed, errors = validate_payload(pk_model, raw)
        if errors:
            raise PayloadValidationError(errors)
        return parsed.model_dump()

    def parse_body(model, payload) -> dict:
        parsed, errors = validate_payload(model, {} if payload is None else payload)
        if errors:
            raise PayloadValidationError(errors)
        return parsed.model_dump(exclude_unset=True)

    def column_values(data: dict) -> dict:
        return {k: v for k, v in data.items() if table.has_column(k)}

    def fetch_authorized(ctx: CrudContext, pk: dict) -> dict:
        row = ctx.engine().find_one(pk)
        if row is None or (ownership_check is not None and not ownership_check(ctx, row)):
            raise NotFoundOrUnauthorized()
        return row

    # Custom endpoints go first so literal paths win over key patterns.
    for endpoint in custom_endpoints:
        kwargs = {}
        if endpoint.status_code is not None:
            kwargs['status_code'] = endpoint.status_code
        router.add_api_route(endpoint.path, endpoint.handler,
                             methods=[endpoint.method.upper()], **kwargs)

    # LIST - GET ""
    if 'list' not in omitted:
        def list_rows(request: Request,
                      identity: Optional[Identity] = Depends(identity_dep),
                      conn: sqlite3.Connection = Depends(get_db)):
            ctx = context(request, identity, conn)
            if 'list' in overrides:
                return _respond(overrides['list'](ctx))
            where = None
            if ownership_check is not None and table.owner_column and identity is not None:
                where = {table.owner_column: identity.id}
            return [ctx.serialize(r) for r in ctx.engine().select(where)]

        router.add_api_route('', list_rows, methods=['GET'], name=f'{table.name}_list')

    # GET ONE - GET "/{k1}/{k2}..."
    if 'get' not in omitted:
        def get_row(request: Request,
                    identity: Optional[Identity] = Depends(identity_dep),
                    conn: sqlite3.Connection = Depends(get_db)):
            ctx = context(request, identity, conn)
            pk = parse_pk(request)
            if 'get' in overrides:
                return _respond(overrides['get'](ctx, pk))
            return ctx.serialize(fetch_authorized(ctx, pk))

        router.add_api_route(pk_path, get_row, methods=['GET'], name=f'{table.name}_get')

    # CREATE - POST ""
    if 'create' not in omitted:
        def create_row(request: Request,
                       payload: Any = Body(None),
                       identity: Optional[Identity] = Depends(identity_dep),
                       conn: sqlite3.Connection = Depends(get_db)):
            ctx = context(request, identity, conn)
            data = parse_body(schemas.create, payload)
            if 'create' in overrides:
                return _respond(overrides['create'](ctx, data), status_code=201)
            with transaction(conn):
                if before_create is not None:
                    data = _run_hook(before_create, ctx, data)
                row = ctx.engine().insert(column_values(data))
                if after_create is not None:
                    row = _run_hook(after_create, ctx, row, data)
            return JSONResponse(ctx.serialize(row), status_code=201)

        router.add_api_route('', create_row, methods=['POST'], status_code=201,
                             name=f'{table.name}_create')

    # UPDATE - PATCH "/{k1}/{k2}..."
    if 'update' not in omitted:
        def update_row(request: Request,
                       payload: Any = Body(None),
                       identity: Optional[Identity] = Depends(identity_dep),
                       conn: sqlite3.Connection = Depends(get_db)):
            ctx = context(request, identity, conn)
            pk = parse_pk(request)
            data = parse_body(schemas.update, payload)
            if 'update' in overrides:
                return _respond(overrides['update'](ctx, pk, data))
            with transaction(conn):
                if before_update is not None:
                    data = _run_hook(before_update, ctx, data)
                fetch_authorized(ctx, pk)
                row = ctx.engine().update(column_values(data), pk)
                if after_update is not None:
                    row = _run_hook(after_update, ctx, row, data)
            return ctx.serialize(row)

        router.add_api_route(pk_path, update_row, methods=['PATCH'], name=f'{table.name}_update')

    # DELETE - DELETE "/{k1}/{k2}..."
    if 'delete' not in omitted:
        def delete_row(request: Request,
                       identity: Optional[Identity] = Depends(identity_dep),
                       conn: sqlite3.Connection = Depends(get_db)):
            ctx = context(request, identity, conn)
            pk = parse_pk(request)
            if 'delete' in overrides:
                return _respond(overrides['delete'](ctx, pk))
            with transaction(conn):
                fetch_authorized(ctx, pk)
                ctx.engine().delete(pk)
            return {'success': True, 'pk': jsonable_encoder(pk)}

        router.add_api_route(pk_path, delete_row, methods=['DELETE'], name=f'{table.name}_delete')

    return router

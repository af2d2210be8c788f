"""
Error formatting and exception handlers shared by every router.

Response shapes:
  400  {"message": "Validation failed", "errors": [{"path", "message", "code"}]}
  404  {"error": "Not found or unauthorized"}
  409  {"message": "Conflict", "errors": [...]}
  500  {"message": "Internal Server Error"}
"""

import logging
import sqlite3

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import ValidationError

logger = logging.getLogger(__name__)

NOT_FOUND_BODY = {'error': 'Not found or unauthorized'}


class NotFoundOrUnauthorized(Exception):
    """Row is absent or the caller may not see it. Callers cannot tell which."""


class PayloadValidationError(Exception):
    def __init__(self, errors: list[dict], message: str = 'Validation failed'):
        super().__init__(message)
        self.message = message
        self.errors = errors


class HookRejected(ValueError):
    """Raised by before/after hooks to reject a write with a 400."""

    def __init__(self, message: str, path: str = '', code: str = 'hook_rejected'):
        super().__init__(message)
        self.message = message
        self.path = path
        self.code = code


def _error_item(err: dict, skip_source: bool = False) -> dict:
    loc = list(err.get('loc', ()))
    if skip_source and loc and loc[0] in ('body', 'path', 'query', 'header'):
        loc = loc[1:]
    return {
        'path': '.'.join(str(p) for p in loc),
        'message': err.get('msg', ''),
        'code': err.get('type', 'invalid'),
    }


def format_error_items(exc: ValidationError) -> list[dict]:
    return [_error_item(err) for err in exc.errors()]


def validation_body(errors: list[dict], message: str = 'Validation failed') -> dict:
    return {'message': message, 'errors': errors}


def translate_integrity_error(exc: sqlite3.IntegrityError) -> dict:
    """Map an SQLite constraint failure to a conflict error item."""
    msg = str(exc)
    if 'UNIQUE' in msg or 'PRIMARY KEY' in msg:
        code = 'unique_violation'
    elif 'FOREIGN KEY' in msg:
        code = 'foreign_key_violation'
    else:
        code = 'constraint_violation'
    path = ''
    # "UNIQUE constraint failed: muscle_groups.name"
    if ':' in msg:
        cols = [c.strip().split('.')[-1] for c in msg.split(':', 1)[1].split(',')]
        path = ','.join(c for c in cols if c)
    return {'path': path, 'message': msg, 'code': code}


# ---------------------------------------------------------------------------
# Exception handlers
# ---------------------------------------------------------------------------

async def _payload_validation_handler(request: Request, exc: PayloadValidationError):
    return JSONResponse(validation_body(exc.errors, exc.message), status_code=400)


async def _hook_rejected_handler(request: Request, exc: HookRejected):
    logger.warning("Write rejected on %s %s: %s", request.method, request.url.path, exc.message)
    item = {'path': exc.path, 'message': exc.message, 'code': exc.code}
    return JSONResponse(validation_body([item]), status_code=400)


async def _request_validation_handler(request: Request, exc: RequestValidationError):
    errors = [_error_item(err, skip_source=True) for err in exc.errors()]
    return JSONResponse(validation_body(errors), status_code=400)


async def _not_found_handler(request: Request, exc: NotFoundOrUnauthorized):
    return JSONResponse(NOT_FOUND_BODY, status_code=404)


async def _integrity_handler(request: Request, exc: sqlite3.IntegrityError):
    item = translate_integrity_error(exc)
    logger.warning("Constraint violation on %s %s: %s", request.method, request.url.path, exc)
    return JSONResponse(validation_body([item], 'Conflict'), status_code=409)


async def _unhandled_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse({'message': 'Internal Server Error'}, status_code=500)


def install_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(PayloadValidationError, _payload_validation_handler)
    app.add_exception_handler(HookRejected, _hook_rejected_handler)
    app.add_exception_handler(RequestValidationError, _request_validation_handler)
    app.add_exception_handler(NotFoundOrUnauthorized, _not_found_handler)
    app.add_exception_handler(sqlite3.IntegrityError, _integrity_handler)
    app.add_exception_handler(Exception, _unhandled_handler)

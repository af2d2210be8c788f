"""
CRUD Engine — row access for a TableDescriptor on an SQLite connection.

All SQL uses parameterized queries. Column names are validated against the
descriptor whitelist before inclusion in SQL statements. Filters are
conjunctions of column equalities; there is no other predicate form.
"""

from __future__ import annotations

import datetime
import json
import sqlite3
from contextlib import contextmanager

from .entity_schema import TableDescriptor


@contextmanager
def transaction(conn: sqlite3.Connection):
    """Run the block in one write transaction (BEGIN IMMEDIATE).

    The write lock is taken up front, so a read-check-write sequence inside
    the block cannot interleave with another writer. Nested use joins the
    outer transaction.
    """
    if conn.in_transaction:
        yield conn
        return
    conn.execute('BEGIN IMMEDIATE')
    try:
        yield conn
    except BaseException:
        conn.rollback()
        raise
    else:
        conn.commit()


class CrudEngine:
    def __init__(self, conn: sqlite3.Connection, table: TableDescriptor):
        self.conn = conn
        self.table = table

    def select(self, where: dict | None = None, limit: int | None = None,
               order_by: list[str] | None = None) -> list[dict]:
        """SELECT rows matching every column=value pair in ``where``."""
        clause, params = self._where(where)
        order = order_by if order_by is not None else list(self.table.primary_key)
        self._check_columns(order)
        sql = f"SELECT * FROM [{self.table.name}]{clause}"
        if order:
            sql += f" ORDER BY {', '.join(f'[{c}]' for c in order)}"
        if limit is not None:
            sql += " LIMIT ?"
            params.append(limit)
        cursor = self.conn.execute(sql, params)
        return [self.decode(r) for r in cursor.fetchall()]

    def find_one(self, where: dict) -> dict | None:
        rows = self.select(where, limit=1)
        return rows[0] if rows else None

    def insert(self, record: dict) -> dict:
        """INSERT a row and return it as stored, server-assigned columns included."""
        self._check_columns(record)
        if record:
            cols = list(record)
            sql = (f"INSERT INTO [{self.table.name}] ({', '.join(f'[{c}]' for c in cols)}) "
                   f"VALUES ({', '.join('?' for _ in cols)}) RETURNING *")
            params = [self.encode(c, record[c]) for c in cols]
        else:
            sql = f"INSERT INTO [{self.table.name}] DEFAULT VALUES RETURNING *"
            params = []
        rows = self.conn.execute(sql, params).fetchall()
        return self.decode(rows[0])

    def update(self, values: dict, where: dict) -> dict | None:
        """Partial UPDATE of the row(s) matching ``where``; returns the first updated row."""
        if not values:
            return self.find_one(where)
        self._check_columns(values)
        set_parts = [f"[{c}] = ?" for c in values]
        params = [self.encode(c, v) for c, v in values.items()]
        clause, where_params = self._where(where)
        sql = f"UPDATE [{self.table.name}] SET {', '.join(set_parts)}{clause} RETURNING *"
        rows = self.conn.execute(sql, params + where_params).fetchall()
        return self.decode(rows[0]) if rows else None

    def delete(self, where: dict) -> int:
        """DELETE rows matching ``where``. Returns the number of rows removed."""
        clause, params = self._where(where)
        if not clause:
            raise ValueError(f"Refusing to delete from '{self.table.name}' without a filter")
        cursor = self.conn.execute(f"DELETE FROM [{self.table.name}]{clause}", params)
        return cursor.rowcount

    # -- encoding -----------------------------------------------------------

    def encode(self, column: str, value):
        if value is None:
            return None
        ctype = self.table.column(column).type
        if ctype == 'json':
            return json.dumps(value)
        if ctype == 'boolean':
            return int(bool(value))
        if isinstance(value, (datetime.date, datetime.datetime)):
            return value.isoformat()
        return value

    def decode(self, row) -> dict:
        data = dict(row)
        for c in self.table.columns:
            value = data.get(c.name)
            if value is None:
                continue
            if c.type == 'json' and isinstance(value, str):
                data[c.name] = json.loads(value)
            elif c.type == 'boolean':
                data[c.name] = bool(value)
        return data

    def _where(self, where: dict | None) -> tuple[str, list]:
        if not where:
            return '', []
        self._check_columns(where)
        parts = [f"[{c}] = ?" for c in where]
        params = [self.encode(c, v) for c, v in where.items()]
        return f" WHERE {' AND '.join(parts)}", params

    def _check_columns(self, names) -> None:
        for name in names:
            if not self.table.has_column(name):
                raise ValueError(f"Unknown column for '{self.table.name}': {name}")

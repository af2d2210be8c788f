"""
Entity Schema — table descriptors and the validation contracts compiled from them.

Provides ColumnDef/TableDescriptor dataclasses describing a persisted table and
compile_schemas(), which turns a descriptor into the pydantic models used by the
generated CRUD routers:

  - create: insert payload (server-managed and omitted columns rejected)
  - update: create with every field optional, at least one field required
  - select: response row shape
  - id:     rule for integer primary-key path parameters
"""

from __future__ import annotations

import datetime
from dataclasses import dataclass, replace
from typing import Any, Callable, Literal, Optional

from pydantic import BaseModel, ConfigDict, PositiveInt, ValidationError, create_model, model_validator
from pydantic_core import to_jsonable_python

from .errors import format_error_items


@dataclass(frozen=True)
class ColumnDef:
    name: str
    type: str = 'text'         # see VALID_TYPES
    nullable: bool = False
    has_default: bool = False
    server_managed: bool = False   # generated by the database (serial ids, timestamps)
    enum: tuple | None = None

    VALID_TYPES = frozenset({'text', 'integer', 'real', 'boolean', 'timestamp',
                             'date', 'enum', 'json'})

    def __post_init__(self):
        if self.type not in self.VALID_TYPES:
            raise ValueError(f"Column '{self.name}' has unknown type: {self.type}")
        if self.type == 'enum' and not self.enum:
            raise ValueError(f"Enum column '{self.name}' needs at least one value")


@dataclass(frozen=True)
class TableDescriptor:
    name: str
    columns: tuple
    primary_key: tuple
    owner_column: str | None = None
    relations: tuple = ()      # (relation name, 'table.column') pairs

    def __post_init__(self):
        object.__setattr__(self, 'columns', tuple(self.columns))
        object.__setattr__(self, 'primary_key', tuple(self.primary_key))
        if not self.primary_key:
            raise ValueError(f"Table '{self.name}' must declare a primary key")
        names = self.column_names
        for key in self.primary_key:
            if key not in names:
                raise ValueError(f"Primary key column not found in '{self.name}': {key}")
        if self.owner_column is not None and self.owner_column not in names:
            raise ValueError(f"Owner column not found in '{self.name}': {self.owner_column}")

    @property
    def column_names(self) -> list[str]:
        return [c.name for c in self.columns]

    def has_column(self, name: str) -> bool:
        return any(c.name == name for c in self.columns)

    def column(self, name: str) -> ColumnDef:
        for c in self.columns:
            if c.name == name:
                return c
        raise KeyError(f"Unknown column '{name}' in table '{self.name}'")


class CrudModel(BaseModel):
    """Base for request contracts: unknown keys are rejected."""
    model_config = ConfigDict(extra='forbid')


class RowModel(BaseModel):
    """Base for response rows: columns outside the shape are dropped."""
    model_config = ConfigDict(extra='ignore')


_PYTHON_TYPES = {
    'text': str,
    'integer': int,
    'real': float,
    'boolean': bool,
    'timestamp': datetime.datetime,
    'date': datetime.date,
    'json': Any,
}


def column_annotation(column: ColumnDef) -> Any:
    """Python annotation for a column value, honouring nullability."""
    if column.type == 'enum':
        annotation = Literal[column.enum]
    else:
        annotation = _PYTHON_TYPES[column.type]
    if column.nullable:
        annotation = Optional[annotation]
    return annotation


def _camel(name: str) -> str:
    return ''.join(part.capitalize() for part in name.split('_'))


def _payload_field(column: ColumnDef) -> tuple:
    annotation = column_annotation(column)
    # Columns the database can fill in may be omitted; an omitted field is
    # never sent to the database (payloads are dumped with exclude_unset).
    if column.nullable or column.has_default:
        return (annotation, None)
    return (annotation, ...)


def _require_any_field(self):
    if not self.model_fields_set:
        raise ValueError('At least one field must be provided for update')
    return self


@dataclass(frozen=True)
class CrudSchemas:
    table: TableDescriptor
    create: type[BaseModel]
    update: type[BaseModel]
    select: type[BaseModel]
    id: Any
    insert_base: type[BaseModel]
    select_base: type[BaseModel]
    id_overridden: bool = False

    def key_annotation(self, column: ColumnDef) -> Any:
        if self.id_overridden or column.type == 'integer':
            return self.id
        return column_annotation(replace(column, nullable=False))

    def pk_model(self, fields) -> type[BaseModel]:
        """Build the path-parameter model for the given primary-key fields."""
        return create_model(
            f'{_camel(self.table.name)}Key',
            __base__=CrudModel,
            **{f: (self.key_annotation(self.table.column(f)), ...) for f in fields},
        )

    def serialize(self, row: dict) -> dict:
        """Dump a row through the select shape.

        Keys that are not table columns (attached by hooks or overrides) are
        passed through; omitted columns stay omitted.
        """
        data = self.select.model_validate(row).model_dump(mode='json')
        for key, value in row.items():
            if not self.table.has_column(key):
                data[key] = to_jsonable_python(value)
        return data


def compile_schemas(table: TableDescriptor, *,
                    omit_from_create_update=(),
                    omit_from_select=(),
                    refine: Callable[[type[BaseModel]], type[BaseModel]] | None = None,
                    id_schema: Any = None) -> CrudSchemas:
    """Compile the CRUD validation contracts for a table.

    Args:
        table: The table descriptor
        omit_from_create_update: Columns assigned by the server (e.g. user_id),
            rejected in create/update payloads on top of server-managed columns
        omit_from_select: Columns dropped from response rows
        refine: Receives the create model and returns a subclass of it, used to
            attach validators or extension fields not backed by a column
        id_schema: Annotation overriding the positive-integer key rule

    Returns:
        CrudSchemas bundle
    """
    camel = _camel(table.name)
    writable = [c for c in table.columns if not c.server_managed]

    insert_base = create_model(
        f'{camel}InsertBase', __base__=CrudModel,
        **{c.name: _payload_field(c) for c in writable})
    select_base = create_model(
        f'{camel}SelectBase', __base__=RowModel,
        **{c.name: (column_annotation(c), None) for c in table.columns})

    omitted = set(omit_from_create_update)
    create = create_model(
        f'{camel}Create', __base__=CrudModel,
        **{c.name: _payload_field(c) for c in writable if c.name not in omitted})
    if refine is not None:
        create = refine(create)

    # Subclassing keeps validators attached by refine(); every field is
    # redeclared as optional with constraints preserved.
    update = create_model(
        f'{camel}Update', __base__=create,
        __validators__={'require_any_field': model_validator(mode='after')(_require_any_field)},
        **{name: (info.rebuild_annotation(), None)
           for name, info in create.model_fields.items()})

    dropped = set(omit_from_select)
    select = create_model(
        f'{camel}Select', __base__=RowModel,
        **{c.name: (column_annotation(c), None) for c in table.columns if c.name not in dropped})

    return CrudSchemas(
        table=table,
        create=create,
        update=update,
        select=select,
        id=id_schema if id_schema is not None else PositiveInt,
        insert_base=insert_base,
        select_base=select_base,
        id_overridden=id_schema is not None,
    )


def validate_payload(model: type[BaseModel], payload: Any) -> tuple[BaseModel | None, list[dict]]:
    """Validate a payload against a contract.

    Returns:
        (instance, []) on success, (None, error items) on failure
    """
    try:
        return model.model_validate(payload), []
    except ValidationError as e:
        return None, format_error_items(e)

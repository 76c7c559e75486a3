from __future__ import annotations

from typing import Any, List, Mapping, Sequence, Tuple, Union

from sqlalchemy.dialects.postgresql.base import PGDialect
from sqlalchemy.sql import ClauseElement

from sequent.exception import ArgumentError

Command = Tuple[str, List[Any]]
KeyFields = Union[str, Sequence[str]]

_DIALECT = PGDialect(paramstyle="numeric_dollar")


def quote_identifier(name: str) -> str:
    """Quote a PostgreSQL identifier so that it is always valid

    Args:
        name (str): Table, column or savepoint name

    Returns:
        str: The name wrapped in double quotes, embedded quotes doubled
    """
    return '"' + str(name).replace('"', '""') + '"'


def _placeholders(start: int, count: int) -> str:
    return ",".join(f"${i}" for i in range(start, start + count))


def insert_sql(table: str, fields: Mapping[str, Any]) -> Command:
    """Build a single-row INSERT from a mapping of column to value"""
    if not fields:
        raise ArgumentError(f"No fields given to insert into {table}")

    columns = ",".join(quote_identifier(key) for key in fields)
    values = list(fields.values())
    return (
        f"INSERT INTO {quote_identifier(table)} ({columns}) "
        f"VALUES ({_placeholders(1, len(values))})",
        values,
    )


def normalize_keys(key_fields: KeyFields) -> List[str]:
    if isinstance(key_fields, str):
        return [key_fields]
    keys = list(key_fields)
    if not keys:
        raise ArgumentError("At least one key field is required")
    return keys


def upsert_sql(
    table: str, key_fields: KeyFields, fields: Mapping[str, Any]
) -> Command:
    """Build an UPDATE-else-INSERT statement returning the affected row.

    The UPDATE matches on ``key_fields``; the INSERT only runs when the
    UPDATE matched nothing. Placeholders are numbered by the position of each
    column in ``fields``, so every value is passed exactly once.

    Args:
        table (str): Target table
        key_fields (Union[str, Sequence[str]]): Column (or columns) that
            identify the row
        fields (Mapping[str, Any]): Every column to write, keys included

    Raises:
        ArgumentError: If a key field has no value in ``fields``

    Returns:
        Tuple[str, List[Any]]: SQL text and ordered parameters
    """
    keys = normalize_keys(key_fields)
    missing = [key for key in keys if key not in fields]
    if missing:
        raise ArgumentError(
            "Key fields missing from data: "
            + ", ".join(str(key) for key in missing)
        )

    position = {column: index for index, column in enumerate(fields, 1)}
    setters = [column for column in fields if column not in keys] or keys
    tbl = quote_identifier(table)

    set_clause = ",".join(
        f"{quote_identifier(column)}=${position[column]}" for column in setters
    )
    where_clause = " AND ".join(
        f"{quote_identifier(key)}=${position[key]}" for key in keys
    )
    columns = ",".join(quote_identifier(column) for column in fields)

    return (
        f"WITH update_query AS (UPDATE {tbl} SET {set_clause} "
        f"WHERE {where_clause} RETURNING *), "
        f"insert_query AS (INSERT INTO {tbl} ({columns}) "
        f"SELECT {_placeholders(1, len(fields))} "
        "WHERE NOT EXISTS (SELECT * FROM update_query) RETURNING *) "
        "SELECT * FROM update_query UNION SELECT * FROM insert_query",
        list(fields.values()),
    )


def query_sql(statement: Any) -> Command:
    """Compile a SQLAlchemy Core statement into ``$n`` SQL and parameters"""
    if not isinstance(statement, ClauseElement):
        raise ArgumentError(
            "Expected a SQLAlchemy statement, got "
            f"{type(statement).__name__}"
        )

    compiled = statement.compile(dialect=_DIALECT)
    names = compiled.positiontup or []
    params = compiled.params
    return str(compiled), [params[name] for name in names]

"""
Planning for multi-row inserts that skip rows which would violate a unique
index instead of aborting the whole batch.
"""

from __future__ import annotations

from typing import Any, Dict, Iterable, List, Mapping, Sequence

from sequent.exception import ArgumentError
from sequent.sql.builder import Command, quote_identifier
from sequent.sql.quoter import Quoter

UNIQUE_INDEX_QUERY = (
    "SELECT a.attrelid AS tableid, i.indexrelid AS idxid, a.attname AS name "
    "FROM pg_catalog.pg_attribute AS a "
    "JOIN pg_catalog.pg_index AS i "
    "ON a.attrelid = i.indrelid AND a.attnum = ANY(i.indkey) "
    "WHERE i.indrelid = $1::regclass AND i.indisunique AND NOT a.atthasdef "
    "ORDER BY i.indexrelid, a.attnum"
)


def unique_index_sql(table: str) -> Command:
    """Catalog query listing the columns of every unique index on ``table``.

    Columns with a default (serial, identity, ``DEFAULT ...``) are left out:
    they cannot collide with data supplied by the caller.
    """
    return UNIQUE_INDEX_QUERY, [quote_identifier(table)]


def unique_groups(rows: Iterable[Mapping[str, Any]]) -> List[List[str]]:
    """Fold ``(idxid, name)`` catalog rows into one column list per index"""
    groups: Dict[Any, List[str]] = {}
    for row in rows:
        groups.setdefault(row["idxid"], []).append(str(row["name"]))
    return list(groups.values())


def _values(
    columns: Sequence[str], rows: Sequence[Sequence[Any]], quoter: Quoter
) -> str:
    rendered = []
    for row in rows:
        if len(row) != len(columns):
            raise ArgumentError(
                f"Row {tuple(row)!r} has {len(row)} values for "
                f"{len(columns)} columns"
            )
        rendered.append(
            "(" + ", ".join(quoter.literal(value) for value in row) + ")"
        )
    return ", ".join(rendered)


def bulk_insert_sql(
    table: str,
    columns: Sequence[str],
    rows: Sequence[Sequence[Any]],
    groups: Sequence[Sequence[str]],
    quoter: Quoter,
) -> str:
    """Build one INSERT for every row in ``rows``

    Without unique indexes this is a plain multi-row INSERT. Otherwise the
    rows are selected from a VALUES list and anti-joined against the table
    on each unique column group, so duplicates are skipped atomically.

    Args:
        table (str): Target table
        columns (Sequence[str]): Column names, in row order
        rows (Sequence[Sequence[Any]]): Row tuples
        groups (Sequence[Sequence[str]]): Unique index column groups, as
            returned by ``unique_groups``
        quoter (Quoter): Renders literal values

    Raises:
        ArgumentError: If a unique column group is not fully covered by
            ``columns``, or a row has the wrong number of values

    Returns:
        str: The INSERT statement, with all values inlined
    """
    present = set(columns)
    for group in groups:
        uncovered = [column for column in group if column not in present]
        if uncovered:
            raise ArgumentError(
                f"Unique index columns not covered by data for {table}: "
                + ", ".join(uncovered)
            )

    tbl = quoter.identifier(table)
    column_list = ", ".join(quoter.identifier(column) for column in columns)
    values = _values(columns, rows, quoter)

    if not groups:
        return f"INSERT INTO {tbl} ({column_list}) VALUES {values}"

    matches = " OR ".join(
        "("
        + " AND ".join(
            f"src.{quoter.identifier(column)}=dst.{quoter.identifier(column)}"
            for column in group
        )
        + ")"
        for group in groups
    )
    return (
        f"INSERT INTO {tbl} ({column_list}) "
        f"(SELECT * FROM (VALUES {values}) AS src ({column_list}) "
        f"WHERE NOT EXISTS (SELECT 1 FROM {tbl} AS dst WHERE {matches}))"
    )

"""
SQL dialect helpers shared by the query executors.

Queries are written once, with ordinal ``$1..$n`` markers, and rewritten here
into SQLAlchemy named binds.  The engine's dialect then renders those in its
driver's own paramstyle (native ``$n`` for asyncpg, ``?`` for sqlite), so
callers never see the difference.
"""

import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Mapping, Optional, Sequence

POSTGRESQL = "postgresql"
SQLITE = "sqlite"

_PLACEHOLDER = re.compile(r"\$(\d+)")
_INSERT_TABLE = re.compile(r"^\s*INSERT\s+INTO\s+(\w+)", re.IGNORECASE)
_IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


@dataclass
class QueryResult:
    """Backend-independent result: plain dict rows plus affected row count."""

    rows: List[Dict[str, Any]] = field(default_factory=list)
    row_count: int = 0

    def first(self) -> Optional[Dict[str, Any]]:
        return self.rows[0] if self.rows else None


def translate_placeholders(sql: str) -> str:
    """Rewrite ``$1``, ``$2`` … into ``:p1``, ``:p2`` … binds."""
    return _PLACEHOLDER.sub(lambda m: f":p{m.group(1)}", sql)


def bind_params(params: Sequence[Any], coerce_booleans: bool = False) -> Dict[str, Any]:
    """Map an ordered parameter list onto the names produced by translate_placeholders."""
    bound = {}
    for index, value in enumerate(params, start=1):
        if coerce_booleans and isinstance(value, bool):
            value = int(value)
        bound[f"p{index}"] = value
    return bound


def infer_insert_table(sql: str) -> Optional[str]:
    """Best-effort table name of an ``INSERT INTO <table>`` statement."""
    match = _INSERT_TABLE.match(sql)
    return match.group(1) if match else None


def check_identifier(name: str) -> str:
    if not _IDENTIFIER.match(name):
        raise ValueError(f"Invalid SQL identifier: {name!r}")
    return name


# ── Statement builders ──

def build_insert(
    table: str,
    columns: Sequence[str],
    conflict_on: Sequence[str] = (),
    on_conflict_set: Optional[Mapping[str, str]] = None,
    returning: bool = False,
) -> str:
    """
    INSERT with ordinal markers, optionally conflict-aware.

    ``on_conflict_set`` maps column → SQL expression (``EXCLUDED.col``,
    ``CURRENT_TIMESTAMP`` …).  Without it a conflict is ignored.
    """
    check_identifier(table)
    column_list = ", ".join(check_identifier(c) for c in columns)
    markers = ", ".join(f"${i}" for i in range(1, len(columns) + 1))
    sql = f"INSERT INTO {table} ({column_list}) VALUES ({markers})"

    if conflict_on:
        target = ", ".join(check_identifier(c) for c in conflict_on)
        if on_conflict_set:
            assignments = ", ".join(
                f"{check_identifier(col)} = {expr}" for col, expr in on_conflict_set.items()
            )
            sql += f" ON CONFLICT ({target}) DO UPDATE SET {assignments}"
        else:
            sql += f" ON CONFLICT ({target}) DO NOTHING"

    if returning:
        sql += " RETURNING *"
    return sql


def build_update(
    table: str,
    value_columns: Sequence[str],
    expressions: Optional[Mapping[str, str]],
    key_columns: Sequence[str],
    returning: bool = False,
) -> str:
    """UPDATE … SET with bound values first, then raw expressions, keyed on ``key_columns``."""
    check_identifier(table)
    assignments = [f"{check_identifier(col)} = ${i}" for i, col in enumerate(value_columns, start=1)]
    assignments += [f"{check_identifier(col)} = {expr}" for col, expr in (expressions or {}).items()]
    if not assignments:
        raise ValueError("UPDATE needs at least one assignment")

    offset = len(value_columns)
    where = " AND ".join(
        f"{check_identifier(col)} = ${offset + i}" for i, col in enumerate(key_columns, start=1)
    )
    sql = f"UPDATE {table} SET {', '.join(assignments)} WHERE {where}"
    if returning:
        sql += " RETURNING *"
    return sql


def build_select_by_key(table: str, key_columns: Sequence[str]) -> str:
    check_identifier(table)
    where = " AND ".join(
        f"{check_identifier(col)} = ${i}" for i, col in enumerate(key_columns, start=1)
    )
    return f"SELECT * FROM {table} WHERE {where}"


# ── Value normalisation ──

def parse_timestamp(value: Any) -> Optional[datetime]:
    """
    Normalise a timestamp column value.

    asyncpg hands back aware datetimes; sqlite hands back
    ``YYYY-MM-DD HH:MM:SS`` text in UTC.
    """
    if value is None:
        return None
    if isinstance(value, str):
        value = datetime.fromisoformat(value)
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value


def _matches(name: str, columns) -> bool:
    # Aliased joins (``user_created_at``) keep the column name as a suffix.
    return name in columns or any(name.endswith(f"_{column}") for column in columns)


def normalize_row(row: Dict[str, Any], timestamps, booleans) -> Dict[str, Any]:
    """
    Give a result row the value types asyncpg produces.

    sqlite returns timestamps as text and booleans as 0/1; columns named in
    ``timestamps`` become aware datetimes and those in ``booleans`` become bool.
    Values of any other column are left alone.
    """
    for name, value in row.items():
        if value is None:
            continue
        if _matches(name, timestamps):
            row[name] = parse_timestamp(value)
        elif _matches(name, booleans):
            row[name] = bool(value)
    return row

# magnum/database/queries/sql_builder.py
from __future__ import annotations

from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

from ..repositories import validate_paths

# Columns stored as BIGINT/INT; everything numeric else is DOUBLE PRECISION.
INTEGER_COLUMNS = {
    "total_exchanges",
    "miner_last_reward",
    "miner_level",
    "created",
    "last_seen",
}


def _coerce(column: str, value: Any) -> Any:
    if isinstance(value, bool) or value is None:
        return value
    if isinstance(value, (int, float)):
        return int(value) if column in INTEGER_COLUMNS else float(value)
    return value


def build_update(
    table: str,
    columns: Dict[str, str],
    key_conditions: List[str],
    args: List[Any],
    *,
    inc: Optional[Mapping[str, float]] = None,
    set_: Optional[Mapping[str, Any]] = None,
    expect: Optional[Mapping[str, Any]] = None,
    floor: Iterable[str] = (),
    extra_assignments: Iterable[str] = (),
) -> Tuple[str, List[Any]]:
    """
    Build ``UPDATE <table> SET ... WHERE ... RETURNING 1`` from document paths.

    ``key_conditions`` / ``args`` carry the row selector (e.g. ``id = $1``);
    new placeholders continue after them. Column names only ever come from
    the ``columns`` whitelist.
    """
    inc = dict(inc or {})
    set_ = dict(set_ or {})
    expect = dict(expect or {})
    floor = list(floor)

    validate_paths(list(inc) + list(set_) + list(expect) + floor, columns)
    overlap = set(inc) & set(set_)
    if overlap:
        raise ValueError(f"Field(s) both incremented and set: {', '.join(sorted(overlap))}")

    args = list(args)
    assignments: List[str] = []
    conditions: List[str] = list(key_conditions)

    for path, delta in inc.items():
        col = columns[path]
        args.append(_coerce(col, delta))
        assignments.append(f"{col} = {col} + ${len(args)}")

    for path, value in set_.items():
        col = columns[path]
        args.append(_coerce(col, value))
        assignments.append(f"{col} = ${len(args)}")

    assignments.extend(extra_assignments)
    if not assignments:
        raise ValueError("Nothing to update")

    for path, value in expect.items():
        col = columns[path]
        args.append(_coerce(col, value))
        conditions.append(f"{col} = ${len(args)}")

    for path in floor:
        col = columns[path]
        if path in inc:
            args.append(_coerce(col, inc[path]))
            conditions.append(f"{col} + ${len(args)} >= 0")
        else:
            conditions.append(f"{col} >= 0")

    sql = (
        f"UPDATE {table} SET {', '.join(assignments)} "
        f"WHERE {' AND '.join(conditions)} RETURNING 1"
    )
    return sql, args

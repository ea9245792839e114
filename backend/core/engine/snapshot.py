"""
core/engine/snapshot.py

Snapshot serializer - turns ORM entities into bounded plain values.

Audit logs store the state of an entity before and after an operation.
Entities are graphs (registration -> pilgrim -> rooms -> hotel -> rooms ...),
so a naive deep copy either recurses forever or drags half the database into
a single log row. The serializer here walks the graph with a visited set and
a depth limit and only follows relationships that are already loaded.
"""
from typing import Any, Iterable, Optional, Set
from datetime import date, datetime, time
from decimal import Decimal
from enum import Enum
from uuid import UUID
import logging

from sqlalchemy import inspect as sa_inspect
from sqlalchemy.exc import NoInspectionAvailable

logger = logging.getLogger(__name__)

CIRCULAR_MARKER = "[Circular]"
MAX_DEPTH_MARKER = "[Max Depth Reached]"
ERROR_MARKER = "[Error Serializing]"

DEFAULT_MAX_DEPTH = 3


def _mapped_items(value: Any):
    """
    Yield (key, value) pairs for a mapped instance, or None if not mapped.

    Column attributes are always included. Relationships are included only
    when already loaded, so snapshotting never triggers lazy loads.
    """
    try:
        state = sa_inspect(value)
    except NoInspectionAvailable:
        return None
    mapper = getattr(state, "mapper", None)
    if mapper is None:
        return None

    unloaded = state.unloaded
    items = []
    for attr in mapper.column_attrs:
        items.append((attr.key, lambda key=attr.key: getattr(value, key)))
    for rel in mapper.relationships:
        if rel.key in unloaded:
            continue
        items.append((rel.key, lambda key=rel.key: state.dict.get(key)))
    return items


def to_snapshot(
    value: Any,
    max_depth: int = DEFAULT_MAX_DEPTH,
    exclude: Optional[Iterable[str]] = None,
) -> Any:
    """
    Convert a value to a JSON-storable plain structure.

    Args:
        value: Entity, collection or scalar to serialize
        max_depth: Nesting depth after which MAX_DEPTH_MARKER is emitted
        exclude: Attribute names skipped at every level (e.g. "logs")

    Returns:
        Plain dicts/lists/scalars. Objects visited twice become
        CIRCULAR_MARKER; attributes that fail to read become ERROR_MARKER.
    """
    seen: Set[int] = set()
    skipped = set(exclude or ())

    def walk(val: Any, depth: int) -> Any:
        if val is None:
            return None
        if isinstance(val, Enum):
            return val.value
        if isinstance(val, (datetime, date, time)):
            return val.isoformat()
        if isinstance(val, Decimal):
            return str(val)
        if isinstance(val, UUID):
            return str(val)
        if isinstance(val, (str, int, float, bool)):
            return val
        if isinstance(val, bytes):
            return val.decode("utf-8", errors="replace")

        if id(val) in seen:
            return CIRCULAR_MARKER
        seen.add(id(val))

        if depth > max_depth:
            return MAX_DEPTH_MARKER

        if isinstance(val, (list, tuple, set, frozenset)):
            return [walk(item, depth + 1) for item in val]

        if isinstance(val, dict):
            return {
                str(k): walk(v, depth + 1)
                for k, v in val.items()
                if not str(k).startswith("_") and k not in skipped
            }

        items = _mapped_items(val)
        if items is None:
            items = [
                (k, lambda v=v: v)
                for k, v in vars(val).items()
            ] if hasattr(val, "__dict__") else []
            if not items:
                return str(val)

        plain = {}
        for key, getter in items:
            if key.startswith("_") or key in skipped:
                continue
            try:
                plain[key] = walk(getter(), depth + 1)
            except Exception as e:
                logger.debug(f"Snapshot of attribute '{key}' failed: {e}")
                plain[key] = ERROR_MARKER
        return plain

    return walk(value, 0)


__all__ = [
    "CIRCULAR_MARKER",
    "MAX_DEPTH_MARKER",
    "ERROR_MARKER",
    "DEFAULT_MAX_DEPTH",
    "to_snapshot",
]

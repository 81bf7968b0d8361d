"""
logbeacon/serialization.py - JSON-safe conversion and key redaction.

Both helpers are pure: they never mutate their input and never raise on
odd values (cycles, sets, bytes, arbitrary objects).
"""

import dataclasses
import json
import logging
from datetime import date, datetime, time
from decimal import Decimal
from enum import Enum
from typing import Any, Iterable
from uuid import UUID

logger = logging.getLogger(__name__)

CIRCULAR = "[Circular]"
REDACTED = "[REDACTED]"
UNSERIALIZABLE = "<unserializable>"


def safe_serialize(obj: Any, _seen: set[int] | None = None) -> Any:
    """
    Convert an arbitrary Python value into JSON-compatible primitives.

    Containers are walked recursively. A container that is already being
    walked higher up the same path is replaced by the "[Circular]" marker;
    the same object reached twice through sibling paths is serialized twice.
    Objects exposing ``model_dump()``, ``to_dict()`` or ``__dict__`` are
    serialized through those. Anything else falls back to ``repr()``.

    Never raises: a value whose conversion fails (a raising ``__str__``,
    ``__repr__`` or property) becomes "<unserializable>" on its own, without
    taking its siblings down with it.

    Parameters:
        obj (Any): The value to convert.

    Returns:
        Any: A value that ``json.dumps`` accepts without a ``default`` hook.
    """
    try:
        return _serialize(obj, set() if _seen is None else _seen)
    except Exception:
        logger.debug("Could not serialize value of type %s", type(obj).__name__, exc_info=True)
        return UNSERIALIZABLE


def safe_text(obj: Any) -> str:
    """``str(obj)``, or "<unserializable>" when that raises."""
    try:
        return str(obj)
    except Exception:
        return UNSERIALIZABLE


def _repr(obj: Any) -> str:
    try:
        return repr(obj)
    except Exception:
        return UNSERIALIZABLE


def _serialize(obj: Any, _seen: set[int]) -> Any:
    if obj is None or isinstance(obj, (bool, int, str)):
        return obj

    if isinstance(obj, float):
        # NaN and infinities are not valid JSON
        if obj != obj or obj in (float("inf"), float("-inf")):
            return str(obj)
        return obj

    if isinstance(obj, Enum):
        return safe_serialize(obj.value, _seen)

    if isinstance(obj, (datetime, date, time)):
        return obj.isoformat()

    if isinstance(obj, (UUID, Decimal)):
        return str(obj)

    if isinstance(obj, (bytes, bytearray)):
        return bytes(obj).decode("utf-8", errors="replace")

    marker = id(obj)
    if marker in _seen:
        return CIRCULAR

    _seen.add(marker)
    try:
        if isinstance(obj, dict):
            return {safe_text(k): safe_serialize(v, _seen) for k, v in obj.items()}

        if isinstance(obj, (list, tuple)):
            return [safe_serialize(item, _seen) for item in obj]

        if isinstance(obj, (set, frozenset)):
            return [safe_serialize(item, _seen) for item in sorted(obj, key=_repr)]

        if isinstance(obj, BaseException):
            return {"name": type(obj).__name__, "message": safe_text(obj)}

        if dataclasses.is_dataclass(obj) and not isinstance(obj, type):
            return safe_serialize(
                {f.name: getattr(obj, f.name) for f in dataclasses.fields(obj)},
                _seen,
            )

        for method in ("model_dump", "to_dict"):
            if callable(getattr(obj, method, None)):
                try:
                    return safe_serialize(getattr(obj, method)(), _seen)
                except Exception:
                    logger.debug(
                        "Serialization via .%s() failed for %s",
                        method, type(obj).__name__, exc_info=True,
                    )

        if hasattr(obj, "__dict__") and not isinstance(obj, type):
            return safe_serialize(vars(obj), _seen)
    finally:
        _seen.discard(marker)

    return _repr(obj)


def safe_stringify(value: Any) -> str:
    """Compact JSON text for any value (see ``safe_serialize``)."""
    return json.dumps(safe_serialize(value), separators=(",", ":"), ensure_ascii=False)


def redact(value: Any, keys: Iterable[str], marker: str = REDACTED) -> Any:
    """
    Return a copy of ``value`` with every mapping entry whose key is in
    ``keys`` replaced by ``marker``, at any nesting depth.

    Lists and tuples are walked; other values are returned as-is. Cyclic
    references are cut with the "[Circular]" marker.
    """
    wanted = frozenset(keys)
    if not wanted:
        return value
    return _redact(value, wanted, marker, set())


def _redact(value: Any, keys: frozenset, marker: str, seen: set[int]) -> Any:
    if isinstance(value, dict):
        if id(value) in seen:
            return CIRCULAR
        seen.add(id(value))
        try:
            return {
                k: marker if k in keys else _redact(v, keys, marker, seen)
                for k, v in value.items()
            }
        finally:
            seen.discard(id(value))

    if isinstance(value, (list, tuple)):
        if id(value) in seen:
            return CIRCULAR
        seen.add(id(value))
        try:
            walked = [_redact(item, keys, marker, seen) for item in value]
        finally:
            seen.discard(id(value))
        return walked if isinstance(value, list) else tuple(walked)

    return value

"""
Host value access and comparison for compiled expressions.

Null handling semantics:
- None is the canonical value for both a missing and a null value.
- Member access on None returns None.
- Missing mapping keys, out-of-range indexes and missing attributes
  return None.
"""

import math
from collections.abc import Mapping, MutableMapping, Sequence
from typing import Any, Union

from .errors import EvaluationError

# Runtime value types for the expression language.
#
# Note: host objects (scopes, class instances, callables) are valid values too.
ExprValue = Union[
    str,
    float,
    int,
    bool,
    None,
    Sequence[Any],
    Mapping[str, Any],
    Any,
]

_STRING_TYPES = (str, bytes, bytearray)


def get_type_name(value: Any) -> str:
    """Gets the type name of a value for error messages."""
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "boolean"
    if isinstance(value, int | float):
        return "number"
    if isinstance(value, str):
        return "string"
    if is_array_like(value):
        return "array"
    if isinstance(value, Mapping):
        return "object"
    if callable(value):
        return "function"
    return type(value).__name__


def is_number(value: Any) -> bool:
    """True for int and float values; bool is not a number here."""
    return isinstance(value, int | float) and not isinstance(value, bool)


def is_nan(value: Any) -> bool:
    return isinstance(value, float) and math.isnan(value)


def is_array_like(value: Any) -> bool:
    """Sequences other than strings are compared element by element."""
    return isinstance(value, Sequence) and not isinstance(value, _STRING_TYPES)


def is_object_like(value: Any) -> bool:
    return isinstance(value, Mapping)


def _as_index(key: Any) -> Any:
    if isinstance(key, bool):
        return None
    if isinstance(key, int):
        return key
    if isinstance(key, float) and key.is_integer():
        return int(key)
    if isinstance(key, str) and key.isdigit():
        return int(key)
    return None


def get_member(obj: Any, key: Any) -> Any:
    """
    Reads ``obj[key]`` / ``obj.key`` without raising for missing values.

    Mappings are read by key, sequences by integral index and any other
    object by attribute name.
    """
    if obj is None:
        return None

    if isinstance(obj, Mapping):
        try:
            return obj[key]
        except (KeyError, TypeError):
            return None

    if isinstance(obj, Sequence):
        index = _as_index(key)
        if index is not None:
            if 0 <= index < len(obj):
                return obj[index]
            return None

    if isinstance(key, str):
        return getattr(obj, key, None)

    return None


def set_member(obj: Any, key: Any, value: Any) -> None:
    """
    Writes ``value`` into ``obj`` at ``key``.

    List indexes replace an existing element or append at ``len(obj)``.

    Raises:
        EvaluationError: If the target cannot hold the value
    """
    if isinstance(obj, MutableMapping):
        obj[key] = value
        return

    if isinstance(obj, list):
        index = _as_index(key)
        if index is not None and 0 <= index < len(obj):
            obj[index] = value
            return
        if index == len(obj):
            obj.append(value)
            return
        raise EvaluationError(f"Cannot assign to index {key!r} of array", path=str(key))

    if obj is None or isinstance(obj, _STRING_TYPES + (int, float, bool, tuple)):
        raise EvaluationError(
            f"Cannot assign property {key!r} of {get_type_name(obj)}", path=str(key)
        )

    if not isinstance(key, str):
        raise EvaluationError(
            f"Cannot assign non-string key {key!r} of {get_type_name(obj)}"
        )

    try:
        setattr(obj, key, value)
    except (AttributeError, TypeError) as error:
        raise EvaluationError(
            f"Cannot assign property {key!r} of {get_type_name(obj)}: {error}",
            path=key,
        ) from error


def strict_equals(a: Any, b: Any) -> bool:
    """
    Strict equality (``===``).

    Scalars compare by value with booleans distinct from numbers; NaN
    never equals anything; containers and other objects compare by identity.
    """
    if is_nan(a) or is_nan(b):
        return False
    if a is b:
        return True
    if is_number(a) and is_number(b):
        return a == b
    if isinstance(a, bool) and isinstance(b, bool):
        return a == b
    if isinstance(a, str) and isinstance(b, str):
        return a == b
    if isinstance(a, bytes) and isinstance(b, bytes):
        return a == b
    return False


def same_value(a: Any, b: Any) -> bool:
    """Strict equality, except that NaN equals NaN."""
    if is_nan(a) and is_nan(b):
        return True
    return strict_equals(a, b)


def loose_equals(a: Any, b: Any) -> bool:
    """
    Loose equality (``==``).

    Numeric strings compare equal to numbers; everything else uses Python
    equality.
    """
    if is_number(a) and isinstance(b, str):
        a, b = b, a
    if isinstance(a, str) and is_number(b):
        try:
            return float(a.strip() or "0") == b
        except ValueError:
            return False
    return bool(a == b)


def values_equal(a: Any, b: Any) -> bool:
    """Deep equality check for watched values; NaN equals NaN."""
    # Identical primitives or same reference
    if a is b:
        return True

    if is_nan(a) and is_nan(b):
        return True

    # Numbers can be compared across int/float, never against bool
    if is_number(a) and is_number(b):
        return a == b
    if isinstance(a, bool) or isinstance(b, bool):
        return isinstance(a, bool) and isinstance(b, bool) and a == b

    if a is None or b is None:
        return False

    # Sequences
    if is_array_like(a) and is_array_like(b):
        if len(a) != len(b):
            return False
        for i in range(len(a)):
            if not values_equal(a[i], b[i]):
                return False
        return True

    # Mappings
    if isinstance(a, Mapping) and isinstance(b, Mapping):
        a_keys = set(a.keys())
        b_keys = set(b.keys())
        if a_keys != b_keys:
            return False
        for key in a_keys:
            if not values_equal(a[key], b[key]):
                return False
        return True

    if is_array_like(a) or is_array_like(b) or isinstance(a, Mapping) or isinstance(b, Mapping):
        return False

    # Primitive comparison
    return bool(a == b)

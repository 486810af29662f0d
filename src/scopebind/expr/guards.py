"""
Safety guards applied while evaluating compiled expressions.

Expressions are written by template authors, so every member name,
every dereferenced value and every callee is checked before use. The
checks are structural: an object is rejected for the capabilities it
exposes rather than for where it came from.
"""

import builtins
import functools
import operator
import types
from collections.abc import Mapping
from typing import Any, Optional

from .errors import SecurityError

# Member names that expose constructors or getter/setter introspection
FORBIDDEN_MEMBER_NAMES = frozenset(
    {
        "constructor",
        "__proto__",
        "__defineGetter__",
        "__defineSetter__",
        "__lookupGetter__",
        "__lookupSetter__",
        # Interpreter internals reachable from classes, functions, frames,
        # generators, coroutines and tracebacks
        "mro",
        "func_globals",
        "f_globals",
        "f_locals",
        "f_builtins",
        "f_code",
        "gi_frame",
        "gi_code",
        "cr_frame",
        "cr_code",
        "ag_frame",
        "ag_code",
        "tb_frame",
    }
)

# Invocation primitives; forbidden on any callable owner
FUNCTION_INVOCATION_MEMBERS = frozenset({"call", "apply", "bind"})

# Format-string methods can traverse attributes of their arguments
STRING_FORMAT_MEMBERS = frozenset({"format", "format_map"})

WINDOW_MARKERS = ("document", "location", "alert", "setInterval")
DOM_TRIO_MARKERS = ("attr", "prop", "find")

_CODE_CONSTRUCTORS = (
    type,
    object,
    builtins.eval,
    builtins.exec,
    builtins.compile,
    builtins.__import__,
    builtins.globals,
    builtins.locals,
    builtins.vars,
    builtins.open,
    builtins.breakpoint,
    builtins.getattr,
    builtins.setattr,
    builtins.delattr,
    types.FunctionType,
    types.CodeType,
)

_BINDING_PRIMITIVES = tuple(
    primitive
    for primitive in (
        functools.partial,
        functools.partialmethod,
        types.MethodType,
        operator.methodcaller,
        operator.attrgetter,
        getattr(operator, "call", None),
    )
    if primitive is not None
)

# Identity sets; these objects live for the whole interpreter session
_FORBIDDEN_OBJECT_IDS = frozenset(id(obj) for obj in _CODE_CONSTRUCTORS)
_FORBIDDEN_FUNCTION_IDS = frozenset(
    id(obj) for obj in _CODE_CONSTRUCTORS + _BINDING_PRIMITIVES
)


def _disallowed(what: str, expression: Optional[str], path: Optional[str] = None) -> SecurityError:
    return SecurityError(
        f"{what} in expressions is disallowed! Expression: {expression}",
        expression=expression,
        path=path,
    )


def _is_dunder(name: str) -> bool:
    return len(name) > 4 and name.startswith("__") and name.endswith("__")


def _exposes(obj: Any, name: str) -> bool:
    if isinstance(obj, Mapping):
        try:
            return name in obj
        except TypeError:
            return False
    return hasattr(obj, name)


def is_window_like(obj: Any) -> bool:
    """True for objects exposing the global-window capability signature."""
    return all(_exposes(obj, marker) for marker in WINDOW_MARKERS)


def is_dom_node_like(obj: Any) -> bool:
    """True for objects shaped like a DOM node or a jQuery-wrapped element."""
    if not _exposes(obj, "children"):
        return False
    if _exposes(obj, "nodeName"):
        return True
    return all(_exposes(obj, marker) for marker in DOM_TRIO_MARKERS)


def ensure_safe_member_name(name: Any, expression: Optional[str] = None) -> Any:
    """
    Rejects member names that reach constructors or interpreter internals.

    Raises:
        SecurityError: If the name is not allowed
    """
    if isinstance(name, str) and (name in FORBIDDEN_MEMBER_NAMES or _is_dunder(name)):
        raise _disallowed(f"Referencing {name!r}", expression, path=name)
    return name


def ensure_safe_member(owner: Any, name: Any, expression: Optional[str] = None) -> Any:
    """
    Applies the member-name guard plus the owner-dependent rules.

    Raises:
        SecurityError: If reading ``name`` from ``owner`` is not allowed
    """
    ensure_safe_member_name(name, expression)
    if not isinstance(name, str):
        return name
    if name in FUNCTION_INVOCATION_MEMBERS and callable(owner):
        raise _disallowed(f"Calling {name!r} on a function", expression, path=name)
    if name in STRING_FORMAT_MEMBERS and isinstance(owner, str):
        raise _disallowed(f"Referencing {name!r} of a string", expression, path=name)
    return name


def ensure_safe_object(obj: Any, expression: Optional[str] = None) -> Any:
    """
    Rejects window-like, DOM-like, module and code-constructing objects.

    Returns the object unchanged so the check can wrap any read.

    Raises:
        SecurityError: If the object is not allowed
    """
    if obj is None or isinstance(obj, (str, int, float, bool, bytes)):
        return obj
    if id(obj) in _FORBIDDEN_OBJECT_IDS:
        raise _disallowed(f"Referencing {getattr(obj, '__name__', 'object')!r}", expression)
    if isinstance(obj, types.ModuleType):
        raise _disallowed("Referencing a module", expression)
    if is_window_like(obj):
        raise _disallowed("Referencing the window", expression)
    if is_dom_node_like(obj):
        raise _disallowed("Referencing DOM nodes", expression)
    return obj


def ensure_safe_function(fn: Any, expression: Optional[str] = None) -> Any:
    """
    Rejects code-constructing builtins and invocation/binding primitives.

    Raises:
        SecurityError: If the callable is not allowed
    """
    if fn is not None and id(fn) in _FORBIDDEN_FUNCTION_IDS:
        raise _disallowed(f"Calling {getattr(fn, '__name__', 'function')!r}", expression)
    return fn

"""
Watcher records, change detection and specialised watch strategies.

A watch strategy ("delegate") wraps a compiled expression's getter and
listener so that the plain digest loop can handle one-time, constant and
literal expressions without knowing about them.
"""

from __future__ import annotations

import copy
import inspect
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Callable, List, Optional

from scopebind.expr.compiler import Expression
from scopebind.expr.values import (
    is_array_like,
    is_object_like,
    same_value,
    values_equal,
)

if TYPE_CHECKING:
    from .scope import Scope

WatchFn = Callable[[Any], Any]
Listener = Callable[[Any, Any, Any], Any]
Deregister = Callable[[], None]


class _InitialWatchValue:
    """Marks a watcher that has never been evaluated."""

    _instance: Optional["_InitialWatchValue"] = None

    def __new__(cls) -> "_InitialWatchValue":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "INITIAL_WATCH_VALUE"


INITIAL_WATCH_VALUE = _InitialWatchValue()


def noop_listener(new_value: Any, old_value: Any, scope: Any) -> None:
    return None


@dataclass(eq=False)
class Watcher:
    """One registered watch: getter, listener, comparison mode and last value."""

    get: WatchFn
    listener: Listener
    compare_by_value: bool = False
    last: Any = INITIAL_WATCH_VALUE

    def record(self, value: Any) -> None:
        self.last = copy.deepcopy(value) if self.compare_by_value else value


def are_equal(new_value: Any, old_value: Any, compare_by_value: bool) -> bool:
    """Reference equality with NaN equal to NaN, or deep equality when requested."""
    if old_value is INITIAL_WATCH_VALUE:
        return new_value is INITIAL_WATCH_VALUE
    if compare_by_value:
        return values_equal(new_value, old_value)
    return same_value(new_value, old_value)


# ============================================================
# Watch delegates
# ============================================================


def _is_all_defined(value: Any) -> bool:
    if value is None:
        return False
    if is_object_like(value):
        return all(item is not None for item in value.values())
    if is_array_like(value):
        return all(item is not None for item in value)
    return True


def one_time_literal_watch(
    scope: "Scope", listener: Listener, compare_by_value: bool, expression: Expression
) -> Deregister:
    """Removes the watch after a digest that ends with every element defined."""
    state: dict[str, Any] = {"last": None}

    def one_time_listener(value, old_value, current_scope):
        state["last"] = value
        listener(value, old_value, current_scope)
        if _is_all_defined(value):
            def unwatch_if_still_defined():
                if _is_all_defined(state["last"]):
                    deregister()

            current_scope.post_digest(unwatch_if_still_defined)

    deregister = scope._register_watcher(
        Watcher(expression, one_time_listener, compare_by_value)
    )
    return deregister


def one_time_watch(
    scope: "Scope", listener: Listener, compare_by_value: bool, expression: Expression
) -> Deregister:
    """Removes the watch after a digest that ends with a defined value."""
    state: dict[str, Any] = {"last": None}

    def one_time_listener(value, old_value, current_scope):
        state["last"] = value
        listener(value, old_value, current_scope)
        if value is not None:
            def unwatch_if_still_defined():
                if state["last"] is not None:
                    deregister()

            current_scope.post_digest(unwatch_if_still_defined)

    deregister = scope._register_watcher(
        Watcher(expression, one_time_listener, compare_by_value)
    )
    return deregister


def constant_watch(
    scope: "Scope", listener: Listener, compare_by_value: bool, expression: Expression
) -> Deregister:
    """Runs the listener once, then removes the watch."""

    def constant_listener(value, old_value, current_scope):
        listener(value, old_value, current_scope)
        deregister()

    deregister = scope._register_watcher(
        Watcher(expression, constant_listener, compare_by_value)
    )
    return deregister


def inputs_watch(
    scope: "Scope", listener: Listener, compare_by_value: bool, expression: Expression
) -> Deregister:
    """Re-evaluates a literal only when one of its inputs changes."""
    inputs = expression.inputs or ()
    old_inputs: List[Any] = [INITIAL_WATCH_VALUE] * len(inputs)
    state: dict[str, Any] = {"result": None}

    def inputs_getter(current_scope):
        changed = False
        for i, input_expression in enumerate(inputs):
            new_input = input_expression(current_scope)
            if changed or not are_equal(new_input, old_inputs[i], False):
                changed = True
                old_inputs[i] = new_input
        if changed:
            state["result"] = expression(current_scope)
        return state["result"]

    return scope._register_watcher(Watcher(inputs_getter, listener, compare_by_value))


def select_watch_delegate(expression: Any) -> Optional[Callable[..., Deregister]]:
    """Picks the watch strategy for a compiled expression, or None for a plain watch."""
    if not isinstance(expression, Expression):
        return None
    if expression.one_time:
        return one_time_literal_watch if expression.literal else one_time_watch
    if expression.constant:
        return constant_watch
    if expression.inputs:
        return inputs_watch
    return None


# ============================================================
# Collection watch
# ============================================================


def positional_arity(listener: Callable[..., Any]) -> Optional[int]:
    """
    Number of positional arguments the listener takes, or None when it
    accepts any number (``*args``) or its signature cannot be read.
    """
    try:
        signature = inspect.signature(listener)
    except (TypeError, ValueError):
        return None

    positional = 0
    for parameter in signature.parameters.values():
        if parameter.kind == inspect.Parameter.VAR_POSITIONAL:
            return None
        if parameter.kind in (
            inspect.Parameter.POSITIONAL_ONLY,
            inspect.Parameter.POSITIONAL_OR_KEYWORD,
        ):
            positional += 1
    return positional


def accepts_old_value(listener: Callable[..., Any]) -> bool:
    """True when the listener takes more than one positional argument."""
    arity = positional_arity(listener)
    return arity is None or arity > 1


class CollectionWatch:
    """
    Shallow collection change detection.

    The getter returns a change counter that grows whenever the watched
    value is replaced, its length changes, an element is replaced, or a
    mapping key is added, changed or removed.
    """

    def __init__(self, scope: "Scope", watch_fn: WatchFn, listener: Listener):
        self._scope = scope
        self._watch_fn = watch_fn
        self._listener = listener
        self._arity = positional_arity(listener)
        self._track_very_old_value = accepts_old_value(listener)
        self._new_value: Any = None
        self._old_value: Any = None
        self._very_old_value: Any = None
        self._change_count = 0
        self._first_run = True

    def get(self, scope: Any) -> int:
        new_value = self._watch_fn(scope)
        self._new_value = new_value

        if is_array_like(new_value):
            self._diff_sequence(new_value)
        elif is_object_like(new_value):
            self._diff_mapping(new_value)
        else:
            if not are_equal(new_value, self._old_value, False):
                self._change_count += 1
            self._old_value = new_value

        return self._change_count

    def _diff_sequence(self, new_value: Any) -> None:
        if not isinstance(self._old_value, list):
            self._change_count += 1
            self._old_value = []

        old_value: List[Any] = self._old_value
        if len(new_value) != len(old_value):
            self._change_count += 1
            del old_value[len(new_value):]
            old_value.extend([None] * (len(new_value) - len(old_value)))

        for i, new_item in enumerate(new_value):
            if not are_equal(new_item, old_value[i], False):
                self._change_count += 1
                old_value[i] = new_item

    def _diff_mapping(self, new_value: Any) -> None:
        if not isinstance(self._old_value, dict):
            self._change_count += 1
            self._old_value = {}

        old_value: dict = self._old_value
        for key, new_item in new_value.items():
            if key in old_value:
                if not are_equal(new_item, old_value[key], False):
                    self._change_count += 1
                    old_value[key] = new_item
            else:
                self._change_count += 1
                old_value[key] = new_item

        if len(old_value) > len(new_value):
            self._change_count += 1
            for key in [key for key in old_value if key not in new_value]:
                del old_value[key]

    def notify(self, _new_count: Any, _old_count: Any, scope: Any) -> None:
        # Single-argument listeners get the new value only and no snapshot is kept
        if not self._track_very_old_value:
            self._listener(*(self._new_value,)[: self._arity])
            return

        if self._first_run:
            self._first_run = False
            args = (self._new_value, self._new_value, self._scope)
        else:
            args = (self._new_value, self._very_old_value, self._scope)
        # Listeners taking (new, old) get no scope argument
        self._listener(*args[: self._arity])
        self._very_old_value = copy.copy(self._new_value)

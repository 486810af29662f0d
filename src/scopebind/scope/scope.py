"""
Hierarchical scopes with dirty-checking digest.

A scope is a mapping of model properties plus watchers, event listeners
and child scopes. Non-isolated children read through their parent's
model and write locally. Every scope of a tree shares the root's phase,
deferred queues and last-dirty-watch marker.

Digest flow:
1. Enter the "digest" phase; flush a pending apply-async batch.
2. Drain the async queue, then run one pass over every watcher of the
   subtree, depth first, oldest watcher first.
3. Repeat while the pass was dirty or the async queue is non-empty;
   give up with DigestConvergenceError after ``digest_ttl`` extra passes.
4. Clear the phase and drain the post-digest queue.
"""

from __future__ import annotations

import asyncio
import functools
import itertools
import logging
from collections import ChainMap, deque
from collections.abc import MutableMapping
from dataclasses import dataclass
from typing import Any, Callable, Deque, Dict, Iterable, List, Optional, Tuple

from scopebind.expr.compiler import Expression, compile_expression

from .config import ScopeConfig, normalize_scope_config
from .errors import DigestConvergenceError, PhaseConflictError
from .events import EventListener, ScopeEvent, fire_listeners, tombstone
from .scheduler import DeferredScheduler
from .watchers import (
    INITIAL_WATCH_VALUE,
    CollectionWatch,
    Deregister,
    Listener,
    Watcher,
    are_equal,
    noop_listener,
    select_watch_delegate,
)

logger = logging.getLogger("scopebind.scope.scope")

DIGEST_PHASE = "digest"
APPLY_PHASE = "apply"

_scope_ids = itertools.count(1)


@dataclass
class AsyncTask:
    """An expression queued by eval_async, evaluated against its scope."""

    scope: "Scope"
    expression: Any


class Scope(MutableMapping):
    """
    A node of a scope tree.

    Model properties are available both as mapping items
    (``scope["name"]``) and as attributes (``scope.name``). Attribute names
    starting with ``_`` and names defined on the class never reach the
    model.
    """

    def __init__(
        self,
        config: ScopeConfig | dict[str, Any] | None = None,
        *,
        loop: Optional[asyncio.AbstractEventLoop] = None,
    ):
        self._init_node(ChainMap(), parent=None, root=self, isolated=False)

        # Tree-wide state, only read through self._root
        self._config = normalize_scope_config(config)
        self._scheduler = DeferredScheduler(loop, self._config.async_delay)
        self._phase: Optional[str] = None
        self._last_dirty_watch: Optional[Watcher] = None
        self._async_queue: Deque[AsyncTask] = deque()
        self._apply_async_queue: Deque[Callable[[], Any]] = deque()
        self._apply_async_handle: Optional[asyncio.TimerHandle] = None
        self._post_digest_queue: Deque[Callable[[], Any]] = deque()

    def _init_node(
        self,
        model: ChainMap,
        parent: Optional["Scope"],
        root: "Scope",
        isolated: bool,
    ) -> None:
        self._id = next(_scope_ids)
        self._model = model
        self._parent = parent
        self._root = root
        self._isolated = isolated
        self._watchers: List[Watcher] = []
        self._listeners: Dict[str, List[Optional[EventListener]]] = {}
        self._children: List[Scope] = []

    # ============================================================
    # Model access
    # ============================================================

    def __getitem__(self, key: str) -> Any:
        return self._model[key]

    def __setitem__(self, key: str, value: Any) -> None:
        self._model[key] = value

    def __delitem__(self, key: str) -> None:
        del self._model[key]

    def __iter__(self):
        return iter(self._model)

    def __len__(self) -> int:
        return len(self._model)

    def clear(self) -> None:
        """Removes the properties defined on this scope; inherited ones stay visible."""
        self._model.maps[0].clear()

    def own_keys(self) -> Tuple[str, ...]:
        """Names of the properties defined on this scope itself."""
        return tuple(self._model.maps[0])

    def __getattr__(self, name: str) -> Any:
        if name.startswith("_"):
            raise AttributeError(name)
        try:
            return self._model[name]
        except KeyError:
            raise AttributeError(
                f"{type(self).__name__} has no property {name!r}"
            ) from None

    def __setattr__(self, name: str, value: Any) -> None:
        if name.startswith("_") or hasattr(type(self), name):
            object.__setattr__(self, name, value)
        else:
            self._model[name] = value

    def __delattr__(self, name: str) -> None:
        if name.startswith("_") or hasattr(type(self), name):
            object.__delattr__(self, name)
            return
        try:
            del self._model[name]
        except KeyError:
            raise AttributeError(name) from None

    __eq__ = object.__eq__
    __hash__ = object.__hash__

    def __bool__(self) -> bool:
        return True

    def __repr__(self) -> str:
        return f"<Scope id={self._id}{' isolated' if self._isolated else ''}>"

    # ============================================================
    # Introspection
    # ============================================================

    @property
    def id(self) -> int:
        return self._id

    @property
    def parent(self) -> Optional["Scope"]:
        return self._parent

    @property
    def root(self) -> "Scope":
        return self._root

    @property
    def children(self) -> Tuple["Scope", ...]:
        return tuple(self._children)

    @property
    def watcher_count(self) -> int:
        return len(self._watchers)

    @property
    def is_isolated(self) -> bool:
        return self._isolated

    @property
    def phase(self) -> Optional[str]:
        """The active phase of the tree: "digest", "apply" or None."""
        return self._root._phase

    @property
    def config(self) -> ScopeConfig:
        return self._root._config

    # ============================================================
    # Tree
    # ============================================================

    def new(self, isolated: bool = False, parent: Optional["Scope"] = None) -> "Scope":
        """
        Creates a child scope.

        Args:
            isolated: When True the child does not read this scope's properties
            parent: Scope the child is attached to for digests and events;
                defaults to this scope

        Returns:
            The new scope
        """
        hierarchy_parent = parent if parent is not None else self
        model = ChainMap() if isolated else self._model.new_child()

        child = object.__new__(type(self))
        child._init_node(model, hierarchy_parent, hierarchy_parent._root, isolated)
        hierarchy_parent._children.append(child)
        return child

    def destroy(self) -> None:
        """Broadcasts "$destroy" to the subtree and detaches it; no-op on the root."""
        if self is self._root or self._parent is None:
            return
        siblings = self._parent._children
        if self not in siblings:
            return

        self.broadcast("$destroy")
        siblings.remove(self)
        self._watchers.clear()
        self._listeners.clear()
        logger.debug("scope_destroyed", extra={"scope_id": self._id})

    def _every_scope(self, fn: Callable[["Scope"], bool]) -> bool:
        if not fn(self):
            return False
        i = 0
        while i < len(self._children):
            if not self._children[i]._every_scope(fn):
                return False
            i += 1
        return True

    # ============================================================
    # Watches
    # ============================================================

    def _compile(self, expression: Any) -> Any:
        return compile_expression(expression, self._root._config.expression_limits)

    def _register_watcher(self, watcher: Watcher) -> Deregister:
        # Newest first; the digest walks the list from the end
        self._watchers.insert(0, watcher)
        self._root._last_dirty_watch = None

        def deregister() -> None:
            for i, candidate in enumerate(self._watchers):
                if candidate is watcher:
                    del self._watchers[i]
                    self._root._last_dirty_watch = None
                    return

        return deregister

    def watch(
        self,
        watch_fn: Any,
        listener: Optional[Listener] = None,
        compare_by_value: bool = False,
    ) -> Deregister:
        """
        Registers a watch.

        Args:
            watch_fn: Expression text (``"::"`` prefix for one-time), a
                compiled Expression, or a callable taking the scope
            listener: Called as ``listener(new_value, old_value, scope)``
            compare_by_value: Compare by deep equality instead of identity

        Returns:
            A function removing this watch
        """
        getter = self._compile(watch_fn)
        listener = listener or noop_listener

        delegate = select_watch_delegate(getter)
        if delegate is not None:
            return delegate(self, listener, compare_by_value, getter)

        return self._register_watcher(Watcher(getter, listener, compare_by_value))

    def watch_group(
        self, watch_fns: Iterable[Any], listener: Listener
    ) -> Deregister:
        """
        Watches several values; the listener runs at most once per digest
        with lists of new and old values.
        """
        watch_fns = list(watch_fns)
        new_values: List[Any] = [None] * len(watch_fns)
        old_values: List[Any] = [None] * len(watch_fns)
        state = {"scheduled": False, "first_run": True, "should_call": True}

        if not watch_fns:
            def call_once(_scope: Any) -> None:
                if state["should_call"]:
                    listener(new_values, new_values, self)

            self.eval_async(call_once)

            def cancel() -> None:
                state["should_call"] = False

            return cancel

        def group_listener(_scope: Any) -> None:
            if state["first_run"]:
                state["first_run"] = False
                listener(new_values, new_values, self)
            else:
                listener(new_values, old_values, self)
            state["scheduled"] = False

        def member_listener(index: int, new_value: Any, old_value: Any, _scope: Any) -> None:
            new_values[index] = new_value
            old_values[index] = old_value
            if not state["scheduled"]:
                state["scheduled"] = True
                self.eval_async(group_listener)

        deregistrations = [
            self.watch(watch_fn, functools.partial(member_listener, i))
            for i, watch_fn in enumerate(watch_fns)
        ]

        def deregister_all() -> None:
            for deregister in deregistrations:
                deregister()

        return deregister_all

    def watch_collection(self, watch_fn: Any, listener: Listener) -> Deregister:
        """
        Watches the shallow contents of a list or mapping.

        A listener taking (new_value, old_value, scope) gets the current
        value as both values on the first call and a shallow copy of the
        previous value afterwards. A single-argument listener gets the
        new value only.
        """
        collection_watch = CollectionWatch(self, self._compile(watch_fn), listener)
        return self._register_watcher(
            Watcher(collection_watch.get, collection_watch.notify)
        )

    # ============================================================
    # Digest
    # ============================================================

    def _begin_phase(self, phase: str) -> None:
        root = self._root
        if root._phase is not None:
            raise PhaseConflictError(root._phase)
        root._phase = phase

    def _clear_phase(self) -> None:
        self._root._phase = None

    def digest(self) -> None:
        """
        Runs watchers of this scope and its descendants until they settle.

        Raises:
            PhaseConflictError: If a digest or apply is already in progress
            DigestConvergenceError: If watchers keep changing past the ttl
        """
        root = self._root
        ttl = root._config.digest_ttl
        root._last_dirty_watch = None
        self._begin_phase(DIGEST_PHASE)

        if root._apply_async_handle is not None or root._apply_async_queue:
            root._scheduler.cancel(root._apply_async_handle)
            self._flush_apply_async()

        while True:
            self._drain_async_queue()
            dirty = self._digest_once()
            if not (dirty or root._async_queue):
                break
            if ttl == 0:
                self._clear_phase()
                logger.error(
                    "digest_did_not_converge",
                    extra={"scope_id": self._id, "ttl": root._config.digest_ttl},
                )
                raise DigestConvergenceError(root._config.digest_ttl)
            ttl -= 1

        self._clear_phase()

        post_digest_queue = root._post_digest_queue
        while post_digest_queue:
            callback = post_digest_queue.popleft()
            try:
                callback()
            except Exception as e:
                logger.error(
                    "post_digest_callback_failed",
                    extra={"scope_id": self._id, "error": str(e)},
                    exc_info=True,
                )

    def _drain_async_queue(self) -> None:
        async_queue = self._root._async_queue
        while async_queue:
            task = async_queue.popleft()
            try:
                task.scope.eval(task.expression)
            except Exception as e:
                logger.error(
                    "async_task_failed",
                    extra={"scope_id": task.scope.id, "error": str(e)},
                    exc_info=True,
                )

    def _digest_once(self) -> bool:
        root = self._root
        dirty = False

        def visit(scope: Scope) -> bool:
            nonlocal dirty
            watchers = scope._watchers
            index = len(watchers) - 1
            while index >= 0:
                # Listeners may remove watchers from this list
                if index < len(watchers):
                    watcher = watchers[index]
                    try:
                        new_value = watcher.get(scope)
                        old_value = watcher.last
                        if not are_equal(new_value, old_value, watcher.compare_by_value):
                            root._last_dirty_watch = watcher
                            watcher.record(new_value)
                            watcher.listener(
                                new_value,
                                new_value if old_value is INITIAL_WATCH_VALUE else old_value,
                                scope,
                            )
                            dirty = True
                        elif root._last_dirty_watch is watcher:
                            return False
                    except Exception as e:
                        logger.error(
                            "watcher_failed",
                            extra={"scope_id": scope.id, "error": str(e)},
                            exc_info=True,
                        )
                index -= 1
            return True

        self._every_scope(visit)
        return dirty

    # ============================================================
    # Evaluation and deferred work
    # ============================================================

    def eval(self, expression: Any = None, locals: Any = None) -> Any:
        """
        Evaluates expression text or a callable against this scope.

        A plain callable is called as ``fn(scope)``, or ``fn(scope, locals)``
        when locals are given.
        """
        fn = self._compile(expression)
        if isinstance(fn, Expression):
            return fn(self, locals)
        if locals is None:
            return fn(self)
        return fn(self, locals)

    def apply(self, expression: Any = None) -> Any:
        """
        Evaluates an expression in the "apply" phase, then digests from the root.

        The root digest runs even when the evaluation raises.
        """
        self._begin_phase(APPLY_PHASE)
        try:
            return self.eval(expression)
        finally:
            self._clear_phase()
            self._root.digest()

    def eval_async(self, expression: Any) -> None:
        """Queues an expression for the current or the next digest."""
        root = self._root
        if root._phase is None and not root._async_queue:
            root._scheduler.schedule(self._digest_if_pending)
        root._async_queue.append(AsyncTask(self, expression))

    def _digest_if_pending(self) -> None:
        if self._root._async_queue:
            self._root.digest()

    def apply_async(self, expression: Any) -> None:
        """Queues an expression; calls in the same tick share one apply."""
        root = self._root
        root._apply_async_queue.append(functools.partial(self.eval, expression))
        if root._apply_async_handle is None:
            root._apply_async_handle = root._scheduler.schedule(self._apply_pending)

    def _apply_pending(self) -> None:
        self.apply(lambda _scope: self._flush_apply_async())

    def _flush_apply_async(self) -> None:
        root = self._root
        apply_async_queue = root._apply_async_queue
        while apply_async_queue:
            task = apply_async_queue.popleft()
            try:
                task()
            except Exception as e:
                logger.error(
                    "apply_async_task_failed",
                    extra={"scope_id": self._id, "error": str(e)},
                    exc_info=True,
                )
        root._apply_async_handle = None

    def post_digest(self, fn: Callable[[], Any]) -> None:
        """Queues a callback to run once after the next digest completes."""
        self._root._post_digest_queue.append(fn)

    # ============================================================
    # Events
    # ============================================================

    def on(self, event_name: str, listener: EventListener) -> Callable[[], None]:
        """Registers ``listener(event, *args)``; returns a deregistration function."""
        listeners = self._listeners.setdefault(event_name, [])
        listeners.append(listener)

        def deregister() -> None:
            tombstone(listeners, listener)

        return deregister

    def _fire(self, event: ScopeEvent, args: tuple) -> None:
        listeners = self._listeners.get(event.name)
        if listeners:
            fire_listeners(listeners, event, args)

    def emit(self, event_name: str, *args: Any) -> ScopeEvent:
        """Fires listeners on this scope and then on each ancestor until stopped."""
        event = ScopeEvent(event_name, self)
        scope: Optional[Scope] = self
        while scope is not None:
            event.current_scope = scope
            scope._fire(event, args)
            if event.propagation_stopped:
                break
            scope = scope._parent
        event.current_scope = None
        return event

    def broadcast(self, event_name: str, *args: Any) -> ScopeEvent:
        """Fires listeners on this scope and every descendant, depth first."""
        event = ScopeEvent(event_name, self, stoppable=False)

        def visit(scope: Scope) -> bool:
            event.current_scope = scope
            scope._fire(event, args)
            return True

        self._every_scope(visit)
        event.current_scope = None
        return event

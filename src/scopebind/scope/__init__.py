"""
Scope digest engine.

Scopes hold model properties, run dirty-checking watchers over them and
deliver events up and down the scope tree.
"""

from .config import DEFAULT_SCOPE_CONFIG, ScopeConfig, normalize_scope_config
from .errors import DigestConvergenceError, PhaseConflictError, ScopeError
from .events import ScopeEvent

# Scheduling
from .scheduler import DeferredScheduler
from .scope import APPLY_PHASE, DIGEST_PHASE, AsyncTask, Scope

# Watch strategies
from .watchers import (
    INITIAL_WATCH_VALUE,
    CollectionWatch,
    Watcher,
    are_equal,
    select_watch_delegate,
)

__all__ = [
    # Scope
    "Scope",
    "AsyncTask",
    "DIGEST_PHASE",
    "APPLY_PHASE",
    # Config
    "ScopeConfig",
    "DEFAULT_SCOPE_CONFIG",
    "normalize_scope_config",
    # Errors
    "ScopeError",
    "PhaseConflictError",
    "DigestConvergenceError",
    # Events
    "ScopeEvent",
    # Scheduling
    "DeferredScheduler",
    # Watchers
    "Watcher",
    "CollectionWatch",
    "INITIAL_WATCH_VALUE",
    "are_equal",
    "select_watch_delegate",
]

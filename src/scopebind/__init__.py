"""
scopebind: sandboxed binding expressions and a dirty-checking scope digest engine.
"""

from scopebind.expr import (
    DEFAULT_EXPRESSION_LIMITS,
    EvaluationError,
    Expression,
    ExpressionError,
    ExpressionSyntaxError,
    ExpressionLimits,
    LexError,
    LimitExceededError,
    ParseError,
    SecurityError,
    compile_expression,
    parse,
    tokenize,
)
from scopebind.scope import (
    DEFAULT_SCOPE_CONFIG,
    DigestConvergenceError,
    PhaseConflictError,
    Scope,
    ScopeConfig,
    ScopeError,
    ScopeEvent,
)

__all__ = [
    # Expressions
    "compile_expression",
    "Expression",
    "parse",
    "tokenize",
    "ExpressionLimits",
    "DEFAULT_EXPRESSION_LIMITS",
    # Scopes
    "Scope",
    "ScopeConfig",
    "DEFAULT_SCOPE_CONFIG",
    "ScopeEvent",
    # Errors
    "ExpressionError",
    "ExpressionSyntaxError",
    "LexError",
    "ParseError",
    "EvaluationError",
    "SecurityError",
    "LimitExceededError",
    "ScopeError",
    "PhaseConflictError",
    "DigestConvergenceError",
]

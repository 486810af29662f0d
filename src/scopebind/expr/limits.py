"""
Resource limits for expression compilation.

Expressions come from templates, so these limits keep a single binding
from producing an unbounded token stream or syntax tree. The tokenizer
enforces the source and string limits; the parser enforces the rest.
"""

import re
from dataclasses import dataclass, fields
from typing import Any, Mapping, Optional

from .errors import LimitExceededError

_CAMEL_BOUNDARY = re.compile(r"(?<!^)(?=[A-Z])")


@dataclass(frozen=True)
class ExpressionLimits:
    """Upper bounds applied to one expression source."""

    # Characters in the source text
    max_expression_length: int = 4096

    # Nesting depth of the syntax tree
    max_ast_depth: int = 64

    # Nodes in the syntax tree
    max_ast_nodes: int = 1024

    # Characters in one decoded string literal
    max_string_length: int = 1024

    # Elements of an array literal, entries of an object literal
    max_array_length: int = 256

    # Arguments of one call
    max_function_args: int = 16

    @classmethod
    def from_mapping(cls, values: Mapping[str, Any]) -> "ExpressionLimits":
        """Builds limits from a mapping with snake_case or camelCase keys."""
        known = {f.name for f in fields(cls)}
        kwargs = {}
        for key, value in values.items():
            name = _CAMEL_BOUNDARY.sub("_", key).lower()
            if name not in known:
                raise ValueError(f"Unknown expression limit: {key}")
            kwargs[name] = value
        return cls(**kwargs)

    def enforce(self, limit_name: str, actual: int) -> None:
        limit = getattr(self, limit_name)
        if actual > limit:
            raise LimitExceededError(limit_name, limit, actual)


DEFAULT_EXPRESSION_LIMITS = ExpressionLimits()


def _resolve(limits: Optional[ExpressionLimits]) -> ExpressionLimits:
    return DEFAULT_EXPRESSION_LIMITS if limits is None else limits


def check_expression_length(
    expression: str, limits: Optional[ExpressionLimits] = None
) -> None:
    _resolve(limits).enforce("max_expression_length", len(expression))


def check_string_length(length: int, limits: Optional[ExpressionLimits] = None) -> None:
    _resolve(limits).enforce("max_string_length", length)


def check_ast_depth(depth: int, limits: Optional[ExpressionLimits] = None) -> None:
    _resolve(limits).enforce("max_ast_depth", depth)


def check_ast_node_count(count: int, limits: Optional[ExpressionLimits] = None) -> None:
    _resolve(limits).enforce("max_ast_nodes", count)


def check_array_length(length: int, limits: Optional[ExpressionLimits] = None) -> None:
    _resolve(limits).enforce("max_array_length", length)


def check_function_arg_count(
    count: int, limits: Optional[ExpressionLimits] = None
) -> None:
    _resolve(limits).enforce("max_function_args", count)

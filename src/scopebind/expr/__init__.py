"""
Binding expression engine.

This module compiles template expressions into sandboxed, callable
evaluators that read from and assign into scopes.
"""

# Core types and utilities
from .ast import (
    ArrayLiteralNode,
    AssignmentNode,
    AstNode,
    AstNodeBase,
    BinaryOperator,
    BinaryOpNode,
    BooleanLiteralNode,
    CallNode,
    IdentifierNode,
    IndexAccessNode,
    MemberAccessNode,
    NullLiteralNode,
    NumberLiteralNode,
    ObjectLiteralNode,
    StatementsNode,
    StringLiteralNode,
    TernaryOpNode,
    UnaryOperator,
    UnaryOpNode,
    ast_to_string,
    calculate_ast_depth,
    child_nodes,
    count_ast_nodes,
)

# Compiler
from .compiler import (
    NOOP_EXPRESSION,
    Compiler,
    Expression,
    compile_expression,
)
from .errors import (
    EvaluationError,
    ExpressionError,
    ExpressionSyntaxError,
    LexError,
    LimitExceededError,
    ParseError,
    SecurityError,
)

# Guards
from .guards import (
    ensure_safe_function,
    ensure_safe_member,
    ensure_safe_member_name,
    ensure_safe_object,
    is_dom_node_like,
    is_window_like,
)
from .limits import (
    DEFAULT_EXPRESSION_LIMITS,
    ExpressionLimits,
    check_array_length,
    check_ast_depth,
    check_ast_node_count,
    check_expression_length,
    check_function_arg_count,
    check_string_length,
)

# Parser
from .parser import (
    Parser,
    parse,
)

# Tokenizer
from .tokenizer import (
    Token,
    Tokenizer,
    TokenType,
    tokenize,
)

# Values
from .values import (
    ExprValue,
    get_member,
    get_type_name,
    is_array_like,
    is_nan,
    is_object_like,
    loose_equals,
    same_value,
    set_member,
    strict_equals,
    values_equal,
)

__all__ = [
    # AST types
    "AstNode",
    "AstNodeBase",
    "StringLiteralNode",
    "NumberLiteralNode",
    "BooleanLiteralNode",
    "NullLiteralNode",
    "ArrayLiteralNode",
    "ObjectLiteralNode",
    "IdentifierNode",
    "MemberAccessNode",
    "IndexAccessNode",
    "CallNode",
    "UnaryOpNode",
    "BinaryOpNode",
    "TernaryOpNode",
    "AssignmentNode",
    "StatementsNode",
    "UnaryOperator",
    "BinaryOperator",
    "child_nodes",
    "count_ast_nodes",
    "calculate_ast_depth",
    "ast_to_string",
    # Errors
    "ExpressionError",
    "ExpressionSyntaxError",
    "LexError",
    "ParseError",
    "EvaluationError",
    "SecurityError",
    "LimitExceededError",
    # Limits
    "ExpressionLimits",
    "DEFAULT_EXPRESSION_LIMITS",
    "check_expression_length",
    "check_string_length",
    "check_ast_depth",
    "check_ast_node_count",
    "check_array_length",
    "check_function_arg_count",
    # Tokenizer
    "Token",
    "TokenType",
    "Tokenizer",
    "tokenize",
    # Parser
    "Parser",
    "parse",
    # Guards
    "ensure_safe_member_name",
    "ensure_safe_member",
    "ensure_safe_object",
    "ensure_safe_function",
    "is_window_like",
    "is_dom_node_like",
    # Values
    "ExprValue",
    "get_member",
    "set_member",
    "get_type_name",
    "is_array_like",
    "is_object_like",
    "is_nan",
    "loose_equals",
    "strict_equals",
    "same_value",
    "values_equal",
    # Compiler
    "Expression",
    "Compiler",
    "NOOP_EXPRESSION",
    "compile_expression",
]

"""
Expression compiler.

Turns a parsed AST into an ``Expression``: a callable ``(scope, locals)``
evaluator built from nested closures, with metadata computed bottom-up:

- ``constant``: the result never depends on the scope or locals
- ``literal``: the expression is a literal primitive, array or object
- ``assign``: present when the expression denotes an assignable location
- ``inputs``: non-constant leaf expressions of an array/object literal

Null handling semantics:
- Missing identifiers, properties and indexes evaluate to None.
- ``a + b`` returns the other operand when one side is None, and None
  when both are.
- ``a - b`` and unary ``-`` treat None as 0.
- Calling None returns None.
"""

import functools
from collections.abc import Mapping
from typing import Any, Callable, List, Optional, Sequence, Tuple

from .ast import AstNode, BinaryOperator
from .errors import EvaluationError
from .guards import (
    ensure_safe_function,
    ensure_safe_member,
    ensure_safe_member_name,
    ensure_safe_object,
)
from .limits import DEFAULT_EXPRESSION_LIMITS, ExpressionLimits
from .parser import parse
from .values import (
    get_member,
    get_type_name,
    is_number,
    loose_equals,
    set_member,
    strict_equals,
)

Evaluate = Callable[[Any, Optional[Mapping[str, Any]]], Any]
Assign = Callable[..., Any]


class Expression:
    """
    A compiled expression.

    Call it with ``expr(scope, locals)``; both arguments are optional.
    """

    def __init__(
        self,
        fn: Evaluate,
        *,
        source: str = "",
        constant: bool = False,
        literal: bool = False,
        assign: Optional[Assign] = None,
        inputs: Optional[Tuple["Expression", ...]] = None,
        one_time: bool = False,
    ):
        self._fn = fn
        self.source = source
        self.constant = constant
        self.literal = literal
        self.assign = assign
        self.inputs = inputs
        self.one_time = one_time

    def __call__(self, scope: Any = None, locals: Optional[Mapping[str, Any]] = None) -> Any:
        return self._fn(scope, locals)

    def __repr__(self) -> str:
        flags = [
            name
            for name in ("constant", "literal", "one_time")
            if getattr(self, name)
        ]
        if self.assign is not None:
            flags.append("assignable")
        return f"Expression({self.source!r}{', ' if flags else ''}{', '.join(flags)})"


def _noop(scope: Any = None, locals: Optional[Mapping[str, Any]] = None) -> None:
    return None


NOOP_EXPRESSION = Expression(_noop)


def _truthy(value: Any) -> bool:
    return bool(value)


def _as_comparable(left: Any, right: Any) -> Tuple[Any, Any]:
    # Numeric strings compare as numbers against numbers
    if is_number(left) and isinstance(right, str):
        try:
            return left, float(right)
        except ValueError:
            return left, right
    if isinstance(left, str) and is_number(right):
        try:
            return float(left), right
        except ValueError:
            return left, right
    return left, right


class Compiler:
    """Compiles AST nodes into Expression closures for one source string."""

    def __init__(self, source: str, limits: ExpressionLimits = DEFAULT_EXPRESSION_LIMITS):
        self._source = source
        self._limits = limits

    def compile(self, node: AstNode) -> Expression:
        """Compiles an AST node and returns its Expression."""
        node_type = node.type

        if node_type in ("StringLiteral", "NumberLiteral", "BooleanLiteral"):
            return self._constant(node.value)

        if node_type == "NullLiteral":
            return self._constant(None)

        if node_type == "ArrayLiteral":
            return self._compile_array(node.elements)

        if node_type == "ObjectLiteral":
            return self._compile_object(node.entries)

        if node_type == "Identifier":
            return self._compile_identifier(node.path)

        if node_type == "MemberAccess":
            return self._compile_member_access(node.object, node.property)

        if node_type == "IndexAccess":
            return self._compile_index_access(node.object, node.index)

        if node_type == "Call":
            return self._compile_call(node)

        if node_type == "UnaryOp":
            return self._compile_unary_op(node.operator, node.operand, node.position)

        if node_type == "BinaryOp":
            return self._compile_binary_op(
                node.operator, node.left, node.right, node.position
            )

        if node_type == "TernaryOp":
            return self._compile_ternary_op(node.condition, node.consequent, node.alternate)

        if node_type == "Assignment":
            return self._compile_assignment(node.target, node.value, node.position)

        if node_type == "Statements":
            return self._compile_statements(node.statements)

        raise EvaluationError(
            f"Unsupported expression node: {node_type}", node.position, self._source
        )

    # ============================================================
    # Literals
    # ============================================================

    def _constant(self, value: Any) -> Expression:
        return Expression(
            lambda scope, locals: value,
            source=self._source,
            constant=True,
            literal=True,
        )

    @staticmethod
    def _collect_inputs(parts: Sequence[Expression]) -> Tuple[Expression, ...]:
        inputs: List[Expression] = []
        for part in parts:
            if part.constant:
                continue
            if part.inputs:
                inputs.extend(part.inputs)
            else:
                inputs.append(part)
        return tuple(inputs)

    def _compile_array(self, elements: Sequence[AstNode]) -> Expression:
        element_fns = [self.compile(element) for element in elements]

        def array_fn(scope, locals):
            return [element_fn(scope, locals) for element_fn in element_fns]

        constant = all(fn.constant for fn in element_fns)
        return Expression(
            array_fn,
            source=self._source,
            constant=constant,
            literal=True,
            inputs=None if constant else self._collect_inputs(element_fns),
        )

    def _compile_object(self, entries: Sequence[Tuple[str, AstNode]]) -> Expression:
        entry_fns = [(key, self.compile(value)) for key, value in entries]

        def object_fn(scope, locals):
            return {key: value_fn(scope, locals) for key, value_fn in entry_fns}

        value_fns = [value_fn for _, value_fn in entry_fns]
        constant = all(fn.constant for fn in value_fns)
        return Expression(
            object_fn,
            source=self._source,
            constant=constant,
            literal=True,
            inputs=None if constant else self._collect_inputs(value_fns),
        )

    # ============================================================
    # Identifiers, member and index access
    # ============================================================

    def _read(self, owner: Any, key: Any) -> Any:
        ensure_safe_member(owner, key, self._source)
        return ensure_safe_object(get_member(owner, key), self._source)

    def _compile_identifier(self, path: Tuple[str, ...]) -> Expression:
        for name in path:
            ensure_safe_member_name(name, self._source)

        first = path[0]

        def base_of(scope, locals):
            if locals is not None and first in locals:
                return locals
            return scope

        def identifier_fn(scope, locals):
            value = base_of(scope, locals)
            for name in path:
                if value is None:
                    return None
                value = self._read(value, name)
            return value

        def assign(target, value, locals=None):
            holder = base_of(target, locals)
            for name in path[:-1]:
                child = self._read(holder, name)
                if child is None:
                    child = {}
                    set_member(holder, name, child)
                holder = child
            set_member(holder, path[-1], value)
            return value

        return Expression(identifier_fn, source=self._source, assign=assign)

    def _assignable_owner(self, object_fn: Expression, target, locals) -> Any:
        owner = ensure_safe_object(object_fn(target, locals), self._source)
        if owner is None and object_fn.assign is not None:
            owner = {}
            object_fn.assign(target, owner, locals)
        return owner

    def _compile_member_access(self, object_node: AstNode, name: str) -> Expression:
        ensure_safe_member_name(name, self._source)
        object_fn = self.compile(object_node)

        def member_fn(scope, locals):
            owner = object_fn(scope, locals)
            if owner is None:
                return None
            return self._read(owner, name)

        def assign(target, value, locals=None):
            owner = self._assignable_owner(object_fn, target, locals)
            ensure_safe_member(owner, name, self._source)
            self._write(owner, name, value)
            return value

        return Expression(member_fn, source=self._source, assign=assign)

    def _compile_index_access(self, object_node: AstNode, index_node: AstNode) -> Expression:
        object_fn = self.compile(object_node)
        key_fn = self.compile(index_node)

        def index_fn(scope, locals):
            owner = object_fn(scope, locals)
            key = key_fn(scope, locals)
            if owner is None:
                return None
            return self._read(owner, key)

        def assign(target, value, locals=None):
            owner = self._assignable_owner(object_fn, target, locals)
            key = key_fn(target, locals)
            ensure_safe_member(owner, key, self._source)
            self._write(owner, key, value)
            return value

        return Expression(index_fn, source=self._source, assign=assign)

    def _write(self, owner: Any, key: Any, value: Any) -> None:
        try:
            set_member(owner, key, value)
        except EvaluationError as error:
            raise EvaluationError(
                error.message, expression=self._source, path=error.path
            ) from error

    # ============================================================
    # Function calls
    # ============================================================

    def _compile_callee(self, node: AstNode) -> Callable[[Any, Any], Tuple[Any, Any]]:
        """Returns a resolver yielding (call context, callee) for a callee node."""
        if node.type == "MemberAccess" or node.type == "IndexAccess":
            object_fn = self.compile(node.object)
            if node.type == "MemberAccess":
                name = ensure_safe_member_name(node.property, self._source)
                key_fn: Evaluate = lambda scope, locals: name
            else:
                key_fn = self.compile(node.index)

            def resolve_member(scope, locals):
                context = ensure_safe_object(object_fn(scope, locals), self._source)
                key = key_fn(scope, locals)
                if context is None:
                    return None, None
                return context, self._read(context, key)

            return resolve_member

        callee_fn = self.compile(node)

        def resolve_plain(scope, locals):
            return scope, callee_fn(scope, locals)

        return resolve_plain

    def _compile_call(self, node: AstNode) -> Expression:
        resolve = self._compile_callee(node.callee)
        arg_fns = [self.compile(arg) for arg in node.args]
        source = self._source
        position = node.position

        def call_fn(scope, locals):
            context, callee = resolve(scope, locals)
            ensure_safe_object(context, source)
            ensure_safe_function(ensure_safe_object(callee, source), source)
            if callee is None:
                return None
            if not callable(callee):
                raise EvaluationError(
                    f"{get_type_name(callee)} is not a function", position, source
                )
            args = [ensure_safe_object(arg_fn(scope, locals), source) for arg_fn in arg_fns]
            return ensure_safe_object(callee(*args), source)

        return Expression(call_fn, source=source)

    # ============================================================
    # Operators
    # ============================================================

    def _arithmetic_error(self, verb: str, left: Any, right: Any, position: int) -> EvaluationError:
        return EvaluationError(
            f"Cannot {verb} {get_type_name(left)} and {get_type_name(right)}",
            position,
            self._source,
        )

    def _add(self, left: Any, right: Any, position: int) -> Any:
        if left is None:
            return right
        if right is None:
            return left
        try:
            return left + right
        except TypeError as error:
            raise self._arithmetic_error("add", left, right, position) from error

    def _subtract(self, left: Any, right: Any, position: int) -> Any:
        left = 0 if left is None else left
        right = 0 if right is None else right
        try:
            return left - right
        except TypeError as error:
            raise self._arithmetic_error("subtract", left, right, position) from error

    def _binary_operation(self, operator: BinaryOperator, position: int) -> Callable[[Any, Any], Any]:
        source = self._source

        if operator == "+":
            return lambda left, right: self._add(left, right, position)
        if operator == "-":
            return lambda left, right: self._subtract(left, right, position)
        if operator == "==":
            return loose_equals
        if operator == "!=":
            return lambda left, right: not loose_equals(left, right)
        if operator == "===":
            return strict_equals
        if operator == "!==":
            return lambda left, right: not strict_equals(left, right)

        verbs = {
            "*": "multiply",
            "/": "divide",
            "%": "compute modulo of",
            "<": "compare",
            "<=": "compare",
            ">": "compare",
            ">=": "compare",
        }
        operations = {
            "*": lambda a, b: a * b,
            "/": lambda a, b: a / b,
            "%": lambda a, b: a % b,
            "<": lambda a, b: a < b,
            "<=": lambda a, b: a <= b,
            ">": lambda a, b: a > b,
            ">=": lambda a, b: a >= b,
        }
        operation = operations[operator]
        relational = operator in ("<", "<=", ">", ">=")

        def apply(left, right):
            # Undefined operands never compare true and yield no arithmetic result
            if left is None or right is None:
                return False if relational else None
            if relational:
                left, right = _as_comparable(left, right)
            try:
                return operation(left, right)
            except ZeroDivisionError as error:
                label = "Division" if operator == "/" else "Modulo"
                raise EvaluationError(f"{label} by zero", position, source) from error
            except TypeError as error:
                raise self._arithmetic_error(verbs[operator], left, right, position) from error

        return apply

    def _compile_unary_op(self, operator: str, operand: AstNode, position: int) -> Expression:
        operand_fn = self.compile(operand)

        if operator == "!":
            def unary_fn(scope, locals):
                return not _truthy(operand_fn(scope, locals))
        elif operator == "-":
            def unary_fn(scope, locals):
                return self._subtract(0, operand_fn(scope, locals), position)
        else:
            def unary_fn(scope, locals):
                return operand_fn(scope, locals)

        return Expression(unary_fn, source=self._source, constant=operand_fn.constant)

    def _compile_binary_op(
        self, operator: BinaryOperator, left: AstNode, right: AstNode, position: int
    ) -> Expression:
        left_fn = self.compile(left)
        right_fn = self.compile(right)
        constant = left_fn.constant and right_fn.constant

        # Short-circuit evaluation for logical operators
        if operator == "&&":
            def and_fn(scope, locals):
                value = left_fn(scope, locals)
                return right_fn(scope, locals) if _truthy(value) else value

            return Expression(and_fn, source=self._source, constant=constant)

        if operator == "||":
            def or_fn(scope, locals):
                value = left_fn(scope, locals)
                return value if _truthy(value) else right_fn(scope, locals)

            return Expression(or_fn, source=self._source, constant=constant)

        operation = self._binary_operation(operator, position)

        def binary_fn(scope, locals):
            return operation(left_fn(scope, locals), right_fn(scope, locals))

        return Expression(binary_fn, source=self._source, constant=constant)

    def _compile_ternary_op(
        self, condition: AstNode, consequent: AstNode, alternate: AstNode
    ) -> Expression:
        condition_fn = self.compile(condition)
        consequent_fn = self.compile(consequent)
        alternate_fn = self.compile(alternate)

        def ternary_fn(scope, locals):
            if _truthy(condition_fn(scope, locals)):
                return consequent_fn(scope, locals)
            return alternate_fn(scope, locals)

        return Expression(
            ternary_fn,
            source=self._source,
            constant=condition_fn.constant and consequent_fn.constant and alternate_fn.constant,
        )

    # ============================================================
    # Assignment and statements
    # ============================================================

    def _compile_assignment(self, target: AstNode, value: AstNode, position: int) -> Expression:
        target_fn = self.compile(target)
        value_fn = self.compile(value)
        assign = target_fn.assign

        def assignment_fn(scope, locals):
            new_value = value_fn(scope, locals)
            if scope is None:
                raise EvaluationError(
                    "Cannot assign without a scope", position, self._source
                )
            return assign(scope, new_value, locals)

        return Expression(assignment_fn, source=self._source)

    def _compile_statements(self, statements: Sequence[AstNode]) -> Expression:
        if not statements:
            return Expression(_noop, source=self._source)

        statement_fns = [self.compile(statement) for statement in statements]

        def statements_fn(scope, locals):
            value = None
            for statement_fn in statement_fns:
                value = statement_fn(scope, locals)
            return value

        return Expression(
            statements_fn,
            source=self._source,
            constant=all(fn.constant for fn in statement_fns),
        )


@functools.lru_cache(maxsize=1024)
def _compile_text(text: str, limits: ExpressionLimits, one_time: bool) -> Expression:
    # Each cache key compiles its own instance, so the flag never leaks
    expression = Compiler(text, limits).compile(parse(text, limits))
    expression.one_time = one_time
    return expression


def compile_expression(
    expression: Any = None, limits: Optional[ExpressionLimits] = None
) -> Any:
    """
    Compiles expression text into an Expression.

    Args:
        expression: Expression text, an already compiled expression or any
            callable (returned unchanged), or None for a no-op expression
        limits: Optional expression limits

    Returns:
        A callable evaluator

    Raises:
        LexError: If tokenization fails
        ParseError: If parsing fails
        SecurityError: If the text names a disallowed member
        LimitExceededError: If the expression exceeds the configured limits
    """
    if expression is None:
        return NOOP_EXPRESSION

    if callable(expression):
        return expression

    if not isinstance(expression, str):
        raise TypeError(
            f"Expected expression text or a callable, got {type(expression).__name__}"
        )

    text = expression.strip()
    one_time = text.startswith("::")
    if one_time:
        text = text[2:].lstrip()

    return _compile_text(text, limits or DEFAULT_EXPRESSION_LIMITS, one_time)

"""
Errors raised while compiling or evaluating binding expressions.

Syntax errors (LexError, ParseError) surface from compile_expression and
carry the offending source and a character offset. EvaluationError and
SecurityError surface from calling a compiled Expression.
"""

from typing import Optional


class ExpressionError(Exception):
    """Base class; `expression` is the source text and `position` a 0-based offset."""

    def __init__(
        self,
        message: str,
        position: Optional[int] = None,
        expression: Optional[str] = None,
    ):
        super().__init__(message)
        self.message = message
        self.position = position
        self.expression = expression

    def format_with_context(self) -> str:
        """
        Renders the message followed by the source and a caret under the
        failing character, e.g.::

            Unexpected next character: '#'
              a # b
                ^
        """
        if self.expression is None or self.position is None:
            return self.message
        caret = "^".rjust(self.position + 1)
        return "\n".join((self.message, f"  {self.expression}", f"  {caret}"))


class ExpressionSyntaxError(ExpressionError):
    """The source text is not a valid expression."""


class LexError(ExpressionSyntaxError):
    """Raised by the tokenizer for malformed numbers, strings or characters."""


class ParseError(ExpressionSyntaxError):
    """Raised by the parser for a token sequence that does not form an expression."""


class EvaluationError(ExpressionError):
    """
    Raised while running a compiled expression.

    `path` names the member or index being accessed when the failure is
    tied to one.
    """

    def __init__(
        self,
        message: str,
        position: Optional[int] = None,
        expression: Optional[str] = None,
        path: Optional[str] = None,
    ):
        super().__init__(message, position, expression)
        self.path = path


class SecurityError(EvaluationError):
    """An expression reached a member, object or function the guards deny."""


class LimitExceededError(ExpressionError):
    """An expression is too long, too deep or too large to compile."""

    def __init__(self, limit_name: str, limit: int, actual: int):
        super().__init__(f"Expression exceeds {limit_name}: {actual} > {limit}")
        self.limit_name = limit_name
        self.limit = limit
        self.actual = actual

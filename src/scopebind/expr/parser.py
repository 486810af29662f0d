"""
Recursive-descent parser for binding expressions.

Grammar, loosest binding first::

    statements  := assignment (";" assignment)*
    assignment  := ternary ("=" assignment)?
    ternary     := binary ("?" assignment ":" assignment)?
    binary      := one loop per BINARY_LEVELS entry, left associative
    unary       := ("!" | "-" | "+") unary | postfix
    postfix     := primary ("." name | "[" assignment "]" | "(" args ")")*
    primary     := literal | path | "(" assignment ")" | array | object

After parsing, the whole tree is checked against the node-count and depth
limits.
"""

from typing import Callable, Dict, List, Optional, Tuple

from .ast import (
    ArrayLiteralNode,
    AssignmentNode,
    AstNode,
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
    calculate_ast_depth,
    count_ast_nodes,
)
from .errors import ParseError
from .limits import (
    DEFAULT_EXPRESSION_LIMITS,
    ExpressionLimits,
    check_array_length,
    check_ast_depth,
    check_ast_node_count,
    check_function_arg_count,
)
from .tokenizer import Token, TokenType, tokenize

# Kinds of node that may appear on the left of "="
ASSIGNABLE_NODE_TYPES = frozenset({"Identifier", "MemberAccess", "IndexAccess"})

# Binary operators grouped by precedence, loosest first
BINARY_LEVELS: Tuple[Dict[TokenType, BinaryOperator], ...] = (
    {TokenType.OR: "||"},
    {TokenType.AND: "&&"},
    {
        TokenType.EQ: "==",
        TokenType.NE: "!=",
        TokenType.STRICT_EQ: "===",
        TokenType.STRICT_NE: "!==",
    },
    {
        TokenType.LT: "<",
        TokenType.LE: "<=",
        TokenType.GT: ">",
        TokenType.GE: ">=",
    },
    {TokenType.PLUS: "+", TokenType.MINUS: "-"},
    {TokenType.STAR: "*", TokenType.SLASH: "/", TokenType.PERCENT: "%"},
)

UNARY_OPERATORS: Dict[TokenType, UnaryOperator] = {
    TokenType.NOT: "!",
    TokenType.MINUS: "-",
    TokenType.PLUS: "+",
}

_LITERALS: Dict[TokenType, Callable[[Token], AstNode]] = {
    TokenType.STRING: lambda t: StringLiteralNode(position=t.position, value=t.value),
    TokenType.NUMBER: lambda t: NumberLiteralNode(position=t.position, value=t.value),
    TokenType.TRUE: lambda t: BooleanLiteralNode(position=t.position, value=True),
    TokenType.FALSE: lambda t: BooleanLiteralNode(position=t.position, value=False),
    TokenType.NULL: lambda t: NullLiteralNode(position=t.position),
}

# Tokens whose raw text is used as an object key
_BARE_KEY_TYPES = frozenset(
    {TokenType.NUMBER, TokenType.TRUE, TokenType.FALSE, TokenType.NULL}
)


class Parser:
    """Builds a syntax tree from the tokens of one source string."""

    def __init__(
        self,
        tokens: List[Token],
        source: str,
        limits: Optional[ExpressionLimits] = None,
    ):
        self._tokens = tokens
        self._source = source
        self._limits = limits or DEFAULT_EXPRESSION_LIMITS
        self._index = 0

    def parse(self) -> AstNode:
        tree = self._statements()
        if self._current.type is not TokenType.EOF:
            raise self._unexpected(self._current)

        check_ast_node_count(count_ast_nodes(tree), self._limits)
        check_ast_depth(calculate_ast_depth(tree), self._limits)
        return tree

    # Token cursor

    @property
    def _current(self) -> Token:
        return self._tokens[self._index]

    def _take(self, *types: TokenType) -> Optional[Token]:
        """Consumes and returns the current token if it has one of the given types."""
        token = self._tokens[self._index]
        if token.type in types and token.type is not TokenType.EOF:
            self._index += 1
            return token
        return None

    def _require(self, token_type: TokenType, message: str) -> Token:
        token = self._take(token_type)
        if token is None:
            raise ParseError(message, self._current.position, self._source)
        return token

    def _unexpected(self, token: Token) -> ParseError:
        return ParseError(
            f"Unexpected token: {token.text or token.type.value}",
            token.position,
            self._source,
        )

    # Grammar rules

    def _statements(self) -> AstNode:
        start = self._current.position
        statements: List[AstNode] = []
        while True:
            if self._current.type not in (TokenType.EOF, TokenType.SEMICOLON):
                statements.append(self._assignment())
            if self._take(TokenType.SEMICOLON) is None:
                break

        if len(statements) == 1:
            return statements[0]
        return StatementsNode(position=start, statements=tuple(statements))

    def _assignment(self) -> AstNode:
        target = self._ternary()
        equals = self._take(TokenType.ASSIGN)
        if equals is None:
            return target

        if target.type not in ASSIGNABLE_NODE_TYPES:
            raise ParseError(
                "Left side of '=' is not assignable", equals.position, self._source
            )
        return AssignmentNode(
            position=equals.position, target=target, value=self._assignment()
        )

    def _ternary(self) -> AstNode:
        start = self._current.position
        condition = self._binary(0)
        if self._take(TokenType.QUESTION) is None:
            return condition

        consequent = self._assignment()
        self._require(TokenType.COLON, "Expected ':' in ternary expression")
        return TernaryOpNode(
            position=start,
            condition=condition,
            consequent=consequent,
            alternate=self._assignment(),
        )

    def _binary(self, level: int) -> AstNode:
        if level == len(BINARY_LEVELS):
            return self._unary()

        operators = BINARY_LEVELS[level]
        left = self._binary(level + 1)
        while True:
            token = self._take(*operators)
            if token is None:
                return left
            right = self._binary(level + 1)
            left = BinaryOpNode(
                position=token.position,
                operator=operators[token.type],
                left=left,
                right=right,
            )

    def _unary(self) -> AstNode:
        token = self._take(*UNARY_OPERATORS)
        if token is None:
            return self._postfix(self._primary())
        return UnaryOpNode(
            position=token.position,
            operator=UNARY_OPERATORS[token.type],
            operand=self._unary(),
        )

    def _postfix(self, node: AstNode) -> AstNode:
        while True:
            token = self._take(TokenType.DOT, TokenType.LBRACKET, TokenType.LPAREN)
            if token is None:
                return node

            if token.type is TokenType.DOT:
                name = self._require(TokenType.IDENTIFIER, "Expected property name after '.'")
                # A path after a call ("fn().a.b") arrives as one identifier token
                for segment in name.text.split("."):
                    node = MemberAccessNode(
                        position=token.position, object=node, property=segment
                    )
            elif token.type is TokenType.LBRACKET:
                index = self._assignment()
                self._require(TokenType.RBRACKET, "Expected ']' after index")
                node = IndexAccessNode(position=token.position, object=node, index=index)
            else:
                args = self._sequence(TokenType.RPAREN, self._assignment)
                check_function_arg_count(len(args), self._limits)
                node = CallNode(position=token.position, callee=node, args=tuple(args))

    def _primary(self) -> AstNode:
        token = self._current

        if token.type in _LITERALS:
            self._index += 1
            return _LITERALS[token.type](token)

        if self._take(TokenType.IDENTIFIER):
            return IdentifierNode(position=token.position, path=tuple(token.text.split(".")))

        if self._take(TokenType.LPAREN):
            inner = self._assignment()
            self._require(TokenType.RPAREN, "Expected ')' after expression")
            return inner

        if self._take(TokenType.LBRACKET):
            elements = self._sequence(TokenType.RBRACKET, self._assignment)
            check_array_length(len(elements), self._limits)
            return ArrayLiteralNode(position=token.position, elements=tuple(elements))

        if self._take(TokenType.LBRACE):
            entries = self._sequence(TokenType.RBRACE, self._object_entry)
            check_array_length(len(entries), self._limits)
            return ObjectLiteralNode(position=token.position, entries=tuple(entries))

        raise self._unexpected(token)

    def _sequence(self, closer: TokenType, item: Callable[[], object]) -> list:
        """Comma-separated items up to `closer`; the opener is already consumed."""
        items = []
        while self._current.type is not closer:
            items.append(item())
            if self._take(TokenType.COMMA) is None:
                break

        if self._take(closer) is None:
            raise self._unexpected(self._current)
        return items

    def _object_entry(self) -> Tuple[str, AstNode]:
        token = self._current
        if token.type is TokenType.STRING:
            key = token.value
        elif token.type in _BARE_KEY_TYPES or (
            token.type is TokenType.IDENTIFIER and "." not in token.text
        ):
            key = token.text
        else:
            raise ParseError("Expected object key", token.position, self._source)

        self._index += 1
        self._require(TokenType.COLON, "Expected ':' after object key")
        return key, self._assignment()


def parse(source: str, limits: Optional[ExpressionLimits] = None) -> AstNode:
    """
    Parses an expression source.

    An empty source yields a StatementsNode with no statements; a single
    statement is returned as is.

    Raises:
        LexError: If tokenization fails
        ParseError: If the tokens do not form an expression
        LimitExceededError: If the source or tree exceeds the limits
    """
    return Parser(tokenize(source, limits), source, limits).parse()

"""
Lexer for binding expressions.

Produces a flat token list ending in EOF. Two rules are specific to
binding expressions:

* a dotted path such as ``user.address.city`` is a single IDENTIFIER
  token, so the compiler can build one getter for the whole path;
* when the path is immediately called (``user.name.trim()``) the last
  segment is split off as ``IDENTIFIER DOT IDENTIFIER`` so the call
  keeps its receiver.
"""

import re
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from .errors import LexError
from .limits import ExpressionLimits, check_expression_length, check_string_length


class TokenType(Enum):
    # Literals
    STRING = "STRING"
    NUMBER = "NUMBER"
    TRUE = "TRUE"
    FALSE = "FALSE"
    NULL = "NULL"

    IDENTIFIER = "IDENTIFIER"

    # Operators
    PLUS = "PLUS"
    MINUS = "MINUS"
    STAR = "STAR"
    SLASH = "SLASH"
    PERCENT = "PERCENT"
    LT = "LT"
    LE = "LE"
    GT = "GT"
    GE = "GE"
    EQ = "EQ"
    NE = "NE"
    STRICT_EQ = "STRICT_EQ"
    STRICT_NE = "STRICT_NE"
    AND = "AND"
    OR = "OR"
    NOT = "NOT"
    ASSIGN = "ASSIGN"
    QUESTION = "QUESTION"
    COLON = "COLON"

    # Punctuation
    LPAREN = "LPAREN"
    RPAREN = "RPAREN"
    LBRACKET = "LBRACKET"
    RBRACKET = "RBRACKET"
    LBRACE = "LBRACE"
    RBRACE = "RBRACE"
    DOT = "DOT"
    COMMA = "COMMA"
    SEMICOLON = "SEMICOLON"

    EOF = "EOF"


@dataclass
class Token:
    """
    One lexical token.

    ``text`` is the raw source slice; ``value`` holds the decoded value of
    number, string and keyword-constant tokens.
    """

    type: TokenType
    text: str
    position: int
    value: Any = None

    @property
    def constant(self) -> bool:
        return self.type in CONSTANT_TOKEN_TYPES


CONSTANT_TOKEN_TYPES = frozenset(
    {
        TokenType.STRING,
        TokenType.NUMBER,
        TokenType.TRUE,
        TokenType.FALSE,
        TokenType.NULL,
    }
)

KEYWORDS: Dict[str, Tuple[TokenType, Any]] = {
    "true": (TokenType.TRUE, True),
    "false": (TokenType.FALSE, False),
    "null": (TokenType.NULL, None),
}

# Longest operators first so "===" wins over "==" and "="
OPERATORS: Tuple[Tuple[str, TokenType], ...] = (
    ("===", TokenType.STRICT_EQ),
    ("!==", TokenType.STRICT_NE),
    ("==", TokenType.EQ),
    ("!=", TokenType.NE),
    ("<=", TokenType.LE),
    (">=", TokenType.GE),
    ("&&", TokenType.AND),
    ("||", TokenType.OR),
    ("<", TokenType.LT),
    (">", TokenType.GT),
    ("=", TokenType.ASSIGN),
    ("!", TokenType.NOT),
    ("+", TokenType.PLUS),
    ("-", TokenType.MINUS),
    ("*", TokenType.STAR),
    ("/", TokenType.SLASH),
    ("%", TokenType.PERCENT),
    ("?", TokenType.QUESTION),
    (":", TokenType.COLON),
    ("(", TokenType.LPAREN),
    (")", TokenType.RPAREN),
    ("[", TokenType.LBRACKET),
    ("]", TokenType.RBRACKET),
    ("{", TokenType.LBRACE),
    ("}", TokenType.RBRACE),
    (",", TokenType.COMMA),
    (";", TokenType.SEMICOLON),
    (".", TokenType.DOT),
)

ESCAPES: Dict[str, str] = {
    "n": "\n",
    "f": "\f",
    "r": "\r",
    "t": "\t",
    "v": "\v",
    "'": "'",
    '"': '"',
}

WHITESPACE = frozenset(" \t\n\r\v\u00a0")
QUOTES = frozenset("'\"")

_IDENT_START = re.compile(r"[A-Za-z_$]")
_PATH = re.compile(r"[A-Za-z_$][\w$]*(?:\.[A-Za-z_$][\w$]*)*", re.ASCII)
_MANTISSA = re.compile(r"\d*(?:\.\d*)?", re.ASCII)
_EXPONENT = re.compile(r"[eE][+-]?(\d*)", re.ASCII)
_HEX4 = re.compile(r"[0-9a-fA-F]{4}")


def _is_digit(ch: str) -> bool:
    return "0" <= ch <= "9" if ch else False


class Tokenizer:
    """Splits one expression source into tokens."""

    def __init__(self, source: str, limits: Optional[ExpressionLimits] = None):
        self._source = source
        self._limits = limits
        self._pos = 0
        self._tokens: List[Token] = []

    def tokenize(self) -> List[Token]:
        check_expression_length(self._source, self._limits)

        source = self._source
        while self._pos < len(source):
            ch = source[self._pos]
            if ch in WHITESPACE:
                self._pos += 1
            elif _is_digit(ch) or (ch == "." and _is_digit(self._char_at(1))):
                self._read_number()
            elif ch in QUOTES:
                self._read_string(ch)
            elif _IDENT_START.match(ch):
                self._read_path()
            else:
                self._read_operator(ch)

        self._emit(TokenType.EOF, "", self._pos)
        return self._tokens

    def _char_at(self, offset: int) -> str:
        index = self._pos + offset
        return self._source[index] if index < len(self._source) else ""

    def _emit(self, token_type: TokenType, text: str, position: int, value: Any = None) -> None:
        self._tokens.append(Token(token_type, text, position, value))

    def _fail(self, message: str, position: int) -> LexError:
        return LexError(message, position, self._source)

    def _read_operator(self, ch: str) -> None:
        start = self._pos
        for text, token_type in OPERATORS:
            if self._source.startswith(text, start):
                self._pos += len(text)
                self._emit(token_type, text, start)
                return

        if ch in "&|":
            raise self._fail(f"Unexpected '{ch}'. Did you mean '{ch * 2}'?", start)
        raise self._fail(f"Unexpected next character: '{ch}'", start)

    def _read_number(self) -> None:
        start = self._pos
        text = _MANTISSA.match(self._source, start).group()
        # "1.foo" is member access on 1, not a fraction; "1.e5" is an exponent
        if text.endswith(".") and _IDENT_START.match(self._source, start + len(text)):
            exponent = _EXPONENT.match(self._source, start + len(text))
            if exponent is None or not exponent.group(1):
                text = text[:-1]

        exponent = _EXPONENT.match(self._source, start + len(text))
        if exponent is not None:
            if not exponent.group(1):
                raise self._fail("Invalid exponent", start)
            text += exponent.group()

        self._pos = start + len(text)
        is_float = "." in text or exponent is not None
        self._emit(TokenType.NUMBER, text, start, float(text) if is_float else int(text))

    def _read_string(self, quote: str) -> None:
        start = self._pos
        source = self._source
        pos = start + 1
        chunks: List[str] = []

        while pos < len(source):
            ch = source[pos]
            if ch == quote:
                value = "".join(chunks)
                check_string_length(len(value), self._limits)
                self._pos = pos + 1
                self._emit(TokenType.STRING, source[start : self._pos], start, value)
                return
            if ch != "\\":
                chunks.append(ch)
                pos += 1
                continue
            if pos + 1 >= len(source):
                break

            escaped = source[pos + 1]
            if escaped == "u":
                digits = _HEX4.match(source, pos + 2)
                if digits is None:
                    raise self._fail("Invalid unicode escape", pos)
                chunks.append(chr(int(digits.group(), 16)))
                pos += 6
            else:
                # Unknown escapes keep the escaped character
                chunks.append(ESCAPES.get(escaped, escaped))
                pos += 2

        raise self._fail("Unmatched quote", start)

    def _read_path(self) -> None:
        start = self._pos
        text = _PATH.match(self._source, start).group()
        self._pos = start + len(text)

        if "." in text and self._next_non_blank() == "(":
            dot = text.rindex(".")
            self._emit_word(text[:dot], start)
            self._emit(TokenType.DOT, ".", start + dot)
            self._emit(TokenType.IDENTIFIER, text[dot + 1 :], start + dot + 1)
            return

        self._emit_word(text, start)

    def _emit_word(self, text: str, start: int) -> None:
        if text in KEYWORDS:
            token_type, value = KEYWORDS[text]
            self._emit(token_type, text, start, value)
        else:
            self._emit(TokenType.IDENTIFIER, text, start)

    def _next_non_blank(self) -> str:
        pos = self._pos
        while pos < len(self._source) and self._source[pos] in WHITESPACE:
            pos += 1
        return self._source[pos] if pos < len(self._source) else ""


def tokenize(source: str, limits: Optional[ExpressionLimits] = None) -> List[Token]:
    """
    Tokenizes an expression source.

    Raises:
        LexError: On a malformed number, string or character
        LimitExceededError: If the source or a string literal is too long
    """
    return Tokenizer(source, limits).tokenize()

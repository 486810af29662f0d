"""
Syntax tree for binding expressions.

Nodes are frozen dataclasses. Every node class names its kind (exposed as
``node.type``) and the fields holding child nodes, so tree walks such as
count_ast_nodes need no per-kind code.
"""

from dataclasses import dataclass
from typing import ClassVar, Iterator, Literal, Sequence, Tuple, Union

UnaryOperator = Literal["!", "-", "+"]

BinaryOperator = Literal[
    "*", "/", "%",
    "+", "-",
    "<", "<=", ">", ">=",
    "==", "!=", "===", "!==",
    "&&", "||",
]


@dataclass(frozen=True)
class AstNodeBase:
    """Common node fields; `position` is the source offset of the node's first token."""

    kind: ClassVar[str] = "Node"
    child_fields: ClassVar[Tuple[str, ...]] = ()

    position: int

    @property
    def type(self) -> str:
        return self.kind

    def children(self) -> Iterator["AstNode"]:
        for name in self.child_fields:
            value = getattr(self, name)
            if isinstance(value, AstNodeBase):
                yield value
            else:
                yield from value

    def describe(self) -> str:
        """One-line label used by ast_to_string."""
        return f"{self.kind}:"


# Literals


@dataclass(frozen=True)
class StringLiteralNode(AstNodeBase):
    kind: ClassVar[str] = "StringLiteral"

    value: str

    def describe(self) -> str:
        return f'String: "{self.value}"'


@dataclass(frozen=True)
class NumberLiteralNode(AstNodeBase):
    kind: ClassVar[str] = "NumberLiteral"

    value: Union[int, float]

    def describe(self) -> str:
        return f"Number: {self.value}"


@dataclass(frozen=True)
class BooleanLiteralNode(AstNodeBase):
    kind: ClassVar[str] = "BooleanLiteral"

    value: bool

    def describe(self) -> str:
        return f"Boolean: {'true' if self.value else 'false'}"


@dataclass(frozen=True)
class NullLiteralNode(AstNodeBase):
    kind: ClassVar[str] = "NullLiteral"

    def describe(self) -> str:
        return "Null"


@dataclass(frozen=True)
class ArrayLiteralNode(AstNodeBase):
    kind: ClassVar[str] = "ArrayLiteral"
    child_fields: ClassVar[Tuple[str, ...]] = ("elements",)

    elements: Sequence["AstNode"]


@dataclass(frozen=True)
class ObjectLiteralNode(AstNodeBase):
    """``{a: 1, "b": c}``; keys are always strings."""

    kind: ClassVar[str] = "ObjectLiteral"

    entries: Sequence[Tuple[str, "AstNode"]]

    def children(self) -> Iterator["AstNode"]:
        for _, value in self.entries:
            yield value


# Lookups and calls


@dataclass(frozen=True)
class IdentifierNode(AstNodeBase):
    """A scope lookup by dotted path, ``a`` or ``a.b.c``."""

    kind: ClassVar[str] = "Identifier"

    path: Tuple[str, ...]

    @property
    def name(self) -> str:
        return ".".join(self.path)

    def describe(self) -> str:
        return f"Identifier: {self.name}"


@dataclass(frozen=True)
class MemberAccessNode(AstNodeBase):
    """Member access on a computed object, ``fn().name``."""

    kind: ClassVar[str] = "MemberAccess"
    child_fields: ClassVar[Tuple[str, ...]] = ("object",)

    object: "AstNode"
    property: str

    def describe(self) -> str:
        return f"MemberAccess: .{self.property}"


@dataclass(frozen=True)
class IndexAccessNode(AstNodeBase):
    kind: ClassVar[str] = "IndexAccess"
    child_fields: ClassVar[Tuple[str, ...]] = ("object", "index")

    object: "AstNode"
    index: "AstNode"


@dataclass(frozen=True)
class CallNode(AstNodeBase):
    kind: ClassVar[str] = "Call"
    child_fields: ClassVar[Tuple[str, ...]] = ("callee", "args")

    callee: "AstNode"
    args: Sequence["AstNode"]


# Operators


@dataclass(frozen=True)
class UnaryOpNode(AstNodeBase):
    kind: ClassVar[str] = "UnaryOp"
    child_fields: ClassVar[Tuple[str, ...]] = ("operand",)

    operator: UnaryOperator
    operand: "AstNode"

    def describe(self) -> str:
        return f"UnaryOp: {self.operator}"


@dataclass(frozen=True)
class BinaryOpNode(AstNodeBase):
    kind: ClassVar[str] = "BinaryOp"
    child_fields: ClassVar[Tuple[str, ...]] = ("left", "right")

    operator: BinaryOperator
    left: "AstNode"
    right: "AstNode"

    def describe(self) -> str:
        return f"BinaryOp: {self.operator}"


@dataclass(frozen=True)
class TernaryOpNode(AstNodeBase):
    kind: ClassVar[str] = "TernaryOp"
    child_fields: ClassVar[Tuple[str, ...]] = ("condition", "consequent", "alternate")

    condition: "AstNode"
    consequent: "AstNode"
    alternate: "AstNode"


@dataclass(frozen=True)
class AssignmentNode(AstNodeBase):
    """``target = value``; the parser only builds it for assignable targets."""

    kind: ClassVar[str] = "Assignment"
    child_fields: ClassVar[Tuple[str, ...]] = ("target", "value")

    target: "AstNode"
    value: "AstNode"


@dataclass(frozen=True)
class StatementsNode(AstNodeBase):
    """``a; b; c``, evaluating to the last statement."""

    kind: ClassVar[str] = "Statements"
    child_fields: ClassVar[Tuple[str, ...]] = ("statements",)

    statements: Sequence["AstNode"]


AstNode = Union[
    StringLiteralNode,
    NumberLiteralNode,
    BooleanLiteralNode,
    NullLiteralNode,
    ArrayLiteralNode,
    ObjectLiteralNode,
    IdentifierNode,
    MemberAccessNode,
    IndexAccessNode,
    CallNode,
    UnaryOpNode,
    BinaryOpNode,
    TernaryOpNode,
    AssignmentNode,
    StatementsNode,
]


def child_nodes(node: AstNode) -> Iterator[AstNode]:
    return node.children()


def count_ast_nodes(node: AstNode) -> int:
    return 1 + sum(count_ast_nodes(child) for child in node.children())


def calculate_ast_depth(node: AstNode) -> int:
    return 1 + max((calculate_ast_depth(child) for child in node.children()), default=0)


def ast_to_string(node: AstNode, indent: int = 0) -> str:
    """Renders a tree one node per line, children indented under their parent."""
    pad = "  " * indent
    lines = [pad + node.describe()]
    if isinstance(node, ObjectLiteralNode):
        for key, value in node.entries:
            lines.append(f"{pad}  {key}:")
            lines.append(ast_to_string(value, indent + 2))
    else:
        lines.extend(ast_to_string(child, indent + 1) for child in node.children())
    return "\n".join(lines)

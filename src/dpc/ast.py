from __future__ import annotations
from dataclasses import dataclass, field
from typing import Iterator, List, Optional, Tuple, Union

from .diagnostics import Span

# ---------- expressions ----------

@dataclass
class Number:
    value: int
    span: Span


@dataclass
class Name:
    name: str
    span: Span
    # bound by the resolver: VariableSymbol, ParameterSymbol, FunctionSymbol or MacroSymbol
    symbol: object = field(default=None, compare=False, repr=False)


@dataclass
class StringLiteral:
    value: str
    span: Span


@dataclass
class Unary:
    op: str
    operand: "Expr"
    span: Span


@dataclass
class Binary:
    op: str
    left: "Expr"
    right: "Expr"
    span: Span


Expr = Union[Number, Name, Unary, Binary]
MacroArg = Union[Number, Name, Unary, Binary, StringLiteral]

# verbatim text interleaved with `%name` references
TextPart = Union[str, Name]

# ---------- conditions ----------

@dataclass
class Compare:
    op: str
    left: Expr
    right: Expr
    negated: bool
    span: Span


@dataclass
class NativeTest:
    text: str
    parts: Tuple[TextPart, ...]
    negated: bool
    span: Span


@dataclass
class Condition:
    terms: List[Union[Compare, NativeTest]]
    span: Span

# ---------- statements ----------

@dataclass
class Block:
    statements: List["Stmt"]
    span: Span
    depth: int = 0
    ident: Tuple[str, ...] = field(default=(), compare=False)


@dataclass
class PassthroughCommand:
    text: str
    parts: Tuple[TextPart, ...]
    span: Span

    @property
    def has_sigils(self) -> bool:
        return any(isinstance(p, Name) for p in self.parts)


@dataclass
class Comment:
    text: str
    span: Span


@dataclass
class VariableDeclaration:
    name: str
    value: Optional[Expr]
    span: Span
    name_span: Span
    symbol: object = field(default=None, compare=False, repr=False)


@dataclass
class Assignment:
    target: Name
    op: str
    value: Expr
    span: Span


@dataclass
class IfElse:
    condition: Condition
    then_block: Block
    else_block: Optional[Block]
    span: Span
    ident: str = field(default="", compare=False)


@dataclass
class Loop:
    condition: Condition
    body: Block
    span: Span


@dataclass
class Param:
    name: str
    span: Span


@dataclass
class FunctionDeclaration:
    name: str
    params: List[Param]
    body: Block
    span: Span
    name_span: Span
    symbol: object = field(default=None, compare=False, repr=False)


@dataclass
class FunctionCall:
    target: Name
    args: List[Expr]
    span: Span


@dataclass
class MacroDeclaration:
    name: str
    params: List[Param]
    body: Block
    span: Span
    name_span: Span
    symbol: object = field(default=None, compare=False, repr=False)


@dataclass
class MacroInvocation:
    target: Name
    args: List[MacroArg]
    span: Span
    ident: Tuple[str, ...] = field(default=(), compare=False)


Stmt = Union[
    PassthroughCommand, Comment, VariableDeclaration, Assignment, IfElse, Loop,
    FunctionDeclaration, FunctionCall, MacroDeclaration, MacroInvocation,
]


@dataclass
class Program:
    filename: str
    module: str
    statements: List[Stmt]

    @property
    def body(self) -> List[Stmt]:
        """Module top-level code, declarations excluded."""
        return [s for s in self.statements if not isinstance(s, (FunctionDeclaration, MacroDeclaration))]


def child_blocks(stmt: Stmt) -> List[Block]:
    if isinstance(stmt, IfElse):
        return [stmt.then_block] + ([stmt.else_block] if stmt.else_block is not None else [])
    if isinstance(stmt, Loop):
        return [stmt.body]
    if isinstance(stmt, (FunctionDeclaration, MacroDeclaration)):
        return [stmt.body]
    return []


def walk(statements: List[Stmt]) -> Iterator[Stmt]:
    """Depth-first, source-ordered walk over statements and nested blocks."""
    for st in statements:
        yield st
        for b in child_blocks(st):
            yield from walk(b.statements)

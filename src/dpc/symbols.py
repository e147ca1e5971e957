from __future__ import annotations
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Union

from .diagnostics import Span


@dataclass(frozen=True)
class StorageLocation:
    """A scoreboard fake player: `<holder> <objective>`."""
    objective: str
    holder: str

    def render(self) -> str:
        return f"{self.holder} {self.objective}"

    def __str__(self) -> str:
        return self.render()


@dataclass(eq=False)
class VariableSymbol:
    name: str
    location: StorageLocation
    span: Span
    references: int = 0


@dataclass(eq=False)
class ParameterSymbol:
    """Macro parameter; bound to an argument node at every expansion."""
    name: str
    index: int
    macro: str
    span: Span


@dataclass(eq=False)
class FunctionSymbol:
    name: str
    module: str
    decl: object
    params: List[VariableSymbol] = field(default_factory=list)

    @property
    def arity(self) -> int:
        return len(self.params)

    @property
    def span(self) -> Span:
        return self.decl.name_span


@dataclass(eq=False)
class MacroSymbol:
    name: str
    module: str
    decl: object
    params: List[ParameterSymbol] = field(default_factory=list)
    # deepest block chain the body adds when expanded
    max_depth: int = 0
    recursive: bool = False

    @property
    def arity(self) -> int:
        return len(self.params)

    @property
    def body(self):
        return self.decl.body

    @property
    def span(self) -> Span:
        return self.decl.name_span


Symbol = Union[VariableSymbol, ParameterSymbol, FunctionSymbol, MacroSymbol]


class Scope:
    def __init__(self, parent: Optional["Scope"], path: str):
        self.parent = parent
        self.path = path
        self._symbols: Dict[str, Symbol] = {}

    def define(self, sym: Symbol) -> Optional[Symbol]:
        """Bind sym; returns the previous local binding instead when the name is taken."""
        prev = self._symbols.get(sym.name)
        if prev is not None:
            return prev
        self._symbols[sym.name] = sym
        return None

    def lookup(self, name: str) -> Optional[Symbol]:
        scope: Optional[Scope] = self
        while scope is not None:
            sym = scope._symbols.get(name)
            if sym is not None:
                return sym
            scope = scope.parent
        return None

    def visible_names(self) -> List[str]:
        names = set()
        scope: Optional[Scope] = self
        while scope is not None:
            names.update(scope._symbols)
            scope = scope.parent
        return sorted(names)


class FrozenTableError(RuntimeError):
    pass


class ProjectSymbolTable:
    """Project-wide functions and macros. Written during collection, then frozen."""

    def __init__(self) -> None:
        self._functions: Dict[str, FunctionSymbol] = {}
        self._macros: Dict[str, MacroSymbol] = {}
        self._frozen = False

    @property
    def frozen(self) -> bool:
        return self._frozen

    def freeze(self) -> None:
        self._frozen = True

    def _check_writable(self) -> None:
        if self._frozen:
            raise FrozenTableError("project symbol table is frozen")

    def define_function(self, sym: FunctionSymbol) -> Optional[FunctionSymbol]:
        self._check_writable()
        prev = self._functions.get(sym.name)
        if prev is not None:
            return prev
        self._functions[sym.name] = sym
        return None

    def define_macro(self, sym: MacroSymbol) -> Optional[MacroSymbol]:
        self._check_writable()
        prev = self._macros.get(sym.name)
        if prev is not None:
            return prev
        self._macros[sym.name] = sym
        return None

    def function(self, name: str) -> Optional[FunctionSymbol]:
        return self._functions.get(name)

    def macro(self, name: str) -> Optional[MacroSymbol]:
        return self._macros.get(name)

    def functions(self) -> List[FunctionSymbol]:
        return [self._functions[k] for k in sorted(self._functions)]

    def macros(self) -> List[MacroSymbol]:
        return [self._macros[k] for k in sorted(self._macros)]

from __future__ import annotations
from dataclasses import dataclass, replace
from typing import Dict, List, Optional, Sequence, Tuple
import difflib
import logging

from . import ast as A
from .config import CompilerConfig
from .diagnostics import Diagnostic, Span
from .symbols import (
    FunctionSymbol, MacroSymbol, ParameterSymbol, ProjectSymbolTable, Scope,
    StorageLocation, VariableSymbol,
)

log = logging.getLogger(__name__)


def _did_you_mean(name: str, candidates: Sequence[str]) -> Optional[str]:
    best = difflib.get_close_matches(name, list(candidates), n=1, cutoff=0.6)
    return f"Did you mean '{best[0]}'?" if best else None


# ---------- pass (a): project-wide declarations ----------

def collect_declarations(
    programs: Sequence[A.Program], config: Optional[CompilerConfig] = None
) -> Tuple[ProjectSymbolTable, List[Diagnostic]]:
    """Register every top-level function and macro, then freeze the table."""
    config = config or CompilerConfig()
    table = ProjectSymbolTable()
    diags: List[Diagnostic] = []

    for prog in programs:
        for st in prog.statements:
            if isinstance(st, A.FunctionDeclaration):
                sym = FunctionSymbol(st.name, prog.module, st)
                for p in st.params:
                    loc = StorageLocation(config.objective, f"${st.name}.{p.name}")
                    sym.params.append(VariableSymbol(p.name, loc, p.span))
                st.symbol = sym
                prev = table.define_function(sym)
                if prev is not None:
                    diags.append(Diagnostic(
                        "DPC-SEM-0002", f"Function '{st.name}' is already declared.",
                        st.name_span, "Rename one of the functions.", (prev.span,),
                    ))
            elif isinstance(st, A.MacroDeclaration):
                sym = MacroSymbol(st.name, prog.module, st)
                for i, p in enumerate(st.params):
                    sym.params.append(ParameterSymbol(p.name, i, st.name, p.span))
                st.symbol = sym
                prev = table.define_macro(sym)
                if prev is not None:
                    diags.append(Diagnostic(
                        "DPC-SEM-0002", f"Macro '{st.name}' is already declared.",
                        st.name_span, "Rename one of the macros.", (prev.span,),
                    ))

    diags.extend(_check_macro_cycles(table))
    _compute_macro_depths(table)
    table.freeze()
    log.debug("collected %d functions, %d macros", len(table.functions()), len(table.macros()))
    return table, diags


def _invocations(statements: List[A.Stmt]) -> List[A.MacroInvocation]:
    return [st for st in A.walk(statements) if isinstance(st, A.MacroInvocation)]


def _check_macro_cycles(table: ProjectSymbolTable) -> List[Diagnostic]:
    diags: List[Diagnostic] = []
    state: Dict[str, str] = {}
    reported = set()

    def visit(macro: MacroSymbol, stack: List[str]) -> None:
        state[macro.name] = "active"
        stack.append(macro.name)
        for inv in _invocations(macro.body.statements):
            target = table.macro(inv.target.name)
            if target is None:
                continue
            mark = state.get(target.name)
            if mark == "active":
                cycle = stack[stack.index(target.name):]
                for name in cycle:
                    table.macro(name).recursive = True
                key = frozenset(cycle)
                if key not in reported:
                    reported.add(key)
                    chain = " -> ".join(cycle + [target.name])
                    diags.append(Diagnostic(
                        "DPC-SEM-0003", f"Macro '{target.name}' expands itself ({chain}).",
                        inv.span, "Use a function for recursion.", (target.span,),
                    ))
            elif mark is None:
                visit(target, stack)
        stack.pop()
        state[macro.name] = "done"

    for macro in table.macros():
        if macro.name not in state:
            visit(macro, [])
    return diags


def _chain_depth(statements: List[A.Stmt], table: ProjectSymbolTable, level: int) -> int:
    deepest = level
    for st in statements:
        if isinstance(st, (A.IfElse, A.Loop)):
            for b in A.child_blocks(st):
                deepest = max(deepest, _chain_depth(b.statements, table, level + 1))
        elif isinstance(st, A.MacroInvocation):
            target = table.macro(st.target.name)
            if target is not None and not target.recursive:
                # dependencies are computed first by _compute_macro_depths
                deepest = max(deepest, level + target.max_depth)
    return deepest


def _compute_macro_depths(table: ProjectSymbolTable) -> None:
    done = set()

    def compute(macro: MacroSymbol) -> int:
        if macro.name in done or macro.recursive:
            return macro.max_depth
        for inv in _invocations(macro.body.statements):
            target = table.macro(inv.target.name)
            if target is not None and not target.recursive:
                compute(target)
        macro.max_depth = _chain_depth(macro.body.statements, table, 0)
        done.add(macro.name)
        return macro.max_depth

    for macro in table.macros():
        compute(macro)


# ---------- pass (b): per-unit binding ----------

@dataclass(frozen=True)
class _Ctx:
    owner: str
    ident: Tuple[str, ...]
    level: int
    top: bool = False
    reported_depth: bool = False

    def path(self) -> str:
        return "/".join((self.owner,) + self.ident)


class _Resolver:
    def __init__(self, program: A.Program, table: ProjectSymbolTable, config: CompilerConfig):
        self.program = program
        self.table = table
        self.config = config
        self.diags: List[Diagnostic] = []
        self.locals: List[VariableSymbol] = []

    def error(self, code: str, msg: str, span: Span, fix: Optional[str] = None,
              related: Tuple[Span, ...] = ()) -> None:
        self.diags.append(Diagnostic(code, msg, span, fix, related))

    def _location(self, holder: str) -> StorageLocation:
        return StorageLocation(self.config.objective, holder)

    def run(self) -> List[Diagnostic]:
        module = self.program.module
        mscope = Scope(None, module)

        # module globals are visible to the whole unit
        for st in self.program.statements:
            if isinstance(st, A.VariableDeclaration):
                sym = VariableSymbol(st.name, self._location(f"${module}.{st.name}"), st.name_span)
                prev = mscope.define(sym)
                if prev is not None:
                    self._duplicate("Variable", st.name, st.name_span, prev.span)
                else:
                    st.symbol = sym

        self.statements(self.program.statements, mscope, _Ctx(module, (), 0, top=True))

        for sym in self.locals:
            if sym.references == 0 and not sym.name.startswith("_"):
                self.error("DPC-SEM-0101", f"Variable '{sym.name}' is declared but never used.", sym.span,
                           "Remove the declaration or prefix the name with '_'.")
        return self.diags

    def _duplicate(self, what: str, name: str, span: Span, prev: Span) -> None:
        self.error("DPC-SEM-0002", f"{what} '{name}' is already declared in this scope.", span,
                   "Rename one of the declarations.", (prev,))

    # ---------- statements ----------
    def statements(self, statements: List[A.Stmt], scope: Scope, ctx: _Ctx) -> None:
        counters: Dict[str, int] = {}

        def next_ident(base: str) -> str:
            k = counters.get(base, 0)
            counters[base] = k + 1
            return base if k == 0 else f"{base}_{k}"

        for st in statements:
            if isinstance(st, A.FunctionDeclaration):
                if not ctx.top:
                    self.error("DPC-SEM-0005", f"Function '{st.name}' must be declared at the top level.", st.name_span)
                    continue
                self.function(st, scope)
            elif isinstance(st, A.MacroDeclaration):
                if not ctx.top:
                    self.error("DPC-SEM-0005", f"Macro '{st.name}' must be declared at the top level.", st.name_span)
                    continue
                self.macro(st, scope)
            elif isinstance(st, A.VariableDeclaration):
                self.var_decl(st, scope, ctx)
            elif isinstance(st, A.Assignment):
                self.expression(st.value, scope)
                self.name(st.target, scope)
            elif isinstance(st, A.PassthroughCommand):
                self.text_parts(st.parts, scope)
            elif isinstance(st, A.IfElse):
                st.ident = next_ident("branch")
                self.condition(st.condition, scope)
                self.child_block(st.then_block, st.ident + "_then", scope, ctx)
                if st.else_block is not None:
                    self.child_block(st.else_block, st.ident + "_else", scope, ctx)
            elif isinstance(st, A.Loop):
                self.condition(st.condition, scope)
                self.child_block(st.body, next_ident("loop"), scope, ctx)
            elif isinstance(st, A.FunctionCall):
                self.call(st, scope)
            elif isinstance(st, A.MacroInvocation):
                self.invocation(st, scope, ctx, next_ident(st.target.name))

    def child_block(self, block: A.Block, segment: str, scope: Scope, ctx: _Ctx) -> None:
        inner = replace(ctx, ident=ctx.ident + (segment,), level=ctx.level + 1, top=False)
        block.ident = inner.ident
        if inner.level > self.config.max_nesting_depth and not ctx.reported_depth:
            self.error(
                "DPC-SEM-0004",
                f"Block nesting depth {inner.level} exceeds the limit of {self.config.max_nesting_depth}.",
                block.span, "Move the inner logic into a separate function.",
            )
            inner = replace(inner, reported_depth=True)
        self.statements(block.statements, Scope(scope, inner.path()), inner)

    def function(self, st: A.FunctionDeclaration, mscope: Scope) -> None:
        sym: FunctionSymbol = st.symbol
        fscope = Scope(mscope, st.name)
        for p in sym.params:
            prev = fscope.define(p)
            if prev is not None:
                self._duplicate("Parameter", p.name, p.span, prev.span)
        st.body.ident = ()
        self.statements(st.body.statements, fscope, _Ctx(st.name, (), 0))

    def macro(self, st: A.MacroDeclaration, mscope: Scope) -> None:
        sym: MacroSymbol = st.symbol
        owner = "!" + st.name
        pscope = Scope(mscope, owner)
        for p in sym.params:
            prev = pscope.define(p)
            if prev is not None:
                self._duplicate("Parameter", p.name, p.span, prev.span)
        st.body.ident = ()
        self.statements(st.body.statements, pscope, _Ctx(owner, (), 0))

    def var_decl(self, st: A.VariableDeclaration, scope: Scope, ctx: _Ctx) -> None:
        if st.value is not None:
            self.expression(st.value, scope)
        if ctx.top:
            # hoisted in run()
            return
        sym = VariableSymbol(st.name, self._location(f"${ctx.path()}.{st.name}"), st.name_span)
        prev = scope.define(sym)
        if prev is not None:
            self._duplicate("Variable", st.name, st.name_span, prev.span)
            return
        st.symbol = sym
        self.locals.append(sym)

    def call(self, st: A.FunctionCall, scope: Scope) -> None:
        for arg in st.args:
            self.expression(arg, scope)
        sym = self.table.function(st.target.name)
        if sym is None:
            self.error("DPC-SEM-0001", f"Unresolved function '{st.target.name}'.", st.target.span,
                       _did_you_mean(st.target.name, [f.name for f in self.table.functions()]))
            return
        st.target.symbol = sym
        if len(st.args) != sym.arity:
            self.error("DPC-SEM-0006",
                       f"Function '{sym.name}' takes {sym.arity} argument(s), {len(st.args)} given.",
                       st.span, None, (sym.span,))

    def invocation(self, st: A.MacroInvocation, scope: Scope, ctx: _Ctx, segment: str) -> None:
        st.ident = ctx.ident + (segment,)
        for arg in st.args:
            if not isinstance(arg, A.StringLiteral):
                self.expression(arg, scope)
        sym = self.table.macro(st.target.name)
        if sym is None:
            self.error("DPC-SEM-0001", f"Unresolved macro '{st.target.name}'.", st.target.span,
                       _did_you_mean(st.target.name, [m.name for m in self.table.macros()]))
            return
        st.target.symbol = sym
        if len(st.args) != sym.arity:
            self.error("DPC-SEM-0006",
                       f"Macro '{sym.name}' takes {sym.arity} argument(s), {len(st.args)} given.",
                       st.span, None, (sym.span,))
        if sym.recursive or ctx.reported_depth:
            return
        depth = ctx.level + sym.max_depth
        if depth > self.config.max_nesting_depth:
            self.error(
                "DPC-SEM-0004",
                f"Expanding macro '{sym.name}' here nests blocks {depth} deep, above the limit of "
                f"{self.config.max_nesting_depth}.",
                st.span, "Invoke the macro from a shallower block.",
            )

    # ---------- names and expressions ----------
    def name(self, node: A.Name, scope: Scope) -> None:
        sym = scope.lookup(node.name)
        if sym is None:
            self.error("DPC-SEM-0001", f"Unresolved reference '{node.name}'.", node.span,
                       _did_you_mean(node.name, scope.visible_names()))
            return
        node.symbol = sym
        if isinstance(sym, VariableSymbol):
            sym.references += 1

    def expression(self, expr: A.Expr, scope: Scope) -> None:
        if isinstance(expr, A.Name):
            self.name(expr, scope)
        elif isinstance(expr, A.Unary):
            self.expression(expr.operand, scope)
        elif isinstance(expr, A.Binary):
            self.expression(expr.left, scope)
            self.expression(expr.right, scope)

    def text_parts(self, parts, scope: Scope) -> None:
        for p in parts:
            if isinstance(p, A.Name):
                self.name(p, scope)

    def condition(self, cond: A.Condition, scope: Scope) -> None:
        for term in cond.terms:
            if isinstance(term, A.NativeTest):
                self.text_parts(term.parts, scope)
            else:
                self.expression(term.left, scope)
                self.expression(term.right, scope)


def resolve_program(
    program: A.Program, table: ProjectSymbolTable, config: Optional[CompilerConfig] = None
) -> List[Diagnostic]:
    """Bind every name in one unit against its lexical chain and the frozen table."""
    diags = _Resolver(program, table, config or CompilerConfig()).run()
    log.debug("resolved %s: %d diagnostics", program.module, len(diags))
    return diags


def resolve_project(
    programs: Sequence[A.Program], config: Optional[CompilerConfig] = None
) -> Tuple[ProjectSymbolTable, List[Diagnostic]]:
    config = config or CompilerConfig()
    table, diags = collect_declarations(programs, config)
    for prog in programs:
        diags.extend(resolve_program(prog, table, config))
    return table, diags

from __future__ import annotations
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Set, Tuple, Union
import logging

from . import ast as A
from .config import CompilerConfig
from .diagnostics import Diagnostic, Span, sort_diagnostics
from .symbols import ParameterSymbol, ProjectSymbolTable, StorageLocation, VariableSymbol
from .workers import CancellationToken, parallel_map

# Sugared AST -> flat mcfunction units.
# Every block becomes its own unit reached through `execute ... run function`.

log = logging.getLogger(__name__)

LOAD_UNIT = "__load"

KIND_MODULE = "module"
KIND_FUNCTION = "function"
KIND_BRANCH = "branch"
KIND_LOOP = "loop"
KIND_LOAD = "load"

_MIRROR = {"==": "==", "!=": "!=", "<": ">", "<=": ">=", ">": "<", ">=": "<="}

Operand = Union[int, StorageLocation]


@dataclass(frozen=True)
class GeneratedLine:
    text: str
    span: Span


@dataclass
class GeneratedUnit:
    path: str
    kind: str
    origin: Span
    lines: List[GeneratedLine] = field(default_factory=list)

    def emit(self, text: str, span: Span) -> None:
        self.lines.append(GeneratedLine(text, span))

    def text(self) -> str:
        if not self.lines:
            return ""
        return "\n".join(l.text for l in self.lines) + "\n"


@dataclass
class _Binding:
    """A macro argument together with the environment it was written in."""
    node: A.MacroArg
    env: Dict[ParameterSymbol, "_Binding"]


Env = Dict[ParameterSymbol, _Binding]


@dataclass
class _ProgramOutput:
    units: List[GeneratedUnit]
    constants: Set[int]
    diagnostics: List[Diagnostic]


def _is_flat(block: A.Block) -> bool:
    return all(
        isinstance(st, (A.PassthroughCommand, A.Comment, A.VariableDeclaration, A.Assignment, A.FunctionCall))
        for st in block.statements
    )


def _returns(text: str) -> bool:
    """True for a command that returns from the function running it."""
    words = text.split()
    while words[:1] == ["execute"] and "run" in words:
        words = words[words.index("run") + 1:]
    return words[:1] == ["return"]


class _ProgramGen:
    def __init__(self, program: A.Program, config: CompilerConfig):
        self.program = program
        self.config = config
        self.units: List[GeneratedUnit] = []
        self.constants: Set[int] = set()
        self.diags: List[Diagnostic] = []
        self._temp = 0
        self._expanding: List[str] = []

    # ---------- helpers ----------
    def _loc(self, holder: str) -> StorageLocation:
        return StorageLocation(self.config.objective, holder)

    def _res(self, path: str) -> str:
        return self.config.resource_location(path)

    def _new_temp(self) -> StorageLocation:
        t = self._loc(f"#t{self._temp}")
        self._temp += 1
        return t

    def _const(self, value: int) -> StorageLocation:
        self.constants.add(value)
        return self._loc(f"#c{value}")

    def _unsupported(self, msg: str, span: Span) -> None:
        self.diags.append(Diagnostic("DPC-GEN-0002", msg, span))

    @staticmethod
    def _path(base: str, ident: Tuple[str, ...]) -> str:
        return "/".join((base,) + tuple(ident))

    # ---------- program ----------
    def run(self) -> _ProgramOutput:
        prog = self.program
        module_unit = GeneratedUnit(prog.module, KIND_MODULE, Span.point(prog.filename, 1, 1))
        self.statements(prog.body, module_unit, prog.module, {})
        if module_unit.lines or any(not isinstance(s, A.Comment) for s in prog.body):
            self.units.append(module_unit)

        for st in prog.statements:
            if isinstance(st, A.FunctionDeclaration):
                unit = GeneratedUnit(st.name, KIND_FUNCTION, st.name_span)
                self.statements(st.body.statements, unit, st.name, {})
                self.units.append(unit)

        log.debug("generated %d units for %s", len(self.units), prog.module)
        return _ProgramOutput(self.units, self.constants, self.diags)

    # ---------- statements ----------
    def statements(self, statements: List[A.Stmt], unit: GeneratedUnit, base: str, env: Env) -> None:
        for st in statements:
            self._temp = 0
            self.statement(st, unit, base, env)

    def statement(self, st: A.Stmt, unit: GeneratedUnit, base: str, env: Env) -> None:
        if isinstance(st, A.PassthroughCommand):
            unit.emit(self.render_parts(st.parts, unit, env, st.span), st.span)
        elif isinstance(st, A.Comment):
            if self.config.preserve_comments:
                unit.emit(st.text, st.span)
        elif isinstance(st, A.VariableDeclaration):
            loc = st.symbol.location
            if st.value is None:
                unit.emit(f"scoreboard players set {loc} 0", st.span)
            else:
                self.store(st.value, loc, unit, env, st.span)
        elif isinstance(st, A.Assignment):
            target = self.target_location(st.target, env, st.span)
            if target is None:
                return
            if st.op == "=":
                self.store(st.value, target, unit, env, st.span)
            else:
                self.apply(st.op[0], target, st.value, unit, env, st.span)
        elif isinstance(st, A.IfElse):
            self.if_else(st, unit, base, env)
        elif isinstance(st, A.Loop):
            self.loop(st, unit, base, env)
        elif isinstance(st, A.FunctionCall):
            self.call(st, unit, env)
        elif isinstance(st, A.MacroInvocation):
            self.expand(st, unit, base, env)

    def child(self, block: A.Block, kind: str, base: str, env: Env, tail: Optional[str] = None) -> str:
        """Lower a block into its own unit; returns what a guard should `run`.

        `tail`, when given, is emitted as the last line of the unit.
        """
        path = self._path(base, block.ident)
        saved = self._temp
        unit = GeneratedUnit(path, kind, block.span)
        self.statements(block.statements, unit, base, env)
        self._temp = saved
        if tail is not None:
            unit.emit(tail, block.span)
        if (
            self.config.inline_blocks
            and _is_flat(block)
            and len(unit.lines) == 1
            and not unit.lines[0].text.startswith(("#", "$"))
            and not _returns(unit.lines[0].text)
        ):
            return unit.lines[0].text
        self.units.append(unit)
        return f"function {self._res(path)}"

    def if_else(self, st: A.IfElse, unit: GeneratedUnit, base: str, env: Env) -> None:
        clauses = self.clauses(st.condition, unit, env)
        if st.else_block is None:
            target = self.child(st.then_block, KIND_BRANCH, base, env)
            unit.emit(f"execute {clauses} run {target}", st.span)
            return

        # snapshot the condition so both guards see the same value
        flag = self._loc("#" + self._path(base, st.then_block.ident[:-1] + (st.ident,)))
        unit.emit(f"scoreboard players set {flag} 0", st.span)
        unit.emit(f"execute {clauses} run scoreboard players set {flag} 1", st.span)
        # a recursive call inside the then-branch may rewrite the flag; set it back before the else guard
        then_target = self.child(st.then_block, KIND_BRANCH, base, env, tail=f"scoreboard players set {flag} 1")
        unit.emit(f"execute if score {flag} matches 1 run {then_target}", st.then_block.span)
        else_target = self.child(st.else_block, KIND_BRANCH, base, env)
        unit.emit(f"execute unless score {flag} matches 1 run {else_target}", st.else_block.span)

    def loop(self, st: A.Loop, unit: GeneratedUnit, base: str, env: Env) -> None:
        path = self._path(base, st.body.ident)
        clauses = self.clauses(st.condition, unit, env)
        unit.emit(f"execute {clauses} run function {self._res(path)}", st.span)

        saved = self._temp
        body = GeneratedUnit(path, KIND_LOOP, st.body.span)
        self.statements(st.body.statements, body, base, env)
        self._temp = 0
        again = self.clauses(st.condition, body, env)
        body.emit(f"execute {again} run function {self._res(path)}", st.span)
        self._temp = saved
        self.units.append(body)

    def call(self, st: A.FunctionCall, unit: GeneratedUnit, env: Env) -> None:
        sym = st.target.symbol
        values = [self.operand(arg, unit, env, st.span) for arg in st.args]

        # an argument read from another parameter of the callee must survive the copies
        param_locs = {p.location for p in sym.params}
        for i, (v, p) in enumerate(zip(values, sym.params)):
            if isinstance(v, StorageLocation) and v in param_locs and v != p.location:
                t = self._new_temp()
                unit.emit(f"scoreboard players operation {t} = {v}", st.span)
                values[i] = t

        for v, p in zip(values, sym.params):
            self.assign_operand(p.location, v, unit, st.span)
        unit.emit(f"function {self._res(sym.name)}", st.span)

    def expand(self, st: A.MacroInvocation, unit: GeneratedUnit, base: str, env: Env) -> None:
        macro = st.target.symbol
        if macro.recursive or macro.name in self._expanding:
            self._unsupported(f"Macro '{macro.name}' cannot be expanded inside itself.", st.span)
            return
        inner: Env = {p: _Binding(arg, env) for p, arg in zip(macro.params, st.args)}
        self._expanding.append(macro.name)
        try:
            for body_st in macro.body.statements:
                self.statement(body_st, unit, self._path(base, st.ident), inner)
        finally:
            self._expanding.pop()

    # ---------- expressions ----------
    def resolve_binding(self, name: A.Name, env: Env) -> Tuple[A.MacroArg, Env]:
        """Follow macro parameters back to the argument node they stand for."""
        node: A.MacroArg = name
        while isinstance(node, A.Name) and isinstance(node.symbol, ParameterSymbol):
            binding = env[node.symbol]
            node, env = binding.node, binding.env
        return node, env

    def target_location(self, name: A.Name, env: Env, span: Span) -> Optional[StorageLocation]:
        node, _ = self.resolve_binding(name, env)
        if isinstance(node, A.Name) and isinstance(node.symbol, VariableSymbol):
            return node.symbol.location
        self._unsupported(f"Cannot assign to macro parameter '{name.name}': its argument is not a variable.", span)
        return None

    def operand(self, expr: A.MacroArg, unit: GeneratedUnit, env: Env, span: Span) -> Operand:
        if isinstance(expr, A.Number):
            return expr.value
        if isinstance(expr, A.Name):
            node, inner = self.resolve_binding(expr, env)
            if node is not expr:
                return self.operand(node, unit, inner, span)
            return expr.symbol.location
        if isinstance(expr, A.StringLiteral):
            self._unsupported("A string argument cannot be used as a number.", expr.span)
            return 0
        t = self._new_temp()
        self.store(expr, t, unit, env, span)
        return t

    def assign_operand(self, target: StorageLocation, value: Operand, unit: GeneratedUnit, span: Span) -> None:
        if isinstance(value, int):
            unit.emit(f"scoreboard players set {target} {value}", span)
        elif value != target:
            unit.emit(f"scoreboard players operation {target} = {value}", span)

    def locations(self, expr: A.MacroArg, env: Env) -> Set[StorageLocation]:
        if isinstance(expr, A.Name):
            node, inner = self.resolve_binding(expr, env)
            if node is not expr:
                return self.locations(node, inner)
            return {expr.symbol.location}
        if isinstance(expr, A.Unary):
            return self.locations(expr.operand, env)
        if isinstance(expr, A.Binary):
            return self.locations(expr.left, env) | self.locations(expr.right, env)
        return set()

    def store(self, expr: A.MacroArg, target: StorageLocation, unit: GeneratedUnit, env: Env, span: Span) -> None:
        """Compute expr into target."""
        if isinstance(expr, A.Name):
            node, inner = self.resolve_binding(expr, env)
            if node is not expr:
                self.store(node, target, unit, inner, span)
                return
        if isinstance(expr, A.Unary):
            self.store(expr.operand, target, unit, env, span)
            unit.emit(f"scoreboard players operation {target} *= {self._const(-1)}", span)
        elif isinstance(expr, A.Binary):
            if target in self.locations(expr.right, env):
                t = self._new_temp()
                self.store(expr.left, t, unit, env, span)
                self.apply(expr.op, t, expr.right, unit, env, span)
                unit.emit(f"scoreboard players operation {target} = {t}", span)
            else:
                self.store(expr.left, target, unit, env, span)
                self.apply(expr.op, target, expr.right, unit, env, span)
        else:
            self.assign_operand(target, self.operand(expr, unit, env, span), unit, span)

    def apply(self, op: str, target: StorageLocation, expr: A.MacroArg, unit: GeneratedUnit, env: Env, span: Span) -> None:
        """target <op>= expr"""
        value = self.operand(expr, unit, env, span)
        if isinstance(value, int):
            if op == "+":
                verb = "add" if value >= 0 else "remove"
                unit.emit(f"scoreboard players {verb} {target} {abs(value)}", span)
                return
            if op == "-":
                verb = "remove" if value >= 0 else "add"
                unit.emit(f"scoreboard players {verb} {target} {abs(value)}", span)
                return
            value = self._const(value)
        unit.emit(f"scoreboard players operation {target} {op}= {value}", span)

    # ---------- conditions and text ----------
    def clauses(self, cond: A.Condition, unit: GeneratedUnit, env: Env) -> str:
        out = []
        for term in cond.terms:
            if isinstance(term, A.NativeTest):
                word = "unless" if term.negated else "if"
                out.append(f"{word} {self.render_parts(term.parts, unit, env, term.span)}")
            else:
                out.append(self.compare(term, unit, env))
        return " ".join(out)

    def compare(self, term: A.Compare, unit: GeneratedUnit, env: Env) -> str:
        op = term.op
        negated = term.negated
        left = self.operand(term.left, unit, env, term.span)
        right = self.operand(term.right, unit, env, term.span)
        if isinstance(left, int) and isinstance(right, int):
            t = self._new_temp()
            unit.emit(f"scoreboard players set {t} {left}", term.span)
            left = t
        if isinstance(left, int):
            left, right = right, left
            op = _MIRROR[op]
        if op == "!=":
            op = "=="
            negated = not negated
        word = "unless" if negated else "if"

        if isinstance(right, int):
            rng = {
                "==": f"{right}",
                "<": f"..{right - 1}",
                "<=": f"..{right}",
                ">": f"{right + 1}..",
                ">=": f"{right}..",
            }[op]
            return f"{word} score {left} matches {rng}"
        return f"{word} score {left} {'=' if op == '==' else op} {right}"

    def render_parts(self, parts: Sequence[A.TextPart], unit: GeneratedUnit, env: Env, span: Span) -> str:
        out = []
        for p in parts:
            if isinstance(p, str):
                out.append(p)
            else:
                out.append(self.splice(p, unit, env, span))
        return "".join(out)

    def splice(self, name: A.Name, unit: GeneratedUnit, env: Env, span: Span) -> str:
        node, inner = self.resolve_binding(name, env)
        if isinstance(node, A.StringLiteral):
            return node.value
        if isinstance(node, A.Number):
            return str(node.value)
        return str(self.operand(node, unit, inner, span))


def _load_unit(constants: Set[int], config: CompilerConfig) -> GeneratedUnit:
    origin = Span.point("<dpc>", 1, 1)
    unit = GeneratedUnit(LOAD_UNIT, KIND_LOAD, origin)
    unit.emit(f"scoreboard objectives add {config.objective} dummy", origin)
    for value in sorted(constants):
        unit.emit(f"scoreboard players set #c{value} {config.objective} {value}", origin)
    return unit


def gen_program(program: A.Program, config: Optional[CompilerConfig] = None) -> _ProgramOutput:
    """Lower one resolved program. Local state only; safe to run per thread."""
    return _ProgramGen(program, config or CompilerConfig()).run()


def gen_mcfunction(
    programs: Sequence[A.Program],
    table: ProjectSymbolTable,
    config: Optional[CompilerConfig] = None,
    *,
    cancel: Optional[CancellationToken] = None,
) -> Tuple[List[GeneratedUnit], List[Diagnostic]]:
    """Generate every unit of the project, merged in program order and sorted by path."""
    config = config or CompilerConfig()
    if not table.frozen:
        raise ValueError("symbol table must be frozen before generation")

    outputs = parallel_map(lambda p: gen_program(p, config), programs, config.jobs, cancel)

    units: List[GeneratedUnit] = []
    claims: Dict[str, GeneratedUnit] = {}
    constants: Set[int] = set()
    diags: List[Diagnostic] = []

    def claim(u: GeneratedUnit) -> None:
        prev = claims.get(u.path)
        if prev is not None:
            diags.append(Diagnostic(
                "DPC-GEN-0001",
                f"Generated path '{config.resource_location(u.path)}' is produced by two constructs.",
                u.origin, "Rename one of them.", (prev.origin,),
            ))
            return
        claims[u.path] = u
        units.append(u)

    for out in outputs:
        diags.extend(out.diagnostics)
        constants |= out.constants
        for u in out.units:
            claim(u)

    load = _load_unit(constants, config)
    if LOAD_UNIT in claims:
        prev = claims[LOAD_UNIT]
        diags.append(Diagnostic(
            "DPC-GEN-0001",
            f"'{config.resource_location(LOAD_UNIT)}' is reserved for the generated load function.",
            prev.origin, "Rename the function.",
        ))
    else:
        claim(load)

    units.sort(key=lambda u: u.path)
    return units, sort_diagnostics(diags)

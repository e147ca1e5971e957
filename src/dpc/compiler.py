from __future__ import annotations
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable, List, Optional, Union
import logging
import re

from . import ast as A
from .config import CompilerConfig
from .diagnostics import Diagnostic, Span, has_errors, sort_diagnostics
from .emitter import SourceMap, emit_units
from .lexer import lex
from .mcfunction_gen import GeneratedUnit, gen_mcfunction
from .parser import ParseResult, parse
from .resolver import collect_declarations, resolve_program
from .workers import CancellationToken, checkpoint, parallel_map

log = logging.getLogger(__name__)

_re_module = re.compile(r"^[a-z0-9_.\-]+(?:/[a-z0-9_.\-]+)*$")


@dataclass(frozen=True)
class SourceUnit:
    path: str
    text: str
    module: str


@dataclass
class CompileResult:
    diagnostics: List[Diagnostic]
    units: List[GeneratedUnit] = field(default_factory=list)
    programs: List[A.Program] = field(default_factory=list)
    source_map: Optional[SourceMap] = None

    @property
    def ok(self) -> bool:
        return not has_errors(self.diagnostics)

    @property
    def errors(self) -> List[Diagnostic]:
        return [d for d in self.diagnostics if d.is_error]

    def unit(self, path: str) -> Optional[GeneratedUnit]:
        for u in self.units:
            if u.path == path:
                return u
        return None


def parse_unit(source: SourceUnit) -> ParseResult:
    """Lex and parse one source unit; diagnostics from both stages."""
    tokens, ldiags = lex(source.text, source.path)
    res = parse(tokens, source.path, source.module)
    diags = list(ldiags) + res.diagnostics
    if not _re_module.match(source.module):
        diags.append(Diagnostic(
            "DPC-SYN-0004",
            f"Invalid module name '{source.module}'.",
            Span.point(source.path, 1, 1),
            "Use lowercase letters, digits, '_', '-', '.' and '/' separators.",
        ))
    return ParseResult(res.program, diags)


def compile_project(
    sources: Iterable[SourceUnit],
    config: Optional[CompilerConfig] = None,
    *,
    cancel: Optional[CancellationToken] = None,
) -> CompileResult:
    """Lex, parse, resolve and generate. Nothing is written.

    Generation only runs when no error was reported in any unit.
    """
    config = config or CompilerConfig()
    ordered = sorted(sources, key=lambda s: (s.module, s.path))

    parsed = parallel_map(parse_unit, ordered, config.jobs, cancel)
    diags: List[Diagnostic] = []
    for r in parsed:
        diags.extend(r.diagnostics)
    programs = [r.program for r in parsed]

    # barrier: every unit is parsed before any declaration is bound
    checkpoint(cancel)
    table, cdiags = collect_declarations(programs, config)
    diags.extend(cdiags)

    for rdiags in parallel_map(lambda p: resolve_program(p, table, config), programs, config.jobs, cancel):
        diags.extend(rdiags)

    if has_errors(diags):
        log.debug("compilation stopped before generation: %d diagnostics", len(diags))
        return CompileResult(sort_diagnostics(diags), programs=programs)

    units, gdiags = gen_mcfunction(programs, table, config, cancel=cancel)
    diags.extend(gdiags)
    if has_errors(gdiags):
        return CompileResult(sort_diagnostics(diags), programs=programs)
    return CompileResult(sort_diagnostics(diags), units, programs)


def build_project(
    sources: Iterable[SourceUnit],
    out_dir: Union[str, Path],
    config: Optional[CompilerConfig] = None,
    *,
    cancel: Optional[CancellationToken] = None,
    source_map_file: Optional[str] = None,
) -> CompileResult:
    """compile_project, then emit when the project compiled cleanly."""
    config = config or CompilerConfig()
    result = compile_project(sources, config, cancel=cancel)
    if not result.ok:
        return result
    checkpoint(cancel)
    result.source_map = emit_units(result.units, out_dir, config, source_map_file=source_map_file)
    return result


def compile_text(text: str, module: str = "main", config: Optional[CompilerConfig] = None) -> CompileResult:
    return compile_project([SourceUnit(f"{module}.dpc", text, module)], config)

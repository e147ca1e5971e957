from __future__ import annotations
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Tuple

SEVERITY_ERROR = "error"
SEVERITY_WARNING = "warning"

CAT_LEXICAL = "lexical"
CAT_SYNTAX = "syntax"
CAT_SEMANTIC = "semantic"
CAT_GENERATION = "generation"
CAT_EMISSION = "emission"

# code -> (kind, category, severity)
CODES: Dict[str, Tuple[str, str, str]] = {
    "DPC-LEX-0001": ("UnterminatedString", CAT_LEXICAL, SEVERITY_ERROR),
    "DPC-LEX-0002": ("IllegalCharacter", CAT_LEXICAL, SEVERITY_ERROR),
    "DPC-LEX-0003": ("TabIndentation", CAT_LEXICAL, SEVERITY_ERROR),
    "DPC-LEX-0004": ("UnterminatedCondition", CAT_LEXICAL, SEVERITY_ERROR),
    "DPC-SYN-0001": ("MalformedStatement", CAT_SYNTAX, SEVERITY_ERROR),
    "DPC-SYN-0002": ("UnmatchedClose", CAT_SYNTAX, SEVERITY_ERROR),
    "DPC-SYN-0003": ("UnclosedBlock", CAT_SYNTAX, SEVERITY_ERROR),
    "DPC-SYN-0004": ("InvalidName", CAT_SYNTAX, SEVERITY_ERROR),
    "DPC-SEM-0001": ("UnresolvedReference", CAT_SEMANTIC, SEVERITY_ERROR),
    "DPC-SEM-0002": ("DuplicateDeclaration", CAT_SEMANTIC, SEVERITY_ERROR),
    "DPC-SEM-0003": ("MacroSelfRecursion", CAT_SEMANTIC, SEVERITY_ERROR),
    "DPC-SEM-0004": ("NestingLimitExceeded", CAT_SEMANTIC, SEVERITY_ERROR),
    "DPC-SEM-0005": ("IllegalNesting", CAT_SEMANTIC, SEVERITY_ERROR),
    "DPC-SEM-0006": ("ArityMismatch", CAT_SEMANTIC, SEVERITY_ERROR),
    "DPC-SEM-0101": ("UnusedVariable", CAT_SEMANTIC, SEVERITY_WARNING),
    "DPC-GEN-0001": ("PathCollision", CAT_GENERATION, SEVERITY_ERROR),
    "DPC-GEN-0002": ("UnsupportedConstruct", CAT_GENERATION, SEVERITY_ERROR),
    "DPC-EMIT-0001": ("EmissionFailure", CAT_EMISSION, SEVERITY_ERROR),
}


@dataclass(frozen=True)
class Span:
    file: str
    line: int
    col: int
    end_line: int
    end_col: int  # exclusive

    @staticmethod
    def point(file: str, line: int, col: int) -> "Span":
        return Span(file, line, col, line, col)

    def to(self, other: "Span") -> "Span":
        """Span from the start of self to the end of other."""
        return Span(self.file, self.line, self.col, other.end_line, other.end_col)

    def to_dict(self) -> Dict[str, object]:
        return {
            "file": self.file,
            "line": self.line,
            "col": self.col,
            "end_line": self.end_line,
            "end_col": self.end_col,
        }

    def __str__(self) -> str:
        return f"{self.file}:{self.line}:{self.col}"


@dataclass(frozen=True)
class Diagnostic:
    code: str
    message: str
    span: Span
    fix: Optional[str] = None
    related: Tuple[Span, ...] = field(default=())

    @property
    def kind(self) -> str:
        return CODES[self.code][0]

    @property
    def category(self) -> str:
        return CODES[self.code][1]

    @property
    def severity(self) -> str:
        return CODES[self.code][2]

    @property
    def is_error(self) -> bool:
        return self.severity == SEVERITY_ERROR

    def to_dict(self) -> Dict[str, object]:
        d: Dict[str, object] = {
            "code": self.code,
            "kind": self.kind,
            "category": self.category,
            "severity": self.severity,
            "message": self.message,
            "span": self.span.to_dict(),
        }
        if self.fix:
            d["fix"] = self.fix
        if self.related:
            d["related"] = [s.to_dict() for s in self.related]
        return d


class CompileError(Exception):
    def __init__(self, diag: Diagnostic):
        super().__init__(diag.message)
        self.diag = diag


class GenerationError(CompileError):
    pass


class EmissionError(CompileError):
    pass


class CompilationCancelled(Exception):
    pass


def has_errors(diags: Iterable[Diagnostic]) -> bool:
    return any(d.is_error for d in diags)


def sort_diagnostics(diags: Iterable[Diagnostic]) -> List[Diagnostic]:
    return sorted(diags, key=lambda d: (d.span.file, d.span.line, d.span.col, d.code, d.message))


def render_diagnostic(diag: Diagnostic, source_text: Optional[str] = None) -> str:
    """Human readable rendering with a caret underline when the source is known."""
    out = [f"{diag.span}: {diag.severity}[{diag.code}]: {diag.message}"]
    if source_text is not None:
        lines = source_text.replace("\r\n", "\n").replace("\r", "\n").split("\n")
        if 1 <= diag.span.line <= len(lines):
            text = lines[diag.span.line - 1]
            end = diag.span.end_col if diag.span.end_line == diag.span.line else len(text) + 1
            width = max(1, end - diag.span.col)
            out.append("    " + text)
            out.append("    " + " " * (diag.span.col - 1) + "^" * width)
    for rel in diag.related:
        out.append(f"  note: see also {rel}")
    if diag.fix:
        out.append(f"  help: {diag.fix}")
    return "\n".join(out)

"""dpc: compiler for a sugared mcfunction dialect."""

from .compiler import CompileResult, SourceUnit, build_project, compile_project
from .config import CompilerConfig, ConfigError
from .diagnostics import Diagnostic, Span
from .workers import CancellationToken

__all__ = [
    "CancellationToken",
    "CompileResult",
    "CompilerConfig",
    "ConfigError",
    "Diagnostic",
    "SourceUnit",
    "Span",
    "build_project",
    "compile_project",
]

__version__ = "0.1.0"

from __future__ import annotations
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union
import json
import logging

import jsonschema

from .config import CompilerConfig
from .diagnostics import Diagnostic, EmissionError, GenerationError, Span
from .mcfunction_gen import LOAD_UNIT, GeneratedUnit
from .workers import parallel_map

log = logging.getLogger(__name__)

SOURCE_MAP_VERSION = 1

_SPAN_SCHEMA = {
    "type": "object",
    "required": ["file", "line", "col", "end_line", "end_col"],
    "properties": {
        "file": {"type": "string"},
        "line": {"type": "integer", "minimum": 0},
        "col": {"type": "integer", "minimum": 0},
        "end_line": {"type": "integer", "minimum": 0},
        "end_col": {"type": "integer", "minimum": 0},
    },
}

SOURCE_MAP_SCHEMA: Dict[str, Any] = {
    "$schema": "http://json-schema.org/draft-07/schema#",
    "type": "object",
    "required": ["version", "entries"],
    "additionalProperties": False,
    "properties": {
        "version": {"const": SOURCE_MAP_VERSION},
        "entries": {
            "type": "array",
            "items": {
                "type": "object",
                "required": ["output", "line", "source"],
                "additionalProperties": False,
                "properties": {
                    "output": {"type": "string", "minLength": 1},
                    "line": {"type": "integer", "minimum": 1},
                    "source": _SPAN_SCHEMA,
                },
            },
        },
    },
}


@dataclass(frozen=True)
class SourceMapEntry:
    output: str
    line: int
    source: Span

    def to_dict(self) -> Dict[str, Any]:
        return {"output": self.output, "line": self.line, "source": self.source.to_dict()}


class SourceMap:
    """Ordered (output file, output line) -> source span."""

    def __init__(self, entries: Optional[List[SourceMapEntry]] = None):
        self.entries: List[SourceMapEntry] = list(entries or [])
        self._index: Dict[Tuple[str, int], Span] = {(e.output, e.line): e.source for e in self.entries}

    def __len__(self) -> int:
        return len(self.entries)

    def lookup(self, output: str, line: int) -> Optional[Span]:
        return self._index.get((output, line))

    def to_dict(self) -> Dict[str, Any]:
        return {"version": SOURCE_MAP_VERSION, "entries": [e.to_dict() for e in self.entries]}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SourceMap":
        jsonschema.validate(instance=data, schema=SOURCE_MAP_SCHEMA)
        entries = [
            SourceMapEntry(e["output"], e["line"], Span(**e["source"]))
            for e in data["entries"]
        ]
        return cls(entries)

    def write(self, path: Union[str, Path]) -> None:
        Path(path).write_text(json.dumps(self.to_dict(), indent=2) + "\n", encoding="utf-8")

    @classmethod
    def read(cls, path: Union[str, Path]) -> "SourceMap":
        return cls.from_dict(json.loads(Path(path).read_text(encoding="utf-8")))


def build_source_map(units: Sequence[GeneratedUnit], config: CompilerConfig) -> SourceMap:
    entries: List[SourceMapEntry] = []
    for u in units:
        out = config.function_file(u.path).as_posix()
        for i, line in enumerate(u.lines, start=1):
            entries.append(SourceMapEntry(out, i, line.span))
    return SourceMap(entries)


def _emission_error(path: Path, exc: OSError) -> EmissionError:
    span = Span.point(str(path), 0, 0)
    return EmissionError(Diagnostic("DPC-EMIT-0001", f"Cannot write '{path}': {exc.strerror or exc}", span))


def _write(target: Path, text: str) -> None:
    try:
        target.parent.mkdir(parents=True, exist_ok=True)
        with open(target, "w", encoding="utf-8", newline="\n") as f:
            f.write(text)
    except OSError as e:
        raise _emission_error(target, e) from e


def load_tag(config: CompilerConfig) -> str:
    return json.dumps({"values": [config.resource_location(LOAD_UNIT)]}, indent=2) + "\n"


def emit_units(
    units: Sequence[GeneratedUnit],
    out_dir: Union[str, Path],
    config: Optional[CompilerConfig] = None,
    *,
    source_map_file: Optional[str] = None,
) -> SourceMap:
    """Write every unit under out_dir and return the source map.

    A path seen twice raises GenerationError before anything is written.
    I/O failures raise EmissionError; files already written stay in place.
    """
    config = config or CompilerConfig()
    root = Path(out_dir)

    seen: Dict[str, GeneratedUnit] = {}
    for u in units:
        rel = config.function_file(u.path).as_posix()
        prev = seen.get(rel)
        if prev is not None:
            raise GenerationError(Diagnostic(
                "DPC-GEN-0001", f"Two units would be written to '{rel}'.", u.origin, None, (prev.origin,),
            ))
        seen[rel] = u

    jobs: List[Tuple[Path, str]] = [(root / rel, u.text()) for rel, u in seen.items()]
    if config.emit_load_tag:
        jobs.append((root / config.tag_file("load"), load_tag(config)))

    parallel_map(lambda job: _write(*job), jobs, config.jobs)
    log.debug("wrote %d files under %s", len(jobs), root)

    smap = build_source_map(units, config)
    if source_map_file:
        try:
            smap.write(root / source_map_file)
        except OSError as e:
            raise _emission_error(root / source_map_file, e) from e
    return smap

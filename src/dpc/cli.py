from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

from .compiler import CompileResult, SourceUnit, build_project
from .config import CompilerConfig, ConfigError
from .diagnostics import CompilationCancelled, EmissionError, GenerationError, render_diagnostic

BUILD_REPORT = "build_report.json"
SOURCE_MAP = "sourcemap.json"
SOURCE_SUFFIX = ".dpc"

BUILD_REPORT_SCHEMA: Dict[str, Any] = {
    "$schema": "http://json-schema.org/draft-07/schema#",
    "type": "object",
    "required": ["status", "diagnostics", "units", "config"],
    "properties": {
        "status": {"enum": ["ok", "error", "emission_failed"]},
        "diagnostics": {
            "type": "array",
            "items": {
                "type": "object",
                "required": ["code", "kind", "category", "severity", "message", "span"],
            },
        },
        "units": {"type": "array", "items": {"type": "string"}},
        "config": {"type": "object"},
        "source_map": {"type": "string"},
    },
}


def discover_sources(roots: List[str]) -> List[SourceUnit]:
    """`.dpc` files under each root; module = path relative to its root, suffix dropped."""
    units: List[SourceUnit] = []
    for root in roots:
        base = Path(root)
        if base.is_file():
            files = [(base, base.stem)]
        else:
            files = [(p, p.relative_to(base).with_suffix("").as_posix()) for p in sorted(base.rglob("*" + SOURCE_SUFFIX))]
        for path, module in files:
            units.append(SourceUnit(str(path), path.read_text(encoding="utf-8"), module))
    return units


def _write_report(out_dir: Path, report: Dict[str, Any]) -> None:
    out_dir.mkdir(parents=True, exist_ok=True)
    (out_dir / BUILD_REPORT).write_text(json.dumps(report, indent=2) + "\n", encoding="utf-8")


def _report(status: str, result: Optional[CompileResult], diags, config: CompilerConfig) -> Dict[str, Any]:
    rep: Dict[str, Any] = {
        "status": status,
        "diagnostics": [d.to_dict() for d in diags],
        "units": [config.resource_location(u.path) for u in result.units] if result is not None else [],
        "config": config.to_dict(),
    }
    if result is not None and result.source_map is not None:
        rep["source_map"] = SOURCE_MAP
    return rep


def _print_diagnostics(diags, sources: List[SourceUnit], as_json: bool) -> None:
    if as_json:
        print(json.dumps([d.to_dict() for d in diags], indent=2))
        return
    texts = {s.path: s.text for s in sources}
    for d in diags:
        print(render_diagnostic(d, texts.get(d.span.file)), file=sys.stderr)


def main(argv: Optional[List[str]] = None) -> int:
    p = argparse.ArgumentParser(prog="dpc", description="Compile sugared mcfunction sources into a data pack function tree.")
    p.add_argument("sources", nargs="+", help="Source directories (or single .dpc files)")
    p.add_argument("--out", dest="out_dir", required=True, help="Output folder root")
    p.add_argument("--namespace", default=None, help="Namespace root, `ns` or `ns:prefix/dir`")
    p.add_argument("--objective", default=None, help="Scoreboard objective holding variables")
    p.add_argument("--preserve-comments", action="store_true", help="Keep `#` comments in the output")
    p.add_argument("--inline-blocks", action="store_true", help="Inline single-command blocks into their guard")
    p.add_argument("--no-load-tag", action="store_true", help="Do not write the minecraft:load function tag")
    p.add_argument("--max-depth", type=int, default=None, help="Maximum block nesting depth")
    p.add_argument("--jobs", type=int, default=None, help="Worker threads for parsing, generation and writing")
    p.add_argument("--json-diagnostics", action="store_true", help="Print diagnostics as JSON on stdout")
    p.add_argument("-v", "--verbose", action="store_true", help="Debug logging on stderr")
    args = p.parse_args(argv)

    if args.verbose:
        logging.basicConfig(level=logging.DEBUG, format="%(levelname)s %(name)s: %(message)s")

    out_dir = Path(args.out_dir)
    overrides: Dict[str, Any] = {
        "namespace_root": args.namespace,
        "objective": args.objective,
        "max_nesting_depth": args.max_depth,
        "jobs": args.jobs,
    }
    try:
        config = CompilerConfig.from_dict({
            **{k: v for k, v in overrides.items() if v is not None},
            "preserve_comments": args.preserve_comments,
            "inline_blocks": args.inline_blocks,
            "emit_load_tag": not args.no_load_tag,
        })
    except ConfigError as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return 2

    try:
        sources = discover_sources(args.sources)
    except OSError as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return 2

    try:
        result = build_project(sources, out_dir, config, source_map_file=SOURCE_MAP)
    except GenerationError as e:
        _print_diagnostics([e.diag], sources, args.json_diagnostics)
        _write_report(out_dir, _report("error", None, [e.diag], config))
        return 1
    except EmissionError as e:
        _print_diagnostics([e.diag], sources, args.json_diagnostics)
        _write_report(out_dir, _report("emission_failed", None, [e.diag], config))
        return 2
    except CompilationCancelled:
        print("ERROR: compilation cancelled", file=sys.stderr)
        return 2

    _print_diagnostics(result.diagnostics, sources, args.json_diagnostics)
    status = "ok" if result.ok else "error"
    _write_report(out_dir, _report(status, result, result.diagnostics, config))
    if not result.ok:
        return 1
    print(f"OK. units={len(result.units)} modules={len(sources)}", file=sys.stderr)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())

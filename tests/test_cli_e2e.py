from __future__ import annotations
from pathlib import Path
import json
import subprocess
import sys
import os

import jsonschema

from dpc.cli import BUILD_REPORT_SCHEMA

REPO_ROOT = Path(__file__).resolve().parents[1]

def run_dpc(args, out_dir: Path):
    cmd = [sys.executable, "-m", "dpc"] + args
    env = {**os.environ, "PYTHONPATH": str(REPO_ROOT / "src")}
    p = subprocess.run(cmd, cwd=REPO_ROOT, env=env, capture_output=True, text=True)
    rep_path = out_dir / "build_report.json"
    assert rep_path.exists(), f"build_report.json missing. rc={p.returncode}\nSTDERR:\n{p.stderr}"
    rep = json.loads(rep_path.read_text(encoding="utf-8"))
    jsonschema.validate(instance=rep, schema=BUILD_REPORT_SCHEMA)
    return p.returncode, p.stdout, p.stderr, rep

def _write(root: Path, rel: str, text: str) -> None:
    path = root / rel
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text, encoding="utf-8")

def test_cli_ok(tmp_path: Path):
    src = tmp_path / "src"
    _write(src, "main.dpc", "var n = 2\ncall tools/twice(n)\n")
    _write(src, "tools/lib.dpc", "function tools/twice(v) {\n  set v *= 2\n  tellraw @a \"%v\"\n}\n")
    out = tmp_path / "dist"
    rc, _o, _e, rep = run_dpc([str(src), "--out", str(out), "--namespace", "demo"], out)
    assert rc == 0
    assert rep["status"] == "ok"
    assert "demo:tools/twice" in rep["units"]
    assert rep["source_map"] == "sourcemap.json"
    assert (out / "data" / "demo" / "function" / "main.mcfunction").exists()
    assert (out / "data" / "demo" / "function" / "tools" / "twice.mcfunction").exists()
    assert (out / "sourcemap.json").exists()

def test_cli_compile_error_json(tmp_path: Path):
    src = tmp_path / "src"
    _write(src, "main.dpc", "var x\nset x = y\n")
    out = tmp_path / "dist"
    rc, stdout, _e, rep = run_dpc([str(src), "--out", str(out), "--json-diagnostics"], out)
    assert rc == 1
    assert rep["status"] == "error"
    assert [d["code"] for d in rep["diagnostics"]] == ["DPC-SEM-0001"]
    assert json.loads(stdout)[0]["kind"] == "UnresolvedReference"
    assert not (out / "data").exists()

def test_cli_max_depth(tmp_path: Path):
    src = tmp_path / "src"
    _write(src, "main.dpc", "var c = 1\nif (c == 1) {\n  if (c == 1) { say deep }\n}\n")
    out = tmp_path / "dist"
    rc, _o, stderr, rep = run_dpc([str(src), "--out", str(out), "--max-depth", "1"], out)
    assert rc == 1
    assert rep["diagnostics"][0]["code"] == "DPC-SEM-0004"
    assert "error[DPC-SEM-0004]" in stderr

def test_cli_emission_failure(tmp_path: Path):
    src = tmp_path / "src"
    _write(src, "main.dpc", "say hi\n")
    out = tmp_path / "dist"
    out.mkdir()
    (out / "data").write_text("blocks the tree", encoding="utf-8")
    rc, _o, _e, rep = run_dpc([str(src), "--out", str(out)], out)
    assert rc == 2
    assert rep["status"] == "emission_failed"
    assert rep["diagnostics"][0]["code"] == "DPC-EMIT-0001"

def test_cli_duplicate_output_is_a_generation_error(tmp_path: Path, monkeypatch):
    from dpc import cli
    from dpc.diagnostics import Diagnostic, GenerationError, Span

    def clash(*_a, **_k):
        raise GenerationError(Diagnostic("DPC-GEN-0001", "Two units would be written to 'x'.", Span.point("main.dpc", 1, 1)))

    src = tmp_path / "src"
    _write(src, "main.dpc", "say hi\n")
    out = tmp_path / "dist"
    monkeypatch.setattr(cli, "build_project", clash)
    assert cli.main([str(src), "--out", str(out)]) == 1
    rep = json.loads((out / "build_report.json").read_text(encoding="utf-8"))
    jsonschema.validate(instance=rep, schema=BUILD_REPORT_SCHEMA)
    assert rep["status"] == "error"
    assert rep["diagnostics"][0]["code"] == "DPC-GEN-0001"

import json
from pathlib import Path

import jsonschema
import pytest

from dpc.compiler import compile_text
from dpc.config import CompilerConfig
from dpc.diagnostics import EmissionError, GenerationError, Span
from dpc.emitter import SOURCE_MAP_SCHEMA, SourceMap, emit_units
from dpc.mcfunction_gen import GeneratedUnit

SRC = "var c = 1\nfunction foo { if (c == 1) { say hi } else { say bye } }\n"

def _units(config=None):
    res = compile_text(SRC, "main", config)
    assert res.ok
    return res.units


def test_writes_function_tree_and_load_tag(tmp_path: Path):
    cfg = CompilerConfig()
    emit_units(_units(cfg), tmp_path, cfg)
    fdir = tmp_path / "data" / "dpc" / "function"
    assert (fdir / "foo.mcfunction").exists()
    assert (fdir / "foo" / "branch_then.mcfunction").read_text(encoding="utf-8") == (
        "say hi\nscoreboard players set #foo/branch dpc 1\n"
    )
    assert (fdir / "foo" / "branch_else.mcfunction").read_text(encoding="utf-8") == "say bye\n"
    assert (fdir / "__load.mcfunction").exists()
    tag = json.loads((tmp_path / "data" / "minecraft" / "tags" / "function" / "load.json").read_text(encoding="utf-8"))
    assert tag == {"values": ["dpc:__load"]}


def test_namespace_prefix_and_legacy_function_dir(tmp_path: Path):
    cfg = CompilerConfig(namespace_root="pack:gen", function_dir="functions", emit_load_tag=False)
    emit_units(_units(cfg), tmp_path, cfg)
    assert (tmp_path / "data" / "pack" / "functions" / "gen" / "foo" / "branch_then.mcfunction").exists()
    assert not (tmp_path / "data" / "minecraft").exists()


def test_source_map_lookup_and_schema(tmp_path: Path):
    cfg = CompilerConfig()
    smap = emit_units(_units(cfg), tmp_path, cfg, source_map_file="sourcemap.json")
    span = smap.lookup("data/dpc/function/foo/branch_then.mcfunction", 1)
    assert span is not None and (span.file, span.line) == ("main.dpc", 2)

    data = json.loads((tmp_path / "sourcemap.json").read_text(encoding="utf-8"))
    jsonschema.validate(instance=data, schema=SOURCE_MAP_SCHEMA)
    again = SourceMap.read(tmp_path / "sourcemap.json")
    assert again.entries == smap.entries


def test_source_map_rejects_bad_shape():
    with pytest.raises(jsonschema.ValidationError):
        SourceMap.from_dict({"version": 1, "entries": [{"output": "x", "line": 0}]})


def test_same_path_twice_raises_generation_error(tmp_path: Path):
    span = Span.point("a.dpc", 1, 1)
    units = [GeneratedUnit("x", "function", span), GeneratedUnit("x", "function", span)]
    with pytest.raises(GenerationError) as ei:
        emit_units(units, tmp_path)
    assert ei.value.diag.code == "DPC-GEN-0001"
    assert not (tmp_path / "data").exists()


def test_io_failure_is_emission_error(tmp_path: Path):
    blocked = tmp_path / "blocked"
    blocked.write_text("not a directory", encoding="utf-8")
    with pytest.raises(EmissionError) as ei:
        emit_units(_units(), blocked)
    assert ei.value.diag.code == "DPC-EMIT-0001"
    assert ei.value.diag.category == "emission"


def test_parallel_writes_match_sequential(tmp_path: Path):
    seq, par = tmp_path / "seq", tmp_path / "par"
    emit_units(_units(), seq, CompilerConfig(jobs=1))
    emit_units(_units(), par, CompilerConfig(jobs=4))
    files = sorted(p.relative_to(seq).as_posix() for p in seq.rglob("*") if p.is_file())
    assert files == sorted(p.relative_to(par).as_posix() for p in par.rglob("*") if p.is_file())
    for rel in files:
        assert (seq / rel).read_bytes() == (par / rel).read_bytes()

import pytest

from dpc.config import CompilerConfig, ConfigError


def test_defaults():
    cfg = CompilerConfig()
    assert cfg.max_nesting_depth == 16
    assert cfg.namespace == "dpc"
    assert cfg.path_prefix == ""
    assert cfg.resource_location("foo/branch_then") == "dpc:foo/branch_then"
    assert cfg.function_file("foo").as_posix() == "data/dpc/function/foo.mcfunction"
    assert cfg.tag_file("load").as_posix() == "data/minecraft/tags/function/load.json"


def test_namespace_with_prefix():
    cfg = CompilerConfig.from_dict({"namespace_root": "pack:gen/out"})
    assert cfg.namespace == "pack"
    assert cfg.resource_location("f") == "pack:gen/out/f"
    assert cfg.function_file("f").as_posix() == "data/pack/function/gen/out/f.mcfunction"


@pytest.mark.parametrize("data", [
    {"max_nesting_depth": 0},
    {"max_nesting_depth": "3"},
    {"namespace_root": "Bad"},
    {"namespace_root": "a:b:c"},
    {"objective": "has space"},
    {"function_dir": "funcs"},
    {"jobs": True},
    {"unknown_option": 1},
])
def test_invalid_config_rejected(data):
    with pytest.raises(ConfigError) as ei:
        CompilerConfig.from_dict(data)
    assert ei.value.errors


def test_constructor_validates_too():
    with pytest.raises(ConfigError):
        CompilerConfig(jobs=0)


def test_replace_and_roundtrip():
    cfg = CompilerConfig().replace(inline_blocks=True, jobs=3)
    assert cfg.inline_blocks and cfg.jobs == 3
    assert CompilerConfig.from_dict(cfg.to_dict()) == cfg

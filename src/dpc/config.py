from __future__ import annotations
from dataclasses import asdict, dataclass
from pathlib import PurePosixPath
from typing import Any, Dict, List, Mapping

from jsonschema import Draft7Validator

_RES = r"[a-z0-9_.\-]+"

CONFIG_SCHEMA: Dict[str, Any] = {
    "$schema": "http://json-schema.org/draft-07/schema#",
    "type": "object",
    "additionalProperties": False,
    "properties": {
        "max_nesting_depth": {"type": "integer", "minimum": 1},
        "preserve_comments": {"type": "boolean"},
        "namespace_root": {"type": "string", "pattern": rf"^{_RES}(:{_RES}(/{_RES})*)?$"},
        "objective": {"type": "string", "pattern": r"^[A-Za-z0-9_.+\-]+$"},
        "function_dir": {"enum": ["function", "functions"]},
        "inline_blocks": {"type": "boolean"},
        "emit_load_tag": {"type": "boolean"},
        "jobs": {"type": "integer", "minimum": 1},
    },
}

_validator = Draft7Validator(CONFIG_SCHEMA)


class ConfigError(ValueError):
    def __init__(self, errors: List[str]):
        super().__init__("; ".join(errors))
        self.errors = errors


def _schema_errors(data: Mapping[str, Any]) -> List[str]:
    out = []
    for err in sorted(_validator.iter_errors(dict(data)), key=lambda e: list(e.path)):
        where = ".".join(str(p) for p in err.path) or "config"
        out.append(f"{where}: {err.message}")
    return out


@dataclass(frozen=True)
class CompilerConfig:
    max_nesting_depth: int = 16
    preserve_comments: bool = False
    namespace_root: str = "dpc"
    objective: str = "dpc"
    function_dir: str = "function"
    inline_blocks: bool = False
    emit_load_tag: bool = True
    jobs: int = 1

    def __post_init__(self) -> None:
        errors = _schema_errors(self.to_dict())
        if errors:
            raise ConfigError(errors)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "CompilerConfig":
        errors = _schema_errors(data)
        if errors:
            raise ConfigError(errors)
        return cls(**data)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    def replace(self, **changes: Any) -> "CompilerConfig":
        d = self.to_dict()
        d.update(changes)
        return CompilerConfig.from_dict(d)

    @property
    def namespace(self) -> str:
        return self.namespace_root.split(":", 1)[0]

    @property
    def path_prefix(self) -> str:
        parts = self.namespace_root.split(":", 1)
        return parts[1] if len(parts) == 2 else ""

    def qualified_path(self, path: str) -> str:
        return f"{self.path_prefix}/{path}" if self.path_prefix else path

    def resource_location(self, path: str) -> str:
        """`ns:prefix/path` as used by `function` commands and tags."""
        return f"{self.namespace}:{self.qualified_path(path)}"

    def function_file(self, path: str) -> PurePosixPath:
        return PurePosixPath("data", self.namespace, self.function_dir, self.qualified_path(path) + ".mcfunction")

    def tag_file(self, tag: str) -> PurePosixPath:
        return PurePosixPath("data", "minecraft", "tags", self.function_dir, tag + ".json")

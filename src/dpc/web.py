from __future__ import annotations

from typing import Any, Dict, List, Optional

from flask import Flask, jsonify, request
from werkzeug.exceptions import BadRequest, HTTPException

from .compiler import SourceUnit, compile_project
from .config import CompilerConfig, ConfigError
from .diagnostics import CompilationCancelled

MAX_SOURCES = 500
SERVER_ONLY = frozenset({"jobs"})


def _sources_from_payload(payload: Any) -> List[SourceUnit]:
    if not isinstance(payload, dict):
        raise BadRequest("JSON object expected")
    raw = payload.get("sources")
    if not isinstance(raw, list) or not raw:
        raise BadRequest("'sources' must be a non-empty list")
    if len(raw) > MAX_SOURCES:
        raise BadRequest(f"at most {MAX_SOURCES} sources per request")

    units: List[SourceUnit] = []
    for i, item in enumerate(raw):
        if not isinstance(item, dict):
            raise BadRequest(f"sources[{i}] must be an object")
        module = item.get("module")
        text = item.get("text")
        if not isinstance(module, str) or not module:
            raise BadRequest(f"sources[{i}].module must be a non-empty string")
        if not isinstance(text, str):
            raise BadRequest(f"sources[{i}].text must be a string")
        path = item.get("path") or f"{module}.dpc"
        if not isinstance(path, str):
            raise BadRequest(f"sources[{i}].path must be a string")
        units.append(SourceUnit(path, text, module))
    return units


def create_app(base_config: Optional[CompilerConfig] = None) -> Flask:
    """Thin HTTP front end over compile_project. Nothing is written to disk."""
    app = Flask(__name__)
    defaults = (base_config or CompilerConfig()).to_dict()

    @app.errorhandler(HTTPException)
    def _http_error(exc: HTTPException):
        return jsonify({"status": "bad_request" if exc.code == 400 else "error", "error": exc.description}), exc.code

    @app.get("/api/health")
    def health():
        return jsonify({"status": "ok"})

    @app.post("/api/compile")
    def compile_sources():
        payload = request.get_json(silent=True)
        sources = _sources_from_payload(payload)

        overrides = payload.get("config") or {}
        if not isinstance(overrides, dict):
            raise BadRequest("'config' must be an object")
        # the worker pool size belongs to the server
        overrides = {k: v for k, v in overrides.items() if k not in SERVER_ONLY}
        try:
            config = CompilerConfig.from_dict({**defaults, **overrides})
        except ConfigError as e:
            raise BadRequest(str(e))

        try:
            result = compile_project(sources, config)
        except CompilationCancelled:
            return jsonify({"status": "cancelled"}), 503

        body: Dict[str, Any] = {
            "status": "ok" if result.ok else "error",
            "diagnostics": [d.to_dict() for d in result.diagnostics],
            "units": [
                {
                    "path": u.path,
                    "resource": config.resource_location(u.path),
                    "file": config.function_file(u.path).as_posix(),
                    "kind": u.kind,
                    "text": u.text(),
                }
                for u in result.units
            ],
        }
        return jsonify(body), 200 if result.ok else 422

    return app

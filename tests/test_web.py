import pytest

from dpc.config import CompilerConfig
from dpc.web import create_app

@pytest.fixture()
def client():
    app = create_app()
    app.config["TESTING"] = True
    return app.test_client()


def test_compile_ok(client):
    resp = client.post("/api/compile", json={
        "sources": [{"module": "main", "text": "var c = 1\nif (c == 1) { say hi }\n"}],
    })
    assert resp.status_code == 200
    body = resp.get_json()
    assert body["status"] == "ok"
    units = {u["path"]: u for u in body["units"]}
    assert units["main/branch_then"]["text"] == "say hi\n"
    assert units["main/branch_then"]["file"] == "data/dpc/function/main/branch_then.mcfunction"
    assert units["main/branch_then"]["resource"] == "dpc:main/branch_then"


def test_compile_with_config_override(client):
    resp = client.post("/api/compile", json={
        "sources": [{"module": "main", "text": "var c = 1\nif (c == 1) { say hi }\n"}],
        "config": {"inline_blocks": True, "namespace_root": "web"},
    })
    body = resp.get_json()
    assert [u["path"] for u in body["units"]] == ["__load", "main"]
    assert "execute if score $main.c dpc matches 1 run say hi\n" in body["units"][1]["text"]


def test_compile_errors_are_422(client):
    resp = client.post("/api/compile", json={"sources": [{"module": "main", "text": "set x = 1\n"}]})
    assert resp.status_code == 422
    body = resp.get_json()
    assert body["status"] == "error"
    assert body["diagnostics"][0]["code"] == "DPC-SEM-0001"
    assert body["units"] == []


@pytest.mark.parametrize("payload", [
    None,
    {"sources": []},
    {"sources": [{"text": "say a"}]},
    {"sources": [{"module": "main", "text": 3}]},
    {"sources": [{"module": "main", "text": "say a"}], "config": {"max_nesting_depth": 0}},
])
def test_malformed_requests_are_400(client, payload):
    if payload is None:
        resp = client.post("/api/compile", data="not json", content_type="application/json")
    else:
        resp = client.post("/api/compile", json=payload)
    assert resp.status_code == 400
    assert resp.get_json()["status"] == "bad_request"


def test_base_config_applies():
    app = create_app(CompilerConfig(objective="vars"))
    resp = app.test_client().post("/api/compile", json={"sources": [{"module": "main", "text": "var a = 1\n"}]})
    assert resp.get_json()["units"][1]["text"] == "scoreboard players set $main.a vars 1\n"


def test_health(client):
    assert client.get("/api/health").get_json() == {"status": "ok"}


def test_request_cannot_choose_pool_size(monkeypatch):
    import dpc.web
    seen = []
    real = dpc.web.compile_project

    def spy(sources, config=None, **kw):
        seen.append(config.jobs)
        return real(sources, config, **kw)

    monkeypatch.setattr(dpc.web, "compile_project", spy)
    app = create_app(CompilerConfig(jobs=2))
    resp = app.test_client().post("/api/compile", json={
        "sources": [{"module": "main", "text": "say a\n"}],
        "config": {"jobs": 100000},
    })
    assert resp.status_code == 200
    assert seen == [2]

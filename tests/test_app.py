"""
Tests for the application factory, service info, health and error handling.
"""

from vittasami.api.app import create_app


class FakeLLM:
    model_name = "fake-model"


def test_index(client):
    body = client.get("/").get_json()
    assert body["service"] == "VittaSami API"
    assert body["status"] == "running"
    assert body["endpoints"]["appointments"] == "/api/appointments"


def test_health(client):
    resp = client.get("/health")
    assert resp.status_code == 200
    assert resp.get_json() == {"status": "healthy", "checks": {"database": True, "llm": False}}


def test_health_reports_llm(engine):
    client = create_app(engine=engine, llm=FakeLLM()).test_client()
    assert client.get("/health").get_json()["checks"]["llm"] is True


def test_health_database_down(monkeypatch, client):
    monkeypatch.setattr("vittasami.api.routes.check_connection", lambda engine: False)
    resp = client.get("/health")
    assert resp.status_code == 503
    assert resp.get_json()["status"] == "unhealthy"


def test_unknown_endpoint(client):
    resp = client.get("/api/nothing-here")
    assert resp.status_code == 404
    assert resp.get_json()["error"] == "Endpoint not found"


def test_method_not_allowed(client):
    resp = client.delete("/health")
    assert resp.status_code == 405
    assert resp.get_json()["error"] == "Method not allowed"


def test_unhandled_exception_is_json(engine):
    app = create_app(engine=engine, llm=None)

    @app.route("/boom")
    def boom():
        raise RuntimeError("kaput")

    resp = app.test_client().get("/boom")
    assert resp.status_code == 500
    assert resp.get_json() == {"error": "Internal server error"}


def test_cors_headers(client):
    resp = client.get("/health", headers={"Origin": "http://localhost:3000"})
    assert resp.headers.get("Access-Control-Allow-Origin") in ("*", "http://localhost:3000")

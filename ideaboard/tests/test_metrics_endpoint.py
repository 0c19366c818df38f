from ideaboard.core.metrics import MetricsRegistry, normalize_path
from ideaboard.tests.mocks import AI_IDEA, session_headers


def test_metrics_endpoint_exports_counters(client):
    client.post("/api/ideas", json={"body": AI_IDEA}, headers=session_headers("author"))
    client.post("/api/ideas", json={"body": "Let an AI assistant plan my week"}, headers=session_headers("voter", "203.0.113.5"))
    client.post("/api/ideas/1/vote", json={"vote_type": "up"}, headers=session_headers("voter", "203.0.113.5"))
    client.post("/api/ideas/1/vote", json={"vote_type": "up"}, headers=session_headers("voter", "203.0.113.5"))

    resp = client.get("/metrics")

    assert resp.status_code == 200
    assert resp.headers["content-type"].startswith("text/plain")
    text = resp.text
    assert 'ideas_submitted_total{outcome="accepted"} 2.0' in text
    assert 'votes_total{direction="up",outcome="accepted"} 1.0' in text
    assert 'vote_rejections_total{code="rate_limited"} 1.0' in text
    assert 'http_requests_total{method="POST",path="/api/ideas/:id/vote",status="200"} 1.0' in text


def test_normalize_path_collapses_ids():
    assert normalize_path("/api/ideas/42/vote") == "/api/ideas/:id/vote"
    assert normalize_path("/api/comments/3f2b9c1e-aaaa-bbbb-cccc-000000000000") == "/api/comments/:id"
    assert normalize_path("/") == "/"


def test_registry_reuses_counters():
    registry = MetricsRegistry()
    counter = registry.counter("things_total", ["kind"])
    assert registry.counter("things_total") is counter
    counter.inc({"kind": "a"})
    counter.inc({"kind": "a"}, amount=2)
    assert counter.value({"kind": "a"}) == 3.0
    assert 'things_total{kind="a"} 3.0' in registry.export_prometheus()
    registry.reset()
    assert counter.value({"kind": "a"}) == 0.0


def test_export_carries_help_and_type_lines(client):
    text = client.get("/metrics").text
    assert "# HELP votes_total Idea votes by direction and outcome." in text
    assert "# TYPE reward_grants_total counter" in text

"""Tests for normalized error responses."""

from fastapi.testclient import TestClient

from ideaboard.tests.mocks import AI_IDEA, session_headers


def _assert_envelope(resp, status, code):
    assert resp.status_code == status
    body = resp.json()
    rid = resp.headers.get("x-request-id")
    assert body["error"]["code"] == code
    assert body["error"]["request_id"] == rid
    assert body["detail"] == body["error"]["message"]
    return body


def test_validation_error_has_standard_shape(client):
    resp = client.post("/api/ideas", json={"title": "no body"}, headers=session_headers("s1"))
    body = _assert_envelope(resp, 400, "validation_error")
    assert "body.body" in body["error"]["fields"]


def test_bad_vote_type_maps_to_invalid_direction(client):
    client.post("/api/ideas", json={"body": AI_IDEA}, headers=session_headers("author"))
    resp = client.post("/api/ideas/1/vote", json={"vote_type": "sideways"}, headers=session_headers("voter"))
    _assert_envelope(resp, 400, "invalid_direction")


def test_not_found_normalized(client):
    resp = client.get("/api/ideas/999", headers=session_headers("s1"))
    _assert_envelope(resp, 404, "not_found")

    unknown_route = client.get("/api/nope")
    _assert_envelope(unknown_route, 404, "not_found")


def test_content_rejection_carries_reason(client):
    resp = client.post("/api/ideas", json={"body": "My favourite pasta recipe"}, headers=session_headers("s1"))
    body = _assert_envelope(resp, 400, "content_rejected")
    assert body["error"]["reason"] == "Contains inappropriate content"


def test_downvote_lock_is_soft_with_context(client):
    client.post("/api/ideas", json={"body": AI_IDEA}, headers=session_headers("author"))
    client.post("/api/ideas", json={"body": "Let an AI assistant plan my week"}, headers=session_headers("voter"))

    resp = client.post("/api/ideas/1/vote", json={"vote_type": "down"}, headers=session_headers("voter"))

    body = _assert_envelope(resp, 403, "downvote_locked")
    assert body["error"]["soft"] is True
    assert body["error"]["threshold"] == 100
    assert body["error"]["current_tally"] == 0


def test_rate_limit_sets_retry_after(client, clock):
    client.post("/api/ideas", json={"body": AI_IDEA}, headers=session_headers("a1"))
    client.post("/api/ideas", json={"body": "Let an AI assistant plan my week"}, headers=session_headers("a2"))
    client.post("/api/ideas", json={"body": "Use Claude to review my essays"}, headers=session_headers("voter"))

    assert client.post("/api/ideas/1/vote", json={"vote_type": "up"}, headers=session_headers("voter")).status_code == 200
    clock.advance(1)
    resp = client.post("/api/ideas/2/vote", json={"vote_type": "up"}, headers=session_headers("voter"))

    body = _assert_envelope(resp, 429, "rate_limited")
    assert body["error"]["soft"] is True
    assert resp.headers["Retry-After"] == "4"
    assert body["error"]["retry_after"] == 4


def test_self_vote_code(client):
    client.post("/api/ideas", json={"body": AI_IDEA}, headers=session_headers("author"))
    resp = client.post("/api/ideas/1/vote", json={"vote_type": "up"}, headers=session_headers("author"))
    _assert_envelope(resp, 400, "self_vote")


def test_invalid_bearer_token(client):
    resp = client.get("/api/ideas", headers={"Authorization": "Bearer not-a-jwt"})
    _assert_envelope(resp, 401, "identity_required")


def test_provided_request_id_is_echoed_in_errors(client):
    resp = client.get("/api/ideas/999", headers={"X-Session-Id": "s1", "X-Request-Id": "rid-123"})
    assert resp.headers["x-request-id"] == "rid-123"
    assert resp.json()["error"]["request_id"] == "rid-123"


def test_unhandled_error_is_normalized(app):
    @app.get("/boom")
    def boom():
        raise RuntimeError("kaboom")

    client = TestClient(app, raise_server_exceptions=False)
    resp = client.get("/boom")

    assert resp.status_code == 500
    body = resp.json()
    assert body["error"]["code"] == "internal_error"
    assert "kaboom" not in body["error"]["message"]

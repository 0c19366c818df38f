"""End-to-end gate behavior through the HTTP surface."""

from ideaboard.tests.mocks import AI_IDEA, TEST_ADMIN_KEY, session_headers


def _submit(client, session_id, body=AI_IDEA, ip="203.0.113.10", **fields):
    resp = client.post("/api/ideas", json={"body": body, **fields}, headers=session_headers(session_id, ip))
    assert resp.status_code == 200, resp.text
    return resp.json()


def test_session_endpoint_mints_a_token(client):
    resp = client.get("/api/session")
    assert resp.status_code == 200
    body = resp.json()
    assert body["session_id"]
    assert body["identity_kind"] == "session"
    assert body["has_submitted"] is False

    again = client.get("/api/session", headers={"X-Session-Id": body["session_id"]})
    assert again.json()["session_id"] == body["session_id"]


def test_feed_locked_until_submission(client):
    _submit(client, "author")

    locked = client.get("/api/ideas", headers=session_headers("newcomer"))
    assert locked.status_code == 403
    assert locked.json()["error"]["code"] == "submission_required"

    _submit(client, "newcomer", body="Let an AI assistant draft my grocery list")
    unlocked = client.get("/api/ideas", headers=session_headers("newcomer"))
    assert unlocked.status_code == 200
    assert len(unlocked.json()) == 2

    state = client.get("/api/session", headers={"X-Session-Id": "newcomer"}).json()
    assert state["has_submitted"] is True


def test_feed_requires_identity(client):
    resp = client.get("/api/ideas")
    assert resp.status_code == 401
    assert resp.json()["error"]["code"] == "identity_required"


def test_paywall_toggle_opens_feed_for_everyone(client):
    _submit(client, "author")
    headers = {"X-Admin-Key": TEST_ADMIN_KEY}

    resp = client.post("/api/admin/paywall-toggle", json={"enabled": False}, headers=headers)
    assert resp.status_code == 200
    assert client.get("/api/paywall-status").json() == {"enabled": False}
    assert client.get("/api/ideas", headers=session_headers("newcomer")).status_code == 200

    client.post("/api/admin/paywall-toggle", json={"enabled": True}, headers=headers)
    assert client.get("/api/ideas", headers=session_headers("newcomer")).status_code == 403


def test_direct_link_grants_sticky_feed_access(client):
    idea = _submit(client, "author")

    no_flag = client.get(f"/api/ideas/{idea['id']}", headers=session_headers("visitor"))
    assert no_flag.status_code == 403

    shared = client.get(f"/api/ideas/{idea['id']}", headers=session_headers("visitor", **{"X-Shared-Access": "1"}))
    assert shared.status_code == 200
    assert shared.json()["id"] == idea["id"]

    # The grant sticks to the session without the header.
    assert client.get("/api/ideas", headers=session_headers("visitor")).status_code == 200
    assert client.get("/api/session", headers={"X-Session-Id": "visitor"}).json()["shared_access"] is True

    vote = client.post(f"/api/ideas/{idea['id']}/vote", json={"vote_type": "up"}, headers=session_headers("visitor"))
    assert vote.status_code == 403
    assert vote.json()["error"]["code"] == "submission_required"


def test_link_hidden_until_threshold(client, services_from_app):
    idea = _submit(client, "author", link_url="https://example.com/demo")
    _submit(client, "viewer", body="Let an AI assistant draft my grocery list")

    owner_view = client.get(f"/api/ideas/{idea['id']}", headers=session_headers("author")).json()
    assert owner_view["link_url"] == "https://example.com/demo"
    assert owner_view["is_owner"] is True

    viewer_view = client.get(f"/api/ideas/{idea['id']}", headers=session_headers("viewer")).json()
    assert viewer_view["link_url"] is None
    assert viewer_view["link_locked"] is True

    services_from_app.admin.set_tally(idea["id"], 10)
    viewer_view = client.get(f"/api/ideas/{idea['id']}", headers=session_headers("viewer")).json()
    assert viewer_view["link_url"] == "https://example.com/demo"
    assert viewer_view["link_locked"] is False


def test_vote_round_trip(client):
    idea = _submit(client, "author")
    _submit(client, "voter", body="Let an AI assistant draft my grocery list", ip="203.0.113.20")

    resp = client.post(
        f"/api/ideas/{idea['id']}/vote",
        json={"vote_type": "up"},
        headers=session_headers("voter", "203.0.113.20"),
    )

    assert resp.status_code == 200
    assert resp.json() == {"idea_id": idea["id"], "votes": 1, "user_vote": "up", "changed": True, "reward": None}


def test_feed_sort_and_filters(client, services_from_app):
    first = _submit(client, "a", category="Writing", tools="Claude")
    second = _submit(client, "b", body="Let an AI assistant draft my grocery list", category="Productivity")
    services_from_app.admin.set_tally(second["id"], 3)

    by_votes = client.get("/api/ideas", headers=session_headers("a")).json()
    assert [i["id"] for i in by_votes] == [second["id"], first["id"]]

    recent = client.get("/api/ideas?sort=recent", headers=session_headers("a")).json()
    assert {i["id"] for i in recent} == {first["id"], second["id"]}

    writing = client.get("/api/ideas?category=writing", headers=session_headers("a")).json()
    assert [i["id"] for i in writing] == [first["id"]]

    claude = client.get("/api/ideas?tool=Claude", headers=session_headers("a")).json()
    assert [i["id"] for i in claude] == [first["id"]]


def test_test_submission_is_removed_after_delay(client, dispatcher):
    idea = _submit(client, "tester", body="#test checking the form")
    assert idea["is_test"] is True

    assert dispatcher.run_scheduled() == 1
    assert client.get(f"/api/ideas/{idea['id']}", headers=session_headers("tester")).status_code == 404

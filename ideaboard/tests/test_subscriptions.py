import csv

import httpx
import pytest
from fastapi import BackgroundTasks

from ideaboard.core.errors import ConflictError
from ideaboard.core.metrics import side_effect_failures_total
from ideaboard.features.integrations.backup import SUBSCRIPTION_HEADER, CsvBackupSink
from ideaboard.features.integrations.newsletter import NewsletterClient, NewsletterError
from ideaboard.features.subscriptions.service import SubscriptionService
from ideaboard.models.session import SubscribeRequest
from ideaboard.tests.mocks import newsletter_transport


def _newsletter(status_code=201, payload=None, seen=None):
    http = httpx.Client(transport=newsletter_transport(status_code, payload, seen))
    return NewsletterClient("key-123", "pub_1", http=http)


def test_subscribe_endpoint_and_duplicate(client):
    first = client.post("/api/subscribe", json={"email": "Person@Example.com"})
    assert first.status_code == 200
    assert first.json()["subscription"]["email"] == "person@example.com"

    again = client.post("/api/subscribe", json={"email": "person@example.com"})
    assert again.status_code == 409
    assert again.json()["error"]["code"] == "conflict"


def test_subscribe_rejects_bad_email(client):
    resp = client.post("/api/subscribe", json={"email": "not-an-email"})
    assert resp.status_code == 400


def test_stats_counts_ideas_and_subscribers(client):
    client.post("/api/ideas", json={"body": "Use ChatGPT to plan meals for the week", "category": "Life"}, headers={"X-Session-Id": "s1"})
    client.post("/api/subscribe", json={"email": "a@example.com"})

    stats = client.get("/api/stats").json()

    assert stats == {"total_ideas": 1, "total_subscribers": 1, "category_counts": {"Life": 1}}


def test_subscription_relays_and_backs_up(memory_store, clock, tmp_path):
    seen = []
    backup_path = tmp_path / "subscriptions.csv"
    service = SubscriptionService(
        memory_store,
        newsletter=_newsletter(seen=seen),
        backup=CsvBackupSink(str(backup_path)),
        time_fn=clock,
    )

    service.subscribe(SubscribeRequest(email="x@example.com", source="footer", session_id="s9"))
    service.subscribe(SubscribeRequest(email="y@example.com"))

    assert [r.url.path for r in seen] == ["/v2/publications/pub_1/subscriptions"] * 2
    assert seen[0].headers["authorization"] == "Bearer key-123"
    with open(backup_path, newline="", encoding="utf-8") as fh:
        rows = list(csv.reader(fh))
    assert rows[0] == list(SUBSCRIPTION_HEADER)
    assert rows[1][:3] == ["x@example.com", "footer", "s9"]
    assert rows[2][:3] == ["y@example.com", "homepage", ""]


def test_newsletter_failure_does_not_undo_subscription(memory_store, clock):
    service = SubscriptionService(
        memory_store,
        newsletter=_newsletter(status_code=500, payload={"message": "upstream down"}),
        time_fn=clock,
    )

    subscription = service.subscribe(SubscribeRequest(email="x@example.com"))

    assert subscription.id == 1
    with memory_store.transaction() as tx:
        assert tx.get_subscription_by_email("x@example.com") is not None
    assert side_effect_failures_total.value({"task": "SubscriptionService.relay_to_newsletter"}) == 1

    with pytest.raises(ConflictError):
        service.subscribe(SubscribeRequest(email="X@example.com"))


def test_newsletter_already_subscribed_is_ok():
    client = _newsletter(status_code=400, payload={"message": "Email already subscribed"})
    assert client.subscribe("x@example.com") == "already_subscribed"


def test_newsletter_unconfigured_raises():
    with pytest.raises(NewsletterError):
        NewsletterClient(None, None).subscribe("x@example.com")
    assert NewsletterClient("k", None).configured is False


def test_relay_waits_until_background_tasks_run(memory_store, clock):
    seen = []
    service = SubscriptionService(memory_store, newsletter=_newsletter(seen=seen), time_fn=clock)
    tasks = BackgroundTasks()

    service.subscribe(SubscribeRequest(email="x@example.com"), tasks)

    assert seen == []
    for task in tasks.tasks:
        task.func(*task.args, **task.kwargs)
    assert len(seen) == 1

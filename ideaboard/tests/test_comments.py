import pytest

from ideaboard.core.errors import (
    ContentRejectedError,
    InvalidDirectionError,
    NotFoundError,
    PermissionError,
    RateLimitError,
)
from ideaboard.core.metrics import comment_votes_total
from ideaboard.features.comments.service import build_thread
from ideaboard.tests.mocks import make_ctx, submit_idea


@pytest.fixture
def idea(services):
    return submit_idea(services, "author")


def test_thread_shape_resolves_one_level(services, idea, clock):
    top = services.comments.post_comment(make_ctx("alice"), idea.id, "Great use of summaries")
    clock.advance(1)
    reply = services.comments.reply(make_ctx("bob"), top.id, "Agreed, saves hours")
    clock.advance(1)
    nested = services.comments.reply(make_ctx("alice"), reply.id, "Thanks!")
    clock.advance(1)
    second = services.comments.post_comment(make_ctx("carol"), idea.id, "Does it handle audio?")

    thread = services.comments.thread(idea.id)

    assert [node.id for node in thread] == [top.id, second.id]
    assert thread[0].reply_count == 1
    assert [r.id for r in thread[0].replies] == [reply.id]
    assert thread[0].replies[0].reply_count == 1
    assert thread[0].replies[0].replies == []
    assert nested.idea_id == idea.id
    assert nested.parent_id == reply.id
    assert thread[0].author.startswith("@u_")
    assert "alice" not in thread[0].author


def test_build_thread_empty():
    assert build_thread([]) == []


def test_comment_on_missing_idea(services):
    with pytest.raises(NotFoundError):
        services.comments.post_comment(make_ctx("alice"), 999, "hello there")


def test_reply_to_missing_comment(services):
    with pytest.raises(NotFoundError):
        services.comments.reply(make_ctx("alice"), 999, "hello there")


def test_comment_filter_rejects_banned_terms(services, idea):
    with pytest.raises(ContentRejectedError) as excinfo:
        services.comments.post_comment(make_ctx("alice"), idea.id, "what the hell")
    assert excinfo.value.reason == "Contains inappropriate content"


def test_comment_vote_is_single_shot(services, idea, clock):
    comment = services.comments.post_comment(make_ctx("alice"), idea.id, "Nice one")
    voter = make_ctx("bob", ip="203.0.113.7")

    first = services.comments.vote_comment(voter, comment.id, "up")
    clock.advance(5)
    again = services.comments.vote_comment(voter, comment.id, "down")

    assert first.new_tally == 1
    assert first.duplicate is False
    assert again.duplicate is True
    assert again.new_tally == 1
    assert comment_votes_total.value({"outcome": "duplicate"}) == 1


def test_comment_vote_cooldown_per_identity(services, idea, clock):
    a = services.comments.post_comment(make_ctx("alice"), idea.id, "First comment")
    b = services.comments.post_comment(make_ctx("carol"), idea.id, "Second comment")
    voter = make_ctx("bob", ip="203.0.113.7")

    services.comments.vote_comment(voter, a.id, "up")
    clock.advance(1)
    with pytest.raises(RateLimitError) as excinfo:
        services.comments.vote_comment(voter, b.id, "up")
    assert excinfo.value.remaining_seconds == pytest.approx(1.0)

    clock.advance(2)
    assert services.comments.vote_comment(voter, b.id, "up").new_tally == 1


def test_comment_vote_cooldown_per_ip(services, idea, clock):
    comment = services.comments.post_comment(make_ctx("alice"), idea.id, "First comment")

    services.comments.vote_comment(make_ctx("bob", ip="203.0.113.7"), comment.id, "up")
    with pytest.raises(RateLimitError):
        services.comments.vote_comment(make_ctx("dave", ip="203.0.113.7"), comment.id, "up")


def test_comment_vote_trusted_network_skips_cooldown(services, idea):
    a = services.comments.post_comment(make_ctx("alice"), idea.id, "First comment")
    b = services.comments.post_comment(make_ctx("carol"), idea.id, "Second comment")
    voter = make_ctx("bob", ip="10.99.0.8", peer="10.99.0.8")

    services.comments.vote_comment(voter, a.id, "up")
    assert services.comments.vote_comment(voter, b.id, "down").new_tally == -1


def test_comment_vote_forwarded_trusted_address_is_still_limited(services, idea):
    a = services.comments.post_comment(make_ctx("alice"), idea.id, "First comment")
    b = services.comments.post_comment(make_ctx("carol"), idea.id, "Second comment")
    voter = make_ctx("bob", ip="10.99.0.8", peer="203.0.113.99")

    services.comments.vote_comment(voter, a.id, "up")
    with pytest.raises(RateLimitError):
        services.comments.vote_comment(voter, b.id, "down")


def test_comment_vote_invalid_direction(services, idea):
    comment = services.comments.post_comment(make_ctx("alice"), idea.id, "First comment")
    with pytest.raises(InvalidDirectionError):
        services.comments.vote_comment(make_ctx("bob"), comment.id, "meh")


def test_delete_comment_cascades_to_replies(services, idea):
    top = services.comments.post_comment(make_ctx("alice"), idea.id, "Top level")
    reply = services.comments.reply(make_ctx("bob"), top.id, "A reply")
    deeper = services.comments.reply(make_ctx("carol"), reply.id, "Deeper reply")

    deleted = services.comments.delete_comment(make_ctx("alice"), top.id)

    assert deleted == sorted([top.id, reply.id, deeper.id])
    assert services.comments.thread(idea.id) == []


def test_only_author_or_admin_deletes(services, idea):
    top = services.comments.post_comment(make_ctx("alice"), idea.id, "Top level")

    with pytest.raises(PermissionError):
        services.comments.delete_comment(make_ctx("mallory"), top.id)
    assert services.comments.delete_comment(make_ctx("mallory"), top.id, is_admin=True) == [top.id]


def test_deleting_idea_removes_its_thread(services, idea):
    services.comments.post_comment(make_ctx("alice"), idea.id, "Top level")
    services.admin.delete_idea(idea.id)

    with pytest.raises(NotFoundError):
        services.comments.thread(idea.id)
    assert services.admin.list_comments() == []

from datetime import datetime, timezone

import pytest
from fastapi import BackgroundTasks

from ideaboard.features.integrations.grader import FALLBACK_SCORE, IdeaGrader, build_prompt, normalize_score
from ideaboard.features.ideas.service import IdeaService
from ideaboard.models.idea import Idea, IdeaCreateRequest
from ideaboard.tests.mocks import FakeGroq, make_ctx

IDEA = Idea(
    id=1,
    session_id="s1",
    body="Use ChatGPT to summarize meeting notes",
    title="Meeting notes",
    tools="ChatGPT",
    submitted_at=datetime(2025, 1, 1, tzinfo=timezone.utc),
)


@pytest.mark.parametrize(
    "raw,expected",
    [
        (7.34, 7.3),
        ("8.06", 8.1),
        (0, 1.0),
        (42, 10.0),
        ("not a number", 1.0),
        (None, 1.0),
        (float("nan"), 1.0),
    ],
)
def test_normalize_score(raw, expected):
    assert normalize_score(raw) == expected


def test_prompt_mentions_idea_fields():
    prompt = build_prompt(IDEA)
    assert "Meeting notes" in prompt
    assert "Use ChatGPT to summarize meeting notes" in prompt
    assert "Category: other" in prompt


def test_grade_parses_json_completion():
    fake = FakeGroq(score=8.25)
    grader = IdeaGrader(fake, model="test-model")

    assert grader.grade(IDEA) == 8.2
    call = fake.calls[0]
    assert call["model"] == "test-model"
    assert call["response_format"] == {"type": "json_object"}


def test_grade_falls_back_on_provider_error():
    grader = IdeaGrader(FakeGroq(error=RuntimeError("provider down")))
    assert grader.grade(IDEA) == FALLBACK_SCORE


def test_grade_falls_back_on_garbage_content():
    grader = IdeaGrader(FakeGroq(content="this is not json"))
    assert grader.grade(IDEA) == FALLBACK_SCORE


def test_disabled_grader_returns_fallback():
    grader = IdeaGrader(None)
    assert grader.enabled is False
    assert grader.grade(IDEA) == FALLBACK_SCORE


def test_submission_is_graded_after_commit(memory_store, flag_store, dispatcher, clock):
    service = IdeaService(
        memory_store,
        flag_store,
        dispatcher=dispatcher,
        grader=IdeaGrader(FakeGroq(score=6.5)),
        time_fn=clock,
    )

    idea = service.submit(make_ctx("author"), IdeaCreateRequest(body="Use Claude to outline blog posts"))

    with memory_store.transaction() as tx:
        assert tx.get_idea(idea.id).ai_grade == "6.5"


def test_grading_is_queued_behind_the_response(memory_store, flag_store, clock):
    service = IdeaService(memory_store, flag_store, grader=IdeaGrader(FakeGroq(score=8.0)), time_fn=clock)
    tasks = BackgroundTasks()

    idea = service.submit(make_ctx("author"), IdeaCreateRequest(body="Use Claude to outline blog posts"), tasks)

    with memory_store.transaction() as tx:
        assert tx.get_idea(idea.id).ai_grade is None
    for task in tasks.tasks:
        task.func(*task.args, **task.kwargs)
    with memory_store.transaction() as tx:
        assert tx.get_idea(idea.id).ai_grade == "8.0"

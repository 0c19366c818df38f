import pytest

from ideaboard.features.moderation.content_filter import (
    REASON_INAPPROPRIATE,
    REASON_OFF_TOPIC,
    REASON_SPAM,
    REASON_TOO_SHORT,
    check_comment,
    check_idea,
)


@pytest.mark.parametrize(
    "text",
    [
        "Use ChatGPT to summarize my meeting notes",
        "An AI-powered tool that tags my photos",
        "Let Claude write first drafts of release notes",
        "Prompt templates for onboarding emails",
    ],
)
def test_relevant_ideas_pass(text):
    verdict = check_idea(text)
    assert verdict.is_valid, verdict.reason
    assert verdict.is_test_submission is False


def test_banned_terms_match_whole_words_only():
    assert check_idea("Use AI to grade a class of essays").is_valid
    assert check_idea("Use AI to rank sports scores").reason == REASON_INAPPROPRIATE
    assert check_idea("AI bot that answers nsfw questions").reason == REASON_INAPPROPRIATE


def test_plural_of_banned_term_is_caught():
    assert check_idea("Use GPT to generate recipes daily").reason == REASON_INAPPROPRIATE


def test_too_short():
    assert check_idea("AI bot").reason == REASON_TOO_SHORT


def test_off_topic():
    assert check_idea("A better way to water the garden").reason == REASON_OFF_TOPIC


def test_spam_detection():
    assert check_idea("USE CHATGPT FOR EVERYTHING NOW").reason == REASON_SPAM
    assert check_idea("Use AI to do this!!!!!!!").reason == REASON_SPAM


def test_test_marker_skips_relevance():
    verdict = check_idea("#test does the form work")
    assert verdict.is_valid
    assert verdict.is_test_submission is True


def test_test_marker_still_screened_for_banned_terms():
    assert check_idea("#test damn this form").reason == REASON_INAPPROPRIATE


def test_comments_do_not_need_ai_keywords():
    assert check_comment("Love this, trying it tomorrow").is_valid
    assert check_comment("k").reason == REASON_TOO_SHORT
    assert check_comment("buy now at my shop").reason == REASON_INAPPROPRIATE

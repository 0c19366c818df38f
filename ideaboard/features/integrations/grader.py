"""AI grading of submitted ideas through Groq chat completions."""

from __future__ import annotations

import json
import logging
from typing import Optional

import groq

from ideaboard.core.config import Settings
from ideaboard.models.idea import Idea

logger = logging.getLogger("ideaboard.grader")

MIN_SCORE = 1.0
MAX_SCORE = 10.0
FALLBACK_SCORE = 5.0

SYSTEM_PROMPT = (
    "You are an expert evaluator of AI use cases. "
    "Rate ideas objectively and provide constructive feedback."
)


def build_prompt(idea: Idea) -> str:
    return (
        "Rate this AI use case idea on a scale of 1.0 to 10.0 (in 0.1 increments) based on:\n"
        "- Creativity and uniqueness (30%)\n"
        "- Practical value and feasibility (40%)\n"
        "- Clear explanation and specificity (30%)\n\n"
        "Idea Details:\n"
        f"Title: {idea.title or ''}\n"
        f"Description: {idea.body}\n"
        f"Category: {idea.category or 'other'}\n"
        f"Tools: {idea.tools or ''}\n\n"
        'Respond with only a JSON object in this format: { "score": 7.3, "reasoning": "Brief explanation" }'
    )


def normalize_score(raw) -> float:
    """Clamp to 1.0-10.0 and round to one decimal; unparseable means the floor."""
    try:
        score = float(raw)
    except (TypeError, ValueError):
        return MIN_SCORE
    if score != score or score < MIN_SCORE:
        return MIN_SCORE
    return round(min(score, MAX_SCORE), 1)


class IdeaGrader:
    def __init__(self, client=None, *, model: str = "llama-3.1-8b-instant"):
        self.client = client
        self.model = model

    @classmethod
    def from_settings(cls, cfg: Settings) -> "IdeaGrader":
        client = groq.Groq(api_key=cfg.GROQ_API_KEY) if cfg.GROQ_API_KEY else None
        return cls(client, model=cfg.GRADER_MODEL)

    @property
    def enabled(self) -> bool:
        return self.client is not None

    def grade(self, idea: Idea) -> float:
        if self.client is None:
            return FALLBACK_SCORE
        try:
            response = self.client.chat.completions.create(
                messages=[
                    {"role": "system", "content": SYSTEM_PROMPT},
                    {"role": "user", "content": build_prompt(idea)},
                ],
                model=self.model,
                temperature=0.2,
                max_tokens=200,
                response_format={"type": "json_object"},
            )
            content: Optional[str] = response.choices[0].message.content
            data = json.loads(content or '{"score": 5.0}')
            return normalize_score(data.get("score"))
        except Exception as exc:
            logger.warning("grader.failed", extra={"idea_id": idea.id, "error_code": type(exc).__name__})
            return FALLBACK_SCORE

"""
Study report generation.

Turns a finished session's performance record into a short Markdown report
via llm_service.chat_text(). The caller only relies on getting a string back
or a ReportGenerationError; the committed session summary is unaffected
either way.
"""
from __future__ import annotations

import logging
from collections.abc import Sequence

from novastudy.config import settings
from novastudy.models.flashcard import Quality
from novastudy.models.session import PerformanceEntry
from novastudy.services.llm_service import LLMUnavailableError, chat_text

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = (
    "You are a supportive study coach. You write concise study session reports "
    "for students based on how they rated their flashcards."
)

INSTRUCTIONS = (
    "Please generate a concise study session report that includes:\n"
    "1. A brief overall encouragement or summary statement.\n"
    "2. Specific areas or topics (based on the challenging card questions) the student should focus on more.\n"
    "3. Positive reinforcement for topics they seem to understand well (if any were reviewed positively).\n"
    "4. One or two practical study tips relevant to flashcard learning or the topics covered.\n"
    "5. Keep the tone supportive and constructive.\n"
    "Output the report as a well-formatted Markdown string."
)


class ReportGenerationError(Exception):
    pass


def _label(quality: int) -> str:
    return Quality(quality).name.capitalize()


def build_report_prompt(
    set_titles: Sequence[str],
    performance: Sequence[PerformanceEntry],
    grade_level: str | None = None,
    max_cards: int | None = None,
) -> str:
    max_cards = max_cards or settings.report_max_cards
    lines = [
        f'The student just finished a study session for the flashcard set titled "{", ".join(set_titles)}".'
    ]
    if grade_level:
        lines.append(f"The student is in {grade_level}.")
    lines.append("Here's a summary of their performance on some cards:")

    difficult = [p for p in performance if p.quality < Quality.GOOD]
    well_known = [p for p in performance if p.quality >= Quality.GOOD]

    if difficult:
        lines.append("")
        lines.append("Cards they found challenging (marked 'Again' or 'Hard'):")
        for entry in difficult[:max_cards]:
            lines.append(f'- Question: "{entry.question}" (Rated: {_label(entry.quality)})')
    if well_known and len(difficult) < max_cards:
        lines.append("")
        lines.append("Cards they recalled well (marked 'Good' or 'Easy'):")
        for entry in well_known[: max_cards - len(difficult)]:
            lines.append(f'- Question: "{entry.question}" (Rated: {_label(entry.quality)})')
    if not difficult and well_known:
        lines.append("")
        lines.append("Great job! The student recalled all reviewed cards well or easily.")

    return "\n".join(lines) + "\n\n" + INSTRUCTIONS


async def generate_study_report(
    set_titles: Sequence[str],
    performance: Sequence[PerformanceEntry],
    grade_level: str | None = None,
) -> str:
    if not performance:
        raise ReportGenerationError("No study data to generate a report.")
    prompt = build_report_prompt(set_titles, performance, grade_level)
    try:
        return await chat_text(
            SYSTEM_PROMPT, prompt, max_tokens=settings.report_max_tokens, temperature=0.6
        )
    except LLMUnavailableError as e:
        raise ReportGenerationError(f"AI report generation failed: {e}") from e

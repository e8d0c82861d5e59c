"""Utilities that build CodeCoach prompts and learning reports."""

from __future__ import annotations

import json
from typing import Iterable, Optional, Sequence

from .constants import COACHING_INSTRUCTIONS, CONTEXT_TRUNCATION_MARKER, SUMMARY_INSTRUCTIONS
from .learning_profile import LearningProfile, SessionSummary
from .models import Assignment, ChatTurn

NO_ASSIGNMENT = "(no active assignment)"
NO_CONTEXT = "(no code context available)"


def truncate_context(text: Optional[str], max_chars: int) -> str:
    """Cap editor context at ``max_chars``, appending a visible truncation marker."""
    value = text or ""
    if len(value) <= max_chars:
        return value
    return f"{value[:max_chars]}\n\n{CONTEXT_TRUNCATION_MARKER}"


def format_assignment_context(assignment: Optional[Assignment]) -> str:
    if assignment is None:
        return NO_ASSIGNMENT
    lines = [
        "ACTIVE ASSIGNMENT",
        f"Title: {assignment.title}",
        f"Objectives: {'; '.join(assignment.objectives)}",
        f"Required fundamentals: {', '.join(assignment.fundamentals)}",
    ]
    if assignment.tutorial_url:
        lines.append(f"Tutorial: {assignment.tutorial_url}")
    lines.extend(["", "Instructions:", assignment.instructions])
    return "\n".join(lines).strip()


def format_transcript(turns: Iterable[ChatTurn]) -> str:
    return "\n".join(f"{'User' if turn.role == 'user' else 'Coach'}: {turn.text}" for turn in turns)


def compose_coaching_prompt(
    user_text: str,
    *,
    history: Sequence[ChatTurn],
    assignment: Optional[Assignment],
    context_text: Optional[str],
    max_context_chars: int,
) -> str:
    """Assemble preamble, assignment block, history, editor context, and the new question."""
    history_text = format_transcript(history)
    safe_context = truncate_context(context_text, max_context_chars)
    sections = [
        COACHING_INSTRUCTIONS,
        format_assignment_context(assignment),
        f"Conversation so far:\n{history_text or '(none)'}",
        f"Relevant code context (from the user's editor):\n{safe_context or NO_CONTEXT}",
        f"User question:\n{user_text}",
    ]
    return "\n\n".join(sections).strip()


def compose_summary_prompt(transcript: Sequence[ChatTurn], profile: LearningProfile) -> str:
    profile_json = json.dumps(profile.to_wire(), indent=2)
    return (
        f"{SUMMARY_INSTRUCTIONS}\n\n"
        f"OVERALL PROFILE SO FAR:\n{profile_json}\n\n"
        f"SESSION TRANSCRIPT:\n{format_transcript(transcript)}"
    ).strip()


def _bullets(values: Sequence[str]) -> str:
    return "\n".join(f"- {value}" for value in values) or "- (none)"


def render_learning_summary(summary: SessionSummary, profile: LearningProfile) -> str:
    """Markdown report of this session's learning and the overall profile to date."""
    notes = profile.notes.strip() or "(none)"
    return (
        "# CodeCoach Learning Summary\n\n"
        "## Session Summary (this chat)\n"
        f"**Topics discussed**\n{_bullets(summary.topics_discussed)}\n\n"
        f"**Fundamentals mastered (evidence shown)**\n{_bullets(summary.fundamentals_mastered)}\n\n"
        f"**Fundamentals still developing**\n{_bullets(summary.fundamentals_developing)}\n\n"
        f"**Highlights**\n{_bullets(summary.highlights)}\n\n"
        "---\n\n"
        "## Overall Learning Summary (to date)\n"
        f"_Last updated: {profile.updated_at.isoformat()}_\n\n"
        f"**Topics covered**\n{_bullets(profile.topics)}\n\n"
        f"**Fundamentals mastered to date**\n{_bullets(profile.mastered)}\n\n"
        f"**Fundamentals still developing**\n{_bullets(profile.developing)}\n\n"
        f"**Notes**\n{notes}\n"
    )

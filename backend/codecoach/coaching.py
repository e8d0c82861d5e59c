"""Coaching service adapter: one prompt in, one reply out."""

from __future__ import annotations

import logging
from collections import deque
from typing import Deque, List, Optional, Sequence, Tuple

from .completion import CompletionClient
from .learning_profile import LearningProfile, ProfileUpdate, SessionSummary, parse_summary_output
from .models import Assignment, ChatTurn
from .prompt_utils import compose_coaching_prompt, compose_summary_prompt

logger = logging.getLogger(__name__)

DEFAULT_MAX_HISTORY_TURNS = 12
DEFAULT_MAX_CONTEXT_CHARS = 20_000


class PromptWindow:
    """Trailing user/coach turns used for prompting, capped at ``max_turns`` pairs.

    This is not the storage log: the trace buffer keeps every event for the
    remote store regardless of what falls out of the window.
    """

    def __init__(self, max_turns: int = DEFAULT_MAX_HISTORY_TURNS) -> None:
        self._turns: Deque[ChatTurn] = deque(maxlen=max_turns * 2)

    def __len__(self) -> int:
        return len(self._turns)

    def turns(self) -> List[ChatTurn]:
        return list(self._turns)

    def add(self, role: str, text: str) -> None:
        self._turns.append(ChatTurn(role=role, text=text))

    def clear(self) -> None:
        self._turns.clear()


class CoachingAdapter:
    def __init__(
        self,
        completion: CompletionClient,
        *,
        max_context_chars: int = DEFAULT_MAX_CONTEXT_CHARS,
    ) -> None:
        self._completion = completion
        self._max_context_chars = max_context_chars

    def build_prompt(
        self,
        user_text: str,
        *,
        history: Sequence[ChatTurn],
        assignment: Optional[Assignment],
        context_text: Optional[str],
    ) -> str:
        return compose_coaching_prompt(
            user_text,
            history=history,
            assignment=assignment,
            context_text=context_text,
            max_context_chars=self._max_context_chars,
        )

    async def reply(
        self,
        user_text: str,
        *,
        history: Sequence[ChatTurn],
        assignment: Optional[Assignment],
        context_text: Optional[str] = None,
    ) -> str:
        """Return the coach reply; completion failures propagate unchanged and are not retried."""
        prompt = self.build_prompt(user_text, history=history, assignment=assignment, context_text=context_text)
        logger.debug("Coaching prompt built (chars=%s, history_turns=%s)", len(prompt), len(history))
        return await self._completion.complete(prompt)

    async def summarize(
        self,
        transcript: Sequence[ChatTurn],
        profile: LearningProfile,
    ) -> Tuple[ProfileUpdate, SessionSummary]:
        """Ask the model for a structured session summary and parse it.

        Raises ``StructuredOutputError`` when the reply is not the requested JSON.
        """
        raw = await self._completion.complete(compose_summary_prompt(transcript, profile))
        return parse_summary_output(raw)


__all__ = [
    "CoachingAdapter",
    "DEFAULT_MAX_CONTEXT_CHARS",
    "DEFAULT_MAX_HISTORY_TURNS",
    "PromptWindow",
]

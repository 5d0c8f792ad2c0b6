"""
Advance heuristics: decide when the interview moves past the current question.

The state machine only asks `should_advance`; swapping the policy changes the
pacing without touching sequencing, chapter or completion logic.
"""

from dataclasses import dataclass, field
from typing import Tuple

TRANSITION_CUES: Tuple[str, ...] = (
    "next question",
    "move on",
    "let's talk about",
    "speaking of",
    "i'm curious",
    "tell me about",
)


class AdvancePolicy:
    def should_advance(self, message_count: int, assistant_reply: str) -> bool:
        raise NotImplementedError


@dataclass
class MessageCountPolicy(AdvancePolicy):
    """Advance after `max_messages` messages on a question, or after
    `cue_messages` when the latest assistant reply signals a transition.

    message_count covers every turn tagged with the current question,
    both user and assistant.
    """

    max_messages: int = 3
    cue_messages: int = 2
    cues: Tuple[str, ...] = field(default=TRANSITION_CUES)

    def has_transition_cue(self, reply: str) -> bool:
        lowered = (reply or "").lower().replace("’", "'")
        return any(cue in lowered for cue in self.cues)

    def should_advance(self, message_count: int, assistant_reply: str) -> bool:
        if message_count >= self.max_messages:
            return True
        return message_count >= self.cue_messages and self.has_transition_cue(assistant_reply)


class AlwaysAdvancePolicy(AdvancePolicy):
    """One answer per question (questionnaire mode)."""

    def should_advance(self, message_count: int, assistant_reply: str) -> bool:
        return True

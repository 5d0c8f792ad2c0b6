"""Domain errors shared by the intake services.

Only input-contract violations are meant to reach a caller. Recoverable
conditions inside a component (LLM timeouts, unparseable model output) are
handled where they occur and surface as degraded results instead.
"""


class IntakeError(Exception):
    """Base class for intake domain errors."""


class InvalidInputError(IntakeError):
    """A required field is missing or malformed (user id, message text, answer id)."""


class ConversationNotFoundError(IntakeError):
    def __init__(self, conversation_id):
        self.conversation_id = conversation_id
        super().__init__(f"Conversation not found: {conversation_id}")


class ConversationClosedError(IntakeError):
    """The conversation is completed or abandoned and accepts no further turns."""

    def __init__(self, conversation_id, status: str):
        self.conversation_id = conversation_id
        self.status = status
        super().__init__(f"Conversation {conversation_id} is {status}")


class UnknownQuestionError(IntakeError):
    def __init__(self, question_id):
        self.question_id = question_id
        super().__init__(f"Unknown question: {question_id}")


class ScorerConfigError(IntakeError):
    """A scorer configuration is inconsistent or unknown."""


class LLMCallError(Exception):
    """Raised by the language model client for any failed or timed-out call."""

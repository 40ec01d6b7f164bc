class IntakeError(Exception):
    """Base class for errors raised by the screener engine."""


class UnknownScreenerError(IntakeError):
    """Screener type (or respondent role) is not one the service administers.

    Raised before a conversation row is written.
    """


class ConversationNotFound(IntakeError):
    pass


class InvalidTransition(IntakeError):
    def __init__(self, current: str, target: str):
        super().__init__(f"cannot move conversation from {current} to {target}")
        self.current = current
        self.target = target


class LLMError(IntakeError):
    """Any failure talking to the language model: transport, status or payload shape."""

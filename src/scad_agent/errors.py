from typing import Literal

FailureKind = Literal["validation", "compilation"]


class ScadAgentError(Exception):
    """Base class for errors raised by the generation workflow."""


class ConversationNotFoundError(ScadAgentError):
    def __init__(self, conversation_id: str) -> None:
        super().__init__(f"Conversation not found: {conversation_id}")
        self.conversation_id = conversation_id


class EmptyHistoryError(ScadAgentError):
    def __init__(self) -> None:
        super().__init__("No messages provided")


class CompilationError(ScadAgentError):
    """OpenSCAD rejected the source. ``diagnostic`` holds the raw compiler output."""

    def __init__(self, diagnostic: str) -> None:
        super().__init__(diagnostic)
        self.diagnostic = diagnostic


class GenerationFailure(ScadAgentError):
    """A recoverable failure of one generation attempt.

    The feedback describing it has already been written to the conversation
    by the time this is raised.
    """

    def __init__(self, kind: FailureKind, message: str) -> None:
        super().__init__(message)
        self.kind = kind
        self.message = message


class RetryExhaustedError(ScadAgentError):
    def __init__(self, attempts: int, last_error: BaseException | None) -> None:
        detail = str(last_error) if last_error is not None else "unknown error"
        super().__init__(f"Operation failed after {attempts} attempts: {detail}")
        self.attempts = attempts
        self.last_error = last_error


class NoGeneratedCodeAvailableError(ScadAgentError):
    def __init__(self) -> None:
        super().__init__("No generated code available to finalize")


class NoPendingPreviewError(ScadAgentError):
    def __init__(self) -> None:
        super().__init__("No pending preview available to reject")

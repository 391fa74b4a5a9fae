"""Domain events emitted while a model is generated.

``CodeEvent`` is the code-generation stream as seen by the workflow;
``WorkflowEvent`` carries lifecycle notifications (attempt started, compiling,
preview ready, ...). The transport layer maps both onto SSE events.
"""

from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any, Literal

from .agent.completion import (
    CompletionDone,
    CompletionError,
    ProviderEvent,
    ReasoningDelta,
    TextDelta,
    TokenUsage,
    ToolCallDelta,
    ToolCallEnd,
    ToolCallStart,
)


@dataclass(frozen=True)
class CodeDelta:
    delta: str


@dataclass(frozen=True)
class CodeReasoningDelta:
    delta: str


@dataclass(frozen=True)
class CodeToolCallStart:
    tool_call_id: str
    tool_name: str


@dataclass(frozen=True)
class CodeToolCallDelta:
    tool_call_id: str
    arguments_delta: str


@dataclass(frozen=True)
class CodeToolCallEnd:
    tool_call_id: str
    arguments: str


@dataclass(frozen=True)
class CodeDone:
    code: str
    usage: TokenUsage | None = None


@dataclass(frozen=True)
class CodeError:
    error: str
    code: str | None = None


CodeEvent = (
    CodeDelta
    | CodeReasoningDelta
    | CodeToolCallStart
    | CodeToolCallDelta
    | CodeToolCallEnd
    | CodeDone
    | CodeError
)

WorkflowEventType = Literal[
    "conversation_created",
    "generation_start",
    "compiling",
    "preview_ready",
    "validating",
    "validation_failed",
    "outputting",
    "completed",
    "error",
]


@dataclass
class WorkflowEvent:
    """A lifecycle notification from the generation workflow."""

    type: WorkflowEventType
    data: dict[str, Any] = field(default_factory=dict)


StreamItem = CodeEvent | WorkflowEvent
EmitFn = Callable[[StreamItem], None]


def to_code_event(event: ProviderEvent, final_code: str = "") -> CodeEvent:
    """Map a provider event onto the code-generation stream.

    ``final_code`` is the cleaned artifact and is only used for ``CompletionDone``.
    """
    if isinstance(event, TextDelta):
        return CodeDelta(delta=event.delta)
    if isinstance(event, ReasoningDelta):
        return CodeReasoningDelta(delta=event.delta)
    if isinstance(event, ToolCallStart):
        return CodeToolCallStart(tool_call_id=event.tool_call_id, tool_name=event.tool_name)
    if isinstance(event, ToolCallDelta):
        return CodeToolCallDelta(
            tool_call_id=event.tool_call_id, arguments_delta=event.arguments_delta
        )
    if isinstance(event, ToolCallEnd):
        return CodeToolCallEnd(tool_call_id=event.tool_call_id, arguments=event.arguments)
    if isinstance(event, CompletionDone):
        return CodeDone(code=final_code, usage=event.usage)
    if isinstance(event, CompletionError):
        return CodeError(error=event.error, code=event.code)
    raise TypeError(f"Unmapped provider event: {type(event).__name__}")

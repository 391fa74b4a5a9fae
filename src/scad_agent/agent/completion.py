"""Provider-facing types for the completion capability.

A completion client streams a closed set of provider events to a handler and
must deliver exactly one terminal event (``CompletionDone`` or
``CompletionError``) per call.
"""

from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Literal, Protocol

ModelTier = Literal["small", "medium", "large"]
ReasoningEffort = Literal["none", "low", "medium", "high"]


@dataclass(frozen=True)
class InputMessage:
    role: Literal["user", "assistant"]
    content: str


@dataclass(frozen=True)
class TokenUsage:
    input_tokens: int = 0
    output_tokens: int = 0


@dataclass(frozen=True)
class CompletionRequest:
    system_prompt: str
    messages: list[InputMessage]
    model_tier: ModelTier = "medium"
    reasoning_effort: ReasoningEffort = "none"


@dataclass(frozen=True)
class VisionRequest:
    prompt: str
    image_base64: str
    media_type: str = "image/png"
    messages: list[InputMessage] = field(default_factory=list)
    model_tier: ModelTier = "medium"


@dataclass(frozen=True)
class TextDelta:
    delta: str


@dataclass(frozen=True)
class ReasoningDelta:
    delta: str


@dataclass(frozen=True)
class ToolCallStart:
    tool_call_id: str
    tool_name: str


@dataclass(frozen=True)
class ToolCallDelta:
    tool_call_id: str
    arguments_delta: str


@dataclass(frozen=True)
class ToolCallEnd:
    tool_call_id: str
    arguments: str


@dataclass(frozen=True)
class CompletionDone:
    usage: TokenUsage | None = None


@dataclass(frozen=True)
class CompletionError:
    error: str
    code: str | None = None


ProviderEvent = (
    TextDelta
    | ReasoningDelta
    | ToolCallStart
    | ToolCallDelta
    | ToolCallEnd
    | CompletionDone
    | CompletionError
)

ProviderEventHandler = Callable[[ProviderEvent], None]


class CompletionClient(Protocol):
    async def stream_completion(
        self, request: CompletionRequest, on_event: ProviderEventHandler
    ) -> None: ...

    async def vision_completion(self, request: VisionRequest) -> str | dict: ...

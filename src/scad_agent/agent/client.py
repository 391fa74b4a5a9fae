import logging
import time
from collections.abc import AsyncIterator

from claude_agent_sdk import (
    AssistantMessage,
    ClaudeAgentOptions,
    ClaudeSDKClient,
    ResultMessage,
    StreamEvent,
    TextBlock,
)

from ..config import MODEL_LARGE, MODEL_MEDIUM, MODEL_SMALL
from .completion import (
    CompletionDone,
    CompletionError,
    CompletionRequest,
    InputMessage,
    ModelTier,
    ProviderEvent,
    ProviderEventHandler,
    ReasoningDelta,
    TextDelta,
    TokenUsage,
    ToolCallDelta,
    ToolCallEnd,
    ToolCallStart,
    VisionRequest,
)

logger = logging.getLogger(__name__)

MODEL_TIERS: dict[str, str] = {
    "small": MODEL_SMALL,
    "medium": MODEL_MEDIUM,
    "large": MODEL_LARGE,
}

THINKING_BUDGETS: dict[str, int | None] = {
    "none": None,
    "low": 1024,
    "medium": 4096,
    "high": 16000,
}


def render_transcript(messages: list[InputMessage]) -> str:
    """Flatten a message sequence into a single prompt for the SDK."""
    if len(messages) == 1 and messages[0].role == "user":
        return messages[0].content
    parts = []
    for msg in messages:
        role = msg.role.capitalize()
        parts.append(f"{role}: {msg.content}")
    return "\n\n".join(parts)


class StreamTranslator:
    """Turns raw Anthropic streaming events into provider events.

    Tool-call ids are tracked per content-block index so that deltas and the
    closing ``content_block_stop`` can be attributed to the right call.
    """

    def __init__(self) -> None:
        self._tool_ids: dict[int, str] = {}
        self._tool_args: dict[int, list[str]] = {}
        self.input_tokens = 0
        self.output_tokens = 0

    def translate(self, raw: dict) -> list[ProviderEvent]:
        event_type = raw.get("type")
        index = raw.get("index", 0)

        if event_type == "message_start":
            usage = raw.get("message", {}).get("usage") or {}
            self.input_tokens += usage.get("input_tokens", 0)
            return []

        if event_type == "message_delta":
            usage = raw.get("usage") or {}
            self.output_tokens = max(self.output_tokens, usage.get("output_tokens", 0))
            return []

        if event_type == "content_block_start":
            block = raw.get("content_block", {})
            if block.get("type") == "tool_use":
                tool_id = block.get("id", f"tool-{index}")
                self._tool_ids[index] = tool_id
                self._tool_args[index] = []
                return [ToolCallStart(tool_call_id=tool_id, tool_name=block.get("name", ""))]
            return []

        if event_type == "content_block_delta":
            delta = raw.get("delta", {})
            delta_type = delta.get("type")
            if delta_type == "text_delta" and delta.get("text"):
                return [TextDelta(delta=delta["text"])]
            if delta_type == "thinking_delta" and delta.get("thinking"):
                return [ReasoningDelta(delta=delta["thinking"])]
            if delta_type == "input_json_delta" and index in self._tool_ids:
                partial = delta.get("partial_json", "")
                self._tool_args[index].append(partial)
                return [ToolCallDelta(tool_call_id=self._tool_ids[index], arguments_delta=partial)]
            return []

        if event_type == "content_block_stop" and index in self._tool_ids:
            tool_id = self._tool_ids.pop(index)
            arguments = "".join(self._tool_args.pop(index))
            return [ToolCallEnd(tool_call_id=tool_id, arguments=arguments)]

        return []

    def usage(self) -> TokenUsage | None:
        if not self.input_tokens and not self.output_tokens:
            return None
        return TokenUsage(input_tokens=self.input_tokens, output_tokens=self.output_tokens)


def _usage_from_result(usage: dict | None) -> TokenUsage | None:
    if not usage:
        return None
    return TokenUsage(
        input_tokens=int(usage.get("input_tokens", 0)),
        output_tokens=int(usage.get("output_tokens", 0)),
    )


class ClaudeCompletionClient:
    """Streams completions through the Claude Agent SDK without any tools."""

    def __init__(self, model_tiers: dict[str, str] | None = None) -> None:
        self._model_tiers = model_tiers or MODEL_TIERS

    def _model_for(self, tier: ModelTier) -> str:
        return self._model_tiers.get(tier, self._model_tiers["medium"])

    async def stream_completion(
        self, request: CompletionRequest, on_event: ProviderEventHandler
    ) -> None:
        options = ClaudeAgentOptions(
            system_prompt=request.system_prompt,
            model=self._model_for(request.model_tier),
            allowed_tools=[],
            max_turns=1,
            include_partial_messages=True,
            max_thinking_tokens=THINKING_BUDGETS.get(request.reasoning_effort),
        )
        prompt = render_transcript(request.messages)
        translator = StreamTranslator()
        result_usage: TokenUsage | None = None

        logger.debug(
            "Starting streaming completion: %d messages, prompt %d chars",
            len(request.messages),
            len(prompt),
        )
        t0 = time.time()

        try:
            async with ClaudeSDKClient(options=options) as client:
                await client.query(prompt)
                async for message in client.receive_response():
                    if isinstance(message, StreamEvent):
                        for event in translator.translate(message.event):
                            on_event(event)
                    elif isinstance(message, ResultMessage):
                        if message.is_error:
                            on_event(
                                CompletionError(
                                    error=message.result or "Completion failed",
                                    code=message.subtype,
                                )
                            )
                            return
                        result_usage = _usage_from_result(message.usage)
        except Exception as e:
            logger.exception("Error during streaming completion")
            on_event(CompletionError(error=str(e), code=type(e).__name__))
            return

        logger.debug("Streaming completion finished in %dms", round((time.time() - t0) * 1000))
        on_event(CompletionDone(usage=result_usage or translator.usage()))

    async def vision_completion(self, request: VisionRequest) -> str:
        options = ClaudeAgentOptions(
            model=self._model_for(request.model_tier),
            allowed_tools=[],
            max_turns=1,
        )
        text = request.prompt
        if request.messages:
            text = f"{render_transcript(request.messages)}\n\n{request.prompt}"

        async def user_turn() -> AsyncIterator[dict]:
            yield {
                "type": "user",
                "message": {
                    "role": "user",
                    "content": [
                        {
                            "type": "image",
                            "source": {
                                "type": "base64",
                                "media_type": request.media_type,
                                "data": request.image_base64,
                            },
                        },
                        {"type": "text", "text": text},
                    ],
                },
                "parent_tool_use_id": None,
                "session_id": "vision",
            }

        parts: list[str] = []
        async with ClaudeSDKClient(options=options) as client:
            await client.query(user_turn())
            async for message in client.receive_response():
                if isinstance(message, AssistantMessage):
                    for block in message.content:
                        if isinstance(block, TextBlock) and block.text:
                            parts.append(block.text)
        return "".join(parts)

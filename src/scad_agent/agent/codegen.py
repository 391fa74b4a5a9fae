import logging
import re
from collections.abc import Callable

from ..errors import EmptyHistoryError
from ..events import CodeEvent, to_code_event
from .completion import (
    CompletionClient,
    CompletionDone,
    CompletionRequest,
    InputMessage,
    ProviderEvent,
    TextDelta,
)
from .prompts import CODE_GENERATION_SYSTEM_PROMPT

logger = logging.getLogger(__name__)

_FENCE_OPENER = re.compile(r"^```(?:[\w+-]*[ \t]*(?:\n|$))?")
_FENCE_CLOSER = re.compile(r"\n?```$")


def _strip_fence(code: str) -> str:
    cleaned = code.strip()
    if cleaned.startswith("```"):
        cleaned = _FENCE_OPENER.sub("", cleaned, count=1)
    if cleaned.endswith("```"):
        cleaned = _FENCE_CLOSER.sub("", cleaned, count=1)
    return cleaned.strip()


def clean_code(code: str) -> str:
    """Strip surrounding markdown fences (```openscad or plain ```) from generated source.

    Strips until nothing changes, so cleaning already-clean code is a no-op.
    """
    cleaned = code.strip()
    while True:
        stripped = _strip_fence(cleaned)
        if stripped == cleaned:
            return cleaned
        cleaned = stripped


def build_input_messages(history: list[dict]) -> list[InputMessage]:
    """Build the model input from conversation history.

    User turns carry their text; assistant turns carry the generated source
    rather than their prose, and are skipped when they have none.
    """
    if not history:
        logger.error("No messages provided for conversation input")
        raise EmptyHistoryError()

    inputs = []
    for msg in history:
        if msg["role"] == "user":
            inputs.append(InputMessage(role="user", content=msg["content"]))
        elif msg["role"] == "assistant" and msg.get("source_code"):
            inputs.append(InputMessage(role="assistant", content=msg["source_code"]))
    return inputs


class CodeGenerationAgent:
    """Generates OpenSCAD source from conversation history with streaming."""

    def __init__(
        self, client: CompletionClient, system_prompt: str = CODE_GENERATION_SYSTEM_PROMPT
    ) -> None:
        self._client = client
        self._system_prompt = system_prompt

    @property
    def system_prompt(self) -> str:
        return self._system_prompt

    async def generate_code(
        self, history: list[dict], on_event: Callable[[CodeEvent], None]
    ) -> str:
        """Stream code for ``history`` to ``on_event`` and return the cleaned source.

        A provider error is forwarded as a ``CodeError`` and whatever text was
        accumulated is still returned; the caller decides whether it is usable.
        """
        inputs = build_input_messages(history)
        logger.info(
            "Starting streaming code generation: %d messages, %d inputs",
            len(history),
            len(inputs),
        )

        accumulated: list[str] = []

        def handle(event: ProviderEvent) -> None:
            if isinstance(event, TextDelta):
                accumulated.append(event.delta)
            final_code = clean_code("".join(accumulated)) if isinstance(event, CompletionDone) else ""
            on_event(to_code_event(event, final_code))

        await self._client.stream_completion(
            CompletionRequest(
                system_prompt=self._system_prompt,
                messages=inputs,
                model_tier="medium",
                reasoning_effort="none",
            ),
            handle,
        )

        code = clean_code("".join(accumulated))
        logger.info(
            "Streaming code generation completed: %d chunks, %d chars",
            len(accumulated),
            len(code),
        )
        return code

import asyncio
import json
import logging
from collections.abc import AsyncIterator, Awaitable, Callable
from dataclasses import asdict

from ..events import (
    CodeDelta,
    CodeDone,
    CodeError,
    CodeEvent,
    CodeReasoningDelta,
    CodeToolCallDelta,
    CodeToolCallEnd,
    CodeToolCallStart,
    EmitFn,
    StreamItem,
    WorkflowEvent,
)

logger = logging.getLogger(__name__)

# Events after which the stream is closed
TERMINAL_EVENTS = frozenset({"completed", "error"})

# Keeps workflow tasks alive after the client disconnects
_background_tasks: set[asyncio.Task] = set()


def format_sse_event(event_type: str, data: dict) -> dict:
    """Format an SSE event for sse-starlette's EventSourceResponse."""
    return {"event": event_type, "data": json.dumps(data, default=str)}


def sse_error(error: str) -> dict:
    return format_sse_event("error", {"error": error})


def code_event_to_sse(event: CodeEvent) -> dict:
    if isinstance(event, CodeDelta):
        return format_sse_event("code_delta", {"chunk": event.delta})
    if isinstance(event, CodeReasoningDelta):
        return format_sse_event("reasoning_delta", {"chunk": event.delta})
    if isinstance(event, CodeToolCallStart):
        return format_sse_event(
            "tool_call_start",
            {"tool_call_id": event.tool_call_id, "tool_name": event.tool_name},
        )
    if isinstance(event, CodeToolCallDelta):
        return format_sse_event(
            "tool_call_delta",
            {"tool_call_id": event.tool_call_id, "arguments_delta": event.arguments_delta},
        )
    if isinstance(event, CodeToolCallEnd):
        return format_sse_event(
            "tool_call_end",
            {"tool_call_id": event.tool_call_id, "arguments": event.arguments},
        )
    if isinstance(event, CodeDone):
        usage = asdict(event.usage) if event.usage else None
        return format_sse_event("code_complete", {"code": event.code, "usage": usage})
    if isinstance(event, CodeError):
        # Non-terminal: the attempt's compile step decides whether it failed
        return format_sse_event("generation_error", {"error": event.error, "code": event.code})
    raise TypeError(f"Unmapped code event: {type(event).__name__}")


def to_sse(item: StreamItem) -> dict:
    if isinstance(item, WorkflowEvent):
        return format_sse_event(item.type, item.data)
    return code_event_to_sse(item)


async def stream_workflow(operation: Callable[[EmitFn], Awaitable[object]]) -> AsyncIterator[dict]:
    """Run a workflow operation in the background and yield its events as SSE dicts.

    The operation pushes events into a queue as it runs. Any exception it raises
    becomes a single terminal ``error`` event. If the consumer goes away, the
    operation is left to finish on its own.
    """
    queue: asyncio.Queue[StreamItem | None] = asyncio.Queue()

    async def run() -> None:
        try:
            await operation(queue.put_nowait)
        except Exception as e:
            logger.exception("Error in model workflow")
            queue.put_nowait(WorkflowEvent("error", {"error": str(e)}))
        finally:
            queue.put_nowait(None)

    task = asyncio.create_task(run())
    _background_tasks.add(task)
    task.add_done_callback(_background_tasks.discard)

    while True:
        item = await queue.get()
        if item is None:
            break
        yield to_sse(item)
        if isinstance(item, WorkflowEvent) and item.type in TERMINAL_EVENTS:
            break

    await task

import json
import typing

import pytest

from scad_agent.agent.client import StreamTranslator, render_transcript
from scad_agent.agent.completion import (
    CompletionDone,
    CompletionError,
    InputMessage,
    ProviderEvent,
    ReasoningDelta,
    TextDelta,
    TokenUsage,
    ToolCallDelta,
    ToolCallEnd,
    ToolCallStart,
)
from scad_agent.api.sse import code_event_to_sse, to_sse
from scad_agent.events import CodeDone, CodeEvent, WorkflowEvent, to_code_event

PROVIDER_SAMPLES = {
    TextDelta: TextDelta(delta="cube("),
    ReasoningDelta: ReasoningDelta(delta="hmm"),
    ToolCallStart: ToolCallStart(tool_call_id="t1", tool_name="lookup"),
    ToolCallDelta: ToolCallDelta(tool_call_id="t1", arguments_delta="{"),
    ToolCallEnd: ToolCallEnd(tool_call_id="t1", arguments="{}"),
    CompletionDone: CompletionDone(usage=TokenUsage(input_tokens=3, output_tokens=4)),
    CompletionError: CompletionError(error="overloaded", code="529"),
}


def test_every_provider_event_maps_to_a_code_event():
    assert set(typing.get_args(ProviderEvent)) == set(PROVIDER_SAMPLES)
    code_types = set(typing.get_args(CodeEvent))
    mapped = {type(to_code_event(sample, "cube(1);")) for sample in PROVIDER_SAMPLES.values()}
    assert mapped == code_types


def test_every_code_event_maps_to_a_named_sse_event():
    names = set()
    for sample in PROVIDER_SAMPLES.values():
        sse = code_event_to_sse(to_code_event(sample, "cube(1);"))
        json.loads(sse["data"])
        names.add(sse["event"])
    assert names == {
        "code_delta",
        "reasoning_delta",
        "tool_call_start",
        "tool_call_delta",
        "tool_call_end",
        "code_complete",
        "generation_error",
    }


def test_done_carries_cleaned_code_and_usage():
    event = to_code_event(PROVIDER_SAMPLES[CompletionDone], "cube(1);")
    assert event == CodeDone(code="cube(1);", usage=TokenUsage(3, 4))
    data = json.loads(code_event_to_sse(event)["data"])
    assert data == {"code": "cube(1);", "usage": {"input_tokens": 3, "output_tokens": 4}}


def test_unmapped_events_are_rejected():
    with pytest.raises(TypeError):
        to_code_event(object())
    with pytest.raises(TypeError):
        code_event_to_sse(object())


def test_workflow_event_to_sse():
    sse = to_sse(WorkflowEvent("compiling", {"message": "Rendering preview..."}))
    assert sse["event"] == "compiling"
    assert json.loads(sse["data"]) == {"message": "Rendering preview..."}


def test_stream_translator_text_and_thinking():
    translator = StreamTranslator()
    raw_events = [
        {"type": "message_start", "message": {"usage": {"input_tokens": 12}}},
        {"type": "content_block_start", "index": 0, "content_block": {"type": "thinking"}},
        {"type": "content_block_delta", "index": 0, "delta": {"type": "thinking_delta", "thinking": "plan"}},
        {"type": "content_block_stop", "index": 0},
        {"type": "content_block_start", "index": 1, "content_block": {"type": "text"}},
        {"type": "content_block_delta", "index": 1, "delta": {"type": "text_delta", "text": "cube(1);"}},
        {"type": "content_block_stop", "index": 1},
        {"type": "message_delta", "usage": {"output_tokens": 7}},
    ]

    events = [e for raw in raw_events for e in translator.translate(raw)]

    assert events == [ReasoningDelta(delta="plan"), TextDelta(delta="cube(1);")]
    assert translator.usage() == TokenUsage(input_tokens=12, output_tokens=7)


def test_stream_translator_tool_calls():
    translator = StreamTranslator()
    raw_events = [
        {
            "type": "content_block_start",
            "index": 2,
            "content_block": {"type": "tool_use", "id": "toolu_1", "name": "measure"},
        },
        {"type": "content_block_delta", "index": 2, "delta": {"type": "input_json_delta", "partial_json": '{"a"'}},
        {"type": "content_block_delta", "index": 2, "delta": {"type": "input_json_delta", "partial_json": ": 1}"}},
        {"type": "content_block_stop", "index": 2},
    ]

    events = [e for raw in raw_events for e in translator.translate(raw)]

    assert events == [
        ToolCallStart(tool_call_id="toolu_1", tool_name="measure"),
        ToolCallDelta(tool_call_id="toolu_1", arguments_delta='{"a"'),
        ToolCallDelta(tool_call_id="toolu_1", arguments_delta=": 1}"),
        ToolCallEnd(tool_call_id="toolu_1", arguments='{"a": 1}'),
    ]
    assert translator.usage() is None


def test_render_transcript():
    single = [InputMessage(role="user", content="a cube")]
    assert render_transcript(single) == "a cube"

    multi = [
        InputMessage(role="user", content="a cube"),
        InputMessage(role="assistant", content="cube(1);"),
        InputMessage(role="user", content="bigger"),
    ]
    assert render_transcript(multi) == "User: a cube\n\nAssistant: cube(1);\n\nUser: bigger"

import pytest
from fakes import DIAGNOSTIC, FakeCompiler, FakeCompletionClient

from scad_agent.agent.codegen import CodeGenerationAgent
from scad_agent.errors import GenerationFailure, RetryExhaustedError
from scad_agent.events import CodeDone, WorkflowEvent
from scad_agent.runners.feedback import RetryFeedbackRecorder
from scad_agent.runners.generation import GenerationRetryRunner, attempt_status
from scad_agent.runners.retry import AttemptContext


def _runner(store, client, compiler, max_attempts):
    return GenerationRetryRunner(
        store,
        CodeGenerationAgent(client),
        compiler,
        RetryFeedbackRecorder(store),
        max_attempts=max_attempts,
    )


async def _conversation_with_prompt(store, prompt="a 20mm cube"):
    conv = await store.create_conversation()
    await store.add_user_message(conv["id"], prompt)
    return conv["id"]


@pytest.mark.asyncio
async def test_success_after_failures_records_one_feedback_pair_per_failure(
    sqlite_store, storage
):
    client = FakeCompletionClient(scripts=[["cube(1"], ["cube(2"], ["cube(20);"]])
    compiler = FakeCompiler(storage, failures=2)
    cid = await _conversation_with_prompt(sqlite_store)
    events = []

    result = await _runner(sqlite_store, client, compiler, 3).run(
        cid, "a 20mm cube", "stl", events.append
    )

    assert result.source_code == "cube(20);"
    assert result.preview.preview_path.is_file()

    messages = await sqlite_store.get_messages(cid)
    # prompt, then (failed assistant, feedback user) x2; the success is persisted by the caller
    assert [m["role"] for m in messages] == ["user", "assistant", "user", "assistant", "user"]
    failed = [m for m in messages if m["role"] == "assistant"]
    assert [m["source_code"] for m in failed] == ["cube(1", "cube(2"]
    assert all(m["preview_url"] is None for m in failed)
    feedback = [m for m in messages if m["is_feedback"]]
    assert len(feedback) == 2
    assert all("line 12, column 4" in m["content"] for m in feedback)

    starts = [e for e in events if isinstance(e, WorkflowEvent) and e.type == "generation_start"]
    assert [e.data["attempt"] for e in starts] == [1, 2, 3]
    assert starts[0].data["message"] == "Generating OpenSCAD code..."
    assert starts[1].data["message"] == "Compile failed, retrying (2/3)..."


@pytest.mark.asyncio
async def test_each_attempt_rereads_history(sqlite_store, storage):
    client = FakeCompletionClient(scripts=[["cube(1"], ["cube(20);"]])
    compiler = FakeCompiler(storage, failures=1)
    cid = await _conversation_with_prompt(sqlite_store)

    await _runner(sqlite_store, client, compiler, 2).run(cid, "a 20mm cube", "stl", lambda e: None)

    first, second = client.requests
    assert len(first.messages) == 1
    assert [m.role for m in second.messages] == ["user", "assistant", "user"]
    assert second.messages[1].content == "cube(1"
    assert "failed to compile" in second.messages[2].content


@pytest.mark.asyncio
async def test_always_failing_compile_exhausts_budget(sqlite_store, storage):
    client = FakeCompletionClient(scripts=[["cube(1"], ["cube(2"]])
    compiler = FakeCompiler(storage, failures=99)
    cid = await _conversation_with_prompt(sqlite_store)

    with pytest.raises(RetryExhaustedError) as exc_info:
        await _runner(sqlite_store, client, compiler, 2).run(
            cid, "a 20mm cube", "stl", lambda e: None
        )

    message = str(exc_info.value)
    assert "2" in message
    assert DIAGNOSTIC in message
    assert isinstance(exc_info.value.last_error, GenerationFailure)
    assert exc_info.value.last_error.kind == "compilation"

    messages = await sqlite_store.get_messages(cid)
    assert len([m for m in messages if m["role"] == "assistant" and m["source_code"]]) == 2
    assert len([m for m in messages if m["is_feedback"]]) == 2
    assert len(compiler.previewed) == 2


@pytest.mark.asyncio
async def test_code_events_precede_compile(sqlite_store, storage):
    client = FakeCompletionClient(scripts=[["cube(", "20);"]])
    compiler = FakeCompiler(storage)
    cid = await _conversation_with_prompt(sqlite_store)
    events = []

    await _runner(sqlite_store, client, compiler, 2).run(cid, "a 20mm cube", "stl", events.append)

    done_index = next(i for i, e in enumerate(events) if isinstance(e, CodeDone))
    compiling_index = next(
        i for i, e in enumerate(events) if isinstance(e, WorkflowEvent) and e.type == "compiling"
    )
    assert done_index < compiling_index
    assert events[done_index].code == "cube(20);"


def test_attempt_status_messages():
    assert attempt_status(AttemptContext(1, 2)) == "Generating OpenSCAD code..."
    assert (
        attempt_status(AttemptContext(1, 2), GenerationFailure("validation", "fix it"))
        == "Preview rejected, regenerating OpenSCAD code..."
    )
    compile_failure = GenerationFailure("compilation", "syntax error")
    assert (
        attempt_status(AttemptContext(2, 3, compile_failure))
        == "Compile failed, retrying (2/3)..."
    )
    validation_failure = GenerationFailure("validation", "too thin")
    assert (
        attempt_status(AttemptContext(2, 3, validation_failure))
        == "Preview validation failed, retrying (2/3)..."
    )

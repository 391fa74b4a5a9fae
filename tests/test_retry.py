import pytest

from scad_agent.errors import RetryExhaustedError
from scad_agent.runners.retry import RetryRunner


class Flaky:
    """Fails the first ``failures`` calls, then returns the attempt number."""

    def __init__(self, failures: int) -> None:
        self.failures = failures
        self.contexts = []

    async def __call__(self, context):
        self.contexts.append(context)
        if len(self.contexts) <= self.failures:
            raise ValueError(f"boom {context.attempt}")
        return context.attempt


@pytest.mark.asyncio
async def test_first_success_runs_once():
    op = Flaky(failures=0)
    result = await RetryRunner[int]().run(op, max_attempts=3)
    assert result == 1
    assert len(op.contexts) == 1
    assert op.contexts[0].last_failure is None


@pytest.mark.asyncio
async def test_succeeds_on_kth_attempt():
    op = Flaky(failures=2)
    result = await RetryRunner[int]().run(op, max_attempts=3)

    assert result == 3
    assert [c.attempt for c in op.contexts] == [1, 2, 3]
    assert all(c.max_attempts == 3 for c in op.contexts)
    assert op.contexts[0].last_failure is None
    assert str(op.contexts[1].last_failure) == "boom 1"
    assert str(op.contexts[2].last_failure) == "boom 2"


@pytest.mark.asyncio
async def test_exhaustion_raises_with_count_and_last_error():
    op = Flaky(failures=10)
    with pytest.raises(RetryExhaustedError) as exc_info:
        await RetryRunner[int]().run(op, max_attempts=2)

    assert len(op.contexts) == 2
    assert exc_info.value.attempts == 2
    assert str(exc_info.value) == "Operation failed after 2 attempts: boom 2"
    assert isinstance(exc_info.value.__cause__, ValueError)


@pytest.mark.asyncio
@pytest.mark.parametrize("max_attempts", [0, -5])
async def test_max_attempts_below_one_still_runs_once(max_attempts):
    op = Flaky(failures=10)
    with pytest.raises(RetryExhaustedError) as exc_info:
        await RetryRunner[int]().run(op, max_attempts=max_attempts)
    assert len(op.contexts) == 1
    assert exc_info.value.attempts == 1


@pytest.mark.asyncio
async def test_callbacks_see_each_attempt():
    started, failed = [], []
    op = Flaky(failures=1)

    await RetryRunner[int]().run(
        op,
        max_attempts=3,
        on_attempt_start=started.append,
        on_attempt_failed=failed.append,
    )

    assert [c.attempt for c in started] == [1, 2]
    assert len(failed) == 1
    assert failed[0].attempt == 1
    assert str(failed[0].last_failure) == "boom 1"

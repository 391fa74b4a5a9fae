"""The generate → compile → feedback loop behind every preview."""

import logging
from dataclasses import dataclass

from ..agent.codegen import CodeGenerationAgent
from ..compiler.openscad import OpenSCADCompiler, PreviewResult, parse_error
from ..config import MAX_COMPILE_RETRIES
from ..data.sqlite_store import SQLiteStore
from ..errors import CompilationError, GenerationFailure
from ..events import CodeDelta, CodeEvent, EmitFn, WorkflowEvent
from .feedback import RetryFeedbackRecorder
from .retry import AttemptContext, RetryRunner

logger = logging.getLogger(__name__)


@dataclass
class GeneratedPreview:
    source_code: str
    preview: PreviewResult


def attempt_status(context: AttemptContext, prior_failure: GenerationFailure | None = None) -> str:
    """Human-readable status for the start of an attempt."""
    if context.attempt == 1:
        if prior_failure is not None and prior_failure.kind == "validation":
            return "Preview rejected, regenerating OpenSCAD code..."
        return "Generating OpenSCAD code..."

    failure = context.last_failure
    progress = f"({context.attempt}/{context.max_attempts})"
    if isinstance(failure, GenerationFailure) and failure.kind == "validation":
        return f"Preview validation failed, retrying {progress}..."
    return f"Compile failed, retrying {progress}..."


class GenerationRetryRunner:
    """Generates code and compiles a preview, retrying with compiler feedback.

    History is re-read from the store at the start of every attempt so the
    feedback written by a failed attempt is what the next attempt sees.
    """

    def __init__(
        self,
        store: SQLiteStore,
        codegen: CodeGenerationAgent,
        compiler: OpenSCADCompiler,
        feedback: RetryFeedbackRecorder,
        max_attempts: int = MAX_COMPILE_RETRIES,
    ) -> None:
        self._store = store
        self._codegen = codegen
        self._compiler = compiler
        self._feedback = feedback
        self._max_attempts = max(1, max_attempts)
        self._retry = RetryRunner[GeneratedPreview]()

    async def run(
        self,
        conversation_id: str,
        prompt: str,
        fmt: str,
        emit: EmitFn,
        prior_failure: GenerationFailure | None = None,
    ) -> GeneratedPreview:
        def on_attempt_start(context: AttemptContext) -> None:
            emit(
                WorkflowEvent(
                    "generation_start",
                    {
                        "message": attempt_status(context, prior_failure),
                        "attempt": context.attempt,
                        "max_attempts": context.max_attempts,
                    },
                )
            )

        async def attempt(context: AttemptContext) -> GeneratedPreview:
            return await self._attempt(conversation_id, fmt, emit, context)

        logger.info(
            "Generating preview for conversation %s (%d chars prompt, max %d attempts)",
            conversation_id,
            len(prompt),
            self._max_attempts,
        )
        return await self._retry.run(
            attempt, max_attempts=self._max_attempts, on_attempt_start=on_attempt_start
        )

    async def _attempt(
        self, conversation_id: str, fmt: str, emit: EmitFn, context: AttemptContext
    ) -> GeneratedPreview:
        history = await self._store.get_messages(conversation_id)
        logger.debug(
            "Retrieved %d messages for conversation %s", len(history), conversation_id
        )

        chunk_count = 0

        def forward(event: CodeEvent) -> None:
            nonlocal chunk_count
            if isinstance(event, CodeDelta):
                chunk_count += 1
            emit(event)

        source_code = await self._codegen.generate_code(history, forward)
        logger.info(
            "Code generation completed: attempt %d, %d chars, %d chunks",
            context.attempt,
            len(source_code),
            chunk_count,
        )

        emit(WorkflowEvent("compiling", {"message": "Rendering preview..."}))

        try:
            preview = await self._compiler.preview_model(source_code)
        except CompilationError as e:
            parsed = parse_error(e.diagnostic)
            logger.warning(
                "OpenSCAD compilation failed for conversation %s (attempt %d): %s",
                conversation_id,
                context.attempt,
                parsed.message[:200],
            )
            await self._feedback.record_compilation_failure(
                conversation_id, source_code, fmt, parsed
            )
            raise GenerationFailure("compilation", parsed.message) from e

        return GeneratedPreview(source_code=source_code, preview=preview)

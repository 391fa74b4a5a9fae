import asyncio
import logging
from pathlib import Path

from ..agent.review import PreviewReviewAgent
from ..compiler.openscad import OpenSCADCompiler
from ..compiler.storage import FileStorage, file_id_from_url
from ..data.sqlite_store import SQLiteStore
from ..errors import (
    ConversationNotFoundError,
    GenerationFailure,
    NoGeneratedCodeAvailableError,
    NoPendingPreviewError,
)
from ..events import EmitFn, WorkflowEvent
from ..runners.feedback import RetryFeedbackRecorder
from ..runners.generation import GenerationRetryRunner

logger = logging.getLogger(__name__)


def is_pending_approval(message: dict) -> bool:
    return (
        message["role"] == "assistant"
        and bool(message.get("source_code"))
        and bool(message.get("preview_url"))
        and not message.get("artifact_url")
    )


def latest_source_message(messages: list[dict]) -> dict | None:
    for msg in reversed(messages):
        if msg["role"] == "assistant" and msg.get("source_code"):
            return msg
    return None


def latest_pending_preview(messages: list[dict]) -> dict | None:
    for msg in reversed(messages):
        if is_pending_approval(msg):
            return msg
    return None


def latest_prompt(messages: list[dict]) -> str:
    """The most recent prompt the user actually typed (feedback messages excluded)."""
    for msg in reversed(messages):
        if msg["role"] == "user" and not msg.get("is_feedback"):
            return msg["content"]
    return ""


class ModelWorkflow:
    """Entry points for generating, approving and rejecting model previews.

    ``generate`` ends at a pending-approval preview. Approval (``finalize``)
    and rejection (``reject_and_retry``) are separate calls made by the client.
    """

    def __init__(
        self,
        store: SQLiteStore,
        storage: FileStorage,
        compiler: OpenSCADCompiler,
        generation: GenerationRetryRunner,
        review: PreviewReviewAgent,
        feedback: RetryFeedbackRecorder,
    ) -> None:
        self._store = store
        self._storage = storage
        self._compiler = compiler
        self._generation = generation
        self._review = review
        self._feedback = feedback

    async def _require_conversation(self, conversation_id: str) -> dict:
        conv = await self._store.get_conversation(conversation_id)
        if conv is None:
            raise ConversationNotFoundError(conversation_id)
        return conv

    async def generate(
        self, prompt: str, fmt: str, conversation_id: str | None, emit: EmitFn
    ) -> dict:
        """Append ``prompt`` and run the retry loop up to a pending-approval preview."""
        is_new = conversation_id is None
        if conversation_id is None:
            conv = await self._store.create_conversation()
            conversation_id = conv["id"]
            logger.info("Conversation created: %s", conversation_id)
            emit(WorkflowEvent("conversation_created", {"conversation_id": conversation_id}))
        else:
            await self._require_conversation(conversation_id)

        await self._store.add_user_message(conversation_id, prompt)
        return await self._generate_preview(conversation_id, prompt, fmt, emit, is_new)

    async def _generate_preview(
        self,
        conversation_id: str,
        prompt: str,
        fmt: str,
        emit: EmitFn,
        is_new: bool,
        prior_failure: GenerationFailure | None = None,
    ) -> dict:
        result = await self._generation.run(
            conversation_id, prompt, fmt, emit, prior_failure=prior_failure
        )
        verb = "Generated" if is_new else "Updated"
        message = await self._store.add_assistant_message(
            conversation_id,
            f"{verb} preview for: {prompt}",
            source_code=result.source_code,
            fmt=fmt,
            preview_url=result.preview.preview_url,
        )
        logger.info(
            "Preview ready for conversation %s, awaiting approval: %s",
            conversation_id,
            result.preview.preview_url,
        )
        emit(
            WorkflowEvent(
                "preview_ready",
                {
                    "message": "Preview ready - awaiting approval",
                    "conversation_id": conversation_id,
                    "message_id": message["id"],
                    "file_id": result.preview.file_id,
                    "preview_url": result.preview.preview_url,
                    "source_code": result.source_code,
                },
            )
        )
        return message

    async def finalize(self, conversation_id: str, fmt: str, emit: EmitFn) -> dict:
        """Export the final model from the latest generated source."""
        conv = await self._require_conversation(conversation_id)
        source_msg = latest_source_message(conv["messages"])
        if source_msg is None:
            raise NoGeneratedCodeAvailableError()

        file_id, source_path = await asyncio.to_thread(
            self._storage.save_source, source_msg["source_code"]
        )
        emit(WorkflowEvent("outputting", {"message": "Generating final model..."}))
        output = await self._compiler.generate_output(source_path, file_id, fmt)

        message = await self._store.add_assistant_message(
            conversation_id,
            "Generated final model.",
            source_code=source_msg["source_code"],
            artifact_url=output.artifact_url,
            fmt=fmt,
            preview_url=source_msg.get("preview_url"),
        )
        logger.info("Final model ready for conversation %s: %s", conversation_id, output.artifact_url)

        updated = await self._store.get_conversation(conversation_id)
        emit(
            WorkflowEvent(
                "completed",
                {"conversation": updated, "message": message, "artifact_url": output.artifact_url},
            )
        )
        return message

    async def reject_and_retry(self, conversation_id: str, fmt: str, emit: EmitFn) -> dict:
        """Analyze a rejected preview and regenerate against the original prompt."""
        conv = await self._require_conversation(conversation_id)
        pending = latest_pending_preview(conv["messages"])
        if pending is None:
            raise NoPendingPreviewError()

        prompt = latest_prompt(conv["messages"])
        preview_url = pending["preview_url"]
        preview_path = self._storage.preview_path(file_id_from_url(preview_url))

        emit(
            WorkflowEvent(
                "validating",
                {"message": "Analyzing rejected preview...", "preview_url": preview_url},
            )
        )
        analysis = await self._review.analyze_rejection(
            Path(preview_path), prompt, pending["source_code"]
        )
        logger.warning(
            "Preview rejected for conversation %s: %s", conversation_id, analysis.plan[:200]
        )
        emit(
            WorkflowEvent(
                "validation_failed",
                {
                    "message": "Preview rejected - regenerating with improvements.",
                    "reason": analysis.plan,
                    "issues": analysis.issues,
                    "preview_url": preview_url,
                },
            )
        )

        await self._feedback.record_validation_failure(
            conversation_id, pending["source_code"], fmt, analysis.issues, analysis.plan
        )
        return await self._generate_preview(
            conversation_id,
            prompt,
            fmt,
            emit,
            is_new=False,
            prior_failure=GenerationFailure("validation", analysis.plan),
        )

    def get_model_file(self, file_id: str, fmt: str) -> Path | None:
        path = self._storage.output_path(file_id, fmt)
        if not self._storage.file_exists(path):
            logger.warning("Model file not found: %s.%s", file_id, fmt)
            return None
        return path

    def get_preview_file(self, file_id: str) -> Path | None:
        path = self._storage.preview_path(file_id)
        if not self._storage.file_exists(path):
            return None
        return path

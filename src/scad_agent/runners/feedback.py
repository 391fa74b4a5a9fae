import logging

from ..agent.prompts import COMPILATION_FEEDBACK_TEMPLATE, VALIDATION_FEEDBACK_TEMPLATE
from ..compiler.openscad import ParsedDiagnostic
from ..data.sqlite_store import SQLiteStore

logger = logging.getLogger(__name__)


class RetryFeedbackRecorder:
    """Writes a failed attempt and the instruction to fix it into the conversation.

    Each record is a pair: an assistant message holding the failed source (no
    preview, no artifact) and a synthetic user message steering the next attempt.
    """

    def __init__(self, store: SQLiteStore) -> None:
        self._store = store

    async def record_compilation_failure(
        self,
        conversation_id: str,
        source_code: str,
        fmt: str,
        diagnostic: ParsedDiagnostic,
    ) -> None:
        location = diagnostic.location()
        await self._record(
            conversation_id,
            "Generated OpenSCAD code (failed to compile).",
            source_code,
            fmt,
            COMPILATION_FEEDBACK_TEMPLATE.format(
                error=diagnostic.message,
                location=f" (at {location})" if location else "",
            ),
        )

    async def record_validation_failure(
        self,
        conversation_id: str,
        source_code: str,
        fmt: str,
        issues: list[str],
        plan: str,
    ) -> None:
        await self._record(
            conversation_id,
            "Generated OpenSCAD code (preview rejected).",
            source_code,
            fmt,
            VALIDATION_FEEDBACK_TEMPLATE.format(
                issues="; ".join(issues) if issues else "none listed",
                plan=plan,
            ),
        )

    async def _record(
        self, conversation_id: str, summary: str, source_code: str, fmt: str, feedback: str
    ) -> None:
        await self._store.add_assistant_message(
            conversation_id, summary, source_code=source_code, fmt=fmt
        )
        await self._store.add_user_message(conversation_id, feedback, is_feedback=True)
        logger.debug("Recorded retry feedback for conversation %s", conversation_id)

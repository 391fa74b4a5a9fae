import asyncio
import base64
import json
import logging
from dataclasses import dataclass, field
from pathlib import Path

from .codegen import clean_code
from .completion import CompletionClient, VisionRequest
from .prompts import DEFAULT_REMEDIATION_PLAN, build_rejection_review_prompt

logger = logging.getLogger(__name__)


@dataclass
class RejectionAnalysis:
    """What a vision review found wrong with a rejected preview."""

    plan: str
    issues: list[str] = field(default_factory=list)


def parse_rejection_analysis(raw: str | dict) -> RejectionAnalysis:
    """Parse the review's JSON reply (or an already-structured one).

    Falls back to the whole response as the plan when it is not JSON, and to a
    generic remediation plan when the plan comes back empty.
    """
    if isinstance(raw, dict):
        data = raw
    else:
        text = clean_code(raw or "")
        try:
            data = json.loads(text)
        except ValueError:
            return RejectionAnalysis(plan=text or DEFAULT_REMEDIATION_PLAN)
        if not isinstance(data, dict):
            return RejectionAnalysis(plan=text or DEFAULT_REMEDIATION_PLAN)

    raw_issues = data.get("issues") or []
    if isinstance(raw_issues, str):
        raw_issues = [raw_issues]
    issues = [str(i).strip() for i in raw_issues if str(i).strip()]

    plan = data.get("plan")
    plan = plan.strip() if isinstance(plan, str) else ""
    return RejectionAnalysis(plan=plan or DEFAULT_REMEDIATION_PLAN, issues=issues)


class PreviewReviewAgent:
    """Asks a vision-capable model why a rendered preview was rejected."""

    def __init__(self, client: CompletionClient) -> None:
        self._client = client

    async def analyze_rejection(
        self, preview_path: Path, prompt: str, source_code: str
    ) -> RejectionAnalysis:
        try:
            image_bytes = await asyncio.to_thread(Path(preview_path).read_bytes)
        except OSError:
            logger.exception("Could not read rejected preview %s", preview_path)
            return RejectionAnalysis(plan=DEFAULT_REMEDIATION_PLAN)

        request = VisionRequest(
            prompt=build_rejection_review_prompt(prompt, source_code),
            image_base64=base64.b64encode(image_bytes).decode("ascii"),
            media_type="image/png",
            model_tier="medium",
        )

        try:
            raw = await self._client.vision_completion(request)
        except Exception:
            logger.exception("Vision review of rejected preview failed")
            return RejectionAnalysis(plan=DEFAULT_REMEDIATION_PLAN)

        analysis = parse_rejection_analysis(raw)
        logger.info("Preview rejection analyzed: %d issues", len(analysis.issues))
        return analysis

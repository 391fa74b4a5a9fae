import json

import pytest
from fakes import FakeCompletionClient

from scad_agent.agent.prompts import DEFAULT_REMEDIATION_PLAN
from scad_agent.agent.review import PreviewReviewAgent, parse_rejection_analysis


def test_parse_json_reply():
    analysis = parse_rejection_analysis(
        json.dumps({"issues": ["too short", "no fillet"], "plan": "Double the height."})
    )
    assert analysis.issues == ["too short", "no fillet"]
    assert analysis.plan == "Double the height."


def test_parse_fenced_json_reply():
    raw = '```json\n{"issues": ["hole missing"], "plan": "Subtract a cylinder."}\n```'
    analysis = parse_rejection_analysis(raw)
    assert analysis.issues == ["hole missing"]
    assert analysis.plan == "Subtract a cylinder."


def test_parse_structured_reply():
    analysis = parse_rejection_analysis({"issues": "single issue", "plan": "Fix it."})
    assert analysis.issues == ["single issue"]
    assert analysis.plan == "Fix it."


def test_non_json_reply_becomes_the_plan():
    analysis = parse_rejection_analysis("Make the walls thicker.")
    assert analysis.plan == "Make the walls thicker."
    assert analysis.issues == []


@pytest.mark.parametrize(
    "raw",
    [
        "",
        json.dumps({"issues": ["x"], "plan": ""}),
        json.dumps({"issues": ["x"]}),
        json.dumps({"issues": ["x"], "plan": 3}),
    ],
)
def test_empty_plan_falls_back_to_default(raw):
    assert parse_rejection_analysis(raw).plan == DEFAULT_REMEDIATION_PLAN


@pytest.mark.asyncio
async def test_vision_failure_falls_back_to_default_plan(tmp_path):
    preview = tmp_path / "preview.png"
    preview.write_bytes(b"png")
    client = FakeCompletionClient(vision_response=RuntimeError("vision offline"))

    analysis = await PreviewReviewAgent(client).analyze_rejection(preview, "a cube", "cube(1);")

    assert analysis.plan == DEFAULT_REMEDIATION_PLAN
    assert analysis.issues == []
    assert client.vision_requests[0].media_type == "image/png"

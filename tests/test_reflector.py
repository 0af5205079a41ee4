# tests/test_reflector.py
import json

import pytest
from conftest import make_bullet, make_playbook

from ace_playbook.core.metrics import get_tracker
from ace_playbook.core.schema import ReflectionResult, RunContext
from ace_playbook.llm import LLMTimeoutError, MockLLMClient
from ace_playbook.reflector import (
    create_stored_reflection,
    format_bullets_reference,
    get_harmful_bullets,
    get_helpful_bullets,
    parse_reflection_result,
    reflect,
)
from ace_playbook.reflector.prompts import format_reflector_prompt


@pytest.fixture
def context():
    return RunContext(
        task="Fix the failing login test",
        trace="ran pytest; edited auth.py; ran pytest again",
        final_answer="Fixed the token expiry check",
        outcome="success",
        bullets_used=["strat-1", "trou-1"],
        session_id="sess-1",
    )


def reflection_json(**overrides) -> str:
    data = {
        "reasoning": "The agent followed the test-first rule.",
        "errorIdentification": "None",
        "rootCauseAnalysis": "Expiry compared in local time.",
        "correctApproach": "Compare timestamps in UTC.",
        "keyInsight": "Normalize times to UTC before comparing.",
        "bulletTags": [
            {"id": "strat-1", "tag": "helpful"},
            {"id": "trou-1", "tag": "neutral"},
        ],
    }
    data.update(overrides)
    return json.dumps(data)


class TestParseReflection:
    def test_well_formed(self):
        result = parse_reflection_result(reflection_json(), ["strat-1", "trou-1"])
        assert result.key_insight == "Normalize times to UTC before comparing."
        assert [(t.id, t.tag) for t in result.bullet_tags] == [
            ("strat-1", "helpful"),
            ("trou-1", "neutral"),
        ]

    def test_code_fenced(self):
        raw = "```json\n" + reflection_json() + "\n```"
        result = parse_reflection_result(raw, ["strat-1", "trou-1"])
        assert result.root_cause_analysis == "Expiry compared in local time."

    def test_snake_case_keys(self):
        raw = json.dumps({"key_insight": "Use UTC", "bullet_tags": [{"id": "strat-1", "tag": "harmful"}]})
        result = parse_reflection_result(raw, ["strat-1"])
        assert result.key_insight == "Use UTC"
        assert get_harmful_bullets(result) == ["strat-1"]

    def test_unparseable_returns_fallback(self):
        raw = "I think the agent did fine, no JSON here."
        result = parse_reflection_result(raw, ["strat-1"])
        assert result.error_identification == "Parsing error"
        assert result.reasoning == "Failed to parse reflector response"
        assert result.root_cause_analysis == raw
        assert result.bullet_tags == []

    def test_fallback_truncates_raw_text(self):
        raw = "x" * 1200
        assert len(parse_reflection_result(raw, []).root_cause_analysis) == 500

    def test_non_object_json_returns_fallback(self):
        assert parse_reflection_result("[1, 2]", []).error_identification == "Parsing error"

    def test_tags_limited_to_reported_ids(self):
        raw = reflection_json(
            bulletTags=[
                {"id": "strat-1", "tag": "helpful"},
                {"id": "invented-9", "tag": "harmful"},
            ]
        )
        result = parse_reflection_result(raw, ["strat-1"])
        assert [t.id for t in result.bullet_tags] == ["strat-1"]

    def test_invalid_tag_values_dropped(self):
        raw = reflection_json(bulletTags=[{"id": "strat-1", "tag": "great"}, {"id": "trou-1"}])
        assert parse_reflection_result(raw, ["strat-1", "trou-1"]).bullet_tags == []

    def test_first_tag_per_id_wins(self):
        raw = reflection_json(
            bulletTags=[{"id": "strat-1", "tag": "helpful"}, {"id": "strat-1", "tag": "harmful"}]
        )
        result = parse_reflection_result(raw, ["strat-1"])
        assert [(t.id, t.tag) for t in result.bullet_tags] == [("strat-1", "helpful")]

    def test_attempts_are_tracked(self):
        parse_reflection_result(reflection_json(), ["strat-1"])
        parse_reflection_result("garbage", ["strat-1"])
        metrics = get_tracker().get_metrics("reflection")
        assert metrics.total_attempts == 2
        assert metrics.json_decode_errors == 1


class TestReflect:
    def test_single_call_with_system_and_user(self, context):
        client = MockLLMClient(responses=[reflection_json()])
        result = reflect(context, "", client, model="test-model", timeout=5)

        assert len(client.calls) == 1
        call = client.calls[0]
        assert [m.role for m in call["messages"]] == ["system", "user"]
        assert call["model"] == "test-model"
        assert call["timeout"] == 5
        assert "Fix the failing login test" in call["messages"][1].content
        assert get_helpful_bullets(result) == ["strat-1"]

    def test_malformed_output_degrades(self, context):
        client = MockLLMClient(responses=["not json at all"])
        result = reflect(context, "", client)
        assert result.error_identification == "Parsing error"

    def test_service_errors_propagate(self, context):
        client = MockLLMClient(error=LLMTimeoutError("timed out"))
        with pytest.raises(LLMTimeoutError):
            reflect(context, "", client)

    def test_default_mock_reply_parses(self, context):
        result = reflect(context, "", MockLLMClient())
        assert result.reasoning == "Mock reflection."
        assert result.bullet_tags == []


def test_prompt_includes_bullet_reference(context):
    playbook = make_playbook(
        make_bullet("strat-1", content="Write a failing test first"),
        make_bullet("strat-2", content="Unrelated advice about docs"),
    )
    reference = format_bullets_reference(playbook, context.bullets_used)
    assert reference == "[strat-1] Write a failing test first"

    _, user = format_reflector_prompt(context, reference)
    assert "## Bullet Content Reference" in user
    assert "strat-1, trou-1" in user


def test_prompt_without_bullets(context):
    context.bullets_used = []
    _, user = format_reflector_prompt(context)
    assert "None reported" in user
    assert "Bullet Content Reference" not in user


def test_create_stored_reflection(context):
    result = ReflectionResult(key_insight="Use UTC")
    stored = create_stored_reflection("proj", context, result)
    assert stored.id.startswith("ref-")
    assert stored.project_id == "proj"
    assert stored.session_id == "sess-1"
    assert stored.bullets_used == ["strat-1", "trou-1"]
    assert stored.reflection == result

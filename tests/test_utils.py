import json
import logging

from ace_playbook.utils import (
    generate_reflection_id,
    log_event,
    normalize_words,
    setup_logging,
    strip_code_fences,
)


def test_strip_code_fences_json_block():
    assert strip_code_fences('```json\n{"a": 1}\n```') == '{"a": 1}'


def test_strip_code_fences_plain_block():
    assert strip_code_fences('```\n{"a": 1}\n```\n') == '{"a": 1}'


def test_strip_code_fences_single_line():
    assert strip_code_fences('```json{"a": 1}```') == '{"a": 1}'


def test_strip_code_fences_no_fence():
    assert strip_code_fences('  {"a": 1}  ') == '{"a": 1}'


def test_normalize_words():
    assert normalize_words("Run `pytest -x`, THEN push!") == ["run", "pytest", "x", "then", "push"]
    assert normalize_words("") == []


def test_generate_reflection_id():
    ref_id = generate_reflection_id()
    assert ref_id.startswith("ref-")
    parts = ref_id.split("-")
    assert len(parts) == 4
    assert len(parts[3]) == 8
    assert generate_reflection_id() != ref_id


def test_setup_logging_json(capsys):
    setup_logging(level="DEBUG", json_format=True)
    logging.getLogger("ace_playbook.test").info("hello")
    line = capsys.readouterr().err.strip().splitlines()[-1]
    data = json.loads(line)
    assert data["message"] == "hello"
    assert data["level"] == "INFO"
    assert data["logger"] == "ace_playbook.test"


def test_log_event_fields_merged(capsys):
    setup_logging(level="INFO", json_format=True)
    log_event("cycle_completed", {"project_id": "abc", "applied": 2})
    data = json.loads(capsys.readouterr().err.strip().splitlines()[-1])
    assert data["event_type"] == "cycle_completed"
    assert data["project_id"] == "abc"
    assert data["applied"] == 2


def test_setup_logging_text(capsys):
    setup_logging(level="WARNING", json_format=False)
    logger = logging.getLogger("ace_playbook.test")
    logger.info("hidden")
    logger.warning("shown")
    err = capsys.readouterr().err
    assert "hidden" not in err
    assert "WARNING - shown" in err

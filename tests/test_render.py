"""Tests for playbook rendering and used-bullet extraction."""

from datetime import timedelta

import pytest
from conftest import NOW, make_bullet, make_playbook

from ace_playbook.core.render import (
    PLAYBOOK_BEGIN,
    PLAYBOOK_END,
    UNLIMITED_BUDGET,
    build_prompt_addition,
    estimate_tokens,
    extract_used_bullets,
    format_bullet,
    needs_refinement,
    render_playbook,
    usage_instructions,
)


def test_estimate_tokens_rounds_up():
    assert estimate_tokens("") == 0
    assert estimate_tokens("abcd") == 1
    assert estimate_tokens("abcde") == 2


def test_format_bullet():
    bullet = make_bullet("strat-1", content="Always pin versions", helpful_count=2, harmful_count=1)
    assert format_bullet(bullet) == "[strat-1] helpful=2 harmful=1 ::\nAlways pin versions"


def test_render_wraps_in_markers(sample_playbook):
    result = render_playbook(sample_playbook, now=NOW)
    lines = result.text.split("\n")
    assert lines[0] == PLAYBOOK_BEGIN
    assert lines[-1] == PLAYBOOK_END
    assert result.bullets_truncated == 0
    assert set(result.bullets_included) == {"strat-001", "strat-002", "trou-001"}


def test_sections_in_canonical_order_regardless_of_score():
    playbook = make_playbook(
        make_bullet("doma-1", section="domain_glossary", helpful_count=10),
        make_bullet("strat-1", helpful_count=0),
    )
    text = render_playbook(playbook, now=NOW).text
    assert text.index("[Section: Strategies and Hard Rules]") < text.index(
        "[Section: Domain Glossary]"
    )


def test_higher_score_renders_first_within_section():
    playbook = make_playbook(
        make_bullet("strat-low", harmful_count=1),
        make_bullet("strat-high", helpful_count=2),
    )
    result = render_playbook(playbook, now=NOW)
    assert result.bullets_included == ["strat-high", "strat-low"]
    assert result.text.index("[strat-high]") < result.text.index("[strat-low]")


def test_recent_use_breaks_ties():
    playbook = make_playbook(
        make_bullet("strat-old"),
        make_bullet("strat-recent", last_used_at=NOW - timedelta(hours=1)),
    )
    assert render_playbook(playbook, now=NOW).bullets_included == ["strat-recent", "strat-old"]


def test_inactive_bullets_never_render():
    playbook = make_playbook(make_bullet("strat-1"), make_bullet("strat-2", active=False))
    result = render_playbook(playbook, now=NOW)
    assert result.bullets_included == ["strat-1"]
    assert "strat-2" not in result.text


def test_empty_sections_are_omitted():
    playbook = make_playbook(make_bullet("strat-1"))
    text = render_playbook(playbook, now=NOW).text
    assert text.count("[Section:") == 1


def test_disabled_playbook_renders_nothing():
    playbook = make_playbook(make_bullet("strat-1"), ace_enabled=False)
    result = render_playbook(playbook, now=NOW)
    assert result.text == ""
    assert result.bullets_included == []

    forced = render_playbook(playbook, include_disabled=True, now=NOW)
    assert forced.bullets_included == ["strat-1"]


@pytest.mark.parametrize("budget", [0, 5, 20, 40, 60, 100, 200, 1000])
def test_render_respects_budget(sample_playbook, budget):
    result = render_playbook(sample_playbook, budget, now=NOW)
    assert result.token_estimate <= max(budget, estimate_tokens(f"{PLAYBOOK_BEGIN}\n\n{PLAYBOOK_END}"))
    assert len(result.bullets_included) + result.bullets_truncated == 3


def test_small_budget_skips_large_bullet_but_keeps_later_small_ones():
    playbook = make_playbook(
        make_bullet("strat-big", content="x" * 400, helpful_count=5),
        make_bullet("strat-small", content="Short but useful tip"),
    )
    result = render_playbook(playbook, 40, now=NOW)
    assert result.bullets_included == ["strat-small"]
    assert result.bullets_truncated == 1


def test_render_is_deterministic(sample_playbook):
    first = render_playbook(sample_playbook, 500, now=NOW)
    second = render_playbook(sample_playbook, 500, now=NOW)
    assert first == second


def test_unlimited_budget_includes_everything(sample_playbook):
    result = render_playbook(sample_playbook, UNLIMITED_BUDGET, now=NOW)
    assert result.bullets_truncated == 0


def test_prompt_addition_includes_instructions(sample_playbook):
    addition = build_prompt_addition(sample_playbook, now=NOW)
    assert addition is not None
    assert addition.text.startswith(PLAYBOOK_BEGIN)
    assert usage_instructions() in addition.text
    assert len(addition.bullets_included) == 3


def test_prompt_addition_none_when_empty_or_disabled():
    assert build_prompt_addition(make_playbook()) is None
    assert build_prompt_addition(make_playbook(make_bullet("strat-1", active=False))) is None
    assert build_prompt_addition(make_playbook(make_bullet("strat-1"), ace_enabled=False)) is None


class TestExtractUsedBullets:
    def test_extracts_ids_in_order(self):
        response = (
            "Done, the tests pass.\n\n"
            "```json\n"
            '{"bullets_used": ["strat-abc123", "code-def456"]}\n'
            "```"
        )
        assert extract_used_bullets(response) == ["strat-abc123", "code-def456"]

    def test_no_block_returns_empty(self):
        assert extract_used_bullets("Just an answer with no block.") == []
        assert extract_used_bullets("") == []

    def test_malformed_block_never_raises(self):
        response = "```json\n{\"bullets_used\": [strat-1, }\n```"
        assert isinstance(extract_used_bullets(response), list)

    def test_lenient_quotes(self):
        response = "```\n{\"bullets_used\": ['strat-1', 'trou-2',]}\n```"
        assert extract_used_bullets(response) == ["strat-1", "trou-2"]

    def test_last_block_wins(self):
        response = (
            '```json\n{"bullets_used": ["strat-1"]}\n```\n'
            "Actually:\n"
            '```json\n{"bullets_used": ["trou-9"]}\n```'
        )
        assert extract_used_bullets(response) == ["trou-9"]


class TestNeedsRefinement:
    def test_too_many_bullets(self):
        playbook = make_playbook(
            *[make_bullet(f"strat-{i}") for i in range(4)], max_bullets=3
        )
        assert needs_refinement(playbook)

    def test_inactive_bullets_not_counted(self):
        playbook = make_playbook(
            *[make_bullet(f"strat-{i}", active=i < 2) for i in range(4)], max_bullets=3
        )
        assert not needs_refinement(playbook)

    def test_near_token_limit(self):
        playbook = make_playbook(make_bullet("strat-1", content="y" * 400), max_tokens=100)
        assert needs_refinement(playbook)

    def test_small_playbook_is_fine(self, sample_playbook):
        assert not needs_refinement(sample_playbook)

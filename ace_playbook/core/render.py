# ace_playbook/core/render.py
"""Playbook rendering for injection into an agent's context.

Bullets are ranked by usefulness, grouped by section in canonical order and
emitted greedily under a token budget. A unit (section header or bullet) that
does not fit is skipped and counted, and scanning continues with later units.
"""
import json
import math
import re
import sys
from dataclasses import dataclass, field
from datetime import datetime

from .schema import (
    SECTION_LABELS,
    SECTIONS,
    Bullet,
    Playbook,
    Section,
    usefulness_score,
)

PLAYBOOK_BEGIN = "PLAYBOOK_BEGIN"
PLAYBOOK_END = "PLAYBOOK_END"

CHARS_PER_TOKEN = 4
UNLIMITED_BUDGET = sys.maxsize
REFINEMENT_TOKEN_RATIO = 0.9

_USED_BLOCK_RE = re.compile(
    r"```(?:json)?\s*(\{[^{}]*\"bullets_used\"\s*:\s*\[[^\]]*\][^{}]*\})\s*```",
    re.IGNORECASE,
)


@dataclass
class RenderResult:
    text: str = ""
    token_estimate: int = 0
    bullets_included: list[str] = field(default_factory=list)
    bullets_truncated: int = 0


@dataclass
class PromptAddition:
    text: str
    bullets_included: list[str]
    token_estimate: int


def estimate_tokens(text: str) -> int:
    return math.ceil(len(text) / CHARS_PER_TOKEN)


def format_bullet(bullet: Bullet) -> str:
    stats = f"helpful={bullet.helpful_count} harmful={bullet.harmful_count}"
    return f"[{bullet.id}] {stats} ::\n{bullet.content}"


def section_header(section: Section) -> str:
    return f"[Section: {SECTION_LABELS[section]}]"


def sort_bullets(bullets: list[Bullet], now: datetime | None = None) -> list[Bullet]:
    """Active first, then by descending usefulness. Stable for equal scores."""
    return sorted(bullets, key=lambda b: (not b.active, -usefulness_score(b, now)))


def group_by_section(bullets: list[Bullet]) -> dict[Section, list[Bullet]]:
    groups: dict[Section, list[Bullet]] = {section: [] for section in SECTIONS}
    for bullet in bullets:
        groups[bullet.section].append(bullet)
    return groups


def render_playbook(
    playbook: Playbook,
    token_budget: int | None = None,
    *,
    include_disabled: bool = False,
    now: datetime | None = None,
) -> RenderResult:
    """Render the playbook's active bullets between the begin/end markers.

    Args:
        playbook: Playbook to render
        token_budget: Budget in estimated tokens; defaults to ``playbook.max_tokens``
        include_disabled: Render even when ACE is disabled for the project
        now: Reference time for the recency bonus

    Returns:
        RenderResult; empty when the playbook is disabled and include_disabled is False
    """
    if not playbook.ace_enabled and not include_disabled:
        return RenderResult()

    budget = playbook.max_tokens if token_budget is None else token_budget

    active = [b for b in playbook.bullets if b.active]
    grouped = group_by_section(sort_bullets(active, now))

    lines: list[str] = [PLAYBOOK_BEGIN, ""]
    included: list[str] = []
    truncated = 0
    # Markers are always emitted, so they are the base cost.
    tokens = estimate_tokens(f"{PLAYBOOK_BEGIN}\n\n{PLAYBOOK_END}")

    for section in SECTIONS:
        section_bullets = grouped[section]
        if not section_bullets:
            continue

        header = section_header(section)
        header_tokens = estimate_tokens(header + "\n")
        if tokens + header_tokens > budget:
            truncated += len(section_bullets)
            continue

        lines.append(header)
        tokens += header_tokens

        for bullet in section_bullets:
            text = format_bullet(bullet)
            bullet_tokens = estimate_tokens(text + "\n\n")
            if tokens + bullet_tokens > budget:
                truncated += 1
                continue
            lines.append(text)
            lines.append("")
            included.append(bullet.id)
            tokens += bullet_tokens

    lines.append(PLAYBOOK_END)

    return RenderResult(
        text="\n".join(lines),
        token_estimate=tokens,
        bullets_included=included,
        bullets_truncated=truncated,
    )


def usage_instructions() -> str:
    """Instructions asking the agent to report which bullets it relied on."""
    return (
        "When you complete a task, if you relied on any advice from the PLAYBOOK above, "
        "include a JSON block at the end of your final response listing the bullet IDs "
        "you found useful:\n"
        "\n"
        "```json\n"
        '{"bullets_used": ["strat-abc123", "code-def456"]}\n'
        "```\n"
        "\n"
        "Only include bullets that directly influenced your approach. "
        "If you didn't use any playbook advice, omit this block."
    )


def extract_used_bullets(response: str) -> list[str]:
    """Return the bullet IDs from the last ``bullets_used`` block in ``response``.

    Never raises; a missing or malformed block yields an empty list.
    """
    if not response:
        return []
    matches = _USED_BLOCK_RE.findall(response)
    if not matches:
        return []

    block = matches[-1]
    try:
        data = json.loads(block)
        ids = data.get("bullets_used", [])
        if isinstance(ids, list):
            return [str(i).strip() for i in ids if str(i).strip()]
    except (json.JSONDecodeError, AttributeError):
        pass

    # Lenient fallback for single quotes or trailing commas.
    array = re.search(r"\[([^\]]*)\]", block)
    if array is None:
        return []
    return [
        part.strip().strip("'\"").strip()
        for part in array.group(1).split(",")
        if part.strip().strip("'\"").strip()
    ]


def build_prompt_addition(
    playbook: Playbook,
    token_budget: int | None = None,
    now: datetime | None = None,
) -> PromptAddition | None:
    """Rendered playbook plus usage instructions, or None when there is nothing to inject."""
    if not playbook.ace_enabled or not playbook.active_bullets():
        return None

    rendered = render_playbook(playbook, token_budget, now=now)
    instructions = usage_instructions()
    return PromptAddition(
        text=f"{rendered.text}\n\n{instructions}",
        bullets_included=rendered.bullets_included,
        token_estimate=rendered.token_estimate + estimate_tokens(instructions),
    )


def needs_refinement(playbook: Playbook) -> bool:
    """Advisory: too many active bullets, or the full render is near the token limit."""
    if len(playbook.active_bullets()) > playbook.max_bullets:
        return True
    full = render_playbook(playbook, UNLIMITED_BUDGET, include_disabled=True)
    return full.token_estimate > playbook.max_tokens * REFINEMENT_TOKEN_RATIO

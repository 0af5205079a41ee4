# ace_playbook/curator/prompts.py
from ace_playbook.core.render import UNLIMITED_BUDGET, render_playbook
from ace_playbook.core.schema import Bullet, Playbook, ReflectionResult

CURATOR_SYSTEM_PROMPT = """You are a Curator agent in an Agentic Context Engineering (ACE) \
system. Your role is to maintain and improve a playbook of reusable knowledge based on \
reflections from agent executions.

You will be given:
1. The current playbook (a collection of bullets organized by section)
2. A reflection from a recent agent execution (analysis of what worked/didn't work)
3. The original task context
4. Possibly a list of bullets that look like near-duplicates of each other

Your job is to propose DELTA OPERATIONS to update the playbook. Do NOT rewrite the entire \
playbook; only propose specific, targeted changes.

Available sections for bullets:
- strategies_and_hard_rules: General approaches and mandatory guidelines
- useful_code_snippets: Reusable code patterns
- troubleshooting_and_pitfalls: Common issues and how to avoid/fix them
- apis_to_use_for_specific_information: Which APIs/tools to use for what
- verification_checklist: Steps to verify work is correct
- domain_glossary: Domain-specific terms and definitions

Available operations:
- ADD: Create a new bullet in a section (requires section and content)
- UPDATE: Modify an existing bullet's content (requires bulletId and content)
- DEACTIVATE: Mark a bullet as inactive (requires bulletId); use for harmful or obsolete bullets
- MERGE: Combine similar bullets into one (requires mergeIntoId, mergeFromIds and content)

Output your analysis as a JSON object with this exact structure:
{
  "reasoning": "Why these changes are needed...",
  "operations": [
    {"type": "ADD", "section": "strategies_and_hard_rules", "content": "The new bullet content..."},
    {"type": "UPDATE", "bulletId": "strat-abc123", "content": "The updated content..."},
    {"type": "DEACTIVATE", "bulletId": "code-xyz789"},
    {"type": "MERGE", "mergeIntoId": "trou-111", "mergeFromIds": ["trou-222", "trou-333"], \
"content": "The merged content..."}
  ]
}

Guidelines:
- Only propose changes when the reflection reveals genuinely useful insights
- Prefer MERGE or UPDATE over adding a duplicate or near-duplicate bullet
- Keep bullet content concise but actionable (1-3 sentences, 10-2000 characters)
- Use DEACTIVATE for bullets that were repeatedly harmful
- Only reference bullet IDs that appear in the current playbook
- Consider the helpful/harmful counts when deciding whether to modify bullets
- If no changes are needed, return an empty operations array

IMPORTANT: Output ONLY the JSON object, no markdown code blocks or other text."""

CURATOR_USER_TEMPLATE = """## Current Playbook
{playbook}

## Recent Reflection
**Reasoning:** {reasoning}

**Error Identification:** {error_identification}

**Root Cause Analysis:** {root_cause_analysis}

**Correct Approach:** {correct_approach}

**Key Insight:** {key_insight}

**Bullet Feedback:**
{bullet_feedback}
{duplicate_hints}
## Original Task Context
{task_context}

Based on this reflection, propose delta operations to improve the playbook."""


def format_duplicate_hints(pairs: list[tuple[Bullet, Bullet, float]]) -> str:
    if not pairs:
        return ""
    lines = [
        f"- {a.id} and {b.id} (similarity {score:.2f})" for a, b, score in pairs
    ]
    return "\n## Possible Duplicates\n" + "\n".join(lines) + "\n"


def format_curator_prompt(
    playbook: Playbook,
    reflection: ReflectionResult,
    task_context: str,
    duplicate_hints: list[tuple[Bullet, Bullet, float]] | None = None,
) -> tuple[str, str]:
    """Format the curator prompt.

    The whole playbook is rendered, regardless of token budget or enable flag, so the
    Curator can reference any active bullet.

    Returns:
        tuple: (system_prompt, user_prompt)
    """
    rendered = render_playbook(playbook, UNLIMITED_BUDGET, include_disabled=True)
    if reflection.bullet_tags:
        feedback = "\n".join(f"- {t.id}: {t.tag}" for t in reflection.bullet_tags)
    else:
        feedback = "No specific bullet feedback"

    user_prompt = CURATOR_USER_TEMPLATE.format(
        playbook=rendered.text,
        reasoning=reflection.reasoning,
        error_identification=reflection.error_identification,
        root_cause_analysis=reflection.root_cause_analysis,
        correct_approach=reflection.correct_approach,
        key_insight=reflection.key_insight,
        bullet_feedback=feedback,
        duplicate_hints=format_duplicate_hints(duplicate_hints or []),
        task_context=task_context,
    )
    return CURATOR_SYSTEM_PROMPT, user_prompt

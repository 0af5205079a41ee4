# ace_playbook/reflector/reflector.py
"""Reflector: turns one finished agent run into a structured post-mortem.

Stateless: one text-completion call per reflection. Unparseable output degrades to a
fallback result; an unreachable service raises LLMServiceError to the caller.
"""
import logging
from collections.abc import Iterable

from ace_playbook.core.schema import Playbook, ReflectionResult, RunContext, StoredReflection
from ace_playbook.llm import LLMClient, Message
from ace_playbook.utils import generate_reflection_id

from .parser import parse_reflection_result
from .prompts import format_reflector_prompt

logger = logging.getLogger(__name__)


def reflect(
    context: RunContext,
    bullets_reference: str,
    client: LLMClient,
    *,
    model: str | None = None,
    temperature: float = 0.3,
    max_tokens: int = 2000,
    timeout: float | None = None,
) -> ReflectionResult:
    """Generate a ReflectionResult for a completed run.

    Args:
        context: The run's task, trace, final answer, outcome and reported bullet IDs
        bullets_reference: Optional content of the used bullets, for the model's context
        client: Text-completion client
        model: Model identifier passed through to the client
        temperature: Sampling temperature
        max_tokens: Completion limit
        timeout: Request timeout in seconds

    Returns:
        ReflectionResult with tags restricted to ``context.bullets_used``

    Raises:
        LLMServiceError: If the completion service is unreachable or times out
    """
    system_prompt, user_prompt = format_reflector_prompt(context, bullets_reference)

    logger.info(
        f"Running reflection for session {context.session_id or '-'} "
        f"(outcome={context.outcome}, bullets_used={len(context.bullets_used)})"
    )

    response = client.complete(
        messages=[
            Message(role="system", content=system_prompt),
            Message(role="user", content=user_prompt),
        ],
        model=model,
        temperature=temperature,
        max_tokens=max_tokens,
        timeout=timeout,
    )

    result = parse_reflection_result(response.text or "", context.bullets_used)
    logger.info(
        f"Reflection complete: error={result.error_identification[:100]!r}, "
        f"tags={len(result.bullet_tags)}"
    )
    return result


def format_bullets_reference(playbook: Playbook, bullet_ids: Iterable[str]) -> str:
    """Content of the given bullets, for the Reflector prompt."""
    wanted = set(bullet_ids)
    return "\n\n".join(f"[{b.id}] {b.content}" for b in playbook.bullets if b.id in wanted)


def create_stored_reflection(
    project_id: str, context: RunContext, result: ReflectionResult
) -> StoredReflection:
    return StoredReflection(
        id=generate_reflection_id(),
        project_id=project_id,
        session_id=context.session_id,
        task=context.task,
        outcome=context.outcome,
        reflection=result,
        bullets_used=list(context.bullets_used),
    )


def get_helpful_bullets(result: ReflectionResult) -> list[str]:
    return [t.id for t in result.bullet_tags if t.tag == "helpful"]


def get_harmful_bullets(result: ReflectionResult) -> list[str]:
    return [t.id for t in result.bullet_tags if t.tag == "harmful"]

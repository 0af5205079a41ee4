# ace_playbook/curator/curator.py
import logging

from ace_playbook.core.schema import CurationResult, Playbook, ReflectionResult
from ace_playbook.llm import LLMClient, Message

from .parser import parse_curation_result
from .prompts import format_curator_prompt
from .similarity import SimilarityMatcher

logger = logging.getLogger(__name__)


def curate(
    playbook: Playbook,
    reflection: ReflectionResult,
    task_context: str,
    client: LLMClient,
    *,
    model: str | None = None,
    similarity_threshold: float | None = None,
    temperature: float = 0.3,
    max_tokens: int = 2000,
    timeout: float | None = None,
) -> CurationResult:
    """
    Propose delta operations for a playbook from one reflection.

    The proposal is not applied or validated here; callers run it through
    ``validate_operations`` and ``apply_operations``.

    Args:
        playbook: Current playbook (rendered in full for the model)
        reflection: Reflector output for the run
        task_context: The original task text
        client: Text-completion client
        model: Model identifier passed through to the client
        similarity_threshold: If set, near-duplicate bullet pairs at or above this
                              score are listed in the prompt as merge candidates
        temperature: Sampling temperature
        max_tokens: Completion limit
        timeout: Request timeout in seconds

    Returns:
        CurationResult; an empty operation list if the output could not be parsed

    Raises:
        LLMServiceError: If the completion service is unreachable or times out
    """
    hints = []
    if similarity_threshold is not None:
        hints = SimilarityMatcher(threshold=similarity_threshold).find_potential_duplicates(
            playbook.bullets
        )

    system_prompt, user_prompt = format_curator_prompt(playbook, reflection, task_context, hints)

    logger.info(
        f"Proposing updates for playbook {playbook.project_id} "
        f"({len(playbook.bullets)} bullets, {len(hints)} duplicate hints)"
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

    result = parse_curation_result(response.text or "")
    logger.info(f"Operations proposed: {len(result.operations)}")
    for op in result.operations:
        target = getattr(op, "section", None) or getattr(op, "bullet_id", None) or op.type.lower()
        logger.debug(f"  - {op.type}: {target}")
    return result

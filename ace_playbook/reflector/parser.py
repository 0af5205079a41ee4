# ace_playbook/reflector/parser.py
import json
import logging
from collections.abc import Iterable

from ace_playbook.core.metrics import get_tracker
from ace_playbook.core.schema import BulletTag, ReflectionResult
from ace_playbook.utils import strip_code_fences

logger = logging.getLogger(__name__)

VALID_TAGS = ("helpful", "harmful", "neutral")
RAW_EXCERPT_LENGTH = 500

# Output keys the model may use for each field, camelCase first.
_FIELD_KEYS = {
    "reasoning": ("reasoning",),
    "error_identification": ("errorIdentification", "error_identification"),
    "root_cause_analysis": ("rootCauseAnalysis", "root_cause_analysis"),
    "correct_approach": ("correctApproach", "correct_approach"),
    "key_insight": ("keyInsight", "key_insight"),
}


def fallback_reflection(raw: str) -> ReflectionResult:
    """Result used when the model output cannot be decoded."""
    return ReflectionResult(
        reasoning="Failed to parse reflector response",
        error_identification="Parsing error",
        root_cause_analysis=raw[:RAW_EXCERPT_LENGTH],
    )


def _text_field(data: dict, keys: tuple[str, ...]) -> str:
    for key in keys:
        value = data.get(key)
        if value:
            return str(value)
    return ""


def parse_reflection_result(raw: str, used_ids: Iterable[str]) -> ReflectionResult:
    """Parse Reflector output leniently. Never raises.

    Args:
        raw: Raw model text (may contain markdown fencing)
        used_ids: Bullet IDs the run reported using; tags for any other ID are dropped

    Returns:
        ReflectionResult, or the parsing-error fallback if the text is not a JSON object
    """
    tracker = get_tracker()
    allowed = set(used_ids)

    try:
        data = json.loads(strip_code_fences(raw))
    except json.JSONDecodeError as e:
        logger.warning(f"Failed to parse reflector response: {e}")
        tracker.record_attempt(
            success=False,
            error_type="JSONDecodeError",
            error_message=str(e),
            schema_type="reflection",
        )
        return fallback_reflection(raw)

    if not isinstance(data, dict):
        logger.warning("Reflector response is not a JSON object")
        tracker.record_attempt(
            success=False,
            error_type="InvalidTopLevelType",
            error_message="JSON must be an object",
            schema_type="reflection",
        )
        return fallback_reflection(raw)

    fields = {name: _text_field(data, keys) for name, keys in _FIELD_KEYS.items()}

    tags: list[BulletTag] = []
    seen: set[str] = set()
    dropped = 0
    raw_tags = data.get("bulletTags", data.get("bullet_tags", []))
    if not isinstance(raw_tags, list):
        raw_tags = []
    for entry in raw_tags:
        if not isinstance(entry, dict) or "id" not in entry or "tag" not in entry:
            dropped += 1
            continue
        bullet_id = str(entry["id"])
        tag = str(entry["tag"]).lower()
        if tag not in VALID_TAGS or bullet_id not in allowed or bullet_id in seen:
            dropped += 1
            continue
        seen.add(bullet_id)
        tags.append(BulletTag(id=bullet_id, tag=tag))

    if dropped:
        logger.info(f"Dropped {dropped} bullet tags that were invalid or not reported as used")

    tracker.record_attempt(success=True, schema_type="reflection", dropped_items=dropped)
    return ReflectionResult(bullet_tags=tags, **fields)

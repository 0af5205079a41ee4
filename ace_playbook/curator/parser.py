# ace_playbook/curator/parser.py
import json
import logging
from typing import Any

from pydantic import TypeAdapter, ValidationError

from ace_playbook.core.metrics import get_tracker
from ace_playbook.core.schema import CurationOperation, CurationResult
from ace_playbook.utils import strip_code_fences

logger = logging.getLogger(__name__)

FALLBACK_REASONING = "Failed to parse curator response"

_operation_adapter: TypeAdapter[CurationOperation] = TypeAdapter(CurationOperation)


def _parse_operation(item: Any) -> CurationOperation | None:
    if not isinstance(item, dict) or "type" not in item:
        return None
    data = dict(item)
    data["type"] = str(data["type"]).upper()
    if isinstance(data.get("mergeFromIds"), list):
        data["mergeFromIds"] = [str(i) for i in data["mergeFromIds"]]
    if data["type"] == "MERGE" and not data.get("mergeFromIds", data.get("merge_from_ids")):
        logger.info("Dropping MERGE operation with no mergeFromIds")
        return None
    try:
        return _operation_adapter.validate_python(data)
    except ValidationError as e:
        logger.info(f"Dropping malformed {data['type']} operation: {e.error_count()} errors")
        return None


def parse_curation_result(raw: str) -> CurationResult:
    """Parse Curator output leniently. Never raises.

    Each operation is shape-checked on its own; malformed ones are dropped. Text that is
    not a JSON object yields an empty operation list.
    """
    tracker = get_tracker()

    try:
        data = json.loads(strip_code_fences(raw))
    except json.JSONDecodeError as e:
        logger.warning(f"Failed to parse curator response: {e}")
        tracker.record_attempt(
            success=False,
            error_type="JSONDecodeError",
            error_message=str(e),
            schema_type="curation",
        )
        return CurationResult(reasoning=FALLBACK_REASONING)

    if not isinstance(data, dict):
        tracker.record_attempt(
            success=False,
            error_type="InvalidTopLevelType",
            error_message="JSON must be an object",
            schema_type="curation",
        )
        return CurationResult(reasoning=FALLBACK_REASONING)

    raw_ops = data.get("operations") or []
    if not isinstance(raw_ops, list):
        raw_ops = []

    operations = []
    for item in raw_ops:
        op = _parse_operation(item)
        if op is not None:
            operations.append(op)

    dropped = len(raw_ops) - len(operations)
    if dropped:
        logger.info(f"Dropped {dropped} malformed curator operations")

    tracker.record_attempt(success=True, schema_type="curation", dropped_items=dropped)
    return CurationResult(reasoning=str(data.get("reasoning") or ""), operations=operations)

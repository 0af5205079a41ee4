# ace_playbook/core/merge.py
"""Validation and transactional application of curation operations."""
import logging
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import datetime

from .schema import (
    AddOperation,
    BulletTag,
    CurationOperation,
    DeactivateOperation,
    InvalidOperation,
    MergeOperation,
    Playbook,
    UpdateOperation,
    ValidationResult,
    bump_timestamp,
    create_bullet,
    utcnow,
)

logger = logging.getLogger(__name__)

MIN_CONTENT_LENGTH = 10
MAX_CONTENT_LENGTH = 2000


class OperationApplyError(Exception):
    """Raised when a batch of operations cannot be applied; the playbook is left unchanged."""

    pass


@dataclass
class ApplyResult:
    playbook: Playbook
    applied_count: int = 0
    added_ids: list[str] = field(default_factory=list)


def _content_problem(content: str | None) -> str | None:
    if content is None or not content.strip():
        return "missing content"
    if len(content) < MIN_CONTENT_LENGTH:
        return f"Content too short (min {MIN_CONTENT_LENGTH} chars)"
    if len(content) > MAX_CONTENT_LENGTH:
        return f"Content too long (max {MAX_CONTENT_LENGTH} chars)"
    return None


def validate_operations(
    playbook: Playbook, operations: Iterable[CurationOperation]
) -> ValidationResult:
    """Partition operations into valid and invalid ones.

    Operations are checked in order against a simulated view of the playbook, so an
    operation that references a bullet deactivated earlier in the same batch is invalid.
    """
    active = {b.id: b.active for b in playbook.bullets}
    result = ValidationResult()

    def reject(op: CurationOperation, reason: str) -> None:
        result.invalid.append(InvalidOperation(op=op, reason=reason))

    for op in operations:
        if isinstance(op, AddOperation):
            if not op.section or not op.content or not op.content.strip():
                reject(op, "ADD requires section and content")
            elif problem := _content_problem(op.content):
                reject(op, problem)
            else:
                result.valid.append(op)

        elif isinstance(op, UpdateOperation):
            if not op.bullet_id or not op.content or not op.content.strip():
                reject(op, "UPDATE requires bulletId and content")
            elif op.bullet_id not in active:
                reject(op, f"Bullet {op.bullet_id} not found")
            elif not active[op.bullet_id]:
                reject(op, f"Bullet {op.bullet_id} is inactive")
            elif problem := _content_problem(op.content):
                reject(op, problem)
            else:
                result.valid.append(op)

        elif isinstance(op, DeactivateOperation):
            if not op.bullet_id:
                reject(op, "DEACTIVATE requires bulletId")
            elif op.bullet_id not in active:
                reject(op, f"Bullet {op.bullet_id} not found")
            elif not active[op.bullet_id]:
                reject(op, f"Bullet {op.bullet_id} is already inactive")
            else:
                active[op.bullet_id] = False
                result.valid.append(op)

        elif isinstance(op, MergeOperation):
            if not op.merge_into_id or not op.merge_from_ids or not op.content:
                reject(op, "MERGE requires mergeIntoId, mergeFromIds, and content")
                continue
            if op.merge_into_id not in active:
                reject(op, f"Target bullet {op.merge_into_id} not found")
                continue
            missing = [i for i in op.merge_from_ids if i not in active]
            if missing:
                reject(op, f"Source bullets not found: {', '.join(missing)}")
                continue
            if op.merge_into_id in op.merge_from_ids:
                reject(op, f"Target bullet {op.merge_into_id} is also listed as a source")
                continue
            if len(set(op.merge_from_ids)) != len(op.merge_from_ids):
                reject(op, "Duplicate ids in mergeFromIds")
                continue
            if not active[op.merge_into_id]:
                reject(op, f"Target bullet {op.merge_into_id} is inactive")
                continue
            inactive = [i for i in op.merge_from_ids if not active[i]]
            if inactive:
                reject(op, f"Source bullets already inactive: {', '.join(inactive)}")
                continue
            if problem := _content_problem(op.content):
                reject(op, problem)
                continue
            for source_id in op.merge_from_ids:
                active[source_id] = False
            result.valid.append(op)

        else:
            reject(op, "Unknown operation type")

    return result


def apply_operations(
    playbook: Playbook,
    operations: Iterable[CurationOperation],
    now: datetime | None = None,
) -> ApplyResult:
    """Apply validated operations as one batch.

    The input playbook is never mutated: operations are applied to a deep copy which
    is returned only if every operation succeeds.

    Raises:
        OperationApplyError: If any operation cannot be applied
    """
    now = now or utcnow()
    updated = playbook.model_copy(deep=True)
    by_id = {b.id: b for b in updated.bullets}
    result = ApplyResult(playbook=updated)

    for op in operations:
        if isinstance(op, AddOperation):
            bullet = create_bullet(
                updated.project_id, op.section, op.content, existing_ids=by_id.keys(), now=now
            )
            updated.bullets.append(bullet)
            by_id[bullet.id] = bullet
            result.added_ids.append(bullet.id)

        elif isinstance(op, UpdateOperation):
            bullet = by_id.get(op.bullet_id)
            if bullet is None:
                raise OperationApplyError(f"UPDATE: bullet {op.bullet_id} not found")
            bullet.content = op.content
            bullet.updated_at = bump_timestamp(bullet.updated_at, now)

        elif isinstance(op, DeactivateOperation):
            bullet = by_id.get(op.bullet_id)
            if bullet is None:
                raise OperationApplyError(f"DEACTIVATE: bullet {op.bullet_id} not found")
            bullet.active = False
            bullet.updated_at = bump_timestamp(bullet.updated_at, now)

        elif isinstance(op, MergeOperation):
            target = by_id.get(op.merge_into_id)
            if target is None:
                raise OperationApplyError(f"MERGE: target {op.merge_into_id} not found")
            sources = []
            for source_id in op.merge_from_ids:
                source = by_id.get(source_id)
                if source is None:
                    raise OperationApplyError(f"MERGE: source {source_id} not found")
                sources.append(source)
            target.content = op.content
            target.updated_at = bump_timestamp(target.updated_at, now)
            for source in sources:
                source.active = False
                source.updated_at = bump_timestamp(source.updated_at, now)

        else:
            raise OperationApplyError(f"Unknown operation: {op!r}")

        result.applied_count += 1

    if result.applied_count:
        updated.updated_at = bump_timestamp(updated.updated_at, now)
    logger.debug(f"Applied {result.applied_count} operations to playbook {updated.project_id}")
    return result


def apply_bullet_tags(
    playbook: Playbook,
    tags: Iterable[BulletTag],
    used_ids: Iterable[str] = (),
    now: datetime | None = None,
) -> Playbook:
    """Return a copy with feedback counters incremented and ``last_used_at`` set.

    Unknown ids are ignored. Counters only ever increase.
    """
    now = now or utcnow()
    updated = playbook.model_copy(deep=True)
    by_id = {b.id: b for b in updated.bullets}

    touched = False
    for bullet_id in used_ids:
        bullet = by_id.get(bullet_id)
        if bullet is not None:
            bullet.last_used_at = now
            touched = True

    for tag in tags:
        bullet = by_id.get(tag.id)
        if bullet is None:
            continue
        if tag.tag == "helpful":
            bullet.helpful_count += 1
        elif tag.tag == "harmful":
            bullet.harmful_count += 1
        else:
            bullet.neutral_count += 1
        bullet.last_used_at = now
        touched = True

    if touched:
        updated.updated_at = bump_timestamp(updated.updated_at, now)
    return updated


def count_operations(operations: Iterable[CurationOperation]) -> dict[str, int]:
    counts = {"ADD": 0, "UPDATE": 0, "DEACTIVATE": 0, "MERGE": 0}
    for op in operations:
        counts[op.type] = counts.get(op.type, 0) + 1
    return counts

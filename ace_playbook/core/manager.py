# ace_playbook/core/manager.py
"""PlaybookManager: per-project playbook access and the reflect → curate → apply cycle."""
import logging
import threading
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from typing import Literal, TypeVar

from ace_playbook import curator
from ace_playbook.core.config import ACEConfig, get_config
from ace_playbook.core.merge import (
    OperationApplyError,
    apply_bullet_tags,
    apply_operations,
    count_operations,
    validate_operations,
)
from ace_playbook.core.render import (
    PromptAddition,
    UNLIMITED_BUDGET,
    build_prompt_addition,
    needs_refinement,
    render_playbook,
)
from ace_playbook.core.schema import (
    SECTIONS,
    AddOperation,
    Bullet,
    CurationOperation,
    CurationResult,
    DeactivateOperation,
    InvalidOperation,
    Playbook,
    RunContext,
    Section,
    StoredReflection,
    UpdateOperation,
    bump_timestamp,
    create_playbook,
    utcnow,
)
from ace_playbook.core.storage import PlaybookStore, project_id_for
from ace_playbook.curator import SimilarityMatcher
from ace_playbook.llm import LLMClient, LLMServiceError, create_llm_client
from ace_playbook.reflector import create_stored_reflection, format_bullets_reference, reflect
from ace_playbook.utils import log_event

logger = logging.getLogger(__name__)

STALE_AFTER = timedelta(days=30)
STALE_SUGGESTION_MIN = 10
HARMFUL_SUGGESTION_MIN = 3

CycleStatus = Literal["completed", "reflected", "skipped", "cancelled", "failed"]

T = TypeVar("T")


class PlaybookNotFoundError(Exception):
    """Raised when an edit targets a project that has no playbook."""

    pass


@dataclass
class CycleResult:
    """Outcome of one reflect → curate → apply cycle.

    ``status`` is "completed" when curation ran, "reflected" when the cycle stopped after
    recording feedback, "skipped" when ACE is disabled, "cancelled" when the cancel event
    was set before a stage, and "failed" when the completion service was unavailable.
    """

    status: CycleStatus
    project_id: str
    reflection: StoredReflection | None = None
    curation: CurationResult | None = None
    applied_count: int = 0
    added_ids: list[str] = field(default_factory=list)
    invalid: list[InvalidOperation] = field(default_factory=list)
    error: str | None = None

    def to_dict(self) -> dict:
        return {
            "status": self.status,
            "project_id": self.project_id,
            "reflection": self.reflection.model_dump(mode="json", by_alias=True)
            if self.reflection
            else None,
            "operations": count_operations(self.curation.operations) if self.curation else {},
            "curator_reasoning": self.curation.reasoning if self.curation else None,
            "applied_count": self.applied_count,
            "added_ids": self.added_ids,
            "invalid": [{"type": i.op.type, "reason": i.reason} for i in self.invalid],
            "error": self.error,
        }


@dataclass
class RefinementReport:
    needs_refinement: bool
    suggestions: list[str] = field(default_factory=list)
    harmful_ids: list[str] = field(default_factory=list)
    duplicate_pairs: list[tuple[str, str]] = field(default_factory=list)
    stale_ids: list[str] = field(default_factory=list)


@dataclass
class _ProjectLocks:
    # cycle: one reflect/curate/apply pipeline at a time
    # state: load/modify/save and render snapshots
    cycle: threading.RLock = field(default_factory=threading.RLock)
    state: threading.RLock = field(default_factory=threading.RLock)


class PlaybookManager:
    """Owns playbook persistence, locking and the learning cycle for all projects."""

    def __init__(
        self,
        store: PlaybookStore | None = None,
        config: ACEConfig | None = None,
        reflector_client: LLMClient | None = None,
        curator_client: LLMClient | None = None,
    ):
        """
        Args:
            store: Playbook store; defaults to one rooted at ``config.storage.root``
            config: Configuration; defaults to the global config
            reflector_client: Client for Reflector calls; built from ``config.llm`` if None
            curator_client: Client for Curator calls; built from ``config.llm`` if None
        """
        self.config = config or get_config()
        self.store = store or PlaybookStore(self.config.storage.root)
        self.reflector_client = reflector_client or create_llm_client(
            self.config.llm, model=self.config.ace.reflector_model
        )
        self.curator_client = curator_client or create_llm_client(
            self.config.llm, model=self.config.ace.curator_model
        )
        self._locks: dict[str, _ProjectLocks] = {}
        self._locks_guard = threading.Lock()

    def _project_locks(self, project_id: str) -> _ProjectLocks:
        with self._locks_guard:
            locks = self._locks.get(project_id)
            if locks is None:
                locks = self._locks[project_id] = _ProjectLocks()
            return locks

    @contextmanager
    def _state(self, project_id: str) -> Iterator[None]:
        with self._project_locks(project_id).state:
            yield

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_playbook(self, project_path: str) -> Playbook | None:
        """Snapshot of a project's playbook, or None if it has none yet."""
        return self.get_playbook_by_id(project_id_for(project_path))

    def get_playbook_by_id(self, project_id: str) -> Playbook | None:
        with self._state(project_id):
            return self.store.load(project_id)

    def get_or_create_playbook(self, project_path: str) -> Playbook:
        project_id = project_id_for(project_path)
        with self._state(project_id):
            playbook = self.store.load(project_id)
            if playbook is None:
                playbook = create_playbook(project_id, project_path, self.config.ace)
                self.store.save(playbook)
                logger.info(f"Created playbook {project_id} for {project_path}")
            return playbook

    def list_playbooks(self) -> list[Playbook]:
        playbooks = []
        for project_id in self.store.list_project_ids():
            playbook = self.get_playbook_by_id(project_id)
            if playbook is not None:
                playbooks.append(playbook)
        return playbooks

    def get_reflections(self, project_path: str) -> list[StoredReflection]:
        project_id = project_id_for(project_path)
        with self._state(project_id):
            return self.store.load_reflections(project_id)

    def prompt_addition(
        self, project_path: str, token_budget: int | None = None
    ) -> PromptAddition | None:
        """Playbook block and usage instructions to inject before a task, if any.

        Returns None when ACE is disabled globally or for the project, or when the
        project has no active bullets.
        """
        if not self.config.ace.enabled:
            return None
        playbook = self.get_playbook(project_path)
        if playbook is None:
            return None
        return build_prompt_addition(playbook, token_budget)

    # ------------------------------------------------------------------
    # Manual edits
    # ------------------------------------------------------------------

    def _modify(self, project_id: str, change: Callable[[Playbook], T]) -> T:
        with self._state(project_id):
            playbook = self.store.load(project_id)
            if playbook is None:
                raise PlaybookNotFoundError(f"No playbook for project {project_id}")
            return change(playbook)

    def _apply_edit(self, playbook: Playbook, op: CurationOperation) -> Playbook:
        validation = validate_operations(playbook, [op])
        if validation.invalid:
            raise ValueError(validation.invalid[0].reason)
        applied = apply_operations(playbook, validation.valid)
        self.store.save(applied.playbook)
        log_event("playbook_edit", {"project_id": playbook.project_id, "op": op.type})
        return applied.playbook

    def set_ace_enabled(self, project_path: str, enabled: bool) -> Playbook:
        self.get_or_create_playbook(project_path)

        def change(playbook: Playbook) -> Playbook:
            if playbook.ace_enabled != enabled:
                playbook.ace_enabled = enabled
                playbook.updated_at = bump_timestamp(playbook.updated_at)
                self.store.save(playbook)
            return playbook

        return self._modify(project_id_for(project_path), change)

    def add_bullet(self, project_path: str, section: Section, content: str) -> Bullet:
        """Add a bullet by hand.

        Raises:
            ValueError: If the content fails validation
        """
        self.get_or_create_playbook(project_path)

        def change(playbook: Playbook) -> Bullet:
            before = playbook.bullet_ids()
            updated = self._apply_edit(playbook, AddOperation(section=section, content=content))
            return next(b for b in updated.bullets if b.id not in before)

        return self._modify(project_id_for(project_path), change)

    def update_bullet(self, project_path: str, bullet_id: str, content: str) -> Bullet:
        """
        Raises:
            PlaybookNotFoundError: If the project has no playbook
            ValueError: If the bullet does not exist or the content fails validation
        """

        def change(playbook: Playbook) -> Bullet:
            updated = self._apply_edit(
                playbook, UpdateOperation(bullet_id=bullet_id, content=content)
            )
            return updated.get_bullet(bullet_id)

        return self._modify(project_id_for(project_path), change)

    def deactivate_bullet(self, project_path: str, bullet_id: str) -> Bullet:
        def change(playbook: Playbook) -> Bullet:
            updated = self._apply_edit(playbook, DeactivateOperation(bullet_id=bullet_id))
            return updated.get_bullet(bullet_id)

        return self._modify(project_id_for(project_path), change)

    # ------------------------------------------------------------------
    # Learning cycle
    # ------------------------------------------------------------------

    def after_task(
        self,
        project_path: str,
        context: RunContext,
        cancel_event: threading.Event | None = None,
    ) -> CycleResult | None:
        """Hook for the orchestration layer after every task.

        Honors the ``auto_reflect`` and ``auto_curate`` policy flags; returns None when
        automatic reflection is off.
        """
        if not self.config.ace.auto_reflect:
            return None
        return self.run_cycle(
            project_path, context, curate=self.config.ace.auto_curate, cancel_event=cancel_event
        )

    def run_cycle(
        self,
        project_path: str,
        context: RunContext,
        *,
        curate: bool = True,
        cancel_event: threading.Event | None = None,
    ) -> CycleResult:
        """Run reflect → record feedback → curate → validate → apply for one finished run.

        Stages run strictly in order and at most one cycle runs per project at a time.
        Cancellation is checked before each stage. If the completion service fails or
        times out, the cycle stops with status "failed" and no further changes are made.

        Args:
            project_path: Project whose playbook learns from the run
            context: The finished run
            curate: Run the Curator after recording feedback
            cancel_event: Set by the owner to abandon the cycle

        Returns:
            CycleResult describing what happened
        """
        project_id = project_id_for(project_path)

        def cancelled() -> bool:
            return cancel_event is not None and cancel_event.is_set()

        with self._project_locks(project_id).cycle:
            if cancelled():
                logger.info(f"Cycle for {project_id} cancelled before reflection")
                return CycleResult(status="cancelled", project_id=project_id)

            if not self.config.ace.enabled:
                return CycleResult(status="skipped", project_id=project_id)
            playbook = self.get_or_create_playbook(project_path)
            if not playbook.ace_enabled:
                return CycleResult(status="skipped", project_id=project_id)

            ace = self.config.ace
            llm = self.config.llm

            try:
                reflection = reflect(
                    context,
                    format_bullets_reference(playbook, context.bullets_used),
                    self.reflector_client,
                    model=ace.reflector_model,
                    temperature=llm.temperature,
                    max_tokens=llm.max_tokens,
                    timeout=llm.timeout_seconds,
                )
            except LLMServiceError as e:
                logger.warning(f"Reflection failed for {project_id}, skipping cycle: {e}")
                log_event("cycle_failed", {"project_id": project_id, "stage": "reflect"})
                return CycleResult(status="failed", project_id=project_id, error=str(e))

            if cancelled():
                logger.info(f"Cycle for {project_id} cancelled after reflection")
                return CycleResult(status="cancelled", project_id=project_id)

            stored = create_stored_reflection(project_id, context, reflection)
            with self._state(project_id):
                current = self.store.load(project_id) or playbook
                playbook = apply_bullet_tags(current, reflection.bullet_tags, context.bullets_used)
                self.store.save(playbook)
                self.store.save_reflection(stored)

            result = CycleResult(status="reflected", project_id=project_id, reflection=stored)
            if not curate:
                return result

            if cancelled():
                logger.info(f"Cycle for {project_id} cancelled before curation")
                result.status = "cancelled"
                return result

            try:
                curation = curator.curate(
                    playbook,
                    reflection,
                    context.task,
                    self.curator_client,
                    model=ace.curator_model,
                    similarity_threshold=ace.similarity_threshold,
                    temperature=llm.temperature,
                    max_tokens=llm.max_tokens,
                    timeout=llm.timeout_seconds,
                )
            except LLMServiceError as e:
                logger.warning(f"Curation failed for {project_id}, skipping: {e}")
                log_event("cycle_failed", {"project_id": project_id, "stage": "curate"})
                result.status = "failed"
                result.error = str(e)
                return result
            result.curation = curation

            if cancelled():
                logger.info(f"Cycle for {project_id} cancelled before apply")
                result.status = "cancelled"
                return result

            with self._state(project_id):
                current = self.store.load(project_id) or playbook
                validation = validate_operations(current, curation.operations)
                for invalid in validation.invalid:
                    logger.warning(f"Rejected {invalid.op.type} operation: {invalid.reason}")
                try:
                    applied = apply_operations(current, validation.valid)
                except OperationApplyError as e:
                    logger.error(f"Failed to apply operations for {project_id}: {e}")
                    result.status = "failed"
                    result.error = str(e)
                    result.invalid = validation.invalid
                    return result
                if applied.applied_count:
                    self.store.save(applied.playbook)

            result.status = "completed"
            result.applied_count = applied.applied_count
            result.added_ids = applied.added_ids
            result.invalid = validation.invalid
            log_event(
                "cycle_completed",
                {
                    "project_id": project_id,
                    "applied": applied.applied_count,
                    "rejected": len(validation.invalid),
                    **count_operations(validation.valid),
                },
            )
            return result

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------

    def check_and_refine(self, playbook: Playbook, now: datetime | None = None) -> RefinementReport:
        """Advisory report for an oversized playbook; nothing is changed."""
        report = RefinementReport(needs_refinement=needs_refinement(playbook))
        if not report.needs_refinement:
            return report

        now = now or utcnow()
        active = playbook.active_bullets()

        report.harmful_ids = [
            b.id
            for b in active
            if b.harmful_count > b.helpful_count and b.harmful_count >= HARMFUL_SUGGESTION_MIN
        ]
        if report.harmful_ids:
            report.suggestions.append(
                f"Consider deactivating {len(report.harmful_ids)} bullets with high harmful counts"
            )

        matcher = SimilarityMatcher(threshold=self.config.ace.similarity_threshold)
        report.duplicate_pairs = [
            (a.id, b.id) for a, b, _ in matcher.find_potential_duplicates(active)
        ]
        if report.duplicate_pairs:
            report.suggestions.append(
                f"Found {len(report.duplicate_pairs)} potential duplicate pairs that could be merged"
            )

        cutoff = now - STALE_AFTER
        report.stale_ids = [
            b.id for b in active if b.last_used_at is None or _as_utc(b.last_used_at) < cutoff
        ]
        if len(report.stale_ids) > STALE_SUGGESTION_MIN:
            report.suggestions.append(
                f"{len(report.stale_ids)} bullets haven't been used in 30+ days"
            )

        return report

    def playbook_stats(self, playbook: Playbook) -> dict:
        active = playbook.active_bullets()
        full = render_playbook(playbook, UNLIMITED_BUDGET, include_disabled=True)
        return {
            "project_id": playbook.project_id,
            "project_path": playbook.project_path,
            "ace_enabled": playbook.ace_enabled,
            "total_bullets": len(playbook.bullets),
            "active_bullets": len(active),
            "by_section": {s: sum(1 for b in active if b.section == s) for s in SECTIONS},
            "helpful_total": sum(b.helpful_count for b in playbook.bullets),
            "harmful_total": sum(b.harmful_count for b in playbook.bullets),
            "token_estimate": full.token_estimate,
            "max_bullets": playbook.max_bullets,
            "max_tokens": playbook.max_tokens,
            "needs_refinement": needs_refinement(playbook),
            "updated_at": playbook.updated_at.isoformat(),
        }


def _as_utc(value: datetime) -> datetime:
    return value if value.tzinfo is not None else value.replace(tzinfo=UTC)

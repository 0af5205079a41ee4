"""JSON file storage: one playbook record and one reflections log per project.

Layout under the storage root::

    <root>/ace/playbooks/<project_id>.json
    <root>/ace/reflections/<project_id>.json
"""

import hashlib
import logging
import os
import tempfile
from pathlib import Path

from ace_playbook.core.schema import Playbook, ReflectionsLog, StoredReflection

logger = logging.getLogger(__name__)

PROJECT_ID_LENGTH = 16


class PlaybookStoreError(Exception):
    """Raised when a stored record cannot be read or written."""

    pass


def project_id_for(project_path: str) -> str:
    """Stable project identifier: truncated SHA-256 of the canonical path."""
    canonical = os.path.realpath(os.path.expanduser(project_path))
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()[:PROJECT_ID_LENGTH]


def _atomic_write(path: Path, content: str) -> None:
    """Write via a temp file in the same directory and rename over the target."""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(content)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_name, path)
    except BaseException:
        if os.path.exists(tmp_name):
            os.unlink(tmp_name)
        raise


class PlaybookStore:
    """Persists playbooks and reflection logs as JSON files."""

    def __init__(self, root: str | Path):
        """
        Args:
            root: Storage root (the configuration directory); ``ace/`` is created under it
        """
        self.root = Path(root).expanduser()
        self.playbooks_dir = self.root / "ace" / "playbooks"
        self.reflections_dir = self.root / "ace" / "reflections"

    def playbook_path(self, project_id: str) -> Path:
        return self.playbooks_dir / f"{project_id}.json"

    def reflections_path(self, project_id: str) -> Path:
        return self.reflections_dir / f"{project_id}.json"

    def load(self, project_id: str) -> Playbook | None:
        """Load a playbook. A missing file means "no playbook yet" and returns None."""
        path = self.playbook_path(project_id)
        if not path.exists():
            return None
        try:
            return Playbook.model_validate_json(path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            raise PlaybookStoreError(f"Failed to read playbook {path}: {e}") from e

    def save(self, playbook: Playbook) -> None:
        """Persist a playbook atomically; on failure the previous record is untouched."""
        path = self.playbook_path(playbook.project_id)
        content = playbook.model_dump_json(by_alias=True, indent=2)
        try:
            _atomic_write(path, content)
        except OSError as e:
            raise PlaybookStoreError(f"Failed to write playbook {path}: {e}") from e
        logger.debug(f"Saved playbook {playbook.project_id} ({len(playbook.bullets)} bullets)")

    def list_project_ids(self) -> list[str]:
        if not self.playbooks_dir.exists():
            return []
        return sorted(p.stem for p in self.playbooks_dir.glob("*.json"))

    def load_reflections(self, project_id: str) -> list[StoredReflection]:
        path = self.reflections_path(project_id)
        if not path.exists():
            return []
        try:
            log = ReflectionsLog.model_validate_json(path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            raise PlaybookStoreError(f"Failed to read reflections {path}: {e}") from e
        return log.reflections

    def save_reflection(self, reflection: StoredReflection) -> None:
        """Append a reflection to its project's log."""
        reflections = self.load_reflections(reflection.project_id)
        reflections.append(reflection)
        log = ReflectionsLog(project_id=reflection.project_id, reflections=reflections)
        path = self.reflections_path(reflection.project_id)
        try:
            _atomic_write(path, log.model_dump_json(by_alias=True, indent=2))
        except OSError as e:
            raise PlaybookStoreError(f"Failed to write reflections {path}: {e}") from e

# tests/conftest.py
"""Pytest configuration and shared fixtures."""

import logging
import os
from datetime import UTC, datetime

import pytest

# Set test environment before any ace_playbook imports
# Only set if not explicitly overridden by a specific test
# This ensures the mock LLM provider is used for most tests
# without breaking config tests that test specific providers
if "ACE_LLM_PROVIDER" not in os.environ:
    os.environ["ACE_LLM_PROVIDER"] = "mock"

from ace_playbook.core.config import reset_config  # noqa: E402
from ace_playbook.core.metrics import get_tracker  # noqa: E402
from ace_playbook.core.schema import Bullet, Playbook  # noqa: E402

NOW = datetime(2025, 1, 15, 12, 0, tzinfo=UTC)


@pytest.fixture(autouse=True)
def isolated_environment(tmp_path, monkeypatch):
    """Point storage at a temp dir and reset process-wide state between tests."""
    monkeypatch.setenv("ACE_CONFIG_ROOT", str(tmp_path / "config"))
    reset_config()
    get_tracker().reset()
    handlers, level = logging.root.handlers[:], logging.root.level
    yield
    logging.root.handlers = handlers
    logging.root.setLevel(level)
    reset_config()
    get_tracker().reset()


def make_bullet(bullet_id: str, section: str = "strategies_and_hard_rules", **kwargs) -> Bullet:
    content = kwargs.pop("content", f"Content for bullet {bullet_id} with enough length")
    return Bullet(
        id=bullet_id,
        project_id=kwargs.pop("project_id", "proj"),
        section=section,
        content=content,
        created_at=kwargs.pop("created_at", NOW),
        updated_at=kwargs.pop("updated_at", NOW),
        **kwargs,
    )


def make_playbook(*bullets: Bullet, **kwargs) -> Playbook:
    return Playbook(
        project_id=kwargs.pop("project_id", "proj"),
        project_path=kwargs.pop("project_path", "/tmp/proj"),
        bullets=list(bullets),
        created_at=NOW,
        updated_at=NOW,
        **kwargs,
    )


@pytest.fixture
def sample_playbook() -> Playbook:
    return make_playbook(
        make_bullet(
            "strat-001",
            content="Run the test suite before committing any change",
            helpful_count=3,
        ),
        make_bullet(
            "strat-002",
            content="Prefer small, focused commits over large rewrites",
            harmful_count=1,
        ),
        make_bullet(
            "trou-001",
            section="troubleshooting_and_pitfalls",
            content="If imports fail, check the virtualenv is activated",
            helpful_count=1,
        ),
    )

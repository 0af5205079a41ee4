import secrets
from collections.abc import Iterable
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING, Annotated, Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel

if TYPE_CHECKING:
    from .config import AceSettings

Section = Literal[
    "strategies_and_hard_rules",
    "useful_code_snippets",
    "troubleshooting_and_pitfalls",
    "apis_to_use_for_specific_information",
    "verification_checklist",
    "domain_glossary",
]

# Canonical order; rendering groups sections in this order regardless of scores.
SECTIONS: list[Section] = [
    "strategies_and_hard_rules",
    "useful_code_snippets",
    "troubleshooting_and_pitfalls",
    "apis_to_use_for_specific_information",
    "verification_checklist",
    "domain_glossary",
]

SECTION_LABELS: dict[Section, str] = {
    "strategies_and_hard_rules": "Strategies and Hard Rules",
    "useful_code_snippets": "Useful Code Snippets",
    "troubleshooting_and_pitfalls": "Troubleshooting and Pitfalls",
    "apis_to_use_for_specific_information": "APIs for Specific Information",
    "verification_checklist": "Verification Checklist",
    "domain_glossary": "Domain Glossary",
}

SECTION_PREFIXES: dict[Section, str] = {
    "strategies_and_hard_rules": "strat",
    "useful_code_snippets": "code",
    "troubleshooting_and_pitfalls": "trou",
    "apis_to_use_for_specific_information": "apis",
    "verification_checklist": "veri",
    "domain_glossary": "doma",
}

TagValue = Literal["helpful", "harmful", "neutral"]
Outcome = Literal["success", "failure", "unknown"]

RECENCY_WINDOW = timedelta(days=7)
RECENCY_WEIGHT = 0.5


def utcnow() -> datetime:
    """Return current UTC datetime."""
    return datetime.now(UTC)


def bump_timestamp(previous: datetime, now: datetime | None = None) -> datetime:
    """Return a timestamp strictly greater than ``previous``."""
    now = now or utcnow()
    if now <= previous:
        return previous + timedelta(microseconds=1)
    return now


class AceModel(BaseModel):
    """Base model: camelCase on disk, snake_case in Python, both accepted on input."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class Bullet(AceModel):
    id: str
    project_id: str
    section: Section
    content: str
    helpful_count: int = Field(default=0, ge=0)
    harmful_count: int = Field(default=0, ge=0)
    neutral_count: int = Field(default=0, ge=0)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    last_used_at: datetime | None = None
    active: bool = True


class Playbook(AceModel):
    project_id: str
    project_path: str
    ace_enabled: bool = True
    max_bullets: int = 100
    max_tokens: int = 8000
    bullets: list[Bullet] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @model_validator(mode="after")
    def _check_unique_ids(self) -> "Playbook":
        seen: set[str] = set()
        for bullet in self.bullets:
            if bullet.id in seen:
                raise ValueError(f"Duplicate bullet id: {bullet.id}")
            seen.add(bullet.id)
        return self

    def bullet_ids(self) -> set[str]:
        return {b.id for b in self.bullets}

    def get_bullet(self, bullet_id: str) -> Bullet | None:
        for bullet in self.bullets:
            if bullet.id == bullet_id:
                return bullet
        return None

    def active_bullets(self) -> list[Bullet]:
        return [b for b in self.bullets if b.active]


class BulletTag(AceModel):
    id: str
    tag: TagValue


class ReflectionResult(AceModel):
    reasoning: str = ""
    error_identification: str = ""
    root_cause_analysis: str = ""
    correct_approach: str = ""
    key_insight: str = ""
    bullet_tags: list[BulletTag] = Field(default_factory=list)


class RunContext(AceModel):
    """Everything the Reflector needs to know about one finished agent run."""

    task: str
    trace: str = ""
    final_answer: str = ""
    outcome: Outcome = "unknown"
    bullets_used: list[str] = Field(default_factory=list)
    session_id: str = ""


class StoredReflection(AceModel):
    id: str
    project_id: str
    session_id: str
    task: str
    outcome: Outcome
    reflection: ReflectionResult
    bullets_used: list[str] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=utcnow)


class ReflectionsLog(AceModel):
    project_id: str
    reflections: list[StoredReflection] = Field(default_factory=list)


class AddOperation(AceModel):
    type: Literal["ADD"] = "ADD"
    section: Section
    content: str


class UpdateOperation(AceModel):
    type: Literal["UPDATE"] = "UPDATE"
    bullet_id: str
    content: str


class DeactivateOperation(AceModel):
    type: Literal["DEACTIVATE"] = "DEACTIVATE"
    bullet_id: str


class MergeOperation(AceModel):
    type: Literal["MERGE"] = "MERGE"
    merge_into_id: str
    merge_from_ids: list[str]
    content: str


CurationOperation = Annotated[
    AddOperation | UpdateOperation | DeactivateOperation | MergeOperation,
    Field(discriminator="type"),
]


class CurationResult(AceModel):
    reasoning: str = ""
    operations: list[CurationOperation] = Field(default_factory=list)


class InvalidOperation(AceModel):
    op: CurationOperation
    reason: str


class ValidationResult(AceModel):
    valid: list[CurationOperation] = Field(default_factory=list)
    invalid: list[InvalidOperation] = Field(default_factory=list)


def _base36(value: int) -> str:
    digits = "0123456789abcdefghijklmnopqrstuvwxyz"
    if value == 0:
        return "0"
    out = []
    while value:
        value, rem = divmod(value, 36)
        out.append(digits[rem])
    return "".join(reversed(out))


def generate_bullet_id(section: Section, existing: Iterable[str] = ()) -> str:
    """Generate a bullet ID like ``strat-m1x2k9a3f0``, unique against ``existing``."""
    taken = set(existing)
    prefix = SECTION_PREFIXES[section]
    while True:
        millis = int(utcnow().timestamp() * 1000)
        candidate = f"{prefix}-{_base36(millis)}{secrets.token_hex(2)}"
        if candidate not in taken:
            return candidate


def create_bullet(
    project_id: str,
    section: Section,
    content: str,
    existing_ids: Iterable[str] = (),
    now: datetime | None = None,
) -> Bullet:
    now = now or utcnow()
    return Bullet(
        id=generate_bullet_id(section, existing_ids),
        project_id=project_id,
        section=section,
        content=content,
        created_at=now,
        updated_at=now,
    )


def create_playbook(
    project_id: str,
    project_path: str,
    settings: "AceSettings | None" = None,
) -> Playbook:
    now = utcnow()
    if settings is None:
        return Playbook(project_id=project_id, project_path=project_path, created_at=now, updated_at=now)
    return Playbook(
        project_id=project_id,
        project_path=project_path,
        ace_enabled=settings.enabled,
        max_bullets=settings.default_max_bullets,
        max_tokens=settings.default_max_tokens,
        created_at=now,
        updated_at=now,
    )


def usefulness_score(bullet: Bullet, now: datetime | None = None) -> float:
    """Net feedback plus a half-weighted recency bonus that decays over 7 days."""
    net = bullet.helpful_count - bullet.harmful_count
    if bullet.last_used_at is None:
        return float(net)
    now = now or utcnow()
    last_used = bullet.last_used_at
    if last_used.tzinfo is None:
        last_used = last_used.replace(tzinfo=UTC)
    recency = min(1.0, max(0.0, 1.0 - (now - last_used) / RECENCY_WINDOW))
    return net + RECENCY_WEIGHT * recency

# ace_playbook/reflector/__init__.py
from .parser import fallback_reflection, parse_reflection_result
from .reflector import (
    create_stored_reflection,
    format_bullets_reference,
    get_harmful_bullets,
    get_helpful_bullets,
    reflect,
)

__all__ = [
    "reflect",
    "parse_reflection_result",
    "fallback_reflection",
    "format_bullets_reference",
    "create_stored_reflection",
    "get_helpful_bullets",
    "get_harmful_bullets",
]

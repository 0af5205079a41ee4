# ace_playbook/curator/__init__.py
from ace_playbook.core.merge import count_operations

from .curator import curate
from .parser import parse_curation_result
from .similarity import SimilarityMatcher

__all__ = ["curate", "parse_curation_result", "SimilarityMatcher", "count_operations"]

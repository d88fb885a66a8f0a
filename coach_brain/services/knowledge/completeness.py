"""
Completeness scoring.

completeness = 100 * present / total over a model's completeness_fields()
manifest, rounded half up (1/8 scores 13). A field is present when it is not None,
not an empty string, and (for sequences and mappings) not empty.
The same rule applies to every domain regardless of its shape.
"""
from collections.abc import Sized
from typing import Any

from coach_brain.services.knowledge.models import KnowledgeModel


def is_present(value: Any) -> bool:
    if value is None:
        return False
    if isinstance(value, str):
        return value.strip() != ""
    if isinstance(value, Sized):
        return len(value) > 0
    return True


def completeness_score(knowledge: KnowledgeModel) -> int:
    """0-100 share of populated fields. 0 for None or an all-empty value."""
    if knowledge is None:
        return 0
    manifest = knowledge.completeness_fields()
    if not manifest:
        return 0
    present = sum(1 for value in manifest.values() if is_present(value))
    return int(100 * present / len(manifest) + 0.5)

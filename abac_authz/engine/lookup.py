"""Attribute map lookups shared by target matching and rule evaluation."""
import re
from typing import List, Optional

from ..models import AttributeCategory, AttributeMap, AttributeValue

# Stored target types that address the subject partition.
CATEGORY_ALIASES = {
    "user": AttributeCategory.SUBJECT.value,
    "role": AttributeCategory.SUBJECT.value,
    "env": AttributeCategory.ENVIRONMENT.value,
}

CATEGORIES = frozenset(category.value for category in AttributeCategory)

_CAMEL_BOUNDARY = re.compile(r'(?<=[a-z0-9])([A-Z])')


def to_snake_case(name: str) -> str:
    """``resourceType`` -> ``resource_type``."""
    return _CAMEL_BOUNDARY.sub(r'_\1', name).lower()


def normalize_category(category: str) -> str:
    category = str(category or "").strip().lower()
    return CATEGORY_ALIASES.get(category, category)


def find_qualified(category: str, name: str, attributes: AttributeMap) -> Optional[AttributeValue]:
    """Find ``{category}.{name}``, falling back to the snake_case name."""
    category = normalize_category(category)
    attribute = attributes.get(f"{category}.{name}")
    if attribute is None:
        snake = to_snake_case(name)
        if snake != name:
            attribute = attributes.get(f"{category}.{snake}")
    return attribute


def split_reference(reference: str):
    """
    Split ``subject.clearance`` into ``("subject", "clearance")``.

    Returns ``(None, reference)`` for a bare name or when the prefix is not
    a known category.
    """
    if "." in reference:
        prefix, _, name = reference.partition(".")
        if normalize_category(prefix) in CATEGORIES and name:
            return normalize_category(prefix), name
    return None, reference


def find_by_name(name: str, attributes: AttributeMap) -> List[AttributeValue]:
    """All attributes named ``name`` in map insertion order."""
    return [attribute for attribute in attributes.values() if attribute.name == name]

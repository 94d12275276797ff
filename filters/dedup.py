"""
Deduplication of surrounding features against enclosed features.
"""
from __future__ import annotations

from collections.abc import Mapping
from typing import Any, Iterable, List, Sequence, TypeVar

T = TypeVar("T")


def _key_value(record: Any, key: str) -> Any:
    if isinstance(record, Mapping):
        return record.get(key)
    return getattr(record, key, None)


def match_keys(a: Any, b: Any, keys: Iterable[str]) -> bool:
    """True when a and b agree on every key attribute."""
    return all(_key_value(a, key) == _key_value(b, key) for key in keys)


def filter_data(data: Sequence[T], data_to_exclude: Sequence[Any], keys: Sequence[str]) -> List[T]:
    """
    Remove records already present in a reference set.

    Args:
        data: Candidate records (dataclasses or dicts)
        data_to_exclude: Records already displayed
        keys: Attribute names forming the composite key

    Returns:
        Candidates whose key tuple matches no reference record. Duplicates
        within the candidates themselves are kept.
    """
    return [
        datum for datum in data
        if not any(match_keys(datum, excluded, keys) for excluded in data_to_exclude)
    ]

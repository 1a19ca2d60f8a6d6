"""Recency-aware record merge keyed by record identity.

Incoming records are folded into an existing collection: new ids are
appended, and an id already present is replaced only when the incoming copy
was extracted strictly later. Ties keep the existing record, which makes
re-applying the same batch a no-op.
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import Protocol, TypeVar


class _Identified(Protocol):
    id: str
    extracted_at: int


R = TypeVar("R", bound=_Identified)


def merge_records(existing: Sequence[R], incoming: Sequence[R]) -> list[R]:
    """Merge ``incoming`` into ``existing`` without duplicating ids.

    Output order is existing records in their original order followed by
    genuinely new incoming records in incoming order.

    Args:
        existing: Records currently persisted for one collection.
        incoming: Freshly harvested batch for the same collection.

    Returns:
        A new list; neither input is modified.
    """
    merged: dict[str, R] = {}

    for record in existing:
        merged[record.id] = record

    for record in incoming:
        current = merged.get(record.id)
        if current is None or record.extracted_at > current.extracted_at:
            merged[record.id] = record

    return list(merged.values())


def count_inserted(existing: Sequence[R], merged: Sequence[R]) -> int:
    """Net-new records produced by a merge. Replacements never count."""
    return max(0, len(merged) - len(existing))

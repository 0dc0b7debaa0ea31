"""
Diff engine for IntegraSync.

Computes created / deleted / same sets between two keyed collections.
The engine never interprets payloads: `same` keeps both values so callers
can detect field-level changes themselves.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Generic, Hashable, Mapping, Tuple, TypeVar

K = TypeVar("K", bound=Hashable)
V = TypeVar("V")
W = TypeVar("W")


@dataclass(frozen=True)
class Changes(Generic[K, V, W]):
    """Outcome of :func:`diff`.

    Attributes:
        created: Keys only present in ``next``, with their new value.
        deleted: Keys only present in ``previous``, with their old value.
        same: Keys present in both, with the ``(previous, next)`` value pair.
    """
    created: Dict[K, W] = field(default_factory=dict)
    deleted: Dict[K, V] = field(default_factory=dict)
    same: Dict[K, Tuple[V, W]] = field(default_factory=dict)

    def is_empty(self) -> bool:
        """True when nothing was created or deleted."""
        return not self.created and not self.deleted

    def summary(self) -> str:
        return f"c{len(self.created)} d{len(self.deleted)} s{len(self.same)}"


def diff(previous: Mapping[K, V], nxt: Mapping[K, W]) -> Changes[K, V, W]:
    """Compare two keyed collections.

    Pure: neither input is mutated. Iteration order follows ``previous`` for
    ``deleted``/``same`` and ``nxt`` for ``created``.
    """
    created: Dict[K, W] = {}
    deleted: Dict[K, V] = {}
    same: Dict[K, Tuple[V, W]] = {}

    for key, value in previous.items():
        if key in nxt:
            same[key] = (value, nxt[key])
        else:
            deleted[key] = value
    for key, value in nxt.items():
        if key not in previous:
            created[key] = value

    return Changes(created=created, deleted=deleted, same=same)

"""
Parent registry and parent reconciliation.

The registry maps identity -> TrackedParent and is mutated only by
`reconcile_parents`, once per pass, against the sanitized parent snapshot.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, Iterator, List, Mapping, Optional

from .diff import diff
from .nodes import Node, TrackedParent
from .tree import NodeTree


class ParentRegistry:
    def __init__(self) -> None:
        self._parents: Dict[str, TrackedParent] = {}

    def __contains__(self, identity: object) -> bool:
        return identity in self._parents

    def __iter__(self) -> Iterator[TrackedParent]:
        return iter(list(self._parents.values()))

    def __len__(self) -> int:
        return len(self._parents)

    def get(self, identity: str) -> Optional[TrackedParent]:
        return self._parents.get(identity)

    def identities(self) -> List[str]:
        return list(self._parents)

    def snapshot(self) -> Dict[str, Node]:
        """identity -> backing node, as seen at the end of the last pass."""
        return {k: p.node for k, p in self._parents.items()}

    def by_node_id(self) -> Dict[str, TrackedParent]:
        return {p.node.id: p for p in self._parents.values()}

    def add(self, parent: TrackedParent) -> None:
        self._parents[parent.identity] = parent

    def drop(self, identity: str) -> Optional[TrackedParent]:
        return self._parents.pop(identity, None)


@dataclass
class ParentChanges:
    created: List[str] = field(default_factory=list)
    deleted: List[str] = field(default_factory=list)
    renamed: List[str] = field(default_factory=list)
    deleted_children: List[str] = field(default_factory=list)

    @property
    def changed(self) -> bool:
        return bool(self.created or self.deleted or self.deleted_children)


def reconcile_parents(
    registry: ParentRegistry,
    current: Mapping[str, Node],
    nodes: List[Node],
    tree: NodeTree,
    *,
    logger: Optional[logging.LoggerAdapter] = None,
) -> ParentChanges:
    """
    Bring `registry` in line with `current` (identity -> surviving parent node).

    Children of untracked parents are deleted in one batch, except when the same
    node id comes back under a new identity in this pass (a label edit), in
    which case its children are kept.
    """
    log = logger or logging.getLogger("isync.registry")
    changes = diff(registry.snapshot(), current)
    result = ParentChanges()

    if not changes.is_empty():
        log.info("Δ %s", changes.summary())

    # backing node id -> child node ids queued for deletion
    pending: Dict[str, List[str]] = {}
    for identity, old_node in changes.deleted.items():
        pending[old_node.id] = [n.id for n in nodes if n.is_child and n.parent_id == old_node.id]
        registry.drop(identity)
        result.deleted.append(identity)
        log.info("%s untracked", identity)

    for identity, node in changes.created.items():
        registry.add(TrackedParent(identity=identity, node=node))
        result.created.append(identity)
        if node.id in pending:
            kept = pending.pop(node.id)
            result.renamed.append(identity)
            log.info("%s tracked (renamed, keeping %d child(ren))", identity, len(kept))
        else:
            log.info("%s tracked", identity)

    for identity, (_, node) in changes.same.items():
        tracked = registry.get(identity)
        if tracked is not None:
            tracked.node = node

    to_delete = [cid for ids in pending.values() for cid in ids]
    if to_delete:
        log.info("Cleaning up %d child node(s) of untracked parents", len(to_delete))
        tree.delete_nodes(to_delete)
    result.deleted_children = to_delete
    return result

"""
Child reconciler: mirrors each parent's fetched instances as child nodes.

Children are fully server-driven: manual edits to a child's label are
overwritten on the next successful fetch. Parents without a successful
fetch in the current pass are left alone.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from .diff import diff
from .nodes import CHILD_KIND, STATUS_OK, InstanceRecord, Node, TrackedParent
from .registry import ParentRegistry
from .tree import NodeTree


@dataclass(frozen=True)
class ChildLayout:
    """Initial geometry for new children, stacked beneath their parent."""
    width: int = 300
    height: int = 42

    def placement(self, slot: int) -> Dict[str, Any]:
        return {"size": [self.width, self.height], "offset": [0, (slot + 1) * self.height]}


class ChildReconciler:
    def __init__(
        self,
        tree: NodeTree,
        layout: Optional[ChildLayout] = None,
        *,
        logger: Optional[logging.LoggerAdapter] = None,
    ) -> None:
        self.tree = tree
        self.layout = layout or ChildLayout()
        self.log = logger or logging.getLogger("isync.children")

    @staticmethod
    def attach_children(registry: ParentRegistry, nodes: List[Node]) -> None:
        """Rebuild every parent's instance-id -> child map from a tree snapshot."""
        by_node = registry.by_node_id()
        for parent in by_node.values():
            parent.children = {}
        for n in nodes:
            if not n.is_child or n.instance_id is None:
                continue
            parent = by_node.get(n.parent_id or "")
            if parent is not None and n.instance_id not in parent.children:
                parent.children[n.instance_id] = n

    def reconcile(self, registry: ParentRegistry, nodes: List[Node]) -> Dict[str, int]:
        counts: Dict[str, int] = {}
        self.attach_children(registry, nodes)
        for parent in registry:
            if parent.status != STATUS_OK or parent.instances is None:
                continue
            try:
                self._reconcile_parent(parent, counts)
            except Exception as e:
                counts["EXCEPTION"] = counts.get("EXCEPTION", 0) + 1
                self.log.exception("Child reconciliation failed for %s: %s", parent.identity, e)
        return counts

    def _reconcile_parent(self, parent: TrackedParent, counts: Dict[str, int]) -> None:
        instances = parent.instances or []
        nxt: Dict[str, InstanceRecord] = {i.instance_id: i for i in instances}
        slots = {i.instance_id: idx for idx, i in enumerate(instances)}
        changes = diff(parent.children, nxt)
        if not changes.is_empty():
            self.log.info("%s Δ %s", parent.identity, changes.summary())

        if changes.deleted:
            self.tree.delete_nodes([n.id for n in changes.deleted.values()])
            for instance_id in changes.deleted:
                parent.children.pop(instance_id, None)
            _bump(counts, "CHILD_DELETED", len(changes.deleted))

        for instance_id, rec in changes.created.items():
            fields = {"label": rec.text, "placement": self.layout.placement(slots[instance_id])}
            node_id = self.tree.create_child_node(parent.node.id, instance_id, fields)
            parent.children[instance_id] = Node(
                id=node_id,
                kind=CHILD_KIND,
                parent_id=parent.node.id,
                label=rec.text,
                placement=fields["placement"],
                instance_id=instance_id,
            )
            _bump(counts, "CHILD_CREATED")

        updates = [
            {"id": node.id, "label": rec.text}
            for node, rec in changes.same.values()
            if node.label != rec.text
        ]
        if updates:
            self.tree.update_nodes(updates)
            for node, rec in changes.same.values():
                node.label = rec.text
            _bump(counts, "CHILD_UPDATED", len(updates))


def _bump(counts: Dict[str, int], key: str, n: int = 1) -> None:
    counts[key] = counts.get(key, 0) + n

"""Status projector: reflects each parent's fetch outcome onto its label."""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from .nodes import DEFAULT_ERROR_MARKER, status_label
from .registry import ParentRegistry
from .tree import NodeTree


def project_statuses(registry: ParentRegistry, marker: str = DEFAULT_ERROR_MARKER) -> List[Dict[str, Any]]:
    """Label patches for parents whose visible label is out of date."""
    patches: List[Dict[str, Any]] = []
    for parent in registry:
        label = status_label(parent.identity, parent.status, marker)
        if parent.node.label != label:
            patches.append({"id": parent.node.id, "label": label})
    return patches


class StatusProjector:
    def __init__(self, marker: str = DEFAULT_ERROR_MARKER, *, logger: Optional[logging.LoggerAdapter] = None) -> None:
        self.marker = marker
        self.log = logger or logging.getLogger("isync.status")

    def apply(self, tree: NodeTree, registry: ParentRegistry) -> int:
        patches = project_statuses(registry, self.marker)
        if not patches:
            return 0
        tree.update_nodes(patches)
        by_id = registry.by_node_id()
        for patch in patches:
            by_id[patch["id"]].node.label = patch["label"]
            self.log.debug("label %s -> %r", patch["id"], patch["label"])
        return len(patches)

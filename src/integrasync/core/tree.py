"""
Local node tree: the collaborator contract used by the reconciliation core,
plus a thread-safe in-memory implementation with JSON persistence.

Core-facing mutators (create_child_node / update_nodes / delete_nodes) never
fire change callbacks; user-facing ones (add_node / edit_node / remove_nodes /
select) do.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
import threading
import uuid
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Protocol, Sequence

from .nodes import CHILD_KIND, PARENT_KIND, Node

__all__ = ["NodeTree", "InMemoryTree", "TreeFileError", "load_tree", "save_tree"]

ChangeCallback = Callable[[], Any]
Unsubscribe = Callable[[], None]

# Node attributes a patch may touch; "id" addresses the node.
_PATCHABLE = ("label", "placement", "parent_id", "instance_id", "kind")


class TreeFileError(RuntimeError):
    """Raised when a tree file cannot be read or written."""


class NodeTree(Protocol):
    def list_nodes(self) -> List[Node]: ...

    def create_child_node(self, parent_id: str, instance_id: str, fields: Mapping[str, Any]) -> str: ...

    def update_nodes(self, patches: Sequence[Mapping[str, Any]]) -> None: ...

    def delete_nodes(self, ids: Sequence[str]) -> None: ...

    def on_external_change(self, callback: ChangeCallback) -> Unsubscribe: ...

    def is_busy(self) -> bool: ...


def _new_id() -> str:
    return uuid.uuid4().hex[:12]


class InMemoryTree:
    """Ordered, lock-protected node store."""

    def __init__(self, nodes: Optional[Iterable[Node]] = None, *, logger: Optional[logging.Logger] = None) -> None:
        self._lock = threading.RLock()
        self._nodes: Dict[str, Node] = {}
        self._selected: set[str] = set()
        self._listeners: List[ChangeCallback] = []
        self.log = logger or logging.getLogger("isync.tree")
        for n in nodes or ():
            self._nodes[n.id] = n

    # ------------- Core-facing capabilities -------------

    def list_nodes(self) -> List[Node]:
        with self._lock:
            return [self._copy(n) for n in self._nodes.values()]

    def get(self, node_id: str) -> Optional[Node]:
        with self._lock:
            n = self._nodes.get(node_id)
            return self._copy(n) if n else None

    def create_child_node(self, parent_id: str, instance_id: str, fields: Mapping[str, Any]) -> str:
        with self._lock:
            if parent_id not in self._nodes:
                raise KeyError(f"Unknown parent node '{parent_id}'")
            node_id = _new_id()
            while node_id in self._nodes:
                node_id = _new_id()
            self._nodes[node_id] = Node(
                id=node_id,
                kind=str(fields.get("kind") or CHILD_KIND),
                parent_id=parent_id,
                label=str(fields.get("label") or ""),
                placement=dict(fields.get("placement") or {}),
                instance_id=instance_id,
            )
            return node_id

    def update_nodes(self, patches: Sequence[Mapping[str, Any]]) -> None:
        with self._lock:
            for patch in patches:
                node = self._nodes.get(str(patch.get("id")))
                if node is None:
                    self.log.debug("update skipped, node gone: %s", patch.get("id"))
                    continue
                self._patch(node, patch)

    def delete_nodes(self, ids: Sequence[str]) -> None:
        with self._lock:
            for node_id in ids:
                self._nodes.pop(node_id, None)
                self._selected.discard(node_id)

    def on_external_change(self, callback: ChangeCallback) -> Unsubscribe:
        with self._lock:
            self._listeners.append(callback)

        def unsubscribe() -> None:
            with self._lock:
                if callback in self._listeners:
                    self._listeners.remove(callback)

        return unsubscribe

    def is_busy(self) -> bool:
        with self._lock:
            return bool(self._selected)

    # ------------- User-facing edits (fire change callbacks) -------------

    def add_node(
        self,
        kind: str = PARENT_KIND,
        label: str = "",
        *,
        node_id: Optional[str] = None,
        parent_id: Optional[str] = None,
        placement: Optional[Dict[str, Any]] = None,
        instance_id: Optional[str] = None,
    ) -> str:
        with self._lock:
            nid = node_id or _new_id()
            if nid in self._nodes:
                raise ValueError(f"Node id already exists: {nid}")
            self._nodes[nid] = Node(
                id=nid,
                kind=kind,
                parent_id=parent_id,
                label=label,
                placement=dict(placement or {}),
                instance_id=instance_id,
            )
        self._notify()
        return nid

    def edit_node(self, node_id: str, **fields: Any) -> None:
        with self._lock:
            node = self._nodes.get(node_id)
            if node is None:
                raise KeyError(f"Unknown node '{node_id}'")
            self._patch(node, fields)
        self._notify()

    def remove_nodes(self, ids: Sequence[str]) -> None:
        self.delete_nodes(ids)
        self._notify()

    def select(self, ids: Sequence[str]) -> None:
        """Replace the interactive selection; an empty selection frees the tree."""
        with self._lock:
            self._selected = {i for i in ids if i in self._nodes}
        self._notify()

    # ------------- Internal -------------

    @staticmethod
    def _copy(node: Node) -> Node:
        return Node(
            id=node.id,
            kind=node.kind,
            parent_id=node.parent_id,
            label=node.label,
            placement=dict(node.placement),
            instance_id=node.instance_id,
        )

    @staticmethod
    def _patch(node: Node, fields: Mapping[str, Any]) -> None:
        for key in _PATCHABLE:
            if key in fields:
                value = fields[key]
                setattr(node, key, dict(value) if key == "placement" else value)

    def _notify(self) -> None:
        with self._lock:
            listeners = list(self._listeners)
        for cb in listeners:
            try:
                cb()
            except Exception:
                self.log.exception("External change listener failed")


# ---------- JSON persistence ----------

def load_tree(path: str, *, logger: Optional[logging.Logger] = None) -> InMemoryTree:
    """Read a tree file; a missing file yields an empty tree."""
    p = Path(path)
    if not p.exists():
        return InMemoryTree(logger=logger)
    try:
        with p.open("r", encoding="utf-8") as f:
            data = json.load(f) or {}
        raw = data.get("nodes") if isinstance(data, dict) else None
        if not isinstance(raw, list):
            raise TreeFileError(f"Tree file must hold a 'nodes' list: {path}")
        nodes = [Node.from_dict(item) for item in raw]
    except (OSError, json.JSONDecodeError, ValueError) as e:
        raise TreeFileError(f"Cannot load tree file {path}: {e}") from e
    return InMemoryTree(nodes, logger=logger)


def save_tree(tree: InMemoryTree, path: str) -> None:
    """Write the tree atomically (temp file in the same directory, then replace)."""
    p = Path(path)
    payload = {"nodes": [n.to_dict() for n in tree.list_nodes()]}
    directory = p.parent if str(p.parent) else Path(".")
    directory.mkdir(parents=True, exist_ok=True)
    fd, tmp = tempfile.mkstemp(prefix=f".{p.name}.", dir=str(directory))
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            json.dump(payload, f, ensure_ascii=False, indent=2)
        os.replace(tmp, p)
    except OSError as e:
        try:
            os.unlink(tmp)
        except OSError:
            pass
        raise TreeFileError(f"Cannot write tree file {path}: {e}") from e

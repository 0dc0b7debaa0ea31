"""
Reconciliation pass for IntegraSync.

Lifecycle of one pass:
  guard (tree busy?) -> sanitize -> parent diff/apply -> fetch instances
  -> project statuses -> child diff/apply

- The tree and the parent registry are only written from here.
- Fetch failures are isolated per parent (status=error, children untouched).
- Nothing raises out of `run_pass`; unexpected failures are logged and counted
  as EXCEPTION so the next trigger simply tries again.
"""

from __future__ import annotations

import logging
import time
import uuid
from dataclasses import dataclass, field
from typing import Dict, Optional

from .children import ChildLayout, ChildReconciler
from .fetcher import RemoteFetcher
from .nodes import DEFAULT_ERROR_MARKER, IdentityParser, Node, parse_identity
from .registry import ParentRegistry, reconcile_parents
from .sanitizer import Sanitizer
from .status import StatusProjector
from .tree import NodeTree

# Counts that reflect a mutation of the tree.
_MUTATIONS = ("SANITIZED", "UNTRACKED_CHILDREN", "LABEL_UPDATED", "CHILD_CREATED", "CHILD_UPDATED", "CHILD_DELETED")
_SUMMARY_KEYS = (
    "SANITIZED",
    "TRACKED",
    "UNTRACKED",
    "RENAMED",
    "FETCH_OK",
    "FETCH_ERROR",
    "LABEL_UPDATED",
    "CHILD_CREATED",
    "CHILD_UPDATED",
    "CHILD_DELETED",
    "EXCEPTION",
)


@dataclass
class PassResult:
    pass_id: str
    skipped: bool = False
    counts: Dict[str, int] = field(default_factory=dict)
    errors: Dict[str, str] = field(default_factory=dict)
    duration_ms: float = 0.0

    @property
    def changed(self) -> bool:
        return any(self.counts.get(k, 0) for k in _MUTATIONS)

    @property
    def failed(self) -> bool:
        return bool(self.counts.get("FETCH_ERROR", 0) or self.counts.get("EXCEPTION", 0))


def summarize_counts(counts: Dict[str, int]) -> str:
    # stable order for readability
    return " | ".join(f"{k}={counts.get(k, 0)}" for k in _SUMMARY_KEYS)


class Reconciler:
    """Owns the parent registry and runs passes against a NodeTree."""

    def __init__(
        self,
        tree: NodeTree,
        fetcher: RemoteFetcher,
        *,
        parse: IdentityParser = parse_identity,
        marker: str = DEFAULT_ERROR_MARKER,
        layout: Optional[ChildLayout] = None,
        logger: Optional[logging.LoggerAdapter] = None,
    ) -> None:
        self.tree = tree
        self.fetcher = fetcher
        self.parse = parse
        self.log = logger or logging.getLogger("isync.engine")
        self.registry = ParentRegistry()
        self.sanitizer = Sanitizer(parse, logger=self.log)
        self.projector = StatusProjector(marker, logger=self.log)
        self.children = ChildReconciler(tree, layout, logger=self.log)

    def run_pass(self) -> PassResult:
        result = PassResult(pass_id=uuid.uuid4().hex[:8])
        start = time.time()
        try:
            if self.tree.is_busy():
                result.skipped = True
                self.log.debug("Pass %s skipped: tree is being edited", result.pass_id)
                return result
            self._run(result)
        except Exception as e:
            _bump(result.counts, "EXCEPTION")
            self.log.exception("Pass %s aborted: %s", result.pass_id, e)
        finally:
            result.duration_ms = (time.time() - start) * 1000
        if result.changed or result.failed:
            self.log.info("Pass %s: %s", result.pass_id, summarize_counts(result.counts))
        else:
            self.log.debug("Pass %s: no changes (%.1fms)", result.pass_id, result.duration_ms)
        return result

    def _run(self, result: PassResult) -> None:
        counts = result.counts

        # 1) sanitize
        report = self.sanitizer.run(self.tree)
        _bump(counts, "SANITIZED", len(report.to_delete))

        # 2) parents
        nodes = self.tree.list_nodes()
        current: Dict[str, Node] = {}
        for n in sorted(nodes, key=lambda n: n.id):
            if n.is_parent:
                current.setdefault(self.parse(n.label), n)
        changes = reconcile_parents(self.registry, current, nodes, self.tree, logger=self.log)
        _bump(counts, "TRACKED", len(changes.created) - len(changes.renamed))
        _bump(counts, "UNTRACKED", len(changes.deleted) - len(changes.renamed))
        _bump(counts, "RENAMED", len(changes.renamed))
        _bump(counts, "UNTRACKED_CHILDREN", len(changes.deleted_children))

        # 3) remote state
        fetched = self.fetcher.fetch_all(self.registry)
        _bump(counts, "FETCH_OK", len(fetched.ok))
        _bump(counts, "FETCH_ERROR", len(fetched.errors))
        result.errors.update(fetched.errors)

        # 4) statuses
        _bump(counts, "LABEL_UPDATED", self.projector.apply(self.tree, self.registry))

        # 5) children, against a fresh snapshot
        for key, n in self.children.reconcile(self.registry, self.tree.list_nodes()).items():
            _bump(counts, key, n)


def _bump(counts: Dict[str, int], key: str, n: int = 1) -> None:
    if n:
        counts[key] = counts.get(key, 0) + n

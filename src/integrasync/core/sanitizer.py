"""
Sanitizer: restores tree invariants before each pass.

Removes
  - parent nodes whose identity is already claimed by a lower-id parent
    (usually the result of copying an existing integration),
  - child nodes whose parent is not a surviving parent,
  - child nodes repeating an instance id already claimed under the same parent.

Ties are broken by ascending node id: the first node wins.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Set

from .nodes import IdentityParser, Node, parse_identity
from .tree import NodeTree


@dataclass
class SanitizeReport:
    to_delete: List[str] = field(default_factory=list)
    # surviving parent node id -> identity
    parents: Dict[str, str] = field(default_factory=dict)
    # surviving parent node id -> claimed instance ids
    claims: Dict[str, Set[str]] = field(default_factory=dict)


def sanitize(nodes: Iterable[Node], parse: IdentityParser = parse_identity) -> SanitizeReport:
    """Compute which nodes violate uniqueness or parent-reference rules."""
    ordered = sorted(nodes, key=lambda n: n.id)
    report = SanitizeReport()
    seen: Set[str] = set()
    claimed_identities: Set[str] = set()

    def mark(node_id: str) -> None:
        if node_id not in seen:
            seen.add(node_id)
            report.to_delete.append(node_id)

    for n in ordered:
        if not n.is_parent:
            continue
        identity = parse(n.label)
        if identity in claimed_identities:
            mark(n.id)
            continue
        claimed_identities.add(identity)
        report.parents[n.id] = identity
        report.claims[n.id] = set()

    for n in ordered:
        if not n.is_child:
            continue
        claims = report.claims.get(n.parent_id or "")
        if claims is None or n.instance_id is None:
            mark(n.id)
            continue
        if n.instance_id in claims:
            mark(n.id)
            continue
        claims.add(n.instance_id)

    return report


class Sanitizer:
    def __init__(self, parse: IdentityParser = parse_identity, *, logger: Optional[logging.LoggerAdapter] = None) -> None:
        self.parse = parse
        self.log = logger or logging.getLogger("isync.sanitizer")

    def run(self, tree: NodeTree, nodes: Optional[List[Node]] = None) -> SanitizeReport:
        """Plan against a snapshot and delete offenders in a single batch."""
        snapshot = nodes if nodes is not None else tree.list_nodes()
        report = sanitize(snapshot, self.parse)
        if report.to_delete:
            self.log.info("Sanitizer removing %d node(s): %s", len(report.to_delete), ", ".join(report.to_delete))
            tree.delete_nodes(report.to_delete)
        return report

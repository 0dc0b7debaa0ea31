"""
Data model shared by every phase of a reconciliation pass.

- Node: generic local entity as listed by the tree collaborator.
- TrackedParent: registry entry derived from a parent node (identity, status, children).
- InstanceRecord: one remote-reported instance.
- Identity parsing and status decoration of parent labels.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Mapping, Optional

PARENT_KIND = "integration"
CHILD_KIND = "instance"

STATUS_PENDING = "pending"
STATUS_OK = "ok"
STATUS_ERROR = "error"

DEFAULT_ERROR_MARKER = "\U0001F534"  # red circle

# A leading chunk shorter than this is taken to be a status glyph.
_GLYPH_MAX_LEN = 5

IdentityParser = Callable[[str], str]


@dataclass
class Node:
    id: str
    kind: str
    parent_id: Optional[str] = None
    label: str = ""
    placement: Dict[str, Any] = field(default_factory=dict)
    instance_id: Optional[str] = None

    @property
    def is_parent(self) -> bool:
        return self.kind == PARENT_KIND and self.parent_id is None

    @property
    def is_child(self) -> bool:
        """Instance children: dedicated kind, or a parent-kind node attached to another node."""
        if self.kind == CHILD_KIND:
            return True
        return self.kind == PARENT_KIND and self.parent_id is not None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "kind": self.kind,
            "parent_id": self.parent_id,
            "label": self.label,
            "placement": dict(self.placement),
            "instance_id": self.instance_id,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Node":
        if "id" not in data or "kind" not in data:
            raise ValueError(f"Node requires 'id' and 'kind': {dict(data)!r}")
        return cls(
            id=str(data["id"]),
            kind=str(data["kind"]),
            parent_id=None if data.get("parent_id") is None else str(data["parent_id"]),
            label=str(data.get("label") or ""),
            placement=dict(data.get("placement") or {}),
            instance_id=None if data.get("instance_id") is None else str(data["instance_id"]),
        )


@dataclass(frozen=True)
class InstanceRecord:
    """One instance reported by a remote directory."""
    instance_id: str
    text: str


@dataclass
class TrackedParent:
    identity: str
    node: Node
    status: str = STATUS_PENDING
    children: Dict[str, Node] = field(default_factory=dict)
    instances: Optional[List[InstanceRecord]] = None
    error: str = ""


def parse_identity(label: str) -> str:
    """
    Extract the identity from a parent label.

    Chunks are split on single spaces, so a decorated empty identity
    ("<glyph> ") parses back to "".

    "db" -> "db"; "<glyph> db" -> "db"; "https://x/api note" -> "https://x/api".
    """
    chunks = (label or "").split(" ")
    if len(chunks) == 1:
        return chunks[0]
    if len(chunks[0]) < _GLYPH_MAX_LEN:
        return chunks[1]
    return chunks[0]


def decorate(identity: str, marker: str = DEFAULT_ERROR_MARKER) -> str:
    return f"{marker} {identity}"


def status_label(identity: str, status: str, marker: str = DEFAULT_ERROR_MARKER) -> str:
    if status == STATUS_OK:
        return identity
    return decorate(identity, marker)

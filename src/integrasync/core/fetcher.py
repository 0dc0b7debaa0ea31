"""
Remote state fetcher: one instance-list lookup per tracked parent per pass.

Failures are isolated per parent: the failing parent gets status=error and
keeps its previously known instances; every other parent is still fetched.

Instance sources are plain callables `(identity) -> iterable of records`,
so any remote directory can be plugged in. `HttpInstanceSource` GETs the
identity as a URL and accepts either:
  - {"instances": [{"instanceId": "...", "text": "..."}, ...]}
  - [{"instanceId": "...", "text": "..."}, ...]
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Union

from .nodes import STATUS_ERROR, STATUS_OK, DEFAULT_ERROR_MARKER, InstanceRecord, TrackedParent
from .registry import ParentRegistry
from .remote_client import HttpError, RemoteClient

__all__ = [
    "InstanceSource",
    "RemoteFetchError",
    "HttpInstanceSource",
    "RemoteFetcher",
    "FetchReport",
    "normalize_instances",
]

RawRecord = Union[InstanceRecord, Mapping[str, Any]]
InstanceSource = Callable[[str], Iterable[RawRecord]]


class RemoteFetchError(RuntimeError):
    """Raised when a remote directory cannot be read or returns a malformed payload."""


def _to_record(raw: RawRecord) -> InstanceRecord:
    if isinstance(raw, InstanceRecord):
        return raw
    if not isinstance(raw, Mapping):
        raise RemoteFetchError(f"Instance record must be an object, got {type(raw).__name__}")
    instance_id = raw.get("instanceId", raw.get("instance_id"))
    if not isinstance(instance_id, str) or not instance_id:
        raise RemoteFetchError(f"Instance record without a string instanceId: {dict(raw)!r}")
    text = raw.get("text")
    if text is None:
        text = instance_id
    return InstanceRecord(instance_id=instance_id, text=str(text))


def normalize_instances(raw: Iterable[RawRecord]) -> List[InstanceRecord]:
    """Validate records; a repeated instance id keeps its first occurrence."""
    out: List[InstanceRecord] = []
    seen = set()
    for item in raw:
        rec = _to_record(item)
        if rec.instance_id in seen:
            continue
        seen.add(rec.instance_id)
        out.append(rec)
    return out


def _extract_instances(payload: Any) -> List[Any]:
    if isinstance(payload, list):
        return list(payload)
    if isinstance(payload, dict) and isinstance(payload.get("instances"), list):
        return list(payload["instances"])
    raise RemoteFetchError("Directory must return a JSON list or an object with an 'instances' list")


class HttpInstanceSource:
    """
    Callable instance source backed by RemoteClient.

    Example:
        source = HttpInstanceSource(RemoteClient(timeout_sec=5))
        source("https://host/tldraw")  # -> list of instance dicts
    """

    def __init__(self, client: RemoteClient, *, logger: Optional[logging.Logger] = None) -> None:
        self.client = client
        self.logger = logger or logging.getLogger("isync.source")

    def __call__(self, identity: str) -> List[Any]:
        try:
            payload = self.client.get_json(identity)
        except HttpError as e:
            raise RemoteFetchError(f"Failed to fetch instances for '{identity}': {e}") from e
        items = _extract_instances(payload)
        self.logger.debug("Instances loaded: identity=%s count=%d", identity, len(items))
        return items


@dataclass
class FetchReport:
    ok: List[str] = field(default_factory=list)
    errors: Dict[str, str] = field(default_factory=dict)


class RemoteFetcher:
    def __init__(
        self,
        source: InstanceSource,
        *,
        concurrency: int = 1,
        marker: str = DEFAULT_ERROR_MARKER,
        logger: Optional[logging.LoggerAdapter] = None,
    ) -> None:
        self.source = source
        self.concurrency = max(1, int(concurrency))
        self.marker = marker
        self.log = logger or logging.getLogger("isync.fetcher")

    def fetch_one(self, parent: TrackedParent) -> List[InstanceRecord]:
        return normalize_instances(self.source(parent.identity))

    def fetch_all(self, registry: ParentRegistry) -> FetchReport:
        parents = list(registry)
        report = FetchReport()
        if not parents:
            return report

        if self.concurrency == 1 or len(parents) == 1:
            outcomes = [self._guarded(p) for p in parents]
        else:
            with ThreadPoolExecutor(max_workers=min(self.concurrency, len(parents)), thread_name_prefix="isync-fetch") as pool:
                outcomes = list(pool.map(self._guarded, parents))

        # statuses are applied on the pass thread, in registry order
        for parent, (instances, error) in zip(parents, outcomes):
            if error is None:
                parent.status = STATUS_OK
                parent.instances = instances
                parent.error = ""
                report.ok.append(parent.identity)
            else:
                parent.status = STATUS_ERROR
                parent.error = error
                report.errors[parent.identity] = error
                self.log.error("%s %s: %s", self.marker, parent.identity, error)
        return report

    def _guarded(self, parent: TrackedParent) -> tuple[Optional[List[InstanceRecord]], Optional[str]]:
        try:
            return self.fetch_one(parent), None
        except RemoteFetchError as e:
            return None, str(e)
        except Exception as e:
            self.log.debug("Unexpected fetch failure for %s", parent.identity, exc_info=True)
            return None, f"{type(e).__name__}: {e}"

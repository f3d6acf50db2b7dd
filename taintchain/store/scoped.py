"""Scoped key/value store for stored (second-order) flows.

The store is partitioned by scope and partition id:

* ``request`` partitions are keyed by execution id and released when the
  execution that owns them finishes.
* ``session`` partitions are keyed by session id and live until the session
  is torn down with ``end_session``.
* ``process`` has a single implicit partition that lives as long as the store.

Access is deliberately unsynchronized. Concurrent chains writing the same
session or process key race exactly the way stored-injection targets do, and
the last write wins. There is no eviction.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Final

from taintchain.errors import Cleared, NotFound
from taintchain.models.provenance import TaintedValue
from taintchain.models.store import PROCESS_PARTITION, StoreEntry, StoreScope

logger = logging.getLogger(__name__)


class _ClearedMarker:
    __slots__ = ()

    def __repr__(self) -> str:
        return "<cleared>"


_CLEARED: Final = _ClearedMarker()


def _partition_id(scope: StoreScope, scope_id: str | None) -> str:
    if scope == StoreScope.process:
        return PROCESS_PARTITION
    if not scope_id:
        raise ValueError(f"{scope} scope requires a scope_id")
    return scope_id


@dataclass
class ScopedStore:
    """In-memory store of ``StoreEntry`` objects keyed by (scope, partition, key)."""

    _partitions: dict[tuple[StoreScope, str], dict[str, StoreEntry | _ClearedMarker]] = field(
        default_factory=dict
    )

    def put(
        self,
        scope: StoreScope,
        key: str,
        value: TaintedValue,
        *,
        scope_id: str | None = None,
        written_at_hop: int | None = None,
    ) -> StoreEntry:
        scope = StoreScope(scope)
        partition = _partition_id(scope, scope_id)
        entry = StoreEntry(
            scope=scope,
            scope_id=partition,
            key=key,
            value=value,
            written_at_hop=value.hop_count if written_at_hop is None else written_at_hop,
        )
        self._partitions.setdefault((scope, partition), {})[key] = entry
        logger.debug(
            "store_put scope=%s partition=%s key=%s labels=%d hop=%d",
            scope,
            partition,
            key,
            len(value.labels),
            entry.written_at_hop,
        )
        return entry

    def entry(self, scope: StoreScope, key: str, *, scope_id: str | None = None) -> StoreEntry:
        """Return the full entry, raising ``NotFound`` or ``Cleared``."""
        scope = StoreScope(scope)
        partition = _partition_id(scope, scope_id)
        slot = self._partitions.get((scope, partition), {}).get(key)
        if slot is None:
            raise NotFound(
                f"no value stored at {scope}/{partition}/{key}",
                component_id=f"{scope}:{key}",
            )
        if isinstance(slot, _ClearedMarker):
            raise Cleared(
                f"value at {scope}/{partition}/{key} was cleared",
                component_id=f"{scope}:{key}",
            )
        return slot

    def get(self, scope: StoreScope, key: str, *, scope_id: str | None = None) -> TaintedValue:
        return self.entry(scope, key, scope_id=scope_id).value

    def clear(self, scope: StoreScope, key: str, *, scope_id: str | None = None) -> bool:
        """Mark one live key cleared. Returns False, and changes nothing, otherwise."""
        scope = StoreScope(scope)
        entries = self._partitions.get((scope, _partition_id(scope, scope_id)), {})
        if not isinstance(entries.get(key), StoreEntry):
            return False
        entries[key] = _CLEARED
        return True

    def clear_scope(self, scope: StoreScope, scope_id: str | None = None) -> int:
        """Mark every key in one partition cleared. Returns the number of live values dropped."""
        scope = StoreScope(scope)
        partition = _partition_id(scope, scope_id)
        entries = self._partitions.get((scope, partition))
        if not entries:
            return 0
        dropped = sum(1 for slot in entries.values() if isinstance(slot, StoreEntry))
        for key in entries:
            entries[key] = _CLEARED
        logger.debug(
            "store_clear_scope scope=%s partition=%s dropped=%d", scope, partition, dropped
        )
        return dropped

    def release(self, scope: StoreScope, scope_id: str | None = None) -> None:
        """Forget a partition entirely; later reads see ``NotFound``."""
        scope = StoreScope(scope)
        self._partitions.pop((scope, _partition_id(scope, scope_id)), None)

    def end_session(self, session_id: str) -> int:
        """Clear every key of one session.

        The partition keeps its tombstones so a late read reports ``Cleared``
        rather than ``NotFound``. Each ended session costs one dict of keys
        until ``release(StoreScope.session, session_id)`` drops it.
        """
        return self.clear_scope(StoreScope.session, session_id)

    def keys(self, scope: StoreScope, scope_id: str | None = None) -> list[str]:
        """Keys holding live (non-cleared) values in one partition."""
        scope = StoreScope(scope)
        entries = self._partitions.get((scope, _partition_id(scope, scope_id)), {})
        return sorted(key for key, slot in entries.items() if isinstance(slot, StoreEntry))

    def partitions(self, scope: StoreScope) -> list[str]:
        scope = StoreScope(scope)
        return sorted(partition for s, partition in self._partitions if s == scope)


__all__ = ["ScopedStore"]

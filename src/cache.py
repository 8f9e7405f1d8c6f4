"""
Object Cache - Read-through cache over the configuration object store.

Serves cheap reads for the ensurer. Entries are filled by list syncs and by
read-through on a miss, and kept fresh by consuming in-process store events.
Writes made by other processes only show up after the next sync, which the
controller runs at the start of every pass. The cache is only eventually
consistent: a very recent write may not be visible yet, which the ensurer
tolerates through resource version conflicts.
"""

import copy
import logging
from typing import Any, Dict, List, Optional, Set

from db import DatabaseManager, NotFoundError
from events import EventBus, EventType, ObjectEvent

logger = logging.getLogger(__name__)


def _version(record: Dict[str, Any]) -> int:
    value = record.get("resource_version")
    return int(value) if value is not None else 0


class ObjectCache:
    """Per-kind cache of store records keyed by object name."""

    def __init__(self, db: DatabaseManager, event_bus: Optional[EventBus] = None):
        self._db = db
        self._event_bus = event_bus
        self._objects: Dict[str, Dict[str, Dict[str, Any]]] = {}
        self._synced_kinds: Set[str] = set()
        self._subscriber_id: Optional[str] = None

    async def sync(self, kind: str) -> None:
        """Replace the cached contents of a kind with a fresh list."""
        records = await self._db.list_objects(kind)
        self._objects[kind] = {record["name"]: record for record in records}
        self._synced_kinds.add(kind)
        logger.debug(f"Synced {len(records)} {kind} object(s) into the cache")

    async def get(self, kind: str, name: str) -> Dict[str, Any]:
        """
        Get a copy of an object record, reading through to the store on a miss.

        Raises:
            NotFoundError: If neither the cache nor the store has the object.
        """
        record = self._objects.get(kind, {}).get(name)
        if record is None:
            record = await self._db.get_object(kind, name)
            if record is None:
                raise NotFoundError(f"{kind} {name!r} not found")
            self.remember(record)
        return copy.deepcopy(record)

    async def list(self, kind: str) -> List[Dict[str, Any]]:
        """List copies of all cached records of a kind, syncing it first if needed."""
        if kind not in self._synced_kinds:
            await self.sync(kind)
        return [copy.deepcopy(r) for r in self._objects.get(kind, {}).values()]

    def invalidate(self, kind: str, name: str) -> None:
        """Forget one entry so the next get reads through to the store."""
        self._objects.get(kind, {}).pop(name, None)

    def apply_event(self, event: ObjectEvent) -> None:
        """Fold a store event into the cache, ignoring out-of-order ones."""
        if event.event_type == EventType.DELETED:
            cached = self._objects.get(event.kind, {}).get(event.name)
            if cached is not None and cached.get("uid") == event.record.get("uid"):
                del self._objects[event.kind][event.name]
            return
        self.remember(event.record)

    def remember(self, record: Dict[str, Any]) -> None:
        """Cache a record unless a newer version is already cached."""
        kind_objects = self._objects.setdefault(record["kind"], {})
        cached = kind_objects.get(record["name"])
        if cached is not None and _version(cached) > _version(record):
            return
        kind_objects[record["name"]] = copy.deepcopy(record)

    async def run(self) -> None:
        """Consume store events until stop() is called."""
        if self._event_bus is None:
            raise RuntimeError("ObjectCache.run() requires an event bus")

        self._subscriber_id, subscription = await self._event_bus.subscribe()
        logger.info("Object cache watching store events")
        async for event in subscription:
            self.apply_event(event)

    async def stop(self) -> None:
        if self._event_bus is not None and self._subscriber_id is not None:
            await self._event_bus.unsubscribe(self._subscriber_id)
            self._subscriber_id = None

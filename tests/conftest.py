"""Pytest configuration and fixtures."""

import asyncio
import copy
import itertools
import uuid
from typing import Any, Dict, List, Optional

import pytest
from unittest.mock import AsyncMock, MagicMock

from cache import ObjectCache
from configuration import FlowSchemaAccess, PriorityLevelConfigurationAccess
from db import AlreadyExistsError, ConflictError, NotFoundError
from events import EventBus, EventType, ObjectEvent
from objects import AUTO_UPDATE_ANNOTATION, FIELD_MANAGER


class FakeDatabase:
    """
    In-memory stand-in for DatabaseManager.

    Enforces resource versions and delete preconditions the same way the
    PostgreSQL queries do, and counts every write call. With
    ``yield_on_write`` set, each write gives up control once before checking
    its preconditions so concurrent callers interleave.
    """

    def __init__(self, event_bus: Optional[EventBus] = None):
        self.objects: Dict[tuple, Dict[str, Any]] = {}
        self.event_bus = event_bus
        self.yield_on_write = False
        self.create_calls = 0
        self.update_calls = 0
        self.delete_calls = 0
        self.get_calls = 0
        self.update_error: Optional[Exception] = None
        self._versions = itertools.count(1)

    @property
    def write_calls(self) -> int:
        return self.create_calls + self.update_calls + self.delete_calls

    def seed(
        self,
        kind: str,
        name: str,
        spec: Dict[str, Any],
        annotations: Optional[Dict[str, str]] = None,
        field_manager: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Insert an object directly, bypassing counters and events."""
        record = {
            "kind": kind,
            "name": name,
            "uid": str(uuid.uuid4()),
            "resource_version": str(next(self._versions)),
            "generation": 1,
            "annotations": dict(annotations or {}),
            "field_manager": field_manager,
            "spec": copy.deepcopy(spec),
        }
        self.objects[(kind, name)] = record
        return copy.deepcopy(record)

    def record(self, kind: str, name: str) -> Optional[Dict[str, Any]]:
        record = self.objects.get((kind, name))
        return copy.deepcopy(record) if record is not None else None

    async def _maybe_yield(self) -> None:
        if self.yield_on_write:
            await asyncio.sleep(0)

    async def _publish(self, event_type: EventType, record: Dict[str, Any]) -> None:
        if self.event_bus is not None:
            await self.event_bus.publish(
                ObjectEvent.from_record(event_type, copy.deepcopy(record))
            )

    async def get_object(self, kind: str, name: str) -> Optional[Dict[str, Any]]:
        self.get_calls += 1
        return self.record(kind, name)

    async def list_objects(self, kind: str) -> List[Dict[str, Any]]:
        return [
            copy.deepcopy(record)
            for (k, _), record in sorted(self.objects.items())
            if k == kind
        ]

    async def create_object(
        self, kind, name, spec, annotations=None, field_manager=None
    ) -> Dict[str, Any]:
        self.create_calls += 1
        await self._maybe_yield()
        if (kind, name) in self.objects:
            raise AlreadyExistsError(f"{kind} {name!r} already exists")
        record = self.seed(kind, name, spec, annotations, field_manager)
        await self._publish(EventType.CREATED, record)
        return record

    async def update_object(
        self, kind, name, resource_version, spec, annotations, field_manager=None
    ) -> Dict[str, Any]:
        self.update_calls += 1
        if self.update_error is not None:
            raise self.update_error
        if not resource_version:
            raise ValueError("resource version is required")
        await self._maybe_yield()
        current = self.objects.get((kind, name))
        if current is None:
            raise NotFoundError(f"{kind} {name!r} not found")
        if current["resource_version"] != resource_version:
            raise ConflictError(f"{kind} {name!r} has been modified")
        if current["spec"] != spec:
            current["generation"] += 1
        current["spec"] = copy.deepcopy(spec)
        current["annotations"] = dict(annotations)
        if field_manager is not None:
            current["field_manager"] = field_manager
        current["resource_version"] = str(next(self._versions))
        await self._publish(EventType.MODIFIED, current)
        return copy.deepcopy(current)

    async def set_annotation(self, kind, name, key, value) -> Dict[str, Any]:
        current = self.objects.get((kind, name))
        if current is None:
            raise NotFoundError(f"{kind} {name!r} not found")
        current["annotations"][key] = value
        current["resource_version"] = str(next(self._versions))
        await self._publish(EventType.MODIFIED, current)
        return copy.deepcopy(current)

    async def delete_object(
        self, kind, name, uid=None, resource_version=None
    ) -> Dict[str, Any]:
        self.delete_calls += 1
        await self._maybe_yield()
        current = self.objects.get((kind, name))
        if current is None:
            raise NotFoundError(f"{kind} {name!r} not found")
        if uid is not None and current["uid"] != uid:
            raise ConflictError(f"{kind} {name!r} has a different uid")
        if resource_version is not None and current["resource_version"] != (
            resource_version
        ):
            raise ConflictError(f"{kind} {name!r} has been modified")
        del self.objects[(kind, name)]
        await self._publish(EventType.DELETED, current)
        return copy.deepcopy(current)


@pytest.fixture
def fake_db():
    """In-memory object store."""
    return FakeDatabase()


@pytest.fixture
def cache(fake_db):
    return ObjectCache(fake_db)


@pytest.fixture
def priority_levels(fake_db, cache):
    """PriorityLevelConfiguration access over the fake store."""
    return PriorityLevelConfigurationAccess(fake_db, cache)


@pytest.fixture
def flow_schemas(fake_db, cache):
    """FlowSchema access over the fake store."""
    return FlowSchemaAccess(fake_db, cache)


@pytest.fixture
def mock_pool():
    """Create a mock asyncpg pool."""
    pool = AsyncMock()
    pool.acquire = MagicMock()
    return pool


@pytest.fixture
def sample_record():
    """Sample configuration object row, as parsed by the DatabaseManager."""
    return {
        "id": 1,
        "kind": "FlowSchema",
        "name": "service-accounts",
        "uid": "0d7c8a2e-5b8f-4d7e-9d3c-1f5f0c7a9e11",
        "resource_version": "42",
        "generation": 3,
        "annotations": {AUTO_UPDATE_ANNOTATION: "true"},
        "field_manager": FIELD_MANAGER,
        "spec": {
            "priority_level_configuration": "workload-low",
            "matching_precedence": 9000,
            "distinguisher_method": "ByUser",
            "rules": [],
        },
    }


@pytest.fixture
def evented_db():
    """In-memory object store that publishes its writes on an event bus."""
    return FakeDatabase(event_bus=EventBus())

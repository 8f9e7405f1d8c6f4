"""
Database Manager - PostgreSQL object store for configuration objects.

Stores one row per (kind, name) with a store-assigned UID, a monotonically
increasing resource version used for optimistic concurrency, and the object's
annotations and spec as JSONB.
"""

import asyncpg
import json
import logging
import uuid
from typing import Any, Dict, List, Optional

from events import EventBus, EventType, ObjectEvent
from migrate import run_migrations

logger = logging.getLogger(__name__)


class StoreError(Exception):
    """Base class for errors reported by the object store."""

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class NotFoundError(StoreError):
    """The named object does not exist."""


class AlreadyExistsError(StoreError):
    """An object with the same kind and name already exists."""


class ConflictError(StoreError):
    """A write precondition (resource version or UID) no longer holds."""


class StoreUnavailableError(StoreError):
    """The store is not connected."""


class DatabaseManager:
    """Manages PostgreSQL operations for configuration objects."""

    def __init__(
        self,
        host: str,
        port: int,
        database: str,
        user: str,
        password: str,
        min_pool_size: int = 5,
        max_pool_size: int = 20,
        event_bus: Optional[EventBus] = None,
    ):
        self.host = host
        self.port = port
        self.database = database
        self.user = user
        self.password = password
        self.min_pool_size = min_pool_size
        self.max_pool_size = max_pool_size
        self.pool: Optional[asyncpg.Pool] = None
        self._event_bus = event_bus

    async def connect(self):
        """Establish connection pool to PostgreSQL."""
        self.pool = await asyncpg.create_pool(
            host=self.host,
            port=self.port,
            database=self.database,
            user=self.user,
            password=self.password,
            min_size=self.min_pool_size,
            max_size=self.max_pool_size,
            command_timeout=60,
        )
        logger.info(
            f"Connected to PostgreSQL (pool: {self.min_pool_size}-{self.max_pool_size})"
        )

    async def close(self):
        """Close the connection pool."""
        if self.pool:
            await self.pool.close()
            self.pool = None
            logger.info("Closed PostgreSQL connection")

    def _ensure_connected(self) -> None:
        """Ensure the database connection pool is established."""
        if self.pool is None:
            raise StoreUnavailableError(
                "Database not connected. Call connect() before performing operations."
            )

    async def initialize_schema(self) -> None:
        """Apply database migrations to bring schema up to date."""
        self._ensure_connected()
        await run_migrations(self.pool)
        logger.info("Database schema initialized")

    async def _publish(self, event_type: EventType, record: Dict[str, Any]) -> None:
        if self._event_bus is not None:
            await self._event_bus.publish(ObjectEvent.from_record(event_type, record))

    # ==================== Reads ====================

    async def get_object(self, kind: str, name: str) -> Optional[Dict[str, Any]]:
        """Get an object by kind and name, or None if it does not exist."""
        self._ensure_connected()
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                "SELECT * FROM configuration_objects WHERE kind = $1 AND name = $2",
                kind,
                name,
            )
            if not row:
                return None
            return self._parse_object_row(row)

    async def list_objects(self, kind: str) -> List[Dict[str, Any]]:
        """List every object of a kind, ordered by name."""
        self._ensure_connected()
        async with self.pool.acquire() as conn:
            rows = await conn.fetch(
                "SELECT * FROM configuration_objects WHERE kind = $1 ORDER BY name",
                kind,
            )
            return [self._parse_object_row(row) for row in rows]

    # ==================== Writes ====================

    async def create_object(
        self,
        kind: str,
        name: str,
        spec: Dict[str, Any],
        annotations: Optional[Dict[str, str]] = None,
        field_manager: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Create a new object.

        Args:
            kind: Configuration kind (e.g. 'FlowSchema')
            name: Object name, unique within the kind
            spec: Object specification
            annotations: Initial annotations
            field_manager: Identity of the writer

        Raises:
            AlreadyExistsError: If an object with this kind and name exists.
        """
        if annotations is None:
            annotations = {}

        self._ensure_connected()
        async with self.pool.acquire() as conn:
            try:
                row = await conn.fetchrow(
                    """
                    INSERT INTO configuration_objects (
                        kind, name, uid, resource_version, generation,
                        annotations, field_manager, spec
                    )
                    VALUES (
                        $1, $2, $3, nextval('configuration_resource_version_seq'), 1,
                        $4, $5, $6
                    )
                    RETURNING *
                    """,
                    kind,
                    name,
                    str(uuid.uuid4()),
                    json.dumps(annotations),
                    field_manager,
                    json.dumps(spec),
                )
            except asyncpg.UniqueViolationError as e:
                raise AlreadyExistsError(f"{kind} {name!r} already exists") from e

        record = self._parse_object_row(row)
        logger.info(
            f"Created {kind} {name!r} at resource version {record['resource_version']}"
        )
        await self._publish(EventType.CREATED, record)
        return record

    async def update_object(
        self,
        kind: str,
        name: str,
        resource_version: str,
        spec: Dict[str, Any],
        annotations: Dict[str, str],
        field_manager: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Replace an object's spec and annotations if it is still at the given
        resource version.

        The generation is only bumped when the spec actually changes.

        Raises:
            NotFoundError: If the object does not exist.
            ConflictError: If the object was modified since resource_version.
        """
        if not resource_version:
            raise ValueError(f"resource version is required to update {kind} {name!r}")

        self._ensure_connected()
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                """
                UPDATE configuration_objects
                SET generation = CASE
                        WHEN spec = $4::jsonb THEN generation
                        ELSE generation + 1
                    END,
                    spec = $4::jsonb,
                    annotations = $5::jsonb,
                    field_manager = COALESCE($6, field_manager),
                    resource_version = nextval('configuration_resource_version_seq'),
                    updated_at = NOW()
                WHERE kind = $1 AND name = $2 AND resource_version = $3
                RETURNING *
                """,
                kind,
                name,
                int(resource_version),
                json.dumps(spec),
                json.dumps(annotations),
                field_manager,
            )
            if not row:
                await self._raise_missed_precondition(conn, kind, name)

        record = self._parse_object_row(row)
        logger.info(
            f"Updated {kind} {name!r} to resource version {record['resource_version']}"
        )
        await self._publish(EventType.MODIFIED, record)
        return record

    async def set_annotation(
        self, kind: str, name: str, key: str, value: str
    ) -> Dict[str, Any]:
        """
        Set a single annotation, leaving the spec untouched.

        Raises:
            NotFoundError: If the object does not exist.
        """
        self._ensure_connected()
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                """
                UPDATE configuration_objects
                SET annotations = annotations || jsonb_build_object($3::text, $4::text),
                    resource_version = nextval('configuration_resource_version_seq'),
                    updated_at = NOW()
                WHERE kind = $1 AND name = $2
                RETURNING *
                """,
                kind,
                name,
                key,
                value,
            )
            if not row:
                raise NotFoundError(f"{kind} {name!r} not found")

        record = self._parse_object_row(row)
        logger.info(f"Set annotation {key}={value} on {kind} {name!r}")
        await self._publish(EventType.MODIFIED, record)
        return record

    async def delete_object(
        self,
        kind: str,
        name: str,
        uid: Optional[str] = None,
        resource_version: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Delete an object, optionally guarded by UID and resource version
        preconditions.

        Returns:
            The record as it was just before deletion.

        Raises:
            NotFoundError: If the object does not exist.
            ConflictError: If a precondition does not hold.
        """
        self._ensure_connected()
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                """
                DELETE FROM configuration_objects
                WHERE kind = $1 AND name = $2
                  AND ($3::text IS NULL OR uid = $3::text)
                  AND ($4::bigint IS NULL OR resource_version = $4::bigint)
                RETURNING *
                """,
                kind,
                name,
                uid,
                int(resource_version) if resource_version is not None else None,
            )
            if not row:
                await self._raise_missed_precondition(conn, kind, name)

        record = self._parse_object_row(row)
        logger.info(f"Deleted {kind} {name!r}")
        await self._publish(EventType.DELETED, record)
        return record

    async def _raise_missed_precondition(
        self, conn: asyncpg.Connection, kind: str, name: str
    ) -> None:
        """Tell a failed precondition apart from a missing object."""
        current = await conn.fetchval(
            "SELECT resource_version FROM configuration_objects "
            "WHERE kind = $1 AND name = $2",
            kind,
            name,
        )
        if current is None:
            raise NotFoundError(f"{kind} {name!r} not found")
        raise ConflictError(
            f"{kind} {name!r} has been modified (now at resource version {current})"
        )

    def _parse_object_row(self, row: asyncpg.Record) -> Dict[str, Any]:
        """
        Parse an object row, decoding the JSONB columns and exposing the
        resource version as an opaque string.
        """
        result = dict(row)
        for column in ("spec", "annotations"):
            value = result.get(column)
            if isinstance(value, str):
                result[column] = json.loads(value)
            elif value is None:
                result[column] = {}
        if result.get("resource_version") is not None:
            result["resource_version"] = str(result["resource_version"])
        if result.get("uid") is not None:
            result["uid"] = str(result["uid"])
        return result

"""
Configuration Access - Kind-agnostic capability set used by the ensurer.

The ensure/remove algorithms only ever talk to a ConfigurationAccess; one
implementation exists per configuration kind and is the only place that
knows the kind's concrete type and defaulting routine.
"""

import logging
from abc import ABC, abstractmethod
from typing import Callable, Dict, List, Optional, Type

from pydantic import BaseModel

from cache import ObjectCache
from db import ConflictError, DatabaseManager, NotFoundError
from objects import (
    FIELD_MANAGER,
    ConfigurationObject,
    FlowSchema,
    PriorityLevelConfiguration,
    default_flow_schema_spec,
    default_priority_level_configuration_spec,
    semantic_equal,
)

logger = logging.getLogger(__name__)


class KindMismatchError(Exception):
    """An object was handed to the access implementation of another kind."""

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class ConfigurationAccess(ABC):
    """
    Abstract capability set for manipulating objects of one kind.

    Reads go through a cache, writes go straight to the store.
    """

    @abstractmethod
    def type_name(self) -> str:
        """Kind name used in logs and errors."""
        pass

    @abstractmethod
    async def create(self, obj: ConfigurationObject) -> ConfigurationObject:
        """
        Create the object in the store, attributed to the system field manager.

        Raises:
            KindMismatchError: If obj is not of this kind.
            AlreadyExistsError: If the object already exists.
        """
        pass

    @abstractmethod
    async def update(self, obj: ConfigurationObject) -> ConfigurationObject:
        """
        Write the object back, conditional on its metadata.resource_version.

        Raises:
            KindMismatchError: If obj is not of this kind.
            ConflictError: If the resource version is stale.
            NotFoundError: If the object no longer exists.
        """
        pass

    @abstractmethod
    async def get(self, name: str) -> ConfigurationObject:
        """
        Raises:
            NotFoundError: If the object does not exist.
        """
        pass

    @abstractmethod
    async def list(self) -> List[ConfigurationObject]:
        pass

    async def resync(self) -> None:
        """Drop any locally cached view of the kind and reload it from the store."""
        pass

    @abstractmethod
    async def delete(
        self,
        name: str,
        uid: Optional[str] = None,
        resource_version: Optional[str] = None,
    ) -> None:
        """
        Raises:
            NotFoundError: If the object does not exist.
            ConflictError: If uid or resource_version no longer match.
        """
        pass

    @abstractmethod
    def copy_spec(
        self, bootstrap: ConfigurationObject, current: ConfigurationObject
    ) -> None:
        """Overwrite current's spec with an independent copy of bootstrap's."""
        pass

    @abstractmethod
    def has_spec_changed(
        self, bootstrap: ConfigurationObject, current: ConfigurationObject
    ) -> bool:
        """Whether current's spec differs from the defaulted bootstrap spec."""
        pass


class StoreBackedAccess(ConfigurationAccess):
    """
    ConfigurationAccess over the PostgreSQL store and its object cache.

    The store is schema-agnostic, so specs are defaulted here before they
    are written; live specs are therefore always in defaulted form.
    """

    object_class: Type[ConfigurationObject]
    set_defaults: Callable[[BaseModel], BaseModel]

    def __init__(self, db: DatabaseManager, cache: ObjectCache):
        self.db = db
        self.cache = cache

    def type_name(self) -> str:
        return self.object_class.kind

    def _check_kind(self, *objects: ConfigurationObject) -> None:
        for obj in objects:
            if not isinstance(obj, self.object_class):
                raise KindMismatchError(f"object is not a {self.type_name()} type")

    def _defaulted_spec(self, obj: ConfigurationObject) -> BaseModel:
        return type(self).set_defaults(obj.spec)

    async def create(self, obj: ConfigurationObject) -> ConfigurationObject:
        self._check_kind(obj)
        record = await self.db.create_object(
            kind=self.type_name(),
            name=obj.name,
            spec=self._defaulted_spec(obj).model_dump(mode="json", exclude_none=True),
            annotations=dict(obj.annotations),
            field_manager=FIELD_MANAGER,
        )
        self.cache.remember(record)
        return self.object_class.from_record(record)

    async def update(self, obj: ConfigurationObject) -> ConfigurationObject:
        self._check_kind(obj)
        try:
            record = await self.db.update_object(
                kind=self.type_name(),
                name=obj.name,
                resource_version=obj.metadata.resource_version,
                spec=obj.spec_dict(),
                annotations=dict(obj.annotations),
                field_manager=FIELD_MANAGER,
            )
        except (ConflictError, NotFoundError):
            # The cached copy is what made us stale
            self.cache.invalidate(self.type_name(), obj.name)
            raise
        self.cache.remember(record)
        return self.object_class.from_record(record)

    async def get(self, name: str) -> ConfigurationObject:
        record = await self.cache.get(self.type_name(), name)
        return self.object_class.from_record(record)

    async def list(self) -> List[ConfigurationObject]:
        records = await self.cache.list(self.type_name())
        return [self.object_class.from_record(record) for record in records]

    async def resync(self) -> None:
        await self.cache.sync(self.type_name())

    async def delete(
        self,
        name: str,
        uid: Optional[str] = None,
        resource_version: Optional[str] = None,
    ) -> None:
        try:
            await self.db.delete_object(
                kind=self.type_name(),
                name=name,
                uid=uid,
                resource_version=resource_version,
            )
        finally:
            self.cache.invalidate(self.type_name(), name)

    def copy_spec(
        self, bootstrap: ConfigurationObject, current: ConfigurationObject
    ) -> None:
        self._check_kind(bootstrap, current)
        current.spec = self._defaulted_spec(bootstrap)

    def has_spec_changed(
        self, bootstrap: ConfigurationObject, current: ConfigurationObject
    ) -> bool:
        self._check_kind(bootstrap, current)
        return not semantic_equal(self._defaulted_spec(bootstrap), current.spec)


class FlowSchemaAccess(StoreBackedAccess):
    object_class = FlowSchema
    set_defaults = staticmethod(default_flow_schema_spec)


class PriorityLevelConfigurationAccess(StoreBackedAccess):
    object_class = PriorityLevelConfiguration
    set_defaults = staticmethod(default_priority_level_configuration_spec)


ACCESS_CLASSES: Dict[str, Type[StoreBackedAccess]] = {
    FlowSchema.kind: FlowSchemaAccess,
    PriorityLevelConfiguration.kind: PriorityLevelConfigurationAccess,
}


def new_access(kind: str, db: DatabaseManager, cache: ObjectCache) -> StoreBackedAccess:
    """
    Build the access implementation for a kind name.

    Raises:
        ValueError: If the kind is unknown.
    """
    try:
        access_class = ACCESS_CLASSES[kind]
    except KeyError:
        raise ValueError(
            f"Unknown configuration kind '{kind}'. "
            f"Known kinds: {', '.join(sorted(ACCESS_CLASSES))}"
        ) from None
    return access_class(db, cache)

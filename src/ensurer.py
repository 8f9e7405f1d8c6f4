"""
Configuration Ensurer - Reconciles bootstrap objects against the store.

Provides the per-object ensure and remove routines, the batch ensurer and
remover built on them, and detection of dangling (retired) defaults.

There is no locking here: concurrent writers are arbitrated by the store's
resource versions and delete preconditions. Every routine runs entirely
within the caller's coroutine.
"""

import logging
from typing import Iterable, List, Optional, Set

from configuration import ConfigurationAccess
from db import AlreadyExistsError, ConflictError, NotFoundError
from objects import ConfigurationObject, is_auto_update_enabled, is_system_owned
from strategy import EnsureStrategy, MandatoryEnsureStrategy, SuggestedEnsureStrategy

logger = logging.getLogger(__name__)

# A stale update is retried exactly this many times before giving up; the
# next ensure pass takes care of eventual convergence.
MAX_CONFLICT_RETRIES = 1


async def _get_or_create(
    access: ConfigurationAccess,
    strategy: EnsureStrategy,
    bootstrap: ConfigurationObject,
) -> Optional[ConfigurationObject]:
    """Return the live object, or None if it was missing and has been created."""
    name = bootstrap.name
    type_name = access.type_name()

    try:
        return await access.get(name)
    except NotFoundError:
        pass

    try:
        await access.create(strategy.new_object(bootstrap))
        logger.info(f"Created {type_name} {name!r} ({strategy.name})")
        return None
    except AlreadyExistsError:
        logger.debug(
            f"{type_name} {name!r} was created concurrently, checking it instead"
        )
    return await access.get(name)


async def ensure_configuration(
    access: ConfigurationAccess,
    strategy: EnsureStrategy,
    bootstrap: ConfigurationObject,
) -> None:
    """
    Make sure one bootstrap object exists and is up to date per the strategy.

    Args:
        access: Access implementation for the object's kind.
        strategy: Policy deciding whether the live object is rewritten.
        bootstrap: A private copy of the bootstrap object.

    Raises:
        ConflictError: If the object kept changing underneath us.
        NotFoundError: If the object kept disappearing underneath us.
        StoreError: For any other store failure.
    """
    name = bootstrap.name
    type_name = access.type_name()

    current = await _get_or_create(access, strategy, bootstrap)
    attempt = 0
    while current is not None:
        new_object, update = strategy.should_update(current, bootstrap)
        if not update:
            logger.debug(
                f"No update required for {type_name} {name!r} ({strategy.name})"
            )
            return

        try:
            await access.update(new_object)
            logger.info(f"Updated {type_name} {name!r} ({strategy.name})")
            return
        except ConflictError as e:
            if attempt >= MAX_CONFLICT_RETRIES:
                raise ConflictError(
                    f"failed to update {type_name} {name!r} ({strategy.name}), "
                    f"will retry on the next pass: {e.message}"
                ) from e
            logger.info(
                f"{type_name} {name!r} was updated concurrently, "
                "re-reading and retrying"
            )
        except NotFoundError:
            if attempt >= MAX_CONFLICT_RETRIES:
                raise
            logger.info(
                f"{type_name} {name!r} was deleted concurrently, re-creating it"
            )

        attempt += 1
        current = await _get_or_create(access, strategy, bootstrap)


async def remove_auto_update_enabled_configuration(
    access: ConfigurationAccess,
    name: str,
    missing_annotation_auto_update: bool = True,
) -> None:
    """
    Delete one object unless the operator disabled auto-update on it.

    An object that is already gone counts as removed. The delete is guarded
    by the UID and resource version just read, and a failed precondition is
    not retried: the object may have been replaced by a different one.
    """
    type_name = access.type_name()
    try:
        current = await access.get(name)
    except NotFoundError:
        logger.debug(f"{type_name} {name!r} already removed")
        return

    if not is_auto_update_enabled(current, missing_annotation_auto_update):
        logger.debug(f"{type_name} {name!r} has auto-update disabled, not removing it")
        return

    try:
        await access.delete(
            name,
            uid=current.metadata.uid,
            resource_version=current.metadata.resource_version,
        )
    except NotFoundError:
        logger.debug(f"{type_name} {name!r} was removed concurrently")
        return

    logger.info(f"Removed dangling {type_name} {name!r}")


def get_dangling_object_names(
    live_objects: Iterable[ConfigurationObject], bootstrap_names: Set[str]
) -> List[str]:
    """
    Names of system-owned live objects that are no longer bootstrap objects.

    Output follows the order of live_objects.
    """
    return [
        obj.name
        for obj in live_objects
        if is_system_owned(obj) and obj.name not in bootstrap_names
    ]


async def get_remove_candidates(
    access: ConfigurationAccess, bootstrap: Iterable[ConfigurationObject]
) -> List[str]:
    """
    List live objects of the access's kind and return the dangling ones.

    Args:
        access: Access implementation for the kind.
        bootstrap: Every bootstrap object of that kind, suggested and mandatory.
    """
    bootstrap_names = {obj.name for obj in bootstrap}
    live_objects = await access.list()
    return get_dangling_object_names(live_objects, bootstrap_names)


class ConfigurationEnsurer:
    """Ensures a batch of bootstrap objects with one strategy."""

    def __init__(self, access: ConfigurationAccess, strategy: EnsureStrategy):
        self.access = access
        self.strategy = strategy

    async def ensure(self, bootstrap_objects: Iterable[ConfigurationObject]) -> None:
        """
        Ensure each object in order, stopping at the first error.

        Objects after a failing one are left for the next call.
        """
        for bootstrap in bootstrap_objects:
            await ensure_configuration(
                self.access, self.strategy, bootstrap.deep_copy()
            )


class ConfigurationRemover:
    """Removes named objects that are still under system management."""

    def __init__(
        self, access: ConfigurationAccess, missing_annotation_auto_update: bool = True
    ):
        self.access = access
        self.missing_annotation_auto_update = missing_annotation_auto_update

    async def remove_auto_update_enabled_objects(self, names: Iterable[str]) -> None:
        """Remove each named object in order, stopping at the first error."""
        for name in names:
            await remove_auto_update_enabled_configuration(
                self.access, name, self.missing_annotation_auto_update
            )


def new_suggested_ensurer(
    access: ConfigurationAccess, missing_annotation_auto_update: bool = True
) -> ConfigurationEnsurer:
    return ConfigurationEnsurer(
        access, SuggestedEnsureStrategy(access, missing_annotation_auto_update)
    )


def new_mandatory_ensurer(access: ConfigurationAccess) -> ConfigurationEnsurer:
    return ConfigurationEnsurer(access, MandatoryEnsureStrategy(access))

"""
Bootstrap Controller - Periodic driver of the ensurer.

Each pass reloads the cached view of every kind from the store, ensures the
suggested and mandatory bootstrap objects of that kind, and then removes
defaults that earlier versions created but the current bootstrap set no
longer contains.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import List, Optional

from bootstrap import BootstrapConfiguration
from config import EnsurerConfig
from configuration import ConfigurationAccess
from ensurer import (
    ConfigurationRemover,
    get_remove_candidates,
    new_mandatory_ensurer,
    new_suggested_ensurer,
)
from objects import ConfigurationObject

logger = logging.getLogger(__name__)


@dataclass
class KindPass:
    """Everything one pass needs for a single kind."""

    access: ConfigurationAccess
    suggested: List[ConfigurationObject]
    mandatory: List[ConfigurationObject]


class BootstrapController:
    """
    Keeps the bootstrap configuration in place.

    Priority levels are handled before flow schemas, which reference them.
    """

    def __init__(
        self,
        priority_levels: ConfigurationAccess,
        flow_schemas: ConfigurationAccess,
        bootstrap: Optional[BootstrapConfiguration] = None,
        config: Optional[EnsurerConfig] = None,
    ):
        self.priority_levels = priority_levels
        self.flow_schemas = flow_schemas
        self.bootstrap = bootstrap or BootstrapConfiguration()
        self.config = config or EnsurerConfig()
        self.running = False
        self._shutdown_event = asyncio.Event()

    def _passes(self) -> List[KindPass]:
        return [
            KindPass(
                access=self.priority_levels,
                suggested=self.bootstrap.suggested_priority_levels(),
                mandatory=self.bootstrap.mandatory_priority_levels(),
            ),
            KindPass(
                access=self.flow_schemas,
                suggested=self.bootstrap.suggested_flow_schemas(),
                mandatory=self.bootstrap.mandatory_flow_schemas(),
            ),
        ]

    async def ensure_once(self) -> None:
        """
        Run one full pass, stopping at the first error.

        Safe to call repeatedly and concurrently with other passes.
        """
        missing_policy = self.config.missing_annotation_auto_update

        for kind_pass in self._passes():
            access = kind_pass.access
            # Writes from other processes never reach the event bus
            await access.resync()
            await new_suggested_ensurer(access, missing_policy).ensure(
                kind_pass.suggested
            )
            await new_mandatory_ensurer(access).ensure(kind_pass.mandatory)

            if not self.config.remove_dangling:
                continue

            candidates = await get_remove_candidates(
                access, kind_pass.suggested + kind_pass.mandatory
            )
            if candidates:
                logger.info(
                    f"Found {len(candidates)} dangling {access.type_name()} "
                    f"object(s): {', '.join(candidates)}"
                )
                remover = ConfigurationRemover(access, missing_policy)
                await remover.remove_auto_update_enabled_objects(candidates)

    async def start(self) -> None:
        """Run passes every ensure_interval seconds until stop() is called."""
        logger.info(
            f"Starting bootstrap controller (interval: {self.config.ensure_interval}s)"
        )
        self.running = True
        self._shutdown_event.clear()

        while self.running:
            try:
                await self.ensure_once()
                logger.debug("Bootstrap configuration pass completed")
            except Exception as e:
                logger.error(f"Bootstrap configuration pass failed: {e}", exc_info=True)

            try:
                await asyncio.wait_for(
                    self._shutdown_event.wait(), timeout=self.config.ensure_interval
                )
            except asyncio.TimeoutError:
                pass

    async def stop(self) -> None:
        logger.info("Stopping bootstrap controller")
        self.running = False
        self._shutdown_event.set()

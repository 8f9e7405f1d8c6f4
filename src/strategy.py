"""
Ensure Strategies - Policy deciding how a bootstrap object and its live
counterpart are converged.

Suggested objects respect the auto-update annotation: an operator who sets it
to "false" owns the object from then on. Mandatory objects are always forced
back to the bootstrap spec and have the annotation forced to "true".
"""

import logging
from abc import ABC, abstractmethod
from typing import Optional, Tuple

from configuration import ConfigurationAccess
from objects import (
    AUTO_UPDATE_ANNOTATION,
    ConfigurationObject,
    is_auto_update_enabled,
    parse_bool,
)

logger = logging.getLogger(__name__)


def set_auto_update_annotation(obj: ConfigurationObject, enabled: bool) -> None:
    obj.metadata.annotations[AUTO_UPDATE_ANNOTATION] = "true" if enabled else "false"


class EnsureStrategy(ABC):
    """
    Decides, for one (live, bootstrap) pair, whether the live object needs
    to be written and what to write.

    Strategies hold no state of their own; everything they decide on is read
    from the live object on each call.
    """

    def __init__(self, access: ConfigurationAccess):
        self.access = access

    @property
    @abstractmethod
    def name(self) -> str:
        """Strategy name used in logs."""
        pass

    def new_object(self, bootstrap: ConfigurationObject) -> ConfigurationObject:
        """Object to create when no live counterpart exists."""
        obj = bootstrap.deep_copy()
        set_auto_update_annotation(obj, True)
        return obj

    @abstractmethod
    def should_update(
        self, current: ConfigurationObject, bootstrap: ConfigurationObject
    ) -> Tuple[Optional[ConfigurationObject], bool]:
        """
        Compare a live object against its bootstrap counterpart.

        Args:
            current: The live object, as read from the store.
            bootstrap: A private copy of the bootstrap object.

        Returns:
            ``(new_object, True)`` when the live object must be replaced by
            new_object (a modified copy of current that keeps its resource
            version), ``(None, False)`` otherwise.
        """
        pass


class SuggestedEnsureStrategy(EnsureStrategy):
    """Keeps defaults up to date unless the operator opted out."""

    def __init__(
        self, access: ConfigurationAccess, missing_annotation_auto_update: bool = True
    ):
        super().__init__(access)
        self.missing_annotation_auto_update = missing_annotation_auto_update

    @property
    def name(self) -> str:
        return "suggested"

    def should_update(
        self, current: ConfigurationObject, bootstrap: ConfigurationObject
    ) -> Tuple[Optional[ConfigurationObject], bool]:
        if not is_auto_update_enabled(current, self.missing_annotation_auto_update):
            logger.debug(
                f"{self.access.type_name()} {current.name!r} has auto-update "
                f"disabled, leaving it alone"
            )
            return None, False

        if not self.access.has_spec_changed(bootstrap, current):
            return None, False

        new_object = current.deep_copy()
        self.access.copy_spec(bootstrap, new_object)
        set_auto_update_annotation(new_object, True)
        return new_object, True


class MandatoryEnsureStrategy(EnsureStrategy):
    """Forces defaults the operator must not be able to change or disable."""

    @property
    def name(self) -> str:
        return "mandatory"

    def should_update(
        self, current: ConfigurationObject, bootstrap: ConfigurationObject
    ) -> Tuple[Optional[ConfigurationObject], bool]:
        annotation = parse_bool(current.annotations.get(AUTO_UPDATE_ANNOTATION))
        update_annotation = annotation is not True
        spec_changed = self.access.has_spec_changed(bootstrap, current)

        if not (update_annotation or spec_changed):
            return None, False

        new_object = current.deep_copy()
        if spec_changed:
            self.access.copy_spec(bootstrap, new_object)
        if update_annotation:
            set_auto_update_annotation(new_object, True)
        return new_object, True

"""
Validation and classification of events posted by instances.
"""

import logging
from typing import Callable

from errors import (
    InvalidApplicationOrGroupError,
    InvalidEventTypeOrResultError,
    InvalidInstanceError,
    NoUpdateInProgressError,
    NotFoundError,
    StoreError,
)
from models import ValidatedEvent
from store import RolloutStore

logger = logging.getLogger(__name__)


class EventValidator:
    """Checks an event against the instance's binding and update eligibility."""

    def __init__(
        self,
        store: RolloutStore,
        requires_reboot_completion: Callable[[str], bool] = lambda app_id: False,
    ):
        """
        Args:
            store: Store used to resolve applications, groups and instances
            requires_reboot_completion: Capability lookup for an application id
        """
        self.store = store
        self.requires_reboot_completion = requires_reboot_completion

    def validate(self, instance_id: str, app_id: str, group_id: str) -> ValidatedEvent:
        """
        Resolve and cross-check the binding an event is reported against.

        Args:
            instance_id: Reporting instance
            app_id: Application id (or alias) sent by the instance
            group_id: Group id or track name sent by the instance

        Returns:
            ValidatedEvent with canonical application and group ids

        Raises:
            InvalidApplicationOrGroupError: Application/group unknown or unrelated
            InvalidInstanceError: Instance unknown (first contact)
            NoUpdateInProgressError: No update was granted to the instance
        """
        try:
            app_id, group_id = self.store.resolve_application_and_group(app_id, group_id)
        except StoreError as e:
            logger.debug(f"Cannot resolve app={app_id} group={group_id}: {e}")
            raise InvalidApplicationOrGroupError() from e

        try:
            instance = self.store.get_instance(instance_id, app_id)
        except NotFoundError as e:
            logger.info(
                f"Could not get instance {instance_id}, maybe it is a first contact: {e}"
            )
            raise InvalidInstanceError() from e
        except StoreError as e:
            logger.error(f"Failed to read instance {instance_id}: {e}")
            raise InvalidInstanceError() from e

        if instance.application.application_id != app_id:
            raise InvalidApplicationOrGroupError()

        # update_in_progress is only cleared for states in which an update
        # will be granted again, so there is nothing to reset here.
        if not instance.application.update_in_progress:
            raise NoUpdateInProgressError()

        return ValidatedEvent(
            instance=instance,
            application_id=app_id,
            group_id=group_id,
            reboot_completion=self.requires_reboot_completion(app_id),
        )


class EventClassifier:
    """Maps protocol (type, result) pairs to event type ids."""

    def __init__(self, store: RolloutStore):
        self.store = store

    def classify(self, event_type: int, event_result: int) -> int:
        """
        Look up the event type id for a (type, result) pair.

        Raises:
            InvalidEventTypeOrResultError: Pair is not in the supported table
        """
        try:
            return self.store.lookup_event_type_id(event_type, event_result)
        except StoreError as e:
            logger.debug(f"Unsupported event ({event_type}, {event_result}): {e}")
            raise InvalidEventTypeOrResultError() from e

"""
Instance update status transitions driven by events.
"""

import logging
from typing import Optional

from errors import StoreError
from models import (
    EVENT_UPDATE_COMPLETE,
    EVENT_UPDATE_DOWNLOAD_FINISHED,
    EVENT_UPDATE_DOWNLOAD_STARTED,
    EVENT_UPDATE_INSTALLED,
    RESULT_FAILED,
    RESULT_SUCCESS,
    RESULT_SUCCESS_REBOOT,
    UNKNOWN_PREVIOUS_VERSIONS,
    UpdateStatus,
)
from store import RolloutStore

logger = logging.getLogger(__name__)

# Order of statuses within one update cycle.
CYCLE_RANK = {
    UpdateStatus.UPDATE_GRANTED: 0,
    UpdateStatus.DOWNLOADING: 1,
    UpdateStatus.DOWNLOADED: 2,
    UpdateStatus.INSTALLED: 3,
    UpdateStatus.COMPLETE: 4,
}

PROGRESS_TRANSITIONS = {
    EVENT_UPDATE_DOWNLOAD_STARTED: UpdateStatus.DOWNLOADING,
    EVENT_UPDATE_DOWNLOAD_FINISHED: UpdateStatus.DOWNLOADED,
    EVENT_UPDATE_INSTALLED: UpdateStatus.INSTALLED,
}


def is_update_complete(event_type: int, result: int, reboot_completion: bool) -> bool:
    """
    Whether an event reports a successfully completed update.

    Reboot-based applications only complete with RESULT_SUCCESS_REBOOT; a plain
    RESULT_SUCCESS does not prove the reboot happened.
    """
    if event_type != EVENT_UPDATE_COMPLETE:
        return False
    if result == RESULT_SUCCESS_REBOOT:
        return True
    return result == RESULT_SUCCESS and not reboot_completion


def is_stale_reboot_completion(
    event_type: int, result: int, previous_version: str, reboot_completion: bool
) -> bool:
    """
    Whether a reboot completion comes from an instance never granted this update.

    "0.0.0" stays valid because it is reported when an update is forced.
    """
    return (
        reboot_completion
        and event_type == EVENT_UPDATE_COMPLETE
        and result == RESULT_SUCCESS_REBOOT
        and (previous_version or "") in UNKNOWN_PREVIOUS_VERSIONS
    )


class InstanceStateMachine:
    """Projects accepted events onto an instance's update status."""

    def __init__(self, store: RolloutStore):
        self.store = store

    def target_status(
        self, event_type: int, result: int, reboot_completion: bool = False
    ) -> Optional[UpdateStatus]:
        """
        Status an event moves the instance to, or None if it has no effect.

        Args:
            event_type: Omaha event type
            result: Omaha event result
            reboot_completion: Application completes updates only by reboot

        Returns:
            The new UpdateStatus or None
        """
        if result == RESULT_FAILED:
            return UpdateStatus.ERROR
        if is_update_complete(event_type, result, reboot_completion):
            return UpdateStatus.COMPLETE
        if result == RESULT_SUCCESS:
            return PROGRESS_TRANSITIONS.get(event_type)
        return None

    @staticmethod
    def is_stale_transition(current: UpdateStatus, new: UpdateStatus) -> bool:
        """A transition backwards within the update cycle is stale."""
        if current not in CYCLE_RANK or new not in CYCLE_RANK:
            return False
        return CYCLE_RANK[new] < CYCLE_RANK[current]

    def apply(
        self,
        instance_id: str,
        app_id: str,
        new_status: UpdateStatus,
        current_status: Optional[UpdateStatus] = None,
    ) -> bool:
        """
        Write a new status for the instance.

        Store failures are logged and swallowed: the event is already recorded.

        Returns:
            True if the status was written
        """
        if current_status is not None and self.is_stale_transition(
            current_status, new_status
        ):
            logger.debug(
                f"Skipping stale transition {current_status.name} -> {new_status.name} "
                f"for instance {instance_id}"
            )
            return False

        try:
            self.store.update_instance_status(instance_id, app_id, new_status)
        except StoreError as e:
            logger.error(
                f"Could not update status of instance {instance_id} to {new_status.name}: {e}"
            )
            return False

        logger.debug(f"Instance {instance_id} ({app_id}) is now {new_status.name}")
        return True

    def reset(self, instance_id: str, app_id: str) -> bool:
        """Force the instance back to UNDEFINED so it can be granted an update again."""
        return self.apply(instance_id, app_id, UpdateStatus.UNDEFINED)

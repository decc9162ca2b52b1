"""
Rollout policy decisions taken after an event has been recorded.

Every accepted event runs through RolloutPolicyEngine.evaluate once. The
engine projects the event onto the instance status, and for completions and
failures it decides whether the enclosing rollout has finished or must be
halted. Individual writes are best-effort: a failing status or activity write
is logged and the remaining steps still run. Failing to read the group or its
stats aborts the evaluation with StoreError.
"""

import logging
from enum import Enum
from typing import Callable

from errors import StoreError
from instance_state import InstanceStateMachine, is_update_complete
from models import (
    RESULT_FAILED,
    ActivityKind,
    ActivitySeverity,
    UpdateStatus,
    ValidatedEvent,
)
from stats import RolloutStatsAggregator
from store import RolloutStore

logger = logging.getLogger(__name__)


class RolloutDecision(Enum):
    """Outcome of evaluating an event against the rollout policy."""

    CONTINUE = "continue"
    FINISHED = "finished"
    HALTED = "halted"


class RolloutPolicyEngine:
    """Decides whether to finish, halt or continue a group's rollout."""

    def __init__(
        self,
        store: RolloutStore,
        state_machine: InstanceStateMachine,
        aggregator: RolloutStatsAggregator,
        disable_updates_on_failed_rollout: bool = False,
    ):
        self.store = store
        self.state_machine = state_machine
        self.aggregator = aggregator
        self.disable_updates_on_failed_rollout = disable_updates_on_failed_rollout

    def _best_effort(self, what: str, fn: Callable, *args) -> bool:
        try:
            fn(*args)
            return True
        except StoreError as e:
            logger.error(f"Could not {what}: {e}")
            return False

    def evaluate(
        self, event: ValidatedEvent, event_type: int, result: int
    ) -> RolloutDecision:
        """
        Apply the consequences of a recorded event.

        Args:
            event: Validated binding of the reporting instance
            event_type: Omaha event type
            result: Omaha event result

        Returns:
            The rollout decision taken for the group

        Raises:
            StoreError: If the group or its stats cannot be read
        """
        binding = event.instance.application
        instance_id = event.instance.id
        app_id = event.application_id
        group_id = event.group_id
        version = binding.last_update_version or ""

        decision = RolloutDecision.CONTINUE
        new_status = self.state_machine.target_status(
            event_type, result, event.reboot_completion
        )

        if is_update_complete(event_type, result, event.reboot_completion):
            self.state_machine.apply(
                instance_id, app_id, UpdateStatus.COMPLETE, binding.status
            )
            if self._check_converged(app_id, group_id, version):
                decision = RolloutDecision.FINISHED

        elif new_status is not None and result != RESULT_FAILED:
            self.state_machine.apply(instance_id, app_id, new_status, binding.status)

        if result == RESULT_FAILED:
            self.state_machine.apply(instance_id, app_id, UpdateStatus.ERROR)
            self._best_effort(
                "add instance activity",
                self.store.append_instance_activity,
                ActivityKind.INSTANCE_UPDATE_FAILED,
                ActivitySeverity.ERROR,
                version,
                app_id,
                group_id,
                instance_id,
            )
            if self.disable_updates_on_failed_rollout and self._check_canary_failed(
                app_id, group_id, version
            ):
                decision = RolloutDecision.HALTED

        return decision

    def _check_converged(self, app_id: str, group_id: str, version: str) -> bool:
        """Mark the rollout finished once every instance completed the target version."""
        with self.store.group_transaction(group_id):
            group = self.store.get_group(group_id)
            stats = self.aggregator.compute(group)
            if not stats.converged or not group.rollout_in_progress:
                return False

            logger.info(
                f"Rollout of {version or group.target_version} finished for group {group_id} "
                f"({stats.updates_to_current_version_succeeded}/{stats.total_instances})"
            )
            self._best_effort(
                "set rollout progress",
                self.store.set_group_rollout_in_progress,
                group_id,
                False,
            )
            self._best_effort(
                "add group activity",
                self.store.append_group_activity,
                ActivityKind.ROLLOUT_FINISHED,
                ActivitySeverity.SUCCESS,
                version,
                app_id,
                group_id,
            )
            return True

    def _check_canary_failed(self, app_id: str, group_id: str, version: str) -> bool:
        """Halt the rollout when the first instance attempting the update failed."""
        with self.store.group_transaction(group_id):
            group = self.store.get_group(group_id)
            stats = self.aggregator.compute(group)
            if stats.updates_to_current_version_attempted != 1:
                return False
            if not group.rollout_in_progress:
                return False

            logger.warning(
                f"First instance updating group {group_id} to {version} failed; "
                f"disabling updates"
            )
            self._best_effort("disable updates", self.store.disable_updates, group_id)
            self._best_effort(
                "set rollout progress",
                self.store.set_group_rollout_in_progress,
                group_id,
                False,
            )
            self._best_effort(
                "add group activity",
                self.store.append_group_activity,
                ActivityKind.ROLLOUT_FAILED,
                ActivitySeverity.ERROR,
                version,
                app_id,
                group_id,
            )
            return True

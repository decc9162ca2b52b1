"""
Event registration pipeline.

An event goes through validation, the reboot-completion filter,
classification and durable recording. Once the event is recorded the caller
gets success; consequence evaluation afterwards is best-effort and its
failures are only logged.
"""

import logging
from datetime import datetime
from typing import Callable, Dict, Optional

from config import RolloutConfig
from errors import (
    EventError,
    EventRegistrationFailedError,
    FlatcarEventIgnoredError,
    NoUpdateInProgressError,
    StoreError,
)
from events import EventClassifier, EventValidator
from instance_state import InstanceStateMachine, is_stale_reboot_completion
from models import Event
from policy import RolloutDecision, RolloutPolicyEngine
from stats import RolloutStatsAggregator
from store import RolloutStore, utcnow

logger = logging.getLogger(__name__)


class EventRegistrar:
    """Registers instance events and triggers their rollout consequences."""

    def __init__(
        self,
        store: RolloutStore,
        config: Optional[RolloutConfig] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        """
        Wire the pipeline components around a store.

        Args:
            store: Store collaborator
            config: Rollout configuration (defaults apply when omitted)
            clock: Source of the current time for stats windows
        """
        self.store = store
        self.config = config or RolloutConfig()

        self.validator = EventValidator(store, self.config.requires_reboot_completion)
        self.classifier = EventClassifier(store)
        self.state_machine = InstanceStateMachine(store)
        self.aggregator = RolloutStatsAggregator(
            store, instance_validity=self.config.instance_validity, clock=clock
        )
        self.policy = RolloutPolicyEngine(
            store,
            self.state_machine,
            self.aggregator,
            disable_updates_on_failed_rollout=self.config.disable_updates_on_failed_rollout,
        )

        self.stats: Dict[str, int] = {
            "received": 0,
            "recorded": 0,
            "ignored": 0,
            "stale": 0,
            "rejected": 0,
            "consequence_errors": 0,
        }

    def register_event(
        self,
        instance_id: str,
        app_id: str,
        group_id: str,
        event_type: int,
        event_result: int,
        previous_version: str = "",
        error_code: str = "",
    ) -> Event:
        """
        Register an event posted by an instance.

        Args:
            instance_id: Reporting instance
            app_id: Application the instance reports for
            group_id: Group id or track of the instance
            event_type: Omaha event type
            event_result: Omaha event result
            previous_version: Version the instance updated from
            error_code: Error code reported with the event

        Returns:
            The recorded Event

        Raises:
            InvalidApplicationOrGroupError, InvalidInstanceError,
            InvalidEventTypeOrResultError, EventRegistrationFailedError:
                The event was rejected and nothing was written
            NoUpdateInProgressError: Stale or spurious event, dropped
            FlatcarEventIgnoredError: Reboot completion from an instance that
                was never granted the update; its status was reset
        """
        self.stats["received"] += 1
        try:
            validated = self.validator.validate(instance_id, app_id, group_id)
        except NoUpdateInProgressError:
            self.stats["stale"] += 1
            logger.debug(
                f"Dropping event ({event_type}, {event_result}) from {instance_id}: "
                f"no update in progress"
            )
            raise
        except EventError:
            self.stats["rejected"] += 1
            raise

        if is_stale_reboot_completion(
            event_type, event_result, previous_version, validated.reboot_completion
        ):
            # Terminal states are unreachable here (update_in_progress is set),
            # so UNDEFINED is the only reset that re-enables future updates.
            self.state_machine.reset(instance_id, validated.application_id)
            self.stats["ignored"] += 1
            logger.info(
                f"Ignoring completion from {instance_id} with previous version "
                f"{previous_version!r}; status reset to UNDEFINED"
            )
            raise FlatcarEventIgnoredError()

        try:
            event_type_id = self.classifier.classify(event_type, event_result)
        except EventError:
            self.stats["rejected"] += 1
            raise

        try:
            event = self.store.record_event(
                event_type_id,
                instance_id,
                validated.application_id,
                previous_version,
                error_code,
            )
        except StoreError as e:
            self.stats["rejected"] += 1
            logger.error(f"Could not record event for instance {instance_id}: {e}")
            raise EventRegistrationFailedError() from e

        self.stats["recorded"] += 1

        try:
            decision = self.policy.evaluate(validated, event_type, event_result)
        except StoreError as e:
            self.stats["consequence_errors"] += 1
            logger.error(f"Could not trigger event consequences for {instance_id}: {e}")
        except Exception:
            # event is stored; nothing past this point fails the registration
            self.stats["consequence_errors"] += 1
            logger.exception(
                f"Unexpected error triggering event consequences for {instance_id}"
            )
        else:
            if decision != RolloutDecision.CONTINUE:
                logger.info(
                    f"Group {validated.group_id} rollout {decision.value} "
                    f"after event from {instance_id}"
                )

        return event

    def get_event_error_code(
        self, instance_id: str, app_id: str, timestamp: datetime
    ) -> Optional[str]:
        """Return the error code of the latest event at or before timestamp."""
        return self.store.get_latest_error_code(instance_id, app_id, timestamp)

    def group_stats(self, group_id: str) -> Dict:
        """Return the current rollout stats for a group as a dictionary."""
        group = self.store.get_group(group_id)
        return self.aggregator.compute(group).to_dict()

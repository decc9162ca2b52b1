"""
Rollout statistics computed from a group's instance bindings.
"""

import logging
from datetime import datetime, timedelta
from typing import Callable, Iterable, Optional

from models import Group, InstanceApplication, RolloutStats, UpdateStatus
from store import RolloutStore, utcnow

logger = logging.getLogger(__name__)


class RolloutStatsAggregator:
    """Computes fresh RolloutStats for a group on demand."""

    def __init__(
        self,
        store: RolloutStore,
        instance_validity: Optional[timedelta] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        """
        Args:
            store: Store to read group instances from
            instance_validity: Only count instances that checked for updates
                within this window (None counts every enrolled instance)
            clock: Source of the current time
        """
        self.store = store
        self.instance_validity = instance_validity
        self.clock = clock

    def _is_active(self, binding: InstanceApplication, now: datetime) -> bool:
        if self.instance_validity is None:
            return True
        if binding.last_check_for_updates is None:
            return False
        return binding.last_check_for_updates >= now - self.instance_validity

    def summarize(
        self, group: Group, bindings: Iterable[InstanceApplication]
    ) -> RolloutStats:
        """Reduce bindings to stats against the group's target version."""
        now = self.clock()
        stats = RolloutStats()
        target = group.target_version

        for binding in bindings:
            if not self._is_active(binding, now):
                continue
            stats.total_instances += 1

            if target and binding.last_update_version == target:
                stats.updates_to_current_version_attempted += 1
                if binding.status == UpdateStatus.COMPLETE:
                    stats.updates_to_current_version_succeeded += 1

            if binding.status == UpdateStatus.UPDATE_GRANTED:
                stats.updates_granted += 1
            elif binding.status == UpdateStatus.ERROR:
                stats.updates_failed += 1
            elif binding.status == UpdateStatus.COMPLETE:
                stats.updates_complete += 1
            if binding.update_in_progress:
                stats.updates_in_progress += 1

        return stats

    def compute(self, group: Group) -> RolloutStats:
        """
        Compute stats for a group from the store's current state.

        Raises:
            StoreError: If the group's instances cannot be listed
        """
        bindings = self.store.list_group_instances(group.id)
        stats = self.summarize(group, bindings)
        logger.debug(f"Rollout stats for group {group.id}: {stats.to_dict()}")
        return stats

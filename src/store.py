"""
Store collaborators used by the event pipeline.

RolloutStore is the narrow interface the coordinator consumes; the durable
engine behind it lives elsewhere. InMemoryStore is a thread-safe
implementation used for local runs and tests.
"""

import itertools
import logging
import threading
from abc import ABC, abstractmethod
from contextlib import contextmanager
from copy import deepcopy
from datetime import datetime, timezone
from typing import Callable, Dict, Iterator, List, Optional, Tuple

from errors import NotFoundError
from models import (
    DEFAULT_EVENT_TYPES,
    ActivityEntry,
    ActivityKind,
    ActivitySeverity,
    Event,
    EventType,
    Group,
    Instance,
    InstanceApplication,
    StatusHistoryEntry,
    UpdateStatus,
)

logger = logging.getLogger(__name__)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class RolloutStore(ABC):
    """Lookup and mutation of instance, group and event records."""

    @abstractmethod
    def get_instance(self, instance_id: str, app_id: str) -> Instance:
        """Return the instance bound to app_id, raising NotFoundError if unknown."""

    @abstractmethod
    def get_group(self, group_id: str) -> Group:
        """Return a group, raising NotFoundError if unknown."""

    @abstractmethod
    def resolve_application_and_group(
        self, app_id: str, group_id: str
    ) -> Tuple[str, str]:
        """
        Resolve canonical application and group ids.

        Raises:
            NotFoundError: If either is unknown or the group does not
                belong to the application
        """

    @abstractmethod
    def list_group_instances(self, group_id: str) -> List[InstanceApplication]:
        """Return the bindings of every instance enrolled in a group."""

    @abstractmethod
    def update_instance_status(
        self, instance_id: str, app_id: str, status: UpdateStatus
    ) -> None:
        """Set the update status of an instance binding."""

    @abstractmethod
    def lookup_event_type_id(self, event_type: int, event_result: int) -> int:
        """Return the id for a (type, result) pair, raising NotFoundError."""

    @abstractmethod
    def record_event(
        self,
        event_type_id: int,
        instance_id: str,
        app_id: str,
        previous_version: str,
        error_code: str,
    ) -> Event:
        """Durably append an event."""

    @abstractmethod
    def set_group_rollout_in_progress(self, group_id: str, in_progress: bool) -> None:
        pass

    @abstractmethod
    def disable_updates(self, group_id: str) -> None:
        pass

    @abstractmethod
    def append_group_activity(
        self,
        kind: ActivityKind,
        severity: ActivitySeverity,
        version: str,
        app_id: str,
        group_id: str,
    ) -> None:
        pass

    @abstractmethod
    def append_instance_activity(
        self,
        kind: ActivityKind,
        severity: ActivitySeverity,
        version: str,
        app_id: str,
        group_id: str,
        instance_id: str,
    ) -> None:
        pass

    @abstractmethod
    def get_latest_error_code(
        self, instance_id: str, app_id: str, at_or_before: datetime
    ) -> Optional[str]:
        """Return the error code of the newest event at or before a timestamp."""

    @contextmanager
    def group_transaction(self, group_id: str) -> Iterator[None]:
        """
        Delimit one rollout decision for a group.

        The default relies on the backing service's own transactions.
        """
        yield


class InMemoryStore(RolloutStore):
    """Process-local store guarded by locks."""

    def __init__(
        self,
        event_types: Optional[List[EventType]] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.clock = clock
        self._lock = threading.RLock()
        self._group_locks: Dict[str, threading.RLock] = {}
        self._event_ids = itertools.count(1)

        self.event_types: List[EventType] = list(
            DEFAULT_EVENT_TYPES if event_types is None else event_types
        )
        self.groups: Dict[str, Group] = {}
        self.instances: Dict[str, Instance] = {}
        self.events: List[Event] = []
        self.activity: List[ActivityEntry] = []
        self.status_history: Dict[Tuple[str, str], List[StatusHistoryEntry]] = {}

    # ------------------------------------------------------------------
    # Seeding helpers
    # ------------------------------------------------------------------
    def add_group(self, group: Group) -> Group:
        with self._lock:
            self.groups[group.id] = group
        return group

    def add_instance(self, instance: Instance) -> Instance:
        """Register an instance, as the update-check path does on first contact."""
        with self._lock:
            self.instances[instance.id] = instance
        return instance

    # ------------------------------------------------------------------
    # RolloutStore
    # ------------------------------------------------------------------
    def get_instance(self, instance_id: str, app_id: str) -> Instance:
        with self._lock:
            instance = self.instances.get(instance_id)
            if instance is None or instance.application.application_id != app_id:
                raise NotFoundError(f"instance {instance_id} not found for app {app_id}")
            return deepcopy(instance)

    def get_group(self, group_id: str) -> Group:
        with self._lock:
            group = self.groups.get(group_id)
            if group is None:
                raise NotFoundError(f"group {group_id} not found")
            return deepcopy(group)

    def resolve_application_and_group(
        self, app_id: str, group_id: str
    ) -> Tuple[str, str]:
        with self._lock:
            group = self.groups.get(group_id)
            if group is None:
                # Fall back to resolving a track name within the application.
                group = next(
                    (
                        g
                        for g in self.groups.values()
                        if g.track and g.track == group_id and g.application_id == app_id
                    ),
                    None,
                )
            if group is None or group.application_id != app_id:
                raise NotFoundError(f"group {group_id} not found for app {app_id}")
            return group.application_id, group.id

    def list_group_instances(self, group_id: str) -> List[InstanceApplication]:
        with self._lock:
            return [
                deepcopy(inst.application)
                for inst in self.instances.values()
                if inst.application.group_id == group_id
            ]

    def update_instance_status(
        self, instance_id: str, app_id: str, status: UpdateStatus
    ) -> None:
        with self._lock:
            instance = self.instances.get(instance_id)
            if instance is None or instance.application.application_id != app_id:
                raise NotFoundError(f"instance {instance_id} not found for app {app_id}")
            entry = instance.application.apply_status(status, self.clock())
            self.status_history.setdefault((instance_id, app_id), []).append(entry)

    def lookup_event_type_id(self, event_type: int, event_result: int) -> int:
        for row in self.event_types:
            if row.type == event_type and row.result == event_result:
                return row.id
        raise NotFoundError(f"event type ({event_type}, {event_result}) not found")

    def record_event(
        self,
        event_type_id: int,
        instance_id: str,
        app_id: str,
        previous_version: str,
        error_code: str,
    ) -> Event:
        with self._lock:
            if instance_id not in self.instances:
                raise NotFoundError(f"instance {instance_id} not found")
            event = Event(
                id=next(self._event_ids),
                event_type_id=event_type_id,
                instance_id=instance_id,
                application_id=app_id,
                previous_version=previous_version,
                error_code=error_code,
                created_ts=self.clock(),
            )
            self.events.append(event)
            return deepcopy(event)

    def set_group_rollout_in_progress(self, group_id: str, in_progress: bool) -> None:
        with self._lock:
            self._group(group_id).rollout_in_progress = in_progress

    def disable_updates(self, group_id: str) -> None:
        with self._lock:
            self._group(group_id).policy_updates_enabled = False

    def append_group_activity(
        self,
        kind: ActivityKind,
        severity: ActivitySeverity,
        version: str,
        app_id: str,
        group_id: str,
    ) -> None:
        self._append_activity(
            ActivityEntry(kind, severity, version, app_id, group_id)
        )

    def append_instance_activity(
        self,
        kind: ActivityKind,
        severity: ActivitySeverity,
        version: str,
        app_id: str,
        group_id: str,
        instance_id: str,
    ) -> None:
        self._append_activity(
            ActivityEntry(kind, severity, version, app_id, group_id, instance_id)
        )

    def get_latest_error_code(
        self, instance_id: str, app_id: str, at_or_before: datetime
    ) -> Optional[str]:
        with self._lock:
            matching = [
                e
                for e in self.events
                if e.instance_id == instance_id
                and e.application_id == app_id
                and e.created_ts <= at_or_before
            ]
        if not matching:
            return None
        # Ties on created_ts resolve to the later insert.
        latest = max(matching, key=lambda e: (e.created_ts, e.id))
        return latest.error_code

    @contextmanager
    def group_transaction(self, group_id: str) -> Iterator[None]:
        with self._lock:
            group_lock = self._group_locks.setdefault(group_id, threading.RLock())
        with group_lock:
            yield

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------
    def _group(self, group_id: str) -> Group:
        group = self.groups.get(group_id)
        if group is None:
            raise NotFoundError(f"group {group_id} not found")
        return group

    def _append_activity(self, entry: ActivityEntry) -> None:
        with self._lock:
            entry.created_ts = self.clock()
            self.activity.append(entry)
        logger.debug(
            f"Activity {entry.kind.name} ({entry.severity.name}) group={entry.group_id} "
            f"version={entry.version}"
        )

"""
Data models for the fleet rollout coordinator.
"""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import List, Optional

# Omaha event types handled by the coordinator (subset of the protocol).
EVENT_UPDATE_COMPLETE = 3
EVENT_UPDATE_DOWNLOAD_STARTED = 13
EVENT_UPDATE_DOWNLOAD_FINISHED = 14
EVENT_UPDATE_INSTALLED = 800

# Omaha event results.
RESULT_FAILED = 0
RESULT_SUCCESS = 1
# Only meaningful together with EVENT_UPDATE_COMPLETE.
RESULT_SUCCESS_REBOOT = 2

FLATCAR_APP_ID = "e96281a6-d1af-4bde-9a0a-97b76e56dc57"

# Previous versions reported by instances that were never granted an update.
UNKNOWN_PREVIOUS_VERSIONS = ("", "0.0.0.0")


class UpdateStatus(Enum):
    """Update status of an instance for a given application."""

    UNDEFINED = 1
    UPDATE_GRANTED = 2
    ERROR = 3
    COMPLETE = 4
    INSTALLED = 5
    DOWNLOADED = 6
    DOWNLOADING = 7

    @property
    def keeps_update_in_progress(self) -> bool:
        return self in (
            UpdateStatus.UPDATE_GRANTED,
            UpdateStatus.DOWNLOADING,
            UpdateStatus.DOWNLOADED,
            UpdateStatus.INSTALLED,
        )


class ActivityKind(Enum):
    """Kinds of activity entries."""

    PACKAGE_NOT_FOUND = 1
    ROLLOUT_STARTED = 2
    ROLLOUT_FINISHED = 3
    ROLLOUT_FAILED = 4
    INSTANCE_UPDATE_FAILED = 5
    CHANNEL_PACKAGE_UPDATED = 6


class ActivitySeverity(Enum):
    """Severity attached to activity entries."""

    SUCCESS = 1
    INFO = 2
    WARNING = 3
    ERROR = 4


@dataclass(frozen=True)
class EventType:
    """Row of the supported (type, result) table."""

    id: int
    type: int
    result: int
    description: str = ""


DEFAULT_EVENT_TYPES: List[EventType] = [
    EventType(1, EVENT_UPDATE_COMPLETE, RESULT_FAILED,
              "Instance reported an error during an update step."),
    EventType(2, EVENT_UPDATE_COMPLETE, RESULT_SUCCESS,
              "Updater has processed and applied package."),
    EventType(3, EVENT_UPDATE_COMPLETE, RESULT_SUCCESS_REBOOT,
              "Instances upgraded to current channel version."),
    EventType(4, EVENT_UPDATE_DOWNLOAD_STARTED, RESULT_SUCCESS,
              "Downloading latest version."),
    EventType(5, EVENT_UPDATE_DOWNLOAD_FINISHED, RESULT_SUCCESS,
              "Update package arrived successfully."),
    EventType(6, EVENT_UPDATE_INSTALLED, RESULT_SUCCESS,
              "Install success. Update completion prevented by instance."),
]


@dataclass
class StatusHistoryEntry:
    """Status transition recorded for an instance binding."""

    status: UpdateStatus
    version: str
    created_ts: datetime


@dataclass
class InstanceApplication:
    """Enrollment of an instance in an application/group."""

    instance_id: str
    application_id: str
    group_id: str
    version: str = ""
    status: UpdateStatus = UpdateStatus.UNDEFINED
    update_in_progress: bool = False
    last_update_version: Optional[str] = None
    last_check_for_updates: Optional[datetime] = None
    last_update_granted_ts: Optional[datetime] = None

    def apply_status(self, status: UpdateStatus, now: datetime) -> StatusHistoryEntry:
        """
        Set the status and the fields derived from it.

        Args:
            status: New update status
            now: Timestamp of the transition

        Returns:
            History entry describing the transition
        """
        self.status = status
        self.update_in_progress = status.keeps_update_in_progress
        if status == UpdateStatus.COMPLETE and self.last_update_version:
            self.version = self.last_update_version
        return StatusHistoryEntry(status=status, version=self.version, created_ts=now)


@dataclass
class Instance:
    """A running deployment unit reporting update events."""

    id: str
    application: InstanceApplication
    ip: str = ""
    alias: str = ""


@dataclass
class Group:
    """A cohort of instances sharing one rollout policy and target version."""

    id: str
    name: str
    application_id: str
    target_version: Optional[str] = None
    track: str = ""
    rollout_in_progress: bool = False
    policy_updates_enabled: bool = True


@dataclass
class Event:
    """Append-only record of an accepted event."""

    event_type_id: int
    instance_id: str
    application_id: str
    previous_version: str = ""
    error_code: str = ""
    created_ts: Optional[datetime] = None
    id: Optional[int] = None


@dataclass
class ActivityEntry:
    """Audit-log record for a rollout or instance milestone."""

    kind: ActivityKind
    severity: ActivitySeverity
    version: str
    application_id: str
    group_id: str
    instance_id: Optional[str] = None
    created_ts: Optional[datetime] = None


@dataclass
class RolloutStats:
    """Aggregate view of a group's progress towards its target version."""

    total_instances: int = 0
    updates_to_current_version_attempted: int = 0
    updates_to_current_version_succeeded: int = 0
    updates_granted: int = 0
    updates_in_progress: int = 0
    updates_failed: int = 0
    updates_complete: int = 0

    @property
    def converged(self) -> bool:
        """True when at least one instance attempted and all succeeded."""
        return (
            self.total_instances > 0
            and self.updates_to_current_version_attempted > 0
            and self.updates_to_current_version_succeeded == self.total_instances
        )

    def to_dict(self) -> dict:
        """Convert to dictionary for logging/reporting."""
        return {
            "total_instances": self.total_instances,
            "updates_to_current_version_attempted": self.updates_to_current_version_attempted,
            "updates_to_current_version_succeeded": self.updates_to_current_version_succeeded,
            "updates_granted": self.updates_granted,
            "updates_in_progress": self.updates_in_progress,
            "updates_failed": self.updates_failed,
            "updates_complete": self.updates_complete,
        }


@dataclass
class ValidatedEvent:
    """Binding resolved by the validator for an incoming event."""

    instance: Instance
    application_id: str
    group_id: str
    # Application completes updates only through a reboot.
    reboot_completion: bool = False

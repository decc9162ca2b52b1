"""
Error taxonomy for event registration and the store boundary.
"""


class EventError(Exception):
    """Base class for errors returned by event registration."""

    http_status = 400
    outcome = "rejected"
    default_message = "event error"

    def __init__(self, message: str = ""):
        super().__init__(message or self.default_message)


class InvalidInstanceError(EventError):
    """The instance is unknown (expected on an instance's first contact)."""

    http_status = 404
    default_message = "invalid instance"


class InvalidApplicationOrGroupError(EventError):
    """The application or group are invalid or not related to each other."""

    default_message = "invalid application or group"


class InvalidEventTypeOrResultError(EventError):
    """The (type, result) pair is outside the supported protocol subset."""

    default_message = "invalid event type or result"


class EventRegistrationFailedError(EventError):
    """The event could not be durably recorded."""

    http_status = 503
    default_message = "event registration failed"


class NoUpdateInProgressError(EventError):
    """The instance has no update in progress; the event is stale or spurious."""

    http_status = 200
    outcome = "no_update_in_progress"
    default_message = "no update in progress"


class FlatcarEventIgnoredError(EventError):
    """A reboot-based completion event was intentionally dropped."""

    http_status = 200
    outcome = "ignored"
    default_message = "flatcar event ignored"


class StoreError(RuntimeError):
    """Raised when a store operation fails."""


class NotFoundError(StoreError):
    """Raised when a store record does not exist."""

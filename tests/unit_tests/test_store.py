"""
Unit tests for InMemoryStore.
"""

import threading
import unittest
from datetime import datetime, timedelta, timezone

from errors import NotFoundError
from models import (
    ActivityKind,
    ActivitySeverity,
    Group,
    Instance,
    InstanceApplication,
    UpdateStatus,
)
from store import InMemoryStore

T0 = datetime(2024, 1, 1, tzinfo=timezone.utc)


class SteppingClock:
    """Clock advancing one second per call."""

    def __init__(self):
        self.now = T0

    def __call__(self):
        self.now += timedelta(seconds=1)
        return self.now


class TestInMemoryStore(unittest.TestCase):
    """Test the in-memory store."""

    def setUp(self):
        """Set up test fixtures."""
        self.clock = SteppingClock()
        self.store = InMemoryStore(clock=self.clock)
        self.store.add_group(
            Group(id="g1", name="stable", application_id="app", track="stable",
                  target_version="2.0")
        )
        self.store.add_instance(
            Instance(
                id="i-1",
                application=InstanceApplication(
                    instance_id="i-1",
                    application_id="app",
                    group_id="g1",
                    version="1.0",
                    status=UpdateStatus.UPDATE_GRANTED,
                    update_in_progress=True,
                    last_update_version="2.0",
                ),
            )
        )

    def test_get_instance_returns_copy(self):
        """Returned instances are snapshots."""
        inst = self.store.get_instance("i-1", "app")
        inst.application.status = UpdateStatus.ERROR

        self.assertEqual(
            self.store.instances["i-1"].application.status, UpdateStatus.UPDATE_GRANTED
        )

    def test_get_instance_wrong_app(self):
        """Instances are looked up per application."""
        with self.assertRaises(NotFoundError):
            self.store.get_instance("i-1", "other-app")
        with self.assertRaises(NotFoundError):
            self.store.get_instance("missing", "app")

    def test_resolve_application_and_group(self):
        """Groups resolve by id or track, and must belong to the application."""
        self.assertEqual(self.store.resolve_application_and_group("app", "g1"), ("app", "g1"))
        self.assertEqual(
            self.store.resolve_application_and_group("app", "stable"), ("app", "g1")
        )
        with self.assertRaises(NotFoundError):
            self.store.resolve_application_and_group("other", "g1")
        with self.assertRaises(NotFoundError):
            self.store.resolve_application_and_group("app", "beta")

    def test_update_status_derives_fields(self):
        """Completion promotes the version and clears update_in_progress."""
        self.store.update_instance_status("i-1", "app", UpdateStatus.DOWNLOADING)
        binding = self.store.instances["i-1"].application
        self.assertTrue(binding.update_in_progress)

        self.store.update_instance_status("i-1", "app", UpdateStatus.COMPLETE)

        self.assertFalse(binding.update_in_progress)
        self.assertEqual(binding.version, "2.0")
        history = self.store.status_history[("i-1", "app")]
        self.assertEqual(
            [h.status for h in history], [UpdateStatus.DOWNLOADING, UpdateStatus.COMPLETE]
        )

    def test_update_status_unknown_instance(self):
        """Updating an unknown instance raises NotFoundError."""
        with self.assertRaises(NotFoundError):
            self.store.update_instance_status("missing", "app", UpdateStatus.ERROR)

    def test_lookup_event_type_id(self):
        """The default table is seeded."""
        self.assertEqual(self.store.lookup_event_type_id(3, 2), 3)
        self.assertEqual(self.store.lookup_event_type_id(800, 1), 6)
        with self.assertRaises(NotFoundError):
            self.store.lookup_event_type_id(800, 0)

    def test_latest_error_code(self):
        """The newest event at or before the timestamp wins."""
        first = self.store.record_event(1, "i-1", "app", "1.0", "100")
        second = self.store.record_event(1, "i-1", "app", "1.0", "200")

        self.assertEqual(self.store.get_latest_error_code("i-1", "app", first.created_ts), "100")
        self.assertEqual(self.store.get_latest_error_code("i-1", "app", second.created_ts), "200")
        self.assertIsNone(self.store.get_latest_error_code("i-1", "app", T0))
        self.assertIsNone(
            self.store.get_latest_error_code("i-1", "other", second.created_ts)
        )

    def test_group_flags_and_activity(self):
        """Group flag writes and activity entries are stored."""
        self.store.set_group_rollout_in_progress("g1", True)
        self.store.disable_updates("g1")
        self.store.append_group_activity(
            ActivityKind.ROLLOUT_FAILED, ActivitySeverity.ERROR, "2.0", "app", "g1"
        )
        self.store.append_instance_activity(
            ActivityKind.INSTANCE_UPDATE_FAILED, ActivitySeverity.ERROR, "2.0", "app", "g1", "i-1"
        )

        group = self.store.get_group("g1")
        self.assertTrue(group.rollout_in_progress)
        self.assertFalse(group.policy_updates_enabled)
        self.assertEqual(len(self.store.activity), 2)
        self.assertIsNone(self.store.activity[0].instance_id)
        self.assertEqual(self.store.activity[1].instance_id, "i-1")
        self.assertIsNotNone(self.store.activity[1].created_ts)
        with self.assertRaises(NotFoundError):
            self.store.disable_updates("missing")

    def test_group_transaction_serializes_decisions(self):
        """Only one decision per group runs at a time."""
        entered = threading.Event()
        release = threading.Event()
        order = []

        def first():
            with self.store.group_transaction("g1"):
                order.append("first-in")
                entered.set()
                release.wait(timeout=5)
                order.append("first-out")

        def second():
            entered.wait(timeout=5)
            with self.store.group_transaction("g1"):
                order.append("second-in")

        t1 = threading.Thread(target=first)
        t2 = threading.Thread(target=second)
        t1.start()
        t2.start()
        entered.wait(timeout=5)
        release.set()
        t1.join(timeout=5)
        t2.join(timeout=5)

        self.assertEqual(order, ["first-in", "first-out", "second-in"])


if __name__ == "__main__":
    unittest.main()

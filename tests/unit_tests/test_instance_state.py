"""
Unit tests for the instance state machine.
"""

import unittest
from unittest.mock import MagicMock

from errors import StoreError
from instance_state import (
    InstanceStateMachine,
    is_stale_reboot_completion,
    is_update_complete,
)
from models import (
    EVENT_UPDATE_COMPLETE,
    EVENT_UPDATE_DOWNLOAD_FINISHED,
    EVENT_UPDATE_DOWNLOAD_STARTED,
    EVENT_UPDATE_INSTALLED,
    RESULT_FAILED,
    RESULT_SUCCESS,
    RESULT_SUCCESS_REBOOT,
    UpdateStatus,
)
from store import RolloutStore


class TestTransitions(unittest.TestCase):
    """Test the (type, result) -> status table."""

    def setUp(self):
        """Set up test fixtures."""
        self.store = MagicMock(spec=RolloutStore)
        self.machine = InstanceStateMachine(self.store)

    def test_transition_table(self):
        """Each supported event maps to its status."""
        cases = [
            (EVENT_UPDATE_DOWNLOAD_STARTED, RESULT_SUCCESS, UpdateStatus.DOWNLOADING),
            (EVENT_UPDATE_DOWNLOAD_FINISHED, RESULT_SUCCESS, UpdateStatus.DOWNLOADED),
            (EVENT_UPDATE_INSTALLED, RESULT_SUCCESS, UpdateStatus.INSTALLED),
            (EVENT_UPDATE_COMPLETE, RESULT_SUCCESS, UpdateStatus.COMPLETE),
            (EVENT_UPDATE_COMPLETE, RESULT_SUCCESS_REBOOT, UpdateStatus.COMPLETE),
            (EVENT_UPDATE_COMPLETE, RESULT_FAILED, UpdateStatus.ERROR),
            (EVENT_UPDATE_DOWNLOAD_STARTED, RESULT_FAILED, UpdateStatus.ERROR),
        ]
        for etype, result, expected in cases:
            with self.subTest(etype=etype, result=result):
                self.assertEqual(self.machine.target_status(etype, result), expected)

    def test_reboot_completion_asymmetry(self):
        """Reboot-based applications only complete with SuccessReboot."""
        self.assertIsNone(
            self.machine.target_status(EVENT_UPDATE_COMPLETE, RESULT_SUCCESS, True)
        )
        self.assertEqual(
            self.machine.target_status(EVENT_UPDATE_COMPLETE, RESULT_SUCCESS_REBOOT, True),
            UpdateStatus.COMPLETE,
        )
        self.assertFalse(is_update_complete(EVENT_UPDATE_COMPLETE, RESULT_SUCCESS, True))
        self.assertTrue(is_update_complete(EVENT_UPDATE_COMPLETE, RESULT_SUCCESS, False))
        self.assertFalse(is_update_complete(EVENT_UPDATE_INSTALLED, RESULT_SUCCESS, False))

    def test_stale_reboot_completion(self):
        """Empty and sentinel previous versions mark stale completions."""
        self.assertTrue(
            is_stale_reboot_completion(EVENT_UPDATE_COMPLETE, RESULT_SUCCESS_REBOOT, "", True)
        )
        self.assertTrue(
            is_stale_reboot_completion(
                EVENT_UPDATE_COMPLETE, RESULT_SUCCESS_REBOOT, "0.0.0.0", True
            )
        )
        self.assertFalse(
            is_stale_reboot_completion(
                EVENT_UPDATE_COMPLETE, RESULT_SUCCESS_REBOOT, "0.0.0", True
            )
        )
        self.assertFalse(
            is_stale_reboot_completion(EVENT_UPDATE_COMPLETE, RESULT_SUCCESS_REBOOT, "", False)
        )
        self.assertFalse(
            is_stale_reboot_completion(EVENT_UPDATE_COMPLETE, RESULT_SUCCESS, "", True)
        )

    def test_stale_transitions(self):
        """Moving backwards within a cycle is stale; errors never are."""
        stale = InstanceStateMachine.is_stale_transition
        self.assertTrue(stale(UpdateStatus.DOWNLOADED, UpdateStatus.DOWNLOADING))
        self.assertTrue(stale(UpdateStatus.COMPLETE, UpdateStatus.INSTALLED))
        self.assertFalse(stale(UpdateStatus.UPDATE_GRANTED, UpdateStatus.INSTALLED))
        self.assertFalse(stale(UpdateStatus.DOWNLOADING, UpdateStatus.DOWNLOADING))
        self.assertFalse(stale(UpdateStatus.INSTALLED, UpdateStatus.ERROR))
        self.assertFalse(stale(UpdateStatus.ERROR, UpdateStatus.DOWNLOADING))

    def test_apply_writes_status(self):
        """Applying a forward transition writes to the store."""
        written = self.machine.apply(
            "i-1", "app", UpdateStatus.DOWNLOADED, UpdateStatus.DOWNLOADING
        )

        self.assertTrue(written)
        self.store.update_instance_status.assert_called_once_with(
            "i-1", "app", UpdateStatus.DOWNLOADED
        )

    def test_apply_skips_stale(self):
        """Stale transitions are not written."""
        written = self.machine.apply(
            "i-1", "app", UpdateStatus.DOWNLOADING, UpdateStatus.INSTALLED
        )

        self.assertFalse(written)
        self.store.update_instance_status.assert_not_called()

    def test_apply_swallows_store_errors(self):
        """Store failures are logged and reported as not written."""
        self.store.update_instance_status.side_effect = StoreError("boom")

        with self.assertLogs("instance_state", level="ERROR"):
            written = self.machine.apply("i-1", "app", UpdateStatus.ERROR)

        self.assertFalse(written)

    def test_reset_forces_undefined(self):
        """Reset writes UNDEFINED regardless of the current status."""
        self.assertTrue(self.machine.reset("i-1", "app"))
        self.store.update_instance_status.assert_called_once_with(
            "i-1", "app", UpdateStatus.UNDEFINED
        )


if __name__ == "__main__":
    unittest.main()

"""
Unit tests for CLI module.
"""

import unittest
from unittest.mock import MagicMock, patch

from cli import build_parser, main
from errors import InvalidInstanceError, NoUpdateInProgressError
from models import Event


class TestCLI(unittest.TestCase):
    """Test CLI argument parsing and entry point."""

    def test_parser_register(self):
        """Test parser handles the register subcommand."""
        parser = build_parser()

        args = parser.parse_args(
            [
                "--store-url",
                "https://store.example",
                "--disable-updates-on-failed-rollout",
                "--reboot-completion-app",
                "app-a",
                "register",
                "--instance",
                "i-1",
                "--app",
                "app-a",
                "--group",
                "stable",
                "--type",
                "3",
                "--result",
                "2",
                "--previous-version",
                "1.0.0",
            ]
        )

        self.assertEqual(args.command, "register")
        self.assertEqual(args.store_url, "https://store.example")
        self.assertTrue(args.disable_updates_on_failed_rollout)
        self.assertEqual(args.reboot_completion_app, ["app-a"])
        self.assertEqual(args.event_type, 3)
        self.assertEqual(args.event_result, 2)
        self.assertEqual(args.previous_version, "1.0.0")
        self.assertEqual(args.error_code, "")

    def test_parser_requires_command(self):
        """Test parser requires a subcommand."""
        parser = build_parser()

        with self.assertRaises(SystemExit):
            parser.parse_args(["--store-url", "https://store.example"])

    def test_parser_register_requires_type(self):
        """Test register requires the event type."""
        parser = build_parser()

        with self.assertRaises(SystemExit):
            parser.parse_args(
                ["register", "--instance", "i", "--app", "a", "--group", "g", "--result", "1"]
            )

    @patch.dict("os.environ", {}, clear=True)
    def test_main_requires_store_url(self):
        """Test main exits when no store URL is configured."""
        with self.assertRaises(SystemExit):
            main(["stats", "--group", "g1"])

    @patch("cli.EventRegistrar")
    @patch("cli.RolloutRestClient")
    @patch("cli.setup_logging")
    def test_main_register_recorded(
        self, mock_setup_logging, mock_client_class, mock_registrar_class
    ):
        """Test main returns 0 when the event is recorded."""
        mock_registrar = MagicMock()
        mock_registrar.register_event.return_value = Event(
            id=5, event_type_id=3, instance_id="i-1", application_id="app"
        )
        mock_registrar_class.return_value = mock_registrar

        result = main(
            [
                "--store-url",
                "https://store.example",
                "register",
                "--instance",
                "i-1",
                "--app",
                "app",
                "--group",
                "g1",
                "--type",
                "3",
                "--result",
                "2",
            ]
        )

        self.assertEqual(result, 0)
        mock_client_class.assert_called_once_with(
            base_url="https://store.example", timeout_s=60, max_retries=5
        )
        mock_registrar.register_event.assert_called_once_with(
            instance_id="i-1",
            app_id="app",
            group_id="g1",
            event_type=3,
            event_result=2,
            previous_version="",
            error_code="",
        )

    @patch("cli.EventRegistrar")
    @patch("cli.RolloutRestClient")
    @patch("cli.setup_logging")
    def test_main_register_outcomes(
        self, mock_setup_logging, mock_client_class, mock_registrar_class
    ):
        """Test stale events exit 0 and rejected events exit 1."""
        mock_registrar = MagicMock()
        mock_registrar_class.return_value = mock_registrar
        argv = [
            "--store-url",
            "https://store.example",
            "register",
            "--instance",
            "i-1",
            "--app",
            "app",
            "--group",
            "g1",
            "--type",
            "13",
            "--result",
            "1",
        ]

        mock_registrar.register_event.side_effect = NoUpdateInProgressError()
        self.assertEqual(main(argv), 0)

        mock_registrar.register_event.side_effect = InvalidInstanceError()
        self.assertEqual(main(argv), 1)

    @patch("cli.EventRegistrar")
    @patch("cli.RolloutRestClient")
    @patch("cli.setup_logging")
    def test_main_stats(self, mock_setup_logging, mock_client_class, mock_registrar_class):
        """Test the stats subcommand."""
        mock_registrar = MagicMock()
        mock_registrar.group_stats.return_value = {"total_instances": 3}
        mock_registrar_class.return_value = mock_registrar

        with patch("builtins.print") as mock_print:
            result = main(["--store-url", "https://store.example", "stats", "--group", "g1"])

        self.assertEqual(result, 0)
        mock_registrar.group_stats.assert_called_once_with("g1")
        self.assertIn("total_instances", mock_print.call_args[0][0])

    @patch("cli.EventRegistrar")
    @patch("cli.RolloutRestClient")
    @patch("cli.setup_logging")
    def test_main_last_error(
        self, mock_setup_logging, mock_client_class, mock_registrar_class
    ):
        """Test the last-error subcommand treats naive timestamps as UTC."""
        mock_registrar = MagicMock()
        mock_registrar.get_event_error_code.return_value = "268"
        mock_registrar_class.return_value = mock_registrar

        with patch("builtins.print"):
            result = main(
                [
                    "--store-url",
                    "https://store.example",
                    "last-error",
                    "--instance",
                    "i-1",
                    "--app",
                    "app",
                    "--at",
                    "2024-01-01T10:00:00",
                ]
            )

        self.assertEqual(result, 0)
        instance_id, app_id, at = mock_registrar.get_event_error_code.call_args[0]
        self.assertEqual((instance_id, app_id), ("i-1", "app"))
        self.assertIsNotNone(at.tzinfo)


if __name__ == "__main__":
    unittest.main()

"""
Configuration management for the fleet rollout coordinator.
"""

import os
import re
from dataclasses import dataclass, field
from datetime import timedelta
from typing import List, Mapping, Optional

from models import FLATCAR_APP_ID


def _env_bool(env: Mapping[str, str], key: str, default: bool) -> bool:
    value = env.get(key, "").strip().lower()
    if value in ("true", "1", "yes"):
        return True
    if value in ("false", "0", "no"):
        return False
    return default


def _env_int(env: Mapping[str, str], key: str, default: Optional[int]) -> Optional[int]:
    value = env.get(key, "").strip()
    if value:
        return int(value)
    return default


@dataclass
class RolloutConfig:
    """Configuration for event registration and rollout policy."""

    disable_updates_on_failed_rollout: bool = False
    reboot_completion_app_ids: List[str] = field(
        default_factory=lambda: [FLATCAR_APP_ID]
    )
    store_url: Optional[str] = None
    instance_validity_hours: Optional[int] = None
    request_timeout: int = 60
    max_retries: int = 5
    verbose: bool = False
    log_file: str = "rollout-events.log"
    allow_in_memory_store: bool = False

    @property
    def instance_validity(self) -> Optional[timedelta]:
        if not self.instance_validity_hours:
            return None
        return timedelta(hours=self.instance_validity_hours)

    def requires_reboot_completion(self, app_id: str) -> bool:
        """Whether instances of app_id only complete updates through a reboot."""
        return app_id in self.reboot_completion_app_ids

    @classmethod
    def from_args(cls, args) -> "RolloutConfig":
        """
        Create configuration from command-line arguments.

        Args:
            args: Parsed argparse arguments

        Returns:
            RolloutConfig instance
        """
        reboot_apps = args.reboot_completion_app or [FLATCAR_APP_ID]
        return cls(
            disable_updates_on_failed_rollout=args.disable_updates_on_failed_rollout,
            reboot_completion_app_ids=list(reboot_apps),
            store_url=args.store_url,
            instance_validity_hours=args.instance_validity_hours,
            request_timeout=args.request_timeout,
            max_retries=args.max_retries,
            verbose=args.verbose,
        )

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> "RolloutConfig":
        """
        Create configuration from environment variables.

        Args:
            env: Mapping to read from (defaults to os.environ)

        Returns:
            RolloutConfig instance
        """
        env = os.environ if env is None else env
        raw_apps = env.get("REBOOT_COMPLETION_APP_IDS")
        if raw_apps is None:
            reboot_apps = [FLATCAR_APP_ID]
        else:
            reboot_apps = [a for a in re.split(r"[\s,]+", raw_apps) if a]
        return cls(
            disable_updates_on_failed_rollout=_env_bool(
                env, "DISABLE_UPDATES_ON_FAILED_ROLLOUT", False
            ),
            reboot_completion_app_ids=reboot_apps,
            store_url=env.get("STORE_URL") or None,
            instance_validity_hours=_env_int(env, "INSTANCE_VALIDITY_HOURS", None),
            request_timeout=_env_int(env, "REQUEST_TIMEOUT", 60),
            max_retries=_env_int(env, "MAX_RETRIES", 5),
            verbose=_env_bool(env, "VERBOSE", False),
            allow_in_memory_store=_env_bool(env, "ALLOW_IN_MEMORY_STORE", False),
        )

"""
Fleet Rollout Coordinator.
"""

from clients import RolloutRestClient
from config import RolloutConfig
from log_utils import setup_logging
from models import Event, Group, Instance, InstanceApplication, RolloutStats, UpdateStatus
from policy import RolloutDecision, RolloutPolicyEngine
from registrar import EventRegistrar
from store import InMemoryStore, RolloutStore

__all__ = [
    "RolloutRestClient",
    "RolloutConfig",
    "setup_logging",
    "Event",
    "Group",
    "Instance",
    "InstanceApplication",
    "RolloutStats",
    "UpdateStatus",
    "RolloutDecision",
    "RolloutPolicyEngine",
    "EventRegistrar",
    "InMemoryStore",
    "RolloutStore",
]

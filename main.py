#!/usr/bin/env python3
"""
Fleet Rollout Coordinator

Registers Omaha update events reported by fleet instances against a rollout
store and applies the rollout policy (finish converged rollouts, halt rollouts
whose first updating instance failed).

This script supports running directly from a source checkout that uses a
src/ layout: it adds the local `src/` directory to sys.path. For production
use, prefer installing the project and using the provided console script.

Examples:
  # Record a successful download start
  python3 main.py --store-url https://store.example register \\
      --instance i-1 --app APP_ID --group GROUP_ID --type 13 --result 1

  # Show a group's rollout progress
  python3 main.py --store-url https://store.example stats --group GROUP_ID
"""

import os
import sys

# Add src/ to path to import modules directly
REPO_ROOT = os.path.dirname(os.path.abspath(__file__))
SRC_PATH = os.path.join(REPO_ROOT, "src")
if SRC_PATH not in sys.path:
    sys.path.insert(0, SRC_PATH)

from cli import main


if __name__ == "__main__":
    sys.exit(main())

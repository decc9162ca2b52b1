"""
Google Cloud Function entry point for the fleet rollout coordinator.

This module provides HTTP endpoints for:
- /events: Register an update event posted by an instance
- /stats: Rollout stats of a group
- /last-error: Latest error code reported by an instance
- /health: Health check endpoint

All configuration is done via environment variables (see RolloutConfig.from_env).
"""

import logging
import os
import re
import sys
from datetime import datetime, timezone
from functools import wraps
from typing import Any, Callable, Dict, Optional, Tuple

import functions_framework
from flask import Request

# Add the shared src/ directory to path for local imports
sys.path.insert(
    0, os.path.join(os.path.dirname(os.path.abspath(__file__)), os.pardir, "src")
)

from clients import RolloutRestClient
from config import RolloutConfig
from errors import EventError, NotFoundError
from log_utils import setup_logging
from registrar import EventRegistrar
from store import InMemoryStore

setup_logging(log_file=None, structured=True)
logger = logging.getLogger(__name__)

_registrar: Optional[EventRegistrar] = None


def get_registrar() -> EventRegistrar:
    """Return the process-wide registrar, building it from the environment."""
    global _registrar
    if _registrar is None:
        config = RolloutConfig.from_env()
        if config.store_url:
            store = RolloutRestClient(
                base_url=config.store_url,
                timeout_s=config.request_timeout,
                max_retries=config.max_retries,
            )
        elif config.allow_in_memory_store:
            logger.warning("STORE_URL not set; using a process-local in-memory store")
            store = InMemoryStore()
        else:
            raise RuntimeError(
                "STORE_URL is not set (set ALLOW_IN_MEMORY_STORE=true for local runs)"
            )
        _registrar = EventRegistrar(store, config)
    return _registrar


# =============================================================================
# Security and Validation
# =============================================================================


def validate_request(func: Callable) -> Callable:
    """
    Decorator to validate incoming requests.

    Checks:
    - Content-Type for POST requests
    """

    @wraps(func)
    def wrapper(request: Request) -> Tuple[Dict[str, Any], int]:
        if request.method == "POST":
            content_type = request.headers.get("Content-Type", "")
            if "application/json" not in content_type:
                return create_response(
                    success=False,
                    error="Invalid content type",
                    message="Content-Type must be application/json",
                    status_code=415,
                )

        return func(request)

    return wrapper


def sanitize_input(value: Any, max_length: int = 256) -> str:
    """Sanitize string input to prevent injection attacks."""
    if value is None:
        return ""
    value = str(value)
    # Remove null bytes and control characters
    sanitized = "".join(c for c in value if c.isprintable())
    return sanitized[:max_length]


def validate_identifier(value: str) -> bool:
    """Validate instance/application/group identifier format."""
    return bool(re.match(r"^[A-Za-z0-9{}][A-Za-z0-9._:{}-]{0,127}$", value))


def require_identifier(data: Dict[str, Any], key: str) -> str:
    value = sanitize_input(data.get(key))
    if not value:
        raise ValueError(f"{key} is required")
    if not validate_identifier(value):
        raise ValueError(f"Invalid {key} format: {value}")
    return value


def require_int(data: Dict[str, Any], key: str) -> int:
    value = data.get(key)
    if value is None or value == "":
        raise ValueError(f"{key} is required")
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ValueError(f"{key} must be an integer")


# =============================================================================
# Response Helpers
# =============================================================================


def create_response(
    success: bool,
    data: Optional[Dict] = None,
    error: Optional[str] = None,
    message: Optional[str] = None,
    status_code: int = 200,
) -> Tuple[Dict[str, Any], int]:
    """Create a standardized API response."""
    response = {
        "success": success,
        "timestamp": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
    }

    if data:
        response["data"] = data
    if error:
        response["error"] = error
    if message:
        response["message"] = message

    return response, status_code


# =============================================================================
# HTTP Endpoint Handlers
# =============================================================================


@functions_framework.http
def main(request: Request) -> Tuple[Dict[str, Any], int]:
    """
    Main entry point for Cloud Function.

    Routes requests based on path:
    - POST /events: Register an event
    - GET /stats: Group rollout stats
    - GET /last-error: Latest error code of an instance
    - GET /health: Health check
    - GET /: API info
    """
    path = request.path.rstrip("/")

    routes = {
        "": handle_info,
        "/": handle_info,
        "/events": handle_event,
        "/stats": handle_stats,
        "/last-error": handle_last_error,
        "/health": handle_health,
    }

    handler = routes.get(path)
    if not handler:
        return create_response(
            success=False,
            error="Not Found",
            message=f"Unknown endpoint: {path}",
            status_code=404,
        )

    try:
        return handler(request)
    except ValueError as e:
        logger.error(f"Validation error: {e}")
        return create_response(
            success=False,
            error="Validation Error",
            message=str(e),
            status_code=400,
        )
    except Exception as e:
        logger.exception(f"Internal error: {e}")
        return create_response(
            success=False,
            error="Internal Server Error",
            message="An unexpected error occurred. Check Cloud Function logs for details.",
            status_code=500,
        )


def handle_info(request: Request) -> Tuple[Dict[str, Any], int]:
    """Handle API info request."""
    return create_response(
        success=True,
        data={
            "service": "Fleet Rollout Coordinator",
            "version": os.environ.get("APP_VERSION", "1.0.0"),
            "endpoints": {
                "POST /events": "Register an instance update event",
                "GET /stats": "Rollout stats of a group",
                "GET /last-error": "Latest error code reported by an instance",
                "GET /health": "Health check",
            },
        },
    )


@validate_request
def handle_event(request: Request) -> Tuple[Dict[str, Any], int]:
    """
    Handle event registration.

    Request body:
    {
        "instance_id": "...",
        "app_id": "...",
        "group_id": "...",      // group id or track name
        "event_type": 3,
        "event_result": 2,
        "previous_version": "3033.2.0",  // optional
        "error_code": ""                 // optional
    }
    """
    if request.method != "POST":
        return create_response(
            success=False,
            error="Method Not Allowed",
            message="Use POST to register events",
            status_code=405,
        )

    body = request.get_json(silent=True) or {}
    instance_id = require_identifier(body, "instance_id")
    app_id = require_identifier(body, "app_id")
    group_id = require_identifier(body, "group_id")
    event_type = require_int(body, "event_type")
    event_result = require_int(body, "event_result")
    previous_version = sanitize_input(body.get("previous_version"), max_length=64)
    error_code = sanitize_input(body.get("error_code"), max_length=64)

    try:
        event = get_registrar().register_event(
            instance_id,
            app_id,
            group_id,
            event_type,
            event_result,
            previous_version=previous_version,
            error_code=error_code,
        )
    except EventError as e:
        # Ignored and stale events are acknowledged; instances only see accept/reject.
        return create_response(
            success=e.http_status == 200,
            data={"outcome": e.outcome},
            error=None if e.http_status == 200 else type(e).__name__,
            message=str(e),
            status_code=e.http_status,
        )

    return create_response(
        success=True,
        data={"outcome": "recorded", "event_id": event.id},
    )


def handle_stats(request: Request) -> Tuple[Dict[str, Any], int]:
    """Handle group rollout stats request (?group_id=...)."""
    group_id = require_identifier(request.args, "group_id")
    try:
        stats = get_registrar().group_stats(group_id)
    except NotFoundError:
        return create_response(
            success=False,
            error="Not Found",
            message=f"Unknown group: {group_id}",
            status_code=404,
        )
    return create_response(success=True, data={"group_id": group_id, "stats": stats})


def handle_last_error(request: Request) -> Tuple[Dict[str, Any], int]:
    """Handle latest error code request (?instance_id=&app_id=&at=)."""
    instance_id = require_identifier(request.args, "instance_id")
    app_id = require_identifier(request.args, "app_id")
    at_raw = request.args.get("at")
    if at_raw:
        at = datetime.fromisoformat(at_raw.replace("Z", "+00:00"))
        if at.tzinfo is None:
            at = at.replace(tzinfo=timezone.utc)
    else:
        at = datetime.now(timezone.utc)

    error_code = get_registrar().get_event_error_code(instance_id, app_id, at)
    return create_response(
        success=True,
        data={"instance_id": instance_id, "app_id": app_id, "error_code": error_code},
    )


def handle_health(request: Request) -> Tuple[Dict[str, Any], int]:
    """Handle health check request."""
    try:
        registrar = get_registrar()
        return create_response(
            success=True,
            data={"status": "healthy", "store": type(registrar.store).__name__},
        )
    except Exception as e:
        return create_response(
            success=False,
            error="Unhealthy",
            message=str(e),
            status_code=503,
        )

"""
REST client for a remote rollout store service.
"""

import logging
import time
from datetime import datetime
from typing import Callable, Dict, List, Optional, Tuple

import google.auth
from google.auth.transport.requests import AuthorizedSession

from errors import NotFoundError, StoreError
from models import (
    ActivityKind,
    ActivitySeverity,
    Event,
    Group,
    Instance,
    InstanceApplication,
    UpdateStatus,
)
from store import RolloutStore

logger = logging.getLogger(__name__)


def _parse_ts(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


def _binding_from_dict(data: Dict) -> InstanceApplication:
    return InstanceApplication(
        instance_id=data["instance_id"],
        application_id=data["application_id"],
        group_id=data["group_id"],
        version=data.get("version") or "",
        status=UpdateStatus(data.get("status") or UpdateStatus.UNDEFINED.value),
        update_in_progress=bool(data.get("update_in_progress", False)),
        last_update_version=data.get("last_update_version"),
        last_check_for_updates=_parse_ts(data.get("last_check_for_updates")),
        last_update_granted_ts=_parse_ts(data.get("last_update_granted_ts")),
    )


def _instance_from_dict(data: Dict) -> Instance:
    return Instance(
        id=data["id"],
        ip=data.get("ip", ""),
        alias=data.get("alias", ""),
        application=_binding_from_dict(data["application"]),
    )


def _group_from_dict(data: Dict) -> Group:
    return Group(
        id=data["id"],
        name=data.get("name", ""),
        application_id=data["application_id"],
        target_version=data.get("target_version"),
        track=data.get("track", ""),
        rollout_in_progress=bool(data.get("rollout_in_progress", False)),
        policy_updates_enabled=bool(data.get("policy_updates_enabled", True)),
    )


def _decode(what: str, decoder: Callable, data):
    """Run decoder over a response body, raising StoreError if it is malformed."""
    try:
        return decoder(data)
    except (KeyError, TypeError, ValueError) as e:
        raise StoreError(f"Malformed {what} response: {e!r}") from e


class RolloutRestClient(RolloutStore):
    """RolloutStore backed by the rollout store REST API."""

    RETRYABLE_STATUS_CODES = {409, 429, 500, 502, 503, 504}

    def __init__(
        self,
        base_url: str,
        timeout_s: int = 60,
        max_retries: int = 5,
        base_delay: float = 1.0,
    ):
        """
        Initialize the rollout store REST client.

        Args:
            base_url: Root URL of the store API
            timeout_s: Request timeout in seconds
            max_retries: Maximum number of retries for transient errors
            base_delay: Base delay for exponential backoff
        """
        self.base_url = base_url.rstrip("/")
        self.timeout_s = timeout_s
        self.max_retries = max_retries
        self.base_delay = base_delay

        creds, _ = google.auth.default(
            scopes=["https://www.googleapis.com/auth/cloud-platform"]
        )
        self.session = AuthorizedSession(creds)

    def _url(self, path: str) -> str:
        """Construct full API URL from path."""
        return f"{self.base_url}/{path.lstrip('/')}"

    def _request_with_retry(
        self, method: str, url: str, idempotent: bool = True, **kwargs
    ):
        """
        Execute HTTP request with exponential backoff retry for transient errors.

        Non-idempotent requests are only retried on 429, which the server
        returns before processing the request. A transport error or 5xx after
        such a request was sent leaves its outcome unknown, so it is not resent.

        Args:
            method: HTTP method (GET, POST, PUT, PATCH)
            url: Request URL
            idempotent: Whether the request may be resent after it was sent
            **kwargs: Additional request parameters

        Returns:
            The final response object

        Raises:
            StoreError: If max retries exceeded or a non-idempotent request failed
        """
        retryable = self.RETRYABLE_STATUS_CODES if idempotent else {429}
        last_error = None

        for attempt in range(self.max_retries + 1):
            try:
                resp = self.session.request(
                    method.upper(), url, timeout=self.timeout_s, **kwargs
                )
            except Exception as e:
                if not idempotent:
                    raise StoreError(
                        f"{method.upper()} {url} failed, not retried: {e}"
                    ) from e
                delay = self._calculate_delay(attempt)
                logger.warning(
                    f"Request error: {e}, attempt {attempt + 1}/{self.max_retries + 1}, waiting {delay:.1f}s..."
                )
                last_error = str(e)
                time.sleep(delay)
                continue

            if resp.status_code in retryable:
                delay = self._calculate_delay(attempt, resp)
                error_info = ""
                try:
                    error_info = resp.json().get("error", {}).get("message", "")
                except (ValueError, AttributeError):
                    pass
                logger.warning(
                    f"Retryable error {resp.status_code} ({error_info}), attempt {attempt + 1}/{self.max_retries + 1}, waiting {delay:.1f}s..."
                )
                last_error = f"HTTP {resp.status_code}: {error_info or resp.text[:200]}"
                time.sleep(delay)
                continue

            return resp

        raise StoreError(f"Max retries exceeded. Last error: {last_error}")

    def _calculate_delay(self, attempt: int, resp=None) -> float:
        """
        Calculate delay with exponential backoff and jitter.

        Args:
            attempt: Current attempt number
            resp: Optional response object (to check Retry-After header)

        Returns:
            Delay in seconds
        """
        if resp is not None and "Retry-After" in resp.headers:
            try:
                return float(resp.headers["Retry-After"])
            except ValueError:
                pass

        delay = self.base_delay * (2**attempt)
        jitter = delay * 0.2 * (0.5 - time.time() % 1)
        return min(delay + jitter, 60.0)

    def _call(
        self, method: str, path: str, expected=(200,), idempotent: bool = True, **kwargs
    ) -> Dict:
        """Perform a request and decode the JSON body, mapping 404 to NotFoundError."""
        resp = self._request_with_retry(
            method, self._url(path), idempotent=idempotent, **kwargs
        )
        if resp.status_code == 404:
            raise NotFoundError(f"{method} {path} not found: {resp.text[:200]}")
        if resp.status_code not in expected:
            raise StoreError(
                f"{method} {path} failed ({resp.status_code}): {resp.text[:200]}"
            )
        if resp.status_code == 204 or not resp.content:
            return {}
        try:
            data = resp.json()
        except ValueError as e:
            raise StoreError(f"{method} {path} returned invalid JSON: {e}") from e
        if not isinstance(data, dict):
            raise StoreError(f"{method} {path} returned a non-object body")
        return data

    def get_instance(self, instance_id: str, app_id: str) -> Instance:
        data = self._call("GET", f"apps/{app_id}/instances/{instance_id}")
        return _decode("instance", _instance_from_dict, data)

    def get_group(self, group_id: str) -> Group:
        data = self._call("GET", f"groups/{group_id}")
        return _decode("group", _group_from_dict, data)

    def resolve_application_and_group(
        self, app_id: str, group_id: str
    ) -> Tuple[str, str]:
        data = self._call("GET", f"apps/{app_id}/groups/{group_id}:resolve")
        return _decode(
            "group resolution",
            lambda d: (d["application_id"], d["group_id"]),
            data,
        )

    def list_group_instances(self, group_id: str) -> List[InstanceApplication]:
        """
        List the bindings of all instances in a group.

        Follows nextPageToken until the listing is exhausted.
        """
        bindings: List[InstanceApplication] = []
        page_token: Optional[str] = None

        while True:
            params = {}
            if page_token:
                params["pageToken"] = page_token

            data = self._call("GET", f"groups/{group_id}/instances", params=params)
            for item in data.get("instances") or []:
                bindings.append(_decode("instance binding", _binding_from_dict, item))

            page_token = data.get("nextPageToken")
            if not page_token:
                break

        return bindings

    def update_instance_status(
        self, instance_id: str, app_id: str, status: UpdateStatus
    ) -> None:
        self._call(
            "PUT",
            f"apps/{app_id}/instances/{instance_id}/status",
            expected=(200, 204),
            json={"status": status.value},
        )

    def lookup_event_type_id(self, event_type: int, event_result: int) -> int:
        data = self._call(
            "GET", "event-types", params={"type": event_type, "result": event_result}
        )
        return _decode("event type", lambda d: int(d["id"]), data)

    def record_event(
        self,
        event_type_id: int,
        instance_id: str,
        app_id: str,
        previous_version: str,
        error_code: str,
    ) -> Event:
        """
        Append an event. Sent at most once.

        Any 200/201 reply means the event is stored, so an unreadable reply
        body only loses the returned id and timestamp.
        """
        resp = self._request_with_retry(
            "POST",
            self._url("events"),
            idempotent=False,
            json={
                "event_type_id": event_type_id,
                "instance_id": instance_id,
                "application_id": app_id,
                "previous_version": previous_version,
                "error_code": error_code,
            },
        )
        if resp.status_code == 404:
            raise NotFoundError(f"POST events not found: {resp.text[:200]}")
        if resp.status_code not in (200, 201):
            raise StoreError(f"POST events failed ({resp.status_code}): {resp.text[:200]}")

        event_id, created_ts = None, None
        try:
            data = resp.json() if resp.content else {}
            event_id = data.get("id")
            created_ts = _parse_ts(data.get("created_ts"))
        except (AttributeError, TypeError, ValueError) as e:
            logger.warning(f"Unreadable reply for event of instance {instance_id}: {e}")

        return Event(
            id=event_id,
            event_type_id=event_type_id,
            instance_id=instance_id,
            application_id=app_id,
            previous_version=previous_version,
            error_code=error_code,
            created_ts=created_ts,
        )

    def set_group_rollout_in_progress(self, group_id: str, in_progress: bool) -> None:
        self._call(
            "PATCH",
            f"groups/{group_id}",
            expected=(200, 204),
            json={"rollout_in_progress": in_progress},
        )

    def disable_updates(self, group_id: str) -> None:
        self._call(
            "PATCH",
            f"groups/{group_id}",
            expected=(200, 204),
            json={"policy_updates_enabled": False},
        )

    def append_group_activity(
        self,
        kind: ActivityKind,
        severity: ActivitySeverity,
        version: str,
        app_id: str,
        group_id: str,
    ) -> None:
        self._post_activity(kind, severity, version, app_id, group_id, None)

    def append_instance_activity(
        self,
        kind: ActivityKind,
        severity: ActivitySeverity,
        version: str,
        app_id: str,
        group_id: str,
        instance_id: str,
    ) -> None:
        self._post_activity(kind, severity, version, app_id, group_id, instance_id)

    def _post_activity(
        self,
        kind: ActivityKind,
        severity: ActivitySeverity,
        version: str,
        app_id: str,
        group_id: str,
        instance_id: Optional[str],
    ) -> None:
        body = {
            "class": kind.value,
            "severity": severity.value,
            "version": version,
            "application_id": app_id,
            "group_id": group_id,
        }
        if instance_id:
            body["instance_id"] = instance_id
        self._call("POST", "activity", expected=(200, 201, 204), json=body)

    def get_latest_error_code(
        self, instance_id: str, app_id: str, at_or_before: datetime
    ) -> Optional[str]:
        try:
            data = self._call(
                "GET",
                f"apps/{app_id}/instances/{instance_id}/events:latest",
                params={"at_or_before": at_or_before.isoformat()},
            )
        except NotFoundError:
            return None
        return data.get("error_code")

"""
Remote telematics API client.

Fetches sparse vehicle state for one linked account and refreshes its
credentials. Every call emits a service boundary wide event. Transient
failures are not retried here: the next scheduled poll cycle is the retry.
"""

import logging
from datetime import timedelta
from typing import Any, Dict, Optional

import requests
from config import Config
from exceptions import AuthenticationError, RateLimitedError, RemoteAPIError
from utils.timezone import utc_now
from utils.wide_events import WideEvent

logger = logging.getLogger(__name__)


def _parse_retry_after(value: Optional[str]) -> Optional[float]:
    """Retry-After in seconds; HTTP-date values are ignored."""
    if not value:
        return None
    try:
        return max(float(value), 0.0)
    except ValueError:
        return None


class TelematicsClient:
    """
    Client bound to a single telematics account.

    The account object only needs ``id``, ``access_token`` and
    ``refresh_token`` attributes. ``refresh_auth`` updates the tokens on it
    in place; committing them is the caller's job.
    """

    service = "telematics"

    def __init__(self, account, base_url: Optional[str] = None, timeout: Optional[int] = None,
                 session: Optional[requests.Session] = None):
        self.account = account
        self.base_url = (base_url or Config.TELEMATICS_API_URL).rstrip("/")
        self.timeout = timeout or Config.TELEMATICS_API_TIMEOUT
        self.session = session or requests.Session()

    def _headers(self) -> Dict[str, str]:
        headers = {"Accept": "application/json"}
        if self.account.access_token:
            headers["Authorization"] = f"Bearer {self.account.access_token}"
        return headers

    def _request(self, method: str, path: str, event: WideEvent, **kwargs) -> Dict[str, Any]:
        """
        Perform one request and translate failures into tracker exceptions.

        Raises:
            RateLimitedError: HTTP 429
            AuthenticationError: HTTP 401
            RemoteAPIError: any other transport, HTTP or API-level failure
        """
        url = f"{self.base_url}{path}"
        event.add_context(url=url, method=method, timeout_seconds=self.timeout)

        try:
            with event.timer("request"):
                response = self.session.request(method, url, timeout=self.timeout, **kwargs)
        except requests.exceptions.Timeout as e:
            raise RemoteAPIError(f"Request timed out after {self.timeout}s", service=self.service) from e
        except requests.exceptions.ConnectionError as e:
            raise RemoteAPIError(f"Connection error: {e}", service=self.service) from e

        event.add_technical_metric("status_code", response.status_code)

        if response.status_code == 429:
            raise RateLimitedError(retry_after=_parse_retry_after(response.headers.get("Retry-After")))

        try:
            body = response.json()
        except ValueError:
            body = None

        if response.status_code >= 400:
            message = self._error_message(body) or response.text or response.reason or "Request failed"
            if response.status_code == 401:
                raise AuthenticationError(message, account_id=self.account.id)
            raise RemoteAPIError(message, service=self.service, status_code=response.status_code)

        if not isinstance(body, dict):
            raise RemoteAPIError("Invalid JSON response", service=self.service, status_code=response.status_code)

        # API-level errors arrive with HTTP 200
        if body.get("errors"):
            raise RemoteAPIError(self._error_message(body), service=self.service, status_code=response.status_code)

        return body

    @staticmethod
    def _error_message(body: Any) -> Optional[str]:
        """Flatten the remote error payload into one string, codes included."""
        if not isinstance(body, dict):
            return None

        errors = body.get("errors")
        if isinstance(errors, list) and errors:
            parts = []
            for error in errors:
                if not isinstance(error, dict):
                    parts.append(str(error))
                    continue
                code = (error.get("extensions") or {}).get("code")
                text = error.get("message", "")
                parts.append(f"{code}: {text}" if code else text)
            return "; ".join(parts)

        return body.get("message") or body.get("error")

    def fetch_state(self, remote_vehicle_id: str) -> Dict[str, Any]:
        """
        Fetch the current state of one vehicle.

        Args:
            remote_vehicle_id: Vehicle id on the remote API

        Returns:
            Mapping of remote field names to ``{"value", "timeStamp"}`` objects.
            Fields the vehicle did not report are absent.
        """
        event = WideEvent("external_api_fetch_state", trace_id=f"account-{self.account.id}")
        event.add_context(service=self.service, account_id=self.account.id, remote_vehicle_id=remote_vehicle_id)

        try:
            body = self._request("GET", f"/vehicles/{remote_vehicle_id}/state", event, headers=self._headers())
        except RemoteAPIError as e:
            logger.warning(f"Fetch state failed for vehicle {remote_vehicle_id}: {e}")
            event.add_error(e)
            event.emit(level="warning", force=True)
            raise

        state = body.get("vehicleState", body)
        event.add_business_metric("fields_reported", len(state))
        event.mark_success()
        event.emit()
        return state

    def refresh_auth(self) -> bool:
        """
        Exchange the refresh token for a new access token.

        Returns:
            True if new tokens were obtained, False otherwise
        """
        event = WideEvent("external_api_refresh_auth", trace_id=f"account-{self.account.id}")
        event.add_context(service=self.service, account_id=self.account.id)

        if not self.account.refresh_token:
            error = AuthenticationError("No refresh token available", account_id=self.account.id)
            logger.warning(str(error))
            event.add_error(error)
            event.emit(level="warning", force=True)
            return False

        try:
            body = self._request(
                "POST",
                "/auth/refresh",
                event,
                json={"refreshToken": self.account.refresh_token},
                headers={"Accept": "application/json"},
            )
        except RemoteAPIError as e:
            logger.warning(f"Token refresh failed for account {self.account.id}: {e}")
            event.add_error(e)
            event.emit(level="warning", force=True)
            return False

        access_token = body.get("accessToken")
        if not access_token:
            event.mark_failure("Refresh response did not include an access token")
            event.emit(level="warning", force=True)
            return False

        self.account.access_token = access_token
        self.account.refresh_token = body.get("refreshToken") or self.account.refresh_token
        expires_in = body.get("expiresIn")
        if expires_in:
            self.account.token_expires_at = utc_now() + timedelta(seconds=int(expires_in))

        logger.info(f"Refreshed access token for account {self.account.id}")
        event.add_business_metric("auth_refreshed", True)
        event.mark_success()
        event.emit()
        return True

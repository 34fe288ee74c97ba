"""
Cloudflare Workers REST API client.

Only the handful of endpoints the cleanup needs are covered:

- GET    /accounts/{account_id}/workers/scripts          -> worker inventory
- GET    /accounts/{account_id}/workers/scripts/{name}   -> existence check
- DELETE /accounts/{account_id}/workers/scripts/{name}   -> delete one worker

Networking uses a shared `requests.Session` with retries for transient 5xx
errors on GET and DELETE. HTTP 429 is not retried here: it surfaces as
`RateLimited` so the caller can apply its own, much longer, backoff.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, cast
from urllib.parse import quote

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from .errors import ConfigError, RateLimited, UpstreamApiError
from .selector import WorkerScript

logger = logging.getLogger(__name__)


class CloudflareApi:
    """
    Thin wrapper around the Cloudflare v4 API for one account.

    Args:
        api_token: API token with Workers Scripts read/edit permissions.
        account_id: Cloudflare account id.
        session: Optional pre-configured session (tests inject a fake one).

    Raises:
        ConfigError: If the token or the account id is empty.
    """

    _DEFAULT_API_BASE: str = "https://api.cloudflare.com/client/v4"
    _DEFAULT_TIMEOUT_S: float = 30.0

    def __init__(
        self,
        api_token: str,
        account_id: str,
        *,
        session: Optional[requests.Session] = None,
    ) -> None:
        if not api_token or not account_id:
            raise ConfigError("API token and account ID are required")

        self.account_id: str = account_id
        self.base: str = self._DEFAULT_API_BASE
        self._timeout_s: float = self._DEFAULT_TIMEOUT_S

        if session is None:
            session = requests.Session()
            retry = Retry(
                total=5,
                connect=5,
                read=5,
                backoff_factor=0.5,
                status_forcelist=(500, 502, 503, 504),
                allowed_methods=frozenset({"GET", "DELETE"}),
                respect_retry_after_header=True,
                raise_on_status=False,
            )
            session.mount("https://", HTTPAdapter(max_retries=retry))

        self.session: requests.Session = session
        self.session.headers.update(
            {
                "Authorization": f"Bearer {api_token}",
                "Accept": "application/json",
                "Content-Type": "application/json",
                "User-Agent": "wrangler-preview",
            }
        )

    def _scripts_url(self, worker_name: Optional[str] = None) -> str:
        url = f"{self.base}/accounts/{self.account_id}/workers/scripts"
        if worker_name is not None:
            url = f"{url}/{quote(worker_name, safe='')}"
        return url

    @staticmethod
    def _payload(resp: requests.Response) -> Dict[str, Any]:
        try:
            payload = resp.json()
        except ValueError:
            return {}
        return payload if isinstance(payload, dict) else {}

    @staticmethod
    def _first_error(payload: Dict[str, Any]) -> Optional[str]:
        errors = payload.get("errors")
        if isinstance(errors, list) and errors:
            first = errors[0]
            if isinstance(first, dict) and isinstance(first.get("message"), str):
                return first["message"]
        return None

    def _request(self, method: str, url: str) -> Dict[str, Any]:
        """
        Perform a request and return the decoded envelope of a successful call.

        Cloudflare wraps every answer in ``{"success": bool, "errors": [...],
        "result": ...}``. Both a non-2xx status and ``success: false`` are
        failures; the first upstream error message is used when present.

        Raises:
            RateLimited: For HTTP 429.
            UpstreamApiError: For any other failure.
        """
        logger.debug("Making %s request to %s", method, url)
        resp = self.session.request(method, url, timeout=self._timeout_s)
        payload = self._payload(resp)

        if not resp.ok:
            msg = self._first_error(payload) or f"{resp.status_code} {resp.reason}"
            if resp.status_code == 429:
                raise RateLimited(f"Rate limited (429): {msg}", status_code=429)
            raise UpstreamApiError(msg, status_code=resp.status_code)

        if payload.get("success") is not True:
            msg = self._first_error(payload) or "Cloudflare API returned error"
            raise UpstreamApiError(msg, status_code=resp.status_code)

        return payload

    def list_workers(self) -> List[WorkerScript]:
        """
        Fetch the account's worker inventory.

        Returns:
            One `WorkerScript` (name + creation time) per deployed worker.
        """
        payload = self._request("GET", self._scripts_url())
        items = payload.get("result") or []
        return [WorkerScript.from_api(item) for item in cast(List[Any], items) if isinstance(item, dict)]

    def worker_exists(self, worker_name: str) -> bool:
        """
        Check that a single worker exists.

        Any non-2xx answer, including auth or server errors, counts as
        "does not exist" rather than an error.
        """
        resp = self.session.request("GET", self._scripts_url(worker_name), timeout=self._timeout_s)
        if not resp.ok:
            logger.debug("worker %s existence check returned %d", worker_name, resp.status_code)
            return False
        # script content endpoints may answer with a non-JSON body
        payload = self._payload(resp)
        return payload.get("success", True) is not False

    def delete_worker(self, worker_name: str) -> None:
        """
        Delete one worker.

        Raises:
            RateLimited: If Cloudflare throttles the call.
            UpstreamApiError: With the upstream error message, or the HTTP
                status text when the body has none.
        """
        self._request("DELETE", self._scripts_url(worker_name))
        logger.debug("Deleted worker %s", worker_name)

# flowmend/conformance/transport.py
"""
HTTP transports to a live n8n instance.

Both transports retry transient failures (429 / 502 / 503 / 504 and
connection-level errors) with exponential backoff. This retry layer is
independent of the repair loop's attempts.
"""
from __future__ import annotations

import time
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional

import httpx

from flowmend.errors import ConformanceTransportError
from flowmend.model.results import TestResult
from flowmend.utils.logger import get_logger

log = get_logger("transport")

RETRY_STATUS = frozenset({429, 502, 503, 504})

# Fields the n8n public API accepts on workflow create.
API_BODY_KEYS = ("name", "nodes", "connections", "settings", "staticData")


class _RetryingClient:
    def __init__(
        self,
        client: Optional[httpx.Client] = None,
        timeout: float = 30.0,
        retries: int = 2,
        backoff: float = 0.5,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.client = client or httpx.Client(timeout=timeout)
        self.timeout = timeout
        self.retries = max(0, retries)
        self.backoff = backoff
        self.sleep = sleep

    def request(self, method: str, url: str, **kwargs) -> httpx.Response:
        delay = self.backoff
        last_exc: Optional[Exception] = None
        for attempt in range(self.retries + 1):
            try:
                resp = self.client.request(method, url, timeout=self.timeout, **kwargs)
            except httpx.TransportError as e:
                last_exc = e
                log.warning("%s %s failed (%s), try %d/%d", method, url, e, attempt + 1, self.retries + 1)
            else:
                if resp.status_code not in RETRY_STATUS:
                    return resp
                last_exc = None
                log.warning("%s %s -> %d, try %d/%d", method, url, resp.status_code, attempt + 1, self.retries + 1)
                if attempt == self.retries:
                    raise ConformanceTransportError(
                        f"{method} {url} failed: {resp.status_code}",
                        status_code=resp.status_code,
                        body=resp.text,
                    )
            if attempt < self.retries:
                self.sleep(delay)
                delay *= 2
        raise ConformanceTransportError(f"{method} {url} failed: {last_exc}") from last_exc

    def close(self) -> None:
        self.client.close()


def _error_text(resp: httpx.Response) -> str:
    try:
        body = resp.json()
    except ValueError:
        return resp.text.strip() or f"HTTP {resp.status_code}"
    if isinstance(body, dict):
        for key in ("message", "error", "hint"):
            if isinstance(body.get(key), str) and body[key]:
                return body[key]
    return resp.text.strip() or f"HTTP {resp.status_code}"


class ApiTransport:
    """Create-then-delete round trip against the n8n public API."""

    name = "api"

    def __init__(self, base_url: str, api_key: str, client: Optional[httpx.Client] = None,
                 timeout: float = 30.0, retries: int = 2, backoff: float = 0.5,
                 sleep: Callable[[float], None] = time.sleep):
        self.base_url = base_url.rstrip("/")
        self.headers = {"X-N8N-API-KEY": api_key, "Content-Type": "application/json"}
        self.http = _RetryingClient(client, timeout=timeout, retries=retries, backoff=backoff, sleep=sleep)

    @staticmethod
    def body_for(workflow: Dict[str, Any]) -> Dict[str, Any]:
        body = {k: workflow[k] for k in API_BODY_KEYS if k in workflow}
        body["name"] = f"Test_{datetime.now(timezone.utc).strftime('%Y%m%d%H%M%S%f')}"
        body.setdefault("settings", {})
        return body

    def submit(self, workflow: Dict[str, Any]) -> TestResult:
        url = f"{self.base_url}/api/v1/workflows"
        resp = self.http.request("POST", url, json=self.body_for(workflow), headers=self.headers)
        if resp.status_code >= 400:
            return TestResult(success=False, error=_error_text(resp), details={"status": resp.status_code})

        try:
            created = resp.json()
        except ValueError:
            created = {}
        data = created.get("data", created) if isinstance(created, dict) else {}
        wf_id = data.get("id") if isinstance(data, dict) else None
        if wf_id is None:
            log.warning("probe workflow created but no id returned; cleanup skipped")
        else:
            log.info("conformance probe created workflow %s", wf_id)
            self._delete(wf_id)
        return TestResult(success=True, details={"id": wf_id})

    def _delete(self, wf_id: Any) -> None:
        """Best-effort cleanup; failures are logged, never raised."""
        url = f"{self.base_url}/api/v1/workflows/{wf_id}"
        try:
            resp = self.http.request("DELETE", url, headers=self.headers)
        except ConformanceTransportError as e:
            log.warning("could not delete probe workflow %s: %s", wf_id, e)
            return
        if resp.status_code >= 400:
            log.warning("could not delete probe workflow %s: HTTP %d", wf_id, resp.status_code)
        else:
            log.info("deleted probe workflow %s", wf_id)


class WebhookTransport:
    """Single POST of {workflow} to a validation webhook returning {valid, error, details}."""

    name = "webhook"

    def __init__(self, url: str, client: Optional[httpx.Client] = None, timeout: float = 30.0,
                 retries: int = 2, backoff: float = 0.5, sleep: Callable[[float], None] = time.sleep):
        self.url = url
        self.http = _RetryingClient(client, timeout=timeout, retries=retries, backoff=backoff, sleep=sleep)

    def submit(self, workflow: Dict[str, Any]) -> TestResult:
        resp = self.http.request("POST", self.url, json={"workflow": workflow})
        if resp.status_code >= 400:
            return TestResult(success=False, error=_error_text(resp), details={"status": resp.status_code})
        try:
            body = resp.json()
        except ValueError:
            return TestResult(success=False, error=f"Webhook returned non-JSON response: {resp.text[:200]}")
        if not isinstance(body, dict):
            return TestResult(success=False, error="Webhook returned an unexpected payload")
        if body.get("valid"):
            return TestResult(success=True, details=body.get("details"))
        return TestResult(success=False, error=str(body.get("error") or "Workflow rejected"),
                          details=body.get("details"))

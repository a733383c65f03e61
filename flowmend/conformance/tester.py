# flowmend/conformance/tester.py
from typing import Any, Optional, Protocol

import httpx

from flowmend.config import Settings
from flowmend.conformance.transport import ApiTransport, WebhookTransport
from flowmend.model.results import TestResult
from flowmend.utils.logger import get_logger

log = get_logger("tester")

SKIPPED_NOTE = "No n8n API or webhook configured; conformance testing skipped"


class Transport(Protocol):
    name: str

    def submit(self, workflow: Any) -> TestResult:
        ...


class ConformanceTester:
    """
    test(document) -> TestResult against whichever transport is configured.

    With no transport the tester runs in explicit "untested" mode: every
    document passes with skipped=True. Transport failures after retries
    propagate as ConformanceTransportError.
    """

    def __init__(self, transport: Optional[Transport] = None):
        self.transport = transport

    @classmethod
    def from_settings(cls, settings: Settings, client: Optional[httpx.Client] = None) -> "ConformanceTester":
        common = dict(client=client, timeout=settings.http_timeout, retries=settings.http_retries,
                      backoff=settings.http_backoff)
        if settings.api_configured:
            return cls(ApiTransport(settings.n8n_api_url, settings.n8n_api_key, **common))
        if settings.webhook_configured:
            return cls(WebhookTransport(settings.n8n_webhook_url, **common))
        return cls(None)

    @property
    def untested(self) -> bool:
        return self.transport is None

    def test(self, workflow: Any) -> TestResult:
        if self.transport is None:
            log.debug(SKIPPED_NOTE)
            return TestResult(success=True, skipped=True, note=SKIPPED_NOTE)
        result = self.transport.submit(workflow)
        log.info("conformance test via %s: %s", self.transport.name, "ok" if result.success else result.error)
        return result

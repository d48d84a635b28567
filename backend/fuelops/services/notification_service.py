# Overview: Discrepancy alert delivery (log always, webhook optionally).

from __future__ import annotations

import logging
from typing import Any

import httpx

logger = logging.getLogger(__name__)

SEVERITY_LOG_LEVELS = {
    "WARNING": logging.WARNING,
    "CRITICAL": logging.ERROR,
}


class Notifier:
    """Receives WARNING/CRITICAL discrepancy alerts."""

    def notify(self, severity: str, message: str, context: dict[str, Any]) -> bool:
        raise NotImplementedError


class LoggingNotifier(Notifier):
    def notify(self, severity: str, message: str, context: dict[str, Any]) -> bool:
        logger.log(SEVERITY_LOG_LEVELS.get(severity, logging.INFO), "[%s] %s %s", severity, message, context)
        return True


class WebhookNotifier(Notifier):
    """
    POSTs alerts as JSON to an HTTP endpoint.

    Called after the transaction commits with a short timeout; delivery
    failures are logged and reported as False, never raised.
    """

    def __init__(self, url: str, *, timeout: float = 2.0, client: httpx.Client | None = None):
        self.url = url
        self.timeout = timeout
        self._client = client
        self._log = LoggingNotifier()

    def notify(self, severity: str, message: str, context: dict[str, Any]) -> bool:
        self._log.notify(severity, message, context)
        body = {"severity": severity, "message": message, "context": context}
        try:
            if self._client is not None:
                response = self._client.post(self.url, json=body, timeout=self.timeout)
            else:
                response = httpx.post(self.url, json=body, timeout=self.timeout)
            response.raise_for_status()
        except httpx.HTTPError as exc:
            logger.warning("Alert webhook delivery failed (%s): %s", type(exc).__name__, exc)
            return False
        return True


def build_notifier(config) -> Notifier:
    url = config.get("NOTIFY_WEBHOOK_URL")
    if url:
        return WebhookNotifier(url, timeout=float(config.get("NOTIFY_TIMEOUT_SECONDS", 2.0)))
    return LoggingNotifier()

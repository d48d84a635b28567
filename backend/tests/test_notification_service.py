"""
Alert delivery tests. The webhook is exercised through httpx.MockTransport.
"""

import json

import httpx

from fuelops.services.notification_service import LoggingNotifier, WebhookNotifier, build_notifier


def test_webhook_posts_alert_as_json():
    seen = []

    def handler(request):
        seen.append(json.loads(request.content))
        return httpx.Response(204)

    client = httpx.Client(transport=httpx.MockTransport(handler))
    notifier = WebhookNotifier("https://alerts.example/hook", client=client)

    assert notifier.notify("CRITICAL", "Shift 3 cash count", {"shift_id": 3}) is True
    assert seen == [{"severity": "CRITICAL", "message": "Shift 3 cash count", "context": {"shift_id": 3}}]


def test_webhook_failure_is_reported_not_raised():
    client = httpx.Client(transport=httpx.MockTransport(lambda request: httpx.Response(503)))
    notifier = WebhookNotifier("https://alerts.example/hook", client=client)

    assert notifier.notify("WARNING", "Handover 8", {}) is False


def test_unreachable_webhook_is_reported_not_raised():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    client = httpx.Client(transport=httpx.MockTransport(handler))
    assert WebhookNotifier("https://alerts.example/hook", client=client).notify("WARNING", "x", {}) is False


def test_build_notifier_picks_webhook_only_when_configured():
    assert isinstance(build_notifier({}), LoggingNotifier)
    notifier = build_notifier({"NOTIFY_WEBHOOK_URL": "https://alerts.example/hook", "NOTIFY_TIMEOUT_SECONDS": "5"})
    assert isinstance(notifier, WebhookNotifier)
    assert notifier.timeout == 5.0

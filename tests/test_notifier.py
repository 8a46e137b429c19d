"""Tests for lead status notifications."""

from datetime import datetime

import requests

from lead_queue_engine.notifications import LeadStatusChanged, StatusNotifier
from lead_queue_engine.storage.models import LeadStatus


def make_event():
    return LeadStatusChanged(
        lead_id="lead-1",
        new_status=LeadStatus.RESERVED,
        agent_id="alice",
        previous_status=LeadStatus.PENDING,
        occurred_at=datetime(2026, 3, 2, 9, 0),
    )


class TestSubscribers:
    """Tests for in-process subscribers."""

    def test_publish_reaches_subscribers(self):
        notifier = StatusNotifier(webhook_url="")
        received = []
        notifier.subscribe(received.append)

        notifier.publish(make_event())
        assert [e.lead_id for e in received] == ["lead-1"]

    def test_unsubscribe(self):
        notifier = StatusNotifier(webhook_url="")
        received = []
        unsubscribe = notifier.subscribe(received.append)
        unsubscribe()

        notifier.publish(make_event())
        assert received == []

    def test_failing_subscriber_does_not_block_others(self):
        notifier = StatusNotifier(webhook_url="")
        received = []

        def broken(event):
            raise RuntimeError("push channel down")

        notifier.subscribe(broken)
        notifier.subscribe(received.append)

        notifier.publish(make_event())
        assert len(received) == 1

    def test_event_payload(self):
        payload = make_event().to_dict()
        assert payload == {
            "lead_id": "lead-1",
            "new_status": "RESERVED",
            "agent_id": "alice",
            "previous_status": "PENDING",
            "occurred_at": "2026-03-02T09:00:00",
        }


class TestWebhook:
    """Tests for webhook delivery."""

    def test_posts_json(self, monkeypatch):
        calls = []

        def fake_post(url, json=None, timeout=None):
            calls.append((url, json, timeout))

        monkeypatch.setattr(requests, "post", fake_post)
        notifier = StatusNotifier(webhook_url="https://hooks.example.com/leads", timeout=2)
        notifier.publish(make_event())

        url, body, timeout = calls[0]
        assert url == "https://hooks.example.com/leads"
        assert timeout == 2
        assert body["event_type"] == "lead_status_changed"
        assert body["event_data"]["lead_id"] == "lead-1"

    def test_webhook_failure_is_swallowed(self, monkeypatch):
        def fake_post(url, json=None, timeout=None):
            raise requests.ConnectionError("refused")

        monkeypatch.setattr(requests, "post", fake_post)
        notifier = StatusNotifier(webhook_url="https://hooks.example.com/leads")
        notifier.publish(make_event())

    def test_url_from_environment(self, monkeypatch):
        monkeypatch.setenv("LQE_WEBHOOK_URL", "https://hooks.example.com/env")
        assert StatusNotifier().webhook_url == "https://hooks.example.com/env"

    def test_no_url_no_request(self, monkeypatch):
        calls = []
        monkeypatch.setattr(requests, "post", lambda *a, **kw: calls.append(a))
        StatusNotifier(webhook_url="").publish(make_event())
        assert calls == []

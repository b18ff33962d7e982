from types import SimpleNamespace

import pytest
import requests

import notifications


@pytest.fixture(autouse=True)
def restore_sinks():
    yield
    notifications.reset_sinks()


def _bin():
    return SimpleNamespace(id=3, qr_code="QR003", location="Galle Face Green", fill_level=97, status="FULL")


def test_failing_sink_does_not_propagate():
    received = []

    def broken(*args):
        raise RuntimeError("SMTP down")

    notifications.reset_sinks([broken, lambda *args: received.append(args[0])])
    notifications.notify_bin_alert(_bin())

    assert received == ["BIN_ALERT"]


def test_bin_alert_message():
    received = []
    notifications.reset_sinks([lambda kind, recipient, message, payload: received.append(message)])
    notifications.notify_bin_alert(_bin())
    assert received == ["Bin Alert: QR003 at Galle Face Green is 97% full and requires immediate attention!"]


def test_webhook_sink_posts_json(monkeypatch):
    posted = []

    class Response:
        def raise_for_status(self):
            pass

    def fake_post(url, json, timeout):
        posted.append((url, json, timeout))
        return Response()

    monkeypatch.setattr(notifications.requests, "post", fake_post)
    notifications.configure("http://hooks.example/bins")
    notifications.notify_region_assignment(SimpleNamespace(id=7, name="kamal"), "Colombo North")

    assert len(posted) == 1
    url, body, timeout = posted[0]
    assert url == "http://hooks.example/bins"
    assert body["kind"] == "REGION_ASSIGNMENT"
    assert body["recipient"] == "kamal"
    assert body["payload"] == {"collector_id": 7, "region": "Colombo North"}


def test_webhook_errors_are_swallowed(monkeypatch):
    def fake_post(*args, **kwargs):
        raise requests.exceptions.ConnectionError("refused")

    monkeypatch.setattr(notifications.requests, "post", fake_post)
    notifications.configure("http://hooks.example/bins")
    notifications.notify_bin_alert(_bin())

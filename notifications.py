"""
Fire-and-forget notifications.

Callers notify only after their own commit. Every sink failure is logged
here and never reaches the caller.
"""
import logging

import requests

logger = logging.getLogger(__name__)

BIN_ALERT = "BIN_ALERT"
ROUTE_ASSIGNMENT = "ROUTE_ASSIGNMENT"
REGION_ASSIGNMENT = "REGION_ASSIGNMENT"

_sinks = []


def log_sink(kind, recipient, message, payload):
    logger.info("Notification [%s] to %s: %s", kind, recipient, message)


class WebhookSink:
    """Posts each notification as JSON to an HTTP endpoint."""

    def __init__(self, url, timeout=5):
        self.url = url
        self.timeout = timeout

    def __call__(self, kind, recipient, message, payload):
        response = requests.post(
            self.url,
            json={"kind": kind, "recipient": recipient, "message": message, "payload": payload},
            timeout=self.timeout,
        )
        response.raise_for_status()


def register_sink(sink):
    _sinks.append(sink)


def reset_sinks(sinks=None):
    _sinks[:] = list(sinks) if sinks is not None else [log_sink]


def configure(webhook_url=None):
    reset_sinks()
    if webhook_url:
        register_sink(WebhookSink(webhook_url))


def _dispatch(kind, recipient, message, payload):
    for sink in list(_sinks):
        try:
            sink(kind, recipient, message, payload)
        except Exception:
            logger.exception("Notification sink %r failed for %s to %s", sink, kind, recipient)


def notify_bin_alert(bin_obj):
    message = (
        f"Bin Alert: {bin_obj.qr_code} at {bin_obj.location} is "
        f"{bin_obj.fill_level}% full and requires immediate attention!"
    )
    _dispatch(BIN_ALERT, "authorities", message, {
        "bin_id": bin_obj.id,
        "qr_code": bin_obj.qr_code,
        "fill_level": bin_obj.fill_level,
        "status": bin_obj.status,
    })


def notify_route_assigned(collector, route):
    message = (
        f"New route assigned! Route ID: {route.id}, Bins: {len(route.route_bins)}, "
        f"Estimated Duration: {route.estimated_duration_minutes} minutes"
    )
    _dispatch(ROUTE_ASSIGNMENT, collector.name, message, {
        "route_id": route.id,
        "collector_id": collector.id,
    })


def notify_region_assignment(collector, region):
    message = f"You have been assigned to {region} region. Please check your dashboard for updates."
    _dispatch(REGION_ASSIGNMENT, collector.name, message, {
        "collector_id": collector.id,
        "region": region,
    })


reset_sinks()

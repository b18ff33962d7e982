"""
Fleet Simulator
===============
Emulates the sensor feed: every tick nudges each bin's fill level and
re-derives its status with the sensor-era thresholds (60/90, alert at 95,
overdue after 48h), which are not the registry's 50/90 set.
"""
import logging
import random
import threading
from datetime import timedelta

from sqlalchemy.orm.exc import StaleDataError

import notifications
from models import Bin, BinStatus, BinType, db, utcnow
from settings import (
    OVERDUE_THRESHOLD_HOURS,
    SIM_ALERT_THRESHOLD,
    SIM_FULL_THRESHOLD,
    SIM_PARTIAL_THRESHOLD,
    SIMULATOR_INTERVAL_SECONDS,
)

logger = logging.getLogger(__name__)

SAMPLE_BINS = [
    # (qr_code, location, lat, lon, bin_type, fill_level)
    ("QR001", "Colombo Fort Station", 6.9344, 79.8428, BinType.STANDARD, 85),
    ("QR002", "Pettah Market", 6.9369, 79.8581, BinType.STANDARD, 65),
    ("QR003", "Galle Face Green", 6.9271, 79.8612, BinType.RECYCLING, 25),
    ("QR004", "Liberty Plaza", 6.9105, 79.8547, BinType.STANDARD, 90),
    ("QR005", "Bambalapitiya Junction", 6.8881, 79.8603, BinType.STANDARD, 45),
    ("QR006", "Maradana Railway", 6.9297, 79.8656, BinType.BULK, 95),
    ("QR007", "Slave Island", 6.9250, 79.8500, BinType.STANDARD, 70),
    ("QR008", "Wellawatte Beach", 6.8700, 79.8600, BinType.RECYCLING, 55),
    ("QR009", "Dehiwala Zoo", 6.8500, 79.8700, BinType.STANDARD, 15),
    ("QR010", "Mount Lavinia", 6.8380, 79.8630, BinType.STANDARD, 88),
    ("QR013", "Borella Junction", 6.9150, 79.8800, BinType.STANDARD, 85),
    ("QR015", "Nugegoda", 6.8650, 79.8900, BinType.BULK, 96),
    ("QR018", "Negombo Beach", 7.2083, 79.8358, BinType.STANDARD, 90),
    ("QR021", "Katunayake Airport", 7.1807, 79.8841, BinType.BULK, 94),
    ("QR023", "Kandy City Center", 7.2906, 80.6337, BinType.STANDARD, 85),
    ("QR024", "Temple of Tooth", 7.2944, 80.6414, BinType.RECYCLING, 5),
    ("QR027", "Kandy Market", 7.2950, 80.6350, BinType.BULK, 97),
    ("QR028", "Galle Fort", 6.0535, 80.2210, BinType.STANDARD, 88),
    ("QR029", "Galle Market", 6.0556, 80.2181, BinType.RECYCLING, 15),
    ("QR031", "Galle Bus Stand", 6.0560, 80.2200, BinType.STANDARD, 91),
]


def perturb_fill(current, rng):
    if current < 20:
        # nearly empty bins fill up slowly
        change = rng.randint(1, 6)
    elif current > 80:
        change = rng.randint(-2, 2)
    else:
        change = rng.randint(-5, 5)
    return max(0, min(100, current + change))


def simulated_status(fill_level, last_emptied, now):
    """Return ``(status, alert_flag)`` for a simulated reading."""
    if fill_level >= SIM_FULL_THRESHOLD:
        hours_since_emptied = 0
        if last_emptied is not None:
            hours_since_emptied = int((now - last_emptied).total_seconds() // 3600)
        if hours_since_emptied > OVERDUE_THRESHOLD_HOURS:
            return BinStatus.OVERDUE, True
        return BinStatus.FULL, fill_level >= SIM_ALERT_THRESHOLD
    elif fill_level >= SIM_PARTIAL_THRESHOLD:
        return BinStatus.PARTIAL, False
    return BinStatus.EMPTY, False


def tick(rng=None, now=None):
    """
    Apply one simulated reading to every bin. Returns the number of bins
    updated; bins changed by another writer during the tick are skipped.
    """
    rng = rng or random.Random()
    now = now or utcnow()
    updated = 0
    newly_alerted = []

    for bin_id in [row.id for row in Bin.query.with_entities(Bin.id).order_by(Bin.id)]:
        bin_obj = db.session.get(Bin, bin_id)
        if bin_obj is None:
            continue
        was_alerted = bin_obj.alert_flag
        bin_obj.fill_level = perturb_fill(bin_obj.fill_level, rng)
        bin_obj.status, bin_obj.alert_flag = simulated_status(bin_obj.fill_level, bin_obj.last_emptied, now)
        try:
            db.session.commit()
        except StaleDataError:
            db.session.rollback()
            logger.warning("Bin %s changed during simulator tick, skipping", bin_id)
            continue
        updated += 1
        if bin_obj.alert_flag and not was_alerted:
            newly_alerted.append(bin_obj)

    for bin_obj in newly_alerted:
        notifications.notify_bin_alert(bin_obj)
    logger.info("Simulator updated %d bin(s) at %s", updated, now.isoformat())
    return updated


def seed_sample_bins(rng=None, now=None):
    """Populate an empty registry with the sample fleet. Returns the number of bins created."""
    if Bin.query.first() is not None:
        return 0
    rng = rng or random.Random()
    now = now or utcnow()
    for qr_code, location, lat, lon, bin_type, fill_level in SAMPLE_BINS:
        last_emptied = now - timedelta(hours=rng.randint(1, 48))
        status, alert = simulated_status(fill_level, last_emptied, now)
        db.session.add(Bin(
            qr_code=qr_code,
            location=location,
            latitude=lat,
            longitude=lon,
            bin_type=bin_type,
            fill_level=fill_level,
            status=status,
            last_emptied=last_emptied,
            alert_flag=alert,
        ))
    db.session.commit()
    logger.info("Created %d sample bins", len(SAMPLE_BINS))
    return len(SAMPLE_BINS)


class FleetSimulator:
    """Runs :func:`tick` every ``interval_seconds`` on a daemon thread."""

    def __init__(self, app, interval_seconds=SIMULATOR_INTERVAL_SECONDS, rng=None):
        self.app = app
        self.interval_seconds = interval_seconds
        self.rng = rng or random.Random()
        self._stop = threading.Event()
        self._thread = None

    def run_once(self):
        with self.app.app_context():
            try:
                if seed_sample_bins(self.rng):
                    return 0
                return tick(self.rng)
            finally:
                db.session.remove()

    def _loop(self):
        while not self._stop.wait(self.interval_seconds):
            try:
                self.run_once()
            except Exception:
                logger.exception("Simulator tick failed")

    def start(self):
        if self._thread is not None and self._thread.is_alive():
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._loop, name="fleet-simulator", daemon=True)
        self._thread.start()
        logger.info("Fleet simulator started, interval %ss", self.interval_seconds)

    def stop(self, timeout=None):
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None

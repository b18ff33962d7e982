"""
Bin Registry
============
Owns bin records and the fill/status state machine:

  fill < 50        -> EMPTY
  50 <= fill < 90  -> PARTIAL
  fill >= 90       -> FULL
  FULL and not emptied for 48h -> OVERDUE (overdue sweep only)

Fill levels are stored as given, without clamping.
"""
import logging
import math
from datetime import timedelta

from sqlalchemy.exc import IntegrityError

import notifications
from errors import DuplicateQrCode, NotFound, ValidationError
from models import Bin, BinHistory, BinStatus, BinType, db, utcnow
from settings import FULL_THRESHOLD, KM_PER_DEGREE_LAT, OVERDUE_THRESHOLD_HOURS, PARTIAL_THRESHOLD

logger = logging.getLogger(__name__)


# --- Logic ---
def calculate_status(fill_level):
    if fill_level >= FULL_THRESHOLD:
        return BinStatus.FULL
    elif fill_level >= PARTIAL_THRESHOLD:
        return BinStatus.PARTIAL
    return BinStatus.EMPTY


def log_event(bin_id, event_type, description, actor_name=None):
    db.session.add(BinHistory(
        bin_id=bin_id,
        event_type=event_type,
        description=description,
        actor_name=actor_name,
    ))


def is_overdue(bin_obj, now=None, threshold_hours=OVERDUE_THRESHOLD_HOURS):
    if bin_obj.status != BinStatus.FULL or bin_obj.last_emptied is None:
        return False
    return (now or utcnow()) - bin_obj.last_emptied > timedelta(hours=threshold_hours)


# --- Reads ---
def get_bin(bin_id):
    bin_obj = db.session.get(Bin, bin_id)
    if bin_obj is None:
        raise NotFound.for_id("Bin", bin_id)
    return bin_obj


def load_for_update(bin_id):
    """Fetch a bin for read-modify-write, row-locked where the database allows it."""
    bin_obj = db.session.get(Bin, bin_id, with_for_update=True)
    if bin_obj is None:
        raise NotFound.for_id("Bin", bin_id)
    return bin_obj


def get_by_qr_code(qr_code):
    bin_obj = Bin.query.filter_by(qr_code=qr_code).first()
    if bin_obj is None:
        raise NotFound(f"Bin not found with QR code: {qr_code}")
    return bin_obj


def list_bins(status=None, bin_type=None):
    query = Bin.query
    if status:
        query = query.filter_by(status=status)
    if bin_type:
        query = query.filter_by(bin_type=bin_type)
    return query.order_by(Bin.fill_level.desc(), Bin.id).all()


def list_alerted():
    return Bin.query.filter_by(alert_flag=True).order_by(Bin.id).all()


def list_overdue(now=None, threshold_hours=OVERDUE_THRESHOLD_HOURS):
    cutoff = (now or utcnow()) - timedelta(hours=threshold_hours)
    return Bin.overdue_candidates(cutoff)


def history(bin_id):
    get_bin(bin_id)
    return BinHistory.query.filter_by(bin_id=bin_id).order_by(
        BinHistory.timestamp.desc(), BinHistory.id.desc()
    ).all()


def find_nearby(lat, lon, radius_km):
    """
    Bounding-box approximation of a radius search. Bins near the box
    corners can be up to ~1.41 * radius_km away.
    """
    lat_range = radius_km / KM_PER_DEGREE_LAT
    lon_range = radius_km / (KM_PER_DEGREE_LAT * math.cos(math.radians(lat)))
    return Bin.in_area(lat - lat_range, lat + lat_range, lon - lon_range, lon + lon_range)


# --- Writes ---
def register(qr_code, location, lat, lon, bin_type=BinType.STANDARD):
    if not qr_code:
        raise ValidationError("QR code is required")
    if lat is None or lon is None:
        raise ValidationError("Bin coordinates are required")
    if bin_type not in BinType.ALL:
        raise ValidationError(f"Unknown bin type: {bin_type}")
    if Bin.query.filter_by(qr_code=qr_code).first():
        raise DuplicateQrCode(qr_code)

    bin_obj = Bin(
        qr_code=qr_code,
        location=location,
        latitude=float(lat),
        longitude=float(lon),
        bin_type=bin_type,
        fill_level=0,
        status=BinStatus.EMPTY,
        alert_flag=False,
    )
    db.session.add(bin_obj)
    try:
        db.session.flush()
        log_event(bin_obj.id, "System", "Bin initialized")
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        raise DuplicateQrCode(qr_code)
    logger.info("Registered %s bin %s at %s", bin_type, qr_code, location)
    return bin_obj


def apply_fill_level(bin_obj, level):
    """Set fill and re-derive status in the current unit of work. Never raises the alert."""
    previous = bin_obj.status
    bin_obj.fill_level = level
    bin_obj.status = calculate_status(level)
    if bin_obj.status != BinStatus.FULL:
        bin_obj.alert_flag = False
    if previous not in (BinStatus.FULL, BinStatus.OVERDUE) and bin_obj.status == BinStatus.FULL:
        log_event(bin_obj.id, "Full", f"Fill level reached {level}%")
    return bin_obj


def set_fill_level(bin_id, level):
    if level is None:
        raise ValidationError("Fill level is required")
    bin_obj = load_for_update(bin_id)
    apply_fill_level(bin_obj, int(level))
    db.session.commit()
    logger.info("Bin %s fill level %s%% -> %s", bin_obj.qr_code, level, bin_obj.status)
    return bin_obj


def set_status(bin_id, status, fill_level=None, actor_name=None, now=None):
    """Authority override of a bin's status."""
    if status not in BinStatus.ALL:
        raise ValidationError(f"Unknown bin status: {status}")
    bin_obj = load_for_update(bin_id)
    bin_obj.status = status
    if fill_level is not None:
        bin_obj.fill_level = int(fill_level)
    if status == BinStatus.EMPTY:
        bin_obj.last_emptied = now or utcnow()
    if status in (BinStatus.EMPTY, BinStatus.PARTIAL):
        bin_obj.alert_flag = False
    log_event(bin_obj.id, "Override", f"Status set to {status}", actor_name)
    db.session.commit()
    logger.info("Bin %s status overridden to %s", bin_obj.qr_code, status)
    return bin_obj


def mark_overdue_sweep(threshold_hours=OVERDUE_THRESHOLD_HOURS, now=None):
    """
    Move FULL bins not emptied within ``threshold_hours`` to OVERDUE and
    raise their alert. Bins already OVERDUE are not FULL, so a second run
    finds nothing to do.
    """
    now = now or utcnow()
    overdue = Bin.overdue_candidates(now - timedelta(hours=threshold_hours))
    for bin_obj in overdue:
        bin_obj.status = BinStatus.OVERDUE
        bin_obj.alert_flag = True
        log_event(bin_obj.id, "Overdue Alert", f"Not emptied for over {threshold_hours}h")
    db.session.commit()

    if overdue:
        logger.info("Overdue sweep flagged %d bin(s)", len(overdue))
    for bin_obj in overdue:
        notifications.notify_bin_alert(bin_obj)
    return overdue

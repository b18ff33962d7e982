"""
Resident disposal reports.

A resident scans a bin and reports how full it is. Storage failures are
retried a few times with linearly growing pauses; bad input is not.
"""
import logging
import re
import time

from sqlalchemy.exc import SQLAlchemyError

import bin_registry
import notifications
from actors import get_actor
from errors import DisposalFailed, ValidationError
from models import Bin, DisposalStatus, Role, WasteDisposal, db
from settings import DISPOSAL_ALERT_THRESHOLD, DISPOSAL_BACKOFF_SECONDS, DISPOSAL_MAX_RETRIES

logger = logging.getLogger(__name__)

QR_CODE_PATTERN = re.compile(r"(BIN\d{3,4}|QR\d{3,4})")


def validate_qr_code(qr_code):
    return bool(qr_code) and QR_CODE_PATTERN.fullmatch(qr_code) is not None


def _submit_once(resident, qr_code, fill_level, notes):
    bin_obj = bin_registry.get_by_qr_code(qr_code)
    disposal = WasteDisposal(
        resident_id=resident.id,
        bin_id=bin_obj.id,
        qr_code=qr_code,
        reported_fill_level=fill_level,
        notes=notes,
        status=DisposalStatus.SUBMITTED,
    )
    db.session.add(disposal)
    db.session.flush()
    bin_registry.apply_fill_level(bin_registry.load_for_update(bin_obj.id), fill_level)
    disposal.status = DisposalStatus.CONFIRMED
    db.session.commit()
    return disposal


def _record_failure(resident, qr_code, fill_level, error):
    bin_obj = Bin.query.filter_by(qr_code=qr_code).first()
    disposal = WasteDisposal(
        resident_id=resident.id,
        bin_id=bin_obj.id if bin_obj else None,
        qr_code=qr_code,
        reported_fill_level=fill_level,
        notes=f"FAILED: {error}",
        status=DisposalStatus.FAILED,
    )
    db.session.add(disposal)
    db.session.commit()
    return disposal


def submit_disposal(resident_id, qr_code, fill_level, notes=None,
                    max_retries=DISPOSAL_MAX_RETRIES, backoff_seconds=DISPOSAL_BACKOFF_SECONDS,
                    sleep=time.sleep):
    if not validate_qr_code(qr_code):
        raise ValidationError(f"Invalid bin QR code: {qr_code}")
    if fill_level is None:
        raise ValidationError("Fill level is required")
    fill_level = int(fill_level)
    resident = get_actor(resident_id, Role.RESIDENT)

    last_error = None
    for attempt in range(1, max_retries + 1):
        try:
            disposal = _submit_once(resident, qr_code, fill_level, notes)
            break
        except SQLAlchemyError as e:
            db.session.rollback()
            last_error = e
            logger.error("Error submitting disposal for %s (attempt %d): %s", qr_code, attempt, e)
            if attempt < max_retries:
                sleep(backoff_seconds * attempt)
    else:
        try:
            failed_id = _record_failure(resident, qr_code, fill_level, last_error).id
        except SQLAlchemyError as e:
            db.session.rollback()
            failed_id = None
            logger.error("Could not record failed disposal for %s: %s", qr_code, e)
        raise DisposalFailed(
            f"Disposal for {qr_code} failed after {max_retries} attempts", disposal_id=failed_id
        )

    logger.info("Disposal %s confirmed: %s reported %s%%", disposal.id, qr_code, fill_level)
    if fill_level >= DISPOSAL_ALERT_THRESHOLD:
        notifications.notify_bin_alert(db.session.get(Bin, disposal.bin_id))
    return disposal

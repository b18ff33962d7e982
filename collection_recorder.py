"""
Collection Recorder
===================
Records pickups against a bin. Completing a collection is the only thing
that empties a bin:

  RECYCLING  -> always back to EMPTY / 0 (the unit is emptied mechanically)
  others     -> fill reduced by the collected waste level, floored at 0;
                last_emptied and the alert are only reset once the bin
                drops below the FULL threshold
"""
import logging

import bin_registry
from actors import get_actor
from errors import InvalidTransition, NotFound, ValidationError
from models import BinStatus, BinType, Collection, CollectionStatus, Role, db, utcnow
from settings import FULL_THRESHOLD

logger = logging.getLogger(__name__)

OPEN_STATUSES = (CollectionStatus.ASSIGNED, CollectionStatus.IN_PROGRESS)


def get_collection(collection_id):
    collection = db.session.get(Collection, collection_id)
    if collection is None:
        raise NotFound.for_id("Collection", collection_id)
    return collection


def list_for_collector(collector_id, status=None):
    query = Collection.query.filter_by(collector_id=collector_id)
    if status:
        query = query.filter_by(status=status)
    return query.order_by(Collection.collection_date.desc(), Collection.id.desc()).all()


def completed_count(collector_id):
    return Collection.query.filter_by(
        collector_id=collector_id, status=CollectionStatus.COMPLETED
    ).count()


def reset_bin(bin_obj, waste_level, now):
    if bin_obj.bin_type == BinType.RECYCLING:
        bin_obj.fill_level = 0
        bin_obj.status = BinStatus.EMPTY
        bin_obj.last_emptied = now
        bin_obj.alert_flag = False
        return bin_obj

    remaining = max(0, (bin_obj.fill_level or 0) - (waste_level or 0))
    bin_obj.fill_level = remaining
    bin_obj.status = bin_registry.calculate_status(remaining)
    if remaining < FULL_THRESHOLD:
        bin_obj.last_emptied = now
        bin_obj.alert_flag = False
    return bin_obj


def new_collection(bin_id, collector_id, waste_type=None, waste_level=None, notes=None, now=None):
    """Build and add an ASSIGNED collection to the session without committing."""
    bin_obj = bin_registry.get_bin(bin_id)
    collector = get_actor(collector_id, Role.COLLECTOR)
    collection = Collection(
        bin_id=bin_obj.id,
        collector_id=collector.id,
        collection_type=bin_obj.bin_type,
        status=CollectionStatus.ASSIGNED,
        waste_type=waste_type,
        waste_level=waste_level,
        collection_date=now or utcnow(),
        notes=notes,
    )
    db.session.add(collection)
    return collection


def finish(collection, notes=None, now=None):
    """Complete ``collection`` and reset its bin in the current unit of work."""
    if collection.status not in OPEN_STATUSES:
        raise InvalidTransition("Collection", collection.id, collection.status, CollectionStatus.COMPLETED)
    now = now or utcnow()
    collection.status = CollectionStatus.COMPLETED
    collection.completion_date = now
    if notes is not None:
        collection.notes = notes

    bin_obj = bin_registry.load_for_update(collection.bin_id)
    reset_bin(bin_obj, collection.waste_level, now)
    bin_registry.log_event(
        bin_obj.id,
        "Collection",
        f"Collected {collection.waste_level or 0}% ({collection.waste_type or 'unspecified'}), now {bin_obj.fill_level}%",
        collection.collector.name if collection.collector else None,
    )
    return collection


def record(bin_id, collector_id, waste_type, waste_level, notes=None, completed=False, now=None):
    if waste_level is None:
        raise ValidationError("Waste level is required")
    collection = new_collection(bin_id, collector_id, waste_type, int(waste_level), notes, now)
    if completed:
        db.session.flush()
        finish(collection, now=now)
    db.session.commit()
    logger.info("Recorded collection %s on bin %s (%s)", collection.id, bin_id, collection.status)
    return collection


def assign(bin_id, collector_id, now=None):
    collection = new_collection(bin_id, collector_id, now=now)
    db.session.commit()
    logger.info("Assigned collection %s on bin %s to collector %s", collection.id, bin_id, collector_id)
    return collection


def start(collection_id):
    collection = get_collection(collection_id)
    if collection.status != CollectionStatus.ASSIGNED:
        raise InvalidTransition("Collection", collection_id, collection.status, CollectionStatus.IN_PROGRESS)
    collection.status = CollectionStatus.IN_PROGRESS
    db.session.commit()
    return collection


def complete(collection_id, notes=None, now=None):
    collection = get_collection(collection_id)
    finish(collection, notes, now)
    db.session.commit()
    logger.info("Completed collection %s, bin %s now %s", collection_id, collection.bin_id, collection.bin.status)
    return collection


def fail(collection_id, notes=None):
    collection = get_collection(collection_id)
    if collection.status not in OPEN_STATUSES:
        raise InvalidTransition("Collection", collection_id, collection.status, CollectionStatus.FAILED)
    collection.status = CollectionStatus.FAILED
    if notes is not None:
        collection.notes = notes
    db.session.commit()
    logger.warning("Collection %s on bin %s failed", collection_id, collection.bin_id)
    return collection

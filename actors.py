"""Residents, collectors and authorities as seen by the core."""
import logging
from datetime import timedelta

from sqlalchemy.exc import IntegrityError

import notifications
from errors import NotFound, ValidationError
from models import Actor, RegionAssignment, Role, db, utcnow
from settings import ACTIVE_COLLECTOR_MINUTES

logger = logging.getLogger(__name__)


def create_actor(name, role, email=None):
    if not name:
        raise ValidationError("Actor name is required")
    if role not in Role.ALL:
        raise ValidationError(f"Unknown role: {role}")
    actor = Actor(name=name, role=role, email=email)
    db.session.add(actor)
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        raise ValidationError(f"Actor named {name} already exists")
    logger.info("Registered %s %s (id=%s)", role.lower(), name, actor.id)
    return actor


def get_actor(actor_id, role=None):
    actor = db.session.get(Actor, actor_id) if actor_id is not None else None
    if actor is None:
        raise NotFound.for_id("Actor", actor_id)
    if role is not None and actor.role != role:
        raise ValidationError(f"Actor {actor_id} is a {actor.role}, expected {role}")
    return actor


def update_location(name, lat, lon, now=None):
    """Stores the latest GPS fix reported by a collector's phone."""
    collector = Actor.query.filter_by(name=name, role=Role.COLLECTOR).first()
    if collector is None:
        raise NotFound(f"Collector not found: {name}")
    collector.lat = lat
    collector.lon = lon
    collector.last_active = now or utcnow()
    db.session.commit()
    return collector


def active_collectors(minutes=ACTIVE_COLLECTOR_MINUTES, now=None):
    cutoff = (now or utcnow()) - timedelta(minutes=minutes)
    return Actor.query.filter(
        Actor.role == Role.COLLECTOR,
        Actor.last_active >= cutoff,
    ).all()


def assign_region(collector_id, region, authority_id):
    if not region:
        raise ValidationError("Region is required")
    collector = get_actor(collector_id, Role.COLLECTOR)
    authority = get_actor(authority_id, Role.AUTHORITY)

    RegionAssignment.query.filter_by(collector_id=collector.id, active=True).update({"active": False})
    assignment = RegionAssignment(collector_id=collector.id, region=region, assigned_by_id=authority.id)
    db.session.add(assignment)
    db.session.commit()

    logger.info("Collector %s assigned to region %s by %s", collector.name, region, authority.name)
    notifications.notify_region_assignment(collector, region)
    return assignment

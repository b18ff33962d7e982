"""
Route Planner
=============
Builds collection routes from an ordered list of bins and tracks their
progress.

Route:     ASSIGNED -> IN_PROGRESS -> COMPLETED
           ASSIGNED | IN_PROGRESS -> CANCELLED
RouteBin:  PENDING | IN_PROGRESS -> COMPLETED | SKIPPED

Stops keep the order produced by the sequencer at creation time. The default
sequencer keeps the caller's order as given.
"""
import logging
import math

import bin_registry
import collection_recorder
import notifications
from actors import get_actor
from errors import InvalidTransition, NotFound, ValidationError
from models import Role, Route, RouteBin, RouteStatus, StopStatus, db, utcnow
from settings import EARTH_RADIUS_KM, MINUTES_PER_STOP

logger = logging.getLogger(__name__)


# --- Sequencing strategies ---
def haversine_km(a, b):
    lat1, lat2 = math.radians(a.latitude), math.radians(b.latitude)
    d_lat = math.radians(b.latitude - a.latitude)
    d_lon = math.radians(b.longitude - a.longitude)
    h = math.sin(d_lat / 2) ** 2 + math.cos(lat1) * math.cos(lat2) * math.sin(d_lon / 2) ** 2
    return EARTH_RADIUS_KM * 2 * math.atan2(math.sqrt(h), math.sqrt(1 - h))


def input_order(bins):
    return list(bins)


def nearest_neighbor(bins):
    """Greedy tour starting at the first bin, always moving to the closest unvisited one."""
    remaining = list(bins)
    if not remaining:
        return []
    ordered = [remaining.pop(0)]
    while remaining:
        current = ordered[-1]
        nearest = min(remaining, key=lambda b: haversine_km(current, b))
        remaining.remove(nearest)
        ordered.append(nearest)
    return ordered


SEQUENCERS = {
    "input_order": input_order,
    "nearest_neighbor": nearest_neighbor,
}


def total_distance_km(bins):
    total = sum(haversine_km(a, b) for a, b in zip(bins, bins[1:]))
    return round(total, 2)


# --- Reads ---
def get_route(route_id):
    route = db.session.get(Route, route_id)
    if route is None:
        raise NotFound.for_id("Route", route_id)
    return route


def list_for_collector(collector_id, status=None):
    query = Route.query.filter_by(collector_id=collector_id)
    if status:
        query = query.filter_by(status=status)
    return query.order_by(Route.assigned_date.desc(), Route.id.desc()).all()


def stops(route_id):
    return get_route(route_id).route_bins


def progress(route_id):
    """Fraction of stops completed, 0.0 for a route without stops."""
    route_bins = stops(route_id)
    if not route_bins:
        return 0.0
    done = sum(1 for rb in route_bins if rb.status == StopStatus.COMPLETED)
    return done / len(route_bins)


# --- Dispatch ---
def assign(bin_ids, collector_id, authority_id, route_name=None, sequencer=input_order, notes=None, now=None):
    if not isinstance(bin_ids, (list, tuple)) or not all(
        isinstance(b, int) and not isinstance(b, bool) for b in bin_ids
    ):
        raise ValidationError("bin_ids must be a list of bin ids")
    if not bin_ids:
        raise ValidationError("At least one bin is required to build a route")
    if len(set(bin_ids)) != len(bin_ids):
        raise ValidationError("A route cannot visit the same bin twice")
    collector = get_actor(collector_id, Role.COLLECTOR)
    authority = get_actor(authority_id, Role.AUTHORITY)
    bins = [bin_registry.get_bin(bin_id) for bin_id in bin_ids]

    now = now or utcnow()
    ordered = sequencer(bins)
    route = Route(
        route_name=route_name or f"Route - {now:%Y-%m-%d %H:%M}",
        collector_id=collector.id,
        authority_id=authority.id,
        status=RouteStatus.ASSIGNED,
        assigned_date=now,
        estimated_duration_minutes=MINUTES_PER_STOP * len(bin_ids),
        total_distance_km=total_distance_km(ordered),
        notes=notes,
    )
    for order, bin_obj in enumerate(ordered, 1):
        route.route_bins.append(RouteBin(bin_id=bin_obj.id, sequence_order=order, status=StopStatus.PENDING))

    db.session.add(route)
    try:
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    logger.info(
        "Route %s (%d stops) assigned to %s by %s", route.id, len(ordered), collector.name, authority.name
    )
    notifications.notify_route_assigned(collector, route)
    return route


def _transition(route, allowed, target):
    if route.status not in allowed:
        raise InvalidTransition("Route", route.id, route.status, target)
    route.status = target


def start(route_id, now=None):
    route = get_route(route_id)
    _transition(route, (RouteStatus.ASSIGNED,), RouteStatus.IN_PROGRESS)
    route.started_date = now or utcnow()
    db.session.commit()
    logger.info("Route %s started", route_id)
    return route


def complete(route_id, now=None):
    route = get_route(route_id)
    _transition(route, (RouteStatus.IN_PROGRESS,), RouteStatus.COMPLETED)
    route.completed_date = now or utcnow()
    if route.started_date is not None:
        elapsed = route.completed_date - route.started_date
        route.actual_duration_minutes = int(elapsed.total_seconds() // 60)
    db.session.commit()
    logger.info("Route %s completed in %s minutes", route_id, route.actual_duration_minutes)
    return route


def cancel(route_id):
    route = get_route(route_id)
    _transition(route, (RouteStatus.ASSIGNED, RouteStatus.IN_PROGRESS), RouteStatus.CANCELLED)
    db.session.commit()
    logger.info("Route %s cancelled", route_id)
    return route


def delete(route_id):
    """Remove a route together with its stops. Collections already written stay."""
    route = get_route(route_id)
    db.session.delete(route)
    db.session.commit()
    logger.info("Route %s deleted", route_id)


def visit_stop(route_id, sequence_order, waste_type=None, waste_level=None, notes=None, skip=False, now=None):
    """
    Mark one stop as visited. A collected stop writes a completed collection
    for its bin, which resets the bin; a skipped stop leaves the bin alone.
    Without a waste level the whole current fill is taken as collected.
    """
    route = get_route(route_id)
    if route.status != RouteStatus.IN_PROGRESS:
        raise InvalidTransition("Stop", f"{route_id}#{sequence_order}", f"route {route.status}", StopStatus.COMPLETED)
    stop = next((rb for rb in route.route_bins if rb.sequence_order == sequence_order), None)
    if stop is None:
        raise NotFound(f"Route {route_id} has no stop #{sequence_order}")
    target = StopStatus.SKIPPED if skip else StopStatus.COMPLETED
    if stop.status not in (StopStatus.PENDING, StopStatus.IN_PROGRESS):
        raise InvalidTransition("Stop", f"{route_id}#{sequence_order}", stop.status, target)

    now = now or utcnow()
    try:
        if not skip:
            if waste_level is None:
                waste_level = max(0, stop.bin.fill_level)
            collection = collection_recorder.new_collection(
                stop.bin_id, route.collector_id, waste_type, waste_level, notes, now
            )
            db.session.flush()
            collection_recorder.finish(collection, now=now)
            stop.collection_id = collection.id
        stop.status = target
        stop.visited_date = now
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    logger.info("Route %s stop #%s %s", route_id, sequence_order, target.lower())
    return stop

from datetime import datetime, timezone

from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()


def utcnow():
    """Naive UTC timestamp, the form every DateTime column stores."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _iso(value):
    return value.isoformat() if value else None


class BinType:
    STANDARD = "STANDARD"
    RECYCLING = "RECYCLING"
    BULK = "BULK"
    ALL = (STANDARD, RECYCLING, BULK)


class BinStatus:
    EMPTY = "EMPTY"
    PARTIAL = "PARTIAL"
    FULL = "FULL"
    OVERDUE = "OVERDUE"
    ALL = (EMPTY, PARTIAL, FULL, OVERDUE)


class RouteStatus:
    ASSIGNED = "ASSIGNED"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"


class StopStatus:
    PENDING = "PENDING"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    SKIPPED = "SKIPPED"


class CollectionStatus:
    ASSIGNED = "ASSIGNED"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


class Role:
    RESIDENT = "RESIDENT"
    COLLECTOR = "COLLECTOR"
    AUTHORITY = "AUTHORITY"
    ALL = (RESIDENT, COLLECTOR, AUTHORITY)


class DisposalStatus:
    SUBMITTED = "SUBMITTED"
    CONFIRMED = "CONFIRMED"
    FAILED = "FAILED"


class Bin(db.Model):
    __tablename__ = "bins"

    id = db.Column(db.Integer, primary_key=True)
    qr_code = db.Column(db.String(50), unique=True, nullable=False)
    location = db.Column(db.String(200))
    latitude = db.Column(db.Float, nullable=False)
    longitude = db.Column(db.Float, nullable=False)
    bin_type = db.Column(db.String(20), nullable=False, default=BinType.STANDARD)
    fill_level = db.Column(db.Integer, nullable=False, default=0)
    status = db.Column(db.String(20), nullable=False, default=BinStatus.EMPTY)
    last_emptied = db.Column(db.DateTime, nullable=True)
    alert_flag = db.Column(db.Boolean, nullable=False, default=False)
    created_at = db.Column(db.DateTime, default=utcnow)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow)
    version = db.Column(db.Integer, nullable=False)

    # Concurrent read-modify-write on one bin fails with StaleDataError
    # instead of silently overwriting the other writer.
    __mapper_args__ = {"version_id_col": version}

    collections = db.relationship("Collection", back_populates="bin", lazy=True)

    @classmethod
    def overdue_candidates(cls, cutoff):
        """FULL bins last emptied before ``cutoff``."""
        return cls.query.filter(
            cls.status == BinStatus.FULL,
            cls.last_emptied.isnot(None),
            cls.last_emptied < cutoff,
        ).all()

    @classmethod
    def in_area(cls, min_lat, max_lat, min_lon, max_lon):
        return cls.query.filter(
            cls.latitude.between(min_lat, max_lat),
            cls.longitude.between(min_lon, max_lon),
        ).order_by(cls.id).all()

    def to_dict(self):
        return {
            "id": self.id,
            "qr_code": self.qr_code,
            "location": self.location,
            "lat": self.latitude,
            "lon": self.longitude,
            "bin_type": self.bin_type,
            "fill_level": self.fill_level,
            "status": self.status,
            "last_emptied": _iso(self.last_emptied),
            "alert_flag": self.alert_flag,
        }


class BinHistory(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    bin_id = db.Column(db.Integer, db.ForeignKey("bins.id"), nullable=False)
    event_type = db.Column(db.String(50), nullable=False)
    description = db.Column(db.String(200))
    actor_name = db.Column(db.String(50), nullable=True)
    timestamp = db.Column(db.DateTime, default=utcnow)

    def to_dict(self):
        return {
            "event_type": self.event_type,
            "description": self.description,
            "actor_name": self.actor_name,
            "timestamp": _iso(self.timestamp),
        }


class Actor(db.Model):
    """Resident, collector or authority, referenced by the core by id only."""

    __tablename__ = "actors"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(50), unique=True, nullable=False)
    role = db.Column(db.String(20), nullable=False)
    email = db.Column(db.String(120), nullable=True)
    lat = db.Column(db.Float, nullable=True)
    lon = db.Column(db.Float, nullable=True)
    last_active = db.Column(db.DateTime, default=utcnow)

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "role": self.role,
            "lat": self.lat,
            "lon": self.lon,
            "last_active": _iso(self.last_active),
        }


class RegionAssignment(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    collector_id = db.Column(db.Integer, db.ForeignKey("actors.id"), nullable=False)
    region = db.Column(db.String(100), nullable=False)
    assigned_by_id = db.Column(db.Integer, db.ForeignKey("actors.id"), nullable=False)
    assigned_at = db.Column(db.DateTime, default=utcnow)
    active = db.Column(db.Boolean, nullable=False, default=True)

    def to_dict(self):
        return {
            "id": self.id,
            "collector_id": self.collector_id,
            "region": self.region,
            "assigned_by_id": self.assigned_by_id,
            "assigned_at": _iso(self.assigned_at),
            "active": self.active,
        }


class Route(db.Model):
    __tablename__ = "routes"

    id = db.Column(db.Integer, primary_key=True)
    route_name = db.Column(db.String(120), nullable=False)
    collector_id = db.Column(db.Integer, db.ForeignKey("actors.id"), nullable=False)
    authority_id = db.Column(db.Integer, db.ForeignKey("actors.id"), nullable=False)
    status = db.Column(db.String(20), nullable=False, default=RouteStatus.ASSIGNED)
    assigned_date = db.Column(db.DateTime, nullable=False, default=utcnow)
    started_date = db.Column(db.DateTime, nullable=True)
    completed_date = db.Column(db.DateTime, nullable=True)
    estimated_duration_minutes = db.Column(db.Integer)
    actual_duration_minutes = db.Column(db.Integer, nullable=True)
    total_distance_km = db.Column(db.Float, nullable=True)
    notes = db.Column(db.String(500))

    collector = db.relationship("Actor", foreign_keys=[collector_id])
    authority = db.relationship("Actor", foreign_keys=[authority_id])
    route_bins = db.relationship(
        "RouteBin",
        back_populates="route",
        cascade="all, delete-orphan",
        order_by="RouteBin.sequence_order",
    )

    @property
    def completion_percentage(self):
        if not self.route_bins:
            return 0
        completed = sum(1 for rb in self.route_bins if rb.status == StopStatus.COMPLETED)
        return completed * 100 // len(self.route_bins)

    def to_dict(self, include_stops=False):
        data = {
            "id": self.id,
            "route_name": self.route_name,
            "collector_id": self.collector_id,
            "authority_id": self.authority_id,
            "status": self.status,
            "assigned_date": _iso(self.assigned_date),
            "started_date": _iso(self.started_date),
            "completed_date": _iso(self.completed_date),
            "estimated_duration_minutes": self.estimated_duration_minutes,
            "actual_duration_minutes": self.actual_duration_minutes,
            "total_distance_km": self.total_distance_km,
            "completion_percentage": self.completion_percentage,
        }
        if include_stops:
            data["stops"] = [rb.to_dict() for rb in self.route_bins]
        return data


class RouteBin(db.Model):
    __tablename__ = "route_bins"
    __table_args__ = (db.UniqueConstraint("route_id", "sequence_order"),)

    id = db.Column(db.Integer, primary_key=True)
    route_id = db.Column(db.Integer, db.ForeignKey("routes.id"), nullable=False)
    bin_id = db.Column(db.Integer, db.ForeignKey("bins.id"), nullable=False)
    sequence_order = db.Column(db.Integer, nullable=False)
    status = db.Column(db.String(20), nullable=False, default=StopStatus.PENDING)
    visited_date = db.Column(db.DateTime, nullable=True)
    collection_id = db.Column(db.Integer, db.ForeignKey("collections.id"), nullable=True)

    route = db.relationship("Route", back_populates="route_bins")
    bin = db.relationship("Bin")

    def to_dict(self):
        return {
            "id": self.id,
            "bin_id": self.bin_id,
            "qr_code": self.bin.qr_code if self.bin else None,
            "sequence_order": self.sequence_order,
            "status": self.status,
            "visited_date": _iso(self.visited_date),
            "collection_id": self.collection_id,
        }


class Collection(db.Model):
    __tablename__ = "collections"

    id = db.Column(db.Integer, primary_key=True)
    bin_id = db.Column(db.Integer, db.ForeignKey("bins.id"), nullable=False)
    collector_id = db.Column(db.Integer, db.ForeignKey("actors.id"), nullable=False)
    collection_type = db.Column(db.String(20), nullable=False)
    status = db.Column(db.String(20), nullable=False, default=CollectionStatus.ASSIGNED)
    waste_type = db.Column(db.String(50))
    waste_level = db.Column(db.Integer)
    collection_date = db.Column(db.DateTime, nullable=False, default=utcnow)
    completion_date = db.Column(db.DateTime, nullable=True)
    notes = db.Column(db.String(500))

    bin = db.relationship("Bin", back_populates="collections")
    collector = db.relationship("Actor")

    def to_dict(self):
        return {
            "id": self.id,
            "bin_id": self.bin_id,
            "collector_id": self.collector_id,
            "collection_type": self.collection_type,
            "status": self.status,
            "waste_type": self.waste_type,
            "waste_level": self.waste_level,
            "collection_date": _iso(self.collection_date),
            "completion_date": _iso(self.completion_date),
            "notes": self.notes,
        }


class WasteDisposal(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    resident_id = db.Column(db.Integer, db.ForeignKey("actors.id"), nullable=False)
    bin_id = db.Column(db.Integer, db.ForeignKey("bins.id"), nullable=True)
    qr_code = db.Column(db.String(50), nullable=False)
    reported_fill_level = db.Column(db.Integer)
    status = db.Column(db.String(20), nullable=False, default=DisposalStatus.SUBMITTED)
    notes = db.Column(db.String(500))
    created_at = db.Column(db.DateTime, default=utcnow)

    def to_dict(self):
        return {
            "id": self.id,
            "resident_id": self.resident_id,
            "bin_id": self.bin_id,
            "qr_code": self.qr_code,
            "reported_fill_level": self.reported_fill_level,
            "status": self.status,
            "notes": self.notes,
            "created_at": _iso(self.created_at),
        }

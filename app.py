import logging
import os

import click
from flask import Flask, current_app, jsonify, request
from sqlalchemy.orm.exc import StaleDataError

import actors
import bin_registry
import collection_recorder
import disposals
import fleet_simulator
import notifications
import route_planner
from errors import ValidationError, WasteOpsError
from models import Role, db
from settings import Config

logger = logging.getLogger(__name__)


def _payload():
    return request.get_json(silent=True) or {}


def _require(data, *fields):
    missing = [f for f in fields if data.get(f) in (None, "")]
    if missing:
        raise ValidationError(f"Missing required field(s): {', '.join(missing)}")
    return [data[f] for f in fields]


def _as_float(value, name):
    try:
        return float(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{name} must be a number")


def _as_int(value, name):
    try:
        return int(str(value).replace("%", ""))
    except (TypeError, ValueError):
        raise ValidationError(f"{name} must be an integer")


def _as_bool(value, name):
    if isinstance(value, bool):
        return value
    if isinstance(value, str) and value.strip().lower() in ("true", "false", "1", "0"):
        return value.strip().lower() in ("true", "1")
    raise ValidationError(f"{name} must be true or false")


def register_error_handlers(app):
    @app.errorhandler(WasteOpsError)
    def handle_core_error(exc):
        return jsonify(exc.to_dict()), exc.status_code

    @app.errorhandler(StaleDataError)
    def handle_conflict(exc):
        db.session.rollback()
        logger.warning("Concurrent update rejected: %s", exc)
        return jsonify({"error": "Record was modified concurrently, retry the request"}), 409


def register_routes(app):
    # --- Bins ---
    @app.route('/api/bins', methods=['POST'])
    def add_bin():
        data = _payload()
        qr_code, lat, lon = _require(data, 'qr_code', 'lat', 'lon')
        bin_obj = bin_registry.register(
            qr_code,
            data.get('location'),
            _as_float(lat, 'lat'),
            _as_float(lon, 'lon'),
            data.get('bin_type', 'STANDARD'),
        )
        return jsonify(bin_obj.to_dict()), 201

    @app.route('/api/bins')
    def list_bins():
        bins = bin_registry.list_bins(request.args.get('status'), request.args.get('bin_type'))
        return jsonify([b.to_dict() for b in bins])

    @app.route('/api/bins/<int:bin_id>')
    def get_bin(bin_id):
        return jsonify(bin_registry.get_bin(bin_id).to_dict())

    @app.route('/api/bins/<int:bin_id>/fill', methods=['POST'])
    def update_fill(bin_id):
        """Sensor or manual fill reading"""
        (fill_level,) = _require(_payload(), 'fill_level')
        bin_obj = bin_registry.set_fill_level(bin_id, _as_int(fill_level, 'fill_level'))
        return jsonify(bin_obj.to_dict())

    @app.route('/api/bins/<int:bin_id>/status', methods=['POST'])
    def override_status(bin_id):
        data = _payload()
        status, authority_id = _require(data, 'status', 'authority_id')
        authority = actors.get_actor(authority_id, Role.AUTHORITY)
        fill_level = data.get('fill_level')
        bin_obj = bin_registry.set_status(
            bin_id,
            status,
            _as_int(fill_level, 'fill_level') if fill_level is not None else None,
            actor_name=authority.name,
        )
        return jsonify(bin_obj.to_dict())

    @app.route('/api/bins/<int:bin_id>/history')
    def bin_history(bin_id):
        return jsonify([log.to_dict() for log in bin_registry.history(bin_id)])

    @app.route('/api/bins/nearby')
    def nearby_bins():
        lat, lon = _require(request.args, 'lat', 'lon')
        radius_km = _as_float(request.args.get('radius_km', 5.0), 'radius_km')
        bins = bin_registry.find_nearby(_as_float(lat, 'lat'), _as_float(lon, 'lon'), radius_km)
        return jsonify([b.to_dict() for b in bins])

    @app.route('/api/bins/overdue')
    def overdue_bins():
        bins = bin_registry.list_overdue(threshold_hours=current_app.config['OVERDUE_THRESHOLD_HOURS'])
        return jsonify([b.to_dict() for b in bins])

    @app.route('/api/bins/overdue-sweep', methods=['POST'])
    def overdue_sweep():
        flagged = bin_registry.mark_overdue_sweep(current_app.config['OVERDUE_THRESHOLD_HOURS'])
        return jsonify({"flagged": [b.to_dict() for b in flagged]})

    # --- Collections ---
    @app.route('/api/collections', methods=['POST'])
    def record_collection():
        data = _payload()
        bin_id, collector_id, waste_level = _require(data, 'bin_id', 'collector_id', 'waste_level')
        collection = collection_recorder.record(
            bin_id,
            collector_id,
            data.get('waste_type'),
            _as_int(waste_level, 'waste_level'),
            data.get('notes'),
            completed=_as_bool(data.get('completed', False), 'completed'),
        )
        return jsonify(collection.to_dict()), 201

    @app.route('/api/collections/<int:collection_id>/start', methods=['POST'])
    def start_collection(collection_id):
        return jsonify(collection_recorder.start(collection_id).to_dict())

    @app.route('/api/collections/<int:collection_id>/complete', methods=['POST'])
    def complete_collection(collection_id):
        collection = collection_recorder.complete(collection_id, _payload().get('notes'))
        return jsonify({"collection": collection.to_dict(), "bin": collection.bin.to_dict()})

    @app.route('/api/collections/<int:collection_id>/fail', methods=['POST'])
    def fail_collection(collection_id):
        return jsonify(collection_recorder.fail(collection_id, _payload().get('notes')).to_dict())

    # --- Routes ---
    @app.route('/api/routes', methods=['POST'])
    def assign_route():
        data = _payload()
        bin_ids, collector_id, authority_id = _require(data, 'bin_ids', 'collector_id', 'authority_id')
        strategy = data.get('strategy', 'input_order')
        if strategy not in route_planner.SEQUENCERS:
            raise ValidationError(f"Unknown routing strategy: {strategy}")
        route = route_planner.assign(
            bin_ids,
            collector_id,
            authority_id,
            route_name=data.get('route_name'),
            sequencer=route_planner.SEQUENCERS[strategy],
            notes=data.get('notes'),
        )
        return jsonify(route.to_dict(include_stops=True)), 201

    @app.route('/api/routes/<int:route_id>')
    def get_route(route_id):
        return jsonify(route_planner.get_route(route_id).to_dict(include_stops=True))

    @app.route('/api/routes/<int:route_id>', methods=['DELETE'])
    def delete_route(route_id):
        route_planner.delete(route_id)
        return '', 204

    @app.route('/api/routes/<int:route_id>/start', methods=['POST'])
    def start_route(route_id):
        return jsonify(route_planner.start(route_id).to_dict())

    @app.route('/api/routes/<int:route_id>/complete', methods=['POST'])
    def complete_route(route_id):
        return jsonify(route_planner.complete(route_id).to_dict())

    @app.route('/api/routes/<int:route_id>/cancel', methods=['POST'])
    def cancel_route(route_id):
        return jsonify(route_planner.cancel(route_id).to_dict())

    @app.route('/api/routes/<int:route_id>/stops/<int:sequence_order>/visit', methods=['POST'])
    def visit_stop(route_id, sequence_order):
        data = _payload()
        waste_level = data.get('waste_level')
        stop = route_planner.visit_stop(
            route_id,
            sequence_order,
            waste_type=data.get('waste_type'),
            waste_level=_as_int(waste_level, 'waste_level') if waste_level is not None else None,
            notes=data.get('notes'),
            skip=_as_bool(data.get('skip', False), 'skip'),
        )
        return jsonify(stop.to_dict())

    # --- Actors ---
    @app.route('/api/actors', methods=['POST'])
    def create_actor():
        data = _payload()
        name, role = _require(data, 'name', 'role')
        return jsonify(actors.create_actor(name, role, data.get('email')).to_dict()), 201

    @app.route('/api/update_location', methods=['POST'])
    def update_location():
        """Receives GPS from Collector Phone"""
        data = _payload()
        name, lat, lon = _require(data, 'name', 'lat', 'lon')
        actors.update_location(name, _as_float(lat, 'lat'), _as_float(lon, 'lon'))
        return jsonify({"success": True})

    @app.route('/api/get_collectors')
    def get_collectors():
        """Collectors active in the last few minutes, for the admin map"""
        return jsonify([c.to_dict() for c in actors.active_collectors()])

    @app.route('/api/collectors/<int:collector_id>/region', methods=['POST'])
    def assign_region(collector_id):
        region, authority_id = _require(_payload(), 'region', 'authority_id')
        return jsonify(actors.assign_region(collector_id, region, authority_id).to_dict()), 201

    # --- Residents ---
    @app.route('/api/disposals', methods=['POST'])
    def submit_disposal():
        data = _payload()
        resident_id, qr_code, fill_level = _require(data, 'resident_id', 'qr_code', 'fill_level')
        disposal = disposals.submit_disposal(
            resident_id,
            qr_code,
            _as_int(fill_level, 'fill_level'),
            data.get('notes'),
            max_retries=current_app.config['DISPOSAL_MAX_RETRIES'],
            backoff_seconds=current_app.config['DISPOSAL_BACKOFF_SECONDS'],
        )
        return jsonify(disposal.to_dict()), 201


def register_commands(app):
    @app.cli.command("seed-bins")
    def seed_bins():
        """Create the sample bin fleet if the registry is empty."""
        created = fleet_simulator.seed_sample_bins()
        click.echo(f"Created {created} bin(s)")

    @app.cli.command("sweep-overdue")
    @click.option("--hours", type=int, default=None, help="Overdue threshold in hours.")
    def sweep_overdue(hours):
        """Flag FULL bins that have not been emptied in time."""
        threshold = hours if hours is not None else current_app.config['OVERDUE_THRESHOLD_HOURS']
        flagged = bin_registry.mark_overdue_sweep(threshold)
        click.echo(f"Flagged {len(flagged)} overdue bin(s)")

    @app.cli.command("simulate-tick")
    @click.option("--seed", type=int, default=None, help="Seed for reproducible readings.")
    def simulate_tick(seed):
        """Apply one round of simulated sensor readings."""
        import random
        updated = fleet_simulator.tick(random.Random(seed))
        click.echo(f"Updated {updated} bin(s)")


def create_app(config_object=Config):
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(config_object)

    logging.basicConfig(
        level=app.config.get('LOG_LEVEL', 'INFO'),
        format='%(asctime)s - %(levelname)s - %(message)s'
    )
    notifications.configure(app.config.get('NOTIFY_WEBHOOK_URL'))

    db.init_app(app)
    with app.app_context():
        os.makedirs(app.instance_path, exist_ok=True)
        db.create_all()

    register_error_handlers(app)
    register_routes(app)
    register_commands(app)

    if app.config.get('SIMULATOR_ENABLED'):
        simulator = fleet_simulator.FleetSimulator(app, app.config['SIMULATOR_INTERVAL_SECONDS'])
        simulator.start()
        app.extensions['fleet_simulator'] = simulator

    return app


if __name__ == '__main__':
    create_app().run(debug=True)

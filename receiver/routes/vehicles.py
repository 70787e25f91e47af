"""
Vehicle routes for the telematics tracker.

Read endpoints for canonical vehicle state and battery health.
"""

import logging

from database import get_db
from extensions import RateLimits, limiter
from flask import Blueprint, jsonify, request
from models import Vehicle
from services import battery_degradation_service, battery_health_service, vehicle_service
from utils import parse_iso_datetime

logger = logging.getLogger(__name__)

vehicles_bp = Blueprint("vehicles", __name__)


def _get_vehicle(db, vehicle_id):
    return db.query(Vehicle).filter(Vehicle.id == vehicle_id).first()


@vehicles_bp.route("/vehicles/<int:vehicle_id>", methods=["GET"])
@limiter.limit(RateLimits.READ_HEAVY)
def get_vehicle(vehicle_id):
    """Get a vehicle with its cached battery specs."""
    db = get_db()
    vehicle = _get_vehicle(db, vehicle_id)
    if not vehicle:
        return jsonify({"error": "Vehicle not found"}), 404
    return jsonify(vehicle.to_dict())


@vehicles_bp.route("/vehicles/<int:vehicle_id>/state", methods=["GET"])
@limiter.limit(RateLimits.READ_HEAVY)
def get_vehicle_state(vehicle_id):
    """Get the canonical merged state of a vehicle."""
    db = get_db()
    state = vehicle_service.get_current_state(db, vehicle_id)
    if not state:
        return jsonify({"error": "No state recorded for vehicle"}), 404
    return jsonify(state.to_dict())


@vehicles_bp.route("/vehicles/<int:vehicle_id>/battery/snapshots", methods=["GET"])
@limiter.limit(RateLimits.READ_HEAVY)
def get_battery_snapshots(vehicle_id):
    """
    Get battery health snapshots in time order.

    Query params:
        start: ISO date/datetime lower bound (inclusive)
        end: ISO date/datetime upper bound (inclusive)
    """
    db = get_db()
    if not _get_vehicle(db, vehicle_id):
        return jsonify({"error": "Vehicle not found"}), 404

    try:
        start = parse_iso_datetime(request.args.get("start"))
        end = parse_iso_datetime(request.args.get("end"))
    except ValueError:
        return jsonify({"error": "Invalid date format, expected ISO 8601"}), 400

    snapshots = battery_health_service.get_health_snapshots(db, vehicle_id, start=start, end=end)
    return jsonify({"snapshots": [s.to_dict() for s in snapshots], "count": len(snapshots)})


@vehicles_bp.route("/vehicles/<int:vehicle_id>/battery/trend", methods=["GET"])
@limiter.limit(RateLimits.READ_HEAVY)
def get_battery_trend(vehicle_id):
    """Get the degradation trend fitted over all of the vehicle's snapshots."""
    db = get_db()
    trend = battery_degradation_service.get_trend(db, vehicle_id)
    if not trend:
        return jsonify({"error": "No battery health data"}), 404
    return jsonify(trend.to_dict())


@vehicles_bp.route("/vehicles/<int:vehicle_id>/battery/summary", methods=["GET"])
@limiter.limit(RateLimits.READ_HEAVY)
def get_battery_summary(vehicle_id):
    """Get the latest battery health with a status label."""
    db = get_db()
    summary = battery_health_service.get_health_summary(db, vehicle_id)
    if not summary:
        return jsonify({"error": "No battery health data"}), 404
    return jsonify(summary)


@vehicles_bp.route("/vehicles/<int:vehicle_id>/battery/forecast", methods=["GET"])
@limiter.limit(RateLimits.EXPENSIVE)
def get_battery_forecast(vehicle_id):
    """Forecast battery health at upcoming mileage milestones."""
    db = get_db()
    if not _get_vehicle(db, vehicle_id):
        return jsonify({"error": "Vehicle not found"}), 404
    return jsonify(battery_degradation_service.forecast_degradation(db, vehicle_id))

"""
Account routes for the telematics tracker.

Administrative controls over an account's poll job: register on link,
remove on unlink, and on-demand refresh.
"""

import logging

from database import get_db
from extensions import RateLimits, limiter
from flask import Blueprint, jsonify
from models import TelematicsAccount
from services.scheduler import get_poll_scheduler

logger = logging.getLogger(__name__)

accounts_bp = Blueprint("accounts", __name__)


def _schedule_payload(account_id):
    scheduler = get_poll_scheduler()
    schedule = scheduler.get_schedule(account_id)
    if not schedule:
        return {"account_id": account_id, "registered": False}

    next_run = scheduler.next_run_time(account_id)
    payload = schedule.to_dict()
    payload["registered"] = True
    payload["next_run_time"] = next_run.isoformat() if next_run else None
    return payload


@accounts_bp.route("/accounts/<int:account_id>", methods=["GET"])
@limiter.limit(RateLimits.READ_HEAVY)
def get_account(account_id):
    """Get an account's sync status and its vehicles."""
    db = get_db()
    account = db.query(TelematicsAccount).filter(TelematicsAccount.id == account_id).first()
    if not account:
        return jsonify({"error": "Account not found"}), 404

    data = account.to_dict()
    data["vehicles"] = [v.to_dict() for v in account.vehicles]
    return jsonify(data)


@accounts_bp.route("/accounts/<int:account_id>/poll", methods=["POST"])
@limiter.limit(RateLimits.WRITE_MODERATE)
def trigger_poll(account_id):
    """Poll the account as soon as a worker is free."""
    db = get_db()
    account = db.query(TelematicsAccount).filter(TelematicsAccount.id == account_id).first()
    if not account:
        return jsonify({"error": "Account not found"}), 404
    if not account.is_active:
        return jsonify({"error": "Account is not active"}), 409

    get_poll_scheduler().trigger_immediate_poll(account_id)
    return jsonify({"status": "scheduled", "schedule": _schedule_payload(account_id)}), 202


@accounts_bp.route("/accounts/<int:account_id>/schedule", methods=["GET"])
@limiter.limit(RateLimits.READ_HEAVY)
def get_schedule(account_id):
    """Get the account's current poll schedule."""
    return jsonify(_schedule_payload(account_id))


@accounts_bp.route("/accounts/<int:account_id>/schedule", methods=["POST"])
@limiter.limit(RateLimits.WRITE_MODERATE)
def register_schedule(account_id):
    """Install the account's poll job (idempotent)."""
    db = get_db()
    account = db.query(TelematicsAccount).filter(TelematicsAccount.id == account_id).first()
    if not account:
        return jsonify({"error": "Account not found"}), 404

    created = get_poll_scheduler().register_account(account_id)
    return jsonify({"created": created, "schedule": _schedule_payload(account_id)}), 201 if created else 200


@accounts_bp.route("/accounts/<int:account_id>/schedule", methods=["DELETE"])
@limiter.limit(RateLimits.WRITE_MODERATE)
def remove_schedule(account_id):
    """Uninstall the account's poll job."""
    removed = get_poll_scheduler().remove_account(account_id)
    if not removed:
        return jsonify({"error": "No poll job for account"}), 404
    return jsonify({"removed": True})

"""
Donation Routes for FoodLink
Listing, claiming, pickup, completion and expiry of food donations.
"""

import logging
from functools import wraps

from flask import Blueprint, current_app, g, jsonify, request

from src.models.donation import ActorRole, DonationStatus
from src.services.donation_lifecycle import QueryFilters, TransitionContext
from src.utils.audit_log import log_audit
from src.utils.errors import ValidationError
from src.utils.jwt import actor_from_request
from src.utils.mail_instance import send_donation_confirmation

logger = logging.getLogger(__name__)

donation_bp = Blueprint("donation", __name__)


def _manager():
    return current_app.extensions["foodlink"]["manager"]


def _sweeper():
    return current_app.extensions["foodlink"]["sweeper"]


# ────────────────────────────────────────────────────────────────
# 🔐 AUTH MIDDLEWARE
# ────────────────────────────────────────────────────────────────
def require_role(*roles):
    """Decorator: decode the bearer token and check the caller's role."""
    allowed = {ActorRole.parse(r) for r in roles}

    def decorator(f):
        @wraps(f)
        def decorated(*args, **kwargs):
            actor = actor_from_request(request, current_app.config.get("JWT_SECRET"))
            if not actor or not actor.get("id"):
                return jsonify({"error": "Authentication token is required."}), 401

            try:
                role = ActorRole.parse(actor.get("role"))
            except ValueError:
                return jsonify({"error": "Access denied. Unknown role."}), 403

            if allowed and role not in allowed:
                return jsonify({"error": "Access denied. Insufficient permissions."}), 403

            g.actor = actor
            g.role = role
            return f(*args, **kwargs)

        return decorated

    return decorator


def _status_arg():
    raw = request.args.get("status")
    if not raw:
        return None
    try:
        return DonationStatus.parse(raw)
    except ValueError:
        raise ValidationError(f"Unknown status filter: {raw}")


# ─────────────────────────────────────────────
# ➕ Create a donation
# POST /api/donations
# ─────────────────────────────────────────────
@donation_bp.route("/donations", methods=["POST"])
@require_role("donor", "ngo")
def create_donation():
    data = request.get_json(silent=True) or {}
    donation = _manager().create(g.actor["id"], data)

    send_donation_confirmation(g.actor.get("email"), g.actor.get("name"), donation)

    log_audit(
        "donation_posted",
        user_id=g.actor["id"],
        user_role=g.role.value,
        entity_type="donation",
        entity_id=donation.id,
        metadata={"food_type": donation.food_type},
        req=request,
    )
    return jsonify({
        "message": "Donation listed successfully!",
        "donation": donation.to_dict(),
    }), 201


# ─────────────────────────────────────────────
# 📦 Role-scoped listing (newest first)
# GET /api/donations?status=available
# ─────────────────────────────────────────────
@donation_bp.route("/donations", methods=["GET"])
@require_role()
def list_donations():
    filters = QueryFilters(actor_id=g.actor["id"], status=_status_arg())
    data = [d.to_dict() for d in _manager().query(g.role, filters)]
    logger.info(f"✅ fetched {len(data)} donations for {g.role.value} {g.actor['id']}")
    return jsonify({"data": data}), 200


@donation_bp.route("/donations/<donation_id>", methods=["GET"])
@require_role()
def get_donation(donation_id):
    donation = _manager().get(donation_id)
    return jsonify({"data": donation.to_dict()}), 200


# ─────────────────────────────────────────────
# 🔁 Move a donation through its lifecycle
# PUT /api/donations/<donation_id>/status  {"status": "claimed", "riderId": "..."}
# ─────────────────────────────────────────────
@donation_bp.route("/donations/<donation_id>/status", methods=["PUT", "PATCH"])
@require_role("ngo", "rider", "system")
def update_donation_status(donation_id):
    data = request.get_json(silent=True) or {}
    target = data.get("status")
    if not target:
        raise ValidationError("status is required")

    context = TransitionContext(
        actor_id=g.actor["id"],
        rider_id=data.get("riderId") or data.get("rider_id"),
    )
    donation = _manager().transition(donation_id, g.role, target, context)

    log_audit(
        f"donation_{donation.status.value}",
        user_id=g.actor["id"],
        user_role=g.role.value,
        entity_type="donation",
        entity_id=donation_id,
        metadata={"assigned_rider": donation.assigned_rider},
        req=request,
    )
    return jsonify({"data": donation.to_dict()}), 200


# ─────────────────────────────────────────────
# 🛵 Rider pickup requests
# GET /api/rider/pickup-requests
# ─────────────────────────────────────────────
@donation_bp.route("/rider/pickup-requests", methods=["GET"])
@require_role("rider")
def rider_pickup_requests():
    filters = QueryFilters(actor_id=g.actor["id"], status=_status_arg())
    requests_ = [d.to_dict() for d in _manager().query(ActorRole.RIDER, filters)]
    return jsonify({
        "message": "Pickup requests retrieved successfully",
        "requests": requests_,
    }), 200


# ─────────────────────────────────────────────
# ⏰ Run the expiry sweep now
# PUT /api/donations/auto-expire
# ─────────────────────────────────────────────
@donation_bp.route("/donations/auto-expire", methods=["PUT"])
@require_role("ngo", "system")
def auto_expire_donations():
    expired_count = _sweeper().sweep()
    log_audit(
        "donations_expired_manual",
        user_id=g.actor["id"],
        user_role=g.role.value,
        entity_type="donation",
        metadata={"expired_count": expired_count},
        req=request,
    )
    return jsonify({
        "message": f"{expired_count} donations marked as expired",
        "expired": expired_count,
    }), 200

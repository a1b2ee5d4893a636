from flask import Blueprint, current_app, request, jsonify

from scheduling import clock
from scheduling.availability import available_slots, bookable_dates, booked_instants_for
from scheduling.booking import parse_local_date
from scheduling.directory import get_pharmacy, list_pharmacies
from scheduling.errors import ValidationError
from scheduling.hours import format_slots, parse_business_hours
from utils.auth_context import current_context, login_required

pharmacies_bp = Blueprint("pharmacies", __name__, url_prefix="/pharmacies")


def _pharmacy_json(p):
    return {"id": p.id, "name": p.name, "business_hours": p.business_hours}


@pharmacies_bp.get("")
@login_required
def list_all():
    return jsonify([_pharmacy_json(p) for p in list_pharmacies()]), 200


@pharmacies_bp.get("/<int:pharmacy_id>")
@login_required
def get_one(pharmacy_id: int):
    pharmacy = get_pharmacy(pharmacy_id)
    if not pharmacy:
        return jsonify(error="Pharmacy not found"), 404

    out = _pharmacy_json(pharmacy)
    out["slots"] = format_slots(parse_business_hours(pharmacy.business_hours))
    return jsonify(out), 200


@pharmacies_bp.get("/<int:pharmacy_id>/dates")
@login_required
def booking_dates(pharmacy_id: int):
    ctx = current_context()
    ctx.require_patient()
    if not get_pharmacy(pharmacy_id):
        return jsonify(error="Pharmacy not found"), 404

    now = clock.utcnow()
    days = current_app.config.get("BOOKING_WINDOW_DAYS", 14)
    dates = bookable_dates(now, ctx.zone, days=days)
    return jsonify(
        pharmacy_id=pharmacy_id,
        timezone=ctx.timezone,
        today=dates[0].isoformat() if dates else None,
        dates=[d.isoformat() for d in dates],
    ), 200


@pharmacies_bp.get("/<int:pharmacy_id>/availability")
@login_required
def availability(pharmacy_id: int):
    ctx = current_context()
    ctx.require_patient()

    date_str = request.args.get("date")
    day = parse_local_date(date_str)
    if day is None:
        raise ValidationError("Invalid date. Use YYYY-MM-DD", details={"date": date_str})

    pharmacy = get_pharmacy(pharmacy_id)
    if not pharmacy:
        return jsonify(error="Pharmacy not found"), 404

    # sampled once for this computation
    now = clock.utcnow()
    local_date = day.isoformat()
    template = parse_business_hours(pharmacy.business_hours)
    slots = available_slots(template, booked_instants_for(pharmacy.id, day, ctx.zone), day, now, ctx.zone)

    current_app.logger.debug("Availability pharmacy=%s date=%s -> %d slots", pharmacy.id, local_date, len(slots))
    return jsonify(
        pharmacy_id=pharmacy.id,
        date=local_date,
        timezone=ctx.timezone,
        slots=format_slots(slots),
    ), 200

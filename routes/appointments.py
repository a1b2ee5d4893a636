from flask import Blueprint, current_app, request, jsonify

from scheduling import clock
from scheduling.availability import local_today
from scheduling.booking import BookingCoordinator, CONFIRMED
from scheduling.receipts import PaymentRecordLinker
from scheduling.upcoming import upcoming_for
from utils.auth_context import current_context, login_required

appointments_bp = Blueprint("appointments", __name__, url_prefix="/appointments")


def _coordinator() -> BookingCoordinator:
    return BookingCoordinator(PaymentRecordLinker(current_app.config.get("PAYMENT_METHOD_CODES")))


def _result_response(result):
    # 202: appointment stored, payment record still missing
    status_code = 201 if result.status == CONFIRMED else 202
    return jsonify(result.to_dict()), status_code


# ---------- PATIENTS: book a slot (DOUBLE-BOOKING SAFE) ----------
@appointments_bp.post("")
@login_required
def create_appointment():
    ctx = current_context()
    ctx.require_patient()

    data = request.get_json(silent=True) or {}
    result = _coordinator().book(
        ctx,
        pharmacy_id=data.get("pharmacy_id"),
        local_date=data.get("date"),
        slot_time=data.get("time"),
        reason=data.get("reason"),
        payment_method=data.get("payment_method"),
        now=clock.utcnow(),
    )
    if result.status != CONFIRMED:
        current_app.logger.warning(result.warning)
    return _result_response(result)


# ---------- PATIENTS: retry the payment half of a booking ----------
@appointments_bp.post("/<int:appointment_id>/payment")
@login_required
def relink_payment(appointment_id: int):
    ctx = current_context()
    data = request.get_json(silent=True) or {}
    result = _coordinator().relink_payment(ctx, appointment_id, data.get("payment_method"), clock.utcnow())
    return _result_response(result)


# ---------- PATIENTS: view my upcoming appointments ----------
@appointments_bp.get("/upcoming")
@login_required
def upcoming():
    ctx = current_context()
    patient_id = ctx.require_patient()

    status = (request.args.get("status") or "").strip().upper() or None
    today = local_today(clock.utcnow(), ctx.zone)
    views = upcoming_for(patient_id, today, status=status)
    return jsonify([v.to_dict() for v in views]), 200

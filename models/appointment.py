from datetime import datetime
from models.db import db

STATUS_ACTIVE = "ACTIVE"
STATUS_CANCELLED = "CANCELLED"
STATUS_COMPLETED = "COMPLETED"
APPOINTMENT_STATUSES = (STATUS_ACTIVE, STATUS_CANCELLED, STATUS_COMPLETED)

_ACTIVE_ONLY = db.text("status = 'ACTIVE'")


class Appointment(db.Model):
    __tablename__ = "appointments"

    id = db.Column(db.Integer, primary_key=True)

    pharmacy_id = db.Column(db.Integer, db.ForeignKey("pharmacies.id"), nullable=False, index=True)
    patient_id = db.Column(db.Integer, db.ForeignKey("patients.id"), nullable=False, index=True)

    # Stored exactly as the patient picked them; never re-derived from scheduled_at.
    local_date = db.Column(db.String(10), nullable=False)   # YYYY-MM-DD
    slot_time = db.Column(db.String(5), nullable=False)     # HH:MM

    scheduled_at = db.Column(db.DateTime, nullable=False, index=True)  # naive UTC
    timezone = db.Column(db.String(64), nullable=False)

    reason = db.Column(db.Text, nullable=False)
    status = db.Column(db.String(20), nullable=False, default=STATUS_ACTIVE)
    # status values: ACTIVE, CANCELLED, COMPLETED

    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

    pharmacy = db.relationship("Pharmacy")
    payment_records = db.relationship("PaymentRecord", back_populates="appointment", lazy=True)

    __table_args__ = (
        # Hard business-rule: one ACTIVE appointment per pharmacy instant (prevents double booking).
        # Keyed on scheduled_at so bookers in different zones collide on the same slot.
        db.Index(
            "uq_appointments_active_slot",
            "pharmacy_id", "scheduled_at",
            unique=True,
            sqlite_where=_ACTIVE_ONLY,
            postgresql_where=_ACTIVE_ONLY,
        ),
    )

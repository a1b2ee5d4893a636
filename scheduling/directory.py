from typing import List, Optional

from models import db
from models.patient import Patient
from models.pharmacy import Pharmacy


def get_pharmacy(pharmacy_id) -> Optional[Pharmacy]:
    if pharmacy_id is None:
        return None
    return db.session.get(Pharmacy, pharmacy_id)


def list_pharmacies() -> List[Pharmacy]:
    return Pharmacy.query.order_by(Pharmacy.name.asc()).all()


def resolve_patient_id(user_id) -> Optional[int]:
    if user_id is None:
        return None
    patient = Patient.query.filter_by(user_id=user_id).first()
    return patient.id if patient else None

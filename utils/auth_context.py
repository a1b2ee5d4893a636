from functools import wraps
from flask import current_app, g, jsonify, request
from security.session import get_session_from_request
from models import db
from models.user import User
from scheduling.context import PatientBinding, SessionContext

TIMEZONE_HEADER = "X-Timezone"

def load_current_user():
    sess = get_session_from_request()
    if not sess:
        g.user = None
        g.session = None
        g.patient_binding = PatientBinding(None)
        return
    g.session = sess
    g.user = db.session.get(User, sess.user_id)
    # one binding per request; the session row is what survives between requests
    g.patient_binding = PatientBinding(g.user.id if g.user else None)

def client_timezone() -> str:
    return (request.headers.get(TIMEZONE_HEADER) or "").strip() or current_app.config.get("DEFAULT_TIMEZONE", "UTC")

def current_context() -> SessionContext:
    """Per-request scheduling context; the patient binding is resolved lazily."""
    binding = getattr(g, "patient_binding", None) or PatientBinding(None)
    return binding.context(client_timezone())

def login_required(fn):
    @wraps(fn)
    def wrapper(*args, **kwargs):
        if getattr(g, "user", None) is None:
            return jsonify(error="Authentication required", code="SESSION_ERROR"), 401
        return fn(*args, **kwargs)
    return wrapper

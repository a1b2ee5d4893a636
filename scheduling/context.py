"""
Explicit session context for scheduling calls.

Nothing in the engine reads a "current user" global: routes build a
SessionContext per request and pass it into every public operation.
"""
import logging
from dataclasses import dataclass
from datetime import tzinfo
from typing import Callable, Optional

from blinker import Namespace

from scheduling.clock import get_zone
from scheduling.directory import resolve_patient_id
from scheduling.errors import SessionError

logger = logging.getLogger(__name__)

_signals = Namespace()

# send(sender, user_id=<affected identity>, new_user_id=<identity now, or None after logout>)
identity_changed = _signals.signal("identity-changed")


@dataclass(frozen=True)
class SessionContext:
    user_id: Optional[int]
    patient_id: Optional[int]
    timezone: str

    @property
    def zone(self) -> tzinfo:
        return get_zone(self.timezone)

    def require_patient(self) -> int:
        if self.user_id is None:
            raise SessionError("Authentication required")
        if self.patient_id is None:
            raise SessionError("No patient profile linked to this account")
        return self.patient_id


class PatientBinding:
    """
    Resolves and caches the patient bound to one authenticated user.

    The cache is dropped whenever ``identity_changed`` fires for that user, so
    the next context built from this binding resolves the patient again.
    """

    def __init__(self, user_id: Optional[int], resolver: Callable = resolve_patient_id):
        self.user_id = user_id
        self._resolver = resolver
        self._patient_id = None
        self._resolved = False
        identity_changed.connect(self._on_identity_changed)

    def _on_identity_changed(self, sender, user_id=None, new_user_id=None, **extra):
        if user_id is None or user_id != self.user_id:
            return
        logger.info("Identity changed for user %s, dropping patient binding", self.user_id)
        self.user_id = new_user_id
        self._patient_id = None
        self._resolved = False

    @property
    def is_resolved(self) -> bool:
        return self._resolved

    def patient_id(self) -> Optional[int]:
        if not self._resolved:
            self._patient_id = self._resolver(self.user_id) if self.user_id is not None else None
            self._resolved = True
        return self._patient_id

    def context(self, timezone: str) -> SessionContext:
        return SessionContext(user_id=self.user_id, patient_id=self.patient_id(), timezone=timezone)

"""Client-side lookup session."""

from dataclasses import dataclass, field, replace
from datetime import UTC, datetime

from nector_cards.models.patient import PatientCard


@dataclass(frozen=True)
class LookupSession:
    """The record a client is currently viewing.

    A search produces a new session holding the match; rendering and editing
    read the patient from the session they are handed rather than from shared
    state.
    """

    patient: PatientCard | None = None
    searched_id: str | None = None
    loaded_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    @property
    def has_patient(self) -> bool:
        """Whether the last search found a record."""
        return self.patient is not None

    def require_patient(self) -> PatientCard:
        """Return the current patient, raising when no search has matched."""
        if self.patient is None:
            raise LookupError("No patient data available. Please search for a patient first.")
        return self.patient

    def with_result(self, searched_id: str, patient: PatientCard | None) -> "LookupSession":
        """Return a session for a new search result."""
        return LookupSession(patient=patient, searched_id=searched_id)

    def with_patient(self, patient: PatientCard) -> "LookupSession":
        """Return a session holding a refreshed copy of the same patient."""
        return replace(self, patient=patient, loaded_at=datetime.now(UTC))

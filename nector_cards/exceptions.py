"""Error types shared by the store, the API and the client."""

from pydantic import ValidationError


class PatientCardError(Exception):
    """Base class for loyalty card errors."""


class PatientValidationError(PatientCardError):
    """A patient record is missing a required field or holds a malformed value."""

    def __init__(self, message: str, errors: list[dict] | None = None):
        super().__init__(message)
        self.errors = errors or []

    @classmethod
    def from_pydantic(cls, error: ValidationError) -> "PatientValidationError":
        """Summarise a pydantic error as one readable line per field."""
        errors = error.errors(include_url=False, include_context=False)
        lines = []
        for err in errors:
            field = ".".join(str(part) for part in err["loc"])
            lines.append(f"{field}: {err['msg']}" if field else err["msg"])
        return cls("; ".join(lines), errors=errors)


class PatientNotFoundError(PatientCardError):
    """No stored record matches the requested patient ID."""

    def __init__(self, patient_id: str):
        super().__init__(f"Patient not found: {patient_id}")
        self.patient_id = patient_id


class PersistenceError(PatientCardError):
    """The backing file or database failed; the stored set is unchanged."""

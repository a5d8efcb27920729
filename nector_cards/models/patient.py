"""Patient card data models."""

from datetime import datetime
from typing import Annotated, Any

from pydantic import AfterValidator, BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel

from nector_cards.config import MAX_ADDRESS_LENGTH
from nector_cards.utils.dates import parse_expiry


def _check_valid_till(value: str) -> str:
    try:
        parse_expiry(value)
    except ValueError as e:
        raise ValueError("validTill must be a date in YYYY-MM-DD format") from e
    return value


# Used verbatim as a URL path segment, so only unreserved characters and no dot-only IDs
PatientId = Annotated[
    str,
    Field(
        min_length=1,
        max_length=64,
        pattern=r"^[A-Za-z0-9][A-Za-z0-9._-]*$",
        description="Letters, digits, '.', '_' and '-', starting with a letter or digit",
    ),
]
PatientName = Annotated[str, Field(min_length=1, max_length=100)]
PhoneNumber = Annotated[str, Field(pattern=r"^[0-9]{10}$", description="Exactly 10 digits")]
Address = Annotated[str, Field(max_length=MAX_ADDRESS_LENGTH)]
Discount = Annotated[int, Field(ge=1, le=100, description="Discount percentage")]
ValidTill = Annotated[str, Field(pattern=r"^\d{4}-\d{2}-\d{2}$"), AfterValidator(_check_valid_till)]

# Fields that may be explicitly cleared with null
NULLABLE_FIELDS = frozenset({"address"})


class CamelModel(BaseModel):
    """Base model using camelCase names on the wire and on disk."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        str_strip_whitespace=True,
        extra="ignore",
    )


class PatientCard(CamelModel):
    """A stored loyalty card record."""

    card_no: str = Field(..., description="CARD-<epoch ms>, assigned on creation")
    patient_id: PatientId
    patient_name: PatientName
    phone_number: PhoneNumber
    address: Address | None = None
    discount: Discount
    valid_till: ValidTill

    def to_document(self) -> dict[str, Any]:
        """Return the record as a camelCase JSON-ready dict."""
        return self.model_dump(by_alias=True)


class PatientUpdate(CamelModel):
    """Partial record: only the fields the caller sends are applied.

    Omitted fields keep their stored value. ``address`` may be sent as null to
    clear it; null is rejected for every other field.
    """

    patient_name: PatientName | None = None
    phone_number: PhoneNumber | None = None
    address: Address | None = None
    discount: Discount | None = None
    valid_till: ValidTill | None = None

    @model_validator(mode="after")
    def reject_nulls(self) -> "PatientUpdate":
        """Reject explicit nulls for fields that cannot be cleared."""
        for name in self.model_fields_set:
            if name not in NULLABLE_FIELDS and getattr(self, name) is None:
                alias = type(self).model_fields[name].alias or name
                raise ValueError(f"{alias} cannot be null")
        return self

    def changes(self) -> dict[str, Any]:
        """Return the fields set by the caller, keyed by field name."""
        return self.model_dump(exclude_unset=True, exclude={"patient_id"})


class PatientUpsert(PatientUpdate):
    """Create-or-update request keyed by patient ID."""

    patient_id: PatientId


class PatientCreateRequest(PatientUpsert):
    """Body of POST /patients."""

    patient_name: PatientName
    phone_number: PhoneNumber


class PatientResponse(BaseModel):
    """Response for create and update calls."""

    message: str
    patient: PatientCard


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    timestamp: datetime
    version: str
    store_backend: str


def to_document_keys(changes: dict[str, Any]) -> dict[str, Any]:
    """Rename field-name keys to their camelCase storage names."""
    return {PatientCard.model_fields[name].alias or name: value for name, value in changes.items()}

"""Card issuance flow: validate the form, render locally, then save."""

from collections.abc import Callable, Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from nector_cards.clients.patient_api import PatientApiClient, PatientApiError
from nector_cards.exceptions import PatientValidationError
from nector_cards.models.patient import PatientCard, PatientCreateRequest
from nector_cards.services.card_renderer import ISSUE_LAYOUT, CardLayout, CardRenderer, RenderedCard, load_background
from nector_cards.services.patients import card_number_generator
from nector_cards.utils.dates import compute_expiry, format_expiry
from nector_cards.utils.logging import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class IssueResult:
    """Outcome of issuing a card.

    The rendered card is kept even when saving fails, so the user can still
    download it and resubmit later.
    """

    card: RenderedCard
    patient: PatientCard
    created: bool | None = None
    error: str | None = None

    @property
    def saved(self) -> bool:
        """Whether the record reached the card service."""
        return self.error is None

    @property
    def message(self) -> str:
        """User-facing outcome of the issue attempt."""
        if self.error:
            return f"Data not saved! {self.error}"
        if self.created:
            return "New patient saved successfully!"
        return "Patient already exists, details updated!"


class CardIssuer:
    """Issues cards from form input."""

    def __init__(
        self,
        api: PatientApiClient,
        template: Path | str | None = None,
        layout: CardLayout = ISSUE_LAYOUT,
        card_numbers: Callable[[], str] = card_number_generator,
    ):
        self.api = api
        self.template = template
        self.renderer = CardRenderer(layout)
        self.card_numbers = card_numbers

    def prepare(self, form: Mapping[str, Any]) -> tuple[PatientCreateRequest, PatientCard]:
        """Validate form input and build the request plus a local preview record.

        Blank values count as missing. validTill defaults to one year from today.

        Raises:
            PatientValidationError: If a field is missing or malformed
        """
        data = {key: value for key, value in form.items() if value not in (None, "")}
        data.setdefault("validTill", format_expiry(compute_expiry()))

        try:
            request = PatientCreateRequest.model_validate(data)
            preview = PatientCard(card_no=self.card_numbers(), patient_id=request.patient_id, **request.changes())
        except ValidationError as e:
            raise PatientValidationError.from_pydantic(e) from e

        return request, preview

    async def issue(self, form: Mapping[str, Any]) -> IssueResult:
        """Render the card, then upsert it through the API."""
        request, preview = self.prepare(form)

        background = await load_background(self.template)
        card = self.renderer.render(preview, background)

        try:
            stored, created = await self.api.save_patient(request)
        except PatientApiError as e:
            logger.warning(f"Card for {request.patient_id} rendered but not saved: {e}")
            return IssueResult(card=card, patient=preview, error=str(e))

        return IssueResult(card=card, patient=stored, created=created)

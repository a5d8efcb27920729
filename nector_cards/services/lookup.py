"""Lookup flow: search by patient ID, re-render and edit the found card."""

from collections.abc import Mapping
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from nector_cards.clients.patient_api import PatientApiClient
from nector_cards.exceptions import PatientValidationError
from nector_cards.models.patient import PatientUpdate
from nector_cards.models.session import LookupSession
from nector_cards.services.card_renderer import LOOKUP_LAYOUT, CardLayout, CardRenderer, RenderedCard, load_background

# Fields the edit form must always carry
EDIT_REQUIRED_FIELDS = ("patientName", "phoneNumber", "discount", "validTill")


class CardLookup:
    """Finds stored cards and operates on the one held by a lookup session."""

    def __init__(
        self,
        api: PatientApiClient,
        template: Path | str | None = None,
        layout: CardLayout = LOOKUP_LAYOUT,
    ):
        self.api = api
        self.template = template
        self.renderer = CardRenderer(layout)

    async def search(self, patient_id: str, session: LookupSession | None = None) -> LookupSession:
        """Find a patient by ID; the returned session holds the match or None."""
        patient_id = patient_id.strip()
        if not patient_id:
            raise PatientValidationError("Please enter a valid Patient ID.")

        patient = await self.api.find_patient(patient_id)
        return (session or LookupSession()).with_result(patient_id, patient)

    async def render(self, session: LookupSession) -> RenderedCard:
        """Render the session's patient with the lookup layout."""
        patient = session.require_patient()
        background = await load_background(self.template)
        return self.renderer.render(patient, background)

    def prepare_edit(self, form: Mapping[str, Any]) -> PatientUpdate:
        """Validate the edit form.

        A blank address clears the stored address.

        Raises:
            PatientValidationError: If a required field is blank or a value is malformed
        """
        if any(form.get(name) in (None, "") for name in EDIT_REQUIRED_FIELDS):
            raise PatientValidationError("Please fill in all required fields!")

        data = dict(form)
        if "address" in data and not data["address"]:
            data["address"] = None

        try:
            return PatientUpdate.model_validate(data)
        except ValidationError as e:
            raise PatientValidationError.from_pydantic(e) from e

    async def edit(self, session: LookupSession, form: Mapping[str, Any]) -> LookupSession:
        """Save edits for the session's patient and return the refreshed session."""
        patient = session.require_patient()
        changes = self.prepare_edit(form)
        updated = await self.api.update_patient(patient.patient_id, changes)
        return session.with_patient(updated)

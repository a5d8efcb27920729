"""Tests for the API client and the issue/lookup flows built on it."""

import httpx
import pytest
import pytest_asyncio

from nector_cards.clients.patient_api import PatientApiClient, PatientApiError
from nector_cards.exceptions import PatientValidationError
from nector_cards.main import app
from nector_cards.models.patient import PatientUpdate, PatientUpsert
from nector_cards.models.session import LookupSession
from nector_cards.services.issuance import CardIssuer
from nector_cards.services.lookup import CardLookup
from nector_cards.services.patients import get_patient_store


@pytest_asyncio.fixture
async def api(json_store):
    """API client talking to the app in-process over a JSON store."""
    app.dependency_overrides[get_patient_store] = lambda: json_store
    client = PatientApiClient(base_url="http://testserver", transport=httpx.ASGITransport(app=app))
    try:
        yield client
    finally:
        await client.aclose()
        app.dependency_overrides.clear()


@pytest_asyncio.fixture
async def offline_api():
    """API client whose every request fails to connect."""

    def refuse(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    client = PatientApiClient(base_url="http://testserver", transport=httpx.MockTransport(refuse))
    try:
        yield client
    finally:
        await client.aclose()


@pytest.fixture
def idle_api():
    """API client for flows that never reach the network."""
    transport = httpx.MockTransport(lambda request: httpx.Response(503))
    return PatientApiClient(base_url="http://testserver", transport=transport)


@pytest.fixture
def form():
    """Issuance form input as typed by a user."""
    return {
        "patientId": "P1",
        "patientName": "Asha Rao",
        "phoneNumber": "1234567890",
        "address": "12 MG Road, Bengaluru",
        "discount": "10",
    }


class TestPatientApiClient:
    """Tests for PatientApiClient."""

    @pytest.mark.asyncio
    async def test_save_reports_created_then_updated(self, api):
        """Test that the created flag follows the response status."""
        record = PatientUpsert.model_validate(
            {"patientId": "P1", "patientName": "Asha", "phoneNumber": "1234567890", "discount": 5}
        )

        first, created = await api.save_patient(record)
        second, created_again = await api.save_patient(record)

        assert (created, created_again) == (True, False)
        assert first.card_no == second.card_no

    @pytest.mark.asyncio
    async def test_list_and_find(self, api):
        """Test listing and client-side filtering by patient ID."""
        for patient_id in ("P1", "P2"):
            await api.save_patient(
                PatientUpsert.model_validate(
                    {"patientId": patient_id, "patientName": "A", "phoneNumber": "1234567890", "discount": 5}
                )
            )

        assert len(await api.list_patients()) == 2
        assert (await api.find_patient("P2")).patient_id == "P2"
        assert await api.find_patient("P3") is None

    @pytest.mark.asyncio
    async def test_update_unknown_patient(self, api):
        """Test that a 404 becomes a PatientApiError with the server detail."""
        with pytest.raises(PatientApiError) as exc_info:
            await api.update_patient("ghost", PatientUpdate.model_validate({"discount": 5}))

        assert exc_info.value.status_code == 404
        assert str(exc_info.value) == "Patient not found"

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        ("patient_id", "path"),
        [("A#1", b"/patients/A%231"), ("OPD/12", b"/patients/OPD%2F12"), ("A?x", b"/patients/A%3Fx")],
    )
    async def test_update_quotes_patient_id(self, patient_id, path):
        """Test that the patient ID stays a single path segment."""
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request.url.raw_path)
            return httpx.Response(404, json={"detail": "Patient not found"})

        async with PatientApiClient(base_url="http://testserver", transport=httpx.MockTransport(handler)) as client:
            with pytest.raises(PatientApiError):
                await client.update_patient(patient_id, PatientUpdate.model_validate({"discount": 5}))

        assert seen == [path]

    @pytest.mark.asyncio
    async def test_update_does_not_touch_prefix_patient(self, api):
        """Test that an ID with a reserved character never edits a similarly named patient."""
        await api.save_patient(
            PatientUpsert.model_validate(
                {"patientId": "A", "patientName": "Asha", "phoneNumber": "1234567890", "discount": 5}
            )
        )

        with pytest.raises(PatientApiError):
            await api.update_patient("A#1", PatientUpdate.model_validate({"discount": 50}))

        assert (await api.find_patient("A")).discount == 5

    @pytest.mark.asyncio
    async def test_connection_failure(self, offline_api):
        """Test that transport failures become PatientApiError."""
        with pytest.raises(PatientApiError) as exc_info:
            await offline_api.list_patients()

        assert exc_info.value.status_code is None

    @pytest.mark.asyncio
    async def test_plain_text_error_body(self):
        """Test error detail extraction from a non-JSON response."""
        transport = httpx.MockTransport(lambda request: httpx.Response(502, text="Bad Gateway"))

        async with PatientApiClient(base_url="http://testserver", transport=transport) as client:
            with pytest.raises(PatientApiError) as exc_info:
                await client.health()

        assert exc_info.value.status_code == 502
        assert str(exc_info.value) == "Bad Gateway"


class TestCardIssuer:
    """Tests for the issuance flow."""

    def test_prepare_defaults_expiry(self, idle_api, form):
        """Test that the preview record gets a card number and a validity date."""
        request, preview = CardIssuer(idle_api).prepare(form)

        assert request.discount == 10
        assert preview.card_no.startswith("CARD-")
        assert preview.valid_till == request.valid_till

    @pytest.mark.parametrize("field", ["patientId", "patientName", "phoneNumber", "discount"])
    def test_prepare_requires_fields(self, idle_api, form, field):
        """Test that blank form fields are rejected before anything is sent."""
        with pytest.raises(PatientValidationError):
            CardIssuer(idle_api).prepare({**form, field: ""})

    def test_prepare_rejects_bad_phone(self, idle_api, form):
        """Test the phone rule on the form."""
        with pytest.raises(PatientValidationError, match="phoneNumber"):
            CardIssuer(idle_api).prepare({**form, "phoneNumber": "98765"})

    def test_prepare_address_is_optional(self, idle_api, form):
        """Test that an empty address is dropped rather than stored blank."""
        request, preview = CardIssuer(idle_api).prepare({**form, "address": ""})
        assert preview.address is None
        assert "address" not in request.model_fields_set

    @pytest.mark.asyncio
    async def test_issue_new_then_existing(self, api, form):
        """Test the messages for a new and an existing patient."""
        issuer = CardIssuer(api)

        first = await issuer.issue(form)
        second = await issuer.issue({**form, "discount": "20"})

        assert first.saved and first.created
        assert first.message == "New patient saved successfully!"
        assert second.created is False
        assert second.message == "Patient already exists, details updated!"
        assert second.patient.discount == 20
        assert second.patient.card_no == first.patient.card_no

    @pytest.mark.asyncio
    async def test_issue_keeps_card_when_offline(self, offline_api, form, tmp_path):
        """Test that a failed save still hands back the rendered card."""
        result = await CardIssuer(offline_api, template=tmp_path / "missing.jpg").issue(form)

        assert not result.saved
        assert result.message.startswith("Data not saved!")
        assert result.patient.patient_id == "P1"
        assert result.card.save(tmp_path).exists()


class TestCardLookup:
    """Tests for the lookup flow."""

    @pytest.mark.asyncio
    async def test_search_blank_id(self, api):
        """Test that a blank ID is rejected."""
        with pytest.raises(PatientValidationError):
            await CardLookup(api).search("   ")

    @pytest.mark.asyncio
    async def test_search_miss(self, api):
        """Test that an unknown ID yields an empty session."""
        session = await CardLookup(api).search("P404")

        assert not session.has_patient
        assert session.searched_id == "P404"

    @pytest.mark.asyncio
    async def test_search_render_and_edit(self, api, form):
        """Test the full lookup flow on one session."""
        await CardIssuer(api).issue(form)
        lookup = CardLookup(api)

        session = await lookup.search(" P1 ", LookupSession())
        assert session.require_patient().patient_name == "Asha Rao"

        card = await lookup.render(session)
        assert card.filename == "nector_patient_card.png"

        edited = await lookup.edit(
            session,
            {
                "patientName": "Asha R.",
                "phoneNumber": "1234567890",
                "address": "",
                "discount": 25,
                "validTill": "2031-05-05",
            },
        )

        patient = edited.require_patient()
        assert patient.patient_name == "Asha R."
        assert patient.address is None
        assert patient.discount == 25
        assert session.require_patient().discount == 10

    @pytest.mark.asyncio
    async def test_render_without_search(self, api):
        """Test that rendering needs a found patient."""
        with pytest.raises(LookupError):
            await CardLookup(api).render(LookupSession())

    def test_edit_requires_fields(self, idle_api):
        """Test that the edit form needs every required field."""
        with pytest.raises(PatientValidationError, match="required"):
            CardLookup(idle_api).prepare_edit({"patientName": "A", "phoneNumber": "1234567890", "discount": 5})

    @pytest.mark.parametrize("discount", [0, 101])
    def test_edit_discount_range(self, idle_api, discount):
        """Test the discount range on edit."""
        form = {"patientName": "A", "phoneNumber": "1234567890", "discount": discount, "validTill": "2030-01-01"}
        with pytest.raises(PatientValidationError):
            CardLookup(idle_api).prepare_edit(form)

"""HTTP client for the loyalty card API."""

from typing import Any
from urllib.parse import quote

import httpx

from nector_cards.exceptions import PatientCardError
from nector_cards.models.patient import PatientCard, PatientUpdate, PatientUpsert
from nector_cards.utils.logging import get_logger

logger = get_logger(__name__)


class PatientApiError(PatientCardError):
    """The card service could not be reached or answered with an error."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class PatientApiClient:
    """Async client for the /patients endpoints."""

    def __init__(
        self,
        base_url: str = "http://localhost:3000",
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        """Initialize the client.

        Args:
            base_url: Root URL of the card service
            timeout: Per-request timeout in seconds
            transport: Custom transport (tests pass a mock or ASGI transport)
        """
        self.client = httpx.AsyncClient(base_url=base_url, timeout=timeout, transport=transport)

    async def __aenter__(self) -> "PatientApiClient":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        """Close the underlying connection pool."""
        await self.client.aclose()

    async def save_patient(self, record: PatientUpsert) -> tuple[PatientCard, bool]:
        """POST a record; returns the stored card and whether it was newly created."""
        payload = record.model_dump(mode="json", by_alias=True, exclude_unset=True)
        response = await self._request("POST", "/patients", json=payload)
        data = response.json()
        return PatientCard.model_validate(data["patient"]), response.status_code == httpx.codes.CREATED

    async def list_patients(self) -> list[PatientCard]:
        """GET every stored card."""
        response = await self._request("GET", "/patients")
        return [PatientCard.model_validate(item) for item in response.json()]

    async def find_patient(self, patient_id: str) -> PatientCard | None:
        """Look a patient up by ID among the listed cards."""
        patients = await self.list_patients()
        return next((p for p in patients if p.patient_id == patient_id), None)

    async def update_patient(self, patient_id: str, changes: PatientUpdate) -> PatientCard:
        """PUT changed fields for an existing patient."""
        payload = changes.model_dump(mode="json", by_alias=True, exclude_unset=True)
        response = await self._request("PUT", f"/patients/{quote(patient_id, safe='')}", json=payload)
        return PatientCard.model_validate(response.json()["patient"])

    async def health(self) -> dict[str, Any]:
        """GET the service health status."""
        response = await self._request("GET", "/health")
        return response.json()

    async def _request(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        try:
            response = await self.client.request(method, url, **kwargs)
        except httpx.HTTPError as e:
            logger.warning(f"{method} {url} failed: {e}")
            raise PatientApiError(f"Could not reach the card service: {e}") from e

        if response.is_error:
            detail = _error_detail(response)
            logger.warning(f"{method} {url} returned {response.status_code}: {detail}")
            raise PatientApiError(detail, status_code=response.status_code)

        return response


def _error_detail(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text or f"HTTP {response.status_code}"

    if isinstance(body, dict) and body.get("detail"):
        return str(body["detail"])
    return f"HTTP {response.status_code}"

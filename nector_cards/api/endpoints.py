"""API endpoints for the loyalty card service."""

import asyncio
from datetime import UTC, datetime
from typing import Literal

from fastapi import APIRouter, Depends, HTTPException, Response, status

from nector_cards import __version__
from nector_cards.config import Settings, get_settings
from nector_cards.exceptions import PatientNotFoundError, PatientValidationError
from nector_cards.models.patient import (
    HealthResponse,
    PatientCard,
    PatientCreateRequest,
    PatientResponse,
    PatientUpdate,
)
from nector_cards.services.card_renderer import LAYOUTS, CardRenderer, load_background
from nector_cards.services.patients import PatientStore, get_patient_store
from nector_cards.utils.logging import get_logger

logger = get_logger(__name__)

router = APIRouter()

INTERNAL_ERROR = "Internal Server Error"


@router.post(
    "/patients",
    response_model=PatientResponse,
    responses={201: {"model": PatientResponse, "description": "Patient created"}},
    tags=["Patients"],
)
async def save_patient(
    request: PatientCreateRequest,
    response: Response,
    store: PatientStore = Depends(get_patient_store),
) -> PatientResponse:
    """Create a card for a new patient ID or merge the fields into the existing one."""
    try:
        patient, created = await store.upsert(request)
    except PatientValidationError as e:
        logger.warning(f"Rejected patient {request.patient_id}: {e}")
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e)) from e
    except Exception as e:
        logger.error(f"Error processing POST /patients for {request.patient_id}: {e}", exc_info=True)
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=INTERNAL_ERROR) from e

    if created:
        response.status_code = status.HTTP_201_CREATED
        return PatientResponse(message="Patient saved", patient=patient)

    return PatientResponse(message="Patient updated", patient=patient)


@router.get("/patients", response_model=list[PatientCard], tags=["Patients"])
async def list_patients(store: PatientStore = Depends(get_patient_store)) -> list[PatientCard]:
    """Get every stored card."""
    try:
        return await store.list_all()
    except Exception as e:
        logger.error(f"Error fetching patients: {e}", exc_info=True)
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=INTERNAL_ERROR) from e


@router.put("/patients/{patient_id}", response_model=PatientResponse, tags=["Patients"])
async def update_patient(
    patient_id: str,
    request: PatientUpdate,
    store: PatientStore = Depends(get_patient_store),
) -> PatientResponse:
    """Merge fields into an existing card."""
    try:
        patient = await store.update_by_id(patient_id, request)
    except PatientNotFoundError as e:
        logger.warning(f"Update for unknown patient {patient_id}")
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Patient not found") from e
    except Exception as e:
        logger.error(f"Error updating patient {patient_id}: {e}", exc_info=True)
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=INTERNAL_ERROR) from e

    return PatientResponse(message="Patient updated", patient=patient)


@router.get(
    "/patients/{patient_id}/card.png",
    response_class=Response,
    responses={200: {"content": {"image/png": {}}}},
    tags=["Cards"],
)
async def patient_card_image(
    patient_id: str,
    layout: Literal["issue", "lookup"] = "lookup",
    store: PatientStore = Depends(get_patient_store),
    settings: Settings = Depends(get_settings),
) -> Response:
    """Render a stored patient's card as a PNG download."""
    try:
        patient = await store.get_by_id(patient_id)
    except Exception as e:
        logger.error(f"Error loading patient {patient_id} for card: {e}", exc_info=True)
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=INTERNAL_ERROR) from e

    if patient is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Patient not found")

    background = await load_background(settings.card_template)
    card = await asyncio.to_thread(CardRenderer(LAYOUTS[layout]).render, patient, background)
    content = await asyncio.to_thread(card.to_png_bytes)

    return Response(
        content=content,
        media_type="image/png",
        headers={"Content-Disposition": f'attachment; filename="{card.filename}"'},
    )


@router.get("/health", response_model=HealthResponse, tags=["Health"])
async def health_check(settings: Settings = Depends(get_settings)) -> HealthResponse:
    """Health check endpoint."""
    return HealthResponse(
        status="healthy",
        timestamp=datetime.now(UTC),
        version=__version__,
        store_backend=settings.store_backend,
    )

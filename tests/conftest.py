"""Shared fixtures."""

import mongomock
import pytest
from fastapi.testclient import TestClient

from nector_cards.config import Settings, get_settings
from nector_cards.main import app
from nector_cards.services.patients import (
    CardNumberGenerator,
    JsonFilePatientStore,
    MongoPatientStore,
    get_patient_store,
)

FIXED_CLOCK = 1_700_000_000.0


@pytest.fixture
def card_numbers():
    """Card numbers starting at CARD-1700000000000."""
    return CardNumberGenerator(clock=lambda: FIXED_CLOCK)


@pytest.fixture
def json_store(tmp_path, card_numbers):
    """JSON file store in a temporary directory."""
    return JsonFilePatientStore(tmp_path / "patients.json", card_numbers=card_numbers)


@pytest.fixture
def mongo_collection():
    """In-memory MongoDB collection."""
    return mongomock.MongoClient()["nector_hospital"]["patients"]


@pytest.fixture
def mongo_store(mongo_collection, card_numbers):
    """MongoDB store over an in-memory collection."""
    return MongoPatientStore(mongo_collection, card_numbers=card_numbers)


@pytest.fixture(params=["json", "mongo"])
def store(request):
    """Each store backend in turn."""
    return request.getfixturevalue(f"{request.param}_store")


@pytest.fixture
def settings(tmp_path):
    """Settings pointing at a template that does not exist."""
    return Settings(patients_file=tmp_path / "patients.json", card_template=tmp_path / "missing.jpg")


@pytest.fixture
def client(store, settings):
    """Test client wired to the selected store backend."""
    app.dependency_overrides[get_patient_store] = lambda: store
    app.dependency_overrides[get_settings] = lambda: settings
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


@pytest.fixture
def full_patient():
    """A complete POST body."""
    return {
        "patientId": "P1",
        "patientName": "Asha Rao",
        "phoneNumber": "1234567890",
        "address": "12 MG Road, Bengaluru",
        "discount": 10,
    }

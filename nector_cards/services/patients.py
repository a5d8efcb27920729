"""Patient card store interface and implementations."""

import asyncio
import json
import os
import tempfile
import threading
import time
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from functools import lru_cache
from pathlib import Path
from typing import Any, ClassVar, Protocol

from pydantic import ValidationError
from pymongo import MongoClient, ReturnDocument
from pymongo.collection import Collection
from pymongo.errors import DuplicateKeyError, PyMongoError

from nector_cards.config import Settings, get_settings
from nector_cards.exceptions import PatientNotFoundError, PatientValidationError, PersistenceError
from nector_cards.models.patient import PatientCard, PatientUpdate, PatientUpsert, to_document_keys
from nector_cards.utils.dates import compute_expiry, format_expiry
from nector_cards.utils.logging import get_logger

logger = get_logger(__name__)

_NO_ID = {"_id": False}


class CardNumberGenerator:
    """Issues CARD-<epoch ms> numbers that never repeat within the process."""

    def __init__(self, clock: Callable[[], float] = time.time):
        self._clock = clock
        self._last = 0
        self._lock = threading.Lock()

    def __call__(self) -> str:
        with self._lock:
            millis = int(self._clock() * 1000)
            if millis <= self._last:
                millis = self._last + 1
            self._last = millis
        return f"CARD-{millis}"


card_number_generator = CardNumberGenerator()


def build_new_card(record: PatientUpsert, card_no: str) -> PatientCard:
    """Build a complete record for a patient ID seen for the first time.

    Raises:
        PatientValidationError: If the request lacks a field a new card needs
    """
    data = record.changes()
    if data.get("valid_till") is None:
        data["valid_till"] = format_expiry(compute_expiry())

    try:
        return PatientCard(card_no=card_no, patient_id=record.patient_id, **data)
    except ValidationError as e:
        raise PatientValidationError(
            "Missing required fields",
            errors=e.errors(include_url=False, include_context=False),
        ) from e


def merge_card(existing: PatientCard, changes: dict[str, Any]) -> PatientCard:
    """Overlay the provided fields on a stored record; cardNo and patientId never change."""
    changes = {k: v for k, v in changes.items() if k not in ("card_no", "patient_id")}
    return PatientCard.model_validate({**existing.model_dump(), **changes})


class PatientStore(Protocol):
    """Interface for patient card persistence.

    Implementations must make every successful write durable before returning
    and must never leave a partially written record behind.
    """

    backend: str

    async def upsert(self, record: PatientUpsert) -> tuple[PatientCard, bool]:
        """Create the card for a new patient ID or merge into the existing one.

        Args:
            record: Incoming fields keyed by patient ID

        Returns:
            The stored card and True if it was created, False if merged
        """
        ...

    async def list_all(self) -> list[PatientCard]:
        """Get every stored card, in a stable order within one call."""
        ...

    async def get_by_id(self, patient_id: str) -> PatientCard | None:
        """Get the card for a patient ID, or None if absent."""
        ...

    async def update_by_id(self, patient_id: str, changes: PatientUpdate) -> PatientCard:
        """Merge fields into an existing card; never creates.

        Raises:
            PatientNotFoundError: If no card matches the patient ID
        """
        ...


class JsonFilePatientStore:
    """Store backed by a single pretty-printed JSON array on disk.

    Every write replaces the whole file atomically: the new content goes to a
    temporary file in the same directory, is fsynced, then renamed over the
    original.
    """

    backend: ClassVar[str] = "json"

    def __init__(self, path: Path | str, card_numbers: Callable[[], str] | None = None):
        self.path = Path(path)
        self.card_numbers = card_numbers or card_number_generator
        self._lock = threading.Lock()

    async def upsert(self, record: PatientUpsert) -> tuple[PatientCard, bool]:
        """Create or merge a card by patient ID."""
        card, created = await asyncio.to_thread(self._upsert, record)
        logger.info(f"{'Created' if created else 'Updated'} patient {card.patient_id} ({card.card_no})")
        return card, created

    async def list_all(self) -> list[PatientCard]:
        """Get every stored card in file order."""
        return await asyncio.to_thread(self._locked_read)

    async def get_by_id(self, patient_id: str) -> PatientCard | None:
        """Get a card by patient ID."""
        cards = await asyncio.to_thread(self._locked_read)
        index = self._find(cards, patient_id)
        return cards[index] if index is not None else None

    async def update_by_id(self, patient_id: str, changes: PatientUpdate) -> PatientCard:
        """Merge fields into an existing card."""
        card = await asyncio.to_thread(self._update, patient_id, changes)
        logger.info(f"Updated patient {patient_id}")
        return card

    def _upsert(self, record: PatientUpsert) -> tuple[PatientCard, bool]:
        with self._lock:
            cards = self._read()
            index = self._find(cards, record.patient_id)

            if index is None:
                card = build_new_card(record, self.card_numbers())
                cards.append(card)
            else:
                card = merge_card(cards[index], record.changes())
                cards[index] = card

            self._write(cards)

        return card, index is None

    def _update(self, patient_id: str, changes: PatientUpdate) -> PatientCard:
        with self._lock:
            cards = self._read()
            index = self._find(cards, patient_id)
            if index is None:
                raise PatientNotFoundError(patient_id)

            card = merge_card(cards[index], changes.changes())
            cards[index] = card
            self._write(cards)

        return card

    def _locked_read(self) -> list[PatientCard]:
        with self._lock:
            return self._read()

    @staticmethod
    def _find(cards: list[PatientCard], patient_id: str) -> int | None:
        for index, card in enumerate(cards):
            if card.patient_id == patient_id:
                return index
        return None

    def _read(self) -> list[PatientCard]:
        if not self.path.exists():
            return []

        try:
            with self.path.open("r", encoding="utf-8") as f:
                raw = json.load(f)
            if not isinstance(raw, list):
                raise ValueError(f"expected a JSON array, got {type(raw).__name__}")
            return [PatientCard.model_validate(item) for item in raw]
        except (OSError, ValueError) as e:
            logger.error(f"Failed to read patient file {self.path}: {e}")
            raise PersistenceError(f"Could not read {self.path}") from e

    def _write(self, cards: list[PatientCard]) -> None:
        payload = [card.to_document() for card in cards]
        tmp_path: str | None = None

        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_path = tempfile.mkstemp(dir=self.path.parent, prefix=f".{self.path.name}.", suffix=".tmp")
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(payload, f, indent=2, ensure_ascii=False)
                f.write("\n")
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_path, self.path)
            tmp_path = None
        except OSError as e:
            logger.error(f"Failed to write patient file {self.path}: {e}")
            raise PersistenceError(f"Could not write {self.path}") from e
        finally:
            if tmp_path is not None and os.path.exists(tmp_path):
                os.unlink(tmp_path)


@contextmanager
def _database_errors(action: str) -> Iterator[None]:
    try:
        yield
    except PyMongoError as e:
        logger.error(f"MongoDB error during {action}: {e}")
        raise PersistenceError(f"Database error during {action}") from e


class MongoPatientStore:
    """Store backed by a MongoDB collection with a unique index on patientId."""

    backend: ClassVar[str] = "mongo"

    def __init__(self, collection: Collection, card_numbers: Callable[[], str] | None = None):
        self.collection = collection
        self.card_numbers = card_numbers or card_number_generator

        with _database_errors("index setup"):
            self.collection.create_index("patientId", unique=True)

    @classmethod
    def from_settings(cls, settings: Settings) -> "MongoPatientStore":
        """Connect using the configured URI, database and collection."""
        client: MongoClient = MongoClient(settings.mongodb_uri)
        logger.info(f"Using MongoDB database {settings.mongodb_database}.{settings.mongodb_collection}")
        return cls(client[settings.mongodb_database][settings.mongodb_collection])

    async def upsert(self, record: PatientUpsert) -> tuple[PatientCard, bool]:
        """Create or merge a card by patient ID."""
        return await asyncio.to_thread(self._upsert, record)

    async def list_all(self) -> list[PatientCard]:
        """Get every stored card in natural order."""
        with _database_errors("list"):
            documents = await asyncio.to_thread(self._find_all)
        return [PatientCard.model_validate(doc) for doc in documents]

    async def get_by_id(self, patient_id: str) -> PatientCard | None:
        """Get a card by patient ID."""
        with _database_errors("lookup"):
            document = await asyncio.to_thread(self.collection.find_one, {"patientId": patient_id}, projection=_NO_ID)
        return PatientCard.model_validate(document) if document else None

    async def update_by_id(self, patient_id: str, changes: PatientUpdate) -> PatientCard:
        """Merge fields into an existing card."""
        with _database_errors("update"):
            card = await asyncio.to_thread(self._apply, patient_id, changes.changes())

        if card is None:
            raise PatientNotFoundError(patient_id)

        logger.info(f"Updated patient {patient_id}")
        return card

    def _upsert(self, record: PatientUpsert) -> tuple[PatientCard, bool]:
        with _database_errors("upsert"):
            existing = self.collection.find_one({"patientId": record.patient_id}, projection=_NO_ID)

            if existing is None:
                card = build_new_card(record, self.card_numbers())
                try:
                    self.collection.insert_one(card.to_document())
                    logger.info(f"Created patient {card.patient_id} ({card.card_no})")
                    return card, True
                except DuplicateKeyError:
                    logger.info(f"Patient {record.patient_id} was created concurrently, merging instead")

            card = self._apply(record.patient_id, record.changes())

        if card is None:
            raise PersistenceError(f"Patient {record.patient_id} vanished during upsert")

        logger.info(f"Updated patient {card.patient_id}")
        return card, False

    def _find_all(self) -> list[dict[str, Any]]:
        return list(self.collection.find({}, projection=_NO_ID))

    def _apply(self, patient_id: str, changes: dict[str, Any]) -> PatientCard | None:
        fields = to_document_keys({k: v for k, v in changes.items() if k not in ("card_no", "patient_id")})

        if not fields:
            document = self.collection.find_one({"patientId": patient_id}, projection=_NO_ID)
        else:
            document = self.collection.find_one_and_update(
                {"patientId": patient_id},
                {"$set": fields},
                projection=_NO_ID,
                return_document=ReturnDocument.AFTER,
            )

        return PatientCard.model_validate(document) if document else None


def create_patient_store(settings: Settings) -> PatientStore:
    """Create the store selected by STORE_BACKEND."""
    if settings.store_backend == "mongo":
        return MongoPatientStore.from_settings(settings)

    logger.info(f"Using JSON patient file {settings.patients_file}")
    return JsonFilePatientStore(settings.patients_file)


@lru_cache
def get_patient_store() -> PatientStore:
    """Get the process-wide patient store."""
    return create_patient_store(get_settings())

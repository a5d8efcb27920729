"""Runtime configuration read from the environment."""

import os
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Literal

from dotenv import load_dotenv

StoreBackend = Literal["json", "mongo"]

# Address limit shared by the API, the store and the client
MAX_ADDRESS_LENGTH = 100


@dataclass(frozen=True)
class Settings:
    """Service settings."""

    store_backend: StoreBackend = "json"
    patients_file: Path = Path("data/patients.json")

    mongodb_uri: str = "mongodb://localhost:27017"
    mongodb_database: str = "nector_hospital"
    mongodb_collection: str = "patients"

    card_template: Path = Path("assets/card.jpg")

    log_level: str = "INFO"
    host: str = "0.0.0.0"
    port: int = 3000

    @classmethod
    def from_env(cls) -> "Settings":
        """Build settings from environment variables (and a .env file if present)."""
        load_dotenv(override=False)

        backend = os.getenv("STORE_BACKEND", "json").strip().lower()
        if backend not in ("json", "mongo"):
            raise ValueError(f"STORE_BACKEND must be 'json' or 'mongo', got {backend!r}")

        return cls(
            store_backend=backend,  # type: ignore[arg-type]
            patients_file=Path(os.getenv("PATIENTS_FILE", "data/patients.json")),
            mongodb_uri=os.getenv("MONGODB_URI", "mongodb://localhost:27017"),
            mongodb_database=os.getenv("MONGODB_DATABASE", "nector_hospital"),
            mongodb_collection=os.getenv("MONGODB_COLLECTION", "patients"),
            card_template=Path(os.getenv("CARD_TEMPLATE", "assets/card.jpg")),
            log_level=os.getenv("LOG_LEVEL", "INFO"),
            host=os.getenv("HOST", "0.0.0.0"),
            port=int(os.getenv("PORT", "3000")),
        )


@lru_cache
def get_settings() -> Settings:
    """Get the process-wide settings."""
    return Settings.from_env()

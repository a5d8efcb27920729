"""Main FastAPI application."""

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from nector_cards import __version__
from nector_cards.api.endpoints import router
from nector_cards.config import get_settings
from nector_cards.utils.logging import LogConfig, get_logger, setup_logging

settings = get_settings()
setup_logging(LogConfig(level=settings.log_level))

logger = get_logger(__name__)

# Validation failures that mean a required value was not supplied
_MISSING_ERROR_TYPES = {"missing", "string_too_short"}

app = FastAPI(
    title="Nector Hospital Loyalty Cards",
    description="Issue, look up and edit patient loyalty cards.",
    version=__version__,
    docs_url="/docs",
    redoc_url="/redoc",
    tags_metadata=[
        {
            "name": "Patients",
            "description": "Create-or-update, list and edit patient card records keyed by patient ID.",
        },
        {
            "name": "Cards",
            "description": "Rendered card images for stored patients.",
        },
        {
            "name": "Health",
            "description": "Service health monitoring and status checks.",
        },
    ],
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Report malformed or incomplete bodies as 400 rather than 422."""
    errors = [{"loc": list(err["loc"]), "msg": err["msg"], "type": err["type"]} for err in exc.errors()]
    missing = any(err["type"] in _MISSING_ERROR_TYPES for err in errors)
    detail = "Missing required fields" if missing else "Invalid patient data"

    logger.warning(f"{request.method} {request.url.path} rejected: {detail} {errors}")
    return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content={"detail": detail, "errors": errors})


app.include_router(router)


def run() -> None:
    """Serve the API with uvicorn."""
    import uvicorn

    uvicorn.run("nector_cards.main:app", host=settings.host, port=settings.port, log_level=settings.log_level.lower())


if __name__ == "__main__":
    run()

"""
FastAPI application entrypoint.

Run locally:  uvicorn clinic_fhir.main:app --reload
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError

from clinic_fhir.api.routes import FHIRResponse, health_router, router
from clinic_fhir.config import settings
from clinic_fhir.fhir.errors import FHIRError, operation_outcome
from clinic_fhir.models.database import Base, engine

logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format="%(levelname)s | %(name)s | %(message)s",
)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Create tables on startup."""
    Base.metadata.create_all(bind=engine)
    logger.info("Database schema ensured (%s)", settings.ENVIRONMENT)
    yield


app = FastAPI(
    title="Clinic FHIR API",
    description=(
        "FHIR R4 interoperability layer for the clinic platform: resource "
        "conversion, versioned REST interactions, search and transaction/batch Bundles."
    ),
    version="1.0.0",
    lifespan=lifespan,
)


@app.exception_handler(FHIRError)
async def fhir_error_handler(request: Request, exc: FHIRError):
    return FHIRResponse(exc.to_operation_outcome(), status_code=exc.status_code)


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    messages = "; ".join(
        f"{'.'.join(str(p) for p in error['loc'])}: {error['msg']}" for error in exc.errors()
    )
    return FHIRResponse(operation_outcome("invalid", messages), status_code=400)


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return FHIRResponse(operation_outcome("exception", "Internal server error"), status_code=500)


app.include_router(health_router)
app.include_router(router, prefix="/fhir")

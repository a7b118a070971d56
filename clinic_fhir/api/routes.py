"""
FastAPI routes – the FHIR REST surface.

Every resource interaction goes through the typed handler registry; these
functions only deal with HTTP concerns (headers, status codes, commits).
Errors are raised as ``FHIRError`` subclasses and rendered as
OperationOutcomes by the handlers registered in ``main``.
"""

from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, Body, Depends, Header, Request, Response
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.orm import Session

from clinic_fhir.config import settings
from clinic_fhir.fhir.bundles import BundleProcessor
from clinic_fhir.fhir.capability import capability_statement, smart_configuration
from clinic_fhir.fhir.everything import patient_everything
from clinic_fhir.fhir.identity import etag, location, parse_etag, searchset
from clinic_fhir.fhir.resources import get_handler
from clinic_fhir.fhir.search import page_links, translate
from clinic_fhir.models.database import get_db
from clinic_fhir.schemas.api import HealthResponse, SmartConfiguration

logger = logging.getLogger(__name__)

FHIR_JSON = "application/fhir+json"

router = APIRouter()
health_router = APIRouter()


class FHIRResponse(JSONResponse):
    media_type = FHIR_JSON


def get_actor(x_user_id: str | None = Header(default=None)) -> str:
    """Acting user as asserted by the upstream auth layer."""
    return x_user_id or "anonymous"


# ---------------------------------------------------------------------------
# Health check
# ---------------------------------------------------------------------------

@health_router.get("/health", response_model=HealthResponse)
def health_check(db: Session = Depends(get_db)):
    """Basic health endpoint – verifies DB connectivity."""
    try:
        db.execute(text("SELECT 1"))
        db_status = "connected"
    except Exception:
        logger.warning("Health check could not reach the database", exc_info=True)
        db_status = "disconnected"
    return HealthResponse(
        status="healthy",
        environment=settings.ENVIRONMENT,
        database=db_status,
    )


# ---------------------------------------------------------------------------
# Discovery
# ---------------------------------------------------------------------------

@router.get("/metadata")
def metadata():
    return FHIRResponse(capability_statement(settings.FHIR_BASE_URL))


@router.get("/.well-known/smart-configuration", response_model=SmartConfiguration)
def smart_config():
    return smart_configuration(settings.AUTH_URL)


# ---------------------------------------------------------------------------
# Bundles (transaction / batch) – posted to the base URL
# ---------------------------------------------------------------------------

@router.post("")
def process_bundle(
    bundle: dict[str, Any] = Body(...),
    db: Session = Depends(get_db),
    actor: str = Depends(get_actor),
):
    processor = BundleProcessor(db, settings.FHIR_BASE_URL)
    return FHIRResponse(processor.process(bundle, actor))


# ---------------------------------------------------------------------------
# Patient $everything
# ---------------------------------------------------------------------------

@router.get("/Patient/{patient_id}/$everything")
def everything(
    patient_id: str,
    start: str | None = None,
    end: str | None = None,
    db: Session = Depends(get_db),
):
    return FHIRResponse(patient_everything(db, patient_id, settings.FHIR_BASE_URL, start, end))


# ---------------------------------------------------------------------------
# Resource interactions
# ---------------------------------------------------------------------------

@router.post("/{resource_type}")
def create_resource(
    resource_type: str,
    resource: dict[str, Any] = Body(...),
    db: Session = Depends(get_db),
    actor: str = Depends(get_actor),
):
    handler = get_handler(resource_type)
    row = handler.create(db, resource, actor)
    db.commit()
    return FHIRResponse(
        handler.to_fhir(row),
        status_code=201,
        headers={"Location": location(handler.resource_type, row.id), "ETag": etag(row.version)},
    )


@router.get("/{resource_type}")
def search_resources(resource_type: str, request: Request, db: Session = Depends(get_db)):
    handler = get_handler(resource_type)
    query = translate(handler.resource_type, request.query_params.multi_items())
    rows, total = handler.search(db, query)
    url = f"{settings.FHIR_BASE_URL}/{handler.resource_type}"
    return FHIRResponse(
        searchset(
            settings.FHIR_BASE_URL,
            matches=[handler.to_fhir(row) for row in rows],
            total=total,
            links=page_links(url, query, total),
        )
    )


@router.get("/{resource_type}/{resource_id}")
def read_resource(resource_type: str, resource_id: str, db: Session = Depends(get_db)):
    handler = get_handler(resource_type)
    row = handler.read(db, resource_id)
    return FHIRResponse(handler.to_fhir(row), headers={"ETag": etag(row.version)})


@router.put("/{resource_type}/{resource_id}")
def update_resource(
    resource_type: str,
    resource_id: str,
    resource: dict[str, Any] = Body(...),
    if_match: str | None = Header(default=None),
    db: Session = Depends(get_db),
    actor: str = Depends(get_actor),
):
    handler = get_handler(resource_type)
    expected = parse_etag(if_match) if if_match else None
    row = handler.update(db, resource_id, resource, actor, if_match=expected)
    db.commit()
    return FHIRResponse(handler.to_fhir(row), headers={"ETag": etag(row.version)})


@router.delete("/{resource_type}/{resource_id}", status_code=204)
def delete_resource(
    resource_type: str,
    resource_id: str,
    db: Session = Depends(get_db),
    actor: str = Depends(get_actor),
):
    handler = get_handler(resource_type)
    handler.delete(db, resource_id, actor)
    db.commit()
    return Response(status_code=204)

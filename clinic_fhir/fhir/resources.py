"""
Typed dispatch from FHIR resource types to their handlers.

Each ``ResourceKind`` has exactly one handler that knows its ORM model,
converter, inbound schema and the REST interactions it supports. The HTTP
routes and the Bundle processor both go through ``get_handler`` so a resource
behaves the same whether it arrives on its own or inside a Bundle.
"""

from __future__ import annotations

import logging
from dataclasses import asdict
from enum import Enum
from typing import Any

from sqlalchemy.orm import Session

from clinic_fhir.config import settings
from clinic_fhir.fhir import converters
from clinic_fhir.fhir.errors import (
    InvalidResource,
    ResourceNotFound,
    UnsupportedInteraction,
    UnsupportedResourceType,
    VersionConflict,
)
from clinic_fhir.fhir.search import SearchQuery
from clinic_fhir.models import clinical
from clinic_fhir.models.clinical import utcnow
from clinic_fhir.schemas import fhir as schemas
from clinic_fhir.services import repository
from clinic_fhir.services.audit import log_action, snapshot
from clinic_fhir.services.validation import require_valid

logger = logging.getLogger(__name__)


class ResourceKind(str, Enum):
    PATIENT = "Patient"
    PRACTITIONER = "Practitioner"
    ORGANIZATION = "Organization"
    APPOINTMENT = "Appointment"
    OBSERVATION = "Observation"
    CONDITION = "Condition"
    MEDICATION_REQUEST = "MedicationRequest"


class Interaction(str, Enum):
    CREATE = "create"
    READ = "read"
    UPDATE = "update"
    DELETE = "delete"
    SEARCH = "search-type"


class ResourceHandler:
    """Create/read/update/delete/search for one resource kind.

    Methods return ORM rows; rendering to FHIR JSON is ``to_fhir``. Nothing
    here commits: the caller owns the transaction.
    """

    kind: ResourceKind
    model: type
    converter_class: type[converters.ResourceConverter]
    schema: dict[str, Any]
    interactions: frozenset[Interaction] = frozenset({Interaction.READ, Interaction.SEARCH})

    def __init__(self, base_url: str = settings.FHIR_BASE_URL):
        self.base_url = base_url
        self.converter = self.converter_class(base_url)

    @property
    def resource_type(self) -> str:
        return self.kind.value

    def supports(self, interaction: Interaction) -> bool:
        return interaction in self.interactions

    def require(self, interaction: Interaction) -> None:
        if not self.supports(interaction):
            raise UnsupportedInteraction(self.resource_type, interaction.value)

    # -- conversion ---------------------------------------------------------

    def to_internal(self, resource: dict[str, Any]):
        require_valid(resource, self.schema, self.resource_type)
        return self.converter.to_internal(resource)

    def to_fhir(self, row: Any) -> dict[str, Any]:
        return self.converter.to_fhir(row)

    def check_references(self, db: Session, fields: Any) -> None:
        """Reject fields the record cannot hold or that point at records that do not exist."""

    def apply(self, row: Any, fields: Any) -> None:
        for name, value in asdict(fields).items():
            setattr(row, name, value)

    # -- interactions -------------------------------------------------------

    def create(self, db: Session, resource: dict[str, Any], actor: str) -> Any:
        self.require(Interaction.CREATE)
        fields = self.to_internal(resource)
        self.check_references(db, fields)

        row = self.model()
        self.apply(row, fields)
        repository.add(db, row)

        log_action(
            db,
            actor=actor,
            action="create",
            resource_type=self.resource_type,
            resource_id=row.id,
            new_values=snapshot(row),
        )
        logger.info("Created %s/%s", self.resource_type, row.id)
        return row

    def read(self, db: Session, resource_id: str) -> Any:
        self.require(Interaction.READ)
        return self._get(db, resource_id)

    def update(
        self,
        db: Session,
        resource_id: str,
        resource: dict[str, Any],
        actor: str,
        if_match: int | None = None,
    ) -> Any:
        self.require(Interaction.UPDATE)
        body_id = resource.get("id") if isinstance(resource, dict) else None
        if body_id and body_id != resource_id:
            raise InvalidResource(
                f"Resource id {body_id} does not match {self.resource_type}/{resource_id}"
            )
        fields = self.to_internal(resource)

        row = self._get(db, resource_id)
        if if_match is not None and if_match != row.version:
            raise VersionConflict(self.resource_type, resource_id, if_match, row.version)
        self.check_references(db, fields)

        old_values = snapshot(row)
        self.apply(row, fields)
        row.version = row.version + 1
        row.updated_at = utcnow()
        db.flush()

        log_action(
            db,
            actor=actor,
            action="update",
            resource_type=self.resource_type,
            resource_id=row.id,
            old_values=old_values,
            new_values=snapshot(row),
        )
        logger.info("Updated %s/%s to version %s", self.resource_type, row.id, row.version)
        return row

    def delete(self, db: Session, resource_id: str, actor: str) -> Any:
        self.require(Interaction.DELETE)
        row = self._get(db, resource_id)
        old_values = snapshot(row)
        repository.soft_delete(db, row)

        log_action(
            db,
            actor=actor,
            action="delete",
            resource_type=self.resource_type,
            resource_id=row.id,
            old_values=old_values,
        )
        logger.info("Deleted %s/%s", self.resource_type, row.id)
        return row

    def search(self, db: Session, query: SearchQuery) -> tuple[list[Any], int]:
        self.require(Interaction.SEARCH)
        return repository.search(db, self.model, query)

    def _get(self, db: Session, resource_id: str) -> Any:
        row = repository.get(db, self.model, resource_id)
        if row is None:
            raise ResourceNotFound(self.resource_type, resource_id)
        return row

    def _require_existing(self, db: Session, model: type, resource_type: str, resource_id: str | None) -> None:
        if resource_id and not repository.exists(db, model, resource_id):
            raise InvalidResource(f"Referenced {resource_type}/{resource_id} does not exist")


# ---------------------------------------------------------------------------
# Handlers
# ---------------------------------------------------------------------------


class PatientHandler(ResourceHandler):
    kind = ResourceKind.PATIENT
    model = clinical.Patient
    converter_class = converters.PatientConverter
    schema = schemas.FHIR_PATIENT_SCHEMA
    interactions = frozenset(Interaction)

    def check_references(self, db: Session, fields: converters.PatientFields) -> None:
        if not fields.name:
            raise InvalidResource("Patient requires a name")
        self._require_existing(db, clinical.Clinic, "Organization", fields.clinic_id)


class PractitionerHandler(ResourceHandler):
    kind = ResourceKind.PRACTITIONER
    model = clinical.Doctor
    converter_class = converters.PractitionerConverter
    schema = schemas.FHIR_PRACTITIONER_SCHEMA
    interactions = frozenset({Interaction.CREATE, Interaction.READ, Interaction.SEARCH})

    def check_references(self, db: Session, fields: converters.PractitionerFields) -> None:
        if not fields.name:
            raise InvalidResource("Practitioner requires a name")


class OrganizationHandler(ResourceHandler):
    kind = ResourceKind.ORGANIZATION
    model = clinical.Clinic
    converter_class = converters.OrganizationConverter
    schema = schemas.FHIR_ORGANIZATION_SCHEMA
    interactions = frozenset({Interaction.CREATE, Interaction.READ, Interaction.SEARCH})


class AppointmentHandler(ResourceHandler):
    kind = ResourceKind.APPOINTMENT
    model = clinical.Appointment
    converter_class = converters.AppointmentConverter
    schema = schemas.FHIR_APPOINTMENT_SCHEMA
    interactions = frozenset({Interaction.CREATE, Interaction.READ, Interaction.SEARCH})

    def check_references(self, db: Session, fields: converters.AppointmentFields) -> None:
        if not fields.patient_id:
            raise InvalidResource("Appointment requires a Patient participant")
        if not fields.doctor_id:
            raise InvalidResource("Appointment requires a Practitioner participant")
        if fields.scheduled_at is None:
            raise InvalidResource("Appointment requires start")
        self._require_existing(db, clinical.Patient, "Patient", fields.patient_id)
        self._require_existing(db, clinical.Doctor, "Practitioner", fields.doctor_id)
        self._require_existing(db, clinical.Clinic, "Location", fields.clinic_id)


class ObservationHandler(ResourceHandler):
    kind = ResourceKind.OBSERVATION
    model = clinical.LabResult
    converter_class = converters.ObservationConverter
    schema = schemas.FHIR_OBSERVATION_SCHEMA
    interactions = frozenset({Interaction.CREATE, Interaction.READ, Interaction.SEARCH})

    def check_references(self, db: Session, fields: converters.ObservationFields) -> None:
        if not fields.patient_id:
            raise InvalidResource("Observation subject must reference a Patient")
        self._require_existing(db, clinical.Patient, "Patient", fields.patient_id)


class ConditionHandler(ResourceHandler):
    kind = ResourceKind.CONDITION
    model = clinical.Diagnosis
    converter_class = converters.ConditionConverter
    schema = schemas.FHIR_CONDITION_SCHEMA


class MedicationRequestHandler(ResourceHandler):
    kind = ResourceKind.MEDICATION_REQUEST
    model = clinical.Prescription
    converter_class = converters.MedicationRequestConverter
    schema = schemas.FHIR_MEDICATION_REQUEST_SCHEMA


HANDLER_CLASSES: tuple[type[ResourceHandler], ...] = (
    PatientHandler,
    PractitionerHandler,
    OrganizationHandler,
    AppointmentHandler,
    ObservationHandler,
    ConditionHandler,
    MedicationRequestHandler,
)


def build_registry(base_url: str = settings.FHIR_BASE_URL) -> dict[ResourceKind, ResourceHandler]:
    return {cls.kind: cls(base_url) for cls in HANDLER_CLASSES}


HANDLERS = build_registry()


def get_handler(resource_type: str) -> ResourceHandler:
    try:
        kind = ResourceKind(resource_type)
    except ValueError:
        raise UnsupportedResourceType(resource_type)
    return HANDLERS[kind]

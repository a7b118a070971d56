"""Patient ``$everything``: the patient plus every live record that points at it."""

from __future__ import annotations

from typing import Any
from urllib.parse import urlencode

from sqlalchemy.orm import Session

from clinic_fhir.fhir.identity import searchset
from clinic_fhir.fhir.resources import HANDLERS, ResourceKind
from clinic_fhir.fhir.search import Predicate, SortKey, parse_date_param
from clinic_fhir.services import repository

# Clinical date each related kind is windowed on.
RELATED_DATE_FIELDS: dict[ResourceKind, str] = {
    ResourceKind.APPOINTMENT: "scheduled_at",
    ResourceKind.CONDITION: "created_at",
    ResourceKind.MEDICATION_REQUEST: "created_at",
    ResourceKind.OBSERVATION: "performed_at",
}


def window_predicates(date_field: str, start: str | None, end: str | None) -> list[Predicate]:
    """``start``/``end`` bounds; a date-only ``end`` includes that whole day (or month, or year)."""
    predicates = []
    if start:
        _, lower, _ = parse_date_param(start)
        predicates.append(Predicate(date_field, "ge", lower))
    if end:
        _, upper, upper_exclusive = parse_date_param(end)
        if upper_exclusive is not None:
            predicates.append(Predicate(date_field, "lt", upper_exclusive))
        else:
            predicates.append(Predicate(date_field, "le", upper))
    return predicates


def patient_everything(
    db: Session,
    patient_id: str,
    base_url: str,
    start: str | None = None,
    end: str | None = None,
) -> dict[str, Any]:
    patient_handler = HANDLERS[ResourceKind.PATIENT]
    patient = patient_handler.read(db, patient_id)

    includes = []
    for kind, date_field in RELATED_DATE_FIELDS.items():
        handler = HANDLERS[kind]
        predicates = [Predicate("patient_id", "eq", patient.id)]
        predicates.extend(window_predicates(date_field, start, end))
        rows = repository.find_all(db, handler.model, predicates, [SortKey(date_field, descending=True)])
        includes.extend(handler.to_fhir(row) for row in rows)

    self_url = f"{base_url}/Patient/{patient.id}/$everything"
    params = [(name, value) for name, value in (("start", start), ("end", end)) if value]
    if params:
        self_url += "?" + urlencode(params)

    return searchset(
        base_url,
        matches=[patient_handler.to_fhir(patient)],
        total=1 + len(includes),
        links=[{"relation": "self", "url": self_url}],
        includes=includes,
    )

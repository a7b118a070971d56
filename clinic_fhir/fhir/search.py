"""
FHIR search parameter translation.

``translate`` turns the raw query string of a search into a ``SearchQuery``:
plain predicates over internal column names plus ordering and paging. It never
builds SQL itself; the repository turns predicates into SQLAlchemy filters.

Supported parameter types:
- token:      exact match after converting the FHIR code to the internal value
- string:     case-insensitive "contains" (``:exact`` switches to equality)
- identifier: ``system|value`` or a bare value, digits only
- reference:  ``Type/id`` or bare ``id``
- date:       optional prefix (eq ne lt gt le ge sa eb ap) + partial ISO date
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import Any, Callable, Iterable, Mapping
from urllib.parse import urlencode

from clinic_fhir.config import settings
from clinic_fhir.fhir import converters
from clinic_fhir.fhir import datatypes as dt
from clinic_fhir.fhir.errors import InvalidResource

DATE_PREFIXES = {
    "eq": "eq",
    "ne": "ne",
    "lt": "lt",
    "gt": "gt",
    "le": "le",
    "ge": "ge",
    # Approximations: no period arithmetic or tolerance window.
    "sa": "gt",
    "eb": "lt",
    "ap": "eq",
}

_DATE_PARAM = re.compile(r"^(eq|ne|lt|gt|le|ge|sa|eb|ap)?(\d{4}.*)$")

PAGING_PARAMETERS = {"_count", "_offset", "_sort"}


@dataclass(frozen=True)
class Predicate:
    field: str
    op: str
    value: Any


@dataclass(frozen=True)
class SortKey:
    field: str
    descending: bool = False


@dataclass
class SearchQuery:
    resource_type: str
    predicates: list[Predicate] = field(default_factory=list)
    sort: list[SortKey] = field(default_factory=list)
    count: int = 20
    offset: int = 0
    params: list[tuple[str, str]] = field(default_factory=list)


@dataclass(frozen=True)
class SearchParameter:
    name: str
    type: str
    field: str
    documentation: str = ""
    convert: Callable[[str], Any] | None = None
    systems: Mapping[str, str] | None = None
    date_only: bool = False


# ---------------------------------------------------------------------------
# Token converters
# ---------------------------------------------------------------------------


def _boolean(value: str) -> bool:
    if value not in ("true", "false"):
        raise InvalidResource(f"Invalid boolean search value: {value!r}")
    return value == "true"


def _gender(value: str) -> str:
    if value not in ("male", "female", "other", "unknown"):
        raise InvalidResource(f"Invalid gender search value: {value!r}")
    return dt.gender_to_internal(value)


def _status_matcher(to_internal: Mapping[str, str], to_fhir: Mapping[str, str]) -> Callable[[str], list[str]]:
    """Every internal status that reads or writes as the given FHIR code."""

    def convert(value: str) -> list[str]:
        matches = {internal for internal, code in to_fhir.items() if code == value}
        if value in to_internal:
            matches.add(to_internal[value])
        if not matches:
            raise InvalidResource(f"Invalid status search value: {value!r}")
        return sorted(matches)

    return convert


def _code(value: str) -> str:
    return value.rsplit("|", 1)[-1]


_appointment_status = _status_matcher(
    converters.APPOINTMENT_STATUS_TO_INTERNAL, converters.APPOINTMENT_STATUS_TO_FHIR
)
_observation_status = _status_matcher(
    converters.OBSERVATION_STATUS_TO_INTERNAL, converters.OBSERVATION_STATUS_TO_FHIR
)
_medication_status = _status_matcher(
    converters.MEDICATION_STATUS_TO_INTERNAL, converters.MEDICATION_STATUS_TO_FHIR
)


# ---------------------------------------------------------------------------
# Parameter definitions per resource type
# ---------------------------------------------------------------------------

_ID = SearchParameter("_id", "token", "id", "Logical id of the resource")
_LAST_UPDATED = SearchParameter("_lastUpdated", "date", "updated_at", "When the resource last changed")
_ACTIVE = SearchParameter("active", "token", "is_active", "Whether the record is active", convert=_boolean)

SEARCH_PARAMETERS: dict[str, list[SearchParameter]] = {
    "Patient": [
        _ID,
        SearchParameter(
            "identifier",
            "identifier",
            "cpf",
            "CPF or CNS (system|value)",
            systems={dt.CPF_SYSTEM: "cpf", dt.CNS_SYSTEM: "cns"},
        ),
        _ACTIVE,
        SearchParameter("name", "string", "name", "Any part of the name"),
        SearchParameter("family", "string", "name", "Family name"),
        SearchParameter("given", "string", "name", "Given name"),
        SearchParameter("gender", "token", "gender", "male | female | other | unknown", convert=_gender),
        SearchParameter("birthdate", "date", "birth_date", "Date of birth", date_only=True),
        SearchParameter("email", "string", "email", "Email address"),
        SearchParameter("phone", "string", "phone", "Phone number", convert=lambda v: dt.digits_only(v) or v),
        SearchParameter("address-city", "string", "city", "City"),
        SearchParameter("address-state", "string", "state", "State (UF)"),
        SearchParameter(
            "address-postalcode",
            "token",
            "zip_code",
            "Postal code (CEP)",
            convert=lambda v: dt.digits_only(v) or v,
        ),
        SearchParameter("organization", "reference", "clinic_id", "Managing organization"),
    ],
    "Practitioner": [
        _ID,
        SearchParameter("identifier", "identifier", "crm", "CRM number", systems={dt.CRM_SYSTEM: "crm"}),
        _ACTIVE,
        SearchParameter("name", "string", "name", "Any part of the name"),
        SearchParameter("family", "string", "name", "Family name"),
        SearchParameter("given", "string", "name", "Given name"),
        SearchParameter("email", "string", "email", "Email address"),
        SearchParameter("phone", "string", "phone", "Phone number", convert=lambda v: dt.digits_only(v) or v),
    ],
    "Organization": [
        _ID,
        SearchParameter("identifier", "identifier", "cnpj", "CNPJ number", systems={dt.CNPJ_SYSTEM: "cnpj"}),
        _ACTIVE,
        SearchParameter("name", "string", "name", "Name of the organization"),
        SearchParameter("address-city", "string", "city", "City"),
        SearchParameter("address-state", "string", "state", "State (UF)"),
    ],
    "Appointment": [
        _ID,
        SearchParameter("patient", "reference", "patient_id", "Patient participant"),
        SearchParameter("practitioner", "reference", "doctor_id", "Practitioner participant"),
        SearchParameter("location", "reference", "clinic_id", "Clinic where it takes place"),
        SearchParameter("status", "token", "status", "Appointment status", convert=_appointment_status),
        SearchParameter("date", "date", "scheduled_at", "Appointment start"),
    ],
    "Observation": [
        _ID,
        SearchParameter("patient", "reference", "patient_id", "Subject patient"),
        SearchParameter("subject", "reference", "patient_id", "Subject patient"),
        SearchParameter("code", "token", "test_code", "LOINC test code", convert=_code),
        SearchParameter("status", "token", "status", "Observation status", convert=_observation_status),
        SearchParameter("date", "date", "performed_at", "When the test was performed"),
    ],
    "Condition": [
        _ID,
        SearchParameter("patient", "reference", "patient_id", "Subject patient"),
        SearchParameter("subject", "reference", "patient_id", "Subject patient"),
        SearchParameter("code", "token", "icd_code", "ICD-10 code", convert=_code),
        SearchParameter("recorded-date", "date", "created_at", "When the diagnosis was recorded"),
    ],
    "MedicationRequest": [
        _ID,
        SearchParameter("patient", "reference", "patient_id", "Subject patient"),
        SearchParameter("subject", "reference", "patient_id", "Subject patient"),
        SearchParameter("requester", "reference", "doctor_id", "Prescribing practitioner"),
        SearchParameter("status", "token", "status", "Prescription status", convert=_medication_status),
        SearchParameter("authoredon", "date", "created_at", "When the prescription was written"),
    ],
}

for _parameters in SEARCH_PARAMETERS.values():
    _parameters.append(_LAST_UPDATED)

_COMMON_SORT = {"_id": "id", "_lastUpdated": "updated_at"}

SORT_FIELDS: dict[str, dict[str, str]] = {
    "Patient": {**_COMMON_SORT, "name": "name", "family": "name", "given": "name",
                "birthdate": "birth_date", "gender": "gender"},
    "Practitioner": {**_COMMON_SORT, "name": "name", "family": "name", "given": "name"},
    "Organization": {**_COMMON_SORT, "name": "name"},
    "Appointment": {**_COMMON_SORT, "date": "scheduled_at", "status": "status"},
    "Observation": {**_COMMON_SORT, "date": "performed_at", "code": "test_code", "status": "status"},
    "Condition": {**_COMMON_SORT, "recorded-date": "created_at", "code": "icd_code"},
    "MedicationRequest": {**_COMMON_SORT, "authoredon": "created_at", "status": "status"},
}

DEFAULT_SORT: dict[str, list[SortKey]] = {
    "Appointment": [SortKey("scheduled_at", descending=True)],
}


def parameters_for(resource_type: str) -> list[SearchParameter]:
    return SEARCH_PARAMETERS.get(resource_type, [])


# ---------------------------------------------------------------------------
# Value parsing
# ---------------------------------------------------------------------------


def parse_date_param(raw: str) -> tuple[str, datetime, datetime | None]:
    """Split a date search value into (op, start, end).

    ``end`` is the exclusive upper bound of the value's precision for date-only
    values ("2024" covers the whole year) and None when a time was given.
    """
    match = _DATE_PARAM.match(raw.strip())
    if not match:
        raise InvalidResource(f"Invalid date search value: {raw!r}")
    prefix, text = match.groups()
    start = dt.parse_datetime(text, "date search value")

    end = None
    try:
        if re.fullmatch(r"\d{4}", text):
            end = start.replace(year=start.year + 1)
        elif re.fullmatch(r"\d{4}-\d{2}", text):
            end = (start + timedelta(days=32)).replace(day=1)
        elif re.fullmatch(r"\d{4}-\d{2}-\d{2}", text):
            end = start + timedelta(days=1)
    except (ValueError, OverflowError):
        # the period would end after datetime.max
        raise InvalidResource(f"Date search value out of range: {raw!r}")
    return DATE_PREFIXES[prefix or "eq"], start, end


def parse_sort(resource_type: str, raw: str) -> list[SortKey]:
    allowed = SORT_FIELDS.get(resource_type, _COMMON_SORT)
    keys = []
    for item in raw.split(","):
        item = item.strip()
        if not item:
            continue
        descending = item.startswith("-")
        name = item[1:] if descending else item
        if name not in allowed:
            raise InvalidResource(f"Unknown sort parameter for {resource_type}: {name}")
        keys.append(SortKey(allowed[name], descending))
    return keys


def _int_param(name: str, raw: str, minimum: int, maximum: int | None = None) -> int:
    try:
        value = int(raw)
    except ValueError:
        raise InvalidResource(f"Invalid {name}: {raw!r}")
    if value < minimum or (maximum is not None and value > maximum):
        bounds = f"{minimum}..{maximum}" if maximum is not None else f">= {minimum}"
        raise InvalidResource(f"{name} must be {bounds}, got {value}")
    return value


def _as_pairs(params: Mapping[str, Any] | Iterable[tuple[str, str]]) -> list[tuple[str, str]]:
    if isinstance(params, Mapping):
        items = params.items()
    else:
        items = params
    pairs = []
    for name, value in items:
        if isinstance(value, (list, tuple)):
            pairs.extend((name, str(v)) for v in value)
        else:
            pairs.append((name, str(value)))
    return pairs


def _date_predicates(parameter: SearchParameter, raw: str) -> list[Predicate]:
    op, start, end = parse_date_param(raw)
    if parameter.date_only:
        start_value: datetime | date = start.date()
        end_value: datetime | date | None = end.date() if end else None
    else:
        start_value, end_value = start, end
    if op == "eq" and end_value is not None:
        return [
            Predicate(parameter.field, "ge", start_value),
            Predicate(parameter.field, "lt", end_value),
        ]
    return [Predicate(parameter.field, op, start_value)]


def _identifier_predicate(parameter: SearchParameter, raw: str) -> Predicate:
    system, sep, value = raw.rpartition("|")
    column = parameter.field
    if sep and system:
        column = (parameter.systems or {}).get(system)
        if column is None:
            raise InvalidResource(f"Unsupported identifier system: {system}")
    digits = dt.digits_only(value)
    if not digits:
        raise InvalidResource(f"Invalid identifier search value: {raw!r}")
    return Predicate(column, "eq", digits)


def _predicates(parameter: SearchParameter, modifier: str, raw: str) -> list[Predicate]:
    if parameter.type == "identifier":
        return [_identifier_predicate(parameter, raw)]
    if raw == "":
        return []
    if parameter.type == "date":
        return _date_predicates(parameter, raw)
    if parameter.type == "reference":
        return [Predicate(parameter.field, "eq", dt.extract_reference_id(raw))]

    value = parameter.convert(raw) if parameter.convert else raw
    if parameter.type == "string":
        return [Predicate(parameter.field, "eq" if modifier == "exact" else "contains", value)]
    if isinstance(value, list):
        return [Predicate(parameter.field, "in", value)]
    return [Predicate(parameter.field, "eq", value)]


def translate(resource_type: str, params: Mapping[str, Any] | Iterable[tuple[str, str]]) -> SearchQuery:
    """Translate FHIR search parameters; repeated parameters are ANDed, unknown ones ignored."""
    pairs = _as_pairs(params)
    query = SearchQuery(
        resource_type=resource_type,
        count=settings.FHIR_DEFAULT_PAGE_SIZE,
        params=pairs,
    )
    definitions = {p.name: p for p in parameters_for(resource_type)}

    sort_values = []
    for name, raw in pairs:
        if name == "_count":
            query.count = _int_param("_count", raw, 1, settings.FHIR_MAX_PAGE_SIZE)
            continue
        if name == "_offset":
            query.offset = _int_param("_offset", raw, 0)
            continue
        if name == "_sort":
            sort_values.append(raw)
            continue

        base, _, modifier = name.partition(":")
        parameter = definitions.get(base)
        if parameter is None:
            continue
        if modifier and not (modifier == "exact" and parameter.type == "string"):
            raise InvalidResource(f"Unsupported modifier: {name}")
        query.predicates.extend(_predicates(parameter, modifier, raw.strip()))

    for raw in sort_values:
        query.sort.extend(parse_sort(resource_type, raw))
    if not query.sort:
        query.sort = list(DEFAULT_SORT.get(resource_type, [SortKey("created_at", descending=True)]))
    return query


def page_links(url: str, query: SearchQuery, total: int) -> list[dict[str, str]]:
    """self / next / previous links; each copies the original parameters with ``_offset`` replaced."""

    def link(relation: str, pairs: list[tuple[str, str]]) -> dict[str, str]:
        query_string = urlencode(pairs, doseq=True)
        return {"relation": relation, "url": f"{url}?{query_string}" if query_string else url}

    def with_offset(offset: int) -> list[tuple[str, str]]:
        return [(k, v) for k, v in query.params if k != "_offset"] + [("_offset", str(offset))]

    links = [link("self", query.params)]
    if query.offset + query.count < total:
        links.append(link("next", with_offset(query.offset + query.count)))
    if query.offset > 0:
        links.append(link("previous", with_offset(max(0, query.offset - query.count))))
    return links

"""Shared FHIR datatype helpers.

Pure functions for the small building blocks every converter needs:
identifiers, human names, references, instants and codeable concepts.
"""

from __future__ import annotations

import re
from datetime import date, datetime, timezone
from typing import Any

from clinic_fhir.fhir.errors import InvalidResource

FHIR_VERSION = "4.0.1"

NAMING_SYSTEM_BASE = "http://rnds.saude.gov.br/fhir/r4/NamingSystem"
CPF_SYSTEM = f"{NAMING_SYSTEM_BASE}/cpf"
CNS_SYSTEM = f"{NAMING_SYSTEM_BASE}/cns"
CRM_SYSTEM = f"{NAMING_SYSTEM_BASE}/crm"
CNPJ_SYSTEM = f"{NAMING_SYSTEM_BASE}/cnpj"

_NON_DIGITS = re.compile(r"[^0-9]")


def digits_only(value: str | None) -> str | None:
    """Strip punctuation from a national identifier ("123.456.789-01" -> "12345678901")."""
    if value is None:
        return None
    cleaned = _NON_DIGITS.sub("", str(value))
    return cleaned or None


def find_identifier(identifiers: list[dict[str, Any]] | None, system: str) -> dict[str, Any] | None:
    for identifier in identifiers or []:
        if identifier.get("system") == system:
            return identifier
    return None


def self_identifier(base_url: str, resource_type: str, resource_id: str) -> dict[str, Any]:
    """The ``usual`` identifier every resource carries, pointing at its own id."""
    return {
        "use": "usual",
        "system": f"{base_url}/NamingSystem/{resource_type.lower()}-id",
        "value": resource_id,
    }


def official_identifier(system: str, value: str) -> dict[str, Any]:
    return {"use": "official", "system": system, "value": value}


# ---------------------------------------------------------------------------
# Human names
# ---------------------------------------------------------------------------


def split_name(full_name: str | None) -> dict[str, Any] | None:
    """Split a free-text name: last token is the family name, the rest are given names.

    Lossy by construction ("Maria da Silva" -> given ["Maria", "da"], family "Silva");
    ``text`` always carries the original so re-conversion is stable.
    """
    if not full_name or not full_name.strip():
        return None
    tokens = full_name.split()
    return {
        "use": "official",
        "text": full_name,
        "family": tokens[-1],
        "given": tokens[:-1],
    }


def join_name(name: dict[str, Any] | None) -> str | None:
    if not name:
        return None
    text = (name.get("text") or "").strip()
    if text:
        return text
    parts = [name.get("family"), *(name.get("given") or [])]
    words = [word for part in parts if part for word in part.split()]
    return " ".join(words) or None


# ---------------------------------------------------------------------------
# Gender
# ---------------------------------------------------------------------------

_GENDER_TO_FHIR = {
    "MALE": "male",
    "FEMALE": "female",
    "OTHER": "other",
    "NOT_SPECIFIED": "unknown",
}
_GENDER_TO_INTERNAL = {fhir: internal for internal, fhir in _GENDER_TO_FHIR.items()}


def gender_to_fhir(gender: str | None) -> str:
    return _GENDER_TO_FHIR.get(gender or "", "unknown")


def gender_to_internal(gender: str | None) -> str:
    return _GENDER_TO_INTERNAL.get(gender or "", "NOT_SPECIFIED")


# ---------------------------------------------------------------------------
# References
# ---------------------------------------------------------------------------


def reference(resource_type: str, resource_id: str | None, display: str | None = None) -> dict[str, Any] | None:
    if not resource_id:
        return None
    return {"reference": f"{resource_type}/{resource_id}", "display": display}


def extract_reference_id(ref: str | None) -> str | None:
    """Return the id from "Patient/123", "http://x/fhir/Patient/123", "urn:uuid:123" or "123"."""
    if not ref:
        return None
    if ref.startswith("urn:uuid:"):
        return ref[len("urn:uuid:"):] or None
    return ref.rstrip("/").split("/")[-1] or None


def reference_id(ref_obj: dict[str, Any] | None, resource_type: str) -> str | None:
    """Id of a Reference whose target is ``resource_type``, else None."""
    ref = (ref_obj or {}).get("reference") or ""
    if not ref.startswith(f"{resource_type}/"):
        return None
    return extract_reference_id(ref)


# ---------------------------------------------------------------------------
# Dates and instants
# ---------------------------------------------------------------------------


def format_instant(value: datetime | None) -> str | None:
    """Render a stored naive-UTC datetime as a FHIR instant."""
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat()


def format_date(value: date | None) -> str | None:
    return value.isoformat() if value else None


def parse_datetime(value: str | None, field: str = "dateTime") -> datetime | None:
    """Parse a FHIR date/dateTime into naive UTC.

    Partial dates ("2024", "2024-06") are padded to their first instant.
    """
    if not value:
        return None
    text = value.strip()
    if re.fullmatch(r"\d{4}", text):
        text += "-01-01"
    elif re.fullmatch(r"\d{4}-\d{2}", text):
        text += "-01"
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
        if parsed.tzinfo is not None:
            parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    except (ValueError, OverflowError):
        raise InvalidResource(f"Invalid {field}: {value!r}")
    return parsed


def parse_date(value: str | None, field: str = "date") -> date | None:
    if not value:
        return None
    try:
        return date.fromisoformat(value[:10])
    except ValueError:
        raise InvalidResource(f"Invalid {field}: {value!r}")


# ---------------------------------------------------------------------------
# Codeable concepts and misc
# ---------------------------------------------------------------------------


def codeable_concept(system: str, code: str | None, display: str | None = None, text: str | None = None) -> dict[str, Any]:
    return {
        "coding": [{"system": system, "code": code, "display": display}],
        "text": text,
    }


def first_coding(concept: dict[str, Any] | None, system: str | None = None) -> dict[str, Any]:
    """First coding of a CodeableConcept, preferring ``system`` when given."""
    codings = (concept or {}).get("coding") or []
    if system:
        for coding in codings:
            if coding.get("system") == system:
                return coding
    return codings[0] if codings else {}


def concept_text(concept: dict[str, Any] | None) -> str | None:
    if not concept:
        return None
    return concept.get("text") or first_coding(concept).get("display")


def format_number(value: float | int | None) -> str | None:
    """Render a JSON number the way it was most likely typed (5.0 -> "5")."""
    if value is None:
        return None
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def parse_number(value: str | None) -> float | None:
    """Strict float parse; None for free text, NaN or infinity."""
    if value is None:
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    if number != number or number in (float("inf"), float("-inf")):
        return None
    return number


def compact(value: Any) -> Any:
    """Drop None, empty lists and empty dicts recursively; FHIR JSON forbids empties."""
    if isinstance(value, dict):
        cleaned = {k: compact(v) for k, v in value.items()}
        return {k: v for k, v in cleaned.items() if v not in (None, [], {})}
    if isinstance(value, list):
        cleaned = [compact(v) for v in value]
        return [v for v in cleaned if v not in (None, [], {})]
    return value

"""CapabilityStatement and SMART discovery documents.

The CapabilityStatement is derived from the handler registry and the search
parameter definitions, so it only ever advertises what the server does.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from clinic_fhir.config import settings
from clinic_fhir.fhir.datatypes import FHIR_VERSION, format_instant
from clinic_fhir.fhir.resources import HANDLERS, Interaction, ResourceKind
from clinic_fhir.fhir.search import parameters_for
from clinic_fhir.schemas.api import SmartConfiguration

SERVER_NAME = "ClinicFHIRServer"
SOFTWARE_VERSION = "1.0.0"

GLOBAL_SEARCH_PARAMS = [
    {"name": "_count", "type": "number", "documentation": "Page size (1-100, default 20)"},
    {"name": "_offset", "type": "number", "documentation": "Number of matches to skip"},
    {"name": "_sort", "type": "string", "documentation": "Comma separated sort keys, '-' for descending"},
    {"name": "_lastUpdated", "type": "date", "documentation": "When the resource last changed"},
]


def _search_params(resource_type: str) -> list[dict[str, str]]:
    return [
        {"name": p.name, "type": "token" if p.type == "identifier" else p.type, "documentation": p.documentation}
        for p in parameters_for(resource_type)
    ]


def _resource_entry(handler, base_url: str) -> dict[str, Any]:
    entry: dict[str, Any] = {
        "type": handler.resource_type,
        "profile": f"http://hl7.org/fhir/StructureDefinition/{handler.resource_type}",
        "interaction": [{"code": i.value} for i in Interaction if handler.supports(i)],
        "versioning": "versioned",
        "readHistory": False,
        "updateCreate": False,
        "searchParam": _search_params(handler.resource_type),
    }
    if handler.kind is ResourceKind.PATIENT:
        entry["operation"] = [
            {"name": "everything", "definition": f"{base_url}/OperationDefinition/Patient-everything"}
        ]
    return entry


def capability_statement(base_url: str = settings.FHIR_BASE_URL) -> dict[str, Any]:
    return {
        "resourceType": "CapabilityStatement",
        "id": "clinic-fhir-server",
        "url": f"{base_url}/metadata",
        "version": SOFTWARE_VERSION,
        "name": SERVER_NAME,
        "title": "Clinic FHIR Server",
        "status": "active",
        "experimental": False,
        "date": format_instant(datetime.now(timezone.utc)),
        "publisher": "Clinic FHIR",
        "description": "FHIR R4 interoperability layer for the clinic platform",
        "kind": "instance",
        "software": {"name": "Clinic FHIR Server", "version": SOFTWARE_VERSION},
        "implementation": {"description": "Clinic FHIR API", "url": base_url},
        "fhirVersion": FHIR_VERSION,
        "format": ["json", "xml"],
        "rest": [
            {
                "mode": "server",
                "documentation": "RESTful FHIR server",
                "security": {
                    "cors": True,
                    "service": [
                        {
                            "coding": [
                                {
                                    "system": "http://terminology.hl7.org/CodeSystem/restful-security-service",
                                    "code": "OAuth",
                                    "display": "OAuth2 Token",
                                }
                            ]
                        }
                    ],
                    "description": "OAuth2 authentication required",
                },
                "resource": [_resource_entry(handler, base_url) for handler in HANDLERS.values()],
                "interaction": [{"code": "transaction"}, {"code": "batch"}],
                "searchParam": GLOBAL_SEARCH_PARAMS,
            }
        ],
    }


def smart_configuration(auth_url: str = settings.AUTH_URL) -> SmartConfiguration:
    return SmartConfiguration.for_auth_server(auth_url)

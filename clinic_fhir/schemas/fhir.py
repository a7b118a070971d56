"""
JSON schemas for inbound FHIR R4 resources.

Structural contract only: the elements each converter relies on, with the
cardinality FHIR (or the internal model) requires. Status and gender codes are
deliberately left as plain strings; unmapped codes fall back to conservative
defaults in the converters instead of being rejected here.
"""

_DRAFT = "http://json-schema.org/draft-07/schema#"

_STRING = {"type": "string"}

_REFERENCE = {
    "type": "object",
    "properties": {"reference": _STRING, "display": _STRING},
}

_CODING = {
    "type": "object",
    "properties": {"system": _STRING, "code": _STRING, "display": _STRING},
}

_CODEABLE_CONCEPT = {
    "type": "object",
    "properties": {
        "coding": {"type": "array", "items": _CODING},
        "text": _STRING,
    },
}

_IDENTIFIERS = {
    "type": "array",
    "items": {
        "type": "object",
        "properties": {"system": _STRING, "value": _STRING, "use": _STRING},
    },
}

_HUMAN_NAMES = {
    "type": "array",
    "minItems": 1,
    "items": {
        "type": "object",
        "properties": {
            "text": {"type": "string", "minLength": 1},
            "family": {"type": "string", "minLength": 1},
            "given": {"type": "array", "items": _STRING},
        },
        "anyOf": [{"required": ["text"]}, {"required": ["family"]}, {"required": ["given"]}],
    },
}

_TELECOM = {
    "type": "array",
    "items": {
        "type": "object",
        "properties": {"system": _STRING, "value": _STRING, "use": _STRING},
    },
}

_ADDRESSES = {
    "type": "array",
    "items": {
        "type": "object",
        "properties": {
            "line": {"type": "array", "items": _STRING},
            "city": _STRING,
            "state": _STRING,
            "postalCode": _STRING,
        },
    },
}

_QUANTITY = {
    "type": "object",
    "properties": {"value": {"type": "number"}, "unit": _STRING},
}


def _resource(resource_type: str, required: list[str], properties: dict) -> dict:
    return {
        "$schema": _DRAFT,
        "title": f"FHIR R4 {resource_type} (inbound subset)",
        "type": "object",
        "required": ["resourceType", *required],
        "properties": {
            "resourceType": {"type": "string", "const": resource_type},
            "id": _STRING,
            **properties,
        },
    }


FHIR_PATIENT_SCHEMA: dict = _resource(
    "Patient",
    ["name"],
    {
        "identifier": _IDENTIFIERS,
        "active": {"type": "boolean"},
        "name": _HUMAN_NAMES,
        "telecom": _TELECOM,
        "gender": _STRING,
        "birthDate": {"type": "string", "pattern": "^\\d{4}-\\d{2}-\\d{2}$"},
        "address": _ADDRESSES,
        "managingOrganization": _REFERENCE,
    },
)

FHIR_PRACTITIONER_SCHEMA: dict = _resource(
    "Practitioner",
    ["name"],
    {
        "identifier": _IDENTIFIERS,
        "active": {"type": "boolean"},
        "name": _HUMAN_NAMES,
        "telecom": _TELECOM,
        "qualification": {
            "type": "array",
            "items": {"type": "object", "properties": {"code": _CODEABLE_CONCEPT}},
        },
    },
)

FHIR_ORGANIZATION_SCHEMA: dict = _resource(
    "Organization",
    ["name"],
    {
        "identifier": _IDENTIFIERS,
        "active": {"type": "boolean"},
        "name": {"type": "string", "minLength": 1},
        "telecom": _TELECOM,
        "address": _ADDRESSES,
    },
)

FHIR_APPOINTMENT_SCHEMA: dict = _resource(
    "Appointment",
    ["status", "participant", "start"],
    {
        "status": _STRING,
        "start": _STRING,
        "end": _STRING,
        "minutesDuration": {"type": "integer", "minimum": 0},
        "comment": _STRING,
        "appointmentType": _CODEABLE_CONCEPT,
        "serviceType": {"type": "array", "items": _CODEABLE_CONCEPT},
        "participant": {
            "type": "array",
            "minItems": 1,
            "items": {
                "type": "object",
                "properties": {"actor": _REFERENCE, "status": _STRING},
            },
        },
    },
)

FHIR_OBSERVATION_SCHEMA: dict = _resource(
    "Observation",
    ["status", "code", "subject"],
    {
        "status": _STRING,
        "code": _CODEABLE_CONCEPT,
        "subject": _REFERENCE,
        "effectiveDateTime": _STRING,
        "valueQuantity": _QUANTITY,
        "valueString": _STRING,
        "interpretation": {"type": "array", "items": _CODEABLE_CONCEPT},
        "referenceRange": {
            "type": "array",
            "items": {"type": "object", "properties": {"low": _QUANTITY, "high": _QUANTITY}},
        },
        "note": {"type": "array", "items": {"type": "object", "properties": {"text": _STRING}}},
    },
)

FHIR_CONDITION_SCHEMA: dict = _resource(
    "Condition",
    ["subject"],
    {
        "code": _CODEABLE_CONCEPT,
        "subject": _REFERENCE,
        "encounter": _REFERENCE,
        "note": {"type": "array", "items": {"type": "object", "properties": {"text": _STRING}}},
    },
)

FHIR_MEDICATION_REQUEST_SCHEMA: dict = _resource(
    "MedicationRequest",
    ["status", "intent", "subject"],
    {
        "status": _STRING,
        "intent": _STRING,
        "subject": _REFERENCE,
        "requester": _REFERENCE,
        "medicationCodeableConcept": _CODEABLE_CONCEPT,
        "dosageInstruction": {"type": "array", "items": {"type": "object"}},
        "dispenseRequest": {"type": "object"},
    },
)

FHIR_BUNDLE_SCHEMA: dict = {
    "$schema": _DRAFT,
    "title": "FHIR R4 Bundle (transaction/batch)",
    "type": "object",
    "required": ["resourceType", "type"],
    "properties": {
        "resourceType": {"type": "string", "const": "Bundle"},
        "type": _STRING,
        "entry": {
            "type": "array",
            "items": {
                "type": "object",
                "properties": {
                    "fullUrl": _STRING,
                    "resource": {"type": "object"},
                    "request": {
                        "type": "object",
                        "properties": {
                            "method": _STRING,
                            "url": _STRING,
                            "ifMatch": _STRING,
                        },
                    },
                },
            },
        },
    },
}

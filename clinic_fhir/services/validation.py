"""
JSON Schema validation service.

Collects all errors rather than failing on the first one, so an invalid
resource is reported with every problem in a single OperationOutcome.
"""

from typing import Any

import jsonschema

from clinic_fhir.fhir.errors import InvalidResource


def validate_against_schema(data: dict[str, Any], schema: dict[str, Any]) -> list[str]:
    """
    Validate a dict against a JSON schema.
    Returns a list of error messages (empty list = valid).
    """
    validator = jsonschema.Draft7Validator(schema)
    messages = []
    for error in sorted(validator.iter_errors(data), key=lambda e: [str(p) for p in e.absolute_path]):
        path = ".".join(str(p) for p in error.absolute_path)
        messages.append(f"{path}: {error.message}" if path else error.message)
    return messages


def require_valid(data: Any, schema: dict[str, Any], label: str) -> None:
    """Raise InvalidResource when ``data`` does not satisfy ``schema``."""
    if not isinstance(data, dict):
        raise InvalidResource(f"{label} must be a JSON object")
    errors = validate_against_schema(data, schema)
    if errors:
        raise InvalidResource(f"Invalid {label}: " + "; ".join(errors))

"""Typed errors raised by the FHIR layer, each renderable as an OperationOutcome."""

from __future__ import annotations

from typing import Any


def operation_outcome(code: str, diagnostics: str, severity: str = "error") -> dict[str, Any]:
    return {
        "resourceType": "OperationOutcome",
        "issue": [
            {
                "severity": severity,
                "code": code,
                "diagnostics": diagnostics,
            }
        ],
    }


class FHIRError(Exception):
    """Base class; subclasses fix the HTTP status and the issue code."""

    status_code: int = 400
    reason: str = "Bad Request"
    issue_code: str = "processing"

    def __init__(self, diagnostics: str):
        super().__init__(diagnostics)
        self.diagnostics = diagnostics

    @property
    def status_line(self) -> str:
        return f"{self.status_code} {self.reason}"

    def to_operation_outcome(self) -> dict[str, Any]:
        return operation_outcome(self.issue_code, self.diagnostics)


class ResourceNotFound(FHIRError):
    status_code = 404
    reason = "Not Found"
    issue_code = "not-found"

    def __init__(self, resource_type: str, resource_id: str):
        super().__init__(f"{resource_type}/{resource_id} not found")
        self.resource_type = resource_type
        self.resource_id = resource_id


class InvalidResource(FHIRError):
    issue_code = "invalid"


class UnsupportedResourceType(FHIRError):
    issue_code = "not-supported"

    def __init__(self, resource_type: str):
        super().__init__(f"Unsupported resource type: {resource_type}")
        self.resource_type = resource_type


class UnsupportedInteraction(FHIRError):
    issue_code = "not-supported"

    def __init__(self, resource_type: str, interaction: str):
        super().__init__(f"{interaction} not supported for: {resource_type}")
        self.resource_type = resource_type
        self.interaction = interaction


class VersionConflict(FHIRError):
    status_code = 409
    reason = "Conflict"
    issue_code = "conflict"

    def __init__(self, resource_type: str, resource_id: str, expected: int, current: int):
        super().__init__(
            f"{resource_type}/{resource_id} is at version {current}, "
            f"If-Match expected version {expected}"
        )
        self.expected = expected
        self.current = current

"""Pydantic models for the non-FHIR JSON endpoints."""

from __future__ import annotations

from pydantic import BaseModel


# ---------------------------------------------------------------------------
# SMART on FHIR discovery
# ---------------------------------------------------------------------------

class SmartConfiguration(BaseModel):
    """``/.well-known/smart-configuration`` document."""
    authorization_endpoint: str
    token_endpoint: str
    token_endpoint_auth_methods_supported: list[str] = ["client_secret_basic", "client_secret_post"]
    registration_endpoint: str
    scopes_supported: list[str] = [
        "openid",
        "profile",
        "fhirUser",
        "launch",
        "launch/patient",
        "patient/*.read",
        "patient/*.write",
        "user/*.read",
        "user/*.write",
        "offline_access",
    ]
    response_types_supported: list[str] = ["code"]
    management_endpoint: str
    introspection_endpoint: str
    revocation_endpoint: str
    capabilities: list[str] = [
        "launch-ehr",
        "launch-standalone",
        "client-public",
        "client-confidential-symmetric",
        "context-passthrough-banner",
        "context-passthrough-style",
        "context-ehr-patient",
        "context-standalone-patient",
        "permission-offline",
        "permission-patient",
        "permission-user",
        "sso-openid-connect",
    ]
    code_challenge_methods_supported: list[str] = ["S256"]

    @classmethod
    def for_auth_server(cls, auth_url: str) -> "SmartConfiguration":
        return cls(
            authorization_endpoint=f"{auth_url}/authorize",
            token_endpoint=f"{auth_url}/token",
            registration_endpoint=f"{auth_url}/register",
            management_endpoint=f"{auth_url}/manage",
            introspection_endpoint=f"{auth_url}/introspect",
            revocation_endpoint=f"{auth_url}/revoke",
        )


# ---------------------------------------------------------------------------
# Health check
# ---------------------------------------------------------------------------

class HealthResponse(BaseModel):
    status: str = "healthy"
    environment: str
    database: str = "connected"

"""Resource identity, versioning and searchset Bundle assembly.

ETag and Location values are only ever produced here so the HTTP headers and
the Bundle entry responses always agree.
"""

from __future__ import annotations

import re
import uuid
from datetime import datetime, timezone
from typing import Any, Iterable

from clinic_fhir.fhir.datatypes import format_instant
from clinic_fhir.fhir.errors import InvalidResource

_ETAG = re.compile(r'^(?:W/"(\d+)"|"(\d+)"|(\d+))$')


def meta(record: Any, profile: str | None = None) -> dict[str, Any]:
    result = {
        "versionId": str(record.version or 1),
        "lastUpdated": format_instant(record.updated_at or record.created_at),
    }
    if profile:
        result["profile"] = [profile]
    return result


def etag(version: int) -> str:
    return f'W/"{version}"'


def parse_etag(value: str) -> int:
    """Version number from ``W/"n"``, ``"n"`` or a bare ``n``."""
    match = _ETAG.match((value or "").strip())
    if not match:
        raise InvalidResource(f"Invalid ETag: {value!r}")
    return int(next(g for g in match.groups() if g))


def location(resource_type: str, resource_id: str) -> str:
    return f"{resource_type}/{resource_id}"


def full_url(base_url: str, resource_type: str, resource_id: str) -> str:
    return f"{base_url}/{resource_type}/{resource_id}"


def searchset(
    base_url: str,
    matches: Iterable[dict[str, Any]],
    total: int,
    links: list[dict[str, str]],
    includes: Iterable[dict[str, Any]] = (),
) -> dict[str, Any]:
    """Build a searchset Bundle; ``matches`` get mode ``match``, ``includes`` mode ``include``."""
    entries = []
    for mode, resources in (("match", matches), ("include", includes)):
        for resource in resources:
            entries.append(
                {
                    "fullUrl": full_url(base_url, resource["resourceType"], resource["id"]),
                    "resource": resource,
                    "search": {"mode": mode},
                }
            )
    return {
        "resourceType": "Bundle",
        "id": str(uuid.uuid4()),
        "type": "searchset",
        "timestamp": format_instant(datetime.now(timezone.utc)),
        "total": total,
        "link": links,
        "entry": entries,
    }

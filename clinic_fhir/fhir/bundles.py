"""
Transaction and batch Bundle processing.

transaction: every entry runs in the request's database transaction. The
first failure rolls the whole Bundle back and is raised as the single error.

batch: every entry runs in its own SAVEPOINT. A failing entry is rolled back
alone and reported in its response slot; the rest are committed.
"""

from __future__ import annotations

import logging
from typing import Any

from sqlalchemy.orm import Session

from clinic_fhir.fhir.datatypes import format_instant
from clinic_fhir.fhir.errors import FHIRError, InvalidResource, operation_outcome
from clinic_fhir.fhir.identity import etag, full_url, location, parse_etag
from clinic_fhir.fhir.resources import get_handler
from clinic_fhir.schemas.fhir import FHIR_BUNDLE_SCHEMA
from clinic_fhir.services.validation import require_valid

logger = logging.getLogger(__name__)

BUNDLE_TYPES = {"transaction": "transaction-response", "batch": "batch-response"}


class BundleProcessor:
    def __init__(self, db: Session, base_url: str):
        self.db = db
        self.base_url = base_url.rstrip("/")
        # urn:uuid fullUrl -> "Type/id" for entries created earlier in a transaction
        self.resolved: dict[str, str] = {}
        self.transactional = False

    def process(self, bundle: Any, actor: str) -> dict[str, Any]:
        require_valid(bundle, FHIR_BUNDLE_SCHEMA, "Bundle")
        bundle_type = bundle["type"]
        if bundle_type not in BUNDLE_TYPES:
            raise InvalidResource(f"Bundle type must be transaction or batch, got {bundle_type!r}")

        entries = bundle.get("entry") or []
        self.transactional = bundle_type == "transaction"
        if bundle_type == "transaction":
            responses = self._transaction(entries, actor)
        else:
            responses = self._batch(entries, actor)

        return {
            "resourceType": "Bundle",
            "type": BUNDLE_TYPES[bundle_type],
            "entry": responses,
        }

    def _transaction(self, entries: list[dict[str, Any]], actor: str) -> list[dict[str, Any]]:
        responses = []
        try:
            for index, entry in enumerate(entries):
                responses.append(self._process_entry(entry, actor, index))
        except Exception:
            self.db.rollback()
            logger.info("Transaction Bundle rolled back after %d of %d entries", len(responses), len(entries))
            raise
        self.db.commit()
        logger.info("Transaction Bundle committed: %d entries", len(entries))
        return responses

    def _batch(self, entries: list[dict[str, Any]], actor: str) -> list[dict[str, Any]]:
        responses = []
        failed = 0
        for index, entry in enumerate(entries):
            try:
                with self.db.begin_nested():
                    responses.append(self._process_entry(entry, actor, index))
            except FHIRError as exc:
                failed += 1
                logger.warning("Batch entry %d failed: %s", index, exc.diagnostics)
                responses.append(
                    {
                        "resource": exc.to_operation_outcome(),
                        "response": {"status": exc.status_line},
                    }
                )
            except Exception as exc:
                failed += 1
                logger.warning("Batch entry %d failed: %s", index, exc)
                responses.append(
                    {
                        "resource": operation_outcome("exception", str(exc)),
                        "response": {"status": "400 Bad Request"},
                    }
                )
        self.db.commit()
        logger.info("Batch Bundle processed: %d entries, %d failed", len(entries), failed)
        return responses

    # -- single entry -------------------------------------------------------

    def parse_url(self, url: str) -> tuple[str, str | None]:
        """``Type[/id]`` from an entry url; tolerates a leading base URL and a query string."""
        if url.startswith(self.base_url):
            url = url[len(self.base_url):]
        path = url.split("?", 1)[0].strip("/")
        parts = path.split("/") if path else []
        if not parts:
            raise InvalidResource(f"Invalid Bundle entry url: {url!r}")
        return parts[0], parts[1] if len(parts) > 1 else None

    def _process_entry(self, entry: dict[str, Any], actor: str, index: int) -> dict[str, Any]:
        request = entry.get("request")
        if not request:
            raise InvalidResource(f"Bundle entry {index} has no request")
        method = (request.get("method") or "").upper()
        resource_type, resource_id = self.parse_url(request.get("url") or "")
        handler = get_handler(resource_type)
        resource = self._resolve_references(entry.get("resource"))

        if method == "POST":
            self._check_body(resource, resource_type, index)
            row = handler.create(self.db, resource, actor)
            full_url_value = entry.get("fullUrl") or ""
            if self.transactional and full_url_value.startswith("urn:uuid:"):
                self.resolved[full_url_value] = location(resource_type, row.id)
            return self._response(handler, row, "201 Created")

        if resource_id is None:
            raise InvalidResource(f"Bundle entry {index}: {method or 'request'} requires a resource id")

        if method == "PUT":
            self._check_body(resource, resource_type, index)
            if_match = request.get("ifMatch")
            row = handler.update(
                self.db,
                resource_id,
                resource,
                actor,
                if_match=parse_etag(if_match) if if_match else None,
            )
            return self._response(handler, row, "200 OK")
        if method == "GET":
            return self._response(handler, handler.read(self.db, resource_id), "200 OK")
        if method == "DELETE":
            row = handler.delete(self.db, resource_id, actor)
            return {"response": {"status": "204 No Content", "lastModified": format_instant(row.updated_at)}}
        raise InvalidResource(f"Bundle entry {index}: unsupported method {method!r}")

    def _check_body(self, resource: Any, resource_type: str, index: int) -> None:
        if not isinstance(resource, dict):
            raise InvalidResource(f"Bundle entry {index} has no resource")
        if resource.get("resourceType") != resource_type:
            raise InvalidResource(
                f"Bundle entry {index}: resourceType {resource.get('resourceType')!r} "
                f"does not match url type {resource_type}"
            )

    def _response(self, handler, row: Any, status: str) -> dict[str, Any]:
        return {
            "fullUrl": full_url(self.base_url, handler.resource_type, row.id),
            "resource": handler.to_fhir(row),
            "response": {
                "status": status,
                "location": location(handler.resource_type, row.id),
                "etag": etag(row.version),
                "lastModified": format_instant(row.updated_at),
            },
        }

    def _resolve_references(self, value: Any) -> Any:
        """Rewrite ``urn:uuid`` references to entries already created in this Bundle."""
        if not self.resolved:
            return value
        if isinstance(value, dict):
            return {
                key: self.resolved.get(item, item)
                if key == "reference" and isinstance(item, str)
                else self._resolve_references(item)
                for key, item in value.items()
            }
        if isinstance(value, list):
            return [self._resolve_references(item) for item in value]
        return value

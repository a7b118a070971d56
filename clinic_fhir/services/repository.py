"""Query helpers shared by the resource handlers.

Every lookup here hides soft-deleted rows; callers never filter on
``deleted_at`` themselves.
"""

from __future__ import annotations

from typing import Any, Iterable, TypeVar

from sqlalchemy import func
from sqlalchemy.orm import Session

from clinic_fhir.fhir.errors import InvalidResource
from clinic_fhir.fhir.search import Predicate, SearchQuery, SortKey
from clinic_fhir.models.clinical import utcnow

ModelT = TypeVar("ModelT")


def _column(model: Any, name: str):
    column = getattr(model, name, None)
    if column is None:
        raise InvalidResource(f"{model.__name__} cannot be filtered on {name}")
    return column


def to_clause(model: Any, predicate: Predicate):
    """Translate one search predicate into a SQLAlchemy boolean expression."""
    column = _column(model, predicate.field)
    op, value = predicate.op, predicate.value
    if op == "eq":
        return column.is_(None) if value is None else column == value
    if op == "ne":
        return column.is_not(None) if value is None else column != value
    if op == "lt":
        return column < value
    if op == "gt":
        return column > value
    if op == "le":
        return column <= value
    if op == "ge":
        return column >= value
    if op == "contains":
        return func.lower(column).contains(str(value).lower(), autoescape=True)
    if op == "in":
        return column.in_(list(value))
    raise InvalidResource(f"Unsupported search operator: {op}")


def live(db: Session, model: type[ModelT], predicates: Iterable[Predicate] = ()):
    """Query over rows that are not soft-deleted, filtered by ``predicates``."""
    query = db.query(model).filter(model.deleted_at.is_(None))
    for predicate in predicates:
        query = query.filter(to_clause(model, predicate))
    return query


def ordered(query, model: Any, sort: Iterable[SortKey]):
    clauses = [
        _column(model, key.field).desc() if key.descending else _column(model, key.field).asc()
        for key in sort
    ]
    # id as the final tie-breaker keeps paging stable
    clauses.append(model.id.asc())
    return query.order_by(*clauses)


def get(db: Session, model: type[ModelT], resource_id: str) -> ModelT | None:
    return live(db, model).filter(model.id == resource_id).first()


def exists(db: Session, model: Any, resource_id: str) -> bool:
    return get(db, model, resource_id) is not None


def add(db: Session, row: ModelT) -> ModelT:
    db.add(row)
    db.flush()
    return row


def search(db: Session, model: type[ModelT], query: SearchQuery) -> tuple[list[ModelT], int]:
    """One page of matches plus the total match count."""
    base = live(db, model, query.predicates)
    total = base.count()
    rows = ordered(base, model, query.sort).offset(query.offset).limit(query.count).all()
    return rows, total


def find_all(
    db: Session,
    model: type[ModelT],
    predicates: Iterable[Predicate],
    sort: Iterable[SortKey] = (),
) -> list[ModelT]:
    return ordered(live(db, model, predicates), model, sort).all()


def soft_delete(db: Session, row: Any) -> None:
    row.deleted_at = utcnow()
    db.flush()

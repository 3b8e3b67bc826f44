from math import ceil
from typing import Any

from sqlalchemy import func, or_, select
from sqlalchemy.orm import Session
from sqlalchemy.sql import Select

from clearledger.interfaces.api.v1.schemas.pagination import PaginationMeta


def apply_search_filter(query: Select, search: str | None, search_columns: list[Any]) -> Select:
    if not search or not search_columns:
        return query
    pattern = f"%{search}%"
    return query.where(or_(*(column.ilike(pattern) for column in search_columns)))


def _count(db: Session, query: Select) -> int:
    return db.execute(select(func.count()).select_from(query.order_by(None).subquery())).scalar_one()


def build_pagination_meta(*, offset: int, limit: int, total: int, filtered_total: int) -> PaginationMeta:
    return PaginationMeta(
        offset=offset,
        limit=limit,
        total=total,
        filtered_total=filtered_total,
        total_pages=ceil(total / limit) if total > 0 else 0,
        filtered_total_pages=ceil(filtered_total / limit) if filtered_total > 0 else 0,
        current_page=(offset // limit) + 1 if filtered_total > 0 else 0,
        has_next=(offset + limit) < filtered_total,
        has_prev=offset > 0,
    )


def paginate_scalars(
    db: Session,
    base_query: Select,
    *,
    offset: int,
    limit: int,
    search: str | None = None,
    search_columns: list[Any] | None = None,
) -> tuple[list[Any], PaginationMeta]:
    """Page through ``base_query``; totals are counted before and after the search filter."""
    filtered_query = apply_search_filter(base_query, search, search_columns or [])
    total = _count(db, base_query)
    filtered_total = total if filtered_query is base_query else _count(db, filtered_query)
    items = list(db.execute(filtered_query.offset(offset).limit(limit)).scalars().all())
    return items, build_pagination_meta(offset=offset, limit=limit, total=total, filtered_total=filtered_total)

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from typing import Any

from sqlalchemy import func, or_
from sqlmodel import Session, col, select


@dataclass(frozen=True)
class PageQuery:
    page: int = 1
    per_page: int = 10
    sort: str = ""
    order: str = "asc"
    filter: str = ""

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.per_page


def fetch_page(
    session: Session,
    statement: Any,
    query: PageQuery,
    *,
    sort_columns: Mapping[str, Any],
    filter_columns: Sequence[Any],
    default_sort: str,
) -> tuple[list[Any], int]:
    """Apply filter, sort and slicing to ``statement``; returns ``(rows, total)``.

    An unknown sort key falls back to ``default_sort``.  The filter is a
    case-insensitive substring match against any of ``filter_columns``.
    """
    if query.filter:
        pattern = f"%{query.filter.lower()}%"
        statement = statement.where(
            or_(*[func.lower(func.coalesce(column, "")).like(pattern) for column in filter_columns])
        )

    total = session.exec(select(func.count()).select_from(statement.subquery())).one()

    sort_column = col(sort_columns.get(query.sort, sort_columns[default_sort]))
    ordering = sort_column.desc() if query.order == "desc" else sort_column.asc()
    rows = session.exec(statement.order_by(ordering).offset(query.offset).limit(query.per_page)).all()
    return list(rows), int(total)

"""Generic paginated listing over SQLAlchemy ``select()`` statements."""
from __future__ import annotations

import dataclasses
import math
import re
from collections.abc import Callable
from typing import Any, Generic, TypeVar

from sqlalchemy import Select, func, select
from sqlalchemy.ext.asyncio import AsyncSession

T = TypeVar("T")

DEFAULT_PAGE = 1
DEFAULT_LIMIT = 10
MAX_LIMIT = 100
DEFAULT_SORT_BY = "created_at"
DEFAULT_SORT_ORDER = "DESC"

_CAMEL_RE = re.compile(r"(?<!^)(?=[A-Z])")


@dataclasses.dataclass(frozen=True)
class PageParams:
    page: int = DEFAULT_PAGE
    limit: int = DEFAULT_LIMIT
    sort_by: str = DEFAULT_SORT_BY
    sort_order: str = DEFAULT_SORT_ORDER

    @classmethod
    def normalize(
        cls,
        page: int | None = None,
        limit: int | None = None,
        sort_by: str | None = None,
        sort_order: str | None = None,
    ) -> PageParams:
        """Apply defaults, clamp ``page``/``limit`` and canonicalise sorting.

        ``limit`` above 100 is clamped rather than rejected; ``sort_order`` is
        case-insensitive and anything other than ASC/DESC becomes DESC.
        """
        page = DEFAULT_PAGE if page is None else max(1, int(page))
        limit = DEFAULT_LIMIT if limit is None else max(1, min(MAX_LIMIT, int(limit)))
        order = (sort_order or DEFAULT_SORT_ORDER).upper()
        if order not in ("ASC", "DESC"):
            order = DEFAULT_SORT_ORDER
        sort_by = _CAMEL_RE.sub("_", sort_by).lower() if sort_by else DEFAULT_SORT_BY
        return cls(page=page, limit=limit, sort_by=sort_by, sort_order=order)

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.limit


@dataclasses.dataclass
class Page(Generic[T]):
    items: list[T]
    total_items: int
    params: PageParams

    @property
    def total_pages(self) -> int:
        return math.ceil(self.total_items / self.params.limit)

    @property
    def pagination(self) -> dict[str, Any]:
        return {
            "currentPage": self.params.page,
            "totalPages": self.total_pages,
            "totalItems": self.total_items,
            "itemsPerPage": self.params.limit,
            "hasNextPage": self.params.page < self.total_pages,
            "hasPreviousPage": self.params.page > 1,
        }

    def to_dict(self, serialize: Callable[[T], Any]) -> dict[str, Any]:
        return {
            "items": [serialize(item) for item in self.items],
            "pagination": self.pagination,
        }


def sort_column(model: Any, sort_by: str):
    """Column named *sort_by* on *model*, falling back to ``created_at``."""
    columns = model.__table__.columns
    if sort_by in columns:
        return columns[sort_by]
    return columns[DEFAULT_SORT_BY]


async def paginate(
    db: AsyncSession,
    stmt: Select,
    model: Any,
    params: PageParams,
) -> Page:
    count_stmt = select(func.count()).select_from(stmt.order_by(None).subquery())
    total = (await db.execute(count_stmt)).scalar_one()

    column = sort_column(model, params.sort_by)
    ordering = column.asc() if params.sort_order == "ASC" else column.desc()
    data_stmt = (
        stmt
        .order_by(ordering, model.id)
        .offset(params.offset)
        .limit(params.limit)
    )
    result = await db.execute(data_stmt)
    return Page(items=list(result.scalars().unique().all()), total_items=total, params=params)

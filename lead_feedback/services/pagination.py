# lead_feedback/services/pagination.py
from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from sqlalchemy import Select, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from lead_feedback.core.config import settings
from lead_feedback.core.exceptions import ValidationError


@dataclass(frozen=True)
class PageParams:
    page: int
    page_size: int

    @property
    def skip(self) -> int:
        return (self.page - 1) * self.page_size

    @property
    def limit(self) -> int:
        return self.page_size


def normalize_page(page: Optional[int] = None, page_size: Optional[int] = None) -> PageParams:
    """Validate 1-based paging input, capping page_size at feedback_max_page_size."""
    page = 1 if page is None else int(page)
    page_size = settings.feedback_page_size if page_size is None else int(page_size)

    if page < 1:
        raise ValidationError("page must be >= 1", details={"page": page})
    if page_size < 1:
        raise ValidationError("page_size must be >= 1", details={"page_size": page_size})

    return PageParams(page=page, page_size=min(page_size, settings.feedback_max_page_size))


def page_count(total: int, page_size: int) -> int:
    return (total + page_size - 1) // page_size


async def count_rows(session: AsyncSession, stmt: Select) -> int:
    total_stmt = select(func.count()).select_from(stmt.order_by(None).subquery())
    return int((await session.execute(total_stmt)).scalar() or 0)

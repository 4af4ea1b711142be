"""Offset pagination shared by list endpoints."""
from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Any, Generic, List, TypeVar

from sqlalchemy import Select, func, select
from sqlalchemy.ext.asyncio import AsyncSession

T = TypeVar("T")


@dataclass
class Page(Generic[T]):
    items: List[T]
    total: int
    page: int
    limit: int

    @property
    def pages(self) -> int:
        return math.ceil(self.total / self.limit) if self.limit else 0


def clamp_page(page: int, limit: int, max_limit: int = 100) -> tuple[int, int]:
    return max(1, page), min(max(1, limit), max_limit)


async def paginate(session: AsyncSession, stmt: Select[Any], page: int, limit: int) -> Page:
    """Run stmt with offset/limit and count the unpaginated rows."""
    page, limit = clamp_page(page, limit)
    total = (await session.execute(select(func.count()).select_from(stmt.order_by(None).subquery()))).scalar_one()
    result = await session.execute(stmt.offset((page - 1) * limit).limit(limit))
    return Page(items=list(result.scalars().all()), total=total, page=page, limit=limit)

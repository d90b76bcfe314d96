import math
from typing import Any, List, Tuple

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

MAX_PAGE_SIZE = 100


async def paginate(
    db: AsyncSession, stmt, page: int, limit: int, scalars: bool = True, options=()
) -> Tuple[List[Any], dict]:
    """Run `stmt` for one page and return (rows, pagination meta). Loader `options` apply to the page query only."""
    page = max(1, int(page or 1))
    limit = max(1, min(int(limit or 20), MAX_PAGE_SIZE))

    total = (await db.execute(select(func.count()).select_from(stmt.order_by(None).subquery()))).scalar_one()
    page_stmt = stmt.offset((page - 1) * limit).limit(limit)
    if options:
        page_stmt = page_stmt.options(*options)
    res = await db.execute(page_stmt)
    rows = res.scalars().all() if scalars else res.all()

    pages = math.ceil(total / limit) if total else 0
    return list(rows), {
        "page": page,
        "limit": limit,
        "total": int(total),
        "pages": pages,
        "has_next": page < pages,
        "has_prev": page > 1,
    }

"""
Pagination utilities
"""

from typing import Any, Dict

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.sql import Select


async def paginate(
    db: AsyncSession,
    query: Select,
    limit: int = 50,
    offset: int = 0
) -> Dict[str, Any]:
    """
    Paginate query results with limit/offset

    Args:
        db: Database session
        query: SQLAlchemy select, already ordered
        limit: Maximum rows to return
        offset: Rows to skip

    Returns:
        Dictionary with items, total, limit and offset
    """
    # Get total count
    count_query = select(func.count()).select_from(query.order_by(None).subquery())
    total = await db.scalar(count_query)

    # Apply pagination
    result = await db.execute(query.offset(offset).limit(limit))
    items = result.scalars().all()

    return {
        "items": items,
        "total": total or 0,
        "limit": limit,
        "offset": offset
    }

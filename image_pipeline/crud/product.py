from __future__ import annotations

from collections.abc import Iterable, Sequence

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from image_pipeline.errors import QueryError
from image_pipeline.models.product import Product
from image_pipeline.schemas.work_item import WorkItem


def expand_work_items(rows: Iterable[tuple[int, Sequence[str | None] | None]]) -> list[WorkItem]:
    """One WorkItem per non-blank image reference, rows and arrays in order."""

    items: list[WorkItem] = []
    for product_id, images in rows:
        for url in images or ():
            if url is None or not url.strip():
                continue
            items.append(WorkItem(id=product_id, image_url=url))
    return items


async def get_pending_work_items(session: AsyncSession) -> list[WorkItem]:
    stmt = (
        select(Product.id, Product.product_images)
        .where(Product.product_images.is_not(None))
        .order_by(Product.id)
    )

    try:
        res = await session.execute(stmt)
        rows = res.all()
    except (SQLAlchemyError, OSError) as exc:
        # asyncpg connect failures (refused, unreachable) arrive unwrapped.
        raise QueryError(f"failed to query pending product images: {exc}") from exc

    return expand_work_items((row.id, row.product_images) for row in rows)

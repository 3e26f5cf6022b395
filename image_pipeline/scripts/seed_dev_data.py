from __future__ import annotations

import asyncio
from dataclasses import dataclass
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from image_pipeline.config import settings
from image_pipeline.database import make_engine
from image_pipeline.models.product import Product


@dataclass(frozen=True)
class SeedProductSpec:
    product_name: str
    description: str
    images: tuple[str, ...]
    price: Decimal


DEMO_USER_ID = 1

DEMO_PRODUCTS: tuple[SeedProductSpec, ...] = (
    SeedProductSpec(
        product_name="Canvas Tote",
        description="Heavy cotton tote bag.",
        images=("https://picsum.photos/id/21/1200/900", "https://picsum.photos/id/22/1200/900"),
        price=Decimal("19.90"),
    ),
    SeedProductSpec(
        product_name="Ceramic Mug",
        description="350ml stoneware mug.",
        images=("https://picsum.photos/id/30/1200/900",),
        price=Decimal("12.50"),
    ),
    # No images: must never produce work.
    SeedProductSpec(
        product_name="Gift Card",
        description="Digital gift card.",
        images=(),
        price=Decimal("25.00"),
    ),
)


async def _get_or_create_product(session: AsyncSession, spec: SeedProductSpec) -> bool:
    res = await session.execute(
        select(Product).where(Product.user_id == DEMO_USER_ID, Product.product_name == spec.product_name)
    )
    product = res.scalar_one_or_none()
    if product is not None:
        return False

    session.add(
        Product(
            user_id=DEMO_USER_ID,
            product_name=spec.product_name,
            product_description=spec.description,
            product_images=list(spec.images) or None,
            product_price=spec.price,
        )
    )
    await session.flush()
    return True


async def seed_dev_data(database_url: str | None = None) -> int:
    """Insert the demo products that do not exist yet; returns how many were created."""

    engine = make_engine(database_url or settings.database_url)
    session_maker = async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)

    created = 0
    async with session_maker() as session:
        async with session.begin():
            for spec in DEMO_PRODUCTS:
                created += int(await _get_or_create_product(session, spec))

    await engine.dispose()
    return created


def main() -> None:
    asyncio.run(seed_dev_data())


if __name__ == "__main__":
    main()

import asyncio

import psycopg

from image_pipeline.scripts.seed_dev_data import DEMO_PRODUCTS, DEMO_USER_ID, seed_dev_data


def test_seed_dev_data_is_idempotent(database_url, sync_dsn):
    asyncio.run(seed_dev_data(database_url))
    second = asyncio.run(seed_dev_data(database_url))

    assert second == 0

    with psycopg.connect(sync_dsn) as conn:
        with conn.cursor() as cur:
            cur.execute(
                "SELECT COUNT(*) FROM products WHERE user_id = %s AND product_name = ANY(%s)",
                (DEMO_USER_ID, [p.product_name for p in DEMO_PRODUCTS]),
            )
            assert cur.fetchone()[0] == len(DEMO_PRODUCTS)

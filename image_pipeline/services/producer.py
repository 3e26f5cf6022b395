from __future__ import annotations

from dataclasses import dataclass
import logging

from sqlalchemy.ext.asyncio import AsyncSession

from image_pipeline.crud.product import get_pending_work_items
from image_pipeline.services.completion import CompletionStore
from image_pipeline.services.queue_client import QueueClient

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ProducerReport:
    published: int
    skipped: int


class Producer:
    """Publishes one message per pending catalog image.

    One-shot: ``run`` queries the catalog once and returns. A query or publish
    failure aborts the whole run; nothing tracks which rows were already sent,
    so re-running republishes every matching row unless a completion store is
    given, in which case images already processed are skipped.
    """

    def __init__(
        self,
        client: QueueClient,
        *,
        queue_name: str,
        completion: CompletionStore | None = None,
    ) -> None:
        self.client = client
        self.queue_name = queue_name
        self.completion = completion

    async def run(self, session: AsyncSession) -> ProducerReport:
        self.client.declare_queue(self.queue_name)

        items = await get_pending_work_items(session)
        logger.info("producer found items=%s queue=%s", len(items), self.queue_name)

        published = skipped = 0
        for item in items:
            if self.completion is not None and self.completion.is_done(item):
                skipped += 1
                logger.debug("skip completed product_id=%s url=%s", item.id, item.image_url)
                continue

            # Blocking publish with confirms; the producer owns its own thread and loop.
            self.client.publish(item, self.queue_name)
            published += 1
            logger.info("published product_id=%s url=%s", item.id, item.image_url)

        logger.info("producer done published=%s skipped=%s", published, skipped)
        return ProducerReport(published=published, skipped=skipped)

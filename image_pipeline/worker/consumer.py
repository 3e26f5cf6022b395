from __future__ import annotations

import enum
import logging
import threading

from image_pipeline.errors import ChannelError, MessageError, QueueConnectionError
from image_pipeline.schemas.work_item import QueueMessage, WorkItem
from image_pipeline.services.completion import CompletionStore
from image_pipeline.services.queue_client import QueueClient
from image_pipeline.services.result_sink import ResultSink
from image_pipeline.services.transcoder import Transcoder

logger = logging.getLogger(__name__)


class Outcome(str, enum.Enum):
    PROCESSED = "processed"
    SKIPPED = "skipped"
    REQUEUED = "requeued"
    DROPPED = "dropped"


class ImageWorker:
    """Consumes image jobs from one channel.

    Per delivery: fetch -> decode -> encode -> persist, then ack. A failure in
    any stage is logged and the worker moves on to the next delivery. In
    explicit-ack mode a transient failure is requeued once; if the redelivery
    fails too it is dropped so a poison message cannot cycle forever.

    With ``auto_ack=True`` the broker settles each message on delivery and a
    failure (or crash) loses the message.
    """

    def __init__(
        self,
        client: QueueClient,
        *,
        queue_name: str,
        transcoder: Transcoder,
        sink: ResultSink,
        completion: CompletionStore | None = None,
        auto_ack: bool = False,
        inactivity_timeout: float = 1.0,
        name: str = "worker",
    ) -> None:
        self.client = client
        self.queue_name = queue_name
        self.transcoder = transcoder
        self.sink = sink
        self.completion = completion
        self.auto_ack = auto_ack
        self.inactivity_timeout = inactivity_timeout
        self.name = name

        self.counts: dict[Outcome, int] = {o: 0 for o in Outcome}

    def handle(self, message: QueueMessage) -> Outcome:
        try:
            item = WorkItem.from_message(message)
            if self.completion is not None and self.completion.is_done(item):
                logger.info("%s duplicate product_id=%s url=%s", self.name, item.id, item.image_url)
                outcome = Outcome.SKIPPED
            else:
                result = self.transcoder.transcode_item(item)
                location = self.sink.write(result)
                if self.completion is not None:
                    self.completion.mark_done(item, location)
                logger.info(
                    "%s processed product_id=%s url=%s bytes=%s location=%s",
                    self.name,
                    item.id,
                    item.image_url,
                    len(result.bytes),
                    location,
                )
                outcome = Outcome.PROCESSED
        except MessageError as exc:
            outcome = self._failed(message, exc)
        except Exception:
            # Unexpected bug in a stage; keep consuming, do not requeue.
            logger.exception("%s unexpected failure tag=%s", self.name, message.delivery_tag)
            outcome = Outcome.DROPPED

        self._settle(message, outcome)
        self.counts[outcome] += 1
        return outcome

    def _failed(self, message: QueueMessage, exc: MessageError) -> Outcome:
        requeue = exc.transient and not message.redelivered and not self.auto_ack
        logger.warning(
            "%s failed stage=%s url=%s transient=%s redelivered=%s action=%s error=%s",
            self.name,
            exc.stage,
            exc.url,
            exc.transient,
            message.redelivered,
            "requeue" if requeue else "drop",
            exc,
        )
        return Outcome.REQUEUED if requeue else Outcome.DROPPED

    def _settle(self, message: QueueMessage, outcome: Outcome) -> None:
        if self.auto_ack:
            return
        if outcome is Outcome.REQUEUED:
            self.client.nack(message.delivery_tag, requeue=True)
        elif outcome is Outcome.DROPPED:
            self.client.nack(message.delivery_tag, requeue=False)
        else:
            self.client.ack(message.delivery_tag)

    def run(self, stop: threading.Event) -> None:
        """Consume until ``stop`` is set.

        ``stop`` is checked between deliveries and on every inactivity tick, so
        the in-flight message always finishes before the worker returns.
        Losing the subscription while ``stop`` is unset is fatal and raised.
        """

        self.client.declare_queue(self.queue_name)
        deliveries = self.client.consume(
            self.queue_name,
            auto_ack=self.auto_ack,
            inactivity_timeout=self.inactivity_timeout,
        )
        logger.info("%s consuming queue=%s auto_ack=%s", self.name, self.queue_name, self.auto_ack)

        try:
            for message in deliveries:
                if message is not None:
                    self.handle(message)
                if stop.is_set():
                    break
        except (ChannelError, QueueConnectionError):
            logger.exception("%s lost its subscription", self.name)
            raise
        finally:
            requeued = self.client.cancel()
            logger.info(
                "%s stopped processed=%s skipped=%s dropped=%s requeued=%s returned_prefetch=%s",
                self.name,
                self.counts[Outcome.PROCESSED],
                self.counts[Outcome.SKIPPED],
                self.counts[Outcome.DROPPED],
                self.counts[Outcome.REQUEUED],
                requeued,
            )

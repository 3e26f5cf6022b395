"""AMQP client shared by the producer and the consumer workers.

A ``QueueClient`` owns exactly one connection and one channel. pika's
``BlockingConnection`` is not thread-safe, so every thread (the producer, each
worker) builds its own client.
"""

from __future__ import annotations

from collections.abc import Callable, Iterator
import logging
import time

import pika
from pika import exceptions as pika_exceptions
from pika.spec import PERSISTENT_DELIVERY_MODE

from image_pipeline.config import Settings, settings as default_settings
from image_pipeline.errors import ChannelError, PublishError, QueueConnectionError, QueueDeclarationError
from image_pipeline.schemas.work_item import CONTENT_TYPE, QueueMessage, WorkItem

logger = logging.getLogger(__name__)

PRECONDITION_FAILED = 406

_AUTH_ERRORS = (
    pika_exceptions.AuthenticationError,
    pika_exceptions.ProbableAuthenticationError,
    pika_exceptions.ProbableAccessDeniedError,
)


def backoff_delays(attempts: int, base: float, cap: float) -> list[float]:
    """Sleep before each retry: base, 2*base, 4*base ... capped. ``attempts - 1`` entries."""

    return [min(cap, base * (2**n)) for n in range(max(attempts - 1, 0))]


class QueueClient:
    def __init__(
        self,
        url: str,
        *,
        connect_attempts: int = 1,
        backoff_seconds: float = 1.0,
        backoff_max_seconds: float = 30.0,
        prefetch_count: int = 1,
        connection_factory: Callable[[pika.connection.Parameters], pika.BlockingConnection] = pika.BlockingConnection,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.url = url
        self.connect_attempts = connect_attempts
        self.backoff_seconds = backoff_seconds
        self.backoff_max_seconds = backoff_max_seconds
        self.prefetch_count = prefetch_count
        self._connection_factory = connection_factory
        self._sleep = sleep

        self._connection: pika.BlockingConnection | None = None
        self._channel = None

    @classmethod
    def from_settings(cls, s: Settings | None = None, **kwargs) -> "QueueClient":
        s = s or default_settings
        return cls(
            s.amqp_url,
            connect_attempts=s.connect_attempts,
            backoff_seconds=s.connect_backoff_seconds,
            backoff_max_seconds=s.connect_backoff_max_seconds,
            prefetch_count=s.prefetch_count,
            **kwargs,
        )

    # -- lifecycle -----------------------------------------------------------

    def connect(self) -> pika.BlockingConnection:
        if self._connection is not None and self._connection.is_open:
            return self._connection

        params = pika.URLParameters(self.url)
        delays = backoff_delays(self.connect_attempts, self.backoff_seconds, self.backoff_max_seconds)
        last_exc: Exception | None = None

        for attempt in range(1, self.connect_attempts + 1):
            try:
                self._connection = self._connection_factory(params)
                logger.info("broker connected host=%s attempt=%s", params.host, attempt)
                return self._connection
            except _AUTH_ERRORS as exc:
                raise QueueConnectionError(f"broker rejected credentials: {exc!r}") from exc
            except pika_exceptions.AMQPConnectionError as exc:
                last_exc = exc
                if attempt > len(delays):
                    break
                delay = delays[attempt - 1]
                logger.warning(
                    "broker connect failed host=%s attempt=%s/%s retry_in=%.1fs error=%r",
                    params.host,
                    attempt,
                    self.connect_attempts,
                    delay,
                    exc,
                )
                self._sleep(delay)

        raise QueueConnectionError(
            f"broker unreachable after {self.connect_attempts} attempt(s): {last_exc!r}"
        ) from last_exc

    def open_channel(self):
        if self._channel is not None and self._channel.is_open:
            return self._channel

        connection = self.connect()
        try:
            channel = connection.channel()
            channel.confirm_delivery()
        except (pika_exceptions.AMQPChannelError, pika_exceptions.AMQPConnectionError) as exc:
            raise ChannelError(f"failed to open channel: {exc!r}") from exc

        self._channel = channel
        return channel

    def close(self) -> None:
        channel, self._channel = self._channel, None
        connection, self._connection = self._connection, None

        if channel is not None and channel.is_open:
            try:
                channel.close()
            except pika_exceptions.AMQPError as exc:
                logger.warning("channel close failed error=%r", exc)
        if connection is not None and connection.is_open:
            try:
                connection.close()
            except pika_exceptions.AMQPError as exc:
                logger.warning("connection close failed error=%r", exc)

    def __enter__(self) -> "QueueClient":
        self.open_channel()
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    # -- topology ------------------------------------------------------------

    def declare_queue(
        self,
        name: str,
        *,
        durable: bool = True,
        exclusive: bool = False,
        auto_delete: bool = False,
    ) -> str:
        channel = self.open_channel()
        try:
            result = channel.queue_declare(
                queue=name,
                durable=durable,
                exclusive=exclusive,
                auto_delete=auto_delete,
            )
        except pika_exceptions.ChannelClosedByBroker as exc:
            # The broker closes the channel on a mismatch; drop our handle so a
            # later call opens a fresh one.
            self._channel = None
            if exc.reply_code == PRECONDITION_FAILED:
                raise QueueDeclarationError(
                    f"queue {name!r} exists with incompatible parameters: {exc.reply_text}"
                ) from exc
            raise ChannelError(f"channel closed while declaring {name!r}: {exc!r}") from exc
        except pika_exceptions.AMQPError as exc:
            raise ChannelError(f"failed to declare queue {name!r}: {exc!r}") from exc

        logger.debug("queue declared name=%s messages=%s", name, result.method.message_count)
        return result.method.queue

    # -- publish / consume ---------------------------------------------------

    def publish(self, item: WorkItem, queue_name: str) -> None:
        """Publish one persistent message via the default exchange.

        Publisher confirms are on, so returning means the broker accepted the
        message.
        """

        channel = self.open_channel()
        properties = pika.BasicProperties(
            content_type=CONTENT_TYPE,
            delivery_mode=PERSISTENT_DELIVERY_MODE,
            headers=item.headers or None,
        )
        try:
            channel.basic_publish(
                exchange="",
                routing_key=queue_name,
                body=item.body,
                properties=properties,
                mandatory=True,
            )
        except pika_exceptions.UnroutableError as exc:
            raise PublishError(f"message for {item.image_url!r} was unroutable to {queue_name!r}") from exc
        except pika_exceptions.NackError as exc:
            raise PublishError(f"broker nacked message for {item.image_url!r}") from exc
        except pika_exceptions.AMQPError as exc:
            raise PublishError(f"publish failed for {item.image_url!r}: {exc!r}") from exc

    def consume(
        self,
        queue_name: str,
        *,
        auto_ack: bool = False,
        inactivity_timeout: float | None = 1.0,
    ) -> Iterator[QueueMessage | None]:
        """Subscribe to ``queue_name``.

        Lazy, unbounded and not restartable. Yields ``None`` each time
        ``inactivity_timeout`` passes without a delivery so the caller can
        check for shutdown. Losing the connection raises QueueConnectionError;
        losing the channel or a broker-side cancel raises ChannelError.
        """

        channel = self.open_channel()
        try:
            channel.basic_qos(prefetch_count=self.prefetch_count)
        except pika_exceptions.AMQPError as exc:
            raise ChannelError(f"failed to set prefetch on {queue_name!r}: {exc!r}") from exc

        return self._iter_deliveries(channel, queue_name, auto_ack, inactivity_timeout)

    def _iter_deliveries(self, channel, queue_name, auto_ack, inactivity_timeout) -> Iterator[QueueMessage | None]:
        try:
            for method, properties, body in channel.consume(
                queue_name,
                auto_ack=auto_ack,
                inactivity_timeout=inactivity_timeout,
            ):
                if method is None:
                    yield None
                    continue
                yield QueueMessage(
                    body=body,
                    delivery_tag=method.delivery_tag,
                    redelivered=bool(method.redelivered),
                    content_type=getattr(properties, "content_type", None),
                    headers=dict(getattr(properties, "headers", None) or {}),
                )
        except pika_exceptions.AMQPConnectionError as exc:
            raise QueueConnectionError(f"connection lost while consuming {queue_name!r}: {exc!r}") from exc
        except pika_exceptions.AMQPChannelError as exc:
            raise ChannelError(f"channel lost while consuming {queue_name!r}: {exc!r}") from exc

        # Callers leave by closing the generator, so running off the end means
        # the broker ended the subscription.
        raise ChannelError(f"subscription to {queue_name!r} ended by the broker")

    def _active_channel(self):
        # Delivery tags are scoped to the channel that delivered them.
        if self._channel is None or not self._channel.is_open:
            raise ChannelError("channel is closed; delivery can no longer be settled")
        return self._channel

    def ack(self, delivery_tag: int) -> None:
        try:
            self._active_channel().basic_ack(delivery_tag=delivery_tag)
        except pika_exceptions.AMQPError as exc:
            raise ChannelError(f"ack failed tag={delivery_tag}: {exc!r}") from exc

    def nack(self, delivery_tag: int, *, requeue: bool) -> None:
        try:
            self._active_channel().basic_nack(delivery_tag=delivery_tag, requeue=requeue)
        except pika_exceptions.AMQPError as exc:
            raise ChannelError(f"nack failed tag={delivery_tag}: {exc!r}") from exc

    def cancel(self) -> int:
        """Stop the active subscription; returns the number of requeued prefetched messages."""

        if self._channel is None or not self._channel.is_open:
            return 0
        try:
            return self._channel.cancel()
        except pika_exceptions.AMQPError as exc:
            logger.warning("consumer cancel failed error=%r", exc)
            return 0

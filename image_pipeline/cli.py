from __future__ import annotations

import asyncio
import logging
import signal
from typing import Optional

import typer

from image_pipeline.config import Settings, settings
from image_pipeline.errors import PipelineError
from image_pipeline.services.completion import CompletionStore
from image_pipeline.services.producer import Producer, ProducerReport
from image_pipeline.services.queue_client import QueueClient
from image_pipeline.services.result_sink import build_result_sink
from image_pipeline.services.transcoder import Transcoder
from image_pipeline.worker.consumer import ImageWorker
from image_pipeline.worker.pool import WorkerPool

logger = logging.getLogger("image_pipeline.cli")

app = typer.Typer(help="Catalog image pipeline: queue product images, then compress and store them")

DRAIN_TIMEOUT_SECONDS = 60.0


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s %(threadName)s %(message)s",
    )
    # pika logs every frame at DEBUG/INFO.
    logging.getLogger("pika").setLevel(logging.WARNING)


def _completion_store(s: Settings) -> CompletionStore | None:
    if not s.skip_completed:
        return None
    store = CompletionStore.from_url(s.redis_url, ttl_seconds=s.completion_ttl_seconds)
    if not store.ping():
        logger.warning("redis unreachable url=%s; completed images may be processed again", s.redis_url)
    return store


async def produce_once(s: Settings, completion: CompletionStore | None) -> ProducerReport:
    from image_pipeline.database import SessionLocal, engine

    try:
        with QueueClient.from_settings(s) as client:
            async with SessionLocal() as session:
                producer = Producer(client, queue_name=s.queue_name, completion=completion)
                return await producer.run(session)
    finally:
        await engine.dispose()


def build_pool(s: Settings, size: int, completion: CompletionStore | None) -> WorkerPool:
    sink = build_result_sink(s)

    def make_worker(client: QueueClient, name: str) -> ImageWorker:
        return ImageWorker(
            client,
            queue_name=s.queue_name,
            transcoder=Transcoder.from_settings(s),
            sink=sink,
            completion=completion,
            auto_ack=s.auto_ack,
            inactivity_timeout=s.consume_inactivity_timeout,
            name=name,
        )

    return WorkerPool(
        size=size,
        client_factory=lambda: QueueClient.from_settings(s),
        worker_factory=make_worker,
    )


def _install_signal_handlers(pool: WorkerPool) -> None:
    def _handle(signum, _frame):
        logger.info("signal=%s received; draining workers", signal.Signals(signum).name)
        pool.stop()

    signal.signal(signal.SIGINT, _handle)
    signal.signal(signal.SIGTERM, _handle)


def _wait_for_pool(pool: WorkerPool) -> int:
    while pool.running and not pool.stop_event.wait(0.5):
        pass
    pool.stop()
    pool.join(timeout=DRAIN_TIMEOUT_SECONDS)
    return 1 if pool.errors else 0


@app.command()
def produce() -> None:
    """Queue every pending catalog image once."""

    configure_logging(settings.log_level)
    try:
        report = asyncio.run(produce_once(settings, _completion_store(settings)))
    except PipelineError as exc:
        logger.error("producer failed: %s", exc)
        raise typer.Exit(code=1)
    typer.echo(f"published={report.published} skipped={report.skipped}")


@app.command()
def consume(workers: Optional[int] = typer.Option(None, "--workers", "-w", min=1)) -> None:
    """Process queued images until SIGINT/SIGTERM."""

    configure_logging(settings.log_level)
    pool = build_pool(settings, workers or settings.worker_count, _completion_store(settings))
    _install_signal_handlers(pool)
    pool.start()
    raise typer.Exit(code=_wait_for_pool(pool))


@app.command()
def run(workers: Optional[int] = typer.Option(None, "--workers", "-w", min=1)) -> None:
    """Start the workers, queue pending images once, then keep consuming."""

    configure_logging(settings.log_level)
    completion = _completion_store(settings)
    pool = build_pool(settings, workers or settings.worker_count, completion)
    _install_signal_handlers(pool)
    pool.start()

    try:
        report = asyncio.run(produce_once(settings, completion))
        logger.info("producer finished published=%s skipped=%s", report.published, report.skipped)
    except PipelineError as exc:
        logger.error("producer failed: %s", exc)
        pool.stop()
        pool.join(timeout=DRAIN_TIMEOUT_SECONDS)
        raise typer.Exit(code=1)

    raise typer.Exit(code=_wait_for_pool(pool))


@app.command()
def seed() -> None:
    """Insert demo catalog rows (idempotent)."""

    from image_pipeline.scripts.seed_dev_data import seed_dev_data

    configure_logging(settings.log_level)
    created = asyncio.run(seed_dev_data())
    typer.echo(f"created={created}")


def main() -> None:
    app()


if __name__ == "__main__":
    main()

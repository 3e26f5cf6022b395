from __future__ import annotations

from collections.abc import Callable
import logging
import threading

from image_pipeline.errors import PipelineError
from image_pipeline.services.queue_client import QueueClient
from image_pipeline.worker.consumer import ImageWorker

logger = logging.getLogger(__name__)


class WorkerPool:
    """Runs ``size`` workers, one thread and one broker connection each.

    ``stop()`` signals every worker; each finishes its in-flight message and
    returns. ``join()`` waits for them. A fatal worker error (lost connection
    or channel, failed declaration) ends only that worker and is collected in
    ``errors``.
    """

    def __init__(
        self,
        *,
        size: int,
        client_factory: Callable[[], QueueClient],
        worker_factory: Callable[[QueueClient, str], ImageWorker],
    ) -> None:
        if size < 1:
            raise ValueError("worker pool size must be >= 1")
        self.size = size
        self.client_factory = client_factory
        self.worker_factory = worker_factory

        self.stop_event = threading.Event()
        self.errors: list[BaseException] = []
        self.workers: list[ImageWorker] = []
        self._threads: list[threading.Thread] = []
        self._lock = threading.Lock()

    def start(self) -> None:
        for n in range(self.size):
            name = f"image-worker-{n}"
            t = threading.Thread(target=self._run_one, args=(name,), name=name, daemon=True)
            self._threads.append(t)
            t.start()
        logger.info("worker pool started size=%s", self.size)

    def _run_one(self, name: str) -> None:
        client = self.client_factory()
        try:
            worker = self.worker_factory(client, name)
            with self._lock:
                self.workers.append(worker)
            worker.run(self.stop_event)
        except PipelineError as exc:
            logger.error("%s exited with fatal error: %s", name, exc)
            with self._lock:
                self.errors.append(exc)
        except Exception as exc:
            logger.exception("%s crashed", name)
            with self._lock:
                self.errors.append(exc)
        finally:
            client.close()

    def stop(self) -> None:
        self.stop_event.set()

    def join(self, timeout: float | None = None) -> bool:
        """Wait for all workers; returns True if every thread has exited."""

        for t in self._threads:
            t.join(timeout)
        alive = [t.name for t in self._threads if t.is_alive()]
        if alive:
            logger.warning("workers still running after join: %s", ", ".join(alive))
        return not alive

    @property
    def running(self) -> bool:
        return any(t.is_alive() for t in self._threads)

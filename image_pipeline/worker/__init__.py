from .consumer import ImageWorker, Outcome  # noqa: F401
from .pool import WorkerPool  # noqa: F401

from .work_item import CompressedImageResult, QueueMessage, WorkItem, url_digest  # noqa: F401

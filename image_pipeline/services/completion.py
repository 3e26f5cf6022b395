"""Completion markers for processed images.

A marker is written after a result has been persisted. The producer consults
it so that re-running against an unchanged catalog does not queue the same
image twice; workers consult it to ack duplicates without re-fetching.

Markers are an optimisation, not a correctness guarantee: if Redis is down the
pipeline keeps going and simply re-processes work.
"""

from __future__ import annotations

import logging

import redis

from image_pipeline.schemas.work_item import WorkItem

logger = logging.getLogger(__name__)

KEY_PREFIX = "image_pipeline:done"


def completion_key(item: WorkItem) -> str:
    owner = item.id if item.id is not None else "unkeyed"
    return f"{KEY_PREFIX}:{owner}:{item.digest}"


class CompletionStore:
    def __init__(self, client: redis.Redis, *, ttl_seconds: int = 0) -> None:
        self.client = client
        self.ttl_seconds = ttl_seconds

    @classmethod
    def from_url(cls, url: str, *, ttl_seconds: int = 0) -> "CompletionStore":
        return cls(redis.Redis.from_url(url), ttl_seconds=ttl_seconds)

    def ping(self) -> bool:
        try:
            return bool(self.client.ping())
        except redis.RedisError as exc:
            logger.warning("completion store unavailable error=%r", exc)
            return False

    def is_done(self, item: WorkItem) -> bool:
        try:
            return self.client.get(completion_key(item)) is not None
        except redis.RedisError as exc:
            logger.warning("completion lookup failed product_id=%s error=%r", item.id, exc)
            return False

    def mark_done(self, item: WorkItem, location: str = "1") -> None:
        try:
            self.client.set(completion_key(item), location, ex=self.ttl_seconds or None)
        except redis.RedisError as exc:
            logger.warning("completion mark failed product_id=%s error=%r", item.id, exc)

from __future__ import annotations

from dataclasses import dataclass, field
import hashlib
from typing import Any

from pydantic import BaseModel, ConfigDict, field_validator

from image_pipeline.errors import MessageFormatError

PRODUCT_ID_HEADER = "x-product-id"
CONTENT_TYPE = "text/plain"


def url_digest(url: str) -> str:
    return hashlib.sha256(url.encode("utf-8")).hexdigest()[:16]


@dataclass(frozen=True)
class QueueMessage:
    """Broker delivery envelope. Metadata is assigned by the broker."""

    body: bytes
    delivery_tag: int
    redelivered: bool = False
    content_type: str | None = None
    headers: dict[str, Any] = field(default_factory=dict)


class WorkItem(BaseModel):
    """One image reference of one catalog row.

    On the wire the body is the bare UTF-8 URL; the catalog id travels in the
    ``x-product-id`` header so results can be correlated back to their row.
    Deliveries from publishers that do not set the header decode with
    ``id=None``.
    """

    model_config = ConfigDict(frozen=True)

    id: int | None
    image_url: str

    @field_validator("image_url")
    @classmethod
    def validate_image_url(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("image_url must not be empty")
        return v

    @property
    def body(self) -> bytes:
        return self.image_url.encode("utf-8")

    @property
    def headers(self) -> dict[str, Any]:
        if self.id is None:
            return {}
        return {PRODUCT_ID_HEADER: self.id}

    @property
    def digest(self) -> str:
        return url_digest(self.image_url)

    @classmethod
    def from_message(cls, message: QueueMessage) -> "WorkItem":
        try:
            url = message.body.decode("utf-8").strip()
        except UnicodeDecodeError as exc:
            raise MessageFormatError("message body is not valid UTF-8") from exc
        if not url:
            raise MessageFormatError("message body is empty")

        raw_id = (message.headers or {}).get(PRODUCT_ID_HEADER)
        product_id: int | None = None
        if raw_id is not None:
            try:
                product_id = int(raw_id)
            except (TypeError, ValueError) as exc:
                raise MessageFormatError(f"invalid {PRODUCT_ID_HEADER} header: {raw_id!r}", url=url) from exc

        return cls(id=product_id, image_url=url)


@dataclass(frozen=True)
class CompressedImageResult:
    source_url: str
    bytes: bytes
    quality: int
    product_id: int | None = None
    width: int = 0
    height: int = 0

    @property
    def key(self) -> str:
        """Storage key, unique per (product, image) pair."""

        owner = str(self.product_id) if self.product_id is not None else "unkeyed"
        return f"{owner}/{url_digest(self.source_url)}.jpg"

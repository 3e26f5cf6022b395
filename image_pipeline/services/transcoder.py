"""Download a product image and re-encode it as a smaller JPEG.

``compress_image`` is the pure part: bytes in, JPEG bytes out at a fixed
quality. ``Transcoder`` adds the HTTP fetch with an explicit timeout and a
body size cap.
"""

from __future__ import annotations

from io import BytesIO
import logging

from PIL import Image, UnidentifiedImageError
import requests

from image_pipeline.errors import DecodeError, EncodeError, FetchError
from image_pipeline.schemas.work_item import CompressedImageResult, WorkItem

logger = logging.getLogger(__name__)

DEFAULT_QUALITY = 50
_CHUNK_SIZE = 64 * 1024


def _is_transient_status(status_code: int) -> bool:
    return status_code == 429 or status_code >= 500


def decode_image(data: bytes) -> Image.Image:
    try:
        img = Image.open(BytesIO(data))
        # open() is lazy; load() forces a full decode so truncated streams fail here.
        img.load()
    except (UnidentifiedImageError, Image.DecompressionBombError) as exc:
        raise DecodeError(f"unrecognised or oversized image: {exc}") from exc
    except (OSError, SyntaxError, ValueError) as exc:
        raise DecodeError(f"corrupt or truncated image: {exc}") from exc
    return img


def encode_jpeg(img: Image.Image, quality: int = DEFAULT_QUALITY) -> bytes:
    # JPEG has no alpha or palette; everything else is flattened to RGB.
    if img.mode not in ("RGB", "L"):
        img = img.convert("RGB")

    buf = BytesIO()
    try:
        img.save(buf, format="JPEG", quality=quality)
    except (OSError, ValueError) as exc:
        raise EncodeError(f"jpeg encoder failed: {exc}") from exc
    return buf.getvalue()


def compress_image(data: bytes, quality: int = DEFAULT_QUALITY) -> tuple[bytes, tuple[int, int]]:
    """Decode ``data`` and re-encode it as JPEG; returns (jpeg_bytes, (width, height))."""

    img = decode_image(data)
    return encode_jpeg(img, quality), img.size


class Transcoder:
    def __init__(
        self,
        *,
        quality: int = DEFAULT_QUALITY,
        connect_timeout: float = 5.0,
        read_timeout: float = 30.0,
        max_bytes: int = 20 * 1024 * 1024,
        session: requests.Session | None = None,
    ) -> None:
        self.quality = quality
        self.timeout = (connect_timeout, read_timeout)
        self.max_bytes = max_bytes
        self.session = session or requests.Session()

    @classmethod
    def from_settings(cls, s, session: requests.Session | None = None) -> "Transcoder":
        return cls(
            quality=s.jpeg_quality,
            connect_timeout=s.fetch_connect_timeout,
            read_timeout=s.fetch_read_timeout,
            max_bytes=s.max_image_bytes,
            session=session,
        )

    def fetch(self, url: str) -> bytes:
        try:
            with self.session.get(url, timeout=self.timeout, stream=True) as resp:
                if not 200 <= resp.status_code < 300:
                    raise FetchError(
                        f"GET {url} returned HTTP {resp.status_code}",
                        url=url,
                        transient=_is_transient_status(resp.status_code),
                    )

                declared = resp.headers.get("Content-Length")
                if declared and declared.isdigit() and int(declared) > self.max_bytes:
                    raise FetchError(
                        f"GET {url} declares {declared} bytes, limit is {self.max_bytes}",
                        url=url,
                        transient=False,
                    )

                buf = bytearray()
                for chunk in resp.iter_content(chunk_size=_CHUNK_SIZE):
                    buf.extend(chunk)
                    if len(buf) > self.max_bytes:
                        raise FetchError(
                            f"GET {url} exceeded {self.max_bytes} bytes",
                            url=url,
                            transient=False,
                        )
                return bytes(buf)
        except (requests.ConnectionError, requests.Timeout, requests.exceptions.ChunkedEncodingError) as exc:
            raise FetchError(f"GET {url} failed: {exc}", url=url, transient=True) from exc
        except requests.RequestException as exc:
            # Malformed URL, unsupported scheme, too many redirects.
            raise FetchError(f"GET {url} failed: {exc}", url=url, transient=False) from exc

    def transcode(self, url: str) -> bytes:
        data = self.fetch(url)
        out, _ = self._compress(url, data)
        return out

    def transcode_item(self, item: WorkItem) -> CompressedImageResult:
        data = self.fetch(item.image_url)
        out, (width, height) = self._compress(item.image_url, data)
        return CompressedImageResult(
            source_url=item.image_url,
            bytes=out,
            quality=self.quality,
            product_id=item.id,
            width=width,
            height=height,
        )

    def _compress(self, url: str, data: bytes) -> tuple[bytes, tuple[int, int]]:
        try:
            out, size = compress_image(data, self.quality)
        except (DecodeError, EncodeError) as exc:
            exc.url = url
            raise
        logger.debug("compressed url=%s in_bytes=%s out_bytes=%s size=%sx%s", url, len(data), len(out), *size)
        return out, size

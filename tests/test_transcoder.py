from io import BytesIO

from PIL import Image
import pytest
import requests

from image_pipeline.errors import DecodeError, FetchError
from image_pipeline.schemas.work_item import WorkItem
from image_pipeline.services.transcoder import Transcoder, compress_image
from tests._fakes import FakeResponse, FakeSession, make_image_bytes

URL = "https://example.com/a.jpg"


def _transcoder(routes, **kwargs) -> Transcoder:
    return Transcoder(session=FakeSession(routes), **kwargs)


def test_output_decodes_to_same_dimensions(png_bytes):
    out, size = compress_image(png_bytes, 50)

    decoded = Image.open(BytesIO(out))
    decoded.load()
    assert decoded.format == "JPEG"
    assert decoded.size == (96, 64) == size


def test_lower_quality_is_strictly_smaller(png_bytes):
    low, _ = compress_image(png_bytes, 50)
    high, _ = compress_image(png_bytes, 95)
    assert len(low) < len(high)


def test_encoding_is_deterministic_for_same_input(png_bytes):
    assert compress_image(png_bytes, 50)[0] == compress_image(png_bytes, 50)[0]


@pytest.mark.parametrize("mode", ["RGBA", "P", "L"])
def test_non_rgb_sources_are_encoded(mode):
    out, size = compress_image(make_image_bytes(size=(40, 30), mode=mode), 50)
    assert size == (40, 30)
    assert Image.open(BytesIO(out)).format == "JPEG"


def test_unrecognised_bytes_raise_decode_error():
    with pytest.raises(DecodeError) as exc_info:
        compress_image(b"<html>not an image</html>")
    assert exc_info.value.transient is False


def test_truncated_image_raises_decode_error(png_bytes):
    with pytest.raises(DecodeError):
        compress_image(png_bytes[: len(png_bytes) // 2])


def test_transcode_fetches_and_compresses(png_bytes):
    transcoder = _transcoder({URL: FakeResponse(200, png_bytes)})
    out = transcoder.transcode(URL)
    assert Image.open(BytesIO(out)).size == (96, 64)


def test_transcode_item_carries_product_id_and_quality(png_bytes):
    transcoder = _transcoder({URL: FakeResponse(200, png_bytes)}, quality=40)
    result = transcoder.transcode_item(WorkItem(id=3, image_url=URL))

    assert result.source_url == URL
    assert result.product_id == 3
    assert result.quality == 40
    assert (result.width, result.height) == (96, 64)


@pytest.mark.parametrize(
    "status, transient",
    [(404, False), (403, False), (429, True), (500, True), (503, True)],
)
def test_non_2xx_is_fetch_error(status, transient):
    transcoder = _transcoder({URL: FakeResponse(status, b"nope")})
    with pytest.raises(FetchError) as exc_info:
        transcoder.transcode(URL)
    assert exc_info.value.transient is transient
    assert exc_info.value.url == URL


def test_unreachable_host_is_transient_fetch_error():
    with pytest.raises(FetchError) as exc_info:
        _transcoder({}).transcode("https://unreachable.invalid/a.jpg")
    assert exc_info.value.transient is True


def test_timeout_is_transient_fetch_error():
    transcoder = _transcoder({URL: requests.ReadTimeout("read timed out")})
    with pytest.raises(FetchError) as exc_info:
        transcoder.transcode(URL)
    assert exc_info.value.transient is True


def test_invalid_url_is_permanent_fetch_error():
    transcoder = _transcoder({"not a url": requests.exceptions.MissingSchema("No scheme supplied")})
    with pytest.raises(FetchError) as exc_info:
        transcoder.transcode("not a url")
    assert exc_info.value.transient is False


def test_declared_oversize_body_is_rejected(png_bytes):
    transcoder = _transcoder(
        {URL: FakeResponse(200, png_bytes, headers={"Content-Length": "999999"})},
        max_bytes=1024,
    )
    with pytest.raises(FetchError, match="limit"):
        transcoder.transcode(URL)


def test_streamed_oversize_body_is_rejected(png_bytes):
    transcoder = _transcoder({URL: FakeResponse(200, png_bytes)}, max_bytes=len(png_bytes) - 1)
    with pytest.raises(FetchError, match="exceeded"):
        transcoder.transcode(URL)


def test_decode_error_reports_source_url():
    transcoder = _transcoder({URL: FakeResponse(200, b"garbage")})
    with pytest.raises(DecodeError) as exc_info:
        transcoder.transcode(URL)
    assert exc_info.value.url == URL

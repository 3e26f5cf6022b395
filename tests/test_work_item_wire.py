import pytest
from pydantic import ValidationError

from image_pipeline.errors import MessageFormatError
from image_pipeline.schemas.work_item import CompressedImageResult, QueueMessage, WorkItem, url_digest


def test_work_item_body_is_raw_utf8_url_and_id_travels_in_header():
    item = WorkItem(id=7, image_url="https://example.com/ünï.jpg")
    assert item.body == "https://example.com/ünï.jpg".encode("utf-8")
    assert item.headers == {"x-product-id": 7}


def test_from_message_round_trips_id_and_url():
    msg = QueueMessage(body=b"https://example.com/a.jpg", delivery_tag=1, headers={"x-product-id": 1})
    item = WorkItem.from_message(msg)
    assert item == WorkItem(id=1, image_url="https://example.com/a.jpg")


def test_from_message_without_header_has_no_id():
    msg = QueueMessage(body=b"  https://example.com/a.jpg\n", delivery_tag=1)
    item = WorkItem.from_message(msg)
    assert item.id is None
    assert item.image_url == "https://example.com/a.jpg"
    assert item.headers == {}


@pytest.mark.parametrize("body", [b"", b"   ", b"\xff\xfe\x00"])
def test_from_message_rejects_empty_or_undecodable_bodies(body):
    with pytest.raises(MessageFormatError) as exc_info:
        WorkItem.from_message(QueueMessage(body=body, delivery_tag=1))
    assert exc_info.value.transient is False


def test_from_message_rejects_non_integer_product_id():
    msg = QueueMessage(body=b"https://example.com/a.jpg", delivery_tag=1, headers={"x-product-id": "abc"})
    with pytest.raises(MessageFormatError):
        WorkItem.from_message(msg)


def test_work_item_is_immutable():
    item = WorkItem(id=1, image_url="https://example.com/a.jpg")
    with pytest.raises(ValidationError):
        item.image_url = "https://example.com/b.jpg"


def test_result_key_is_unique_per_product_and_url():
    url = "https://example.com/a.jpg"
    a = CompressedImageResult(source_url=url, bytes=b"x", quality=50, product_id=1)
    b = CompressedImageResult(source_url=url, bytes=b"x", quality=50, product_id=2)
    c = CompressedImageResult(source_url="https://example.com/b.jpg", bytes=b"x", quality=50, product_id=1)
    legacy = CompressedImageResult(source_url=url, bytes=b"x", quality=50)

    assert a.key == f"1/{url_digest(url)}.jpg"
    assert len({a.key, b.key, c.key, legacy.key}) == 4
    assert legacy.key.startswith("unkeyed/")

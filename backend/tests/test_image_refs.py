import logging

import pytest

from app.utils.image_refs import decode_image_refs, encode_image_refs


def test_encode_keeps_order():
    assert encode_image_refs(["b.jpg", "a.jpg"]) == '["b.jpg", "a.jpg"]'


@pytest.mark.parametrize("refs", [None, [], ["", "   "], [None]])
def test_empty_sequences_are_stored_as_null(refs):
    assert encode_image_refs(refs) is None


def test_encode_strips_whitespace():
    assert encode_image_refs([" s3://bucket/a.jpg "]) == '["s3://bucket/a.jpg"]'


def test_encode_rejects_single_string():
    with pytest.raises(TypeError):
        encode_image_refs("a.jpg")


def test_decode_parses_stored_list():
    assert decode_image_refs('["img1", "img2"]') == ["img1", "img2"]


@pytest.mark.parametrize("raw", [None, "", "   "])
def test_decode_absent_is_empty(raw):
    assert decode_image_refs(raw) == []


@pytest.mark.parametrize("raw", ["not json", "{broken", '{"a": 1}', '"img1"', "42"])
def test_decode_never_raises_on_garbage(raw, caplog):
    with caplog.at_level(logging.WARNING, logger="app.utils.image_refs"):
        assert decode_image_refs(raw) == []
    assert caplog.records


def test_decode_drops_non_string_items():
    assert decode_image_refs('["img1", 3, null, {"x": 1}, "img2"]') == ["img1", "img2"]


def test_unreadable_column_value_reads_as_empty(db, world, make_request):
    from sqlalchemy import text

    from app.models.service import ServiceRequest

    sr_id = make_request(images=["ok.jpg"])
    db.execute(text("UPDATE service_requests SET after_images = 'oops' WHERE id = :id"), {"id": sr_id})
    db.commit()
    db.expire_all()

    record = db.get(ServiceRequest, sr_id)
    assert record.images == ["ok.jpg"]
    assert record.after_images == []
    assert record.before_images == []

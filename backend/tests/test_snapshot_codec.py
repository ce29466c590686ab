import json
from datetime import datetime

import pytest

from shopdata.models import Order, Product, ProductOption, SupplierInfo, User
from shopdata.services.snapshot_codec import (
    COLLECTIONS,
    SnapshotDecodeError,
    decode_collection,
    encode_collection,
)


def test_round_trip_keeps_values_and_millisecond_timestamps():
    created = datetime(2024, 3, 5, 10, 15, 30, 123456)
    user = User(id="user-1", email="a@b.vn", name="Ánh", balance=50_000, created_at=created, updated_at=created)

    doc = encode_collection("users", [user])
    (restored,) = decode_collection("users", doc.body)

    assert doc.record_count == 1
    assert restored.id == "user-1"
    assert restored.name == "Ánh"
    assert restored.balance == 50_000
    assert restored.created_at == datetime(2024, 3, 5, 10, 15, 30, 123000)


def test_timestamps_are_written_as_utc_z_strings():
    order = Order(
        id="ord-1", user_id="u", product_id="p", quantity=1, unit_price=10_000, total_amount=10_000,
        created_at=datetime(2024, 1, 2, 3, 4, 5),
    )
    row = json.loads(encode_collection("orders", [order]).body)[0]
    assert row["created_at"] == "2024-01-02T03:04:05.000Z"
    assert row["completed_at"] is None


def test_nested_records_are_revived():
    product = Product(
        id="product-1",
        title="Premium",
        options=[ProductOption(id="1m", label="1 month", price=79_000)],
        supplier=SupplierInfo(base_price=50_000, last_synced_at=datetime(2024, 1, 1)),
    )
    (restored,) = decode_collection("products", encode_collection("products", [product]).body)

    assert isinstance(restored.options[0], ProductOption)
    assert restored.options[0].price == 79_000
    assert restored.supplier.last_synced_at == datetime(2024, 1, 1)


def test_malformed_record_is_skipped_but_siblings_load(caplog):
    body = json.dumps([
        {"id": "user-1", "email": "ok@b.vn", "created_at": "2024-01-01T00:00:00.000Z"},
        {"id": "user-2", "email": "bad@b.vn", "created_at": "yesterday"},
        "not an object",
    ])
    records = decode_collection("users", body)

    assert [r.id for r in records] == ["user-1"]
    assert "Skipping malformed users record" in caplog.text


@pytest.mark.parametrize("body", ["{not json", '{"id": "x"}'])
def test_unusable_document_raises(body):
    with pytest.raises(SnapshotDecodeError):
        decode_collection("users", body)


def test_unknown_collection_raises():
    with pytest.raises(SnapshotDecodeError):
        decode_collection("carts", "[]")


def test_legacy_status_text_is_normalized():
    body = json.dumps([{
        "id": "topup-1", "user_id": "u", "user_email": "a@b.vn",
        "requested_amount": 50_000, "status": "Đã duyệt",
    }])
    (request,) = decode_collection("topups", body)
    assert request.status == "approved"


def test_every_collection_has_a_record_class():
    assert set(COLLECTIONS) == {
        "users", "products", "transactions", "topups", "activities",
        "orders", "categories", "expenses", "profit_alerts",
    }

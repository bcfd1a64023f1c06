"""Unit tests for api.brands (brand directory)."""
import sys
from pathlib import Path
from unittest.mock import patch, MagicMock

import pytest
from botocore.exceptions import ClientError

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from api import brands


def _item(user_id, brand_id, name, created="2026-01-01T00:00:00Z", count="0"):
    return {
        "UserId": {"S": user_id},
        "BrandId": {"S": brand_id},
        "BrandName": {"S": name},
        "CreatedAt": {"S": created},
        "UploadCount": {"N": count},
    }


def test_resolve_is_idempotent(fake_aws):
    _, dynamodb = fake_aws
    first = brands.resolve_or_create_brand_id("u1", "Acme", email="a@example.com", groups={"Admin"})
    second = brands.resolve_or_create_brand_id("u1", "Acme")
    assert first == second
    assert len(dynamodb.items) == 1
    record = dynamodb.items[("u1", first)]
    assert record["BrandName"]["S"] == "Acme"
    assert record["UploadCount"]["N"] == "0"
    assert record["Groups"]["S"] == "Admin"


def test_resolve_trims_name(fake_aws):
    assert brands.resolve_or_create_brand_id("u1", "  Acme ") == brands.resolve_or_create_brand_id("u1", "Acme")


def test_resolve_differs_per_user(fake_aws):
    _, dynamodb = fake_aws
    a = brands.resolve_or_create_brand_id("u1", "Acme")
    b = brands.resolve_or_create_brand_id("u2", "Acme")
    assert a != b
    assert len(dynamodb.items) == 2


def test_resolve_requires_name(fake_aws):
    with pytest.raises(ValueError):
        brands.resolve_or_create_brand_id("u1", "   ")


def test_resolve_concurrent_create_converges(fake_aws):
    """Second writer loses the conditional put and gets the same id."""
    _, dynamodb = fake_aws
    # Record exists but the index has not caught up yet
    brand_id = brands.derive_brand_id("u1", "Acme")
    dynamodb.items[("u1", brand_id)] = _item("u1", brand_id, "Acme")
    with patch.object(brands, "find_brand_id", return_value=None):
        assert brands.resolve_or_create_brand_id("u1", "Acme") == brand_id
    assert len(dynamodb.items) == 1


def test_resolve_propagates_other_errors():
    mock_ddb = MagicMock()
    mock_ddb.query.return_value = {"Items": []}
    mock_ddb.put_item.side_effect = ClientError(
        {"Error": {"Code": "ProvisionedThroughputExceededException", "Message": "slow down"}}, "PutItem"
    )
    with patch("boto3.client", return_value=mock_ddb), patch.object(brands, "BRAND_TABLE_NAME", "t"):
        with pytest.raises(ClientError):
            brands.resolve_or_create_brand_id("u1", "Acme")


def test_find_brand_id_prefers_oldest_duplicate(fake_aws):
    _, dynamodb = fake_aws
    dynamodb.items[("u1", "newer")] = _item("u1", "newer", "Acme", created="2026-03-01T00:00:00Z")
    dynamodb.items[("u1", "older")] = _item("u1", "older", "Acme", created="2025-03-01T00:00:00Z")
    assert brands.find_brand_id("u1", "Acme") == "older"
    assert brands.find_brand_id("u1", "Other") is None


def test_increment_upload_count_accumulates(fake_aws):
    _, dynamodb = fake_aws
    brand_id = brands.resolve_or_create_brand_id("u1", "Acme")
    created = dynamodb.items[("u1", brand_id)]["CreatedAt"]["S"]
    brands.increment_upload_count("u1", brand_id, 3, email="a@example.com", groups={"Admin"}, brand_name="Acme")
    brands.increment_upload_count("u1", brand_id, 2, brand_name="Renamed")
    record = brands.get_brand("u1", brand_id)
    assert record["uploadCount"] == 5
    assert record["createdAt"] == created
    assert record["brandName"] == "Acme"


def test_increment_upload_count_creates_missing_record(fake_aws):
    _, dynamodb = fake_aws
    brands.increment_upload_count("u1", "b1", 1, brand_name="Acme")
    record = brands.get_brand("u1", "b1")
    assert record["uploadCount"] == 1
    assert record["brandName"] == "Acme"
    assert record["createdAt"]


def test_get_brand_missing(fake_aws):
    assert brands.get_brand("u1", "nope") is None


def test_list_brands_for_user_sorted(fake_aws):
    _, dynamodb = fake_aws
    dynamodb.items[("u1", "b2")] = _item("u1", "b2", "zebra")
    dynamodb.items[("u1", "b1")] = _item("u1", "b1", "Alpha")
    dynamodb.items[("u2", "b3")] = _item("u2", "b3", "Other")
    result = brands.list_brands_for_user("u1")
    assert [b["brandName"] for b in result] == ["Alpha", "zebra"]


def test_list_all_brands_pages_through_scan(fake_aws):
    _, dynamodb = fake_aws
    dynamodb.scan_page_size = 2
    for i in range(5):
        dynamodb.items[(f"u{i}", f"b{i}")] = _item(f"u{i}", f"b{i}", f"Brand {4 - i}")
    result, truncated = brands.list_all_brands_globally()
    assert not truncated
    assert len(result) == 5
    assert [b["brandName"] for b in result] == [f"Brand {i}" for i in range(5)]


def test_list_all_brands_stops_at_page_cap(fake_aws):
    _, dynamodb = fake_aws
    dynamodb.scan_page_size = 1
    for i in range(4):
        dynamodb.items[("u1", f"b{i}")] = _item("u1", f"b{i}", f"Brand {i}")
    with patch.object(brands, "MAX_SCAN_PAGES", 2):
        result, truncated = brands.list_all_brands_globally()
    assert truncated
    assert len(result) == 2


def test_list_all_brands_dedupes():
    item = _item("u1", "b1", "Acme")
    mock_ddb = MagicMock()
    mock_ddb.scan.side_effect = [
        {"Items": [item], "LastEvaluatedKey": {"k": {"S": "1"}}},
        {"Items": [item]},
    ]
    with patch("boto3.client", return_value=mock_ddb):
        result, truncated = brands.list_all_brands_globally()
    assert len(result) == 1
    assert not truncated


def test_find_duplicate_brand_names():
    listed = [
        {"userId": "u1", "brandId": "b2", "brandName": "Acme", "createdAt": "2026-02-01", "uploadCount": 1},
        {"userId": "u1", "brandId": "b1", "brandName": "Acme", "createdAt": "2026-01-01", "uploadCount": 7},
        {"userId": "u2", "brandId": "b3", "brandName": "Acme", "createdAt": "2026-01-01", "uploadCount": 0},
    ]
    dupes = brands.find_duplicate_brand_names(listed)
    assert dupes == [{"userId": "u1", "brandName": "Acme", "brandIds": ["b1", "b2"], "uploadCounts": [7, 1]}]

"""
Brand directory: maps (userId, brandName) to a stable brandId.

Table layout (DynamoDB):
  PK UserId (S), SK BrandId (S)
  GSI BRAND_NAME_INDEX: UserId (HASH), BrandName (RANGE)
  attributes: BrandName, CreatedAt, UpdatedAt, UploadCount (N), Email, Groups

New brands get a brandId derived from (userId, brandName) and are written with
a conditional put, so two concurrent first uploads of the same brand name
converge on one record.
"""
import logging
import os
import uuid
from datetime import datetime

from botocore.exceptions import ClientError

logger = logging.getLogger(__name__)
logger.setLevel(logging.INFO)

BRAND_TABLE_NAME = os.environ.get("BRAND_TABLE_NAME", "")
BRAND_NAME_INDEX = os.environ.get("BRAND_NAME_INDEX", "byBrandName")
AWS_REGION = os.environ.get("AWS_REGION", "ap-northeast-1")
MAX_SCAN_PAGES = 50

BRAND_ID_NAMESPACE = uuid.UUID("6f1c2a3e-9b7d-4c55-8e21-3d4a9f0b7c12")


def _dynamodb():
    import boto3
    return boto3.client("dynamodb", region_name=AWS_REGION)


def _now():
    return datetime.utcnow().isoformat() + "Z"


def _item_to_brand(item):
    """Convert DynamoDB item to brand dict."""
    count = item.get("UploadCount", {}).get("N", "0")
    try:
        upload_count = int(count)
    except ValueError:
        upload_count = 0
    return {
        "userId": item.get("UserId", {}).get("S", ""),
        "brandId": item.get("BrandId", {}).get("S", ""),
        "brandName": item.get("BrandName", {}).get("S", ""),
        "createdAt": item.get("CreatedAt", {}).get("S", ""),
        "updatedAt": item.get("UpdatedAt", {}).get("S", ""),
        "uploadCount": upload_count,
        "email": item.get("Email", {}).get("S", ""),
        "groups": item.get("Groups", {}).get("S", ""),
    }


def _groups_snapshot(groups):
    return ",".join(sorted(str(g) for g in (groups or ())))


def derive_brand_id(user_id, brand_name):
    """Deterministic brandId for a never-seen (userId, brandName) pair."""
    return str(uuid.uuid5(BRAND_ID_NAMESPACE, f"{user_id}/{brand_name}"))


def find_brand_id(user_id, brand_name, dynamodb=None):
    """Look up an existing brandId through the brand-name index. None if absent."""
    dynamodb = dynamodb or _dynamodb()
    result = dynamodb.query(
        TableName=BRAND_TABLE_NAME,
        IndexName=BRAND_NAME_INDEX,
        KeyConditionExpression="UserId = :u AND BrandName = :n",
        ExpressionAttributeValues={":u": {"S": user_id}, ":n": {"S": brand_name}},
    )
    brands = [_item_to_brand(i) for i in result.get("Items", [])]
    brands = [b for b in brands if b["brandId"]]
    if not brands:
        return None
    if len(brands) > 1:
        logger.warning("duplicate brand records: user=%s, brand=%s, count=%s", user_id, brand_name, len(brands))
        brands.sort(key=lambda b: b["createdAt"] or "~")
    return brands[0]["brandId"]


def get_brand(user_id, brand_id, dynamodb=None):
    """Fetch one brand record, or None."""
    dynamodb = dynamodb or _dynamodb()
    resp = dynamodb.get_item(
        TableName=BRAND_TABLE_NAME,
        Key={"UserId": {"S": user_id}, "BrandId": {"S": brand_id}},
    )
    if "Item" not in resp:
        return None
    return _item_to_brand(resp["Item"])


def resolve_or_create_brand_id(user_id, brand_name, email="", groups=()):
    """Return the brandId for (userId, brandName), creating the record on first use."""
    brand_name = str(brand_name or "").strip()
    if not user_id or not brand_name:
        raise ValueError("userId and brandName are required")
    dynamodb = _dynamodb()
    existing = find_brand_id(user_id, brand_name, dynamodb=dynamodb)
    if existing:
        return existing

    brand_id = derive_brand_id(user_id, brand_name)
    now = _now()
    try:
        dynamodb.put_item(
            TableName=BRAND_TABLE_NAME,
            Item={
                "UserId": {"S": user_id},
                "BrandId": {"S": brand_id},
                "BrandName": {"S": brand_name},
                "CreatedAt": {"S": now},
                "UpdatedAt": {"S": now},
                "UploadCount": {"N": "0"},
                "Email": {"S": email or ""},
                "Groups": {"S": _groups_snapshot(groups)},
            },
            ConditionExpression="attribute_not_exists(BrandId)",
        )
        logger.info("brand created: user=%s, brand=%s, brandId=%s", user_id, brand_name, brand_id)
    except ClientError as e:
        if e.response.get("Error", {}).get("Code") != "ConditionalCheckFailedException":
            raise
        logger.info("brand already created concurrently: user=%s, brandId=%s", user_id, brand_id)
    return brand_id


def increment_upload_count(user_id, brand_id, delta, email="", groups=(), brand_name=None):
    """Atomically add `delta` to UploadCount and refresh the audit snapshot."""
    now = _now()
    set_parts = [
        "CreatedAt = if_not_exists(CreatedAt, :now)",
        "UpdatedAt = :now",
        "Email = :email",
        "#groups = :groups",
    ]
    values = {
        ":now": {"S": now},
        ":email": {"S": email or ""},
        ":groups": {"S": _groups_snapshot(groups)},
        ":inc": {"N": str(int(delta))},
    }
    if brand_name:
        set_parts.append("BrandName = if_not_exists(BrandName, :name)")
        values[":name"] = {"S": str(brand_name)}
    _dynamodb().update_item(
        TableName=BRAND_TABLE_NAME,
        Key={"UserId": {"S": user_id}, "BrandId": {"S": brand_id}},
        UpdateExpression="SET " + ", ".join(set_parts) + " ADD UploadCount :inc",
        ExpressionAttributeNames={"#groups": "Groups"},
        ExpressionAttributeValues=values,
    )


def list_brands_for_user(user_id):
    """All brands in one user's partition, sorted by name."""
    dynamodb = _dynamodb()
    request_kw = {
        "TableName": BRAND_TABLE_NAME,
        "KeyConditionExpression": "UserId = :u",
        "ExpressionAttributeValues": {":u": {"S": user_id}},
    }
    result = dynamodb.query(**request_kw)
    items = list(result.get("Items", []))
    while result.get("LastEvaluatedKey"):
        request_kw["ExclusiveStartKey"] = result["LastEvaluatedKey"]
        result = dynamodb.query(**request_kw)
        items.extend(result.get("Items", []))
    brands = [_item_to_brand(i) for i in items]
    brands.sort(key=lambda b: (b["brandName"] or b["brandId"]).lower())
    return brands


def list_all_brands_globally():
    """Scan every brand record. Returns (brands, truncated).

    De-duplicated by (userId, brandId), sorted by brand name. Stops after
    MAX_SCAN_PAGES pages; `truncated` reports whether it stopped early.
    """
    dynamodb = _dynamodb()
    request_kw = {"TableName": BRAND_TABLE_NAME}
    seen = {}
    pages = 0
    truncated = False
    while True:
        result = dynamodb.scan(**request_kw)
        pages += 1
        for item in result.get("Items", []):
            brand = _item_to_brand(item)
            if not brand["userId"] or not brand["brandId"]:
                continue
            seen.setdefault((brand["userId"], brand["brandId"]), brand)
        last_key = result.get("LastEvaluatedKey")
        if not last_key:
            break
        if pages >= MAX_SCAN_PAGES:
            truncated = True
            logger.warning("brand scan stopped at page cap: pages=%s, brands=%s", pages, len(seen))
            break
        request_kw["ExclusiveStartKey"] = last_key
    brands = list(seen.values())
    brands.sort(key=lambda b: ((b["brandName"] or b["brandId"]).lower(), b["userId"]))
    return brands, truncated


def find_duplicate_brand_names(brands):
    """Group brands by (userId, brandName); return groups with more than one brandId."""
    groups = {}
    for b in brands:
        groups.setdefault((b["userId"], b["brandName"]), []).append(b)
    duplicates = []
    for (user_id, brand_name), members in sorted(groups.items()):
        if len(members) > 1:
            members.sort(key=lambda b: b["createdAt"] or "~")
            duplicates.append({
                "userId": user_id,
                "brandName": brand_name,
                "brandIds": [b["brandId"] for b in members],
                "uploadCounts": [b["uploadCount"] for b in members],
            })
    return duplicates

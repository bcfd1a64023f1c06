"""
Gallery listing: one page of images under a user's (or brand's) prefix,
decoded into image items with presigned GET URLs.
"""
import logging
import os
import time

from botocore.exceptions import ClientError

from common.auth import isSuperAdmin
from common.errors import ApiError
from common.keys import (
    brand_display_from_segment,
    brand_prefix,
    decode_metadata_value,
    parse_object_key,
    sanitize_segment,
    user_prefix,
)

logger = logging.getLogger(__name__)
logger.setLevel(logging.INFO)

MEDIA_BUCKET = os.environ.get("MEDIA_BUCKET", "") or os.environ.get("S3_BUCKET_NAME", "")
AWS_REGION = os.environ.get("AWS_REGION", "ap-northeast-1")
READ_URL_EXPIRATION = int(os.environ.get("READ_URL_EXPIRATION", "3600"))

DEFAULT_LIMIT = 60
MAX_LIMIT = 200


def _s3():
    import boto3
    return boto3.client("s3", region_name=AWS_REGION)


def _to_iso(value):
    if value is None:
        return ""
    if hasattr(value, "isoformat"):
        return value.isoformat()
    return str(value)


def _parse_limit(raw):
    try:
        limit = int(str(raw).strip()) if raw not in (None, "") else DEFAULT_LIMIT
    except ValueError:
        limit = DEFAULT_LIMIT
    return max(1, min(MAX_LIMIT, limit))


def _to_image_item(s3, obj, head, parsed):
    key = obj["Key"]
    metadata = head.get("Metadata") or {}
    brand = decode_metadata_value(metadata.get("brand"), fallback=brand_display_from_segment(parsed.brandId))
    name = decode_metadata_value(metadata.get("originalname"), fallback=parsed.fileName)
    url = s3.generate_presigned_url(
        "get_object",
        Params={"Bucket": MEDIA_BUCKET, "Key": key},
        ExpiresIn=READ_URL_EXPIRATION,
    )
    return {
        # key, not ETag: identical bytes share an ETag
        "id": key,
        "name": name,
        "brand": brand,
        "brandId": parsed.brandId,
        "url": url,
        "key": key,
        "size": obj.get("Size", 0),
        # stamped by complete; objects never completed fall back to LastModified
        "uploadDate": metadata.get("uploaddate") or _to_iso(obj.get("LastModified")),
        "contentType": head.get("ContentType", ""),
        "urlExpiresInSeconds": READ_URL_EXPIRATION,
    }


def list_images(user, params):
    """List one page of images visible to `user`.

    params: brand (display-name filter), brandId, userId (SuperAdmin only),
    limit (default 60, max 200), cursor (S3 continuation token).
    """
    if not MEDIA_BUCKET:
        raise ApiError("MEDIA_BUCKET not configured", 500)
    t0 = time.time()
    brand = str(params.get("brand") or params.get("brandName") or "").strip()
    brand_id = str(params.get("brandId") or "").strip()
    target_user_id = str(params.get("userId") or params.get("targetUserId") or "").strip()
    limit = _parse_limit(params.get("limit"))
    cursor = str(params.get("cursor") or "").strip() or None

    # Only SuperAdmin may browse another user's namespace
    if target_user_id and target_user_id != user["userId"] and not isSuperAdmin(user):
        logger.warning("list targetUserId ignored - user=%s, target=%s", user["userId"], target_user_id)
    effective_user_id = target_user_id if (target_user_id and isSuperAdmin(user)) else user["userId"]
    safe_user_id = sanitize_segment(effective_user_id)
    safe_brand_id = sanitize_segment(brand_id)
    prefix = brand_prefix(effective_user_id, brand_id) if safe_brand_id else user_prefix(effective_user_id)
    logger.info("list start - user=%s, prefix=%s, brand=%s, limit=%s", user["userId"], prefix, brand or "all", limit)

    s3 = _s3()
    request_kw = {"Bucket": MEDIA_BUCKET, "Prefix": prefix, "MaxKeys": limit}
    if cursor:
        request_kw["ContinuationToken"] = cursor
    page = s3.list_objects_v2(**request_kw)

    images = []
    contents = page.get("Contents") or []
    for obj in contents:
        key = obj.get("Key") or ""
        parsed = parse_object_key(key)
        if parsed.ownerUserId != safe_user_id:
            logger.warning("list skipping foreign key - prefix=%s, key=%s", prefix, key)
            continue
        if parsed.folder == "config" or not parsed.fileName:
            continue
        if parsed.fileName.lower().endswith(".json"):
            continue
        if safe_brand_id and parsed.brandId != safe_brand_id:
            continue
        try:
            head = s3.head_object(Bucket=MEDIA_BUCKET, Key=key)
            item = _to_image_item(s3, obj, head, parsed)
        except ClientError as e:
            logger.warning("list head failed - key=%s, code=%s", key, e.response.get("Error", {}).get("Code"))
            continue
        if brand and item["brand"] != brand:
            continue
        images.append(item)

    # Page-local order only; pages are not globally sorted
    images.sort(key=lambda i: i["uploadDate"], reverse=True)
    next_cursor = page.get("NextContinuationToken") or None
    has_more = bool(page.get("IsTruncated")) and bool(next_cursor)
    logger.info(
        "list done - user=%s, scanned=%s, returned=%s, hasMore=%s, ms=%s",
        user["userId"], len(contents), len(images), has_more, int((time.time() - t0) * 1000),
    )
    return {
        "images": images,
        "total": len(images),
        "brand": brand or "all",
        "brandId": brand_id,
        "userId": effective_user_id,
        "nextCursor": next_cursor,
        "hasMore": has_more,
        "note": f"Image URLs are temporary and expire in about {max(1, round(READ_URL_EXPIRATION / 3600))} hour(s)",
    }

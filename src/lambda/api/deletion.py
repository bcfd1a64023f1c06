"""
Bulk image deletion confined to the caller's own {userId}/ namespace.

By brand: list the brand prefix 1000 keys at a time and batch-delete each page,
up to MAX_DELETE_PAGES pages; the returned nextCursor resumes a capped run.
By keys: every key must sit under the caller's prefix or nothing is deleted.
Brand records are left in place.
"""
import logging
import os
import time

from api import brands
from common.errors import ApiError, Forbidden, NotFound, ValidationError
from common.keys import brand_prefix, sanitize_segment, user_prefix

logger = logging.getLogger(__name__)
logger.setLevel(logging.INFO)

MEDIA_BUCKET = os.environ.get("MEDIA_BUCKET", "") or os.environ.get("S3_BUCKET_NAME", "")
AWS_REGION = os.environ.get("AWS_REGION", "ap-northeast-1")

DELETE_BATCH_SIZE = 1000  # DeleteObjects limit
MAX_DELETE_PAGES = 500


def _s3():
    import boto3
    return boto3.client("s3", region_name=AWS_REGION)


def _delete_batch(s3, keys):
    """Delete up to 1000 keys. Returns (deletedKeys, errors)."""
    resp = s3.delete_objects(
        Bucket=MEDIA_BUCKET,
        Delete={"Objects": [{"Key": k} for k in keys], "Quiet": False},
    )
    deleted = [d.get("Key") for d in resp.get("Deleted", [])]
    errors = [
        {"key": e.get("Key"), "code": e.get("Code", ""), "message": e.get("Message", "")}
        for e in resp.get("Errors", [])
    ]
    return deleted, errors


def delete_by_brand(user, brand_id=None, brand_name=None, cursor=None):
    """Delete every object under {userId}/{brandId}/."""
    user_id = user["userId"]
    brand_id = str(brand_id or "").strip()
    brand_name = str(brand_name or "").strip()
    if not brand_id and brand_name:
        if not brands.BRAND_TABLE_NAME:
            raise ApiError("BRAND_TABLE_NAME not configured", 500)
        brand_id = brands.find_brand_id(user_id, brand_name) or ""
        if not brand_id:
            raise NotFound("Brand not found")
    if not sanitize_segment(brand_id):
        raise ValidationError("brandId is required")

    t0 = time.time()
    prefix = brand_prefix(user_id, brand_id)
    logger.info("delete brand start - user=%s, prefix=%s, resume=%s", user_id, prefix, bool(cursor))
    s3 = _s3()
    token = cursor or None
    deleted_count = 0
    errors = []
    pages = 0
    finished = False
    while pages < MAX_DELETE_PAGES:
        pages += 1
        request_kw = {"Bucket": MEDIA_BUCKET, "Prefix": prefix, "MaxKeys": DELETE_BATCH_SIZE}
        if token:
            request_kw["ContinuationToken"] = token
        page = s3.list_objects_v2(**request_kw)
        keys = [o["Key"] for o in page.get("Contents", []) if o.get("Key")]
        logger.info("delete brand page %s - found=%s, truncated=%s", pages, len(keys), bool(page.get("IsTruncated")))
        if keys:
            deleted, page_errors = _delete_batch(s3, keys)
            deleted_count += len(deleted)
            errors.extend(page_errors)
        token = page.get("NextContinuationToken")
        if not page.get("IsTruncated") or not token:
            finished = True
            break

    if not finished:
        logger.warning("delete brand stopped at page cap - user=%s, prefix=%s, deleted=%s", user_id, prefix, deleted_count)
    logger.info(
        "delete brand done - user=%s, deleted=%s, errors=%s, ms=%s",
        user_id, deleted_count, len(errors), int((time.time() - t0) * 1000),
    )
    return {
        "message": f"Deleted {deleted_count} file(s)",
        "brandId": brand_id,
        "deletedCount": deleted_count,
        "errors": errors,
        "pages": pages,
        "complete": finished,
        "nextCursor": None if finished else token,
    }


def delete_by_keys(user, keys):
    """Delete the given keys; all must be under the caller's prefix."""
    if not isinstance(keys, list) or not keys:
        raise ValidationError("Provide a non-empty list of keys")
    user_id = user["userId"]
    required = user_prefix(user_id)
    invalid = [k for k in keys if not isinstance(k, str) or not k.startswith(required) or k == required]
    if invalid:
        logger.warning("delete keys outside namespace - user=%s, invalid=%s", user_id, invalid[:20])
        raise Forbidden()

    t0 = time.time()
    unique = list(dict.fromkeys(keys))
    s3 = _s3()
    deleted = []
    errors = []
    for i in range(0, len(unique), DELETE_BATCH_SIZE):
        batch_deleted, batch_errors = _delete_batch(s3, unique[i:i + DELETE_BATCH_SIZE])
        deleted.extend(batch_deleted)
        errors.extend(batch_errors)
    for e in errors:
        logger.error("delete failed - key=%s, code=%s, message=%s", e["key"], e["code"], e["message"])
    logger.info(
        "delete keys done - user=%s, deleted=%s, errors=%s, ms=%s",
        user_id, len(deleted), len(errors), int((time.time() - t0) * 1000),
    )
    return {
        "message": f"Deleted {len(deleted)} file(s)",
        "deletedCount": len(deleted),
        "deleted": deleted,
        "errors": errors,
    }


def delete_images(user, body):
    """Dispatch on request shape: brandId / brandName prefix delete, else keys."""
    if not MEDIA_BUCKET:
        raise ApiError("MEDIA_BUCKET not configured", 500)
    if str(body.get("brandId") or "").strip() or str(body.get("brandName") or "").strip():
        return delete_by_brand(
            user,
            brand_id=body.get("brandId"),
            brand_name=body.get("brandName"),
            cursor=body.get("cursor"),
        )
    return delete_by_keys(user, body.get("keys"))

"""
Two-phase direct-to-S3 upload.

prepare: validate file descriptors, resolve the brand, hand out presigned PUT
URLs under {userId}/{brandId}/. No storage side effect.

complete: for each uploaded key, check ownership, confirm the object exists,
normalize its content type, rewrite metadata in place (optionally re-encoding
the image), and return a presigned GET URL. One aggregate UploadCount bump per
batch. Safe to retry for the same keys.
"""
import logging
import math
import os
import time
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime

from botocore.exceptions import ClientError

from api import brands
from common.errors import ApiError, NotFound, ValidationError
from common.keys import (
    brand_prefix,
    decode_metadata_value,
    encode_metadata_value,
    normalize_mime_type,
    replace_ext_with_jpg,
    sanitize_file_name,
    sanitize_segment,
    user_prefix,
)

logger = logging.getLogger(__name__)
logger.setLevel(logging.INFO)

MEDIA_BUCKET = os.environ.get("MEDIA_BUCKET", "") or os.environ.get("S3_BUCKET_NAME", "")
AWS_REGION = os.environ.get("AWS_REGION", "ap-northeast-1")
READ_URL_EXPIRATION = int(os.environ.get("READ_URL_EXPIRATION", "3600"))
WRITE_URL_EXPIRATION = int(os.environ.get("WRITE_URL_EXPIRATION", "900"))
IMAGE_TRANSFORM = os.environ.get("IMAGE_TRANSFORM", "").strip().lower() in ("1", "true", "yes")
COMPLETE_WORKERS = int(os.environ.get("COMPLETE_WORKERS", "4"))

ALLOWED_MIME_TYPES = ("image/jpeg", "image/png", "image/webp")
GENERIC_MIME_TYPES = ("application/octet-stream", "binary/octet-stream")
MAX_FILE_SIZE = 10 * 1024 * 1024  # 10MB
NOT_FOUND_CODES = ("404", "NoSuchKey", "NotFound")


def _s3():
    import boto3
    return boto3.client("s3", region_name=AWS_REGION)


def _requireBucket():
    if not MEDIA_BUCKET:
        raise ApiError("MEDIA_BUCKET not configured", 500)


def _requireBrandTable():
    if not brands.BRAND_TABLE_NAME:
        raise ApiError("BRAND_TABLE_NAME not configured", 500)


def _validate_descriptor(f):
    """Return an error string for a bad file descriptor, else None."""
    name = str(f.get("name") or "")
    mime = normalize_mime_type(f.get("type") or f.get("mimeType"))
    if not name:
        return "File name is required"
    if mime not in ALLOWED_MIME_TYPES:
        return f"Unsupported file type: {f.get('type') or f.get('mimeType') or ''}"
    try:
        size = float(f.get("size") or 0)
    except (TypeError, ValueError):
        size = 0
    if not math.isfinite(size) or size <= 0:
        return "Invalid file size"
    if size > MAX_FILE_SIZE:
        return "File exceeds size limit (max 10MB)"
    return None


def _unique_key(prefix, file_name, used):
    key = prefix + file_name
    if key not in used:
        return key
    base, ext = file_name.rsplit(".", 1)
    n = 1
    while f"{prefix}{base}-{n}.{ext}" in used:
        n += 1
    return f"{prefix}{base}-{n}.{ext}"


def prepare_upload(user, body):
    """Phase 1: presigned PUT URLs for the described files."""
    brand_name = str(body.get("brandName") or "").strip()
    files = body.get("files")
    if not brand_name:
        raise ValidationError("brandName is required")
    if not isinstance(files, list) or not files:
        raise ValidationError("At least one file is required")
    _requireBucket()
    _requireBrandTable()

    t0 = time.time()
    user_id = user["userId"]
    logger.info("prepare start - user=%s, brand=%s, files=%s", user_id, brand_name, len(files))
    brand_id = brands.resolve_or_create_brand_id(
        user_id, brand_name, email=user.get("email", ""), groups=user.get("groups", ())
    )
    if not sanitize_segment(brand_id):
        raise ApiError("Resolved brandId is empty", 500)
    prefix = brand_prefix(user_id, brand_id)

    s3 = _s3()
    items = []
    used = set()
    for f in files:
        if not isinstance(f, dict):
            items.append({"fileName": "(unknown)", "success": False, "error": "Invalid file descriptor"})
            continue
        name = str(f.get("name") or "")
        error = _validate_descriptor(f)
        if error:
            items.append({"fileName": name or "(unknown)", "success": False, "error": error})
            continue
        key = _unique_key(prefix, replace_ext_with_jpg(sanitize_file_name(name)), used)
        used.add(key)
        # Sign Bucket/Key only: extra signed headers make browser PUTs fail with 403.
        write_url = s3.generate_presigned_url(
            "put_object",
            Params={"Bucket": MEDIA_BUCKET, "Key": key},
            ExpiresIn=WRITE_URL_EXPIRATION,
        )
        items.append({
            "fileName": name,
            "success": True,
            "key": key,
            "writeUrl": write_url,
            "method": "PUT",
            "expiresInSeconds": WRITE_URL_EXPIRATION,
        })

    ok = sum(1 for i in items if i["success"])
    logger.info(
        "prepare done - user=%s, brandId=%s, ok=%s, failed=%s, ms=%s",
        user_id, brand_id, ok, len(items) - ok, int((time.time() - t0) * 1000),
    )
    return {
        "brandId": brand_id,
        "brandName": brand_name,
        "items": items,
        "note": f"PUT each file to its writeUrl within {WRITE_URL_EXPIRATION // 60} minutes, then call /upload/complete",
    }


def _error_code(e):
    return str(e.response.get("Error", {}).get("Code", ""))


def _transform_in_place(s3, key, metadata):
    from api.image_transform import cover_to_jpeg

    obj = s3.get_object(Bucket=MEDIA_BUCKET, Key=key)
    data = obj["Body"].read()
    out = cover_to_jpeg(data)
    s3.put_object(Bucket=MEDIA_BUCKET, Key=key, Body=out, ContentType="image/jpeg", Metadata=metadata)
    return "image/jpeg"


def _already_completed(metadata, user_id, brand_id):
    """True when a previous complete already stamped this object for (user, brand)."""
    return (
        bool(metadata.get("uploaddate"))
        and metadata.get("brandid") == sanitize_segment(brand_id)
        and decode_metadata_value(metadata.get("owner")) == user_id
    )


def _presign_get(s3, key):
    return s3.generate_presigned_url(
        "get_object",
        Params={"Bucket": MEDIA_BUCKET, "Key": key},
        ExpiresIn=READ_URL_EXPIRATION,
    )


def _complete_one(s3, user, brand_id, brand_name, item):
    key = str(item.get("key") or "")
    file_name = str(item.get("fileName") or "") or key.split("/")[-1]
    result = {"key": key, "fileName": file_name, "success": False}
    user_id = user["userId"]

    if not key.startswith(user_prefix(user_id)) or not key.startswith(brand_prefix(user_id, brand_id)):
        logger.warning("complete key prefix mismatch - user=%s, brandId=%s, key=%s", user_id, brand_id, key)
        result["error"] = "Forbidden"
        return result

    try:
        try:
            head = s3.head_object(Bucket=MEDIA_BUCKET, Key=key)
        except ClientError as e:
            if _error_code(e) in NOT_FOUND_CODES:
                result["error"] = "NOT_FOUND"
                return result
            raise

        # The write grant does not bind a size, so check what actually landed
        size = int(head.get("ContentLength") or 0)
        if size <= 0:
            result["error"] = "Invalid file size"
            return result
        if size > MAX_FILE_SIZE:
            logger.warning("complete object too large - user=%s, key=%s, bytes=%s", user_id, key, size)
            result["error"] = "File exceeds size limit (max 10MB)"
            return result

        # PUT grants omit Content-Type, so the stored type is often octet-stream.
        reported = normalize_mime_type(item.get("mimeType"))
        observed = normalize_mime_type(head.get("ContentType"))
        content_type = reported or observed
        if content_type and content_type not in ALLOWED_MIME_TYPES and content_type not in GENERIC_MIME_TYPES:
            result["error"] = f"Unsupported file type: {content_type}"
            return result

        if _already_completed(head.get("Metadata") or {}, user_id, brand_id):
            # Retried complete: keep the original stamp and do not count it again
            logger.info("complete already done - user=%s, key=%s", user_id, key)
            result.update({
                "success": True,
                "alreadyCompleted": True,
                "url": _presign_get(s3, key),
                "contentType": observed or GENERIC_MIME_TYPES[0],
                "expiresInSeconds": READ_URL_EXPIRATION,
            })
            return result

        metadata = {
            "brand": encode_metadata_value(brand_name),
            "originalname": encode_metadata_value(file_name),
            "owner": encode_metadata_value(user_id),
            "brandid": sanitize_segment(brand_id),
            "uploaddate": datetime.utcnow().isoformat() + "Z",
        }
        if IMAGE_TRANSFORM:
            stored_type = _transform_in_place(s3, key, metadata)
        else:
            stored_type = content_type or observed or GENERIC_MIME_TYPES[0]
            s3.copy_object(
                Bucket=MEDIA_BUCKET,
                Key=key,
                CopySource={"Bucket": MEDIA_BUCKET, "Key": key},
                Metadata=metadata,
                MetadataDirective="REPLACE",
                ContentType=stored_type,
            )

        result.update({
            "success": True,
            "url": _presign_get(s3, key),
            "contentType": stored_type,
            "expiresInSeconds": READ_URL_EXPIRATION,
        })
        return result
    except ClientError as e:
        logger.error("complete storage error - user=%s, key=%s, code=%s", user_id, key, _error_code(e))
        result["error"] = f"Storage error: {_error_code(e) or 'unknown'}"
        return result
    except Exception as e:
        logger.exception("complete error - user=%s, key=%s", user_id, key)
        result["error"] = str(e) or type(e).__name__
        return result


def complete_upload(user, body):
    """Phase 2: verify uploaded objects, stamp metadata and count successes."""
    brand_id = str(body.get("brandId") or "").strip()
    brand_name = str(body.get("brandName") or "").strip()
    raw_items = body.get("items")
    if isinstance(raw_items, list):
        items = [i for i in raw_items if isinstance(i, dict) and str(i.get("key") or "")]
    else:
        items = [{"key": str(k)} for k in (body.get("keys") or []) if k]
    if not brand_id or not sanitize_segment(brand_id):
        raise ValidationError("brandId is required")
    if not items:
        raise ValidationError("No uploaded file keys provided")
    _requireBucket()
    _requireBrandTable()

    t0 = time.time()
    user_id = user["userId"]
    if not brand_name:
        record = brands.get_brand(user_id, brand_id)
        if not record:
            raise NotFound("Brand not found")
        brand_name = record["brandName"]
        if not brand_name:
            raise ValidationError("brandName is required")
    logger.info("complete start - user=%s, brandId=%s, items=%s", user_id, brand_id, len(items))

    s3 = _s3()
    workers = max(1, min(COMPLETE_WORKERS, len(items)))
    with ThreadPoolExecutor(max_workers=workers) as pool:
        results = list(pool.map(lambda i: _complete_one(s3, user, brand_id, brand_name, i), items))

    success = sum(1 for r in results if r["success"])
    failed = len(results) - success
    newly_completed = sum(1 for r in results if r["success"] and not r.get("alreadyCompleted"))
    counter_updated = False
    if newly_completed > 0:
        try:
            brands.increment_upload_count(
                user_id, brand_id, newly_completed,
                email=user.get("email", ""), groups=user.get("groups", ()), brand_name=brand_name,
            )
            counter_updated = True
        except ClientError:
            logger.exception("upload count update failed - user=%s, brandId=%s, +%s", user_id, brand_id, newly_completed)

    logger.info(
        "complete done - user=%s, brandId=%s, ok=%s, failed=%s, ms=%s",
        user_id, brand_id, success, failed, int((time.time() - t0) * 1000),
    )
    return {
        "message": f"Upload complete: {success} succeeded, {failed} failed",
        "brandId": brand_id,
        "brandName": brand_name,
        "results": results,
        "summary": {"total": len(results), "success": success, "failed": failed},
        "counterUpdated": counter_updated,
        "note": f"Image URLs are temporary and expire in about {max(1, round(READ_URL_EXPIRATION / 3600))} hour(s)",
    }

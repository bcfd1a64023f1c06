"""
Brand configuration JSON (SuperAdmin only).

Same two-phase flow as image uploads, under {brandId}/config/ with no per-user
scoping. Also hands out read grants for the per-brand gender-map.json.
"""
import json
import logging
import math
import os
from datetime import datetime

from botocore.exceptions import ClientError

from common.errors import ApiError, NotFound, ValidationError
from common.keys import (
    brand_prefix,
    config_prefix,
    encode_metadata_value,
    normalize_mime_type,
    sanitize_file_name,
    sanitize_segment,
)

logger = logging.getLogger(__name__)
logger.setLevel(logging.INFO)

MEDIA_BUCKET = os.environ.get("MEDIA_BUCKET", "") or os.environ.get("S3_BUCKET_NAME", "")
AWS_REGION = os.environ.get("AWS_REGION", "ap-northeast-1")
READ_URL_EXPIRATION = int(os.environ.get("READ_URL_EXPIRATION", "3600"))
WRITE_URL_EXPIRATION = int(os.environ.get("WRITE_URL_EXPIRATION", "900"))

MAX_CONFIG_SIZE = 2 * 1024 * 1024  # 2MB
ALLOWED_CONFIG_TYPES = ("", "application/json", "text/json", "application/octet-stream")
GENDER_MAP_FILE = "gender-map.json"
NOT_FOUND_CODES = ("404", "NoSuchKey", "NotFound")


def _s3():
    import boto3
    return boto3.client("s3", region_name=AWS_REGION)


def _requireBrandId(body):
    brand_id = str(body.get("brandId") or "").strip()
    if not sanitize_segment(brand_id):
        raise ValidationError("brandId is required")
    if not MEDIA_BUCKET:
        raise ApiError("MEDIA_BUCKET not configured", 500)
    return brand_id


def _validate_config_descriptor(f):
    name = str(f.get("name") or "")
    if not name:
        return "File name is required"
    if not name.lower().endswith(".json"):
        return "Only .json files are supported"
    if normalize_mime_type(f.get("type")) not in ALLOWED_CONFIG_TYPES:
        return f"Unsupported file type: {f.get('type')}"
    try:
        size = float(f.get("size") or 0)
    except (TypeError, ValueError):
        size = 0
    if not math.isfinite(size) or size <= 0:
        return "Invalid file size"
    if size > MAX_CONFIG_SIZE:
        return "File exceeds size limit (max 2MB)"
    return None


def config_prepare(user, body):
    """Presigned PUT URLs for brand config JSON files."""
    brand_id = _requireBrandId(body)
    files = body.get("files")
    if not isinstance(files, list) or not files:
        raise ValidationError("At least one file is required")

    prefix = config_prefix(brand_id)
    s3 = _s3()
    items = []
    for f in files:
        if not isinstance(f, dict):
            items.append({"fileName": "(unknown)", "success": False, "error": "Invalid file descriptor"})
            continue
        name = str(f.get("name") or "")
        error = _validate_config_descriptor(f)
        if error:
            items.append({"fileName": name or "(unknown)", "success": False, "error": error})
            continue
        key = prefix + sanitize_file_name(name)
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
    logger.info("config prepare - user=%s, brandId=%s, ok=%s, failed=%s", user["userId"], brand_id, ok, len(items) - ok)
    return {
        "brandId": brand_id,
        "items": items,
        "note": f"PUT each file to its writeUrl within {WRITE_URL_EXPIRATION // 60} minutes, then call /config/complete",
    }


def _config_complete_one(s3, user, prefix, item):
    key = str(item.get("key") or "")
    file_name = str(item.get("fileName") or "") or key.split("/")[-1]
    result = {"key": key, "fileName": file_name, "success": False}
    if not key.startswith(prefix) or key == prefix or not key.lower().endswith(".json"):
        logger.warning("config complete key prefix mismatch - prefix=%s, key=%s", prefix, key)
        result["error"] = "Forbidden"
        return result
    try:
        try:
            head = s3.head_object(Bucket=MEDIA_BUCKET, Key=key)
        except ClientError as e:
            if str(e.response.get("Error", {}).get("Code", "")) in NOT_FOUND_CODES:
                result["error"] = "NOT_FOUND"
                return result
            raise
        if int(head.get("ContentLength") or 0) > MAX_CONFIG_SIZE:
            result["error"] = "File exceeds size limit (max 2MB)"
            return result
        raw = s3.get_object(Bucket=MEDIA_BUCKET, Key=key)["Body"].read()
        try:
            json.loads(raw.decode("utf-8"))
        except (UnicodeDecodeError, ValueError):
            result["error"] = "Invalid JSON"
            return result
        s3.copy_object(
            Bucket=MEDIA_BUCKET,
            Key=key,
            CopySource={"Bucket": MEDIA_BUCKET, "Key": key},
            Metadata={
                "originalname": encode_metadata_value(file_name),
                "owner": encode_metadata_value(user["userId"]),
                "uploaddate": datetime.utcnow().isoformat() + "Z",
            },
            MetadataDirective="REPLACE",
            ContentType="application/json",
        )
        url = s3.generate_presigned_url(
            "get_object",
            Params={"Bucket": MEDIA_BUCKET, "Key": key},
            ExpiresIn=READ_URL_EXPIRATION,
        )
        result.update({"success": True, "url": url, "expiresInSeconds": READ_URL_EXPIRATION})
        return result
    except ClientError as e:
        code = e.response.get("Error", {}).get("Code", "")
        logger.error("config complete storage error - key=%s, code=%s", key, code)
        result["error"] = f"Storage error: {code or 'unknown'}"
        return result


def config_complete(user, body):
    """Verify uploaded config JSON and stamp its metadata."""
    brand_id = _requireBrandId(body)
    items = [i for i in (body.get("items") or []) if isinstance(i, dict) and i.get("key")]
    if not items:
        raise ValidationError("No uploaded file keys provided")
    prefix = config_prefix(brand_id)
    s3 = _s3()
    results = [_config_complete_one(s3, user, prefix, i) for i in items]
    success = sum(1 for r in results if r["success"])
    failed = len(results) - success
    logger.info("config complete - user=%s, brandId=%s, ok=%s, failed=%s", user["userId"], brand_id, success, failed)
    return {
        "message": f"Config upload complete: {success} succeeded, {failed} failed",
        "brandId": brand_id,
        "results": results,
        "summary": {"total": len(results), "success": success, "failed": failed},
    }


def gender_map_grant(user, body):
    """Read grant for {userId}/{brandId}/gender-map.json."""
    brand_id = _requireBrandId(body)
    owner_id = str(body.get("userId") or "").strip()
    if not sanitize_segment(owner_id):
        raise ValidationError("userId is required")
    key = brand_prefix(owner_id, brand_id) + GENDER_MAP_FILE
    s3 = _s3()
    try:
        s3.head_object(Bucket=MEDIA_BUCKET, Key=key)
    except ClientError as e:
        if str(e.response.get("Error", {}).get("Code", "")) in NOT_FOUND_CODES:
            raise NotFound(f"{GENDER_MAP_FILE} not found", details={"key": key})
        raise
    url = s3.generate_presigned_url(
        "get_object",
        Params={"Bucket": MEDIA_BUCKET, "Key": key},
        ExpiresIn=READ_URL_EXPIRATION,
    )
    logger.info("gender map grant - user=%s, key=%s", user["userId"], key)
    return {"key": key, "url": url, "expiresInSeconds": READ_URL_EXPIRATION}

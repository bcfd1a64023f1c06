"""
API Gateway handler for the garment image service. Routes by path.

Accepts HTTP API (payload 2.0) and REST API (payload 1.0) events. Stage
prefixes are tolerated: routes match on the path suffix.
"""
import base64
import json
import logging
import sys
import time
from pathlib import Path

# Ensure common module is importable
sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from botocore.exceptions import ClientError

from common.auth import (
    BRAND_GROUPS,
    DELETE_GROUPS,
    LIST_GROUPS,
    SUPER_ADMIN_GROUPS,
    UPLOAD_GROUPS,
    getUserInfo,
)
from common.errors import ApiError, Forbidden, Unauthorized, UpstreamFailure, ValidationError
from common.response import errorResponse, jsonResponse

logger = logging.getLogger(__name__)
logger.setLevel(logging.INFO)


def _getPath(event):
    path = event.get("rawPath") or event.get("path") or ""
    if not path:
        path = event.get("requestContext", {}).get("http", {}).get("path", "")
    return str(path).rstrip("/") or "/"


def _getMethod(event):
    method = event.get("requestContext", {}).get("http", {}).get("method") or event.get("httpMethod") or "GET"
    return str(method).upper()


def _parseBody(event):
    """Parse the JSON request body; empty body is {}."""
    raw = event.get("body")
    if raw is None or raw == "":
        return {}
    if isinstance(raw, dict):
        return raw
    try:
        if event.get("isBase64Encoded"):
            raw = base64.b64decode(raw).decode("utf-8")
        body = json.loads(raw)
    except (ValueError, UnicodeDecodeError):
        raise ValidationError("Invalid JSON body")
    if not isinstance(body, dict):
        raise ValidationError("Invalid JSON body")
    return body


def _requireGroups(event, allowed, label):
    """Return (user, None) if the caller is in one of `allowed`, else (None, error_response)."""
    user = getUserInfo(event)
    if not user.get("userId"):
        return None, errorResponse(Unauthorized())
    if not (user["groups"] & allowed):
        logger.warning("forbidden - user=%s, groups=%s, required=%s", user["userId"], sorted(user["groups"]), label)
        return None, errorResponse(Forbidden(f"Forbidden: {label} role required"))
    return user, None


def _requireUploader(event):
    return _requireGroups(event, UPLOAD_GROUPS, "Admin or SuperAdmin")


def _requireViewer(event):
    return _requireGroups(event, LIST_GROUPS, "Admin, ViewData or SuperAdmin")


def _requireDeleter(event):
    return _requireGroups(event, DELETE_GROUPS, "Admin or SuperAdmin")


def _requireBrandReader(event):
    return _requireGroups(event, BRAND_GROUPS, "Admin or SuperAdmin")


def _requireSuperAdmin(event):
    return _requireGroups(event, SUPER_ADMIN_GROUPS, "SuperAdmin")


def handler(event, context):
    """Route request by path; return JSON with CORS headers."""
    t0 = time.time()
    path = _getPath(event)
    method = _getMethod(event)
    request_id = event.get("requestContext", {}).get("requestId", "unknown")
    logger.info("request start - requestId=%s, method=%s, path=%s", request_id, method, path)
    try:
        response = _route(event, method, path)
    except ApiError as e:
        response = errorResponse(e)
    except ClientError as e:
        code = e.response.get("Error", {}).get("Code", "")
        logger.exception("upstream error - requestId=%s, path=%s, code=%s", request_id, path, code)
        response = errorResponse(UpstreamFailure("Upstream service error", details={"code": code}))
    except Exception:
        logger.exception("handler error - requestId=%s, path=%s", request_id, path)
        response = jsonResponse({"error": "Internal server error"}, 500)
    logger.info(
        "request done - requestId=%s, path=%s, status=%s, ms=%s",
        request_id, path, response["statusCode"], int((time.time() - t0) * 1000),
    )
    return response


def _route(event, method, path):
    if method == "OPTIONS":
        # CORS preflight
        return jsonResponse({}, 200)
    if method == "GET" and path.endswith("/health"):
        return jsonResponse({"ok": True})
    if method == "POST" and path.endswith("/upload/prepare"):
        return prepareUpload(event)
    if method == "POST" and path.endswith("/upload/complete"):
        return completeUpload(event)
    if method == "POST" and path.endswith("/brand/listAll"):
        return listAllBrands(event)
    if method == "POST" and path.endswith("/brand/list"):
        return listMyBrands(event)
    if method in ("GET", "POST") and path.endswith("/list") and not path.endswith("/brand/list"):
        return listImages(event)
    if method in ("POST", "DELETE") and path.endswith("/delete"):
        return deleteImages(event)
    if method == "POST" and path.endswith("/config/prepare"):
        return configPrepare(event)
    if method == "POST" and path.endswith("/config/complete"):
        return configComplete(event)
    if method == "POST" and path.endswith("/config/gender-map"):
        return genderMapUrl(event)
    return jsonResponse({"error": "Not Found", "path": path, "method": method}, 404)


def prepareUpload(event):
    """POST /upload/prepare - presigned PUT URLs (Admin or SuperAdmin)."""
    user, err = _requireUploader(event)
    if err:
        return err
    from api.uploads import prepare_upload
    return jsonResponse(prepare_upload(user, _parseBody(event)))


def completeUpload(event):
    """POST /upload/complete - verify uploads and register them (Admin or SuperAdmin)."""
    user, err = _requireUploader(event)
    if err:
        return err
    from api.uploads import complete_upload
    return jsonResponse(complete_upload(user, _parseBody(event)))


def listImages(event):
    """GET|POST /list - one page of gallery images (Admin, ViewData or SuperAdmin)."""
    user, err = _requireViewer(event)
    if err:
        return err
    if _getMethod(event) == "GET":
        params = event.get("queryStringParameters") or {}
    else:
        params = _parseBody(event)
    from api.gallery import list_images
    return jsonResponse(list_images(user, params))


def deleteImages(event):
    """POST /delete - delete by brand prefix or by keys (Admin or SuperAdmin)."""
    user, err = _requireDeleter(event)
    if err:
        return err
    from api.deletion import delete_images
    return jsonResponse(delete_images(user, _parseBody(event)))


def listMyBrands(event):
    """POST /brand/list - the caller's own brands (Admin or SuperAdmin)."""
    user, err = _requireBrandReader(event)
    if err:
        return err
    from api import brands
    if not brands.BRAND_TABLE_NAME:
        return jsonResponse({"brands": [], "error": "BRAND_TABLE_NAME not set"}, 500)
    result = brands.list_brands_for_user(user["userId"])
    return jsonResponse({"brands": result, "total": len(result)})


def listAllBrands(event):
    """POST /brand/listAll - every brand of every user (SuperAdmin)."""
    _, err = _requireSuperAdmin(event)
    if err:
        return err
    from api import brands
    if not brands.BRAND_TABLE_NAME:
        return jsonResponse({"brands": [], "error": "BRAND_TABLE_NAME not set"}, 500)
    result, truncated = brands.list_all_brands_globally()
    return jsonResponse({"brands": result, "total": len(result), "truncated": truncated})


def configPrepare(event):
    """POST /config/prepare - presigned PUT URLs for brand config JSON (SuperAdmin)."""
    user, err = _requireSuperAdmin(event)
    if err:
        return err
    from api.brand_config import config_prepare
    return jsonResponse(config_prepare(user, _parseBody(event)))


def configComplete(event):
    """POST /config/complete - verify uploaded brand config JSON (SuperAdmin)."""
    user, err = _requireSuperAdmin(event)
    if err:
        return err
    from api.brand_config import config_complete
    return jsonResponse(config_complete(user, _parseBody(event)))


def genderMapUrl(event):
    """POST /config/gender-map - read URL for a brand's gender-map.json (SuperAdmin)."""
    user, err = _requireSuperAdmin(event)
    if err:
        return err
    from api.brand_config import gender_map_grant
    return jsonResponse(gender_map_grant(user, _parseBody(event)))

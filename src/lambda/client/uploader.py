"""
Client for the two-phase upload API.

prepare -> PUT each file to its presigned URL -> complete. The storage PUT and
the complete/config calls are retried with exponential backoff on 429, 5xx and
network errors; prepare is sent once since it may create a brand.
"""
import json
import logging
import mimetypes
import os
import time
import urllib.error
import urllib.request
from concurrent.futures import ThreadPoolExecutor

logger = logging.getLogger(__name__)
logger.setLevel(logging.INFO)

DEFAULT_WORKERS = 3
MAX_ATTEMPTS = 4
BASE_DELAY_SEC = 0.5
TIMEOUT_SEC = 30


class UploadClientError(Exception):
    """Non-retryable failure, or retries exhausted."""

    def __init__(self, message, status=None):
        super().__init__(message)
        self.status = status


def _is_retryable(status):
    return status == 429 or (status is not None and status >= 500)


class UploadClient:
    def __init__(self, api_url, id_token, api_key=None, max_attempts=MAX_ATTEMPTS,
                 base_delay=BASE_DELAY_SEC, timeout=TIMEOUT_SEC, sleep=time.sleep):
        self.api_url = api_url.rstrip("/")
        self.id_token = id_token
        self.api_key = api_key
        self.max_attempts = max(1, max_attempts)
        self.base_delay = base_delay
        self.timeout = timeout
        self._sleep = sleep

    def _send(self, request, retry):
        """Send with optional backoff. Returns the response body bytes."""
        attempts = self.max_attempts if retry else 1
        for attempt in range(1, attempts + 1):
            try:
                with urllib.request.urlopen(request, timeout=self.timeout) as resp:
                    return resp.read()
            except urllib.error.HTTPError as e:
                detail = e.read().decode("utf-8", "replace")
                try:
                    message = json.loads(detail).get("error") or detail
                except (ValueError, AttributeError):
                    message = detail or e.reason
                if not _is_retryable(e.code) or attempt == attempts:
                    raise UploadClientError(f"HTTP {e.code}: {message}", status=e.code)
                logger.warning("retrying %s after HTTP %s (attempt %s/%s)", request.full_url.split("?")[0], e.code, attempt, attempts)
            except urllib.error.URLError as e:
                if attempt == attempts:
                    raise UploadClientError(str(e.reason))
                logger.warning("retrying %s after %s (attempt %s/%s)", request.full_url.split("?")[0], e.reason, attempt, attempts)
            self._sleep(self.base_delay * (2 ** (attempt - 1)))
        raise UploadClientError("retries exhausted")

    def _post(self, path, body, retry=False):
        headers = {"Content-Type": "application/json", "Authorization": self.id_token}
        if self.api_key:
            headers["x-api-key"] = self.api_key
        request = urllib.request.Request(
            f"{self.api_url}{path}",
            data=json.dumps(body).encode("utf-8"),
            headers=headers,
            method="POST",
        )
        return json.loads(self._send(request, retry) or b"{}")

    def prepare(self, brand_name, files):
        return self._post("/upload/prepare", {"brandName": brand_name, "files": files})

    def complete(self, brand_id, brand_name, items):
        return self._post(
            "/upload/complete",
            {"brandId": brand_id, "brandName": brand_name, "items": items},
            retry=True,
        )

    def config_prepare(self, brand_id, files):
        return self._post("/config/prepare", {"brandId": brand_id, "files": files}, retry=True)

    def config_complete(self, brand_id, items):
        return self._post("/config/complete", {"brandId": brand_id, "items": items}, retry=True)

    def put_file(self, write_url, data):
        # No Content-Type: the grant is signed over Bucket/Key only
        request = urllib.request.Request(write_url, data=data, method="PUT")
        self._send(request, retry=True)

    def upload_files(self, brand_name, paths, workers=DEFAULT_WORKERS):
        """Upload local image files into a brand. Returns the complete() response
        with PUT failures folded into results and summary."""
        descriptors = []
        payloads = {}
        for path in paths:
            name = os.path.basename(path)
            with open(path, "rb") as f:
                data = f.read()
            payloads[name] = data
            descriptors.append({
                "name": name,
                "type": mimetypes.guess_type(name)[0] or "",
                "size": len(data),
            })

        prepared = self.prepare(brand_name, descriptors)
        brand_id = prepared["brandId"]
        granted = [i for i in prepared.get("items", []) if i.get("success")]
        failures = [
            {"fileName": i.get("fileName"), "success": False, "error": i.get("error")}
            for i in prepared.get("items", []) if not i.get("success")
        ]
        mime_by_name = {d["name"]: d["type"] for d in descriptors}

        def _put(item):
            try:
                self.put_file(item["writeUrl"], payloads[item["fileName"]])
                return item, None
            except UploadClientError as e:
                return item, str(e)

        written = []
        with ThreadPoolExecutor(max_workers=max(1, workers)) as pool:
            for item, error in pool.map(_put, granted):
                if error:
                    failures.append({"key": item["key"], "fileName": item["fileName"], "success": False, "error": error})
                else:
                    written.append({
                        "key": item["key"],
                        "fileName": item["fileName"],
                        "mimeType": mime_by_name.get(item["fileName"], ""),
                    })

        if written:
            result = self.complete(brand_id, brand_name, written)
        else:
            result = {"brandId": brand_id, "brandName": brand_name, "results": []}
        results = list(result.get("results", [])) + failures
        success = sum(1 for r in results if r.get("success"))
        result["results"] = results
        result["summary"] = {"total": len(results), "success": success, "failed": len(results) - success}
        return result

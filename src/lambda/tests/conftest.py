"""Shared fixtures: in-memory S3 and DynamoDB doubles patched in for boto3.client."""
import io
import json
import re
import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path
from unittest.mock import patch

import pytest
from botocore.exceptions import ClientError

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

BUCKET = "test-media-bucket"
BRAND_TABLE = "test-brands"


def _client_error(code, operation, message=""):
    return ClientError({"Error": {"Code": code, "Message": message or code}}, operation)


class FakeS3:
    """Just enough of the S3 client for the handlers."""

    def __init__(self):
        self.objects = {}
        self.calls = []
        self._clock = datetime(2026, 1, 1, tzinfo=timezone.utc)

    def _tick(self):
        self._clock += timedelta(seconds=1)
        return self._clock

    def put(self, key, body=b"data", content_type="binary/octet-stream", metadata=None):
        self.objects[key] = {
            "Body": body,
            "ContentType": content_type,
            "Metadata": dict(metadata or {}),
            "LastModified": self._tick(),
        }

    def generate_presigned_url(self, operation, Params, ExpiresIn):
        self.calls.append(("presign", operation, Params["Key"]))
        return f"https://{Params['Bucket']}.s3.example.com/{Params['Key']}?op={operation}&X-Amz-Expires={ExpiresIn}"

    def head_object(self, Bucket, Key):
        self.calls.append(("head", Key))
        obj = self.objects.get(Key)
        if obj is None:
            raise _client_error("404", "HeadObject", "Not Found")
        return {
            "ContentType": obj["ContentType"],
            "ContentLength": len(obj["Body"]),
            "Metadata": dict(obj["Metadata"]),
            "LastModified": obj["LastModified"],
        }

    def get_object(self, Bucket, Key):
        self.calls.append(("get", Key))
        obj = self.objects.get(Key)
        if obj is None:
            raise _client_error("NoSuchKey", "GetObject")
        return {"Body": io.BytesIO(obj["Body"]), "ContentType": obj["ContentType"]}

    def put_object(self, Bucket, Key, Body=b"", ContentType="binary/octet-stream", Metadata=None):
        self.calls.append(("put", Key))
        self.put(Key, Body, ContentType, Metadata)
        return {}

    def copy_object(self, Bucket, Key, CopySource, Metadata=None, MetadataDirective="COPY", ContentType=None):
        self.calls.append(("copy", Key))
        src = self.objects.get(CopySource["Key"])
        if src is None:
            raise _client_error("NoSuchKey", "CopyObject")
        metadata = Metadata if MetadataDirective == "REPLACE" else src["Metadata"]
        self.put(Key, src["Body"], ContentType or src["ContentType"], metadata)
        return {}

    def list_objects_v2(self, Bucket, Prefix="", MaxKeys=1000, ContinuationToken=None):
        self.calls.append(("list", Prefix, ContinuationToken))
        keys = sorted(k for k in self.objects if k.startswith(Prefix))
        # token is the last key returned, so deletes between pages skip nothing
        if ContinuationToken:
            keys = [k for k in keys if k > ContinuationToken]
        page = keys[:MaxKeys]
        resp = {
            "KeyCount": len(page),
            "IsTruncated": MaxKeys < len(keys),
            "Contents": [
                {"Key": k, "Size": len(self.objects[k]["Body"]), "LastModified": self.objects[k]["LastModified"]}
                for k in page
            ],
        }
        if resp["IsTruncated"]:
            resp["NextContinuationToken"] = page[-1]
        if not page:
            resp.pop("Contents")
        return resp

    def delete_objects(self, Bucket, Delete):
        self.calls.append(("delete", len(Delete["Objects"])))
        deleted = []
        for o in Delete["Objects"]:
            self.objects.pop(o["Key"], None)
            deleted.append({"Key": o["Key"]})
        return {"Deleted": deleted}


def _split_top_level(expr):
    parts, depth, current = [], 0, ""
    for ch in expr:
        if ch == "(":
            depth += 1
        elif ch == ")":
            depth -= 1
        if ch == "," and depth == 0:
            parts.append(current.strip())
            current = ""
        else:
            current += ch
    if current.strip():
        parts.append(current.strip())
    return parts


class FakeDynamo:
    """Brand table keyed on (UserId, BrandId) with a (UserId, BrandName) index."""

    def __init__(self, scan_page_size=100):
        self.items = {}
        self.calls = []
        self.scan_page_size = scan_page_size

    def _key(self, key):
        return (key["UserId"]["S"], key["BrandId"]["S"])

    def query(self, TableName, KeyConditionExpression, ExpressionAttributeValues, IndexName=None, ExclusiveStartKey=None, **kw):
        self.calls.append(("query", IndexName))
        user_id = ExpressionAttributeValues[":u"]["S"]
        items = [i for (u, _), i in sorted(self.items.items()) if u == user_id]
        if IndexName:
            name = ExpressionAttributeValues[":n"]["S"]
            items = [i for i in items if i.get("BrandName", {}).get("S") == name]
        return {"Items": [dict(i) for i in items]}

    def get_item(self, TableName, Key, **kw):
        self.calls.append(("get", self._key(Key)))
        item = self.items.get(self._key(Key))
        return {"Item": dict(item)} if item else {}

    def put_item(self, TableName, Item, ConditionExpression=None):
        self.calls.append(("put", self._key(Item)))
        key = self._key(Item)
        if ConditionExpression == "attribute_not_exists(BrandId)" and key in self.items:
            raise _client_error("ConditionalCheckFailedException", "PutItem")
        self.items[key] = dict(Item)
        return {}

    def update_item(self, TableName, Key, UpdateExpression, ExpressionAttributeValues,
                    ExpressionAttributeNames=None):
        self.calls.append(("update", self._key(Key)))
        names = ExpressionAttributeNames or {}
        values = ExpressionAttributeValues
        item = self.items.setdefault(self._key(Key), dict(Key))
        match = re.match(r"SET (.*?)(?: ADD (\w+) (:\w+))?$", UpdateExpression)
        for assignment in _split_top_level(match.group(1)):
            lhs, rhs = [s.strip() for s in assignment.split("=", 1)]
            lhs = names.get(lhs, lhs)
            fn = re.match(r"if_not_exists\((\w+), (:\w+)\)", rhs)
            if fn:
                if lhs not in item:
                    item[lhs] = values[fn.group(2)]
            else:
                item[lhs] = values[rhs]
        if match.group(2):
            attr, placeholder = match.group(2), match.group(3)
            current = int(item.get(attr, {"N": "0"})["N"])
            item[attr] = {"N": str(current + int(values[placeholder]["N"]))}
        return {}

    def scan(self, TableName, ExclusiveStartKey=None, **kw):
        self.calls.append(("scan", ExclusiveStartKey))
        ordered = [self.items[k] for k in sorted(self.items)]
        start = int(ExclusiveStartKey["offset"]["N"]) if ExclusiveStartKey else 0
        page = ordered[start:start + self.scan_page_size]
        resp = {"Items": [dict(i) for i in page]}
        if start + self.scan_page_size < len(ordered):
            resp["LastEvaluatedKey"] = {"offset": {"N": str(start + self.scan_page_size)}}
        return resp


@pytest.fixture
def fake_aws():
    """Patch boto3.client with in-memory S3/DynamoDB and configure every module."""
    s3 = FakeS3()
    dynamodb = FakeDynamo()

    def _client(service, *args, **kwargs):
        return {"s3": s3, "dynamodb": dynamodb}[service]

    with patch("boto3.client", side_effect=_client), \
            patch("api.uploads.MEDIA_BUCKET", BUCKET), \
            patch("api.gallery.MEDIA_BUCKET", BUCKET), \
            patch("api.deletion.MEDIA_BUCKET", BUCKET), \
            patch("api.brand_config.MEDIA_BUCKET", BUCKET), \
            patch("api.brands.BRAND_TABLE_NAME", BRAND_TABLE):
        yield s3, dynamodb


def _make_event(path, method="POST", body=None, sub="user-1", groups="Admin", email="user@example.com"):
    """HTTP API 2.0 event with a JWT authorizer; sub=None for no identity."""
    request_context = {"http": {"method": method, "path": path}, "requestId": "req-1"}
    if sub is not None:
        request_context["authorizer"] = {
            "jwt": {"claims": {"sub": sub, "email": email, "cognito:groups": groups}}
        }
    event = {"rawPath": path, "requestContext": request_context}
    if body is not None:
        event["body"] = body if isinstance(body, str) else json.dumps(body)
    return event


@pytest.fixture
def makeEvent():
    return _make_event

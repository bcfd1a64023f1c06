"""
Storage key and metadata helpers.

Keys are `{userId}/{brandId}/{fileName}` for images and
`{brandId}/config/{fileName}` for brand configuration. User-supplied strings
go through sanitize_segment before they become part of a key; display values
(brand name, original file name, owner) travel in object metadata base64
encoded because S3 user metadata is ASCII only.
"""
import base64
import binascii
import re
import time
from collections import namedtuple
from urllib.parse import quote, unquote

MAX_FILE_BASE_LENGTH = 100

ObjectKey = namedtuple("ObjectKey", ["ownerUserId", "brandId", "folder", "fileName"])


def sanitize_segment(raw):
    """Turn an arbitrary string into a path-safe key segment.

    Trims, collapses whitespace runs to a hyphen and percent-encodes the rest.
    The result only contains [A-Za-z0-9._-] and %XX triplets.
    """
    s = str(raw or "").strip()
    s = re.sub(r"\s+", "-", s)
    # json.loads yields lone surrogates for unpaired \udXXX escapes
    s = quote(s.encode("utf-8", "surrogatepass"), safe="").replace("~", "%7E")
    return s.replace("%20", "-")


def sanitize_file_name(raw, now_ms=None):
    """Sanitize a file name, keeping a lower-cased extension.

    A base that is too long or still percent-encoded (mostly non-ASCII input)
    is replaced by a millisecond timestamp.
    """
    name = str(raw or "")
    ext = ""
    dot = name.rfind(".")
    if dot > 0:
        ext = "." + sanitize_segment(name[dot + 1:]).lower()
        name = name[:dot]
    base = sanitize_segment(name)
    if len(base) > MAX_FILE_BASE_LENGTH or "%" in base:
        base = str(now_ms if now_ms is not None else int(time.time() * 1000))
    return base + ext


def replace_ext_with_jpg(file_name):
    n = str(file_name or "")
    dot = n.rfind(".")
    base = n[:dot] if dot > 0 else n
    return f"{base}.jpg"


def encode_metadata_value(value):
    """Base64 encode a UTF-8 string for an ASCII-only metadata field."""
    return base64.b64encode(str(value or "").encode("utf-8", "surrogatepass")).decode("ascii")


def decode_metadata_value(value, fallback=None):
    """Decode a base64 metadata value.

    Missing values yield `fallback` (or ""). Values that are not valid base64
    UTF-8 yield `fallback` when given, otherwise the raw value. Never raises.
    """
    if not value:
        return fallback if fallback is not None else ""
    try:
        return base64.b64decode(str(value), validate=True).decode("utf-8", "surrogatepass")
    except (binascii.Error, UnicodeDecodeError, ValueError):
        return fallback if fallback is not None else value


def normalize_mime_type(mime):
    m = str(mime or "").lower().strip()
    if not m:
        return ""
    m = m.split(";", 1)[0].strip()
    if m == "image/jpg":
        return "image/jpeg"
    return m


def parse_object_key(key):
    """Split `{owner}/{brandId}/[folder/]{fileName}` into its parts."""
    parts = str(key or "").split("/")
    owner = parts[0] if len(parts) > 0 else ""
    brand_id = parts[1] if len(parts) > 1 else ""
    folder = parts[2] if len(parts) > 3 else ""
    file_name = parts[-1] if len(parts) > 2 else ""
    return ObjectKey(owner, brand_id, folder, file_name)


def brand_display_from_segment(segment):
    """Best-effort display name for a brand segment with no metadata."""
    return unquote(segment or "")


def user_prefix(user_id):
    return f"{sanitize_segment(user_id)}/"


def brand_prefix(user_id, brand_id):
    return f"{sanitize_segment(user_id)}/{sanitize_segment(brand_id)}/"


def config_prefix(brand_id):
    return f"{sanitize_segment(brand_id)}/config/"

#!/usr/bin/env python3
"""Upload local garment images into a brand through the two-phase upload API."""
import os
import sys

sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "src", "lambda"))

API_URL = os.environ.get("TRYON_API_URL", "")
ID_TOKEN = os.environ.get("TRYON_ID_TOKEN", "")
API_KEY = os.environ.get("TRYON_API_KEY", "")


def main():
    if len(sys.argv) < 3:
        print(f"Usage: {sys.argv[0]} BRAND_NAME IMAGE [IMAGE ...]")
        sys.exit(2)
    if not API_URL or not ID_TOKEN:
        print("TRYON_API_URL and TRYON_ID_TOKEN must be set")
        sys.exit(1)
    brand_name = sys.argv[1]
    paths = sys.argv[2:]
    missing = [p for p in paths if not os.path.isfile(p)]
    if missing:
        print(f"File not found: {', '.join(missing)}")
        sys.exit(1)
    from client.uploader import UploadClient, UploadClientError
    client = UploadClient(API_URL, ID_TOKEN, api_key=API_KEY or None)
    try:
        result = client.upload_files(brand_name, paths)
    except UploadClientError as e:
        print(f"Upload failed: {e}")
        sys.exit(1)
    summary = result["summary"]
    print(f"Brand {brand_name} ({result.get('brandId')}): {summary['success']}/{summary['total']} uploaded")
    for r in result["results"]:
        if not r.get("success"):
            print(f"  FAILED {r.get('fileName') or r.get('key')}: {r.get('error')}")
    sys.exit(0 if summary["failed"] == 0 else 1)


if __name__ == "__main__":
    main()

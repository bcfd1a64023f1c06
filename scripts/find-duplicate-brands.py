#!/usr/bin/env python3
"""Report users with more than one brand record for the same brand name."""
import os
import sys

sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "src", "lambda"))

os.environ.setdefault("AWS_REGION", "ap-northeast-1")


def main():
    if not os.environ.get("BRAND_TABLE_NAME"):
        print("BRAND_TABLE_NAME must be set")
        sys.exit(1)
    from api.brands import find_duplicate_brand_names, list_all_brands_globally
    brands, truncated = list_all_brands_globally()
    print(f"Scanned {len(brands)} brands" + (" (scan truncated at page cap)" if truncated else ""))
    duplicates = find_duplicate_brand_names(brands)
    if not duplicates:
        print("No duplicate brand names found")
        return
    for d in duplicates:
        pairs = ", ".join(f"{bid} ({count} uploads)" for bid, count in zip(d["brandIds"], d["uploadCounts"]))
        print(f"{d['userId']} / {d['brandName']}: {pairs}")
    print(f"{len(duplicates)} duplicate group(s); the first brandId in each group is the oldest")


if __name__ == "__main__":
    main()

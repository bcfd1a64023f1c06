"""CORS and JSON response helpers for API handlers."""

import json
from datetime import date, datetime
from decimal import Decimal

CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Headers": "Content-Type,X-Amz-Date,Authorization,X-Api-Key,X-Amz-Security-Token",
    "Access-Control-Allow-Methods": "OPTIONS,POST,GET,DELETE",
}


def _jsonDefault(value):
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, Decimal):
        return int(value) if value == value.to_integral_value() else float(value)
    if isinstance(value, (set, frozenset)):
        return sorted(value)
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def jsonResponse(body, statusCode=200):
    """Return a response dict with JSON body and CORS headers for API Gateway."""
    headers = {"Content-Type": "application/json"}
    headers.update(CORS_HEADERS)
    return {
        "statusCode": statusCode,
        "headers": headers,
        "body": json.dumps(body, default=_jsonDefault) if not isinstance(body, str) else body,
    }


def errorResponse(error):
    """Render an ApiError as a JSON response."""
    body = {"error": error.message}
    if error.details:
        body.update(error.details)
    return jsonResponse(body, error.statusCode)

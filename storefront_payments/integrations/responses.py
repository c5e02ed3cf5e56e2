"""Helpers for reading gateway error responses."""
import json
from typing import Any, Dict, Union

import httpx


def parse_error_body(response: httpx.Response) -> Union[Dict[str, Any], str]:
    """Return the response body as JSON when it parses, else the raw text."""
    try:
        text = response.text
    except (httpx.ResponseNotRead, UnicodeDecodeError):
        return "Failed to read error response"
    try:
        parsed = json.loads(text)
    except ValueError:
        return text
    return parsed if isinstance(parsed, dict) else text


def describe_error_body(body: Union[Dict[str, Any], str]) -> str:
    """Pick the most readable message out of a parsed error body."""
    if isinstance(body, str):
        return body[:300]
    return str(body.get("message") or body.get("error") or json.dumps(body))[:300]

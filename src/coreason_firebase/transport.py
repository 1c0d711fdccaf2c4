# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_firebase

"""
Bounded HTTP helpers shared by the provider API.
"""

import json
import re
from typing import Any, NamedTuple

import httpx

from coreason_firebase.exceptions import OversizedResponseError

MAX_RESPONSE_BYTES = 1_000_000

_MAX_AGE_RE = re.compile(r"(?:^|,)\s*max-age\s*=\s*\"?(\d+)\"?\s*(?:,|$)", re.IGNORECASE)


class JSONResponse(NamedTuple):
    """A fully read response. ``data`` is None when the body is empty or not JSON."""

    status_code: int
    headers: httpx.Headers
    data: Any


async def safe_json_fetch(
    client: httpx.AsyncClient,
    url: str,
    method: str = "GET",
    max_bytes: int = MAX_RESPONSE_BYTES,
    **kwargs: Any,
) -> JSONResponse:
    """
    Performs a request and reads at most ``max_bytes`` of the body.

    The status is not checked: error bodies from OAuth endpoints carry
    structured JSON that callers need to inspect.

    Args:
        client: The async HTTP client.
        url: The target URL.
        method: The HTTP method. Defaults to GET.
        max_bytes: Upper bound on the body size.
        **kwargs: Passed through to ``client.stream`` (data, headers, ...).

    Returns:
        JSONResponse: status, headers and the decoded JSON body.

    Raises:
        OversizedResponseError: If the body exceeds ``max_bytes``.
        httpx.HTTPError: On transport failures and timeouts.
    """
    async with client.stream(method, url, **kwargs) as response:
        content_length = response.headers.get("Content-Length")
        if content_length and content_length.isdigit() and int(content_length) > max_bytes:
            raise OversizedResponseError(f"Response from {url} too large ({content_length} bytes)")

        content = bytearray()
        async for chunk in response.aiter_bytes():
            content.extend(chunk)
            if len(content) > max_bytes:
                raise OversizedResponseError(f"Response from {url} exceeded {max_bytes} bytes")

    data: Any = None
    if content:
        try:
            data = json.loads(content)
        except (json.JSONDecodeError, UnicodeDecodeError):
            data = None

    return JSONResponse(status_code=response.status_code, headers=response.headers, data=data)


def parse_max_age(cache_control: str | None) -> int | None:
    """
    Extracts the max-age directive, in seconds, from a Cache-Control header value.

    Returns None when the header is missing or has no max-age.
    """
    if not cache_control:
        return None
    match = _MAX_AGE_RE.search(cache_control)
    if not match:
        return None
    return int(match.group(1))

"""
Small helpers shared by the signer adapter layer.

This module provides helper functions for:
- Millisecond timestamps in the wire format clients expect
- Calling plugin hooks that may be plain functions or coroutines
- Extracting log-friendly pieces of a URL
- Making arbitrary plugin output safe to echo back as JSON
"""

from __future__ import annotations

import inspect
import time
from typing import Any, Callable, Optional
from urllib.parse import parse_qs, urlsplit

from fastapi.encoders import jsonable_encoder


def now_ms() -> int:
    """
    Current wall-clock time as integer milliseconds since the epoch.
    """
    return int(time.time() * 1000)


async def call_maybe_async(func: Callable[..., Any], *args: Any) -> Any:
    """
    Call a plugin hook and await its result when it returns an awaitable.

    Plugins may expose plain functions, coroutine functions, or functions
    returning futures; all three are treated the same way.

    Args:
        func: The hook to call
        *args: Positional arguments passed through unchanged

    Returns:
        The hook's (awaited) return value
    """
    result = func(*args)
    if inspect.isawaitable(result):
        result = await result
    return result


def query_param(url: str, name: str) -> Optional[str]:
    """
    Return the first value of query parameter ``name`` in an absolute URL.

    Args:
        url: The URL to inspect
        name: Query parameter name (case-sensitive)

    Returns:
        The parameter value, or None when the URL is not absolute or the
        parameter is missing or blank

    Example:
        >>> query_param("https://x/v?X-Bogus=abc123", "X-Bogus")
        "abc123"
        >>> query_param("not a url", "X-Bogus") is None
        True
    """
    try:
        parts = urlsplit(url)
    except ValueError:
        return None
    if not parts.scheme or not parts.netloc:
        return None
    values = parse_qs(parts.query, keep_blank_values=True).get(name)
    return (values[0] or None) if values else None


def endpoint_name(url: str) -> str:
    """
    Last non-empty path segment of ``url``, or ``"root"``.

    Example:
        >>> endpoint_name("https://x/api/item/detail/?aid=1988")
        "detail"
    """
    try:
        segments = [segment for segment in urlsplit(url).path.split("/") if segment]
    except ValueError:
        return "root"
    return segments[-1] if segments else "root"


def to_jsonable(value: Any) -> Any:
    """
    Convert plugin output into something the JSON encoder accepts.

    Falls back to ``repr`` for objects FastAPI's encoder cannot handle, so
    diagnostics never fail on exotic plugin return types.
    """
    try:
        return jsonable_encoder(value)
    except (TypeError, ValueError):
        return repr(value)

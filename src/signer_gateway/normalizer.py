"""
Normalization of signer output.

Signer plugins return whatever they like: a signed URL string, a dict with
snake_case or camelCase keys, or an object with attributes. ``normalize``
turns any of those into a ``NormalizedSignResponse`` and never raises; a
result it cannot use comes back with ``success=False`` and ``error_kind``
set so the caller can decide how to report it.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any, Optional, Sequence

from .models import NormalizedSignResponse
from .utils import now_ms, query_param

SIGNATURE_QUERY_PARAM = "X-Bogus"

SIGNED_URL_FIELDS = ("signed_url", "signedUrl", "url", "endpoint")
SIGNATURE_FIELDS = ("signature", "X_Bogus", "x_bogus")

EMPTY_RESULT = "EmptyResult"
UNNORMALIZABLE_OUTPUT = "UnnormalizableOutput"


def _is_empty(raw: Any) -> bool:
    if raw is None:
        return True
    if isinstance(raw, (bool, int, float)):
        return not raw
    if isinstance(raw, (str, bytes, Mapping, list, tuple)):
        return len(raw) == 0
    return False


def _lookup(raw: Any, name: str) -> Any:
    if isinstance(raw, Mapping):
        return raw.get(name)
    try:
        return getattr(raw, name, None)
    except Exception:  # noqa: BLE001 - properties on plugin objects may raise anything
        return None


def _first_present(raw: Any, names: Sequence[str]) -> Any:
    for name in names:
        value = _lookup(raw, name)
        if value is not None:
            return value
    return None


def _as_text(value: Any) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    return value if isinstance(value, str) else str(value)


def normalize(raw: Any, timestamp: int | None = None) -> NormalizedSignResponse:
    stamp = now_ms() if timestamp is None else timestamp

    if _is_empty(raw):
        return NormalizedSignResponse(success=False, timestamp=stamp, raw=raw, error_kind=EMPTY_RESULT)

    signed_url: Any = None
    signature: Any = None

    if isinstance(raw, str):
        signed_url = raw
        signature = query_param(raw, SIGNATURE_QUERY_PARAM)
    elif not isinstance(raw, (bytes, int, float, bool)):
        signed_url = _first_present(raw, SIGNED_URL_FIELDS)
        signature = _first_present(raw, SIGNATURE_FIELDS)

    if not signed_url:
        nested = _lookup(raw, "raw") if not isinstance(raw, str) else None
        if isinstance(nested, str) and nested:
            signed_url = nested

    if not signed_url:
        return NormalizedSignResponse(
            success=False,
            timestamp=stamp,
            raw=raw,
            error_kind=UNNORMALIZABLE_OUTPUT,
        )

    return NormalizedSignResponse(
        success=True,
        signed_url=_as_text(signed_url),
        signature=_as_text(signature),
        timestamp=stamp,
        raw=raw,
    )

"""Flatten a provider's raw prediction output into an ordered list of asset URLs.

Providers return a bare string, a list of strings, or an object with the
URL(s) under one of several keys. Unrecognized shapes yield an empty list;
the caller treats that as "no assets produced".
"""

from __future__ import annotations

from typing import Any

from mediaforge.schemas.generation import AssetRef

# Checked in order; first key present wins.
OUTPUT_KEYS = ("url", "urls", "video", "image", "images", "files", "output")

_URL_PREFIXES = ("http", "data:")


def _from_scalar_or_list(value: Any) -> list[str] | None:
    """Apply the string/list rules. ``None`` when ``value`` is neither."""
    if isinstance(value, str):
        return [value] if value else []
    if isinstance(value, (list, tuple)):
        return [item for item in value if isinstance(item, str) and item]
    return None


def extract_urls(raw_output: Any) -> list[str]:
    urls = _from_scalar_or_list(raw_output)
    if urls is not None:
        return urls
    if not isinstance(raw_output, dict):
        return []

    for key in OUTPUT_KEYS:
        if key not in raw_output:
            continue
        urls = _from_scalar_or_list(raw_output[key])
        if urls:
            return urls
        break

    # Last resort; order follows dict iteration and is not a contract.
    return [
        value for value in raw_output.values()
        if isinstance(value, str) and value.startswith(_URL_PREFIXES)
    ]


def extract_asset_urls(raw_output: Any) -> list[AssetRef]:
    return [AssetRef(original_url=url) for url in extract_urls(raw_output)]

"""Cache key derivation."""

import hashlib
import json
import math
from collections.abc import Mapping
from typing import Any

from admincache.types import CacheKey


def _normalize(value: Any) -> Any:
    # 1 and 1.0 are the same parameter
    if isinstance(value, float) and math.isfinite(value) and value.is_integer():
        return int(value)
    if isinstance(value, Mapping):
        return {k: _normalize(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_normalize(v) for v in value]
    return value


def canonical_params(params: Mapping[str, Any] | None) -> str:
    """Canonical JSON for a parameter mapping.

    Key order, object identity and integral floats do not matter and
    top-level ``None`` values are dropped, so logically identical requests
    serialize identically.
    """
    cleaned = {k: _normalize(v) for k, v in (params or {}).items() if v is not None}
    return json.dumps(cleaned, sort_keys=True, separators=(",", ":"), default=str)


def make_cache_key(endpoint: str, params: Mapping[str, Any] | None = None) -> CacheKey:
    """Generate a cache key from endpoint name and parameters."""
    digest = hashlib.sha256(canonical_params(params).encode()).hexdigest()[:16]
    return f"{endpoint}:{digest}"

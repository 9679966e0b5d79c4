"""Simple in-memory TTL cache for insight reads served over the API."""
import time
from typing import Any

_cache: dict[str, tuple[float, Any]] = {}
_MISS = object()


def tenant_key(tenant_id: str, *parts) -> str:
    """insights:<tenant>:<part>:<part>... ('-' for empty parts)"""
    return ":".join(["insights", tenant_id] + [str(p) if p else "-" for p in parts])


def get_cached(key: str):
    """Return cached value if still valid, else _MISS sentinel."""
    now = time.time()
    if key in _cache:
        expires, value = _cache[key]
        if now < expires:
            return value
    return _MISS


def set_cached(key: str, value: Any, seconds: int = 300):
    """Store a value in cache with TTL."""
    _cache[key] = (time.time() + seconds, value)


def clear_for_tenant(tenant_id: str):
    """Clear only entries of one tenant (call after training or import)."""
    prefix = tenant_key(tenant_id) + ":"
    keys_to_remove = [k for k in _cache if k.startswith(prefix) or k == prefix[:-1]]
    for k in keys_to_remove:
        del _cache[k]

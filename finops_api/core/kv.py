"""
Key-Value Store

Thin wrapper over Redis for the short-lived state the API keeps outside
the database:

- session:{id}              login sessions (sliding TTL)
- state:{state}             login OAuth state
- integration_state:{state} data-source OAuth state
- ratelimit:{key}           fixed-window counters
- domain:{host}             custom domain -> tenant id
- subdomain:{sub}           subdomain -> tenant id
- typing:{conversation}     chat typing indicators
- password_reset:{hash}     pending password reset (sha256 of the token)
- password_reset_user:{id}  the one live reset hash per user

Values are stored as JSON strings.

Tenant mappings are read on every request, so lookups go through a small
in-process cache first. A mapping written or removed by this process
invalidates its cache entry; other processes see the change once their
entry expires.
"""
import json
import time
from typing import Any, Dict, Optional, Tuple

import redis

from finops_api.config import get_settings
from finops_api.utils.logging import get_logger

logger = get_logger(__name__)
settings = get_settings()

MAPPING_TYPES = ("domain", "subdomain")


class KVStore:
    """JSON get/put/delete over a Redis client."""

    def __init__(self, client):
        self.client = client

    @classmethod
    def from_url(cls, url: str) -> "KVStore":
        return cls(redis.from_url(url, decode_responses=True, socket_connect_timeout=5))

    def get(self, key: str) -> Optional[str]:
        return self.client.get(key)

    def put(self, key: str, value: str, ttl: Optional[int] = None) -> None:
        if ttl:
            self.client.set(key, value, ex=ttl)
        else:
            self.client.set(key, value)

    def delete(self, key: str) -> None:
        self.client.delete(key)

    def get_json(self, key: str) -> Optional[Any]:
        raw = self.get(key)
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except (TypeError, ValueError):
            logger.warning(f"Discarding non-JSON value at {key}")
            return None

    def put_json(self, key: str, value: Any, ttl: Optional[int] = None) -> None:
        self.put(key, json.dumps(value, default=str), ttl=ttl)


_kv_store: Optional[KVStore] = None


def get_kv_store() -> KVStore:
    """Process-wide store. Connects lazily on first command."""
    global _kv_store
    if _kv_store is None:
        _kv_store = KVStore.from_url(settings.REDIS_URL)
    return _kv_store


def set_kv_store(store: Optional[KVStore]) -> None:
    """Swap the process-wide store (tests, scripts)."""
    global _kv_store
    _kv_store = store
    clear_tenant_cache()


# Tenant mapping cache: "{type}:{key}" -> (tenant_id, expires_at)
_mapping_cache: Dict[str, Tuple[str, float]] = {}


def clear_tenant_cache() -> None:
    _mapping_cache.clear()


def _mapping_key(mapping_type: str, key: str) -> str:
    if mapping_type not in MAPPING_TYPES:
        raise ValueError(f"Unknown tenant mapping type: {mapping_type}")
    return f"{mapping_type}:{key.lower()}"


def lookup_tenant_mapping(mapping_type: str, key: str) -> Optional[str]:
    """
    Tenant id mapped to a domain or subdomain, or None.

    Only hits are cached, so a freshly added mapping is visible at once.
    """
    cache_key = _mapping_key(mapping_type, key)
    cached = _mapping_cache.get(cache_key)
    now = time.time()
    if cached and cached[1] > now:
        return cached[0]

    tenant_id = get_kv_store().get(cache_key)
    if tenant_id:
        _mapping_cache[cache_key] = (tenant_id, now + settings.TENANT_CACHE_TTL_SECONDS)
    else:
        _mapping_cache.pop(cache_key, None)
    return tenant_id


def store_tenant_mapping(mapping_type: str, key: str, tenant_id: str) -> None:
    cache_key = _mapping_key(mapping_type, key)
    get_kv_store().put(cache_key, tenant_id, ttl=settings.TENANT_MAPPING_TTL_SECONDS)
    _mapping_cache.pop(cache_key, None)
    logger.info(f"Tenant mapping stored: {cache_key} -> {tenant_id}")


def remove_tenant_mapping(mapping_type: str, key: str) -> None:
    cache_key = _mapping_key(mapping_type, key)
    get_kv_store().delete(cache_key)
    _mapping_cache.pop(cache_key, None)
    logger.info(f"Tenant mapping removed: {cache_key}")

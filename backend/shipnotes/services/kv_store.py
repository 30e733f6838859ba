"""Redis-backed store for workflow locks, progress snapshots and log lists.

This is the only shared mutable resource between API processes and
workers, so every write goes through a single atomic primitive:

- locks: ``SET key token NX EX ttl``, released by compare-and-delete
- progress: ``SET key json EX ttl``
- log lists: ``LPUSH`` + ``LTRIM`` + ``EXPIRE`` in one MULTI/EXEC per append

Every key carries a TTL, so a crashed run heals by expiry. When Redis is
unconfigured or unreachable the store reports itself unavailable.
Lock acquisition then raises ``StoreUnavailableError`` rather than
pretending to succeed. Log appends and progress writes return ``False``.
"""

import json
import logging
from typing import Any, Optional, Sequence

import redis
from redis.exceptions import RedisError

from ..exceptions import StoreUnavailableError

logger = logging.getLogger(__name__)

# Deletes the lock only if it is still held by the caller's token.
_RELEASE_LOCK_SCRIPT = """
if redis.call('GET', KEYS[1]) == ARGV[1] then
    return redis.call('DEL', KEYS[1])
end
return 0
"""

_EXTEND_LOCK_SCRIPT = """
if redis.call('GET', KEYS[1]) == ARGV[1] then
    return redis.call('EXPIRE', KEYS[1], ARGV[2])
end
return 0
"""


class RedisStore:
    """Cached Redis client with reconnection, wrapped in atomic operations."""

    def __init__(self, url: str):
        self._url = url
        self._client_cache: Optional[redis.Redis] = None
        self._connection_attempted: bool = False

    @property
    def configured(self) -> bool:
        return bool(self._url)

    def _get_client(self) -> Optional[redis.Redis]:
        """Get Redis client with caching and reconnection logic."""
        if self._client_cache is not None:
            try:
                self._client_cache.ping()
                return self._client_cache
            except (RedisError, OSError):
                self._client_cache = None
                logger.debug("Cached Redis client failed ping, reconnecting")

        if not self._url:
            return None

        try:
            client = redis.from_url(
                self._url,
                decode_responses=True,
                socket_connect_timeout=5,
                socket_timeout=5,
            )
            client.ping()
        except (RedisError, ValueError, OSError) as e:
            logger.error("Redis connection failed: %s", str(e)[:200])
            return None

        if not self._connection_attempted:
            logger.info("Connected to Redis")
        self._connection_attempted = True
        self._client_cache = client
        return client

    def is_available(self) -> bool:
        return self._get_client() is not None

    # ── Locks ─────────────────────────────────────────────────

    def try_acquire_lock(self, key: str, ttl_seconds: int, token: str) -> bool:
        """Atomically take *key* for *ttl_seconds*. False if someone holds it."""
        client = self._get_client()
        if client is None:
            raise StoreUnavailableError("Key-value store is not available")
        try:
            return bool(client.set(key, token, nx=True, ex=ttl_seconds))
        except RedisError as e:
            raise StoreUnavailableError(f"Lock acquisition failed: {e}") from e

    def extend_lock(self, key: str, token: str, ttl_seconds: int) -> bool:
        """Push the expiry of *key* forward if *token* still holds it."""
        client = self._get_client()
        if client is None:
            return False
        try:
            return bool(client.eval(_EXTEND_LOCK_SCRIPT, 1, key, token, ttl_seconds))
        except RedisError as e:
            logger.warning("Failed to extend lock %s: %s", key, e)
            return False

    def release_lock(self, key: str, token: str) -> bool:
        """Release *key* if it is still held by *token*."""
        client = self._get_client()
        if client is None:
            return False
        try:
            return bool(client.eval(_RELEASE_LOCK_SCRIPT, 1, key, token))
        except RedisError as e:
            logger.warning("Failed to release lock %s: %s", key, e)
            return False

    # ── Progress ──────────────────────────────────────────────

    def set_progress(self, key: str, value: dict, ttl_seconds: int) -> bool:
        client = self._get_client()
        if client is None:
            return False
        try:
            client.set(key, json.dumps(value), ex=ttl_seconds)
            return True
        except RedisError as e:
            logger.warning("Failed to write progress %s: %s", key, e)
            return False

    def get_progress(self, key: str) -> Optional[dict]:
        client = self._get_client()
        if client is None:
            raise StoreUnavailableError("Key-value store is not available")
        try:
            raw = client.get(key)
        except RedisError as e:
            raise StoreUnavailableError(f"Progress read failed: {e}") from e
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except json.JSONDecodeError:
            logger.warning("Discarding unreadable progress record %s", key)
            return None

    # ── Log lists ─────────────────────────────────────────────

    def append_log(self, list_keys: Sequence[str], entry: dict, max_len: int, ttl_seconds: int) -> bool:
        """Push *entry* onto every list, trim each to *max_len*, refresh expiry.

        Skips silently (returns False) when the store is unavailable.
        """
        client = self._get_client()
        if client is None:
            return False

        serialized = json.dumps(entry, default=str)
        try:
            pipe = client.pipeline(transaction=True)
            for key in list_keys:
                pipe.lpush(key, serialized)
                pipe.ltrim(key, 0, max_len - 1)
                pipe.expire(key, ttl_seconds)
            pipe.execute()
            return True
        except RedisError as e:
            logger.warning("Failed to append webhook log: %s", e)
            return False

    def list_logs(self, key: str, max_len: int) -> list[dict]:
        client = self._get_client()
        if client is None:
            return []
        try:
            raw_entries = client.lrange(key, 0, max_len - 1)
        except RedisError as e:
            logger.warning("Failed to read webhook logs %s: %s", key, e)
            return []

        entries: list[dict] = []
        for raw in raw_entries:
            try:
                entries.append(json.loads(raw))
            except json.JSONDecodeError:
                continue
        return entries

    # ── Idempotency keys ──────────────────────────────────────

    def remember_once(self, key: str, ttl_seconds: int) -> Optional[bool]:
        """Record *key* if unseen.

        Returns True the first time, False on repeats, None when the store
        cannot answer.
        """
        client = self._get_client()
        if client is None:
            return None
        try:
            return bool(client.set(key, "1", nx=True, ex=ttl_seconds))
        except RedisError as e:
            logger.warning("Failed to record idempotency key: %s", e)
            return None

    def forget(self, key: str) -> None:
        client = self._get_client()
        if client is None:
            return
        try:
            client.delete(key)
        except RedisError as e:
            logger.warning("Failed to delete key %s: %s", key, e)


def lock_key(workflow_type: str, organization_id: str, scope: Optional[str] = None) -> str:
    if scope:
        return f"{workflow_type}:{organization_id}:{scope}:lock"
    return f"{workflow_type}:{organization_id}:lock"


def progress_key(workflow_type: str, organization_id: str, scope: Optional[str] = None) -> str:
    if scope:
        return f"{workflow_type}:progress:{organization_id}:{scope}"
    return f"{workflow_type}:progress:{organization_id}"


def to_json_safe(value: Any) -> Any:
    """Round-trip through JSON so recorded values match what readers will see."""
    return json.loads(json.dumps(value, default=str))

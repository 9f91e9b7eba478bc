"""
In-flight mutation guard.

Exactly one mutating persistence call per quote may run at a time; a second
concurrent call is rejected with ``ConcurrentMutationError``. Two backends:
an in-process lock registry (single worker, tests) and Redis ``SET NX EX``
shared by every Gunicorn worker.
"""

import logging
import threading
import uuid
from contextlib import contextmanager
from typing import Dict, Optional

import redis
from redis.exceptions import RedisError, ConnectionError, TimeoutError
from flask import Flask

from studio_quotes.exceptions import ConcurrentMutationError

logger = logging.getLogger(__name__)

# Compare-and-delete so a worker never releases a lock it no longer owns
_RELEASE_SCRIPT = """
if redis.call('get', KEYS[1]) == ARGV[1] then
    return redis.call('del', KEYS[1])
end
return 0
"""


class LocalLockRegistry:
    """Non-blocking per-key locks held in this process."""

    def __init__(self):
        self._guard = threading.Lock()
        self._held: Dict[str, str] = {}

    def acquire(self, key: str) -> Optional[str]:
        with self._guard:
            if key in self._held:
                return None
            token = uuid.uuid4().hex
            self._held[key] = token
            return token

    def release(self, key: str, token: str) -> None:
        with self._guard:
            if self._held.get(key) == token:
                del self._held[key]

    def is_held(self, key: str) -> bool:
        with self._guard:
            return key in self._held


class RedisLockRegistry:
    """
    Locks stored in Redis with a TTL so a crashed worker cannot block a quote forever.

    When Redis fails mid-flight the call degrades to this process's local
    registry instead of failing the request.
    """

    LOCAL_PREFIX = 'local:'

    def __init__(self, client: redis.Redis, ttl: int):
        self.client = client
        self.ttl = ttl
        self._release = client.register_script(_RELEASE_SCRIPT)
        self._fallback = LocalLockRegistry()

    def acquire(self, key: str) -> Optional[str]:
        token = uuid.uuid4().hex
        try:
            if self.client.set(key, token, nx=True, ex=self.ttl):
                return token
            return None
        except RedisError as e:
            logger.warning(f"[GUARD] ✗ Acquire error for {key}: {e}. Using in-process lock.")
            local_token = self._fallback.acquire(key)
            return f"{self.LOCAL_PREFIX}{local_token}" if local_token else None

    def release(self, key: str, token: str) -> None:
        if token.startswith(self.LOCAL_PREFIX):
            self._fallback.release(key, token[len(self.LOCAL_PREFIX):])
            return
        try:
            self._release(keys=[key], args=[token])
        except RedisError as e:
            # The TTL frees the key anyway
            logger.warning(f"[GUARD] ✗ Release error for {key}: {e}")

    def is_held(self, key: str) -> bool:
        if self._fallback.is_held(key):
            return True
        try:
            return bool(self.client.exists(key))
        except RedisError as e:
            logger.warning(f"[GUARD] ✗ Exists error for {key}: {e}")
            return False


class MutationGuard:
    """
    Guard service configured from the Flask app.

    Keys pattern: {prefix}:quote:{quote_id}:mutation
    """

    def __init__(self, app: Optional[Flask] = None):
        self.registry = LocalLockRegistry()
        self.backend = 'local'
        self._prefix = 'studio_quotes'
        self.on_reject = None

        if app:
            self.init_app(app)

    def init_app(self, app: Flask) -> None:
        """Select the backend from app config; fall back to local locks if Redis is down."""
        self._prefix = app.config.get('MUTATION_GUARD_KEY_PREFIX', 'studio_quotes')
        backend = app.config.get('MUTATION_GUARD_BACKEND', 'local')

        if backend != 'redis':
            logger.info("[GUARD] Using in-process lock registry")
            return

        redis_url = app.config.get('REDIS_URL', 'redis://redis:6379/0')
        try:
            client = redis.from_url(
                redis_url,
                decode_responses=True,
                socket_connect_timeout=3,
                socket_timeout=3,
                retry_on_timeout=True,
                health_check_interval=30
            )
            client.ping()
            self.registry = RedisLockRegistry(client, app.config.get('MUTATION_GUARD_TTL', 30))
            self.backend = 'redis'
            logger.info(f"[GUARD] ✓ Redis connected: {redis_url}")
        except (ConnectionError, TimeoutError, RedisError) as e:
            logger.warning(f"[GUARD] ⚠ Redis connection failed: {e}. Using in-process locks.")

    def _build_key(self, resource: str) -> str:
        return f"{self._prefix}:{resource}:mutation"

    @contextmanager
    def hold(self, resource: str):
        """
        Hold the mutation lock of ``resource`` for the duration of the block.

        Raises:
            ConcurrentMutationError: another mutating call holds the lock.
        """
        key = self._build_key(resource)
        token = self.registry.acquire(key)
        if token is None:
            logger.warning(f"[GUARD] Mutation rejected, {resource} already in flight")
            if self.on_reject is not None:
                self.on_reject(resource)
            raise ConcurrentMutationError(resource)
        try:
            yield
        finally:
            self.registry.release(key, token)

    def is_held(self, resource: str) -> bool:
        return self.registry.is_held(self._build_key(resource))


def quote_resource(quote_id) -> str:
    return f"quote:{quote_id}"


def promise_resource(promise_id) -> str:
    return f"promise:{promise_id}"


_mutation_guard: Optional[MutationGuard] = None


def init_mutation_guard(app: Flask) -> MutationGuard:
    """Initialize guard service singleton."""
    global _mutation_guard
    _mutation_guard = MutationGuard(app)
    if not hasattr(app, 'extensions'):
        app.extensions = {}
    app.extensions['mutation_guard'] = _mutation_guard
    return _mutation_guard


def get_mutation_guard() -> MutationGuard:
    """Get guard service instance; an unconfigured local guard outside an app."""
    global _mutation_guard
    if _mutation_guard is None:
        _mutation_guard = MutationGuard()
    return _mutation_guard

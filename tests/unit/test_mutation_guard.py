"""
Unit tests for the in-flight mutation guard.
"""

import pytest
from flask import Flask
from redis.exceptions import ConnectionError as RedisConnectionError

from studio_quotes.exceptions import ConcurrentMutationError
from studio_quotes.services.mutation_guard import (
    LocalLockRegistry, MutationGuard, RedisLockRegistry, promise_resource, quote_resource,
)


class UnreachableRedis:
    """Client whose every command fails as if the server went away."""

    def register_script(self, script):
        def run(keys=None, args=None):
            raise RedisConnectionError('Connection refused')
        return run

    def set(self, *args, **kwargs):
        raise RedisConnectionError('Connection refused')

    def exists(self, *args):
        raise RedisConnectionError('Connection refused')


@pytest.fixture
def guard():
    app = Flask(__name__)
    app.config['MUTATION_GUARD_BACKEND'] = 'local'
    app.config['MUTATION_GUARD_KEY_PREFIX'] = 'test'
    return MutationGuard(app)


@pytest.fixture
def redis_down_guard(guard):
    guard.registry = RedisLockRegistry(UnreachableRedis(), ttl=30)
    guard.backend = 'redis'
    return guard


class TestLocalLockRegistry:
    """Tests for the in-process registry."""

    def test_second_acquire_fails(self):
        """Test that a held key cannot be acquired again until released."""
        registry = LocalLockRegistry()
        token = registry.acquire('k')
        assert token is not None
        assert registry.acquire('k') is None

        registry.release('k', token)
        assert registry.acquire('k') is not None

    def test_release_with_wrong_token_is_ignored(self):
        """Test that only the owner's token releases a key."""
        registry = LocalLockRegistry()
        registry.acquire('k')
        registry.release('k', 'other')
        assert registry.is_held('k')


class TestMutationGuard:
    """Tests for one mutating call per quote."""

    def test_concurrent_mutation_rejected(self, guard):
        """Test that a second call on the same quote is rejected."""
        with guard.hold(quote_resource(1)):
            assert guard.is_held(quote_resource(1))
            with pytest.raises(ConcurrentMutationError):
                with guard.hold(quote_resource(1)):
                    pass

    def test_other_quotes_not_blocked(self, guard):
        """Test that different quotes do not block each other."""
        with guard.hold(quote_resource(1)):
            with guard.hold(quote_resource(2)):
                assert guard.is_held(quote_resource(2))

    def test_released_after_error(self, guard):
        """Test that the lock is released when the guarded block raises."""
        with pytest.raises(ValueError):
            with guard.hold(quote_resource(1)):
                raise ValueError('boom')
        assert not guard.is_held(quote_resource(1))

    def test_reject_callback(self, guard):
        """Test that rejections are reported to the callback."""
        rejected = []
        guard.on_reject = rejected.append
        with guard.hold(promise_resource(5)):
            with pytest.raises(ConcurrentMutationError):
                with guard.hold(promise_resource(5)):
                    pass
        assert rejected == ['promise:5']

    def test_key_pattern(self, guard):
        """Test the Redis key layout."""
        assert guard._build_key(quote_resource(7)) == 'test:quote:7:mutation'


class TestRedisOutage:
    """Tests for a Redis backend that fails after startup."""

    def test_mutation_runs_on_local_lock(self, redis_down_guard):
        """Test that a Redis error degrades to an in-process lock instead of failing."""
        with redis_down_guard.hold(quote_resource(1)):
            assert redis_down_guard.is_held(quote_resource(1))
        assert not redis_down_guard.is_held(quote_resource(1))

    def test_concurrent_mutation_still_rejected(self, redis_down_guard):
        """Test that the local fallback still rejects a second call on the same quote."""
        with redis_down_guard.hold(quote_resource(1)):
            with pytest.raises(ConcurrentMutationError):
                with redis_down_guard.hold(quote_resource(1)):
                    pass

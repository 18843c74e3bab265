"""Test helpers shared by the app test suites."""

from unittest.mock import patch

import fakeredis


class FakeRedisMixin:
    """Swap the shared Redis client for an isolated fakeredis server per test."""

    def setUp(self):
        super().setUp()
        self.redis = fakeredis.FakeRedis(server=fakeredis.FakeServer(), decode_responses=True)
        patcher = patch("common.fast_kv._redis_client", self.redis)
        patcher.start()
        self.addCleanup(patcher.stop)

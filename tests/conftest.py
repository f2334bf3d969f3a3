"""
Shared pytest fixtures
"""
import uuid
from collections import Counter

import httpx
import pytest

from balancer.config import parse_balancer_config


class FakeClock:
    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


class FakeReplicas:
    """
    Stands in for the UUID replicas behind the balancer.

    Hosts in `down` refuse connections; hosts in `slow`, `connect_slow` and
    `write_slow` time out in the matching phase. HEAD gets headers only.
    """

    def __init__(self):
        self.calls = Counter()
        self.requests = []
        self.down = set()
        self.slow = set()
        self.connect_slow = set()
        self.write_slow = set()

    def __call__(self, request: httpx.Request) -> httpx.Response:
        host = request.url.host
        self.calls[host] += 1
        self.requests.append(request)
        if host in self.down:
            raise httpx.ConnectError("connection refused", request=request)
        if host in self.slow:
            raise httpx.ReadTimeout("read timed out", request=request)
        if host in self.connect_slow:
            raise httpx.ConnectTimeout("connect timed out", request=request)
        if host in self.write_slow:
            raise httpx.WriteTimeout("write timed out", request=request)

        if request.method == "HEAD":
            return httpx.Response(200, headers={"content-type": "application/json"})

        path = request.url.path
        if path == "/api/v1/uuid/get/error":
            return httpx.Response(500)
        return httpx.Response(200, json={"uuid": str(uuid.uuid4()), "instanceId": host})


def make_balancer_config(**overrides):
    data = {
        "upstreams": ["http://r1:8080", "http://r2:8080", "http://r3:8080"],
        "health": {"max_fails": 3, "fail_window_sec": 10, "cooldown_sec": 10},
        "timeouts": {"connect_sec": 1, "send_sec": 1, "read_sec": 1},
        "routes": [
            {"prefix": "/api/v1/uuid/"},
            {
                "prefix": "/cached/uuid/",
                "rewrite": "/api/v1/uuid/",
                "cache": {"enabled": True, "valid_sec": 5, "key": ["method", "path", "query"]},
            },
        ],
    }
    data.update(overrides)
    return parse_balancer_config(data)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def replicas() -> FakeReplicas:
    return FakeReplicas()

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

CACHE_KEY_DIMENSIONS = ("method", "path", "query", "client")


class ConfigError(ValueError):
    """Raised when the balancer configuration is unusable."""


@dataclass(frozen=True)
class HealthConfig:
    max_fails: int = 3
    fail_window_sec: float = 10.0
    cooldown_sec: float = 10.0
    failure_statuses: frozenset = frozenset({500, 502, 503, 504})


@dataclass(frozen=True)
class TimeoutConfig:
    connect_sec: float = 2.0
    send_sec: float = 5.0
    read_sec: float = 30.0


@dataclass(frozen=True)
class CacheConfig:
    enabled: bool = False
    valid_sec: float = 5.0
    key: tuple = ("method", "path", "query")
    use_stale: bool = True
    max_stale_sec: float = 60.0

    @property
    def ttl_sec(self) -> float:
        return self.valid_sec + (self.max_stale_sec if self.use_stale else 0.0)


@dataclass(frozen=True)
class Route:
    prefix: str
    rewrite: Optional[str] = None
    cache: CacheConfig = field(default_factory=CacheConfig)

    def matches(self, path: str) -> bool:
        if path.startswith(self.prefix):
            return True
        # "/api/" also serves "/api"
        return self.prefix.endswith("/") and path == self.prefix[:-1]

    def upstream_path(self, path: str) -> str:
        if self.rewrite is None:
            return path
        rest = path[len(self.prefix):] if path.startswith(self.prefix) else ""
        return self.rewrite + rest


@dataclass(frozen=True)
class BalancerConfig:
    upstreams: List[str]
    routes: List[Route]
    listen_host: str = "0.0.0.0"
    listen_port: int = 9090
    health: HealthConfig = field(default_factory=HealthConfig)
    timeouts: TimeoutConfig = field(default_factory=TimeoutConfig)
    cache_max_entries: int = 10_000


def _positive(section: str, name: str, value: Any, allow_zero: bool = False) -> float:
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise ConfigError(f"{section}.{name} must be a number, got {value!r}")
    if number < 0 or (number == 0 and not allow_zero):
        raise ConfigError(f"{section}.{name} must be positive, got {value!r}")
    return number


def _parse_health(data: Dict[str, Any]) -> HealthConfig:
    max_fails = int(_positive("health", "max_fails", data.get("max_fails", 3)))
    statuses = data.get("failure_statuses", [500, 502, 503, 504])
    if not all(isinstance(s, int) and 100 <= s <= 599 for s in statuses):
        raise ConfigError(f"health.failure_statuses must be HTTP status codes, got {statuses!r}")
    return HealthConfig(
        max_fails=max_fails,
        fail_window_sec=_positive("health", "fail_window_sec", data.get("fail_window_sec", 10)),
        cooldown_sec=_positive("health", "cooldown_sec", data.get("cooldown_sec", 10)),
        failure_statuses=frozenset(statuses),
    )


def _parse_timeouts(data: Dict[str, Any]) -> TimeoutConfig:
    return TimeoutConfig(
        connect_sec=_positive("timeouts", "connect_sec", data.get("connect_sec", 2)),
        send_sec=_positive("timeouts", "send_sec", data.get("send_sec", 5)),
        read_sec=_positive("timeouts", "read_sec", data.get("read_sec", 30)),
    )


def _parse_cache(prefix: str, data: Dict[str, Any]) -> CacheConfig:
    key = tuple(data.get("key", ["method", "path", "query"]))
    unknown = [k for k in key if k not in CACHE_KEY_DIMENSIONS]
    if unknown or not key:
        raise ConfigError(
            f"route {prefix}: cache key must use {CACHE_KEY_DIMENSIONS}, got {list(key)!r}"
        )
    return CacheConfig(
        enabled=bool(data.get("enabled", False)),
        valid_sec=_positive(f"route {prefix} cache", "valid_sec", data.get("valid_sec", 5)),
        key=key,
        use_stale=bool(data.get("use_stale", True)),
        max_stale_sec=_positive(
            f"route {prefix} cache", "max_stale_sec", data.get("max_stale_sec", 60), allow_zero=True
        ),
    )


def _parse_route(data: Dict[str, Any]) -> Route:
    prefix = data.get("prefix")
    if not isinstance(prefix, str) or not prefix.startswith("/"):
        raise ConfigError(f"route prefix must start with '/', got {prefix!r}")

    rewrite = data.get("rewrite")
    if rewrite is not None:
        if not isinstance(rewrite, str) or not rewrite.startswith("/"):
            raise ConfigError(f"route {prefix}: rewrite must start with '/', got {rewrite!r}")
        # /a/ -> /b would glue segments together, /a -> /b/ would double the slash
        if prefix.endswith("/") != rewrite.endswith("/"):
            raise ConfigError(
                f"route {prefix}: prefix and rewrite {rewrite} must both end with '/' or neither"
            )

    return Route(
        prefix=prefix,
        rewrite=rewrite,
        cache=_parse_cache(prefix, data.get("cache") or {}),
    )


def parse_balancer_config(data: Dict[str, Any]) -> BalancerConfig:
    upstreams = [u.rstrip("/") for u in data.get("upstreams") or []]
    if not upstreams:
        raise ConfigError("at least one upstream is required")
    for upstream in upstreams:
        if not upstream.startswith(("http://", "https://")):
            raise ConfigError(f"upstream must be an http(s) URL, got {upstream!r}")
    if len(set(upstreams)) != len(upstreams):
        raise ConfigError(f"duplicate upstreams in {upstreams!r}")

    routes = [_parse_route(r) for r in data.get("routes") or [{"prefix": "/"}]]
    prefixes = [r.prefix for r in routes]
    if len(set(prefixes)) != len(prefixes):
        raise ConfigError(f"duplicate route prefixes in {prefixes!r}")

    return BalancerConfig(
        upstreams=upstreams,
        # longest prefix first so matching can stop at the first hit
        routes=sorted(routes, key=lambda r: len(r.prefix), reverse=True),
        listen_host=data.get("listen_host", "0.0.0.0"),
        listen_port=int(data.get("listen_port", 9090)),
        health=_parse_health(data.get("health") or {}),
        timeouts=_parse_timeouts(data.get("timeouts") or {}),
        cache_max_entries=int(_positive("balancer", "cache_max_entries", data.get("cache_max_entries", 10_000))),
    )


def load_balancer_config(path: str) -> BalancerConfig:
    path_obj = Path(path)
    if not path_obj.exists():
        raise FileNotFoundError(f"Balancer config file not found: {path}")

    with open(path_obj, "r") as f:
        data = yaml.safe_load(f) or {}

    return parse_balancer_config(data.get("balancer", data))

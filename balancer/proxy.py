import json
import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable, Iterable, List, Optional, Tuple

import httpx

from .cache import CachedResponse, ResponseCache, build_cache_key
from .config import BalancerConfig, Route
from .health import HealthTracker

HOP_BY_HOP = {
    "connection",
    "keep-alive",
    "proxy-authenticate",
    "proxy-authorization",
    "te",
    "trailers",
    "transfer-encoding",
    "upgrade",
}
# httpx decodes bodies, so length and encoding are recomputed downstream
DROP_FROM_RESPONSE = HOP_BY_HOP | {"content-length", "content-encoding"}
DROP_FROM_REQUEST = HOP_BY_HOP | {"host", "content-length"}

CACHEABLE_METHODS = ("GET", "HEAD")
# safe to resend to another replica after the first one may have seen them
IDEMPOTENT_METHODS = ("GET", "HEAD", "OPTIONS", "PUT", "DELETE")
# raised before any byte of the request reached the replica
NOT_SENT_ERRORS = (httpx.ConnectError, httpx.ConnectTimeout, httpx.PoolTimeout)


class GatewayError(Exception):
    def __init__(self, status_code: int, detail: str):
        super().__init__(detail)
        self.status_code = status_code
        self.detail = detail


@dataclass
class ProxyResponse:
    status_code: int
    headers: List[Tuple[str, str]]
    body: bytes
    upstream: Optional[str] = None
    cache_status: Optional[str] = None

    @classmethod
    def from_cache(cls, entry: CachedResponse, cache_status: str) -> "ProxyResponse":
        return cls(entry.status_code, list(entry.headers), entry.body, cache_status=cache_status)

    @classmethod
    def error(cls, status_code: int, detail: str) -> "ProxyResponse":
        body = json.dumps({"error": detail}).encode()
        return cls(status_code, [("content-type", "application/json")], body)

    def all_headers(self) -> List[Tuple[str, str]]:
        headers = list(self.headers)
        if self.upstream:
            headers.append(("x-upstream-addr", self.upstream))
        if self.cache_status:
            headers.append(("x-cache-status", self.cache_status))
        return headers


class Balancer:
    """
    Round-robin reverse proxy over a fixed set of replicas.

    Replicas marked unhealthy by the tracker are skipped. Transport
    failures (refused, reset, any timeout phase) move on to the next
    replica, except for non-idempotent methods that may already have
    been sent. A failure status from a replica is relayed as is.

    Paths are handled as received, still percent-encoded.
    """

    def __init__(
        self,
        config: BalancerConfig,
        transport: Optional[httpx.BaseTransport] = None,
        clock: Callable[[], float] = time.monotonic,
        logger: Optional[logging.Logger] = None,
    ):
        self.config = config
        self._log = logger or logging.getLogger("balancer")
        self.health = HealthTracker(config.upstreams, config.health, clock=clock, logger=self._log)
        self.cache = ResponseCache(clock=clock, max_entries=config.cache_max_entries)
        t = config.timeouts
        self.client = httpx.Client(
            transport=transport,
            timeout=httpx.Timeout(
                connect=t.connect_sec, write=t.send_sec, read=t.read_sec, pool=t.connect_sec
            ),
            follow_redirects=False,
        )
        self._rr_lock = threading.Lock()
        self._next = 0

    def close(self):
        self.client.close()

    def route_for(self, path: str) -> Optional[Route]:
        for route in self.config.routes:
            if route.matches(path):
                return route
        return None

    def pick(self, exclude: Iterable[str] = ()) -> Optional[str]:
        upstreams = self.config.upstreams
        skip = set(exclude)
        with self._rr_lock:
            n = len(upstreams)
            for offset in range(n):
                idx = (self._next + offset) % n
                candidate = upstreams[idx]
                if candidate in skip or not self.health.is_available(candidate):
                    continue
                self._next = (idx + 1) % n
                return candidate
        return None

    def handle(
        self,
        method: str,
        path: str,
        query: str = "",
        headers: Iterable[Tuple[str, str]] = (),
        body: bytes = b"",
        client_host: str = "",
    ) -> ProxyResponse:
        route = self.route_for(path)
        if route is None:
            return ProxyResponse.error(404, "no route")

        cache_cfg = route.cache
        key = None
        if cache_cfg.enabled and method.upper() in CACHEABLE_METHODS:
            key = build_cache_key(cache_cfg, method, path, query, client_host)
            hit = self.cache.fresh(route.prefix, key, cache_cfg.valid_sec)
            if hit is not None:
                return ProxyResponse.from_cache(hit, "HIT")

        try:
            resp = self.forward(route, method, path, query, headers, body, client_host)
        except GatewayError as exc:
            stale = self._stale(route, key)
            if stale is not None:
                self._log.warning("%s %s: %s, serving stale", method, path, exc.detail)
                return stale
            self._log.error("%s %s: %s", method, path, exc.detail)
            return ProxyResponse.error(exc.status_code, exc.detail)

        if key is None:
            return resp
        if resp.status_code in self.config.health.failure_statuses:
            stale = self._stale(route, key)
            if stale is not None:
                self._log.warning("%s %s: upstream returned %d, serving stale", method, path, resp.status_code)
                return stale
        if resp.status_code == 200:
            self.cache.store(
                route.prefix, key, resp.status_code, resp.headers, resp.body, cache_cfg.ttl_sec
            )
        resp.cache_status = "MISS"
        return resp

    def _stale(self, route: Route, key) -> Optional[ProxyResponse]:
        if key is None or not route.cache.use_stale:
            return None
        entry = self.cache.stale(route.prefix, key)
        return ProxyResponse.from_cache(entry, "STALE") if entry is not None else None

    def forward(
        self,
        route: Route,
        method: str,
        path: str,
        query: str,
        headers: Iterable[Tuple[str, str]],
        body: bytes,
        client_host: str,
    ) -> ProxyResponse:
        target = route.upstream_path(path)
        if query:
            target = f"{target}?{query}"
        out_headers = self._request_headers(headers, client_host)

        tried: List[str] = []
        timed_out = False
        while True:
            upstream = self.pick(exclude=tried)
            if upstream is None:
                break
            tried.append(upstream)
            try:
                r = self.client.request(
                    method, upstream + target, headers=out_headers, content=body or None
                )
            except httpx.TransportError as exc:
                timed_out = isinstance(exc, httpx.TimeoutException)
                self._log.warning("%s %s%s failed: %r", method, upstream, target, exc)
                self.health.record_failure(upstream)
                if method.upper() in IDEMPOTENT_METHODS or isinstance(exc, NOT_SENT_ERRORS):
                    continue
                raise GatewayError(
                    504 if timed_out else 502,
                    f"upstream {upstream} failed mid-request, {method} is not retried",
                )

            if r.status_code in self.config.health.failure_statuses:
                self.health.record_failure(upstream)
            else:
                self.health.record_success(upstream)
            self._log.debug("%s %s%s -> %d", method, upstream, target, r.status_code)

            relayed = [
                (k, v) for k, v in r.headers.multi_items() if k.lower() not in DROP_FROM_RESPONSE
            ]
            return ProxyResponse(r.status_code, relayed, r.content, upstream=upstream)

        if not tried:
            raise GatewayError(502, "no upstream available")
        if timed_out:
            raise GatewayError(504, f"upstream timed out after trying {len(tried)} replica(s)")
        raise GatewayError(502, f"upstream unreachable after trying {len(tried)} replica(s)")

    @staticmethod
    def _request_headers(headers: Iterable[Tuple[str, str]], client_host: str) -> List[Tuple[str, str]]:
        out = []
        forwarded_for = None
        for k, v in headers:
            name = k.lower()
            if name in DROP_FROM_REQUEST:
                continue
            if name == "x-forwarded-for":
                forwarded_for = v
                continue
            out.append((k, v))
        if client_host:
            forwarded_for = f"{forwarded_for}, {client_host}" if forwarded_for else client_host
            out.append(("x-real-ip", client_host))
        if forwarded_for:
            out.append(("x-forwarded-for", forwarded_for))
        return out

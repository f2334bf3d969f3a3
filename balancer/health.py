import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional

from .config import HealthConfig

HEALTHY = "healthy"
UNHEALTHY = "unhealthy"
PROBING = "probing"


@dataclass
class ReplicaState:
    state: str = HEALTHY
    fails: int = 0
    streak_started: Optional[float] = None
    unhealthy_until: Optional[float] = None


class HealthTracker:
    """
    Passive health for a fixed set of replicas.

    A replica goes unhealthy after max_fails consecutive failures whose
    streak began within fail_window_sec. Once cooldown_sec has elapsed it
    is probing: it gets ordinary traffic again, one success makes it
    healthy and one failure sends it back to unhealthy.

    Every read and update holds the same lock.
    """

    def __init__(
        self,
        replicas: List[str],
        config: HealthConfig,
        clock: Callable[[], float] = time.monotonic,
        logger: Optional[logging.Logger] = None,
    ):
        self.config = config
        self._clock = clock
        self._log = logger or logging.getLogger("balancer.health")
        self._lock = threading.Lock()
        self._states: Dict[str, ReplicaState] = {r: ReplicaState() for r in replicas}

    def _refresh(self, replica: str, st: ReplicaState, now: float):
        if st.state == UNHEALTHY and now >= st.unhealthy_until:
            st.state = PROBING
            self._log.info("replica %s cool-down over, probing", replica)

    def _mark_unhealthy(self, replica: str, st: ReplicaState, now: float):
        st.state = UNHEALTHY
        st.unhealthy_until = now + self.config.cooldown_sec
        st.fails = 0
        st.streak_started = None
        self._log.warning(
            "replica %s marked unhealthy for %.1fs", replica, self.config.cooldown_sec
        )

    def is_available(self, replica: str) -> bool:
        with self._lock:
            st = self._states[replica]
            self._refresh(replica, st, self._clock())
            return st.state != UNHEALTHY

    def record_failure(self, replica: str):
        with self._lock:
            now = self._clock()
            st = self._states[replica]
            self._refresh(replica, st, now)

            if st.state == UNHEALTHY:
                # a request that was already in flight when it went down
                return
            if st.state == PROBING:
                self._mark_unhealthy(replica, st, now)
                return

            if st.streak_started is None or now - st.streak_started > self.config.fail_window_sec:
                st.streak_started = now
                st.fails = 0
            st.fails += 1
            self._log.debug("replica %s failure %d/%d", replica, st.fails, self.config.max_fails)

            if st.fails >= self.config.max_fails:
                self._mark_unhealthy(replica, st, now)

    def record_success(self, replica: str):
        with self._lock:
            st = self._states[replica]
            self._refresh(replica, st, self._clock())
            if st.state == UNHEALTHY:
                return
            if st.state == PROBING:
                self._log.info("replica %s recovered", replica)
            st.state = HEALTHY
            st.fails = 0
            st.streak_started = None
            st.unhealthy_until = None

    def state_of(self, replica: str) -> str:
        with self._lock:
            st = self._states[replica]
            self._refresh(replica, st, self._clock())
            return st.state

    def snapshot(self) -> Dict[str, Dict]:
        with self._lock:
            now = self._clock()
            out = {}
            for replica, st in self._states.items():
                self._refresh(replica, st, now)
                out[replica] = {
                    "state": st.state,
                    "fails": st.fails,
                    "retry_in_sec": (
                        round(st.unhealthy_until - now, 3) if st.state == UNHEALTHY else None
                    ),
                }
            return out

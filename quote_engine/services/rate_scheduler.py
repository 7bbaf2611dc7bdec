"""
Rate Scheduler

Reservoir-based rate limiting and retry for every external call the engine
makes. One RateScheduler is shared by all member tasks of a quote run so that
plan catalog, pricing, geography and affordability traffic all pass through a
single choke point.

Two limiters are configured:
- "external": per-minute reservoir (100/min production, 5/min trial, plus a
  lifetime cap in trial), 2 concurrent calls, 600ms between dispatches
- "affordability": lifetime quota that never refills, one call at a time
"""

import logging
import threading
import time
from collections import deque
from dataclasses import dataclass, field, replace
from typing import Any, Callable, Dict, Optional, Tuple, Type

from constants import RETRYABLE_STATUS_CODES
from quote_engine.config import EngineConfig
from quote_engine.errors import (
    AffordabilityTrialLimitExceeded,
    CallDropped,
    ExternalCallError,
    ExternalRateLimitExceeded,
    ExternalServiceUnavailable,
    QuoteEngineError,
)

logger = logging.getLogger(__name__)

EXTERNAL_SERVICE = "external"
AFFORDABILITY_SERVICE = "affordability"


@dataclass(frozen=True)
class LimiterSettings:
    """
    Settings for one RateLimiter.

    reservoir: calls available now (None = unlimited)
    refresh_interval: seconds between reservoir resets to refresh_amount;
        None makes the reservoir a lifetime quota
    lifetime_cap: total dispatches ever allowed, independent of refresh
    """
    reservoir: Optional[int] = None
    refresh_interval: Optional[float] = None
    refresh_amount: Optional[int] = None
    lifetime_cap: Optional[int] = None
    max_concurrent: int = 1
    min_time: float = 0.0
    max_retries: int = 0
    retry_base_delay: float = 1.0
    retry_statuses: Tuple[int, ...] = RETRYABLE_STATUS_CODES
    exhausted_error: Type[QuoteEngineError] = field(default=ExternalRateLimitExceeded)


class _Waiter:
    __slots__ = ('dropped',)

    def __init__(self):
        self.dropped = False


class RateLimiter:
    """
    FIFO reservoir limiter with retry on transient failures.

    Callers block in arrival order until a slot, budget, and the minimum
    spacing allow their call to dispatch. Nothing is dropped unless
    clear_queue() or stop(drop_waiting_jobs=True) is called.
    """

    def __init__(self, name: str, settings: LimiterSettings,
                 clock: Callable[[], float] = time.monotonic,
                 sleep: Callable[[float], None] = time.sleep):
        self.name = name
        self.settings = settings
        self._clock = clock
        self._sleep = sleep
        self._cond = threading.Condition()
        self._queue = deque()
        self._reservoir = settings.reservoir
        self._last_refresh = clock()
        self._last_dispatch: Optional[float] = None
        self._running = 0
        self._done = 0
        self._dispatched = 0
        self._retries = 0
        self._failures = 0
        self._stopped = False

    # ------------------------------------------------------------------
    # Scheduling
    # ------------------------------------------------------------------

    def schedule(self, fn: Callable[..., Any], *args, **kwargs) -> Any:
        """
        Run ``fn`` under this limiter, retrying transient failures.

        Each retry waits ``retry_base_delay * 2**attempt`` and consumes budget
        again. When retries run out a 429 surfaces as ExternalRateLimitExceeded
        and other transient failures as ExternalServiceUnavailable.
        """
        attempt = 0
        while True:
            self._acquire()
            try:
                return fn(*args, **kwargs)
            except ExternalCallError as e:
                if not self._is_retryable(e):
                    self._record_failure()
                    raise
                if attempt >= self.settings.max_retries:
                    self._record_failure()
                    raise self._retries_exhausted(e, attempt + 1) from e
                delay = self.settings.retry_base_delay * (2 ** attempt)
                logger.warning(
                    f"RATE LIMIT: {self.name} call failed with status {e.status_code}, "
                    f"retry {attempt + 1}/{self.settings.max_retries} in {delay:.1f}s"
                )
            except Exception:
                self._record_failure()
                raise
            finally:
                self._release()

            with self._cond:
                self._retries += 1
            self._sleep(delay)
            attempt += 1

    def _is_retryable(self, error: ExternalCallError) -> bool:
        # No status code means the request never got a response (timeout, reset)
        return error.status_code is None or error.status_code in self.settings.retry_statuses

    def _retries_exhausted(self, error: ExternalCallError, attempts: int) -> QuoteEngineError:
        details = {
            'service': self.name,
            'attempts': attempts,
            'status_code': error.status_code,
        }
        if error.status_code == 429:
            return ExternalRateLimitExceeded(
                f"Rate limit exceeded for {self.name} after {attempts} attempts", details)
        return ExternalServiceUnavailable(
            f"{self.name} unavailable after {attempts} attempts: {error.message}", details)

    def _acquire(self):
        waiter = _Waiter()
        with self._cond:
            if self._stopped:
                raise CallDropped(f"{self.name} limiter is stopped", {'service': self.name})
            self._queue.append(waiter)

        while True:
            with self._cond:
                if waiter.dropped:
                    raise CallDropped(f"Queued {self.name} call dropped", {'service': self.name})

                if self._queue[0] is not waiter or self._running >= self.settings.max_concurrent:
                    self._cond.wait()
                    continue

                try:
                    delay = self._dispatch_delay()
                except QuoteEngineError:
                    self._queue.popleft()
                    self._cond.notify_all()
                    raise

                if delay <= 0:
                    self._queue.popleft()
                    self._dispatch()
                    self._cond.notify_all()
                    return

            # Head of queue, gated only by time: sleep outside the lock
            self._sleep(delay)

    def _dispatch_delay(self) -> float:
        """Seconds until the head of the queue may dispatch. Caller holds the lock."""
        settings = self.settings
        now = self._clock()

        if settings.lifetime_cap is not None and self._dispatched >= settings.lifetime_cap:
            raise settings.exhausted_error(
                f"{self.name} lifetime limit of {settings.lifetime_cap} calls reached",
                {'service': self.name, 'lifetime_cap': settings.lifetime_cap},
            )

        self._refresh_reservoir(now)
        if self._reservoir is not None and self._reservoir <= 0:
            if settings.refresh_interval is None:
                raise settings.exhausted_error(
                    f"{self.name} quota exhausted",
                    {'service': self.name, 'reservoir': 0},
                )
            return self._last_refresh + settings.refresh_interval - now

        if self._last_dispatch is not None and settings.min_time > 0:
            return self._last_dispatch + settings.min_time - now
        return 0.0

    def _refresh_reservoir(self, now: float):
        interval = self.settings.refresh_interval
        if interval is None or self._reservoir is None:
            return
        elapsed = now - self._last_refresh
        if elapsed >= interval:
            periods = int(elapsed // interval)
            self._last_refresh += periods * interval
            amount = self.settings.refresh_amount
            self._reservoir = amount if amount is not None else self.settings.reservoir

    def _dispatch(self):
        if self._reservoir is not None:
            self._reservoir -= 1
        self._dispatched += 1
        self._running += 1
        self._last_dispatch = self._clock()

    def _release(self):
        with self._cond:
            self._running -= 1
            self._done += 1
            self._cond.notify_all()

    def _record_failure(self):
        with self._cond:
            self._failures += 1

    # ------------------------------------------------------------------
    # Control
    # ------------------------------------------------------------------

    def clear_queue(self) -> int:
        """Drop every waiting call. Returns the number dropped."""
        with self._cond:
            dropped = len(self._queue)
            for waiter in self._queue:
                waiter.dropped = True
            self._queue.clear()
            self._cond.notify_all()
        if dropped:
            logger.warning(f"RATE LIMIT: Queue cleared for {self.name}, dropped {dropped} calls")
        return dropped

    def update_settings(self, **changes) -> LimiterSettings:
        """Change limiter settings in place. A new reservoir takes effect immediately."""
        with self._cond:
            self.settings = replace(self.settings, **changes)
            if 'reservoir' in changes:
                self._reservoir = self.settings.reservoir
                self._last_refresh = self._clock()
            self._cond.notify_all()
        logger.info(f"RATE LIMIT: Updated {self.name} limits: {changes}")
        return self.settings

    def stop(self, drop_waiting_jobs: bool = False, timeout: Optional[float] = None) -> bool:
        """
        Stop accepting calls. Queued calls drain unless ``drop_waiting_jobs``.

        Returns True once nothing is queued or running (False on timeout).
        """
        with self._cond:
            self._stopped = True
        if drop_waiting_jobs:
            self.clear_queue()
        with self._cond:
            return self._cond.wait_for(lambda: not self._queue and self._running == 0,
                                       timeout=timeout)

    # ------------------------------------------------------------------
    # Observability
    # ------------------------------------------------------------------

    def counts(self) -> Dict[str, int]:
        with self._cond:
            return {'queued': len(self._queue), 'running': self._running, 'done': self._done}

    def current_reservoir(self) -> Optional[int]:
        with self._cond:
            self._refresh_reservoir(self._clock())
            reservoir = self._reservoir
            cap = self.settings.lifetime_cap
            if cap is not None:
                remaining = max(0, cap - self._dispatched)
                reservoir = remaining if reservoir is None else min(reservoir, remaining)
            return reservoir

    def status(self) -> Dict[str, Any]:
        counts = self.counts()
        return {
            'running': counts['running'],
            'queued': counts['queued'],
            'done': counts['done'],
            'reservoir': self.current_reservoir(),
            'stopped': self._stopped,
        }

    def metrics(self) -> Dict[str, Any]:
        counts = self.counts()
        reservoir = self.current_reservoir()
        done = counts['done']
        if done > 0 and reservoir is not None:
            utilization = round(done / (done + reservoir) * 100, 2)
        else:
            utilization = 0.0
        with self._cond:
            retries, failures = self._retries, self._failures
        return {
            'total_requests': done,
            'active_requests': counts['running'],
            'queued_requests': counts['queued'],
            'available_tokens': reservoir,
            'retries': retries,
            'failures': failures,
            'utilization_rate': utilization,
        }


class RateScheduler:
    """Named limiters shared by every component that talks to the outside world."""

    def __init__(self, limiters: Dict[str, RateLimiter]):
        self._limiters = dict(limiters)

    @classmethod
    def from_config(cls, config: EngineConfig,
                    clock: Callable[[], float] = time.monotonic,
                    sleep: Callable[[float], None] = time.sleep) -> "RateScheduler":
        external = LimiterSettings(
            reservoir=config.rate_limit_reservoir,
            refresh_interval=config.rate_limit_refresh_interval,
            refresh_amount=config.rate_limit_reservoir,
            lifetime_cap=config.rate_limit_lifetime_cap,
            max_concurrent=config.rate_limit_max_concurrent,
            min_time=config.rate_limit_min_time,
            max_retries=config.rate_limit_max_retries,
            retry_base_delay=config.rate_limit_retry_base,
        )
        affordability = LimiterSettings(
            reservoir=config.affordability_lifetime_limit,
            refresh_interval=None,
            max_concurrent=config.affordability_max_concurrent,
            min_time=config.affordability_min_time,
            max_retries=config.rate_limit_max_retries,
            retry_base_delay=config.rate_limit_retry_base,
            exhausted_error=AffordabilityTrialLimitExceeded,
        )
        logger.info(
            f"RATE LIMIT: Initialized for {config.environment} "
            f"(external {config.rate_limit_reservoir}/min, "
            f"affordability lifetime {config.affordability_lifetime_limit})"
        )
        return cls({
            EXTERNAL_SERVICE: RateLimiter(EXTERNAL_SERVICE, external, clock, sleep),
            AFFORDABILITY_SERVICE: RateLimiter(AFFORDABILITY_SERVICE, affordability, clock, sleep),
        })

    def limiter(self, service: str) -> RateLimiter:
        try:
            return self._limiters[service]
        except KeyError:
            raise ValueError(f"Unknown rate-limited service '{service}'") from None

    def execute(self, service: str, fn: Callable[..., Any], *args, **kwargs) -> Any:
        return self.limiter(service).schedule(fn, *args, **kwargs)

    def wrap(self, service: str, fn: Callable[..., Any]) -> Callable[..., Any]:
        """Return ``fn`` bound to a limiter, for repeated use."""
        limiter = self.limiter(service)

        def wrapped(*args, **kwargs):
            return limiter.schedule(fn, *args, **kwargs)

        wrapped.__name__ = getattr(fn, '__name__', 'wrapped')
        return wrapped

    def get_service_status(self, service: str) -> Dict[str, Any]:
        return self.limiter(service).status()

    def get_status(self) -> Dict[str, Dict[str, Any]]:
        return {name: limiter.status() for name, limiter in self._limiters.items()}

    def get_metrics(self) -> Dict[str, Any]:
        return {
            'timestamp': time.time(),
            'services': {name: limiter.metrics() for name, limiter in self._limiters.items()},
        }

    def clear_queue(self, service: str) -> int:
        return self.limiter(service).clear_queue()

    def update_limits(self, service: str, **changes) -> LimiterSettings:
        return self.limiter(service).update_settings(**changes)

    def shutdown(self, drop_waiting_jobs: bool = False, timeout: Optional[float] = None) -> bool:
        logger.info(f"RATE LIMIT: Shutting down (drop_waiting_jobs={drop_waiting_jobs})")
        results = [limiter.stop(drop_waiting_jobs, timeout) for limiter in self._limiters.values()]
        return all(results)

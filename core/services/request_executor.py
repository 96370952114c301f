"""
Request executor: per-endpoint token bucket pacing with bounded retry on rate limits.

Every outbound call to a rate-limited provider goes through
`RequestExecutor.execute(endpoint_key, call)`. Admission is serialized per
endpoint key (one asyncio.Lock each), so distinct endpoints never wait on
each other. Waiting is always `await sleep(...)`, never a busy loop.
"""

from __future__ import annotations

import asyncio
import logging
import random
import re
import time
from dataclasses import dataclass, field, replace
from typing import Any, Awaitable, Callable, Dict, Optional, TypeVar

from core.domain.errors import RateLimitError

logger = logging.getLogger(__name__)

T = TypeVar("T")

RPC_ENDPOINT = "rpc"

_RATE_LIMIT_CODES = {429, -32005}
_RATE_LIMIT_MARKERS = (
    "rate limit",
    "too many requests",
    "request limit",
    "throttl",
    "limit exceeded",
)
_HTTP_429_RE = re.compile(r"\b429\b")
_RETRY_AFTER_RE = re.compile(r"retry after (\d+)", re.IGNORECASE)


@dataclass(frozen=True)
class EndpointLimits:
    requests_per_second: float = 1.0
    burst_capacity: int = 2
    max_retries: int = 3
    base_backoff_ms: int = 5000
    max_backoff_ms: int = 60000
    backoff_multiplier: float = 2.0
    jitter_fraction: float = 0.3


# Unknown endpoints get this.
DEFAULT_LIMITS = EndpointLimits()

# JSON-RPC node: ~5 req/s, matching the 200ms spacing public endpoints tolerate.
RPC_LIMITS = EndpointLimits(
    requests_per_second=5.0,
    burst_capacity=5,
    max_retries=3,
    base_backoff_ms=2000,
    max_backoff_ms=30000,
)


@dataclass
class _EndpointState:
    tokens: float
    last_refill: float
    rate_limited: bool = False
    reset_at: Optional[float] = None
    consecutive_errors: int = 0
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)


def _status_codes(exc: BaseException) -> set[int]:
    codes: set[int] = set()
    for attr in ("status", "status_code", "code"):
        v = getattr(exc, attr, None)
        if isinstance(v, int):
            codes.add(v)

    resp = getattr(exc, "response", None)
    if resp is not None:
        for attr in ("status_code", "status"):
            v = getattr(resp, attr, None)
            if isinstance(v, int):
                codes.add(v)

    # web3 RPC errors carry the JSON-RPC error object
    rpc = getattr(exc, "rpc_response", None)
    if isinstance(rpc, dict) and isinstance(rpc.get("error"), dict):
        code = rpc["error"].get("code")
        if isinstance(code, int):
            codes.add(code)

    for arg in getattr(exc, "args", ()):
        if isinstance(arg, dict) and isinstance(arg.get("code"), int):
            codes.add(arg["code"])
    return codes


def _headers_of(exc: BaseException) -> Any:
    headers = getattr(exc, "headers", None)
    if headers is None:
        resp = getattr(exc, "response", None)
        headers = getattr(resp, "headers", None) if resp is not None else None
    return headers


def retry_hint_ms(exc: BaseException) -> Optional[int]:
    """
    Provider-supplied wait in ms: a RateLimitError hint, a Retry-After header
    (seconds) or "retry after N" in the message. None when absent.
    """
    if isinstance(exc, RateLimitError) and exc.retry_after_ms is not None:
        return int(exc.retry_after_ms)

    headers = _headers_of(exc)
    if headers is not None:
        try:
            raw = headers.get("retry-after") or headers.get("Retry-After")
        except AttributeError:
            raw = None
        if raw is not None:
            try:
                return int(float(str(raw).strip()) * 1000)
            except ValueError:
                pass

    match = _RETRY_AFTER_RE.search(str(exc))
    if match:
        return int(match.group(1)) * 1000
    return None


def is_rate_limit_error(exc: BaseException) -> bool:
    if isinstance(exc, RateLimitError):
        return True
    if _status_codes(exc) & _RATE_LIMIT_CODES:
        return True

    message = str(exc).lower()
    if any(marker in message for marker in _RATE_LIMIT_MARKERS) or _HTTP_429_RE.search(message):
        return True

    name = type(exc).__name__.lower()
    if "ratelimit" in name or "throttl" in name:
        return True

    return retry_hint_ms(exc) is not None


class RequestExecutor:
    """
    Paces and retries outbound calls per endpoint key.

    Args:
        limits: Per-endpoint overrides keyed by endpoint name.
        default: Limits for endpoints without an explicit entry.
        clock: Monotonic time source in seconds.
        sleep: Coroutine used for every wait.
        rand: Source of [0, 1) numbers for backoff jitter.
    """

    def __init__(
        self,
        limits: Optional[Dict[str, EndpointLimits]] = None,
        *,
        default: EndpointLimits = DEFAULT_LIMITS,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        rand: Callable[[], float] = random.random,
    ) -> None:
        self._limits: Dict[str, EndpointLimits] = dict(limits or {})
        self._default = default
        self._clock = clock
        self._sleep = sleep
        self._rand = rand
        self._states: Dict[str, _EndpointState] = {}

    @classmethod
    def from_settings(cls, settings: Any) -> "RequestExecutor":
        rpc = replace(
            RPC_LIMITS,
            requests_per_second=float(settings.RPC_REQUESTS_PER_SECOND),
            burst_capacity=int(settings.RPC_BURST_CAPACITY),
            max_retries=int(settings.RPC_MAX_RETRIES),
        )
        return cls({RPC_ENDPOINT: rpc})

    # ------------------------------------------------------------------ #
    # Configuration / state
    # ------------------------------------------------------------------ #

    def limits_for(self, endpoint_key: str) -> EndpointLimits:
        return self._limits.get(endpoint_key, self._default)

    def _state(self, endpoint_key: str) -> _EndpointState:
        st = self._states.get(endpoint_key)
        if st is None:
            limits = self.limits_for(endpoint_key)
            st = _EndpointState(tokens=float(limits.burst_capacity), last_refill=self._clock())
            self._states[endpoint_key] = st
        return st

    def _refill(self, st: _EndpointState, limits: EndpointLimits) -> float:
        now = self._clock()
        elapsed = max(0.0, now - st.last_refill)
        st.tokens = min(float(limits.burst_capacity), st.tokens + elapsed * limits.requests_per_second)
        st.last_refill = now
        return st.tokens

    # ------------------------------------------------------------------ #
    # Pacing
    # ------------------------------------------------------------------ #

    async def _acquire(self, endpoint_key: str) -> None:
        limits = self.limits_for(endpoint_key)
        st = self._state(endpoint_key)

        async with st.lock:
            if st.rate_limited and st.reset_at is not None:
                wait = st.reset_at - self._clock()
                if wait > 0:
                    await self._sleep(wait)
                st.rate_limited = False
                st.reset_at = None

            self._refill(st, limits)
            while st.tokens < 1:
                await self._sleep((1.0 - st.tokens) / limits.requests_per_second)
                self._refill(st, limits)

            st.tokens -= 1

    def compute_backoff_ms(self, endpoint_key: str, consecutive_errors: int) -> float:
        """
        min(max, base * multiplier^errors) plus up to jitter_fraction of that.
        """
        limits = self.limits_for(endpoint_key)
        backoff = min(
            float(limits.max_backoff_ms),
            limits.base_backoff_ms * (limits.backoff_multiplier ** consecutive_errors),
        )
        return backoff + backoff * limits.jitter_fraction * self._rand()

    def _on_rate_limited(self, endpoint_key: str, exc: BaseException) -> float:
        st = self._state(endpoint_key)
        st.consecutive_errors += 1

        wait_ms = self.compute_backoff_ms(endpoint_key, st.consecutive_errors)
        hint = retry_hint_ms(exc)
        if hint is not None:
            wait_ms = float(hint)

        st.rate_limited = True
        st.reset_at = self._clock() + wait_ms / 1000.0
        return wait_ms

    def _on_success(self, endpoint_key: str) -> None:
        st = self._state(endpoint_key)
        st.consecutive_errors = 0
        st.rate_limited = False

    # ------------------------------------------------------------------ #
    # Public API
    # ------------------------------------------------------------------ #

    async def execute(
        self,
        endpoint_key: str,
        call: Callable[[], Awaitable[T]],
        *,
        max_retries: Optional[int] = None,
    ) -> T:
        """
        Run `call()` once a token is available for `endpoint_key`.

        Rate-limit failures are retried after a cool-down (at most
        `max_retries` times) and then surfaced as RateLimitError. Any other
        exception propagates unchanged.
        """
        limits = self.limits_for(endpoint_key)
        retries = limits.max_retries if max_retries is None else int(max_retries)
        attempt = 0

        while True:
            await self._acquire(endpoint_key)
            try:
                result = await call()
            except Exception as exc:
                if not is_rate_limit_error(exc):
                    raise

                wait_ms = self._on_rate_limited(endpoint_key, exc)
                if attempt >= retries:
                    logger.error("[%s] Max retries (%d) reached on rate limit: %s", endpoint_key, retries, exc)
                    if isinstance(exc, RateLimitError):
                        raise
                    raise RateLimitError(
                        f"{endpoint_key}: rate limited after {retries} retries",
                        endpoint=endpoint_key,
                        retry_after_ms=int(wait_ms),
                    ) from exc

                attempt += 1
                logger.warning(
                    "[%s] Rate limited. Retry %d/%d after %dms",
                    endpoint_key,
                    attempt,
                    retries,
                    int(wait_ms),
                )
                continue

            self._on_success(endpoint_key)
            return result

    def status(self) -> Dict[str, Dict[str, Any]]:
        out: Dict[str, Dict[str, Any]] = {}
        for key, st in self._states.items():
            limits = self.limits_for(key)
            self._refill(st, limits)
            cooldown = None
            if st.rate_limited and st.reset_at is not None:
                cooldown = max(0.0, st.reset_at - self._clock())
            out[key] = {
                "available_tokens": round(st.tokens, 2),
                "burst_capacity": limits.burst_capacity,
                "requests_per_second": limits.requests_per_second,
                "rate_limited": st.rate_limited,
                "cooldown_remaining_sec": cooldown,
                "consecutive_errors": st.consecutive_errors,
            }
        return out

"""
Per-adapter rate limiting.

WHAT: Fixed-window request and token counters, reconciled with the quota a
      backend reports in its response headers
WHY: Reject a call locally, before any network I/O, when the window is spent;
     correct drift caused by other callers sharing the same account
HOW: Lock-guarded check-and-increment; per-backend header specs describe which
     headers carry remaining/limit/reset values and in which unit
"""

import math
import re
import threading
import time
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Callable, Literal, Mapping

from .types import RateLimitStatus
from ..utils.logger import get_logger

logger = get_logger(__name__)

ResetFormat = Literal["duration", "seconds", "epoch", "iso8601"]

_DURATION_PART = re.compile(r"(\d+(?:\.\d+)?)(ms|h|m|s)")
_DURATION_FACTORS = {"h": 3600.0, "m": 60.0, "s": 1.0, "ms": 0.001}

# Values above this are epoch milliseconds rather than epoch seconds
_EPOCH_MILLIS_THRESHOLD = 1_000_000_000_000

# Rough characters-per-token ratio for local unit estimation
CHARS_PER_TOKEN = 4


@dataclass
class RateLimitState:
    """Mutable window state owned by one rate limiter."""
    requests_per_window: int
    units_per_window: int
    request_count: int = 0
    unit_count: int = 0
    reset_at: float = 0.0


@dataclass(frozen=True)
class RateLimitHeaders:
    """Header names a backend uses to report its quota. None = not reported."""
    requests_remaining: str | None = None
    units_remaining: str | None = None
    requests_limit: str | None = None
    units_limit: str | None = None
    reset: str | None = None
    reset_format: ResetFormat = "seconds"


def parse_duration(value: str) -> float | None:
    """
    Parse a Go-style duration ("6m0s", "20ms", "1.5s") or bare seconds.

    Returns:
        Seconds, or None if the value is not a duration
    """
    value = value.strip()
    try:
        return float(value)
    except ValueError:
        pass

    total = 0.0
    position = 0
    for match in _DURATION_PART.finditer(value):
        if match.start() != position:
            return None
        total += float(match.group(1)) * _DURATION_FACTORS[match.group(2)]
        position = match.end()
    if position == 0 or position != len(value):
        return None
    return total


def parse_reset(value: str, reset_format: ResetFormat, now: float) -> float | None:
    """
    Convert a reset header value to an absolute timestamp (epoch seconds).

    Returns:
        The timestamp, or None for unknown formats and non-finite values
    """
    if reset_format == "duration":
        seconds = parse_duration(value)
        reset_at = None if seconds is None else now + seconds
    elif reset_format == "seconds":
        reset_at = now + float(value)
    elif reset_format == "epoch":
        stamp = float(value)
        reset_at = stamp / 1000.0 if stamp > _EPOCH_MILLIS_THRESHOLD else stamp
    elif reset_format == "iso8601":
        reset_at = datetime.fromisoformat(value.strip().replace("Z", "+00:00")).timestamp()
    else:
        reset_at = None
    if reset_at is None or not math.isfinite(reset_at):
        return None
    return reset_at


def estimate_units(text: str, max_tokens: int = 0) -> int:
    """Estimate the tokens a call will consume: prompt size plus output ceiling."""
    prompt_tokens = -(-len(text) // CHARS_PER_TOKEN) if text else 0
    return prompt_tokens + max(0, max_tokens)


class RateLimiter:
    """Fixed-window limiter for one adapter instance."""

    def __init__(
        self,
        requests_per_window: int,
        units_per_window: int,
        window_seconds: float = 60.0,
        clock: Callable[[], float] = time.time,
    ):
        self.window_seconds = window_seconds
        self._clock = clock
        self._lock = threading.Lock()
        self._state = RateLimitState(
            requests_per_window=requests_per_window,
            units_per_window=units_per_window,
            reset_at=clock() + window_seconds,
        )

    @property
    def state(self) -> RateLimitState:
        """Copy of the current window state."""
        with self._lock:
            return replace(self._state)

    def _roll_window(self, now: float) -> None:
        # Caller holds the lock
        if now >= self._state.reset_at:
            self._state.request_count = 0
            self._state.unit_count = 0
            self._state.reset_at = now + self.window_seconds

    def try_acquire(self, units: int = 0) -> bool:
        """
        Check the window and, if there is room, consume one request and `units`.

        Rejection leaves the state untouched.
        """
        with self._lock:
            now = self._clock()
            self._roll_window(now)

            state = self._state
            if (state.request_count >= state.requests_per_window
                    or state.unit_count + units > state.units_per_window):
                return False

            state.request_count += 1
            state.unit_count += units
            return True

    def status(self) -> RateLimitStatus:
        """Remaining capacity in the current window."""
        with self._lock:
            now = self._clock()
            state = self._state
            return RateLimitStatus(
                requests_remaining=max(0, state.requests_per_window - state.request_count),
                units_remaining=max(0, state.units_per_window - state.unit_count),
                reset_at=state.reset_at,
                seconds_until_reset=max(0.0, state.reset_at - now),
            )

    def reset(self) -> None:
        """Start a fresh window now."""
        with self._lock:
            now = self._clock()
            self._state.request_count = 0
            self._state.unit_count = 0
            self._state.reset_at = now + self.window_seconds

    def reconcile(self, headers: Mapping[str, str] | None, header_names: RateLimitHeaders | None) -> None:
        """
        Overwrite local counters with what the backend reports.

        Best-effort: unparsable or missing headers are ignored and nothing
        is raised.
        """
        if not headers or header_names is None:
            return

        lowered = {str(k).lower(): str(v) for k, v in headers.items()}

        def _read_int(name: str | None) -> int | None:
            if not name or name.lower() not in lowered:
                return None
            try:
                value = float(lowered[name.lower()])
                if not math.isfinite(value):
                    raise ValueError("not finite")
                return int(value)
            except (ValueError, OverflowError):
                logger.debug(f"Ignoring unparsable rate-limit header {name}={lowered[name.lower()]!r}")
                return None

        with self._lock:
            state = self._state
            now = self._clock()

            requests_limit = _read_int(header_names.requests_limit)
            if requests_limit is not None and requests_limit > 0:
                state.requests_per_window = requests_limit

            units_limit = _read_int(header_names.units_limit)
            if units_limit is not None and units_limit > 0:
                state.units_per_window = units_limit

            requests_remaining = _read_int(header_names.requests_remaining)
            if requests_remaining is not None:
                state.request_count = max(0, state.requests_per_window - requests_remaining)

            units_remaining = _read_int(header_names.units_remaining)
            if units_remaining is not None:
                state.unit_count = max(0, state.units_per_window - units_remaining)

            if header_names.reset and header_names.reset.lower() in lowered:
                raw = lowered[header_names.reset.lower()]
                try:
                    reset_at = parse_reset(raw, header_names.reset_format, now)
                except (ValueError, OverflowError, OSError):
                    reset_at = None
                if reset_at is not None:
                    state.reset_at = reset_at
                else:
                    logger.debug(f"Ignoring unparsable reset header {header_names.reset}={raw!r}")

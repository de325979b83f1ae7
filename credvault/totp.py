"""
Time-based one-time password generation (RFC 6238) with a window-aware cache.
"""

import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, Dict, Iterable, Optional, Tuple

from credvault.crypto import CryptoManager
from credvault.errors import DecodeError
from . import config

logger = logging.getLogger(__name__)


class TOTPGenerator:
    """Generates TOTP codes and caches them per secret for the current window."""

    def __init__(self, crypto: Optional[CryptoManager] = None,
                 clock: Callable[[], float] = time.time,
                 max_cache_size: int = config.TOTP_CACHE_MAX_SIZE,
                 period: int = config.TOTP_PERIOD_SECONDS):
        """
        Initialize the generator.
        Args:
            crypto: Codec and HMAC provider
            clock: Returns the current time in seconds since the epoch
            max_cache_size: Number of cached secrets that triggers cleanup
            period: Time window length in seconds
        """
        self.crypto = crypto or CryptoManager()
        self.clock = clock
        self.max_cache_size = max_cache_size
        self.period = period
        # secret -> (code, window)
        self._cache: Dict[str, Tuple[str, int]] = {}

    def _now(self, now: Optional[float]) -> float:
        return self.clock() if now is None else now

    def current_window(self, now: Optional[float] = None) -> int:
        """Index of the 30-second window containing `now`."""
        return int(self._now(now) // self.period)

    def seconds_remaining(self, now: Optional[float] = None) -> float:
        """Seconds until the next window boundary."""
        now = self._now(now)
        return (self.current_window(now) + 1) * self.period - now

    def compute(self, secret: str, window: int) -> str:
        """
        Compute the code for a secret and window without touching the cache.

        Raises:
            DecodeError: If the secret is not valid Base32
        """
        key = self.crypto.decode_base32(secret.strip())
        digest = self.crypto.hmac_sha1(key, self.crypto.counter_bytes(window))
        return self.crypto.truncate(digest)

    def generate(self, secret: str, now: Optional[float] = None) -> str:
        """
        Get the current code for a secret.

        Args:
            secret: Base32 TOTP secret
            now: Time in seconds, defaults to the injected clock

        Returns:
            6-digit code, or config.UNAVAILABLE_CODE if the secret is empty
            or cannot be decoded
        """
        if not secret or not secret.strip():
            return config.UNAVAILABLE_CODE

        window = self.current_window(now)
        cached = self._cache.get(secret)
        if cached is not None and cached[1] == window:
            return cached[0]

        try:
            code = self.compute(secret, window)
        except DecodeError as e:
            logger.warning(f"Cannot generate TOTP code: {e}")
            return config.UNAVAILABLE_CODE

        self._cache[secret] = (code, window)
        if len(self._cache) > self.max_cache_size:
            self._shrink_cache(window)
        return code

    def generate_many(self, secrets: Iterable[str], now: Optional[float] = None) -> Dict[str, str]:
        """
        Generate codes for many secrets concurrently.

        Every secret is evaluated against the same instant so all codes
        belong to one window.

        Returns:
            Mapping of secret to code
        """
        now = self._now(now)
        unique = list(dict.fromkeys(s for s in secrets if s))
        if not unique:
            return {}
        with ThreadPoolExecutor(max_workers=min(config.TOTP_MAX_WORKERS, len(unique))) as pool:
            codes = pool.map(lambda s: self.generate(s, now), unique)
            return dict(zip(unique, codes))

    def _shrink_cache(self, window: int) -> None:
        """Drop entries from other windows; clear everything if still too large."""
        for secret, (_, cached_window) in list(self._cache.items()):
            if cached_window != window:
                self._cache.pop(secret, None)
        if len(self._cache) > self.max_cache_size:
            logger.debug(f"TOTP cache still above {self.max_cache_size} entries, clearing it")
            self._cache.clear()

    def clean_cache(self, now: Optional[float] = None) -> int:
        """
        Remove cached codes that do not belong to the current window.

        Returns:
            Number of removed entries
        """
        window = self.current_window(now)
        removed = 0
        for secret, (_, cached_window) in list(self._cache.items()):
            if cached_window != window:
                self._cache.pop(secret, None)
                removed += 1
        return removed

    def clear_cache(self) -> None:
        """Empty the cache."""
        self._cache.clear()

    @property
    def cache_size(self) -> int:
        return len(self._cache)


class TOTPRefreshScheduler:
    """Calls back exactly at every window boundary so displayed codes never go stale."""

    def __init__(self, generator: TOTPGenerator, callback: Callable[[], None],
                 clock: Optional[Callable[[], float]] = None,
                 timer_factory: Callable[..., threading.Timer] = threading.Timer):
        self.generator = generator
        self.callback = callback
        self.clock = clock or generator.clock
        self.timer_factory = timer_factory
        self._timer: Optional[threading.Timer] = None
        self._lock = threading.Lock()
        self._running = False

    @property
    def is_running(self) -> bool:
        return self._running

    def start(self) -> None:
        """Refresh now and schedule the next refresh at the upcoming boundary."""
        with self._lock:
            if self._running:
                return
            self._running = True
        self._refresh()
        self._schedule_next()

    def stop(self) -> None:
        """Cancel the pending refresh."""
        with self._lock:
            self._running = False
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None

    def next_delay(self) -> float:
        """Seconds from now until the next window boundary."""
        return self.generator.seconds_remaining(self.clock())

    def _schedule_next(self) -> None:
        with self._lock:
            if not self._running:
                return
            self._timer = self.timer_factory(self.next_delay(), self._on_boundary)
            self._timer.daemon = True
            self._timer.start()

    def _on_boundary(self) -> None:
        self.generator.clean_cache(self.clock())
        self._refresh()
        self._schedule_next()

    def _refresh(self) -> None:
        try:
            self.callback()
        except Exception as e:
            logger.error(f"TOTP refresh callback failed: {e}", exc_info=True)

from __future__ import annotations

import asyncio
import logging
import time
from typing import Callable, Dict, Iterable, Optional, Tuple

from storyclip.core.errors import SigningFailed
from storyclip.core.models import SignedUrlEntry
from storyclip.providers.base import StorageSigner
from storyclip.utils.logging_setup import log_context

logger = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 3600
DEFAULT_SAFETY_MARGIN_SECONDS = 600
DEFAULT_SWEEP_INTERVAL_SECONDS = 240
DEFAULT_MAX_CONCURRENT_SIGNS = 4

CacheKey = Tuple[str, str]  # (bucket, path)


class SignedUrlCache:
    """
    Process-wide (bucket, path) -> signed URL cache.

    - Entries are served while now < expires_at - safety margin.
    - Inside the margin the cached URL is still served and a refresh is
      started in the background.
    - At most one sign request per key is in flight; concurrent callers
      share it.
    - A failed sign falls back to the stale URL when one exists.
    """

    def __init__(
        self,
        signer: StorageSigner,
        ttl_seconds: Optional[Dict[str, int]] = None,
        safety_margin_seconds: Optional[Dict[str, int]] = None,
        default_ttl_seconds: int = DEFAULT_TTL_SECONDS,
        default_safety_margin_seconds: int = DEFAULT_SAFETY_MARGIN_SECONDS,
        sweep_interval_seconds: float = DEFAULT_SWEEP_INTERVAL_SECONDS,
        max_concurrent_signs: int = DEFAULT_MAX_CONCURRENT_SIGNS,
        clock: Callable[[], float] = time.time,
    ):
        self.signer = signer
        self.ttl_seconds = dict(ttl_seconds or {})
        self.safety_margin_seconds = dict(safety_margin_seconds or {})
        self.default_ttl_seconds = default_ttl_seconds
        self.default_safety_margin_seconds = default_safety_margin_seconds
        self.sweep_interval_seconds = sweep_interval_seconds
        self.clock = clock
        self._entries: Dict[CacheKey, SignedUrlEntry] = {}
        self._inflight: Dict[CacheKey, asyncio.Task] = {}
        self._limiter = asyncio.Semaphore(max_concurrent_signs)
        self._sweeper: Optional[asyncio.Task] = None

    @classmethod
    def from_config(cls, signer: StorageSigner, config: dict) -> "SignedUrlCache":
        return cls(
            signer,
            ttl_seconds=config.get("sign_ttl_seconds"),
            safety_margin_seconds=config.get("safety_margin_seconds"),
            default_ttl_seconds=int(config.get("default_sign_ttl_seconds", DEFAULT_TTL_SECONDS)),
            default_safety_margin_seconds=int(
                config.get("default_safety_margin_seconds", DEFAULT_SAFETY_MARGIN_SECONDS)
            ),
            sweep_interval_seconds=float(config.get("sweep_interval_seconds", DEFAULT_SWEEP_INTERVAL_SECONDS)),
            max_concurrent_signs=int(config.get("max_concurrent_signs", DEFAULT_MAX_CONCURRENT_SIGNS)),
        )

    # -- keys -----------------------------------------------------------

    @staticmethod
    def is_absolute(path: str) -> bool:
        return path.startswith("http://") or path.startswith("https://")

    @staticmethod
    def normalize(path: str, bucket: str) -> str:
        path = path.strip().lstrip("/")
        if path.startswith(f"{bucket}/"):
            path = path[len(bucket) + 1:]
        return path

    def _key(self, path: str, bucket: str) -> CacheKey:
        return bucket, self.normalize(path, bucket)

    def ttl_for(self, bucket: str) -> int:
        return int(self.ttl_seconds.get(bucket, self.default_ttl_seconds))

    def margin_for(self, bucket: str) -> int:
        return int(self.safety_margin_seconds.get(bucket, self.default_safety_margin_seconds))

    def entry(self, path: str, bucket: str) -> Optional[SignedUrlEntry]:
        return self._entries.get(self._key(path, bucket))

    def prime(self, path: str, bucket: str, url: str, expires_at: float) -> SignedUrlEntry:
        """Seed the cache with a URL that was signed elsewhere."""
        bucket, norm = self._key(path, bucket)
        entry = self._entries.get((bucket, norm))
        if entry is None:
            entry = SignedUrlEntry(path=norm, bucket=bucket, url=url, expires_at=expires_at)
            self._entries[(bucket, norm)] = entry
        else:
            entry.url = url
            entry.expires_at = expires_at
        return entry

    # -- public API -----------------------------------------------------

    async def get(self, path: str, bucket: str) -> Optional[str]:
        if not path or not path.strip():
            return None
        if self.is_absolute(path):
            return path
        key = self._key(path, bucket)
        entry = self._entries.get(key)
        now = self.clock()
        if entry is not None:
            if now < entry.expires_at - self.margin_for(bucket):
                logger.debug(f"Cache hit for {bucket}/{key[1]}")
                return entry.url
            if now < entry.expires_at:
                self._ensure_refresh(key)
                return entry.url
        try:
            return await self._await_refresh(key)
        except SigningFailed:
            if entry is not None:
                return entry.url
            return None

    async def refresh(self, path: str, bucket: str) -> str:
        """Sign again regardless of cache state. Raises SigningFailed only on a cold miss."""
        if self.is_absolute(path):
            return path
        key = self._key(path, bucket)
        try:
            return await self._await_refresh(key)
        except SigningFailed:
            entry = self._entries.get(key)
            if entry is not None:
                return entry.url
            raise

    async def preload(self, paths: Iterable[str], bucket: str) -> None:
        await asyncio.gather(*(self.get(p, bucket) for p in paths))

    def lookahead_for(self, bucket: str) -> float:
        # Entries that would enter their margin before the next tick are due now.
        return self.margin_for(bucket) + self.sweep_interval_seconds

    async def sweep(self) -> int:
        """Refresh every entry that would enter its safety margin before the next tick. Returns how many were started."""
        now = self.clock()
        due = [
            key
            for key, entry in self._entries.items()
            if not entry.refreshing and key not in self._inflight
            and now >= entry.expires_at - self.lookahead_for(entry.bucket)
        ]
        tasks = [self._ensure_refresh(key) for key in due]
        if tasks:
            logger.info(f"Sweeping {len(tasks)} signed URL(s) near expiry")
            await asyncio.gather(*(asyncio.shield(t) for t in tasks), return_exceptions=True)
        return len(tasks)

    def start_sweeper(self) -> None:
        if self._sweeper is None or self._sweeper.done():
            self._sweeper = asyncio.get_running_loop().create_task(self._sweep_loop())

    async def stop_sweeper(self) -> None:
        if self._sweeper is None:
            return
        self._sweeper.cancel()
        try:
            await self._sweeper
        except asyncio.CancelledError:
            pass
        self._sweeper = None

    async def __aenter__(self) -> "SignedUrlCache":
        self.start_sweeper()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.stop_sweeper()

    # -- internals ------------------------------------------------------

    async def _sweep_loop(self) -> None:
        while True:
            await asyncio.sleep(self.sweep_interval_seconds)
            try:
                await self.sweep()
            except Exception:
                logger.exception("Signed URL sweep failed")

    def _ensure_refresh(self, key: CacheKey) -> asyncio.Task:
        task = self._inflight.get(key)
        if task is not None:
            return task
        task = asyncio.get_running_loop().create_task(self._sign(key))
        self._inflight[key] = task
        task.add_done_callback(lambda t, k=key: self._reap(k, t))
        return task

    def _reap(self, key: CacheKey, task: asyncio.Task) -> None:
        if self._inflight.get(key) is task:
            del self._inflight[key]
        if not task.cancelled():
            # Background refreshes may have no awaiter; mark the error as seen.
            task.exception()

    async def _await_refresh(self, key: CacheKey) -> str:
        return await asyncio.shield(self._ensure_refresh(key))

    async def _sign(self, key: CacheKey) -> str:
        bucket, path = key
        ttl = self.ttl_for(bucket)
        entry = self._entries.get(key)
        if entry is not None:
            entry.refreshing = True
        with log_context(bucket=bucket):
            try:
                async with self._limiter:
                    url = await self.signer.create_signed_url(bucket, path, ttl)
                if not url:
                    raise SigningFailed(bucket, path, "signer returned no URL")
            except SigningFailed as exc:
                logger.warning(str(exc))
                raise
            except Exception as exc:
                logger.warning(f"Failed to sign {bucket}/{path}: {exc}")
                raise SigningFailed(bucket, path, str(exc)) from exc
            finally:
                if entry is not None:
                    entry.refreshing = False
            logger.debug(f"Signed {bucket}/{path} for {ttl}s")

        expires_at = self.clock() + ttl
        current = self._entries.get(key)
        if current is None:
            self._entries[key] = SignedUrlEntry(path=path, bucket=bucket, url=url, expires_at=expires_at)
        else:
            current.url = url
            current.expires_at = expires_at
        return url

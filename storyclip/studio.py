"""
ClipStudio wires the generation core to concrete adapters.

    studio = ClipStudio.from_config()
    result = await studio.generate("transition", "she turns to the window", slots=[...])
    print(result.asset_url)
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional, Sequence, Union

from storyclip.config.config import get_secret, load_config, load_registry
from storyclip.core.clip_types import ClipTypeLike, ClipTypeRouter
from storyclip.core.models import GenerationJob, JobResult, ReferenceSlot
from storyclip.core.orchestrator import GenerationOrchestrator
from storyclip.core.poller import Callback, JobPoller, TrackedJob
from storyclip.core.resolver import ModelResolver
from storyclip.core.timeline import TimelineSlotManager
from storyclip.providers.base import GenerationProvider, StorageSigner
from storyclip.storage.url_cache import SignedUrlCache
from storyclip.store.jobs import JobStore
from storyclip.utils.logging_setup import configure_logging, log_context

logger = logging.getLogger(__name__)


class ClipStudio:
    def __init__(
        self,
        orchestrator: GenerationOrchestrator,
        poller: JobPoller,
        url_cache: Optional[SignedUrlCache] = None,
        result_bucket: str = "workspace-temp",
        job_store=None,
    ):
        self.orchestrator = orchestrator
        self.poller = poller
        self.url_cache = url_cache
        self.result_bucket = result_bucket
        self.job_store = job_store

    @classmethod
    def from_config(
        cls,
        config: Optional[Dict[str, Any]] = None,
        provider: Optional[GenerationProvider] = None,
        signer: Optional[StorageSigner] = None,
        job_store=None,
    ) -> "ClipStudio":
        """Build a studio from config; adapters not passed in are created from secrets."""
        config = config if config is not None else load_config()
        configure_logging(log_file=config.get("log_file"))
        clip_types, models = load_registry(config.get("registry_file"))

        if provider is None:
            from storyclip.providers.wavespeed import WaveSpeedProvider

            provider = WaveSpeedProvider(api_key=get_secret(config, "WAVESPEED_API_KEY"))

        secrets = config.get("secrets") or {}
        if signer is None and secrets.get("SUPABASE_URL") and secrets.get("SUPABASE_SERVICE_KEY"):
            from storyclip.storage.supabase_signer import SupabaseStorageSigner

            signer = SupabaseStorageSigner(secrets["SUPABASE_URL"], secrets["SUPABASE_SERVICE_KEY"])
        if signer is None:
            logger.info("No storage signer configured; result paths are returned unsigned")

        if job_store is None and config.get("job_store_path"):
            job_store = JobStore.open(config["job_store_path"])

        orchestrator = GenerationOrchestrator(
            router=ClipTypeRouter(clip_types),
            timeline=TimelineSlotManager.from_config(config),
            resolver=ModelResolver(models),
            provider=provider,
            job_store=job_store,
        )
        return cls(
            orchestrator,
            JobPoller.from_config(provider, config, job_store=job_store),
            url_cache=SignedUrlCache.from_config(signer, config) if signer is not None else None,
            result_bucket=config.get("result_bucket", "workspace-temp"),
            job_store=job_store,
        )

    async def submit(
        self,
        clip_type: ClipTypeLike,
        prompt: str,
        model_id: Optional[str] = None,
        slots: Sequence[ReferenceSlot] = (),
        seed: Optional[int] = None,
        duration_seconds: Optional[float] = None,
    ) -> GenerationJob:
        return await self.orchestrator.submit(
            clip_type,
            prompt,
            explicit_model_id=model_id,
            slots=slots,
            seed=seed,
            duration_seconds=duration_seconds,
        )

    def track(
        self,
        job: Union[GenerationJob, str],
        on_progress: Optional[Callback] = None,
        on_complete: Optional[Callback] = None,
        on_error: Optional[Callback] = None,
        **kwargs,
    ) -> TrackedJob:
        return self.poller.track(job, on_progress=on_progress, on_complete=on_complete, on_error=on_error, **kwargs)

    async def generate(
        self,
        clip_type: ClipTypeLike,
        prompt: str,
        model_id: Optional[str] = None,
        slots: Sequence[ReferenceSlot] = (),
        seed: Optional[int] = None,
        duration_seconds: Optional[float] = None,
        on_progress: Optional[Callback] = None,
    ) -> JobResult:
        """
        Submit, track to completion and return a displayable result.

        Raises the authoring or submission error before any polling starts,
        and the GenerationError subclass if the job fails or times out.
        """
        job = await self.submit(
            clip_type, prompt, model_id=model_id, slots=slots, seed=seed, duration_seconds=duration_seconds
        )
        result = await self.track(job, on_progress=on_progress).result()
        with log_context(job_id=job.id):
            asset_url = await self.display_url(result.asset_url)
            if not asset_url:
                logger.warning(f"Could not sign result {result.asset_url}; returning the storage path")
                return result
            logger.info(f"Job {job.id} finished: {asset_url}")
        if asset_url == result.asset_url:
            return result
        return JobResult(asset_url=asset_url, raw=result.raw)

    async def display_url(self, path: str, bucket: Optional[str] = None) -> Optional[str]:
        """Absolute URLs pass through; storage paths are signed through the cache."""
        if self.url_cache is None or SignedUrlCache.is_absolute(path or ""):
            return path
        return await self.url_cache.get(path, bucket or self.result_bucket)

    async def close(self) -> None:
        if self.url_cache is not None:
            await self.url_cache.stop_sweeper()
        if self.job_store is not None:
            self.job_store.close()

    async def __aenter__(self) -> "ClipStudio":
        if self.url_cache is not None:
            self.url_cache.start_sweeper()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

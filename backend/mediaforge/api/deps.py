"""
Service providers for route dependencies
"""

from typing import Optional

from fastapi import Depends

from mediaforge.core.provider_adapter import ProviderAdapter
from mediaforge.services.finalizer import ArtifactFinalizer
from mediaforge.services.job_submission import JobSubmissionService
from mediaforge.services.job_worker import JobWorker
from mediaforge.services.media_storage import DurableStorage
from mediaforge.services.presets import PresetCatalog
from mediaforge.services.source_resolver import SourceResolver
from mediaforge.services.status_query import StatusQueryService
from mediaforge.services.webhook_receiver import WebhookReceiver
from mediaforge.services.worker_dispatch import WorkerDispatcher


_provider: Optional[ProviderAdapter] = None
_storage: Optional[DurableStorage] = None
_dispatcher: Optional[WorkerDispatcher] = None
_presets: Optional[PresetCatalog] = None


def get_provider() -> ProviderAdapter:
    global _provider
    if _provider is None:
        _provider = ProviderAdapter()
    return _provider


def get_storage() -> DurableStorage:
    global _storage
    if _storage is None:
        _storage = DurableStorage()
    return _storage


def get_dispatcher() -> WorkerDispatcher:
    global _dispatcher
    if _dispatcher is None:
        _dispatcher = WorkerDispatcher()
    return _dispatcher


def get_presets() -> PresetCatalog:
    global _presets
    if _presets is None:
        _presets = PresetCatalog()
    return _presets


def get_submission_service(
    storage: DurableStorage = Depends(get_storage),
    dispatcher: WorkerDispatcher = Depends(get_dispatcher),
    presets: PresetCatalog = Depends(get_presets),
    provider: ProviderAdapter = Depends(get_provider),
) -> JobSubmissionService:
    return JobSubmissionService(
        resolver=SourceResolver(storage),
        dispatcher=dispatcher,
        presets=presets,
        provider=provider,
    )


def get_worker(
    provider: ProviderAdapter = Depends(get_provider),
    storage: DurableStorage = Depends(get_storage),
) -> JobWorker:
    return JobWorker(provider=provider, storage=storage)


def get_status_service(storage: DurableStorage = Depends(get_storage)) -> StatusQueryService:
    return StatusQueryService(ArtifactFinalizer(storage))


def get_webhook_receiver() -> WebhookReceiver:
    return WebhookReceiver()


async def close_clients() -> None:
    """Close shared HTTP clients on shutdown"""
    if _provider is not None:
        await _provider.close()
    if _storage is not None:
        await _storage.downloader.close()

"""Generation job orchestration: single jobs, batches, retries and cancellation."""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Iterable
from uuid import UUID

from pydantic import ValidationError
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from plumage.config import settings
from plumage.db import session_scope
from plumage.errors import (
    GenerationError,
    GenerationTimeoutError,
    InvalidTransitionError,
    JobAlreadyClaimedError,
    JobAlreadyTerminalError,
    NotFoundError,
    PlumageError,
    RateLimitError,
    StorageError,
    UnknownProviderError,
)
from plumage.models import BatchItemError, BatchJob, BatchJobStatus, GenerationJob, JobStatus
from plumage.models.payloads import parse_bundle
from plumage.providers import (
    GenerationProvider,
    GenerationRequest,
    ProviderRegistry,
    ProviderResult,
    build_default_registry,
)
from plumage.services.cache import CacheLookup, CacheService, cache_service
from plumage.services.review import ReviewWorkflow, review_workflow

logger = logging.getLogger(__name__)

_RECENT_ERRORS_LIMIT = 100


@dataclass
class GenerationOutcome:
    """What a single generation request produced."""

    cache_key: str
    payload: dict[str, Any]
    cached: bool
    shared: bool = False
    job: GenerationJob | None = None
    content_item_ids: list[UUID] = field(default_factory=list)
    cost_usd: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "cache_key": self.cache_key,
            "cached": self.cached,
            "shared": self.shared,
            "job": self.job.to_dict() if self.job else None,
            "content_item_ids": [str(i) for i in self.content_item_ids],
            "cost_usd": self.cost_usd,
            "payload": self.payload,
        }


class JobOrchestrator:
    """Run generation requests through the cache, the provider and the review queue."""

    def __init__(
        self,
        registry: ProviderRegistry | None = None,
        cache: CacheService | None = None,
        review: ReviewWorkflow | None = None,
        session_factory: async_sessionmaker[AsyncSession] | None = None,
        concurrency: int = settings.plumage_batch_concurrency,
        max_attempts: int = settings.plumage_max_attempts,
        backoff_base: float = settings.plumage_backoff_base_seconds,
        rate_limit_backoff: float = settings.plumage_rate_limit_backoff_seconds,
        timeout: float = settings.plumage_generation_timeout_seconds,
    ):
        self._registry = registry or build_default_registry()
        self._cache = cache or cache_service
        self._review = review or review_workflow
        self._session_factory = session_factory
        self._concurrency = concurrency
        self._max_attempts = max_attempts
        self._backoff_base = backoff_base
        self._rate_limit_backoff = rate_limit_backoff
        self._timeout = timeout

        self._cancel_events: dict[UUID, asyncio.Event] = {}
        self._pause_until: dict[UUID, float] = {}
        self._tasks: set[asyncio.Task] = set()

    @property
    def registry(self) -> ProviderRegistry:
        return self._registry

    # Single jobs

    async def create_job(
        self,
        request: GenerationRequest,
        batch_id: UUID | None = None,
    ) -> GenerationJob:
        self._registry.get(request.provider)
        job = self._new_job(request, batch_id)
        async with session_scope(self._session_factory) as session:
            session.add(job)
            await session.flush()
        return job

    async def claim_job(self, job_id: UUID) -> GenerationJob:
        """Move a pending job to processing. Exactly one caller wins."""
        async with session_scope(self._session_factory) as session:
            return await self._transition(
                session,
                job_id,
                (JobStatus.PENDING,),
                JobStatus.PROCESSING,
                started_at=datetime.utcnow(),
            )

    async def complete_job(
        self,
        job_id: UUID,
        response: dict[str, Any] | None = None,
        cost_usd: float | None = None,
        duration_ms: int | None = None,
    ) -> GenerationJob:
        async with session_scope(self._session_factory) as session:
            return await self._transition(
                session,
                job_id,
                (JobStatus.PROCESSING,),
                JobStatus.COMPLETED,
                response=response,
                cost_usd=cost_usd,
                duration_ms=duration_ms,
                completed_at=datetime.utcnow(),
            )

    async def fail_job(self, job_id: UUID, message: str) -> GenerationJob:
        async with session_scope(self._session_factory) as session:
            return await self._transition(
                session,
                job_id,
                (JobStatus.PENDING, JobStatus.PROCESSING),
                JobStatus.FAILED,
                error_message=message,
                completed_at=datetime.utcnow(),
            )

    async def get_job(self, job_id: UUID) -> GenerationJob:
        async with session_scope(self._session_factory) as session:
            job = await session.get(GenerationJob, job_id)
            if job is None:
                raise NotFoundError(f"Generation job not found: {job_id}")
            return job

    async def list_jobs(
        self,
        status: JobStatus | None = None,
        batch_id: UUID | None = None,
        limit: int = 50,
    ) -> list[GenerationJob]:
        query = select(GenerationJob).order_by(GenerationJob.created_at.desc()).limit(limit)
        if status is not None:
            query = query.where(GenerationJob.status == status)
        if batch_id is not None:
            query = query.where(GenerationJob.batch_id == batch_id)
        async with session_scope(self._session_factory) as session:
            result = await session.execute(query)
            return list(result.scalars().all())

    async def generate(self, request: GenerationRequest) -> GenerationOutcome:
        """Serve a request from the cache, or generate it once and queue it for review."""
        provider = self._registry.get(request.provider)
        key = self._cache_key(request)

        hit = await self._cache.get(key)
        if hit is not None:
            return GenerationOutcome(cache_key=key, payload=hit.payload, cached=True)

        job = await self.create_job(request)
        await self.claim_job(job.id)
        return await self._execute(job.id, request, key, provider)

    # Batches

    async def start_batch(
        self,
        requests: Iterable[GenerationRequest],
        concurrency: int | None = None,
    ) -> BatchJob:
        """Create a pending batch with one pending job per item."""
        requests = list(requests)
        if not requests:
            raise ValueError("A batch needs at least one item")
        for request in requests:
            self._registry.get(request.provider)

        concurrency = concurrency or self._concurrency
        if concurrency < 1:
            raise ValueError(f"concurrency must be >= 1, got {concurrency}")

        batch = BatchJob(concurrency=concurrency, total_items=len(requests))
        jobs = [self._new_job(request, batch.id) for request in requests]
        batch.items = [str(job.id) for job in jobs]

        async with session_scope(self._session_factory) as session:
            session.add(batch)
            session.add_all(jobs)
            await session.flush()

        logger.info("Batch %s created with %d items", batch.id, batch.total_items)
        return batch

    async def launch_batch(
        self,
        requests: Iterable[GenerationRequest],
        concurrency: int | None = None,
    ) -> BatchJob:
        """Create a batch and process it in a background task."""
        batch = await self.start_batch(requests, concurrency)
        task = asyncio.get_running_loop().create_task(
            self._run_in_background(batch.id), name=f"plumage-batch-{batch.id}"
        )
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return batch

    async def run_batch(self, batch_id: UUID) -> BatchJob:
        """Process every item of a pending batch with a bounded worker pool.

        The batch completes once every item has been processed, whatever the
        individual outcomes. Failed items are counted and their attempts
        recorded as BatchItemError rows.
        """
        cancel_event = self._cancel_events.setdefault(batch_id, asyncio.Event())
        try:
            async with session_scope(self._session_factory) as session:
                now = datetime.utcnow()
                result = await session.execute(
                    update(BatchJob)
                    .where(BatchJob.id == batch_id, BatchJob.status == BatchJobStatus.PENDING)
                    .values(status=BatchJobStatus.PROCESSING, started_at=now, updated_at=now)
                    .execution_options(synchronize_session=False)
                )
                batch = await session.get(BatchJob, batch_id, populate_existing=True)
                if batch is None:
                    raise NotFoundError(f"Batch not found: {batch_id}")
                if result.rowcount == 0:
                    raise InvalidTransitionError(batch_id, batch.status, BatchJobStatus.PROCESSING)

            queue: asyncio.Queue[str] = asyncio.Queue()
            for item_id in batch.items:
                queue.put_nowait(item_id)

            worker_count = min(batch.concurrency, len(batch.items))
            logger.info(
                "Batch %s processing %d items with %d workers",
                batch_id, batch.total_items, worker_count,
            )
            workers = [
                asyncio.create_task(self._batch_worker(batch_id, queue, cancel_event))
                for _ in range(worker_count)
            ]
            # A worker that aborts stops dispatch; in-flight items on the others still finish
            results = await asyncio.gather(*workers, return_exceptions=True)
            errors = [r for r in results if isinstance(r, Exception)]
            if errors:
                logger.error("Batch %s failed: %s", batch_id, errors[0], exc_info=errors[0])
                await self._finish_batch(batch_id, BatchJobStatus.FAILED)
                raise errors[0]

            return await self._finish_batch(batch_id, BatchJobStatus.COMPLETED)
        finally:
            self._cancel_events.pop(batch_id, None)
            self._pause_until.pop(batch_id, None)

    async def cancel_batch(self, batch_id: UUID) -> bool:
        """Stop dispatching new items. In-flight items finish and are counted."""
        async with session_scope(self._session_factory) as session:
            now = datetime.utcnow()
            result = await session.execute(
                update(BatchJob)
                .where(
                    BatchJob.id == batch_id,
                    BatchJob.status.in_([BatchJobStatus.PENDING, BatchJobStatus.PROCESSING]),
                )
                .values(status=BatchJobStatus.CANCELLED, cancelled_at=now, updated_at=now)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 0:
                if await session.get(BatchJob, batch_id) is None:
                    raise NotFoundError(f"Batch not found: {batch_id}")
                return False

        event = self._cancel_events.get(batch_id)
        if event is not None:
            event.set()
        logger.info("Batch %s cancelled", batch_id)
        return True

    async def get_batch(self, batch_id: UUID) -> BatchJob:
        async with session_scope(self._session_factory) as session:
            batch = await session.get(BatchJob, batch_id)
            if batch is None:
                raise NotFoundError(f"Batch not found: {batch_id}")
            return batch

    async def get_batch_progress(self, batch_id: UUID) -> dict[str, Any]:
        """Counters, percentage, time estimate and the most recent item errors."""
        async with session_scope(self._session_factory) as session:
            batch = await session.get(BatchJob, batch_id)
            if batch is None:
                raise NotFoundError(f"Batch not found: {batch_id}")
            errors = (
                await session.execute(
                    select(BatchItemError)
                    .where(BatchItemError.batch_id == batch_id)
                    .order_by(BatchItemError.created_at.desc())
                    .limit(_RECENT_ERRORS_LIMIT)
                )
            ).scalars().all()

        estimated = None
        if batch.started_at and batch.processed_items and not batch.status.is_terminal:
            elapsed = (datetime.utcnow() - batch.started_at).total_seconds()
            remaining = batch.total_items - batch.processed_items
            estimated = round(elapsed / batch.processed_items * remaining, 1)

        return {
            **batch.to_dict(),
            "estimated_seconds_remaining": estimated,
            "errors": [error.to_dict() for error in errors],
        }

    async def list_active_batches(self) -> list[BatchJob]:
        async with session_scope(self._session_factory) as session:
            result = await session.execute(
                select(BatchJob)
                .where(BatchJob.status.in_([BatchJobStatus.PENDING, BatchJobStatus.PROCESSING]))
                .order_by(BatchJob.created_at.desc())
            )
            return list(result.scalars().all())

    # Internals

    def _cache_key(self, request: GenerationRequest) -> str:
        return self._cache.derive_key(
            request.target_id, request.provider, request.content_kind, request.params
        )

    def _new_job(self, request: GenerationRequest, batch_id: UUID | None) -> GenerationJob:
        return GenerationJob(
            target_id=request.target_id,
            provider=request.provider,
            content_kind=request.content_kind.value,
            cache_key=self._cache_key(request),
            batch_id=batch_id,
            request=request.to_dict(),
        )

    async def _transition(
        self,
        session: AsyncSession,
        job_id: UUID,
        expected: tuple[JobStatus, ...],
        target: JobStatus,
        **values: Any,
    ) -> GenerationJob:
        result = await session.execute(
            update(GenerationJob)
            .where(GenerationJob.id == job_id, GenerationJob.status.in_(expected))
            .values(status=target, **values)
            .execution_options(synchronize_session=False)
        )
        job = await session.get(GenerationJob, job_id, populate_existing=True)
        if job is None:
            raise NotFoundError(f"Generation job not found: {job_id}")
        if result.rowcount == 0:
            if job.status.is_terminal:
                raise JobAlreadyTerminalError(job_id, job.status, target)
            if target == JobStatus.PROCESSING:
                raise JobAlreadyClaimedError(job_id, job.status, target)
            raise InvalidTransitionError(job_id, job.status, target)

        logger.info("Job %s -> %s", job_id, target.value)
        return job

    async def _execute(
        self,
        job_id: UUID,
        request: GenerationRequest,
        key: str,
        provider: GenerationProvider,
        batch_id: UUID | None = None,
    ) -> GenerationOutcome:
        """Run a claimed job through the single-flight gate and record the outcome.

        Any failure leaves the job in ``failed``. In a batch, failures that
        were not already recorded per attempt (errors outside the generation
        taxonomy, or a shared generation that failed for another item) get
        one error row of their own.
        """
        produced = False

        async def produce() -> ProviderResult:
            nonlocal produced
            produced = True
            return await self._call_with_retries(provider, request, job_id, batch_id)

        try:
            lookup = await self._cache.get_or_generate(
                key,
                produce,
                provider=request.provider,
                content_kind=request.content_kind,
            )
            return await self._complete(job_id, request, lookup)
        except Exception as exc:
            job = await self._fail_after_error(job_id, exc)
            recorded = produced and isinstance(exc, GenerationError)
            if batch_id is not None and not recorded and not isinstance(exc, StorageError):
                attempt = max(job.attempts, 1) if job is not None else 1
                await self._record_item_error(batch_id, job_id, exc, attempt)
            raise

    async def _fail_after_error(self, job_id: UUID, exc: Exception) -> GenerationJob | None:
        try:
            return await self.fail_job(job_id, str(exc) or exc.__class__.__name__)
        except PlumageError as fail_exc:
            logger.error("Could not mark job %s failed after %r: %s", job_id, exc, fail_exc)
            return None

    async def _complete(
        self,
        job_id: UUID,
        request: GenerationRequest,
        lookup: CacheLookup,
    ) -> GenerationOutcome:
        item_ids: list[UUID] = []
        async with session_scope(self._session_factory) as session:
            if lookup.generated:
                job = await session.get(GenerationJob, job_id)
                bundle = parse_bundle(lookup.payload, request.content_kind)
                items = await self._review.materialize(session, job, bundle)
                item_ids = [item.id for item in items]
                response = {
                    "cache_key": lookup.key,
                    "cache_hit": False,
                    "items": len(items),
                    "content_item_ids": [str(i) for i in item_ids],
                }
            else:
                response = {"cache_key": lookup.key, "cache_hit": True, "shared": lookup.shared}

            job = await self._transition(
                session,
                job_id,
                (JobStatus.PROCESSING,),
                JobStatus.COMPLETED,
                response=response,
                cost_usd=lookup.cost_usd,
                duration_ms=lookup.duration_ms,
                completed_at=datetime.utcnow(),
            )

        return GenerationOutcome(
            cache_key=lookup.key,
            payload=lookup.payload,
            cached=not lookup.generated,
            shared=lookup.shared,
            job=job,
            content_item_ids=item_ids,
            cost_usd=lookup.cost_usd,
        )

    async def _call_with_retries(
        self,
        provider: GenerationProvider,
        request: GenerationRequest,
        job_id: UUID,
        batch_id: UUID | None = None,
    ) -> ProviderResult:
        attempt = 0
        while True:
            attempt += 1
            await self._bump_attempts(job_id)
            try:
                result = await asyncio.wait_for(provider.generate(request), timeout=self._timeout)
                bundle = parse_bundle(result.payload, request.content_kind)
                return ProviderResult(
                    payload=bundle.model_dump(mode="json"),
                    cost_usd=result.cost_usd,
                    duration_ms=result.duration_ms,
                )
            except asyncio.TimeoutError:
                error: GenerationError = GenerationTimeoutError(
                    f"{provider.name} did not respond within {self._timeout}s"
                )
            except GenerationError as exc:
                error = exc

            if batch_id is not None:
                await self._record_item_error(batch_id, job_id, error, attempt)

            if not error.retryable or attempt >= self._max_attempts:
                logger.warning(
                    "Job %s failed after %d attempt(s): %s", job_id, attempt, error
                )
                raise error

            delay = self._backoff_delay(error, attempt)
            logger.warning(
                "Job %s attempt %d/%d failed (%s), retrying in %.1fs",
                job_id, attempt, self._max_attempts, error.kind, delay,
            )
            if isinstance(error, RateLimitError) and batch_id is not None:
                self._pause_batch(batch_id, delay)
            await asyncio.sleep(delay)

    def _backoff_delay(self, error: GenerationError, attempt: int) -> float:
        if isinstance(error, RateLimitError):
            return max(error.retry_after or 0.0, self._rate_limit_backoff * 2 ** (attempt - 1))
        return self._backoff_base * 2 ** attempt

    def _pause_batch(self, batch_id: UUID, delay: float) -> None:
        resume_at = asyncio.get_running_loop().time() + delay
        self._pause_until[batch_id] = max(self._pause_until.get(batch_id, 0.0), resume_at)

    async def _wait_for_pause(self, batch_id: UUID) -> None:
        loop = asyncio.get_running_loop()
        while (remaining := self._pause_until.get(batch_id, 0.0) - loop.time()) > 0:
            await asyncio.sleep(remaining)

    async def _bump_attempts(self, job_id: UUID) -> None:
        async with session_scope(self._session_factory) as session:
            await session.execute(
                update(GenerationJob)
                .where(GenerationJob.id == job_id)
                .values(attempts=GenerationJob.attempts + 1)
                .execution_options(synchronize_session=False)
            )

    async def _record_item_error(
        self,
        batch_id: UUID,
        job_id: UUID,
        error: Exception,
        attempt: int,
    ) -> None:
        async with session_scope(self._session_factory) as session:
            session.add(
                BatchItemError(
                    batch_id=batch_id,
                    item_id=str(job_id),
                    message=str(error) or error.__class__.__name__,
                    error_kind=getattr(error, "kind", "unexpected"),
                    attempt_number=attempt,
                )
            )

    async def _batch_worker(
        self,
        batch_id: UUID,
        queue: asyncio.Queue,
        cancel_event: asyncio.Event,
    ) -> None:
        while not cancel_event.is_set():
            try:
                item_id = queue.get_nowait()
            except asyncio.QueueEmpty:
                return
            await self._wait_for_pause(batch_id)
            if cancel_event.is_set():
                return
            try:
                await self._process_batch_item(batch_id, UUID(item_id))
            except Exception:
                cancel_event.set()
                raise
            if await self._batch_cancelled(batch_id):
                cancel_event.set()

    async def _process_batch_item(self, batch_id: UUID, job_id: UUID) -> None:
        try:
            job = await self.claim_job(job_id)
        except (JobAlreadyClaimedError, JobAlreadyTerminalError) as exc:
            logger.info("Skipping batch item %s: %s", job_id, exc)
            return

        try:
            request = GenerationRequest.model_validate(job.request)
            provider = self._registry.get(request.provider)
        except (ValidationError, UnknownProviderError) as exc:
            logger.warning("Batch %s item %s cannot run: %s", batch_id, job_id, exc)
            await self._fail_after_error(job_id, exc)
            await self._record_item_error(batch_id, job_id, exc, 1)
            await self._record_item_outcome(batch_id, False)
            return

        try:
            await self._execute(job_id, request, job.cache_key, provider, batch_id=batch_id)
            succeeded = True
        except StorageError:
            raise
        except GenerationError as exc:
            logger.warning("Batch %s item %s failed: %s", batch_id, job_id, exc)
            succeeded = False
        except Exception as exc:
            # Item failures never abort the batch; only storage errors do
            logger.error("Batch %s item %s raised: %r", batch_id, job_id, exc, exc_info=True)
            succeeded = False

        await self._record_item_outcome(batch_id, succeeded)

    async def _record_item_outcome(self, batch_id: UUID, succeeded: bool) -> None:
        outcome = BatchJob.successful_items if succeeded else BatchJob.failed_items
        async with session_scope(self._session_factory) as session:
            await session.execute(
                update(BatchJob)
                .where(BatchJob.id == batch_id, BatchJob.processed_items < BatchJob.total_items)
                .values(
                    {
                        BatchJob.processed_items: BatchJob.processed_items + 1,
                        outcome: outcome + 1,
                        BatchJob.updated_at: datetime.utcnow(),
                    }
                )
                .execution_options(synchronize_session=False)
            )

    async def _batch_cancelled(self, batch_id: UUID) -> bool:
        async with session_scope(self._session_factory) as session:
            status = (
                await session.execute(select(BatchJob.status).where(BatchJob.id == batch_id))
            ).scalar_one_or_none()
        return status == BatchJobStatus.CANCELLED

    async def _finish_batch(self, batch_id: UUID, status: BatchJobStatus) -> BatchJob:
        async with session_scope(self._session_factory) as session:
            now = datetime.utcnow()
            result = await session.execute(
                update(BatchJob)
                .where(BatchJob.id == batch_id, BatchJob.status == BatchJobStatus.PROCESSING)
                .values(status=status, completed_at=now, updated_at=now)
                .execution_options(synchronize_session=False)
            )
            batch = await session.get(BatchJob, batch_id, populate_existing=True)

        if result.rowcount:
            logger.info(
                "Batch %s %s: %d/%d successful, %d failed",
                batch_id, status.value, batch.successful_items, batch.total_items, batch.failed_items,
            )
        return batch

    async def _run_in_background(self, batch_id: UUID) -> None:
        try:
            await self.run_batch(batch_id)
        except Exception:
            logger.exception("Background batch %s did not finish", batch_id)


# Global orchestrator instance
job_orchestrator = JobOrchestrator()

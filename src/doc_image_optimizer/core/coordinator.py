"""Batch optimization of all images belonging to one document job."""

import itertools
import threading
import time
from concurrent.futures import Future
from concurrent.futures import TimeoutError as FutureTimeoutError
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Callable, Dict, List, Optional, Sequence

from .cache import CompressedImageCache, Reservation, ReservationKind, make_key
from .classifier import classify
from .compressor import ImageCompressor
from .error_handling import BatchOperationContextManager
from .exceptions import (
    CompressionError,
    ConfigError,
    ConsistencyError,
    FetchError,
    ValidationError,
)
from .image_utils import read_dimensions
from .metrics import MetricsRecorder
from .models import (
    AssetReference,
    BatchJob,
    BatchResult,
    BatchStats,
    BatchStatus,
    ImageAsset,
    ImageRole,
    OptimizationProfile,
    OptimizedImage,
    Technique,
)
from .observability import LogContext, create_logger, timed_operation
from .protocols import AssetFetcherProtocol, LoggerProtocol
from .validation import ValidationService

if TYPE_CHECKING:
    from ..processors.common import WorkerPool


class OutcomeKind(str, Enum):
    SUCCESS = "success"
    RETRY = "retry"
    FATAL = "fatal"


@dataclass
class AttemptOutcome:
    """Result of one compression attempt as seen by the coordinator."""

    kind: OutcomeKind
    image: Optional[OptimizedImage] = None
    error: Optional[str] = None
    category: Optional[str] = None


@dataclass
class _AssetTask:
    index: int
    asset: ImageAsset
    role: ImageRole
    key: str
    started_at: float
    reservation: Optional[Reservation] = None
    result: Optional[OptimizedImage] = None
    duplicate_of: Optional[int] = None
    cache_hit: bool = False
    attempts: int = 0
    last_error: Optional[str] = None


class BatchOptimizationCoordinator:
    """
    Single entry point the document pipeline calls to optimize its images.

    Every asset of a batch is processed under the same profile instance.
    Compression attempts run on the shared worker pool in rounds: round ``k``
    submits attempt ``k`` for every unresolved asset and joins them all
    before the next round, so the retry budget is an explicit bounded loop.
    """

    def __init__(
        self,
        compressor: ImageCompressor,
        validator: ValidationService,
        cache: CompressedImageCache,
        metrics: MetricsRecorder,
        pool: "WorkerPool",
        fetcher: Optional[AssetFetcherProtocol] = None,
        classifier: Callable[[ImageAsset], ImageRole] = classify,
        logger: Optional[LoggerProtocol] = None,
    ):
        self._compressor = compressor
        self._validator = validator
        self._cache = cache
        self._metrics = metrics
        self._pool = pool
        self._fetcher = fetcher
        self._classify = classifier
        self._logger = logger or create_logger("coordinator")

    def optimize_batch(
        self,
        assets: Sequence[ImageAsset],
        profile: OptimizationProfile,
        cancel_event: Optional[threading.Event] = None,
    ) -> BatchResult:
        """
        Optimize every asset of one document under ``profile``.

        Returns results in input order. Per-asset failures degrade to the
        original bytes; the batch is reported as failed only when the share
        of degraded assets exceeds ``profile.failure_threshold``. When
        ``cancel_event`` is set, no new work is scheduled and the result has
        status ``aborted`` and no images.

        Raises:
            ConfigError: If ``profile`` is not an OptimizationProfile.
            ConsistencyError: If successful results disagree on technique or
                quality beyond the per-role tolerance.
        """
        job = BatchJob(assets=list(assets), profile=self._check_profile(profile))
        return self._run(job, cancel_event, omitted=[], fetch_errors={})

    def prepare_document(
        self,
        references: Sequence[AssetReference],
        profile: OptimizationProfile,
        cancel_event: Optional[threading.Event] = None,
    ) -> BatchResult:
        """
        Fetch each unique identifier once, then optimize the fetched assets.

        Assets whose fetch fails are omitted from the results, listed in
        ``BatchResult.omitted`` and counted against the failure threshold.
        """
        if self._fetcher is None:
            raise ConfigError("No asset fetcher configured for this coordinator")
        profile = self._check_profile(profile)

        fetch = timed_operation("fetch_asset", metrics_collector=self._metrics.collector)(
            self._fetcher.fetch
        )
        fetched: Dict[str, bytes] = {}
        failures: Dict[str, str] = {}
        for reference in references:
            identifier = reference.identifier
            if identifier in fetched or identifier in failures:
                continue
            try:
                fetched[identifier] = fetch(identifier)
            except FetchError as e:
                failures[identifier] = str(e)
                self._metrics.record_error("fetch")
                self._logger.warning(
                    "Asset fetch failed, omitting from document",
                    identifier=identifier,
                    error=str(e),
                )

        assets = [
            ImageAsset(identifier=ref.identifier, data=fetched[ref.identifier], role=ref.role)
            for ref in references
            if ref.identifier in fetched
        ]
        omitted = [ref.identifier for ref in references if ref.identifier in failures]
        job = BatchJob(assets=assets, profile=profile)
        return self._run(job, cancel_event, omitted=omitted, fetch_errors=failures)

    @staticmethod
    def _check_profile(profile: OptimizationProfile) -> OptimizationProfile:
        if not isinstance(profile, OptimizationProfile):
            raise ConfigError(
                f"Expected an OptimizationProfile, got {type(profile).__name__}"
            )
        return profile

    def _run(
        self,
        job: BatchJob,
        cancel_event: Optional[threading.Event],
        omitted: List[str],
        fetch_errors: Dict[str, str],
    ) -> BatchResult:
        start_time = time.perf_counter()
        profile = job.profile
        context = LogContext.for_job(
            job.job_id,
            "coordinator",
            images=len(job.assets),
            aggressive=profile.aggressive_mode,
        ).with_operation("optimize_batch")
        self._logger.info("Starting batch optimization", context)

        if cancel_event is not None and cancel_event.is_set():
            return self._aborted(job, start_time, context)

        tasks: List[_AssetTask] = []
        with BatchOperationContextManager(
            operation_name=f"Image optimization for job {job.job_id}"
        ) as batch_errors:
            for identifier, message in fetch_errors.items():
                batch_errors.add_error(message, identifier)

            try:
                aborted = self._process(job, tasks, cancel_event, batch_errors, context)
            finally:
                for task in tasks:
                    reservation = task.reservation
                    if (
                        reservation is not None
                        and reservation.kind is ReservationKind.OWNER
                        and not reservation.finished
                    ):
                        reservation.abandon()

            errors = batch_errors.as_dict()

        if aborted:
            return self._aborted(job, start_time, context, tasks)

        results = [task.result for task in tasks]
        stats = self._build_stats(tasks, results, omitted, start_time)
        self._check_consistency(results, profile)

        for image in results:
            self._metrics.record(image)
        self._metrics.record(stats)

        status = self._status_for(stats, profile)
        self._metrics.record_status(status.value)
        log = self._logger.warning if status is BatchStatus.FAILED else self._logger.info
        log(
            "Batch optimization finished",
            context,
            status=status.value,
            succeeded=stats.success_count,
            degraded=stats.degraded_count,
            omitted=stats.omitted_count,
            cache_hits=stats.cache_hits,
            ratio=f"{stats.overall_compression_ratio:.3f}",
        )
        return BatchResult(
            job_id=job.job_id,
            status=status,
            results=results,
            stats=stats,
            omitted=omitted,
            errors=errors,
        )

    def _process(
        self,
        job: BatchJob,
        tasks: List[_AssetTask],
        cancel_event: Optional[threading.Event],
        batch_errors: BatchOperationContextManager,
        context: LogContext,
    ) -> bool:
        """Fill ``tasks`` with resolved results; return True when aborted."""
        profile = job.profile
        first_by_key: Dict[str, int] = {}
        owned: List[_AssetTask] = []
        waiting: List[_AssetTask] = []

        for index, asset in enumerate(job.assets):
            role = self._classify(asset)
            key = make_key(asset.data, profile.signature(role))
            task = _AssetTask(
                index=index, asset=asset, role=role, key=key, started_at=time.perf_counter()
            )
            tasks.append(task)

            if key in first_by_key:
                task.duplicate_of = first_by_key[key]
                continue
            first_by_key[key] = index

            task.reservation = self._cache.reserve(key)
            if task.reservation.kind is ReservationKind.HIT:
                task.result = task.reservation.value
                task.cache_hit = True
            elif task.reservation.kind is ReservationKind.OWNER:
                owned.append(task)
            else:
                waiting.append(task)

        if self._run_rounds(owned, profile, cancel_event, batch_errors, context):
            return True
        for task in owned:
            if task.result is None:
                self._degrade(task, batch_errors, context)

        for task in waiting:
            if self._await_shared(task, profile, cancel_event, batch_errors, context):
                return True

        for task in tasks:
            if task.duplicate_of is not None:
                task.result = tasks[task.duplicate_of].result
        return False

    def _run_rounds(
        self,
        tasks: List[_AssetTask],
        profile: OptimizationProfile,
        cancel_event: Optional[threading.Event],
        batch_errors: BatchOperationContextManager,
        context: LogContext,
    ) -> bool:
        """
        Run the bounded retry loop for tasks this job owns.

        Tasks left without a result have exhausted their retry budget.
        Returns True when cancelled before a round was scheduled.
        """
        pending = list(tasks)
        for attempt in range(profile.max_retries + 1):
            if not pending:
                break
            if cancel_event is not None and cancel_event.is_set():
                self._logger.warning(
                    "Job cancelled, no further attempts scheduled",
                    context,
                    unresolved=len(pending),
                )
                return True

            submitted = [
                (
                    task,
                    self._pool.submit(
                        self._compressor.compress, task.asset.data, task.role, profile, attempt
                    ),
                )
                for task in pending
            ]

            retry: List[_AssetTask] = []
            for task, future in submitted:
                outcome = self._collect(future, profile)
                task.attempts += 1
                if outcome.kind is OutcomeKind.SUCCESS:
                    task.result = outcome.image
                    task.reservation.complete(outcome.image)
                    continue

                task.last_error = outcome.error
                self._metrics.record_error(outcome.category or "unexpected")
                self._logger.debug(
                    "Compression attempt failed",
                    context.with_operation("compress"),
                    identifier=task.asset.identifier,
                    attempt=attempt,
                    error=outcome.error,
                )
                if outcome.kind is OutcomeKind.RETRY:
                    retry.append(task)
                else:
                    self._degrade(task, batch_errors, context)
            pending = retry
        return False

    def _collect(self, future: Future, profile: OptimizationProfile) -> AttemptOutcome:
        """Join one attempt and turn it into an outcome."""
        try:
            image = future.result(timeout=profile.timeout_seconds)
        except FutureTimeoutError:
            future.cancel()
            return AttemptOutcome(
                OutcomeKind.RETRY,
                error=f"compression timed out after {profile.timeout_seconds:.1f}s",
                category="timeout",
            )
        except CompressionError as e:
            kind = OutcomeKind.RETRY if e.retryable else OutcomeKind.FATAL
            return AttemptOutcome(kind, error=str(e), category="compression")
        except Exception as e:  # noqa: BLE001
            self._logger.error(f"Unexpected compression failure: {e!r}")
            return AttemptOutcome(OutcomeKind.FATAL, error=repr(e), category="unexpected")

        try:
            self._validator.validate(image, profile)
        except ValidationError as e:
            return AttemptOutcome(OutcomeKind.RETRY, error=str(e), category="validation")
        return AttemptOutcome(OutcomeKind.SUCCESS, image=image)

    def _await_shared(
        self,
        task: _AssetTask,
        profile: OptimizationProfile,
        cancel_event: Optional[threading.Event],
        batch_errors: BatchOperationContextManager,
        context: LogContext,
    ) -> bool:
        """
        Resolve a task whose key another job is computing.

        If that job gives up, the key is reserved again and, when this job
        becomes the owner, computed here. Returns True when cancelled.
        """
        wait_timeout = profile.timeout_seconds * (profile.max_retries + 1)
        for _ in range(profile.max_retries + 1):
            value = task.reservation.wait(timeout=wait_timeout)
            if value is not None:
                task.result = value
                task.cache_hit = True
                return False

            task.reservation = self._cache.reserve(task.key)
            if task.reservation.kind is ReservationKind.HIT:
                task.result = task.reservation.value
                task.cache_hit = True
                return False
            if task.reservation.kind is ReservationKind.OWNER:
                if self._run_rounds([task], profile, cancel_event, batch_errors, context):
                    return True
                if task.result is None:
                    self._degrade(task, batch_errors, context)
                return False

        task.last_error = task.last_error or "timed out waiting for a concurrent job"
        self._degrade(task, batch_errors, context)
        return False

    def _degrade(
        self,
        task: _AssetTask,
        batch_errors: BatchOperationContextManager,
        context: LogContext,
    ) -> None:
        """Substitute the original bytes for an asset that could not be optimized."""
        reservation = task.reservation
        if (
            reservation is not None
            and reservation.kind is ReservationKind.OWNER
            and not reservation.finished
        ):
            reservation.abandon()

        error = task.last_error or "optimization failed"
        batch_errors.add_error(error, task.asset.identifier)
        self._logger.warning(
            "Falling back to original image",
            context,
            identifier=task.asset.identifier,
            attempts=task.attempts,
            error=error,
        )
        size = len(task.asset.data)
        if task.asset.width and task.asset.height:
            width, height = task.asset.width, task.asset.height
        else:
            width, height = read_dimensions(task.asset.data)
        task.result = OptimizedImage(
            data=task.asset.data,
            original_size=size,
            optimized_size=size,
            compression_ratio=0.0,
            original_width=width,
            original_height=height,
            width=width,
            height=height,
            format="original",
            quality_used=None,
            processing_time=time.perf_counter() - task.started_at,
            degraded=True,
            technique=Technique.FALLBACK,
            role=task.role,
        )

    @staticmethod
    def _build_stats(
        tasks: List[_AssetTask],
        results: List[OptimizedImage],
        omitted: List[str],
        start_time: float,
    ) -> BatchStats:
        total_original = sum(r.original_size for r in results)
        total_optimized = sum(r.optimized_size for r in results)
        return BatchStats(
            total_images=len(results),
            total_original_size=total_original,
            total_optimized_size=total_optimized,
            overall_compression_ratio=(
                (total_original - total_optimized) / total_original if total_original else 0.0
            ),
            success_count=sum(1 for r in results if not r.degraded),
            degraded_count=sum(1 for r in results if r.degraded),
            omitted_count=len(omitted),
            passthrough_count=sum(1 for r in results if r.technique is Technique.PASSTHROUGH),
            cache_hits=sum(1 for t in tasks if t.cache_hit),
            deduplicated=sum(1 for t in tasks if t.duplicate_of is not None),
            retry_count=sum(max(0, t.attempts - 1) for t in tasks),
            processing_time=time.perf_counter() - start_time,
        )

    @staticmethod
    def _check_consistency(
        results: List[OptimizedImage], profile: OptimizationProfile
    ) -> None:
        """Every encoded result must share the profile's technique and near-equal quality."""
        encoded = [r for r in results if r.is_encoded]
        techniques = {r.technique for r in encoded}
        if techniques - {profile.technique}:
            raise ConsistencyError(
                f"Batch mixes techniques {sorted(t.value for t in techniques)}, "
                f"expected {profile.technique.value}"
            )
        for image in encoded:
            default = profile.quality_for(image.role).default
            if image.quality_used is None or image.quality_used > default:
                raise ConsistencyError(
                    f"Quality {image.quality_used} ({image.role.value}) is above "
                    f"the role default {default}"
                )
        for first, second in itertools.combinations(encoded, 2):
            tolerance = profile.quality_tolerance(first.role, second.role)
            if abs(first.quality_used - second.quality_used) > tolerance:
                raise ConsistencyError(
                    f"Quality {first.quality_used} ({first.role.value}) and "
                    f"{second.quality_used} ({second.role.value}) differ by more "
                    f"than {tolerance}"
                )

    @staticmethod
    def _status_for(stats: BatchStats, profile: OptimizationProfile) -> BatchStatus:
        total = stats.total_images + stats.omitted_count
        if total == 0:
            return BatchStatus.COMPLETED
        failed_share = (stats.degraded_count + stats.omitted_count) / total
        if failed_share > profile.failure_threshold:
            return BatchStatus.FAILED
        return BatchStatus.COMPLETED

    def _aborted(
        self,
        job: BatchJob,
        start_time: float,
        context: LogContext,
        tasks: Optional[List[_AssetTask]] = None,
    ) -> BatchResult:
        completed = sum(1 for t in tasks or [] if t.result is not None)
        self._logger.warning("Batch optimization aborted", context, completed=completed)
        self._metrics.record_status(BatchStatus.ABORTED.value)
        return BatchResult(
            job_id=job.job_id,
            status=BatchStatus.ABORTED,
            stats=BatchStats(
                total_images=len(job.assets),
                processing_time=time.perf_counter() - start_time,
            ),
        )

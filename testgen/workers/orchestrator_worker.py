"""
Orchestrator worker.

Polls the queue while below its concurrency limit and drives each delivery
through a fresh job state machine:

    PLANNING   test plan from the generation client
    TOOLING    get_diff -> run_ci -> get_coverage on the tool server
    OBSERVING  analysis with a confidence score
    DONE       confidence >= threshold, message acked
    WAITING_REVIEW  low confidence, review notification sent, message acked

Failures go to ERROR. With retries left the job moves to ADJUSTING and is
nacked with requeue and an exponential delay; otherwise it is nacked
without requeue and counted as permanently failed. The broker's redelivery
count seeds the retry counter, so a requeued copy resumes the budget.

While a job runs, a heartbeat keeps its message hidden by extending the
visibility timeout. Active jobs are tracked per delivery, so a message
redelivered while its first delivery still runs occupies two slots.

Dependencies: testgen.core.queue, testgen.core.state_machine, testgen.core.generation, testgen.core.tools
System role: Background job processing
"""

import asyncio
import itertools
import logging
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable

from testgen.configs.settings import Settings
from testgen.core.exceptions import (
    ExternalServiceRejection,
    InvalidStateTransitionError,
    MessageNotInFlightError,
    PermanentLogicError,
)
from testgen.core.generation import ResilientGenerationClient
from testgen.core.queue import QueueBackend, QueueMessage, create_queue
from testgen.core.state_machine import JobState, StateMachine
from testgen.core.tools import ToolClient, ToolHelpers
from testgen.observability.correlation import clear_correlation_id, set_correlation_id
from testgen.observability.log_utils import log_exception_with_context, log_with_context

logger = logging.getLogger(__name__)

Sleep = Callable[[float], Awaitable[None]]

NON_RETRYABLE_ERRORS = (PermanentLogicError, ExternalServiceRejection)


@dataclass
class WorkerMetrics:
    """Aggregate counters across every job this worker handled."""

    jobs_processed: int = 0
    jobs_succeeded: int = 0
    jobs_waiting_review: int = 0
    jobs_failed: int = 0
    jobs_retried: int = 0
    jobs_failed_permanently: int = 0
    jobs_superseded: int = 0
    total_processing_time: float = 0.0

    @property
    def average_processing_time(self) -> float:
        if not self.jobs_processed:
            return 0.0
        return self.total_processing_time / self.jobs_processed

    def to_dict(self) -> dict[str, Any]:
        return {
            "jobs_processed": self.jobs_processed,
            "jobs_succeeded": self.jobs_succeeded,
            "jobs_waiting_review": self.jobs_waiting_review,
            "jobs_failed": self.jobs_failed,
            "jobs_retried": self.jobs_retried,
            "jobs_failed_permanently": self.jobs_failed_permanently,
            "jobs_superseded": self.jobs_superseded,
            "total_processing_time": round(self.total_processing_time, 3),
            "average_processing_time": round(self.average_processing_time, 3),
        }


@dataclass(frozen=True)
class JobRequest:
    """Fields the pipeline reads from a queue payload."""

    type: str
    project_id: Any
    repository: str
    commit_id: str
    description: str

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> "JobRequest":
        """
        Read a payload, accepting camelCase keys from older producers.

        Raises:
            PermanentLogicError: Payload is not an object or lacks a project id
        """
        if not isinstance(payload, dict):
            raise PermanentLogicError("Job payload must be a JSON object")
        project_id = payload.get("project_id", payload.get("projectId"))
        if project_id is None:
            raise PermanentLogicError("Job payload has no project_id", details={"keys": sorted(payload)})
        return cls(
            type=str(payload.get("type", "run")),
            project_id=project_id,
            repository=str(payload.get("repository") or ""),
            commit_id=str(payload.get("commit_id") or payload.get("commitId") or "HEAD"),
            description=str(payload.get("description") or ""),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type,
            "project_id": self.project_id,
            "repository": self.repository,
            "commit_id": self.commit_id,
            "description": self.description,
        }


class OrchestratorWorker:
    """Bounded-concurrency queue consumer; owns its active set and metrics."""

    def __init__(
        self,
        queue: QueueBackend,
        generation: ResilientGenerationClient,
        tools: ToolHelpers,
        concurrency: int = 5,
        max_retries: int = 3,
        confidence_threshold: float = 0.8,
        poll_timeout_seconds: float = 5.0,
        idle_sleep_seconds: float = 1.0,
        error_sleep_seconds: float = 5.0,
        retry_delay_base_seconds: float = 2.0,
        shutdown_grace_seconds: float = 30.0,
        notify_channel: str = "slack",
        visibility_heartbeat_seconds: float | None = None,
        sleep: Sleep = asyncio.sleep,
        clock: Callable[[], float] = time.perf_counter,
    ) -> None:
        """
        Initialize worker.

        Args:
            queue: Queue backend to consume from
            generation: Resilient generation client
            tools: Tool helpers (diff, CI, coverage, notify)
            concurrency: Maximum jobs in flight
            max_retries: Retries before a job fails permanently
            confidence_threshold: Minimum confidence for DONE
            poll_timeout_seconds: Dequeue long-poll timeout
            idle_sleep_seconds: Pause while at the concurrency limit
            error_sleep_seconds: Pause after an error in the poll loop
            retry_delay_base_seconds: Requeue delay is base * 2 ** (retry - 1)
            shutdown_grace_seconds: How long stop() waits for active jobs
            notify_channel: Channel for review notifications
            visibility_heartbeat_seconds: How often a running job extends its
                message's visibility (default: half the queue's timeout)
            sleep: Awaitable sleep for poll loop pauses (injected in tests)
            clock: Monotonic clock for processing time
        """
        self.queue = queue
        self.generation = generation
        self.tools = tools
        self.concurrency = concurrency
        self.max_retries = max_retries
        self.confidence_threshold = confidence_threshold
        self.poll_timeout_seconds = poll_timeout_seconds
        self.idle_sleep_seconds = idle_sleep_seconds
        self.error_sleep_seconds = error_sleep_seconds
        self.retry_delay_base_seconds = retry_delay_base_seconds
        self.shutdown_grace_seconds = shutdown_grace_seconds
        self.notify_channel = notify_channel
        self.visibility_heartbeat_seconds = visibility_heartbeat_seconds
        self._sleep = sleep
        self._clock = clock

        self._lock = asyncio.Lock()
        # delivery id -> (message id, machine once processing started)
        self._active: dict[str, tuple[str, StateMachine | None]] = {}
        self._deliveries = itertools.count(1)
        self.metrics = WorkerMetrics()
        self.job_count = 0
        self.error_count = 0

        self._running = False
        self._loop_task: asyncio.Task | None = None
        self._job_tasks: set[asyncio.Task] = set()
        self._background: set[asyncio.Task] = set()

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        queue: QueueBackend | None = None,
        generation: ResilientGenerationClient | None = None,
        tools: ToolHelpers | None = None,
    ) -> "OrchestratorWorker":
        """Build a worker from settings, reusing any components passed in."""
        worker_settings = settings.worker
        return cls(
            queue=queue or create_queue(settings),
            generation=generation
            or ResilientGenerationClient.from_settings(settings.llm, settings.llm_provider),
            tools=tools or ToolHelpers(ToolClient.from_settings(settings.tools)),
            concurrency=worker_settings.concurrency,
            max_retries=worker_settings.max_retries,
            confidence_threshold=worker_settings.confidence_threshold,
            poll_timeout_seconds=worker_settings.poll_timeout_seconds,
            idle_sleep_seconds=worker_settings.idle_sleep_seconds,
            error_sleep_seconds=worker_settings.error_sleep_seconds,
            retry_delay_base_seconds=worker_settings.retry_delay_base_seconds,
            shutdown_grace_seconds=worker_settings.shutdown_grace_seconds,
            notify_channel=worker_settings.notify_channel,
            visibility_heartbeat_seconds=worker_settings.visibility_heartbeat_seconds,
        )

    @property
    def is_running(self) -> bool:
        return self._running

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Connect the queue if needed and start the poll loop in the background."""
        if self._running:
            logger.warning(f"{__name__}:start - Worker already running")
            return
        if not self.queue.is_connected:
            await self.queue.connect()
        self._running = True
        self._loop_task = asyncio.create_task(self._poll_loop(), name="orchestrator-poll-loop")
        logger.info(
            f"{__name__}:start - Worker started on queue '{self.queue.name}' "
            f"(concurrency={self.concurrency}, max_retries={self.max_retries})"
        )

    async def wait(self) -> None:
        """Block until the poll loop ends."""
        if self._loop_task is not None:
            try:
                await self._loop_task
            except asyncio.CancelledError:
                pass

    async def stop(self) -> None:
        """
        Stop polling and wait up to the grace period for active jobs.

        Jobs still running after the grace period are left to the broker:
        their messages become visible again when the visibility timeout expires.
        """
        if not self._running:
            logger.warning(f"{__name__}:stop - Worker is not running")
            return

        logger.info(f"{__name__}:stop - Stopping worker")
        self._running = False
        if self._loop_task is not None:
            self._loop_task.cancel()
            await self.wait()
            self._loop_task = None

        if self._job_tasks:
            logger.info(f"{__name__}:stop - Waiting for {len(self._job_tasks)} active job(s)")
            done, pending = await asyncio.wait(set(self._job_tasks), timeout=self.shutdown_grace_seconds)
            if pending:
                logger.warning(f"{__name__}:stop - {len(pending)} job(s) did not finish in time")
                for task in pending:
                    task.cancel()
                await asyncio.gather(*pending, return_exceptions=True)

        await self.wait_for_notifications()
        logger.info(f"{__name__}:stop - Worker stopped")

    async def wait_for_notifications(self) -> None:
        """Let fire-and-forget review notifications finish."""
        if self._background:
            await asyncio.gather(*set(self._background), return_exceptions=True)

    async def status(self) -> dict[str, Any]:
        """Snapshot of worker state for the status endpoint."""
        async with self._lock:
            active_ids = [message_id for message_id, _ in self._active.values()]
            metrics = self.metrics.to_dict()
            job_count = self.job_count
            error_count = self.error_count
        return {
            "running": self._running,
            "queue": self.queue.name,
            "concurrency": self.concurrency,
            "active_jobs": len(active_ids),
            "active_job_ids": active_ids,
            "total_jobs": job_count,
            "error_count": error_count,
            "metrics": metrics,
        }

    # ------------------------------------------------------------------
    # Poll loop
    # ------------------------------------------------------------------

    async def _poll_loop(self) -> None:
        while self._running:
            try:
                async with self._lock:
                    at_capacity = len(self._active) >= self.concurrency
                if at_capacity:
                    await self._sleep(self.idle_sleep_seconds)
                    continue

                message = await self.queue.dequeue(timeout_seconds=self.poll_timeout_seconds)
                if message is None:
                    continue

                delivery_id = self._new_delivery_id(message)
                async with self._lock:
                    # Reserve the slot before the task runs
                    self._active[delivery_id] = (message.id, None)
                task = asyncio.create_task(
                    self.process_message(message, delivery_id), name=f"job-{delivery_id}"
                )
                self._job_tasks.add(task)
                task.add_done_callback(self._job_tasks.discard)
            except Exception as e:
                async with self._lock:
                    self.error_count += 1
                logger.error(f"{__name__}:_poll_loop - {type(e).__name__}: {e}", exc_info=True)
                await self._sleep(self.error_sleep_seconds)

    # ------------------------------------------------------------------
    # Job processing
    # ------------------------------------------------------------------

    def _new_delivery_id(self, message: QueueMessage) -> str:
        return f"{message.id}#{next(self._deliveries)}"

    async def process_message(self, message: QueueMessage, delivery_id: str | None = None) -> StateMachine:
        """
        Drive one delivery to DONE, WAITING_REVIEW, ADJUSTING (requeued) or ERROR.

        Args:
            message: Dequeued message
            delivery_id: Slot reserved by the poll loop; a new one when omitted

        Returns:
            StateMachine: The job's machine in its final state
        """
        delivery_id = delivery_id or self._new_delivery_id(message)
        set_correlation_id(message.id)
        machine = StateMachine(
            max_retries=self.max_retries,
            retry_count=message.retry_count,
            context={"job_id": message.id, "payload": message.payload},
        )
        machine.add_observer(
            lambda previous, current, context: logger.info(
                f"{__name__}:process_message - Job {message.id}: {previous.value} -> {current.value}"
            )
        )
        machine.add_error_observer(
            lambda error, current, target: logger.error(
                f"{__name__}:process_message - Job {message.id}: rejected {current.value} -> {target.value}"
            )
        )

        async with self._lock:
            self._active[delivery_id] = (message.id, machine)
            self.job_count += 1

        started = self._clock()
        outcome = "failed"
        keeper = asyncio.create_task(self._keep_visible(message), name=f"visibility-{delivery_id}")
        try:
            logger.info(f"{__name__}:process_message - Processing job {message.id} (retry {message.retry_count})")
            await self._run_job(machine, message.payload)
            await self._stop_keeper(keeper)
            if await self._ack(message):
                outcome = "succeeded" if machine.current_state == JobState.DONE else "waiting_review"
            else:
                outcome = "superseded"
        except Exception as e:
            await self._stop_keeper(keeper)
            outcome = await self._handle_failure(machine, message, e)
        finally:
            keeper.cancel()
            elapsed = self._clock() - started
            machine.add_metric("processing_time", elapsed)
            async with self._lock:
                self._active.pop(delivery_id, None)
                self._record(outcome, elapsed)
            clear_correlation_id()

        logger.info(
            f"{__name__}:process_message - Job {message.id} finished in "
            f"{machine.current_state.value} ({outcome}, {elapsed:.3f}s)"
        )
        return machine

    def _record(self, outcome: str, elapsed: float) -> None:
        """Update metrics; caller holds the lock."""
        metrics = self.metrics
        metrics.jobs_processed += 1
        metrics.total_processing_time += elapsed
        if outcome == "succeeded":
            metrics.jobs_succeeded += 1
        elif outcome == "waiting_review":
            metrics.jobs_waiting_review += 1
        elif outcome == "superseded":
            metrics.jobs_superseded += 1
        else:
            metrics.jobs_failed += 1
            self.error_count += 1
            if outcome == "retried":
                metrics.jobs_retried += 1
            else:
                metrics.jobs_failed_permanently += 1

    @staticmethod
    def _advance(machine: StateMachine, target: JobState, context: dict[str, Any] | None = None) -> None:
        result = machine.transition_to(target, context)
        if not result:
            raise InvalidStateTransitionError(machine.current_state.value, target.value)

    async def _run_job(self, machine: StateMachine, payload: dict[str, Any]) -> None:
        job = JobRequest.from_payload(payload)

        self._advance(machine, JobState.PLANNING, {"job": job.to_dict()})
        plan = await self.generation.generate_test_plan(job.to_dict())
        machine.update_context({"test_plan": plan.data})
        machine.add_metric("plan_source", plan.source)

        self._advance(machine, JobState.TOOLING)
        diff = await self.tools.get_diff(job.repository, job.commit_id, raise_on_failure=True)
        ci = await self.tools.run_ci(job.project_id, plan.data, raise_on_failure=True)
        ci_data = ci.data if isinstance(ci.data, dict) else {"output": ci.data}
        coverage_data = None
        report_id = ci_data.get("report_id") or ci_data.get("reportId")
        if report_id:
            coverage = await self.tools.get_coverage(str(report_id), raise_on_failure=True)
            coverage_data = coverage.data
        machine.update_context({"diff": diff.data, "ci_results": ci_data, "coverage": coverage_data})

        self._advance(machine, JobState.OBSERVING)
        analysis = await self.generation.analyze_results(plan.data, ci_data, coverage_data)
        confidence = analysis.data["confidence"]
        machine.update_context({"analysis": analysis.data})
        machine.add_metric("confidence", confidence)
        machine.add_metric("analysis_source", analysis.source)

        if confidence >= self.confidence_threshold:
            self._advance(machine, JobState.DONE, {"confidence": confidence})
            return

        self._advance(machine, JobState.WAITING_REVIEW, {"confidence": confidence})
        self._notify_review(job, confidence)

    def _notify_review(self, job: JobRequest, confidence: float) -> None:
        task = asyncio.create_task(self._send_review_notification(job, confidence))
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def _send_review_notification(self, job: JobRequest, confidence: float) -> None:
        message = (
            f"Low confidence test run requires manual review. "
            f"Project: {job.project_id}, Confidence: {confidence:.2f}"
        )
        try:
            result = await self.tools.notify(
                self.notify_channel,
                message,
                project_id=job.project_id,
                confidence=confidence,
            )
        except Exception as e:
            logger.warning(f"{__name__}:_send_review_notification - Notify raised {type(e).__name__}: {e}")
            return
        if not result.success:
            logger.warning(f"{__name__}:_send_review_notification - Notify failed: {result.error}")

    async def _handle_failure(self, machine: StateMachine, message: QueueMessage, error: Exception) -> str:
        """
        Decide between requeue and permanent failure.

        Returns:
            str: "retried" or "failed_permanently"
        """
        machine.set_error(error, {"failed_in": machine.current_state.value})
        retryable = not isinstance(error, NON_RETRYABLE_ERRORS)

        if retryable and machine.can_retry():
            retry = machine.increment_retry()
            self._advance(machine, JobState.ADJUSTING, {"retry_count": retry})
            delay = self.retry_delay_base_seconds * 2 ** (retry - 1)
            log_with_context(
                logger,
                logging.WARNING,
                f"{__name__}:_handle_failure - Job {message.id} failed ({type(error).__name__}: {error}); "
                f"retry {retry}/{self.max_retries} in {delay:.1f}s",
                job_id=message.id,
                retry_count=retry,
                delay_seconds=delay,
            )
            await self._nack(message, requeue=True, delay_seconds=delay)
            return "retried"

        log_exception_with_context(
            logger,
            f"{__name__}:_handle_failure - Job {message.id} failed permanently after "
            f"{machine.retry_count} retries",
            error,
            job_id=message.id,
            retry_count=machine.retry_count,
            retryable=retryable,
        )
        await self._nack(message, requeue=False)
        return "failed_permanently"

    async def _keep_visible(self, message: QueueMessage) -> None:
        """Extend the message's visibility until cancelled or it leaves flight."""
        interval = self.visibility_heartbeat_seconds or self.queue.visibility_timeout_seconds / 2
        while True:
            await asyncio.sleep(interval)
            try:
                await self.queue.extend_visibility(message.id)
            except MessageNotInFlightError:
                logger.warning(
                    f"{__name__}:_keep_visible - Message {message.id} is no longer in flight; "
                    "it may be redelivered"
                )
                return
            except Exception as e:
                logger.warning(f"{__name__}:_keep_visible - Extending {message.id} failed: {e}")

    @staticmethod
    async def _stop_keeper(keeper: asyncio.Task) -> None:
        keeper.cancel()
        await asyncio.gather(keeper, return_exceptions=True)

    async def _ack(self, message: QueueMessage) -> bool:
        """
        Ack a finished delivery.

        Returns:
            bool: False when the queue no longer holds this delivery in flight,
            meaning another delivery of the same message owns the outcome
        """
        try:
            await self.queue.ack(message.id)
        except MessageNotInFlightError:
            logger.warning(f"{__name__}:_ack - Message {message.id} was redelivered before this ack")
            return False
        except Exception as e:
            # Redelivery after the visibility timeout covers a lost ack
            logger.error(f"{__name__}:_ack - Failed to ack {message.id}: {e}")
        return True

    async def _nack(self, message: QueueMessage, requeue: bool, delay_seconds: float = 0.0) -> None:
        try:
            await self.queue.nack(message.id, requeue=requeue, delay_seconds=delay_seconds)
        except Exception as e:
            logger.error(f"{__name__}:_nack - Failed to nack {message.id}: {e}")

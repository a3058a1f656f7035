"""Background task queue with retry, timeout, checkpoint and cancellation semantics.

Features:
- Rejection-based admission control (max_queue_size queued tasks)
- Polling dispatch: one timeout sweep and at most one task per tick
- Retry policy shared by handler failures and timeouts
- Per-execution cancellation token, checkpoints and progress reporting
- Pause/resume/cancel with cooperative abort

State Transitions:
    QUEUED → RUNNING (dispatched)
    RUNNING → COMPLETED (handler success)
    RUNNING → QUEUED (failure or timeout with retries remaining)
    RUNNING → FAILED (failure or timeout, retries exhausted)
    RUNNING → PAUSED → QUEUED (pause_task / resume_task)
    QUEUED/RUNNING/PAUSED → CANCELLED (cancel_task)
    COMPLETED/FAILED/CANCELLED → Terminal (no further transitions)
"""

import asyncio
from collections.abc import Awaitable, Callable
from typing import Any

from conductor.domain.models import (
    BackgroundTask,
    PersonaType,
    TaskCheckpoint,
    TaskPriority,
    TaskResult,
    TaskStatus,
)
from conductor.domain.ports.event_sink import EventSink, OrchestrationEvent
from conductor.domain.ports.task_store import TaskStore
from conductor.infrastructure.config import TaskQueueConfig
from conductor.infrastructure.event_sinks import NullEventSink
from conductor.infrastructure.exceptions import QueueFullError
from conductor.infrastructure.logger import get_logger

logger = get_logger(__name__)

TIMEOUT_ERROR = "Task timed out"


class CancellationToken:
    """Cooperative abort signal for one task execution.

    Handlers poll ``cancelled`` (or ``TaskContext.should_abort``) and return
    early; nothing interrupts a running handler. ``wait`` lets a handler
    race its own work against cancellation.
    """

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self.reason: str | None = None

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self, reason: str = "cancelled") -> None:
        if not self._event.is_set():
            self.reason = reason
            self._event.set()

    async def wait(self) -> None:
        await self._event.wait()


class TaskContext:
    """Execution context handed to a task handler."""

    def __init__(self, queue: "TaskQueue", task: BackgroundTask, token: CancellationToken):
        self._queue = queue
        self.task = task
        self.token = token

    async def report_progress(self, progress: int) -> None:
        """Report progress as a percentage (clamped to 0-100)."""
        progress = max(0, min(100, int(progress)))
        await self._queue.store.update_progress(self.task.id, progress)
        self._queue.emit(
            OrchestrationEvent.TASK_PROGRESS,
            task_id=self.task.id,
            task_name=self.task.name,
            progress=progress,
        )

    async def save_checkpoint(self, step: int, total_steps: int, state: dict[str, Any]) -> None:
        """Replace the task's checkpoint."""
        await self._queue.store.save_checkpoint(
            TaskCheckpoint(task_id=self.task.id, step=step, total_steps=total_steps, state=state)
        )
        self._queue.emit(
            OrchestrationEvent.TASK_CHECKPOINTED,
            task_id=self.task.id,
            task_name=self.task.name,
            step=step,
            total_steps=total_steps,
        )

    async def get_checkpoint(self) -> TaskCheckpoint | None:
        """Last checkpoint saved for this task, e.g. by an earlier attempt."""
        return await self._queue.store.get_checkpoint(self.task.id)

    def should_abort(self) -> bool:
        return self.token.cancelled


TaskHandler = Callable[[BackgroundTask, TaskContext], Awaitable[TaskResult | Any]]


class TaskQueue:
    """Background task queue.

    Usage:
        queue = TaskQueue(InMemoryTaskStore(), TaskQueueConfig())
        queue.register_handler("send-report", send_report)
        await queue.enqueue("send-report", description="Weekly numbers")
        await queue.start()     # or drive it with: await queue.process_queue()

    A handler receives the task and a ``TaskContext`` and either returns a
    ``TaskResult`` or any other value (treated as a successful result). A
    raised exception or ``TaskResult(success=False)`` goes through the retry
    policy. Exceptions never escape the dispatch loop.
    """

    def __init__(
        self,
        store: TaskStore,
        config: TaskQueueConfig | None = None,
        events: EventSink | None = None,
    ):
        """Initialize task queue.

        Args:
            store: Task store for durable task state
            config: Queue configuration (defaults if omitted)
            events: Sink for emitted signals
        """
        self.store = store
        self.config = config or TaskQueueConfig()
        self.events = events or NullEventSink()
        self._handlers: dict[str, TaskHandler] = {}
        self._running: dict[str, CancellationToken] = {}
        self._processing_task: asyncio.Task | None = None
        self._inflight: set[asyncio.Task] = set()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @property
    def started(self) -> bool:
        return self._processing_task is not None and not self._processing_task.done()

    async def start(self) -> None:
        """Start the polling dispatch loop."""
        if self.started:
            return
        self._processing_task = asyncio.create_task(self._processing_loop())
        logger.info("task_queue_started", interval_ms=self.config.processing_interval_ms)

    async def stop(self) -> None:
        """Stop the dispatch loop and signal abort to every running task.

        Background runs are awaited after the abort signal, so handlers are
        expected to honour their cancellation token.
        """
        if self._processing_task and not self._processing_task.done():
            self._processing_task.cancel()
            try:
                await self._processing_task
            except asyncio.CancelledError:
                pass
        self._processing_task = None

        aborted = len(self._running)
        for token in self._running.values():
            token.cancel("queue stopped")

        if self._inflight:
            await asyncio.gather(*self._inflight, return_exceptions=True)

        logger.info("task_queue_stopped", aborted=aborted)

    async def _processing_loop(self) -> None:
        """Background task that runs one dispatch tick per interval."""
        interval = self.config.processing_interval_ms / 1000
        try:
            while True:
                await asyncio.sleep(interval)
                await self.process_queue(wait=False)
        except asyncio.CancelledError:
            logger.debug("task_queue_loop_cancelled")
            raise

    # ------------------------------------------------------------------
    # Handlers
    # ------------------------------------------------------------------

    def register_handler(self, name: str, handler: TaskHandler) -> None:
        self._handlers[name] = handler
        logger.debug("task_handler_registered", task_name=name)

    def unregister_handler(self, name: str) -> bool:
        return self._handlers.pop(name, None) is not None

    def has_handler(self, name: str) -> bool:
        return name in self._handlers

    # ------------------------------------------------------------------
    # Admission
    # ------------------------------------------------------------------

    async def enqueue(
        self,
        name: str,
        description: str = "",
        priority: TaskPriority = TaskPriority.NORMAL,
        max_retries: int | None = None,
        required_persona_type: PersonaType | None = None,
        overnight_eligible: bool = False,
        estimated_duration_minutes: int | None = None,
        assigned_agent_id: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> BackgroundTask:
        """Create a queued task.

        Args:
            name: Handler key
            description: Human readable description
            priority: Dispatch priority
            max_retries: Retries allowed (defaults to the queue's max_retries)
            required_persona_type: Persona type needed to run the task
            overnight_eligible: Whether the task may run in overnight batches
            estimated_duration_minutes: Expected run time
            assigned_agent_id: Agent nominally executing the task
            metadata: Free-form data passed through to the handler

        Returns:
            The stored task

        Raises:
            QueueFullError: If max_queue_size tasks are already queued
        """
        queued_count = await self.store.count_by_status(TaskStatus.QUEUED)
        if queued_count >= self.config.max_queue_size:
            logger.warning(
                "task_queue_full",
                task_name=name,
                queued=queued_count,
                max_queue_size=self.config.max_queue_size,
            )
            raise QueueFullError(self.config.max_queue_size)

        task = BackgroundTask(
            name=name,
            description=description,
            priority=priority,
            status=TaskStatus.QUEUED,
            retry_count=0,
            max_retries=self.config.max_retries if max_retries is None else max_retries,
            required_persona_type=required_persona_type,
            overnight_eligible=overnight_eligible,
            estimated_duration_minutes=estimated_duration_minutes,
            assigned_agent_id=assigned_agent_id,
            metadata=metadata or {},
        )
        await self.store.save(task)

        logger.info(
            "task_enqueued",
            task_id=task.id,
            task_name=name,
            priority=task.priority.value,
            max_retries=task.max_retries,
        )
        self.emit(
            OrchestrationEvent.TASK_QUEUED,
            task_id=task.id,
            task_name=task.name,
            status=task.status.value,
            priority=task.priority.value,
        )
        return task

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    async def get_task(self, task_id: str) -> BackgroundTask | None:
        return await self.store.get(task_id)

    async def get_all_tasks(self) -> list[BackgroundTask]:
        return await self.store.get_all()

    async def get_queued_tasks(self, limit: int | None = None) -> list[BackgroundTask]:
        return await self.store.get_queued_tasks(limit)

    async def get_overnight_eligible(
        self, priority_threshold: TaskPriority = TaskPriority.LOW
    ) -> list[BackgroundTask]:
        return await self.store.get_overnight_eligible(priority_threshold)

    async def get_running_tasks(self) -> list[BackgroundTask]:
        return await self.store.get_by_status(TaskStatus.RUNNING)

    async def get_stats(self) -> dict[str, int]:
        """Count of tasks per status."""
        return {status.value: await self.store.count_by_status(status) for status in TaskStatus}

    async def assign_task(self, task_id: str, agent_id: str | None) -> bool:
        """Record which agent executes a task; False if the task is unknown."""
        if await self.store.get(task_id) is None:
            return False
        await self.store.assign_to_agent(task_id, agent_id)
        return True

    async def has_outstanding_work(self, agent_id: str) -> bool:
        """Whether any non-terminal task is assigned to the agent."""
        tasks = await self.store.get_by_agent(agent_id)
        return any(not t.status.is_terminal for t in tasks)

    # ------------------------------------------------------------------
    # Control
    # ------------------------------------------------------------------

    async def cancel_task(self, task_id: str) -> bool:
        """Cancel a task. Terminal; a running handler is signalled to abort.

        Returns:
            False if the task is unknown or already terminal
        """
        task = await self.store.get(task_id)
        if task is None or task.status.is_terminal:
            return False

        token = self._running.get(task_id)
        if token is not None:
            token.cancel("cancelled")

        await self.store.update_status(task_id, TaskStatus.CANCELLED)
        await self.store.delete_checkpoint(task_id)

        logger.info("task_cancelled", task_id=task_id, previous_status=task.status.value)
        self.emit(
            OrchestrationEvent.TASK_CANCELLED,
            task_id=task.id,
            task_name=task.name,
            status=TaskStatus.CANCELLED.value,
        )
        return True

    async def pause_task(self, task_id: str) -> bool:
        """Pause a running task.

        The handler is signalled to abort; in-flight work not captured in a
        checkpoint is lost. The task stays PAUSED until resume_task.

        Returns:
            False if the task is unknown or not running
        """
        task = await self.store.get(task_id)
        if task is None or task.status != TaskStatus.RUNNING:
            return False

        token = self._running.get(task_id)
        if token is not None:
            token.cancel("paused")

        await self.store.update_status(task_id, TaskStatus.PAUSED)

        logger.info("task_paused", task_id=task_id, progress=task.progress)
        self.emit(
            OrchestrationEvent.TASK_PAUSED,
            task_id=task.id,
            task_name=task.name,
            status=TaskStatus.PAUSED.value,
            progress=task.progress,
        )
        return True

    async def resume_task(self, task_id: str) -> bool:
        """Return a paused task to the queue.

        Returns:
            False if the task is unknown or not paused
        """
        task = await self.store.get(task_id)
        if task is None or task.status != TaskStatus.PAUSED:
            return False

        await self.store.update_status(task_id, TaskStatus.QUEUED)

        logger.info("task_resumed", task_id=task_id)
        self.emit(
            OrchestrationEvent.TASK_RESUMED,
            task_id=task.id,
            task_name=task.name,
            status=TaskStatus.QUEUED.value,
        )
        return True

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------

    async def process_queue(self, wait: bool = True) -> BackgroundTask | None:
        """Run one dispatch tick.

        Sweeps timeouts, then runs the highest priority queued task that has
        a registered handler. Never raises.

        Args:
            wait: Await the handler; when False the run continues in the
                background so later ticks can still sweep timeouts

        Returns:
            The task that was dispatched, or None
        """
        try:
            await self.check_timeouts()

            for task in await self.store.get_queued_tasks():
                if task.name not in self._handlers:
                    continue
                task, token = await self._begin(task)
                if wait:
                    await self._execute(task, token)
                else:
                    run = asyncio.create_task(self._execute(task, token))
                    self._inflight.add(run)
                    run.add_done_callback(self._on_run_done)
                return task
            return None

        except Exception as e:
            logger.error("task_queue_tick_error", error=str(e), error_type=type(e).__name__)
            return None

    async def execute_task(self, task_id: str) -> TaskResult | None:
        """Run a queued task immediately, bypassing the polling loop.

        Returns:
            The normalized handler result, or None if the task is unknown,
            not queued, or has no handler
        """
        task = await self.store.get(task_id)
        if task is None or task.status != TaskStatus.QUEUED or task.name not in self._handlers:
            return None
        task, token = await self._begin(task)
        return await self._execute(task, token)

    async def _begin(self, task: BackgroundTask) -> tuple[BackgroundTask, CancellationToken]:
        """Mark a task running and issue its cancellation token."""
        await self.store.update_status(task.id, TaskStatus.RUNNING)
        task = await self.store.get(task.id) or task

        token = CancellationToken()
        self._running[task.id] = token

        logger.info("task_started", task_id=task.id, task_name=task.name, attempt=task.retry_count + 1)
        self.emit(
            OrchestrationEvent.TASK_STARTED,
            task_id=task.id,
            task_name=task.name,
            status=TaskStatus.RUNNING.value,
        )
        return task, token

    def _on_run_done(self, run: asyncio.Task) -> None:
        self._inflight.discard(run)
        if run.cancelled():
            return
        error = run.exception()
        if error is not None:
            logger.error("task_run_failed", error=str(error), error_type=type(error).__name__)

    async def _execute(self, task: BackgroundTask, token: CancellationToken) -> TaskResult:
        """Execute a task through its handler.

        The handler call is the single recovery boundary: whatever it raises
        is normalized into a failed TaskResult.
        """
        handler = self._handlers.get(task.name)
        if handler is None:
            # Unregistered between dispatch and execution
            result = TaskResult.failed(f"No handler registered for '{task.name}'")
            self._running.pop(task.id, None)
            await self._handle_failure(task, result.error or "")
            return result

        try:
            outcome = await handler(task, TaskContext(self, task, token))
            result = outcome if isinstance(outcome, TaskResult) else TaskResult.ok(outcome)
        except Exception as e:
            logger.warning(
                "task_handler_raised",
                task_id=task.id,
                task_name=task.name,
                error=str(e),
                error_type=type(e).__name__,
            )
            result = TaskResult.failed(str(e) or type(e).__name__)
        finally:
            if self._running.get(task.id) is token:
                del self._running[task.id]

        if not await self._still_running(task.id, token):
            logger.info(
                "task_outcome_discarded",
                task_id=task.id,
                reason=token.reason or "task left running state",
            )
            return result

        if result.success:
            await self._complete(task, result)
        else:
            await self._handle_failure(task, result.error or "Unknown error")
        return result

    async def _still_running(self, task_id: str, token: CancellationToken) -> bool:
        if token.cancelled:
            return False
        current = await self.store.get(task_id)
        return current is not None and current.status == TaskStatus.RUNNING

    async def _complete(self, task: BackgroundTask, result: TaskResult) -> None:
        await self.store.update_status(task.id, TaskStatus.COMPLETED, result=result.result)
        await self.store.update_progress(task.id, 100)
        await self.store.delete_checkpoint(task.id)

        logger.info("task_completed", task_id=task.id, task_name=task.name)
        self.emit(
            OrchestrationEvent.TASK_COMPLETED,
            task_id=task.id,
            task_name=task.name,
            status=TaskStatus.COMPLETED.value,
            result=result.result,
        )

    async def _handle_failure(self, task: BackgroundTask, error: str) -> None:
        """Apply the retry policy to a failed or timed out execution."""
        if self.config.retry_failed_tasks and task.retry_count < task.max_retries:
            await self.store.increment_retry(task.id)
            await self.store.update_status(task.id, TaskStatus.QUEUED)

            attempt = task.retry_count + 1
            logger.info(
                "task_retried",
                task_id=task.id,
                task_name=task.name,
                attempt=attempt,
                max_retries=task.max_retries,
                error=error,
            )
            self.emit(
                OrchestrationEvent.TASK_RETRIED,
                task_id=task.id,
                task_name=task.name,
                status=TaskStatus.QUEUED.value,
                retry_count=attempt,
                error=error,
            )
            return

        await self.store.update_status(task.id, TaskStatus.FAILED, error=error)
        await self.store.delete_checkpoint(task.id)

        logger.error(
            "task_failed",
            task_id=task.id,
            task_name=task.name,
            retry_count=task.retry_count,
            error=error,
        )
        self.emit(
            OrchestrationEvent.TASK_FAILED,
            task_id=task.id,
            task_name=task.name,
            status=TaskStatus.FAILED.value,
            error=error,
        )

    async def check_timeouts(self) -> list[str]:
        """Route running tasks older than task_timeout_minutes through the failure path.

        Returns:
            Ids of the tasks that timed out
        """
        timeout_ms = self.config.task_timeout_minutes * 60 * 1000
        timed_out = await self.store.get_timed_out_tasks(timeout_ms)

        for task in timed_out:
            token = self._running.pop(task.id, None)
            if token is not None:
                token.cancel("timeout")

            logger.warning(
                "task_timed_out",
                task_id=task.id,
                task_name=task.name,
                timeout_minutes=self.config.task_timeout_minutes,
            )
            self.emit(
                OrchestrationEvent.TASK_TIMEOUT,
                task_id=task.id,
                task_name=task.name,
                status=task.status.value,
            )
            await self._handle_failure(task, TIMEOUT_ERROR)

        return [t.id for t in timed_out]

    def emit(self, event: OrchestrationEvent, **payload: Any) -> None:
        self.events.emit(event, payload)

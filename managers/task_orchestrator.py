"""Two-stage (preview -> refine) generation orchestration.

Each logical request owns at most one PollingSchedule at a time. When the
preview succeeds its schedule is cancelled before the refine task is created
and a new schedule is armed for it. Responses that arrive for a schedule that
is no longer the request's current one are dropped, which is how cancellation
and stage changes keep late network results from leaking through.
"""

import asyncio
import dataclasses
import functools
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

from errors import (
    GenerationFailed,
    ParseError,
    RequestCancelled,
    ServiceError,
    TransportError,
    ValidationError,
)
from models.task import (
    GenerationRequest,
    GenerationResult,
    GenerationTask,
    RequestState,
    Stage,
    TaskStatus,
)

logger = logging.getLogger("MCP_Server")

DEFAULT_POLL_INTERVAL = 3.0


class PollingSchedule:
    """Repeating poll callback on the running event loop.

    Fires once right away and then every ``interval`` seconds until
    cancelled. A tick is skipped while the previous poll is still running.
    Cancelling never interrupts a poll that is already in flight.
    """

    def __init__(self, interval: float):
        self.interval = interval
        self.active = False
        self.ticks = 0
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._callback: Optional[Callable[[], Awaitable[None]]] = None
        self._handle: Optional[asyncio.Handle] = None
        self._inflight: Optional[asyncio.Task] = None

    def start(self, callback: Callable[[], Awaitable[None]]):
        if self.active:
            raise RuntimeError("Polling schedule already started")
        self._loop = asyncio.get_running_loop()
        self._callback = callback
        self.active = True
        self._handle = self._loop.call_soon(self._fire)

    def cancel(self):
        self.active = False
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None

    def _fire(self):
        if not self.active:
            return
        self._handle = self._loop.call_later(self.interval, self._fire)
        if self._inflight is not None and not self._inflight.done():
            logger.debug("Previous poll still running; skipping tick")
            return
        self.ticks += 1
        self._inflight = self._loop.create_task(self._callback())


def _consume_outcome(future: asyncio.Future):
    # Mark failures as retrieved so unawaited requests do not log at GC
    if not future.cancelled():
        future.exception()


class TaskOrchestrator:
    """Drives prompts through the preview and refine stages.

    ``client`` is a MeshyClient (or anything with the same three methods);
    its blocking calls run in worker threads so the event loop keeps
    serving other requests. ``materializer`` is optional; without one the
    remote artifact URL is returned as-is.
    """

    def __init__(
        self,
        client,
        materializer=None,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        max_wait_seconds: Optional[float] = None,
        preview_options: Optional[Dict[str, Any]] = None,
        refine_options: Optional[Dict[str, Any]] = None,
        on_update: Optional[Callable[[GenerationRequest], None]] = None,
    ):
        self.client = client
        self.materializer = materializer
        self.poll_interval = poll_interval
        self.max_wait_seconds = max_wait_seconds
        self.preview_options = dict(preview_options or {})
        self.refine_options = dict(refine_options or {})
        self.on_update = on_update

        self._requests: Dict[str, GenerationRequest] = {}
        self._outcomes: Dict[str, asyncio.Future] = {}
        self._schedules: Dict[str, PollingSchedule] = {}
        self._stage_started: Dict[str, float] = {}

    async def submit(self, prompt: str, **preview_options: Any) -> str:
        """Create the preview task for a prompt and start polling it.

        Returns the preview task id, which also identifies the request.

        Raises:
            ValidationError: If the prompt is empty
            ServiceUnavailable: If the remote service rejects task creation
        """
        if not isinstance(prompt, str) or not prompt.strip():
            raise ValidationError("Prompt required for preview")
        prompt = prompt.strip()

        options = dict(self.preview_options)
        options.update({k: v for k, v in preview_options.items() if v is not None})
        task_id = await asyncio.to_thread(self.client.create_preview_task, prompt, **options)

        request = GenerationRequest(request_id=task_id, prompt=prompt, options=options)
        request.preview_task = GenerationTask(task_id=task_id, prompt=prompt, stage=Stage.PREVIEW)
        request.state = RequestState.PREVIEW_PENDING
        self._requests[task_id] = request

        outcome = asyncio.get_running_loop().create_future()
        outcome.add_done_callback(_consume_outcome)
        self._outcomes[task_id] = outcome

        self._arm(request, request.preview_task)
        logger.info(f"Started generation request {task_id} for prompt {prompt!r}")
        self._notify(request)
        return task_id

    async def poll(self, task_id: str) -> GenerationTask:
        """Fetch status for one task.

        A tracked task that already reached a terminal status is answered
        from memory without another remote call.

        Raises:
            NotFound: If the service does not know the task
            ServiceError: On transport failure or an error status
        """
        tracked = self._find_task(task_id)
        if tracked is not None and tracked.status.is_terminal:
            return dataclasses.replace(tracked, artifact_urls=dict(tracked.artifact_urls))

        prompt = tracked.prompt if tracked else ""
        stage = tracked.stage if tracked else None
        return await asyncio.to_thread(self.client.get_task, task_id, prompt, stage)

    async def wait(self, request_id: str) -> GenerationResult:
        """Wait for a request to finish.

        Raises:
            KeyError: If the request id is unknown
            GenerationFailed: If either stage failed
            RequestCancelled: If the request was cancelled
        """
        outcome = self._outcomes[request_id]
        return await asyncio.shield(outcome)

    async def generate(self, prompt: str, **preview_options: Any) -> GenerationResult:
        request_id = await self.submit(prompt, **preview_options)
        return await self.wait(request_id)

    def cancel(self, request_id: str) -> bool:
        """Stop polling and mark the request inert.

        The remote task keeps running; there is no server-side cancel.
        Returns False if the request is unknown or already finished.
        """
        request = self._requests.get(request_id)
        if request is None or not request.active:
            return False
        self._disarm(request_id)
        request.state = RequestState.CANCELLED
        self._resolve(request_id, error=RequestCancelled(f"Request {request_id} was cancelled"))
        logger.info(f"Cancelled generation request {request_id}")
        self._notify(request)
        return True

    def get_request(self, request_id: str) -> Optional[GenerationRequest]:
        return self._requests.get(request_id)

    def list_requests(self) -> List[GenerationRequest]:
        return list(self._requests.values())

    def armed_schedules(self) -> List[str]:
        """Request ids that currently have an active polling schedule"""
        return [rid for rid, schedule in self._schedules.items() if schedule.active]

    def _arm(self, request: GenerationRequest, task: GenerationTask):
        if request.request_id in self._schedules:
            raise RuntimeError(f"Request {request.request_id} already has an active polling schedule")
        schedule = PollingSchedule(self.poll_interval)
        self._schedules[request.request_id] = schedule
        self._stage_started[request.request_id] = asyncio.get_running_loop().time()
        schedule.start(functools.partial(self._on_tick, request.request_id, task, schedule))

    def _disarm(self, request_id: str):
        schedule = self._schedules.pop(request_id, None)
        self._stage_started.pop(request_id, None)
        if schedule is not None:
            schedule.cancel()

    def _is_current(self, request: GenerationRequest, schedule: PollingSchedule) -> bool:
        return request.active and self._schedules.get(request.request_id) is schedule

    def _stage_expired(self, request_id: str) -> bool:
        if self.max_wait_seconds is None:
            return False
        started = self._stage_started.get(request_id)
        if started is None:
            return False
        return asyncio.get_running_loop().time() - started > self.max_wait_seconds

    async def _on_tick(self, request_id: str, task: GenerationTask, schedule: PollingSchedule):
        request = self._requests[request_id]
        try:
            await self._poll_stage(request, task, schedule)
        except Exception as exc:
            logger.exception(f"Polling {task.stage.value} task {task.task_id} failed")
            if request.active:
                self._disarm(request_id)
                self._fail(request, task.stage, f"{task.stage.label} failed: {exc}")

    async def _poll_stage(self, request: GenerationRequest, task: GenerationTask, schedule: PollingSchedule):
        if not self._is_current(request, schedule):
            return

        if self._stage_expired(request.request_id):
            self._disarm(request.request_id)
            self._fail(
                request,
                task.stage,
                f"{task.stage.label} did not finish within {self.max_wait_seconds} seconds",
            )
            return

        try:
            update = await self.poll(task.task_id)
        except TransportError as e:
            logger.warning(f"Transient error polling task {task.task_id}, retrying next tick: {e}")
            return
        except (ServiceError, ParseError) as e:
            if self._is_current(request, schedule):
                self._disarm(request.request_id)
                self._fail(request, task.stage, str(e))
            return

        if not self._is_current(request, schedule):
            logger.debug(f"Discarding late status for task {task.task_id}")
            return

        task.apply_status(update)

        if update.status is TaskStatus.SUCCEEDED:
            self._disarm(request.request_id)
            if task.stage is Stage.PREVIEW:
                request.state = RequestState.PREVIEW_SUCCEEDED
                self._notify(request)
                await self._start_refine(request, task)
            else:
                self._notify(request)
                await self._complete(request, task)
        elif update.status is TaskStatus.FAILED:
            self._disarm(request.request_id)
            self._fail(request, task.stage, task.error_message or f"{task.stage.label} failed")
        else:
            if update.status is TaskStatus.IN_PROGRESS:
                request.state = (
                    RequestState.PREVIEW_IN_PROGRESS if task.stage is Stage.PREVIEW
                    else RequestState.REFINE_IN_PROGRESS
                )
            self._notify(request)

    async def _start_refine(self, request: GenerationRequest, preview_task: GenerationTask):
        if not request.active:
            return
        try:
            refine_id = await asyncio.to_thread(
                self.client.create_refine_task, preview_task.task_id, **self.refine_options
            )
        except ServiceError as e:
            if request.active:
                self._fail(request, Stage.REFINE, f"Failed to start refine stage: {e}")
            return

        if not request.active:
            logger.info(
                f"Request {request.request_id} ended before refine polling started; ignoring refine task {refine_id}"
            )
            return

        request.refine_task = GenerationTask(
            task_id=refine_id,
            prompt=request.prompt,
            stage=Stage.REFINE,
            preceding_task_id=preview_task.task_id,
        )
        request.state = RequestState.REFINE_PENDING
        self._arm(request, request.refine_task)
        logger.info(f"Chained refine task {refine_id} to preview task {preview_task.task_id}")
        self._notify(request)

    async def _complete(self, request: GenerationRequest, task: GenerationTask):
        artifact_url = task.primary_artifact_url()
        if not artifact_url:
            self._fail(request, Stage.REFINE, "Refine finished without a model URL")
            return

        artifact_ref, materialized = await self._materialize(artifact_url, request.prompt)
        if not request.active:
            logger.info(f"Request {request.request_id} was cancelled during download; discarding result")
            return

        request.result = GenerationResult(
            artifact_ref=artifact_ref,
            thumbnail_ref=task.thumbnail_url,
            prompt=request.prompt,
            preview_task_id=request.preview_task.task_id,
            refine_task_id=task.task_id,
            materialized=materialized,
        )
        request.state = RequestState.DONE
        self._resolve(request.request_id, result=request.result)
        logger.info(f"Generation request {request.request_id} finished: {artifact_ref}")
        self._notify(request)

    async def _materialize(self, artifact_url: str, prompt: str) -> Tuple[str, bool]:
        if self.materializer is None:
            return artifact_url, False
        try:
            reference = await asyncio.to_thread(self.materializer.localize, artifact_url, prompt)
            return reference, True
        except Exception as e:
            # Keep the request alive on the remote URL
            logger.warning(f"Failed to download model, using remote URL: {e}")
            return artifact_url, False

    def _fail(self, request: GenerationRequest, stage: Stage, message: str):
        request.state = RequestState.DONE
        request.failed_stage = stage
        request.error = message
        logger.warning(f"Generation request {request.request_id} failed at {stage.value}: {message}")
        self._resolve(request.request_id, error=GenerationFailed(message, stage=stage.value))
        self._notify(request)

    def _resolve(self, request_id: str, result: Optional[GenerationResult] = None, error: Optional[Exception] = None):
        outcome = self._outcomes.get(request_id)
        if outcome is None or outcome.done():
            return
        if error is not None:
            outcome.set_exception(error)
        else:
            outcome.set_result(result)

    def _find_task(self, task_id: str) -> Optional[GenerationTask]:
        for request in self._requests.values():
            for task in (request.preview_task, request.refine_task):
                if task is not None and task.task_id == task_id:
                    return task
        return None

    def _notify(self, request: GenerationRequest):
        if self.on_update is None:
            return
        try:
            self.on_update(request)
        except Exception:
            logger.exception(f"Status update callback failed for request {request.request_id}")

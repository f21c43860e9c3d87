"""Tests for the two-stage generation orchestrator

Run with pytest from project root:
    pytest tests/test_task_orchestrator.py -v
"""

import asyncio
import threading

import pytest

from errors import (
    FetchError,
    GenerationFailed,
    NotFound,
    RequestCancelled,
    ServiceUnavailable,
    TransportError,
    ValidationError,
)
from managers.artifact_materializer import ArtifactMaterializer
from managers.task_orchestrator import PollingSchedule, TaskOrchestrator
from models.task import GenerationTask, RequestState, Stage, TaskStatus

PREVIEW_ID = "preview-1"
REFINE_ID = "refine-1"
MODEL_URL = "https://assets.meshy.ai/tasks/refine-1/model.glb"
THUMB_URL = "https://assets.meshy.ai/tasks/refine-1/preview.png"


def make_task(task_id, stage, status, progress=0, urls=None, thumbnail=None, error=None):
    return GenerationTask(
        task_id=task_id,
        prompt="a wooden bench",
        stage=stage,
        status=status,
        progress=progress,
        artifact_urls=dict(urls or {}),
        thumbnail_url=thumbnail,
        error_message=error,
    )


def preview(status, progress=0, error=None):
    return make_task(PREVIEW_ID, Stage.PREVIEW, status, progress, error=error)


def refine(status, progress=0, urls=None):
    if urls is None and status is TaskStatus.SUCCEEDED:
        urls = {"glb": MODEL_URL, "fbx": "https://assets.meshy.ai/tasks/refine-1/model.fbx"}
    return make_task(REFINE_ID, Stage.REFINE, status, progress, urls=urls, thumbnail=THUMB_URL)


HAPPY_PATH = {
    PREVIEW_ID: [
        preview(TaskStatus.PENDING),
        preview(TaskStatus.IN_PROGRESS, 40),
        preview(TaskStatus.SUCCEEDED, 100),
    ],
    REFINE_ID: [
        refine(TaskStatus.IN_PROGRESS, 30),
        refine(TaskStatus.SUCCEEDED, 100),
    ],
}


class ScriptedClient:
    """Stands in for MeshyClient; replays scripted poll responses per task id.

    Script entries may be exceptions, which are raised instead of returned.
    The last entry repeats once a script is exhausted.
    """

    def __init__(self, scripts=None, refine_error=None, preview_error=None):
        self.scripts = {task_id: list(steps) for task_id, steps in (scripts or HAPPY_PATH).items()}
        self.refine_error = refine_error
        self.preview_error = preview_error
        self.preview_calls = []
        self.refine_calls = []
        self.poll_calls = []
        self.active_schedule_counts = []
        self._lock = threading.Lock()

    def create_preview_task(self, prompt, **options):
        self.preview_calls.append((prompt, options))
        if self.preview_error is not None:
            raise self.preview_error
        return PREVIEW_ID

    def create_refine_task(self, preview_task_id, **options):
        self.refine_calls.append((preview_task_id, options))
        if self.refine_error is not None:
            raise self.refine_error
        return REFINE_ID

    def get_task(self, task_id, prompt="", stage=None):
        with self._lock:
            self.poll_calls.append(task_id)
            self.active_schedule_counts.append(sum(s.active for s in RecordingSchedule.created))
            steps = self.scripts[task_id]
            step = steps.pop(0) if len(steps) > 1 else steps[0]
        if isinstance(step, Exception):
            raise step
        return step


class RecordingSchedule(PollingSchedule):
    """PollingSchedule that remembers every instance the orchestrator creates"""

    created = []

    def __init__(self, interval):
        super().__init__(interval)
        RecordingSchedule.created.append(self)


@pytest.fixture(autouse=True)
def recorded_schedules(monkeypatch):
    RecordingSchedule.created = []
    monkeypatch.setattr("managers.task_orchestrator.PollingSchedule", RecordingSchedule)
    return RecordingSchedule.created


class FailingMaterializer:
    def __init__(self):
        self.calls = []

    def localize(self, remote_url, suggested_name=None):
        self.calls.append(remote_url)
        raise FetchError("Failed to fetch asset: 503", status_code=503)


def make_orchestrator(client, **kwargs):
    kwargs.setdefault("poll_interval", 0.01)
    return TaskOrchestrator(client, **kwargs)


def run(coro):
    return asyncio.run(asyncio.wait_for(coro, timeout=5))


class TestPollingSchedule:
    """Tests for the repeating poll timer"""

    def test_fires_immediately_and_repeats(self):
        async def scenario():
            calls = []

            async def tick():
                calls.append(asyncio.get_running_loop().time())

            schedule = PollingSchedule(0.01)
            schedule.start(tick)
            await asyncio.sleep(0.08)
            schedule.cancel()
            return schedule, calls

        schedule, calls = run(scenario())
        assert len(calls) >= 3
        assert schedule.active is False

    def test_cancel_stops_further_ticks(self):
        async def scenario():
            schedule = PollingSchedule(0.01)

            async def tick():
                pass

            schedule.start(tick)
            await asyncio.sleep(0.03)
            schedule.cancel()
            ticks_at_cancel = schedule.ticks
            await asyncio.sleep(0.05)
            return ticks_at_cancel, schedule.ticks

        at_cancel, later = run(scenario())
        assert at_cancel == later

    def test_skips_ticks_while_poll_in_flight(self):
        async def scenario():
            schedule = PollingSchedule(0.01)

            async def slow_tick():
                await asyncio.sleep(0.2)

            schedule.start(slow_tick)
            await asyncio.sleep(0.1)
            schedule.cancel()
            return schedule.ticks

        assert run(scenario()) == 1

    def test_start_twice_raises(self):
        async def scenario():
            schedule = PollingSchedule(0.01)

            async def tick():
                pass

            schedule.start(tick)
            try:
                with pytest.raises(RuntimeError):
                    schedule.start(tick)
            finally:
                schedule.cancel()

        run(scenario())


class TestHappyPath:
    """Preview -> refine -> materialize"""

    def test_generate_returns_materialized_result(self, tmp_path):
        client = ScriptedClient()
        materializer = ArtifactMaterializer(tmp_path / "assets", fetch=lambda url: b"glTF-binary")
        orchestrator = make_orchestrator(client, materializer=materializer)

        result = run(orchestrator.generate("a wooden bench"))

        assert result.materialized is True
        assert result.artifact_ref.startswith("/assets/a_wooden_bench_")
        assert result.artifact_ref.endswith(".glb")
        assert materializer.resolve_reference(result.artifact_ref).read_bytes() == b"glTF-binary"
        assert result.thumbnail_ref == THUMB_URL
        assert result.preview_task_id == PREVIEW_ID
        assert result.refine_task_id == REFINE_ID

        request = orchestrator.get_request(PREVIEW_ID)
        assert request.state is RequestState.DONE
        assert request.succeeded
        assert request.status_message.startswith('Model "a wooden bench" ready.')
        assert "Saved to: /assets/" in request.status_message

    def test_refine_is_chained_to_preview(self):
        client = ScriptedClient()
        orchestrator = make_orchestrator(client)

        run(orchestrator.generate("a wooden bench"))

        assert [call[0] for call in client.refine_calls] == [PREVIEW_ID]
        request = orchestrator.get_request(PREVIEW_ID)
        assert request.refine_task.preceding_task_id == request.preview_task.task_id

    def test_at_most_one_schedule_per_request(self, recorded_schedules):
        client = ScriptedClient()
        orchestrator = make_orchestrator(client)

        run(orchestrator.generate("a wooden bench"))

        assert client.active_schedule_counts
        assert max(client.active_schedule_counts) == 1
        assert len(recorded_schedules) == 2
        assert not any(schedule.active for schedule in recorded_schedules)
        assert orchestrator.armed_schedules() == []
        assert orchestrator._stage_started == {}

    def test_refine_polling_starts_after_preview_polling_stops(self):
        client = ScriptedClient()
        orchestrator = make_orchestrator(client)

        run(orchestrator.generate("a wooden bench"))

        first_refine = client.poll_calls.index(REFINE_ID)
        assert PREVIEW_ID not in client.poll_calls[first_refine:]

    def test_without_materializer_returns_remote_url(self):
        client = ScriptedClient()
        orchestrator = make_orchestrator(client)

        result = run(orchestrator.generate("a wooden bench"))

        assert result.artifact_ref == MODEL_URL
        assert result.materialized is False

    def test_preview_and_refine_options_are_sent(self):
        client = ScriptedClient()
        orchestrator = make_orchestrator(
            client,
            preview_options={"art_style": "realistic", "topology": "triangle"},
            refine_options={"enable_pbr": False},
        )

        run(orchestrator.generate("a wooden bench", art_style="sculpture", target_polycount=None))

        prompt, options = client.preview_calls[0]
        assert prompt == "a wooden bench"
        assert options == {"art_style": "sculpture", "topology": "triangle"}
        assert client.refine_calls[0][1] == {"enable_pbr": False}
        assert orchestrator.get_request(PREVIEW_ID).options == options

    def test_status_updates_are_reported_in_order(self):
        client = ScriptedClient()
        states = []
        orchestrator = make_orchestrator(client, on_update=lambda request: states.append(request.state))

        run(orchestrator.generate("a wooden bench"))

        assert states[0] is RequestState.PREVIEW_PENDING
        assert RequestState.PREVIEW_IN_PROGRESS in states
        assert states.index(RequestState.PREVIEW_SUCCEEDED) < states.index(RequestState.REFINE_PENDING)
        assert states[-1] is RequestState.DONE

    def test_failing_update_callback_does_not_break_generation(self):
        def explode(request):
            raise RuntimeError("listener bug")

        orchestrator = make_orchestrator(ScriptedClient(), on_update=explode)
        result = run(orchestrator.generate("a wooden bench"))
        assert result.refine_task_id == REFINE_ID


class TestMaterializationFallback:
    def test_fetch_failure_uses_remote_url(self):
        client = ScriptedClient()
        materializer = FailingMaterializer()
        orchestrator = make_orchestrator(client, materializer=materializer)

        result = run(orchestrator.generate("a wooden bench"))

        assert materializer.calls == [MODEL_URL]
        assert result.artifact_ref == MODEL_URL
        assert result.materialized is False
        request = orchestrator.get_request(PREVIEW_ID)
        assert request.status_message == 'Model "a wooden bench" ready. (Using remote URL)'


class TestFailures:
    """Stage failures surface with the stage that failed"""

    def test_empty_prompt_is_rejected_before_any_call(self):
        client = ScriptedClient()
        orchestrator = make_orchestrator(client)

        with pytest.raises(ValidationError):
            run(orchestrator.submit("   "))
        assert client.preview_calls == []

    def test_preview_creation_failure_raises(self):
        client = ScriptedClient(preview_error=ServiceUnavailable("Meshy API error: 500", status_code=500))
        orchestrator = make_orchestrator(client)

        with pytest.raises(ServiceUnavailable):
            run(orchestrator.submit("a wooden bench"))
        assert orchestrator.list_requests() == []

    def test_preview_failure_reports_preview_stage(self):
        client = ScriptedClient({PREVIEW_ID: [preview(TaskStatus.FAILED, error="content policy")]})
        orchestrator = make_orchestrator(client)

        with pytest.raises(GenerationFailed) as excinfo:
            run(orchestrator.generate("a wooden bench"))

        assert excinfo.value.stage == "preview"
        request = orchestrator.get_request(PREVIEW_ID)
        assert request.failed_stage is Stage.PREVIEW
        assert request.error == "content policy"
        assert request.status_message == "Preview failed. Please try again."
        assert client.refine_calls == []

    def test_refine_failure_reports_refine_stage(self):
        scripts = {
            PREVIEW_ID: [preview(TaskStatus.SUCCEEDED, 100)],
            REFINE_ID: [refine(TaskStatus.FAILED)],
        }
        orchestrator = make_orchestrator(ScriptedClient(scripts))

        with pytest.raises(GenerationFailed) as excinfo:
            run(orchestrator.generate("a wooden bench"))

        assert excinfo.value.stage == "refine"
        assert orchestrator.get_request(PREVIEW_ID).status_message == "Refine failed. Please try again."

    def test_refine_creation_failure_fails_refine_stage(self):
        client = ScriptedClient(
            {PREVIEW_ID: [preview(TaskStatus.SUCCEEDED, 100)]},
            refine_error=ServiceUnavailable("Meshy API error: 503", status_code=503),
        )
        orchestrator = make_orchestrator(client)

        with pytest.raises(GenerationFailed) as excinfo:
            run(orchestrator.generate("a wooden bench"))

        assert excinfo.value.stage == "refine"
        assert orchestrator.armed_schedules() == []

    def test_refine_success_without_model_url_fails(self):
        scripts = {
            PREVIEW_ID: [preview(TaskStatus.SUCCEEDED, 100)],
            REFINE_ID: [refine(TaskStatus.SUCCEEDED, 100, urls={})],
        }
        orchestrator = make_orchestrator(ScriptedClient(scripts))

        with pytest.raises(GenerationFailed) as excinfo:
            run(orchestrator.generate("a wooden bench"))
        assert excinfo.value.stage == "refine"

    def test_not_found_is_terminal(self):
        client = ScriptedClient({PREVIEW_ID: [NotFound("Task preview-1 not found", status_code=404)]})
        orchestrator = make_orchestrator(client)

        with pytest.raises(GenerationFailed) as excinfo:
            run(orchestrator.generate("a wooden bench"))

        assert excinfo.value.stage == "preview"
        assert client.poll_calls == [PREVIEW_ID]

    def test_transport_error_is_retried_on_next_tick(self):
        scripts = {
            PREVIEW_ID: [
                TransportError("connection reset"),
                preview(TaskStatus.SUCCEEDED, 100),
            ],
            REFINE_ID: [refine(TaskStatus.SUCCEEDED, 100)],
        }
        client = ScriptedClient(scripts)
        orchestrator = make_orchestrator(client)

        result = run(orchestrator.generate("a wooden bench"))

        assert result.artifact_ref == MODEL_URL
        assert client.poll_calls[:2] == [PREVIEW_ID, PREVIEW_ID]

    def test_max_wait_fails_stuck_stage(self):
        client = ScriptedClient({PREVIEW_ID: [preview(TaskStatus.IN_PROGRESS, 10)]})
        orchestrator = make_orchestrator(client, max_wait_seconds=0.05)

        with pytest.raises(GenerationFailed) as excinfo:
            run(orchestrator.generate("a wooden bench"))

        assert excinfo.value.stage == "preview"
        assert "did not finish within" in orchestrator.get_request(PREVIEW_ID).error


class TestCancellation:
    def test_cancel_after_preview_never_starts_refine(self):
        client = ScriptedClient()
        reported = []

        def on_update(request):
            reported.append((request.state, request.stage))
            if request.state is RequestState.PREVIEW_SUCCEEDED:
                orchestrator.cancel(request.request_id)

        orchestrator = make_orchestrator(client, on_update=on_update)

        with pytest.raises(RequestCancelled):
            run(orchestrator.generate("a wooden bench"))

        assert client.refine_calls == []
        assert REFINE_ID not in client.poll_calls
        assert all(stage is not Stage.REFINE for _, stage in reported)
        request = orchestrator.get_request(PREVIEW_ID)
        assert request.state is RequestState.CANCELLED
        assert request.status_message == "Generation cancelled."

    def test_cancel_before_first_refine_poll_reports_no_refine_status(self):
        client = ScriptedClient()
        reported = []

        def on_update(request):
            reported.append(request.state)
            if request.state is RequestState.REFINE_PENDING:
                orchestrator.cancel(request.request_id)

        orchestrator = make_orchestrator(client, on_update=on_update)

        with pytest.raises(RequestCancelled):
            run(orchestrator.generate("a wooden bench"))

        assert [call[0] for call in client.refine_calls] == [PREVIEW_ID]
        assert REFINE_ID not in client.poll_calls
        assert RequestState.REFINE_IN_PROGRESS not in reported
        assert reported[-1] is RequestState.CANCELLED
        assert orchestrator.armed_schedules() == []
        assert orchestrator.get_request(PREVIEW_ID).result is None

    def test_cancel_while_polling_stops_schedule(self):
        client = ScriptedClient({PREVIEW_ID: [preview(TaskStatus.IN_PROGRESS, 20)]})

        async def scenario():
            orchestrator = make_orchestrator(client)
            request_id = await orchestrator.submit("a wooden bench")
            await asyncio.sleep(0.05)
            assert orchestrator.cancel(request_id) is True
            polls_at_cancel = len(client.poll_calls)
            await asyncio.sleep(0.05)
            with pytest.raises(RequestCancelled):
                await orchestrator.wait(request_id)
            return orchestrator, polls_at_cancel

        orchestrator, polls_at_cancel = run(scenario())
        # At most one poll that was already in flight may still land
        assert len(client.poll_calls) <= polls_at_cancel + 1
        assert orchestrator.armed_schedules() == []
        assert orchestrator.get_request(PREVIEW_ID).result is None

    def test_cancel_unknown_or_finished_request(self):
        orchestrator = make_orchestrator(ScriptedClient())
        assert orchestrator.cancel("missing") is False

        run(orchestrator.generate("a wooden bench"))
        assert orchestrator.cancel(PREVIEW_ID) is False
        assert orchestrator.get_request(PREVIEW_ID).succeeded


class TestPoll:
    def test_terminal_status_is_cached(self):
        client = ScriptedClient()
        orchestrator = make_orchestrator(client)

        async def scenario():
            await orchestrator.generate("a wooden bench")
            calls_before = len(client.poll_calls)
            task = await orchestrator.poll(REFINE_ID)
            return calls_before, task

        calls_before, task = run(scenario())
        assert task.status is TaskStatus.SUCCEEDED
        assert task.primary_artifact_url() == MODEL_URL
        assert len(client.poll_calls) == calls_before

    def test_non_terminal_status_is_fetched_each_time(self):
        client = ScriptedClient({"other": [make_task("other", Stage.PREVIEW, TaskStatus.IN_PROGRESS, 5)]})
        orchestrator = make_orchestrator(client)

        async def scenario():
            await orchestrator.poll("other")
            await orchestrator.poll("other")

        run(scenario())
        assert client.poll_calls == ["other", "other"]

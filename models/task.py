"""Generation task and request models"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional


class Stage(str, Enum):
    PREVIEW = "preview"
    REFINE = "refine"

    @property
    def label(self) -> str:
        return self.value.capitalize()


class TaskStatus(str, Enum):
    PENDING = "PENDING"
    IN_PROGRESS = "IN_PROGRESS"
    SUCCEEDED = "SUCCEEDED"
    FAILED = "FAILED"

    @property
    def is_terminal(self) -> bool:
        return self in (TaskStatus.SUCCEEDED, TaskStatus.FAILED)

    @classmethod
    def from_remote(cls, value: Any) -> "TaskStatus":
        """Map a remote status string onto the four local states"""
        normalized = str(value or "").strip().upper()
        if normalized in ("CANCELED", "CANCELLED", "EXPIRED"):
            return cls.FAILED
        try:
            return cls(normalized)
        except ValueError:
            return cls.PENDING


class RequestState(str, Enum):
    IDLE = "idle"
    PREVIEW_PENDING = "preview_pending"
    PREVIEW_IN_PROGRESS = "preview_in_progress"
    PREVIEW_SUCCEEDED = "preview_succeeded"
    REFINE_PENDING = "refine_pending"
    REFINE_IN_PROGRESS = "refine_in_progress"
    DONE = "done"
    CANCELLED = "cancelled"

    @property
    def is_finished(self) -> bool:
        return self in (RequestState.DONE, RequestState.CANCELLED)


# Preferred order when picking the primary artifact out of model_urls
ARTIFACT_FORMAT_PREFERENCE = ("glb", "fbx", "obj", "usdz")


def clamp_progress(value: Any) -> int:
    try:
        progress = int(value or 0)
    except (TypeError, ValueError):
        return 0
    return max(0, min(100, progress))


@dataclass
class GenerationTask:
    """One remote-tracked unit of generation work"""
    task_id: str
    prompt: str
    stage: Stage
    status: TaskStatus = TaskStatus.PENDING
    progress: int = 0
    preceding_task_id: Optional[str] = None  # Set on refine tasks only
    artifact_urls: Dict[str, str] = field(default_factory=dict)
    thumbnail_url: Optional[str] = None
    error_message: Optional[str] = None

    def primary_artifact_url(self) -> Optional[str]:
        for fmt in ARTIFACT_FORMAT_PREFERENCE:
            if self.artifact_urls.get(fmt):
                return self.artifact_urls[fmt]
        for url in self.artifact_urls.values():
            if url:
                return url
        return None

    def apply_status(self, other: "GenerationTask"):
        """Refresh mutable fields from a poll response"""
        self.status = other.status
        self.progress = other.progress
        self.artifact_urls = dict(other.artifact_urls)
        self.thumbnail_url = other.thumbnail_url
        self.error_message = other.error_message


@dataclass
class GenerationResult:
    """Terminal output of a successful request"""
    artifact_ref: str
    thumbnail_ref: Optional[str]
    prompt: str
    preview_task_id: str
    refine_task_id: str
    materialized: bool  # False when artifact_ref is the remote URL fallback

    def to_dict(self) -> Dict[str, Any]:
        return {
            "artifact_ref": self.artifact_ref,
            "thumbnail_ref": self.thumbnail_ref,
            "prompt": self.prompt,
            "preview_task_id": self.preview_task_id,
            "refine_task_id": self.refine_task_id,
            "materialized": self.materialized,
        }


@dataclass
class GenerationRequest:
    """Authoritative state of one logical prompt-to-asset request"""
    request_id: str
    prompt: str
    state: RequestState = RequestState.IDLE
    preview_task: Optional[GenerationTask] = None
    refine_task: Optional[GenerationTask] = None
    failed_stage: Optional[Stage] = None
    error: Optional[str] = None
    result: Optional[GenerationResult] = None
    options: Dict[str, Any] = field(default_factory=dict)  # Preview options sent with the request

    @property
    def active(self) -> bool:
        return not self.state.is_finished

    @property
    def cancelled(self) -> bool:
        return self.state is RequestState.CANCELLED

    @property
    def succeeded(self) -> bool:
        return self.state is RequestState.DONE and self.result is not None

    @property
    def current_task(self) -> Optional[GenerationTask]:
        return self.refine_task or self.preview_task

    @property
    def stage(self) -> Optional[Stage]:
        task = self.current_task
        return task.stage if task else None

    @property
    def status_message(self) -> str:
        """Human-readable status derived from the current state"""
        if self.state is RequestState.IDLE:
            return "Sending request..."
        if self.state is RequestState.CANCELLED:
            return "Generation cancelled."
        if self.state is RequestState.DONE:
            if self.result is None:
                stage = self.failed_stage.label if self.failed_stage else "Generation"
                return f"{stage} failed. Please try again."
            if self.result.materialized:
                return f'Model "{self.prompt}" ready.\n\nSaved to: {self.result.artifact_ref}'
            return f'Model "{self.prompt}" ready. (Using remote URL)'
        if self.state is RequestState.PREVIEW_SUCCEEDED:
            return "Preview complete. Starting refine..."
        task = self.current_task
        progress = task.progress if task else 0
        if self.stage is Stage.REFINE and task.status is TaskStatus.SUCCEEDED:
            return "Downloading model..."
        if self.stage is Stage.REFINE:
            return f"Refine: Applying textures... {progress}%"
        return f"Preview: Generating mesh... {progress}%"

    def to_dict(self) -> Dict[str, Any]:
        task = self.current_task
        return {
            "request_id": self.request_id,
            "prompt": self.prompt,
            "state": self.state.value,
            "stage": self.stage.value if self.stage else None,
            "status": task.status.value if task else None,
            "progress": task.progress if task else 0,
            "preview_task_id": self.preview_task.task_id if self.preview_task else None,
            "refine_task_id": self.refine_task.task_id if self.refine_task else None,
            "failed_stage": self.failed_stage.value if self.failed_stage else None,
            "error": self.error,
            "message": self.status_message,
            "result": self.result.to_dict() if self.result else None,
        }

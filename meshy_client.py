import logging
from typing import Any, Dict, Optional

import requests

from errors import (
    ConfigurationError,
    NotFound,
    ParseError,
    ServiceError,
    ServiceUnavailable,
    TransportError,
)
from models.task import GenerationTask, Stage, TaskStatus, clamp_progress

logger = logging.getLogger("MeshyClient")

DEFAULT_BASE_URL = "https://api.meshy.ai/openapi/v2"
MAX_PROMPT_CHARS = 600


class MeshyClient:
    def __init__(self, api_key: Optional[str], base_url: str = DEFAULT_BASE_URL, timeout: Optional[float] = None):
        if not api_key:
            raise ConfigurationError("MESHY_API_KEY not configured")
        if not base_url:
            raise ConfigurationError("Meshy API base URL not configured")
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        # None keeps the original behaviour of waiting on the remote indefinitely
        self.timeout = timeout
        self.session = requests.Session()

    def _headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }

    def create_preview_task(
        self,
        prompt: str,
        art_style: str = "realistic",
        topology: str = "triangle",
        target_polycount: int = 10000,
    ) -> str:
        """Create a geometry-only preview task and return its id"""
        payload = {
            "mode": "preview",
            "prompt": prompt[:MAX_PROMPT_CHARS],
            "art_style": art_style,
            "topology": topology,
            "target_polycount": target_polycount,
        }
        return self._create_task(payload, Stage.PREVIEW)

    def create_refine_task(self, preview_task_id: str, enable_pbr: bool = True) -> str:
        """Create a refine task that textures the given preview"""
        payload = {
            "mode": "refine",
            "preview_task_id": preview_task_id,
            "enable_pbr": enable_pbr,
        }
        return self._create_task(payload, Stage.REFINE)

    def get_task(self, task_id: str, prompt: str = "", stage: Optional[Stage] = None) -> GenerationTask:
        """Fetch the current status of a text-to-3d task"""
        try:
            response = self.session.get(
                f"{self.base_url}/text-to-3d/{task_id}",
                headers=self._headers(),
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            raise TransportError(f"Meshy API unreachable: {e}")

        if response.status_code == 404:
            raise NotFound(f"Task {task_id} not found", status_code=404)
        if not response.ok:
            logger.error(f"Meshy API error: {response.status_code} - {response.text}")
            raise ServiceError(f"Meshy API error: {response.status_code}", status_code=response.status_code)

        try:
            data = response.json()
        except ValueError:
            raise ParseError(f"Meshy API returned non-JSON status for task {task_id}")
        return task_from_response(data, prompt=prompt, stage=stage)

    def _create_task(self, payload: Dict[str, Any], stage: Stage) -> str:
        logger.info(f"Creating {stage.value} task...")
        try:
            response = self.session.post(
                f"{self.base_url}/text-to-3d",
                json=payload,
                headers=self._headers(),
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            raise ServiceUnavailable(f"Meshy API unreachable: {e}")

        if not response.ok:
            logger.error(f"Meshy API {stage.value} error: {response.status_code} - {response.text}")
            raise ServiceUnavailable(f"Meshy API error: {response.status_code}", status_code=response.status_code)

        try:
            task_id = response.json()["result"]
        except (ValueError, KeyError, TypeError):
            raise ServiceUnavailable(f"Meshy API returned no task id for {stage.value}")
        if not task_id:
            raise ServiceUnavailable(f"Meshy API returned no task id for {stage.value}")
        logger.info(f"Created {stage.value} task {task_id}")
        return str(task_id)


def task_from_response(data: Dict[str, Any], prompt: str = "", stage: Optional[Stage] = None) -> GenerationTask:
    """Build a GenerationTask from a text-to-3d status payload"""
    if not isinstance(data, dict) or not data.get("id"):
        raise ParseError("Task status response has no id")

    preceding = data.get("preview_task_id")
    if stage is None:
        task_type = str(data.get("type") or "")
        stage = Stage.REFINE if (preceding or task_type.endswith("refine")) else Stage.PREVIEW

    model_urls = data.get("model_urls") or {}
    if not isinstance(model_urls, dict):
        raise ParseError("model_urls must be an object")

    error = data.get("task_error") or {}
    error_message = error.get("message") if isinstance(error, dict) else str(error)

    return GenerationTask(
        task_id=str(data["id"]),
        prompt=prompt or str(data.get("prompt") or ""),
        stage=stage,
        status=TaskStatus.from_remote(data.get("status")),
        progress=clamp_progress(data.get("progress")),
        preceding_task_id=preceding,
        artifact_urls={fmt: url for fmt, url in model_urls.items() if url},
        thumbnail_url=data.get("thumbnail_url") or None,
        error_message=error_message or None,
    )

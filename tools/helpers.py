"""Shared helper functions for tool implementations"""

from typing import Any, Dict

from models.task import GenerationRequest


def error_response(exc: Exception) -> Dict[str, Any]:
    response: Dict[str, Any] = {"error": str(exc), "error_type": type(exc).__name__}
    status_code = getattr(exc, "status_code", None)
    if status_code is not None:
        response["status_code"] = status_code
    stage = getattr(exc, "stage", None)
    if stage:
        response["stage"] = stage
    return response


def generation_parameters(request: GenerationRequest) -> Dict[str, Any]:
    """Record of how a finished request was produced, stored verbatim with the asset"""
    params: Dict[str, Any] = {
        "source": "meshy",
        "prompt": request.prompt,
        "preview_task_id": request.preview_task.task_id if request.preview_task else None,
        "refine_task_id": request.refine_task.task_id if request.refine_task else None,
    }
    if request.result is not None:
        params["remote_artifact"] = not request.result.materialized
    if request.options:
        params["preview_options"] = dict(request.options)
    return params

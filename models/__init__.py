"""Data models for Meshy MCP Server"""

from models.asset import SavedAsset
from models.mesh import MeshData
from models.task import (
    GenerationRequest,
    GenerationResult,
    GenerationTask,
    RequestState,
    Stage,
    TaskStatus,
)

__all__ = [
    "GenerationRequest",
    "GenerationResult",
    "GenerationTask",
    "MeshData",
    "RequestState",
    "SavedAsset",
    "Stage",
    "TaskStatus",
]

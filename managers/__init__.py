"""Manager classes for Meshy MCP Server"""

from managers.artifact_materializer import ArtifactMaterializer
from managers.asset_library import AssetLibrary
from managers.defaults_manager import DefaultsManager
from managers.request_log import RequestLog
from managers.task_orchestrator import PollingSchedule, TaskOrchestrator

__all__ = [
    "ArtifactMaterializer",
    "AssetLibrary",
    "DefaultsManager",
    "PollingSchedule",
    "RequestLog",
    "TaskOrchestrator",
]

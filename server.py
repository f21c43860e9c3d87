import logging
import os
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncIterator, Optional

from mcp.server.fastmcp import FastMCP

from managers.artifact_materializer import ArtifactMaterializer
from managers.asset_library import AssetLibrary
from managers.defaults_manager import DefaultsManager, get_api_key
from managers.request_log import RequestLog
from managers.task_orchestrator import TaskOrchestrator
from meshy_client import DEFAULT_BASE_URL, MeshyClient
from tools.asset import register_asset_tools
from tools.configuration import register_configuration_tools
from tools.generation import register_generation_tools
from tools.library import register_library_tools
from tools.mesh import register_mesh_tools

# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger("MCP_Server")


class AppContext:
    """Shared handles passed to every tool module"""

    def __init__(self, defaults_manager: DefaultsManager):
        self.defaults_manager = defaults_manager
        storage = defaults_manager.get_all_defaults()["storage"]
        self.materializer = ArtifactMaterializer(storage["assets_dir"], url_prefix=storage["url_prefix"])
        self.asset_library = AssetLibrary(storage["library_path"], artifact_exists=self.artifact_exists)
        self.request_log = RequestLog(storage["data_dir"])
        self._orchestrator: Optional[TaskOrchestrator] = None

    def artifact_exists(self, reference: str) -> bool:
        local = self.materializer.resolve_reference(reference)
        if local is not None:
            return local.is_file()
        return Path(reference).is_file()

    def get_orchestrator(self) -> TaskOrchestrator:
        """Build the orchestrator on first use so a missing key only fails generation tools.

        Raises:
            ConfigurationError: If MESHY_API_KEY is not set
        """
        if self._orchestrator is None:
            client = MeshyClient(
                get_api_key("MESHY_API_KEY"),
                base_url=os.getenv("MESHY_API_BASE", DEFAULT_BASE_URL),
            )
            self._orchestrator = TaskOrchestrator(client, materializer=self.materializer)
            logger.info(f"Meshy client initialized for {client.base_url}")

        polling = self.defaults_manager.get_all_defaults()["polling"]
        self._orchestrator.poll_interval = float(polling["interval_seconds"])
        self._orchestrator.max_wait_seconds = polling["max_wait_seconds"]
        self._orchestrator.refine_options = self.defaults_manager.get_namespace("refine")
        return self._orchestrator


app_context = AppContext(DefaultsManager())


@asynccontextmanager
async def app_lifespan(server: FastMCP) -> AsyncIterator[AppContext]:
    """Manage application lifecycle"""
    logger.info("Starting MCP server lifecycle...")
    try:
        yield app_context
    finally:
        if app_context._orchestrator is not None:
            for request in app_context._orchestrator.list_requests():
                app_context._orchestrator.cancel(request.request_id)
        logger.info("Shutting down MCP server")


mcp = FastMCP("Meshy_MCP_Server", lifespan=app_lifespan)

register_generation_tools(mcp, app_context)
register_library_tools(mcp, app_context)
register_asset_tools(mcp, app_context)
register_mesh_tools(mcp, app_context)
register_configuration_tools(mcp, app_context.defaults_manager)

if __name__ == "__main__":
    mcp.run(transport="streamable-http")

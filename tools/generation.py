"""Two-stage 3D generation tools"""

import logging
from typing import Optional

from mcp.server.fastmcp import FastMCP

from errors import GenerationFailed, MeshyError, RequestCancelled
from tools.helpers import error_response

logger = logging.getLogger("MCP_Server")


def register_generation_tools(mcp: FastMCP, app_context):
    """Register preview/refine generation tools with the MCP server"""

    @mcp.tool()
    async def generate_3d_asset(
        prompt: str,
        art_style: Optional[str] = None,
        topology: Optional[str] = None,
        target_polycount: Optional[int] = None,
        wait: bool = False,
    ) -> dict:
        """Generate a textured 3D model from a text description.

        Runs a fast geometry-only Preview (~30s) and then a Refine (~1min) that
        applies textures. The finished model is downloaded into the local
        assets directory; if the download fails the remote URL is returned
        instead.

        Args:
            prompt: Description of the object (e.g. "a wooden bench"); truncated to 600 chars
            art_style: "realistic" or "sculpture" (default from get_defaults)
            topology: "triangle" or "quad"
            target_polycount: Polygon budget for the preview mesh
            wait: If True, block until the request finishes. Otherwise return
                immediately and use get_generation_status(request_id).

        Returns:
            Request status with request_id, stage, progress, message and,
            when finished, result.artifact_ref / result.thumbnail_ref.
        """
        try:
            orchestrator = app_context.get_orchestrator()
            options = app_context.defaults_manager.get_namespace(
                "preview",
                art_style=art_style,
                topology=topology,
                target_polycount=target_polycount,
            )
            request_id = await orchestrator.submit(prompt, **options)
        except MeshyError as exc:
            logger.warning(f"Could not start generation: {exc}")
            return error_response(exc)

        if wait:
            try:
                await orchestrator.wait(request_id)
            except (GenerationFailed, RequestCancelled):
                pass  # Reported through the request state below
        return orchestrator.get_request(request_id).to_dict()

    @mcp.tool()
    def get_generation_status(request_id: str) -> dict:
        """Get the current stage, progress and status message of a generation request.

        Args:
            request_id: ID returned by generate_3d_asset
        """
        try:
            orchestrator = app_context.get_orchestrator()
        except MeshyError as exc:
            return error_response(exc)
        request = orchestrator.get_request(request_id)
        if request is None:
            return {"error": f"Generation request {request_id} not found (requests are kept for this session only)."}
        return request.to_dict()

    @mcp.tool()
    def cancel_generation(request_id: str) -> dict:
        """Stop tracking a generation request.

        Polling stops immediately. The remote task cannot be retracted and
        keeps running on the service; its result is ignored.
        """
        try:
            orchestrator = app_context.get_orchestrator()
        except MeshyError as exc:
            return error_response(exc)
        cancelled = orchestrator.cancel(request_id)
        request = orchestrator.get_request(request_id)
        if request is None:
            return {"error": f"Generation request {request_id} not found"}
        return {"cancelled": cancelled, **request.to_dict()}

    @mcp.tool()
    def list_generations() -> dict:
        """List generation requests started in this session"""
        try:
            orchestrator = app_context.get_orchestrator()
        except MeshyError as exc:
            return error_response(exc)
        requests = [request.to_dict() for request in orchestrator.list_requests()]
        return {"requests": requests, "count": len(requests)}

"""Direct mesh synthesis and offline asset request tools"""

import logging
from typing import Optional

from mcp.server.fastmcp import FastMCP

from errors import MeshyError
from managers.defaults_manager import get_api_key
from mesh_synthesizer import MeshSynthesizer
from tools.helpers import error_response

logger = logging.getLogger("MCP_Server")


def register_mesh_tools(mcp: FastMCP, app_context):
    """Register single-shot mesh tools and the pending request log"""
    request_log = app_context.request_log

    @mcp.tool()
    def generate_mesh(description: str, request_id: Optional[str] = None) -> dict:
        """Generate a small explicit mesh (vertices, indices, normals, colors) in one call.

        This is the fast path for simple props; use generate_3d_asset for
        textured models.

        Args:
            description: Object to build (e.g. "red mushroom")
            request_id: Optional pending request to answer with this mesh
        """
        try:
            synthesizer = MeshSynthesizer(get_api_key("ANTHROPIC_API_KEY"))
            mesh = synthesizer.generate(description)
        except MeshyError as exc:
            logger.warning(f"Mesh generation failed: {exc}")
            return error_response(exc)

        message = mesh.summary()
        if request_id:
            request_log.add_response(request_id, message, mesh_data=mesh.to_dict())
            request_log.mark_processed(request_id)
        return {
            "success": True,
            "message": message,
            "vertex_count": mesh.vertex_count,
            "triangle_count": mesh.triangle_count,
            "mesh_data": mesh.to_dict(),
        }

    @mcp.tool()
    def submit_asset_request(message: str) -> dict:
        """Queue an asset request for an operator to handle later"""
        try:
            entry = request_log.add_request(message)
        except MeshyError as exc:
            return error_response(exc)
        return {"success": True, "request_id": entry["id"], "message": "Request saved."}

    @mcp.tool()
    def list_pending_requests() -> dict:
        """List queued asset requests that have not been answered"""
        pending = request_log.pending()
        return {"requests": pending, "count": len(pending)}

    @mcp.tool()
    def get_request_response(request_id: Optional[str] = None, after: Optional[str] = None) -> dict:
        """Get the response to a queued request.

        Args:
            request_id: Return the response for this request
            after: ISO timestamp; return all responses newer than it
        """
        if request_id:
            return {"response": request_log.find_response(request_id)}
        if after:
            return {"responses": request_log.responses_after(after)}
        return {"response": request_log.latest_response()}

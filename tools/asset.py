"""Thumbnail viewing tools"""

import logging
from typing import Optional

from mcp.server.fastmcp import FastMCP, Image as FastMCPImage

from asset_processor import encode_thumbnail, fetch_asset_bytes, get_cache_key
from errors import MeshyError

logger = logging.getLogger("MCP_Server")


def register_asset_tools(mcp: FastMCP, app_context):
    """Register asset viewing tools with the MCP server"""

    @mcp.tool()
    def view_thumbnail(
        request_id: Optional[str] = None,
        asset_id: Optional[str] = None,
        max_dim: int = 256,
    ):
        """View the preview image of a generated model inline in chat.

        Args:
            request_id: Finished generation request (from generate_3d_asset)
            asset_id: Saved asset (from save_asset / list_assets)
            max_dim: Maximum thumbnail dimension in pixels (capped at 512)

        Returns:
            Inline image, or an error dict when no thumbnail is available.
        """
        thumbnail_url = None
        if asset_id:
            record = app_context.asset_library.get(asset_id)
            if record is None:
                return {"error": f"Asset {asset_id} not found"}
            thumbnail_url = record.thumbnail
        elif request_id:
            try:
                request = app_context.get_orchestrator().get_request(request_id)
            except MeshyError as exc:
                return {"error": str(exc)}
            if request is None:
                return {"error": f"Generation request {request_id} not found"}
            if request.result is not None:
                thumbnail_url = request.result.thumbnail_ref
            elif request.current_task is not None:
                thumbnail_url = request.current_task.thumbnail_url
        else:
            return {"error": "Provide request_id or asset_id"}

        if not thumbnail_url:
            return {"error": "No thumbnail available for this model"}

        max_dim = min(max(16, max_dim), 512)
        try:
            image_bytes = fetch_asset_bytes(thumbnail_url)
            encoded = encode_thumbnail(
                image_bytes,
                max_dim=max_dim,
                cache_key=get_cache_key(thumbnail_url, max_dim, 70),
            )
        except MeshyError as e:
            logger.warning(f"Failed to fetch thumbnail {thumbnail_url}: {e}")
            return {"error": str(e), "thumbnail_url": thumbnail_url}
        except ValueError as e:
            logger.warning(f"Refusing to inline thumbnail {thumbnail_url}: {e}")
            return {"error": f"Could not inline thumbnail: {e}", "thumbnail_url": thumbnail_url}

        return FastMCPImage(data=encoded.raw_bytes, format="webp")

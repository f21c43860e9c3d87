"""Asset library tools"""

import logging
from typing import Any, Dict, List, Optional

from mcp.server.fastmcp import FastMCP

from errors import MeshyError
from tools.helpers import error_response, generation_parameters

logger = logging.getLogger("MCP_Server")

DEFAULT_TAGS = ("meshy", "custom")


def register_library_tools(mcp: FastMCP, app_context):
    """Register asset library tools with the MCP server"""
    library = app_context.asset_library

    @mcp.tool()
    def save_asset(
        name: str,
        request_id: Optional[str] = None,
        artifact_path: Optional[str] = None,
        description: str = "",
        asset_kind: str = "custom",
        tags: Optional[List[str]] = None,
        generation_parameters_override: Optional[Dict[str, Any]] = None,
    ) -> dict:
        """Save a finished model to the asset library.

        Either pass the request_id of a finished generation (its artifact,
        thumbnail and prompt are used) or an explicit artifact_path.

        Args:
            name: Display name for the asset
            request_id: Finished generation request to save
            artifact_path: Local reference ("/assets/x.glb") or URL, when not saving a request
            description: Free text; defaults to the generation prompt
            asset_kind: Catalog category (e.g. "rock", "tree", "custom")
            tags: Tags for search; defaults to ["meshy", "custom"]
            generation_parameters_override: Stored verbatim instead of the request's parameters
        """
        thumbnail = None
        params = dict(generation_parameters_override or {})
        if request_id:
            try:
                request = app_context.get_orchestrator().get_request(request_id)
            except MeshyError as exc:
                return error_response(exc)
            if request is None or not request.succeeded:
                return {"error": f"Generation request {request_id} has no finished model to save"}
            artifact_path = request.result.artifact_ref
            thumbnail = request.result.thumbnail_ref
            description = description or request.prompt
            if not generation_parameters_override:
                params = generation_parameters(request)
        if not artifact_path:
            return {"error": "Provide request_id or artifact_path"}

        try:
            record = library.save(
                name=name,
                artifact_path=artifact_path,
                description=description,
                asset_kind=asset_kind,
                generation_parameters=params,
                tags=tags if tags is not None else DEFAULT_TAGS,
                thumbnail=thumbnail,
            )
        except (MeshyError, OSError) as exc:
            logger.error(f"Failed to save asset {name!r}: {exc}")
            return error_response(exc)
        return {"success": True, "message": f'Saved as "{record.name}"', "asset": record.to_dict()}

    @mcp.tool()
    def list_assets(query: Optional[str] = None, asset_kind: Optional[str] = None) -> dict:
        """List saved assets in insertion order, optionally filtered.

        Args:
            query: Case-insensitive match on name, description or tags
            asset_kind: Only assets of this kind
        """
        assets = library.search(query) if query else library.list()
        if asset_kind:
            assets = [asset for asset in assets if asset.asset_kind == asset_kind]
        return {"assets": [asset.to_dict() for asset in assets], "count": len(assets)}

    @mcp.tool()
    def get_asset(asset_id: str) -> dict:
        """Get one saved asset by ID"""
        record = library.get(asset_id)
        if record is None:
            return {"error": f"Asset {asset_id} not found"}
        return record.to_dict()

    @mcp.tool()
    def delete_asset(asset_id: str) -> dict:
        """Delete a saved asset. Deleting an unknown ID is not an error."""
        try:
            deleted = library.delete(asset_id)
        except OSError as exc:
            logger.error(f"Failed to delete asset {asset_id}: {exc}")
            return error_response(exc)
        return {"deleted": deleted, "asset_id": asset_id}

    @mcp.tool()
    def export_asset(asset_id: str) -> dict:
        """Export one saved asset as portable JSON text"""
        serialized = library.export_one(asset_id)
        if serialized is None:
            return {"error": f"Asset {asset_id} not found"}
        return {"asset_id": asset_id, "data": serialized}

    @mcp.tool()
    def import_asset(data: str) -> dict:
        """Import an exported asset. A new ID is always assigned."""
        try:
            record = library.import_one(data)
        except OSError as exc:
            logger.error(f"Failed to import asset: {exc}")
            return error_response(exc)
        if record is None:
            return {"error": "Invalid asset format"}
        return {"success": True, "asset": record.to_dict()}

    @mcp.tool()
    def update_asset(
        asset_id: str,
        name: Optional[str] = None,
        description: Optional[str] = None,
        asset_kind: Optional[str] = None,
        tags: Optional[List[str]] = None,
    ) -> dict:
        """Change the name, description, kind or tags of a saved asset"""
        changes = {
            key: value
            for key, value in (("name", name), ("description", description), ("asset_kind", asset_kind), ("tags", tags))
            if value is not None
        }
        if not changes:
            return {"error": "Nothing to update"}
        try:
            record = library.update(asset_id, **changes)
        except (MeshyError, OSError) as exc:
            return error_response(exc)
        if record is None:
            return {"error": f"Asset {asset_id} not found"}
        return {"success": True, "asset": record.to_dict()}

    @mcp.tool()
    def export_library() -> dict:
        """Export every saved asset as one JSON document"""
        return {"data": library.export_all(), "count": len(library.list())}

    @mcp.tool()
    def import_library(data: str, merge: bool = True) -> dict:
        """Import an exported library.

        Args:
            data: Output of export_library
            merge: Keep existing assets (True) or replace the whole library (False)
        """
        try:
            imported = library.import_all(data, merge=merge)
        except (MeshyError, OSError) as exc:
            return error_response(exc)
        logger.info(f"Imported {imported} assets (merge={merge})")
        return {"success": True, "imported": imported, "count": len(library.list())}

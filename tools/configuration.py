"""Configuration tools for Meshy MCP Server"""

from typing import Any, Dict, Optional

from mcp.server.fastmcp import FastMCP


def register_configuration_tools(mcp: FastMCP, defaults_manager):
    """Register configuration tools with the MCP server"""

    @mcp.tool()
    def get_defaults() -> dict:
        """Get current effective defaults for preview, refine, polling and storage.

        Returns merged defaults from all sources (runtime, config, env, hardcoded).
        """
        return defaults_manager.get_all_defaults()

    @mcp.tool()
    def set_defaults(
        preview: Optional[Dict[str, Any]] = None,
        refine: Optional[Dict[str, Any]] = None,
        polling: Optional[Dict[str, Any]] = None,
        persist: bool = False,
    ) -> dict:
        """Set runtime defaults for generation.

        Args:
            preview: e.g. {"art_style": "sculpture", "target_polycount": 20000}
            refine: e.g. {"enable_pbr": false}
            polling: e.g. {"interval_seconds": 5, "max_wait_seconds": 600}
            persist: If True, also write to ~/.config/meshy-mcp/config.json

        Storage paths are read at startup and can only be changed in the
        config file or environment.
        """
        results = {}
        errors = []

        for namespace, values in (("preview", preview), ("refine", refine), ("polling", polling)):
            if not values:
                continue
            result = defaults_manager.set_defaults(namespace, values)
            if "error" in result or "errors" in result:
                errors.extend(result.get("errors", [result.get("error")]))
                continue
            results[namespace] = result
            if persist:
                persist_result = defaults_manager.persist_defaults(namespace, values)
                if "error" in persist_result:
                    errors.append(f"Failed to persist {namespace} defaults: {persist_result['error']}")

        if errors:
            return {"success": False, "errors": errors}

        return {"success": True, "updated": results}

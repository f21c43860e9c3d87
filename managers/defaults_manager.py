"""Defaults management for generation, polling and storage settings"""

import json
import logging
import os
from pathlib import Path
from typing import Any, Dict, Optional

from errors import ConfigurationError

logger = logging.getLogger("MCP_Server")

# Configuration paths
CONFIG_DIR = Path.home() / ".config" / "meshy-mcp"
CONFIG_FILE = CONFIG_DIR / "config.json"

NAMESPACES = ("preview", "refine", "polling", "storage")
ART_STYLES = ("realistic", "sculpture")
TOPOLOGIES = ("triangle", "quad")

# Environment variable -> (namespace, key, type)
ENV_OVERRIDES = {
    "MESHY_MCP_ART_STYLE": ("preview", "art_style", str),
    "MESHY_MCP_POLL_INTERVAL": ("polling", "interval_seconds", float),
    "MESHY_MCP_MAX_WAIT": ("polling", "max_wait_seconds", float),
    "MESHY_MCP_ASSETS_DIR": ("storage", "assets_dir", str),
    "MESHY_MCP_LIBRARY_PATH": ("storage", "library_path", str),
    "MESHY_MCP_DATA_DIR": ("storage", "data_dir", str),
}


class DefaultsManager:
    """Manages default values with precedence: per-call > runtime > config > env > hardcoded"""

    def __init__(self, config_file: Optional[Path] = None):
        self.config_file = Path(config_file) if config_file else CONFIG_FILE
        self._runtime_defaults: Dict[str, Dict[str, Any]] = {ns: {} for ns in NAMESPACES}
        self._config_defaults = self._load_config_defaults()
        self._hardcoded_defaults = {
            "preview": {
                "art_style": "realistic",
                "topology": "triangle",
                "target_polycount": 10000,
            },
            "refine": {
                "enable_pbr": True,  # Roughness, metallic and normal maps
            },
            "polling": {
                "interval_seconds": 3.0,
                "max_wait_seconds": None,  # Poll until terminal
            },
            "storage": {
                "assets_dir": "public/assets",
                "url_prefix": "/assets",
                "library_path": ".meshy-assets/library.json",
                "data_dir": ".meshy-assets",
            },
        }

    def _load_config_defaults(self) -> Dict[str, Dict[str, Any]]:
        """Load defaults from config file"""
        defaults: Dict[str, Dict[str, Any]] = {ns: {} for ns in NAMESPACES}
        if self.config_file.exists():
            try:
                with open(self.config_file, "r", encoding="utf-8") as f:
                    config = json.load(f)
                for ns in NAMESPACES:
                    section = config.get("defaults", {}).get(ns, {})
                    if isinstance(section, dict):
                        defaults[ns] = section
            except (json.JSONDecodeError, IOError, AttributeError) as e:
                logger.warning(f"Failed to load config file {self.config_file}: {e}")
        return defaults

    def _get_env_defaults(self) -> Dict[str, Dict[str, Any]]:
        """Load defaults from environment variables"""
        defaults: Dict[str, Dict[str, Any]] = {ns: {} for ns in NAMESPACES}
        for env_name, (namespace, key, cast) in ENV_OVERRIDES.items():
            raw = os.getenv(env_name)
            if not raw:
                continue
            try:
                defaults[namespace][key] = cast(raw)
            except ValueError:
                logger.warning(f"Ignoring {env_name}={raw!r}: expected {cast.__name__}")
        return defaults

    def get_default(self, namespace: str, key: str, provided_value: Any = None) -> Any:
        """Get default value with precedence: provided > runtime > config > env > hardcoded"""
        if provided_value is not None:
            return provided_value

        if key in self._runtime_defaults.get(namespace, {}):
            return self._runtime_defaults[namespace][key]

        if key in self._config_defaults.get(namespace, {}):
            return self._config_defaults[namespace][key]

        env_defaults = self._get_env_defaults()
        if key in env_defaults.get(namespace, {}):
            return env_defaults[namespace][key]

        return self._hardcoded_defaults.get(namespace, {}).get(key)

    def get_namespace(self, namespace: str, **provided: Any) -> Dict[str, Any]:
        """Effective values for every key of a namespace, per-call values first"""
        merged = self.get_all_defaults()[namespace]
        merged.update({k: v for k, v in provided.items() if v is not None})
        return merged

    def get_all_defaults(self) -> Dict[str, Dict[str, Any]]:
        """Get all effective defaults (merged from all sources)"""
        env_defaults = self._get_env_defaults()
        result = {}
        for namespace in NAMESPACES:
            result[namespace] = self._hardcoded_defaults[namespace].copy()
            result[namespace].update(env_defaults.get(namespace, {}))
            result[namespace].update(self._config_defaults.get(namespace, {}))
            result[namespace].update(self._runtime_defaults.get(namespace, {}))
        return result

    def set_defaults(self, namespace: str, defaults: Dict[str, Any]) -> Dict[str, Any]:
        """Set runtime defaults for a namespace. Returns validation errors if any."""
        if namespace not in NAMESPACES:
            return {"error": f"Invalid namespace: {namespace}. Must be one of {', '.join(NAMESPACES)}"}

        errors = []
        if namespace == "preview":
            if "art_style" in defaults and defaults["art_style"] not in ART_STYLES:
                errors.append(f"Art style '{defaults['art_style']}' not supported. Use one of {ART_STYLES}")
            if "topology" in defaults and defaults["topology"] not in TOPOLOGIES:
                errors.append(f"Topology '{defaults['topology']}' not supported. Use one of {TOPOLOGIES}")
        if namespace == "polling":
            interval = defaults.get("interval_seconds")
            if interval is not None and (not isinstance(interval, (int, float)) or interval <= 0):
                errors.append("interval_seconds must be a positive number")

        if errors:
            return {"errors": errors}

        self._runtime_defaults[namespace].update(defaults)
        return {"success": True, "updated": defaults}

    def persist_defaults(self, namespace: str, defaults: Dict[str, Any]) -> Dict[str, Any]:
        """Persist defaults to config file"""
        self.config_file.parent.mkdir(parents=True, exist_ok=True)

        config: Dict[str, Any] = {}
        if self.config_file.exists():
            try:
                with open(self.config_file, "r", encoding="utf-8") as f:
                    config = json.load(f)
            except (json.JSONDecodeError, IOError):
                config = {}

        config.setdefault("defaults", {}).setdefault(namespace, {}).update(defaults)

        try:
            with open(self.config_file, "w", encoding="utf-8") as f:
                json.dump(config, f, indent=2)
            self._config_defaults = self._load_config_defaults()
            return {"success": True, "persisted": defaults}
        except IOError as e:
            return {"error": f"Failed to write config file: {e}"}


def get_api_key(env_name: str) -> str:
    """Read a credential from the environment or fail immediately"""
    value = os.getenv(env_name)
    if not value:
        raise ConfigurationError(f"{env_name} not configured")
    return value

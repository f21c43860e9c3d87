"""Asset data models"""

from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Set

DEFAULT_ASSET_KIND = "custom"


@dataclass
class SavedAsset:
    """Record of a finished asset kept in the asset library"""
    id: str
    name: str
    description: str
    asset_kind: str
    generation_parameters: Dict[str, Any]  # Stored verbatim, never interpreted
    tags: Set[str]
    artifact_path: str  # Local reference ("/assets/x.glb") or remote URL
    thumbnail: Optional[str] = None
    created_at: str = ""
    modified_at: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "asset_kind": self.asset_kind,
            "generation_parameters": self.generation_parameters,
            "tags": sorted(self.tags),
            "artifact_path": self.artifact_path,
            "thumbnail": self.thumbnail,
            "created_at": self.created_at,
            "modified_at": self.modified_at,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SavedAsset":
        """Build a record from its serialized form.

        Raises KeyError/TypeError/ValueError when required fields are missing
        or have the wrong shape.
        """
        if not isinstance(data, dict):
            raise TypeError("Asset record must be a JSON object")
        name = data["name"]
        artifact_path = data["artifact_path"]
        if not isinstance(name, str) or not name.strip():
            raise ValueError("Asset name must be a non-empty string")
        if not isinstance(artifact_path, str) or not artifact_path:
            raise ValueError("artifact_path must be a non-empty string")
        parameters = data.get("generation_parameters") or {}
        if not isinstance(parameters, dict):
            raise ValueError("generation_parameters must be an object")
        tags = data.get("tags") or []
        if isinstance(tags, str) or not isinstance(tags, (list, tuple, set)):
            raise ValueError("tags must be a list of strings")
        return cls(
            id=str(data.get("id") or ""),
            name=name,
            description=str(data.get("description") or ""),
            asset_kind=str(data.get("asset_kind") or DEFAULT_ASSET_KIND),
            generation_parameters=parameters,
            tags={str(tag) for tag in tags},
            artifact_path=artifact_path,
            thumbnail=data.get("thumbnail"),
            created_at=str(data.get("created_at") or ""),
            modified_at=str(data.get("modified_at") or ""),
        )

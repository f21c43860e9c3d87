"""Explicit mesh produced by direct synthesis"""

from dataclasses import dataclass
from typing import Any, Dict, List, Optional


@dataclass
class MeshData:
    name: str
    vertices: List[float]  # Flat x,y,z triples
    indices: List[int]  # Triangle indices, 3 per triangle
    normals: List[float]  # One normal per vertex
    colors: Optional[List[float]] = None  # RGBA per vertex
    uvs: Optional[List[float]] = None

    @property
    def vertex_count(self) -> int:
        return len(self.vertices) // 3

    @property
    def triangle_count(self) -> int:
        return len(self.indices) // 3

    def summary(self) -> str:
        return (
            f"Generated mesh '{self.name}'.\n\n"
            f"- Vertices: {self.vertex_count}\n"
            f"- Triangles: {self.triangle_count}"
        )

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "name": self.name,
            "vertices": self.vertices,
            "indices": self.indices,
            "normals": self.normals,
        }
        if self.colors:
            data["colors"] = self.colors
        if self.uvs:
            data["uvs"] = self.uvs
        return data

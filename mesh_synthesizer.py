import json
import logging
from typing import Any, Dict, Optional

import requests

from errors import ConfigurationError, MeshStructureError, ServiceError, TransportError, ValidationError
from models.mesh import MeshData

logger = logging.getLogger("MeshSynthesizer")

DEFAULT_API_URL = "https://api.anthropic.com/v1/messages"
DEFAULT_MODEL = "claude-sonnet-4-20250514"
API_VERSION = "2023-06-01"

SYSTEM_PROMPT = """You are a 3D mesh generator. When given a description of an object, you generate procedural mesh data.

Output ONLY valid JSON in this exact format (no markdown, no explanation):
{
  "name": "object_name",
  "vertices": [x,y,z, x,y,z, ...],
  "indices": [0,1,2, ...],
  "normals": [nx,ny,nz, ...],
  "colors": [r,g,b,a, r,g,b,a, ...]
}

Rules:
- vertices: flat array of x,y,z coordinates. Object should be centered at origin, ~1-3 units in size.
- indices: triangle indices (3 per triangle, counter-clockwise winding)
- normals: one normal per vertex (same length as vertices)
- colors: RGBA per vertex (4 values per vertex, 0-1 range)
- Keep vertex count reasonable (50-200 vertices for simple objects)
- Make recognizable shapes using basic geometry (boxes, cylinders, spheres, cones)
- Use appropriate colors for the object"""


def first_balanced_object(text: str) -> Optional[str]:
    """Return the first {...} span whose braces balance, ignoring braces inside strings"""
    start = text.find("{")
    while start != -1:
        depth = 0
        in_string = False
        escaped = False
        for pos in range(start, len(text)):
            char = text[pos]
            if in_string:
                if escaped:
                    escaped = False
                elif char == "\\":
                    escaped = True
                elif char == '"':
                    in_string = False
                continue
            if char == '"':
                in_string = True
            elif char == "{":
                depth += 1
            elif char == "}":
                depth -= 1
                if depth == 0:
                    return text[start:pos + 1]
        # Unbalanced from this brace; try the next one
        start = text.find("{", start + 1)
    return None


def parse_mesh_response(text: str) -> MeshData:
    """Parse a model reply into MeshData.

    Tries the whole text as JSON first, then the first balanced object inside
    it. Vertices, indices and normals must all be present and non-empty.

    Raises:
        MeshStructureError: If no JSON object can be recovered or it is incomplete
    """
    try:
        data = json.loads(text)
    except (TypeError, ValueError):
        candidate = first_balanced_object(text or "")
        if candidate is None:
            raise MeshStructureError("Failed to parse mesh data")
        try:
            data = json.loads(candidate)
        except ValueError as e:
            raise MeshStructureError(f"Failed to parse mesh data: {e}")

    if not isinstance(data, dict):
        raise MeshStructureError("Invalid mesh data structure")
    for key in ("vertices", "indices", "normals"):
        value = data.get(key)
        if not isinstance(value, list) or not value:
            raise MeshStructureError("Invalid mesh data structure")

    return MeshData(
        name=str(data.get("name") or "mesh"),
        vertices=data["vertices"],
        indices=data["indices"],
        normals=data["normals"],
        colors=data.get("colors") or None,
        uvs=data.get("uvs") or None,
    )


class MeshSynthesizer:
    """Single-shot mesh generation through a text model"""

    def __init__(
        self,
        api_key: Optional[str],
        api_url: str = DEFAULT_API_URL,
        model: str = DEFAULT_MODEL,
        max_tokens: int = 8192,
        timeout: Optional[float] = 120,
    ):
        if not api_key:
            raise ConfigurationError("ANTHROPIC_API_KEY not configured")
        self.api_key = api_key
        self.api_url = api_url
        self.model = model
        self.max_tokens = max_tokens
        self.timeout = timeout

    def generate(self, description: str) -> MeshData:
        if not isinstance(description, str) or not description.strip():
            raise ValidationError("Message required")
        text = self._complete(f"Generate mesh data for: {description.strip()}")
        mesh = parse_mesh_response(text)
        logger.info(f"Generated mesh {mesh.name!r}: {mesh.vertex_count} vertices, {mesh.triangle_count} triangles")
        return mesh

    def _complete(self, user_message: str) -> str:
        payload: Dict[str, Any] = {
            "model": self.model,
            "max_tokens": self.max_tokens,
            "system": SYSTEM_PROMPT,
            "messages": [{"role": "user", "content": user_message}],
        }
        headers = {
            "x-api-key": self.api_key,
            "anthropic-version": API_VERSION,
            "content-type": "application/json",
        }
        try:
            response = requests.post(self.api_url, json=payload, headers=headers, timeout=self.timeout)
        except requests.RequestException as e:
            raise TransportError(f"Text generation service unreachable: {e}")
        if not response.ok:
            logger.error(f"Text generation error: {response.status_code} - {response.text}")
            raise ServiceError(f"Text generation error: {response.status_code}", status_code=response.status_code)

        try:
            content = response.json().get("content") or []
        except (ValueError, AttributeError):
            raise MeshStructureError("Unexpected response type")
        for block in content:
            if isinstance(block, dict) and block.get("type") == "text":
                return block.get("text", "")
        raise MeshStructureError("Unexpected response type")

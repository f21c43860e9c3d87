"""Tests for direct mesh synthesis and reply parsing"""

import json
from unittest.mock import MagicMock, patch

import pytest

from errors import ConfigurationError, MeshStructureError, ServiceError, ValidationError
from mesh_synthesizer import MeshSynthesizer, first_balanced_object, parse_mesh_response

TRIANGLE = {
    "name": "triangle",
    "vertices": [0, 0, 0, 1, 0, 0, 0, 1, 0],
    "indices": [0, 1, 2],
    "normals": [0, 0, 1, 0, 0, 1, 0, 0, 1],
    "colors": [1, 0, 0, 1, 1, 0, 0, 1, 1, 0, 0, 1],
}


class TestFirstBalancedObject:
    def test_ignores_braces_in_strings(self):
        text = 'Here you go: {"name": "a } b", "x": {"y": 1}} trailing {'
        assert json.loads(first_balanced_object(text)) == {"name": "a } b", "x": {"y": 1}}

    def test_skips_unbalanced_leading_brace(self):
        assert first_balanced_object('{ oops {"a": 1}') == '{"a": 1}'

    def test_no_object(self):
        assert first_balanced_object("no json here") is None


class TestParseMeshResponse:
    def test_plain_json(self):
        mesh = parse_mesh_response(json.dumps(TRIANGLE))
        assert mesh.name == "triangle"
        assert mesh.vertex_count == 3
        assert mesh.triangle_count == 1
        assert mesh.colors == TRIANGLE["colors"]

    def test_json_wrapped_in_prose(self):
        text = "Sure! Here is the mesh:\n```json\n" + json.dumps(TRIANGLE) + "\n```\nEnjoy."
        assert parse_mesh_response(text).indices == [0, 1, 2]

    def test_missing_normals(self):
        data = dict(TRIANGLE)
        del data["normals"]
        with pytest.raises(MeshStructureError, match="Invalid mesh data structure"):
            parse_mesh_response(json.dumps(data))

    def test_empty_vertices(self):
        with pytest.raises(MeshStructureError, match="Invalid mesh data structure"):
            parse_mesh_response(json.dumps(dict(TRIANGLE, vertices=[])))

    def test_unparseable(self):
        with pytest.raises(MeshStructureError, match="Failed to parse mesh data"):
            parse_mesh_response("I cannot draw that.")


class TestMeshSynthesizer:
    def test_requires_api_key(self):
        with pytest.raises(ConfigurationError):
            MeshSynthesizer(None)

    @patch("mesh_synthesizer.requests.post")
    def test_empty_description_makes_no_call(self, mock_post):
        with pytest.raises(ValidationError):
            MeshSynthesizer("sk-test").generate("  ")
        mock_post.assert_not_called()

    @patch("mesh_synthesizer.requests.post")
    def test_generate(self, mock_post):
        response = MagicMock(ok=True, status_code=200)
        response.json.return_value = {"content": [{"type": "text", "text": json.dumps(TRIANGLE)}]}
        mock_post.return_value = response

        mesh = MeshSynthesizer("sk-test").generate("red mushroom")

        assert mesh.name == "triangle"
        kwargs = mock_post.call_args.kwargs
        assert kwargs["headers"]["x-api-key"] == "sk-test"
        assert kwargs["json"]["messages"][0]["content"] == "Generate mesh data for: red mushroom"
        assert "3D mesh generator" in kwargs["json"]["system"]

    @patch("mesh_synthesizer.requests.post")
    def test_error_status(self, mock_post):
        mock_post.return_value = MagicMock(ok=False, status_code=529, text="overloaded")

        with pytest.raises(ServiceError) as excinfo:
            MeshSynthesizer("sk-test").generate("red mushroom")
        assert excinfo.value.status_code == 529

    @patch("mesh_synthesizer.requests.post")
    def test_no_text_block(self, mock_post):
        response = MagicMock(ok=True, status_code=200)
        response.json.return_value = {"content": [{"type": "tool_use"}]}
        mock_post.return_value = response

        with pytest.raises(MeshStructureError, match="Unexpected response type"):
            MeshSynthesizer("sk-test").generate("red mushroom")

"""Error types raised by the Meshy MCP server"""

from typing import Optional


class MeshyError(Exception):
    """Base class for all errors raised by this package"""


class ConfigurationError(MeshyError):
    """Missing credential or endpoint. Fatal, never retried."""


class ValidationError(MeshyError):
    """Malformed caller input, rejected before any remote call"""


class ServiceError(MeshyError):
    """A create or poll call failed or returned an error status"""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class ServiceUnavailable(ServiceError):
    """Task creation errored or returned a non-success status"""


class NotFound(ServiceError):
    """The remote service does not know the task id"""


class TransportError(ServiceError):
    """Network-level failure (connection refused, timeout, reset)"""


class FetchError(MeshyError):
    """Binary download failed during materialization"""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class ParseError(MeshyError):
    """Malformed service or model response"""


class MeshStructureError(ParseError):
    """Mesh JSON is missing vertices, indices or normals"""


class GenerationFailed(MeshyError):
    """A generation request ended in failure at a given stage"""

    def __init__(self, message: str, stage: Optional[str] = None):
        super().__init__(message)
        self.stage = stage


class RequestCancelled(MeshyError):
    """The caller cancelled the generation request"""

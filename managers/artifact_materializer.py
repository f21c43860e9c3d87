"""Durable local copies of remote generation artifacts"""

import logging
import os
import re
import threading
import time
from pathlib import Path
from typing import Callable, Optional, Union
from urllib.parse import urlparse

from asset_processor import fetch_asset_bytes

logger = logging.getLogger("MCP_Server")

UNSAFE_NAME_CHARS = re.compile(r"[^a-zA-Z0-9_-]")
MAX_NAME_LENGTH = 50
DEFAULT_EXTENSION = ".glb"
KNOWN_EXTENSIONS = (".glb", ".gltf", ".fbx", ".obj", ".usdz", ".stl", ".ply")

# Name selection and the final rename happen under one lock so two downloads
# started in the same millisecond never pick the same destination.
_name_lock = threading.Lock()


def safe_asset_name(name: Optional[str]) -> str:
    """Replace characters outside [A-Za-z0-9_-] and cap the length"""
    cleaned = UNSAFE_NAME_CHARS.sub("_", name or "")[:MAX_NAME_LENGTH]
    return cleaned or "model"


def artifact_extension(remote_url: str) -> str:
    suffix = Path(urlparse(remote_url).path).suffix.lower()
    return suffix if suffix in KNOWN_EXTENSIONS else DEFAULT_EXTENSION


def asset_filename(name: Optional[str], remote_url: str, timestamp_ms: Optional[int] = None) -> str:
    """Build "<safe_name>_<timestamp_ms><ext>" for a download"""
    if timestamp_ms is None:
        timestamp_ms = int(time.time() * 1000)
    return f"{safe_asset_name(name)}_{timestamp_ms}{artifact_extension(remote_url)}"


class ArtifactMaterializer:
    """Converts a remote artifact URL into a file under assets_dir.

    Holds no per-request state; the caller decides what to do with the
    returned reference and falls back to the remote URL on failure.
    """

    def __init__(
        self,
        assets_dir: Union[str, Path],
        url_prefix: str = "/assets",
        fetch: Callable[[str], bytes] = fetch_asset_bytes,
    ):
        self.assets_dir = Path(assets_dir)
        self.url_prefix = url_prefix.rstrip("/")
        self._fetch = fetch

    def localize(self, remote_url: str, suggested_name: Optional[str] = None) -> str:
        """Download remote_url and return a stable local reference.

        Raises:
            FetchError: If the download fails or returns a non-success status
            OSError: If the file cannot be written
        """
        data = self._fetch(remote_url)

        self.assets_dir.mkdir(parents=True, exist_ok=True)
        base_name = asset_filename(suggested_name, remote_url)
        temp_path = self.assets_dir / f".{base_name}.{os.getpid()}.{threading.get_ident()}.tmp"

        try:
            with open(temp_path, "wb") as f:
                f.write(data)
                f.flush()
                os.fsync(f.fileno())

            with _name_lock:
                target_path = self._unused_path(base_name)
                temp_path.replace(target_path)
        except Exception:
            if temp_path.exists():
                try:
                    temp_path.unlink()
                except OSError:
                    pass
            raise

        logger.info(f"Saved artifact {remote_url} -> {target_path} ({len(data)} bytes)")
        return self.reference_for(target_path)

    def reference_for(self, path: Path) -> str:
        return f"{self.url_prefix}/{path.name}"

    def resolve_reference(self, reference: str) -> Optional[Path]:
        """Map a reference returned by localize back to its file, if local"""
        prefix = f"{self.url_prefix}/"
        if not reference.startswith(prefix):
            return None
        name = reference[len(prefix):]
        if not name or "/" in name or "\\" in name or name in (".", ".."):
            return None
        return self.assets_dir / name

    def _unused_path(self, filename: str) -> Path:
        candidate = self.assets_dir / filename
        stem, suffix = candidate.stem, candidate.suffix
        counter = 2
        while candidate.exists():
            candidate = self.assets_dir / f"{stem}_{counter}{suffix}"
            counter += 1
        return candidate

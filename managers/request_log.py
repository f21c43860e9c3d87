"""Pending asset request log shared with an offline operator"""

import json
import logging
import random
import string
import threading
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from errors import ValidationError

logger = logging.getLogger("MCP_Server")


def _generate_id(prefix: str) -> str:
    suffix = "".join(random.choices(string.ascii_lowercase + string.digits, k=9))
    return f"{prefix}_{int(time.time() * 1000)}_{suffix}"


class RequestLog:
    """requests.json and responses.json under data_dir, each rewritten whole"""

    def __init__(self, data_dir: Union[str, Path]):
        self.data_dir = Path(data_dir)
        self.requests_file = self.data_dir / "requests.json"
        self.responses_file = self.data_dir / "responses.json"
        self._lock = threading.Lock()

    def add_request(self, message: str) -> Dict[str, Any]:
        if not isinstance(message, str) or not message.strip():
            raise ValidationError("Message required")
        entry = {
            "id": _generate_id("req"),
            "message": message.strip(),
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "processed": False,
        }
        with self._lock:
            requests = self._read(self.requests_file)
            requests.append(entry)
            self._write(self.requests_file, requests)
        logger.info(f"Queued asset request {entry['id']}")
        return entry

    def pending(self) -> List[Dict[str, Any]]:
        return [r for r in self._read(self.requests_file) if not r.get("processed")]

    def mark_processed(self, request_id: str) -> bool:
        with self._lock:
            requests = self._read(self.requests_file)
            for entry in requests:
                if entry.get("id") == request_id:
                    entry["processed"] = True
                    self._write(self.requests_file, requests)
                    return True
        return False

    def add_response(self, request_id: str, message: str, mesh_data: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        entry: Dict[str, Any] = {
            "id": _generate_id("resp"),
            "request_id": request_id,
            "message": message,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }
        if mesh_data is not None:
            entry["mesh_data"] = mesh_data
        with self._lock:
            responses = self._read(self.responses_file)
            responses.append(entry)
            self._write(self.responses_file, responses)
        return entry

    def find_response(self, request_id: str) -> Optional[Dict[str, Any]]:
        for entry in self._read(self.responses_file):
            if entry.get("request_id") == request_id:
                return entry
        return None

    def responses_after(self, timestamp: str) -> List[Dict[str, Any]]:
        # ISO-8601 UTC timestamps order lexicographically
        return [r for r in self._read(self.responses_file) if str(r.get("timestamp", "")) > timestamp]

    def latest_response(self) -> Optional[Dict[str, Any]]:
        responses = self._read(self.responses_file)
        return responses[-1] if responses else None

    def _read(self, path: Path) -> List[Dict[str, Any]]:
        if not path.exists():
            return []
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (json.JSONDecodeError, OSError) as e:
            logger.warning(f"Failed to read {path}: {e}")
            return []
        return data if isinstance(data, list) else []

    def _write(self, path: Path, entries: List[Dict[str, Any]]):
        self.data_dir.mkdir(parents=True, exist_ok=True)
        temp_path = path.with_suffix(".tmp")
        with open(temp_path, "w", encoding="utf-8") as f:
            json.dump(entries, f, indent=2)
        temp_path.replace(path)

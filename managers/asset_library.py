"""Persistent catalog of finished assets"""

import json
import logging
import random
import string
import threading
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Union
from urllib.parse import urlparse

from errors import ValidationError
from models.asset import DEFAULT_ASSET_KIND, SavedAsset

logger = logging.getLogger("MCP_Server")

# Fields callers may change through update(); id and created_at are fixed
UPDATABLE_FIELDS = ("name", "description", "asset_kind", "generation_parameters", "tags", "artifact_path", "thumbnail")


def generate_asset_id() -> str:
    suffix = "".join(random.choices(string.ascii_lowercase + string.digits, k=9))
    return f"asset_{int(time.time() * 1000)}_{suffix}"


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class AssetLibrary:
    """Owns the saved asset records and their JSON file.

    The whole catalog is rewritten on every mutation, so all writes go
    through one lock.
    """

    def __init__(
        self,
        library_path: Union[str, Path],
        artifact_exists: Optional[Callable[[str], bool]] = None,
    ):
        self.library_path = Path(library_path)
        self._artifact_exists = artifact_exists
        self._lock = threading.Lock()
        self._assets: Dict[str, SavedAsset] = {}
        self._load()
        logger.info(f"Initialized AssetLibrary at {self.library_path} ({len(self._assets)} assets)")

    def save(
        self,
        name: str,
        artifact_path: str,
        description: str = "",
        asset_kind: str = DEFAULT_ASSET_KIND,
        generation_parameters: Optional[Dict[str, Any]] = None,
        tags: Optional[Any] = None,
        thumbnail: Optional[str] = None,
    ) -> SavedAsset:
        """Store a new record with a freshly minted id and persist the catalog"""
        if not isinstance(name, str) or not name.strip():
            raise ValidationError("Asset name is required")
        self._check_artifact(artifact_path)

        now = _now()
        with self._lock:
            record = SavedAsset(
                id=self._unique_id(),
                name=name.strip(),
                description=description or "",
                asset_kind=asset_kind or DEFAULT_ASSET_KIND,
                generation_parameters=dict(generation_parameters or {}),
                tags=set(tags or ()),
                artifact_path=artifact_path,
                thumbnail=thumbnail,
                created_at=now,
                modified_at=now,
            )
            snapshot = dict(self._assets)
            self._assets[record.id] = record
            self._persist_or_restore(snapshot)
        logger.info(f"Saved asset {record.id} ({record.name}) -> {record.artifact_path}")
        return record

    def list(self) -> List[SavedAsset]:
        return list(self._assets.values())

    def get(self, asset_id: str) -> Optional[SavedAsset]:
        return self._assets.get(asset_id)

    def search(self, query: str) -> List[SavedAsset]:
        """Case-insensitive match against name, description and tags"""
        needle = (query or "").lower()
        return [
            asset for asset in self._assets.values()
            if needle in asset.name.lower()
            or needle in asset.description.lower()
            or any(needle in tag.lower() for tag in asset.tags)
        ]

    def list_by_kind(self, asset_kind: str) -> List[SavedAsset]:
        return [asset for asset in self._assets.values() if asset.asset_kind == asset_kind]

    def update(self, asset_id: str, **changes: Any) -> Optional[SavedAsset]:
        unknown = set(changes) - set(UPDATABLE_FIELDS)
        if unknown:
            raise ValidationError(f"Cannot update fields: {sorted(unknown)}")
        if "artifact_path" in changes:
            self._check_artifact(changes["artifact_path"])
        with self._lock:
            record = self._assets.get(asset_id)
            if record is None:
                return None
            previous = {key: getattr(record, key) for key in changes}
            previous["modified_at"] = record.modified_at
            for key, value in changes.items():
                if key == "tags":
                    value = set(value or ())
                setattr(record, key, value)
            record.modified_at = _now()
            try:
                self._persist()
            except (OSError, TypeError, ValueError):
                for key, value in previous.items():
                    setattr(record, key, value)
                raise
        return record

    def delete(self, asset_id: str) -> bool:
        """Remove a record. Unknown ids are a no-op."""
        with self._lock:
            if asset_id not in self._assets:
                return False
            snapshot = dict(self._assets)
            del self._assets[asset_id]
            self._persist_or_restore(snapshot)
        logger.info(f"Deleted asset {asset_id}")
        return True

    def export_one(self, asset_id: str) -> Optional[str]:
        record = self._assets.get(asset_id)
        if record is None:
            return None
        return json.dumps(record.to_dict(), indent=2)

    def import_one(self, serialized: str) -> Optional[SavedAsset]:
        """Parse one exported record and append it under a new id.

        Returns None without touching the catalog when the input is malformed.
        """
        try:
            record = SavedAsset.from_dict(json.loads(serialized))
        except (TypeError, ValueError, KeyError) as e:
            logger.warning(f"Rejected asset import: {e}")
            return None

        with self._lock:
            record.id = self._unique_id()
            now = _now()
            record.created_at = record.created_at or now
            record.modified_at = record.modified_at or now
            snapshot = dict(self._assets)
            self._assets[record.id] = record
            self._persist_or_restore(snapshot)
        logger.info(f"Imported asset {record.id} ({record.name})")
        return record

    def export_all(self) -> str:
        return json.dumps([asset.to_dict() for asset in self._assets.values()], indent=2)

    def import_all(self, serialized: str, merge: bool = True) -> int:
        """Import a whole exported catalog. Returns the number of records added.

        Raises:
            ValidationError: If the document is not a JSON list
        """
        try:
            items = json.loads(serialized)
        except ValueError as e:
            raise ValidationError(f"Invalid library format: {e}")
        if not isinstance(items, list):
            raise ValidationError("Invalid library format: expected a list of assets")

        records = []
        for item in items:
            try:
                records.append(SavedAsset.from_dict(item))
            except (TypeError, ValueError, KeyError) as e:
                logger.warning(f"Skipping invalid asset during import: {e}")

        with self._lock:
            snapshot = dict(self._assets)
            if not merge:
                self._assets.clear()
            for record in records:
                if not record.id or record.id in self._assets:
                    record.id = self._unique_id()
                self._assets[record.id] = record
            self._persist_or_restore(snapshot)
        return len(records)

    def _check_artifact(self, artifact_path: str):
        if not isinstance(artifact_path, str) or not artifact_path:
            raise ValidationError("artifact_path is required")
        if urlparse(artifact_path).scheme in ("http", "https"):
            return
        if self._artifact_exists is not None and not self._artifact_exists(artifact_path):
            raise ValidationError(f"Artifact not found: {artifact_path}")

    def _unique_id(self) -> str:
        asset_id = generate_asset_id()
        while asset_id in self._assets:
            asset_id = generate_asset_id()
        return asset_id

    def _load(self):
        if not self.library_path.exists():
            return
        try:
            with open(self.library_path, "r", encoding="utf-8") as f:
                items = json.load(f)
        except (json.JSONDecodeError, OSError) as e:
            logger.warning(f"Failed to load asset library {self.library_path}: {e}")
            return
        if not isinstance(items, list):
            logger.warning(f"Asset library {self.library_path} is not a list; starting empty")
            return
        for item in items:
            try:
                record = SavedAsset.from_dict(item)
            except (TypeError, ValueError, KeyError) as e:
                logger.warning(f"Skipping unreadable asset record: {e}")
                continue
            if record.id:
                self._assets[record.id] = record

    def _persist_or_restore(self, snapshot: Dict[str, SavedAsset]):
        """Persist, or put the catalog back to snapshot if the write fails"""
        try:
            self._persist()
        except (OSError, TypeError, ValueError):
            self._assets.clear()
            self._assets.update(snapshot)
            raise

    def _persist(self):
        """Rewrite the whole catalog. Caller holds the lock."""
        self.library_path.parent.mkdir(parents=True, exist_ok=True)
        temp_path = self.library_path.with_suffix(self.library_path.suffix + ".tmp")
        try:
            with open(temp_path, "w", encoding="utf-8") as f:
                json.dump([asset.to_dict() for asset in self._assets.values()], f, indent=2)
            temp_path.replace(self.library_path)
        except (OSError, TypeError, ValueError) as e:
            if temp_path.exists():
                try:
                    temp_path.unlink()
                except OSError:
                    pass
            logger.error(f"Failed to save asset library: {e}")
            raise

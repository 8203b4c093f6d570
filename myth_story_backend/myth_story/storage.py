"""
Durable key-value storage for saved stories.
Mirrors the browser's local storage: one named entry holding a JSON array of story snapshots.
"""
import json
import logging
import os
import tempfile
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, List, Optional

from pydantic import ValidationError

from .models import StoryResult

logger = logging.getLogger(__name__)

SAVED_STORIES_KEY = "savedStories"


class KVStore:
    def get(self, key: str) -> Optional[str]:
        raise NotImplementedError

    def set(self, key: str, value: str) -> None:
        raise NotImplementedError

    def delete(self, key: str) -> None:
        raise NotImplementedError


class MemoryKVStore(KVStore):
    def __init__(self):
        self._data: Dict[str, str] = {}

    def get(self, key: str) -> Optional[str]:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        self._data[key] = value

    def delete(self, key: str) -> None:
        self._data.pop(key, None)


class FileKVStore(KVStore):
    """JSON object file on local disk; every write replaces the file atomically."""

    def __init__(self, path):
        self.path = Path(path)

    def _read_all(self) -> Dict[str, str]:
        if not self.path.exists():
            return {}
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except ValueError as e:
            logger.error(f"Storage file {self.path} is corrupt, starting empty: {e}")
            return {}
        return data if isinstance(data, dict) else {}

    def _write_all(self, data: Dict[str, str]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(dir=str(self.path.parent), prefix=".kv-", suffix=".json")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(data, f)
            os.replace(tmp_path, self.path)
        except OSError:
            if os.path.exists(tmp_path):
                os.remove(tmp_path)
            raise

    def get(self, key: str) -> Optional[str]:
        return self._read_all().get(key)

    def set(self, key: str, value: str) -> None:
        data = self._read_all()
        data[key] = value
        self._write_all(data)
        logger.info(f"Stored {key} in {self.path}")

    def delete(self, key: str) -> None:
        data = self._read_all()
        if data.pop(key, None) is not None:
            self._write_all(data)


class SavedCollection:
    """Ordered, index-addressed list of saved story snapshots."""

    def __init__(self, store: KVStore, key: str = SAVED_STORIES_KEY):
        self.store = store
        self.key = key
        self._entries: Optional[List[StoryResult]] = None

    @property
    def loaded(self) -> bool:
        return self._entries is not None

    def _load(self) -> List[StoryResult]:
        if self._entries is None:
            self._entries = self._read()
        return self._entries

    def _read(self) -> List[StoryResult]:
        raw = self.store.get(self.key)
        if not raw:
            return []
        try:
            items = json.loads(raw)
        except ValueError as e:
            logger.error(f"Saved stories entry is not valid JSON, treating as empty: {e}")
            return []
        if not isinstance(items, list):
            logger.error("Saved stories entry is not a list, treating as empty")
            return []
        stories = []
        for i, item in enumerate(items):
            try:
                stories.append(StoryResult.model_validate(item))
            except ValidationError as e:
                logger.warning(f"Skipping unreadable saved story at position {i}: {e}")
        return stories

    def _write(self, entries: List[StoryResult]) -> None:
        self.store.set(self.key, json.dumps([s.to_wire() for s in entries]))

    def list(self) -> List[StoryResult]:
        return [s.model_copy(deep=True) for s in self._load()]

    def __len__(self) -> int:
        return len(self._load())

    def get(self, index: int) -> Optional[StoryResult]:
        entries = self._load()
        if 0 <= index < len(entries):
            return entries[index].model_copy(deep=True)
        return None

    def save(self, story: StoryResult) -> StoryResult:
        snapshot = story.model_copy(deep=True, update={"saved_at": datetime.now(timezone.utc)})
        # Round-trip through the stored form so later edits to live state cannot reach it.
        snapshot = StoryResult.model_validate(snapshot.to_wire())
        entries = self._load() + [snapshot]
        self._write(entries)
        self._entries = entries
        logger.info(f"Saved story {snapshot.title!r} ({len(entries)} in collection)")
        return snapshot.model_copy(deep=True)

    def delete(self, index: int) -> bool:
        entries = self._load()
        if not 0 <= index < len(entries):
            logger.warning(f"Ignoring delete of saved story {index}: collection has {len(entries)} entries")
            return False
        removed = entries[index]
        entries = entries[:index] + entries[index + 1:]
        self._write(entries)
        self._entries = entries
        logger.info(f"Deleted saved story {removed.title!r}")
        return True

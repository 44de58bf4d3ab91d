"""Single-file JSON persistence shared by the task and goal stores."""

import asyncio
import json
import logging
from pathlib import Path
from typing import Any, Generic, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class JsonStore(Generic[T]):
    """Keeps records in memory and rewrites one JSON document on every change.

    The document layout is ``{<collection_key>: [record, ...]}``. Records keep
    their insertion order, which is also the order due tasks fire in.
    Subclasses provide the record conversion.
    """

    collection_key: str = "items"

    def __init__(self, storage_path: Path) -> None:
        self._storage_path = storage_path
        self._items: dict[str, T] = {}
        self._lock = asyncio.Lock()

    @property
    def storage_path(self) -> Path:
        return self._storage_path

    def _item_id(self, item: T) -> str:
        raise NotImplementedError

    def _to_record(self, item: T) -> dict[str, Any]:
        raise NotImplementedError

    def _from_record(self, data: dict[str, Any]) -> T:
        raise NotImplementedError

    async def load(self) -> None:
        """Load records from disk, starting empty if the file is missing or unreadable."""
        async with self._lock:
            self._items = {}
            if not self._storage_path.exists():
                logger.info(f"No {self._storage_path.name} found, starting fresh")
                return
            try:
                data = json.loads(self._storage_path.read_text(encoding="utf-8"))
                records = data.get(self.collection_key) or []
            except Exception as e:
                logger.error(f"Failed to load {self._storage_path}: {e}")
                return

            for record in records:
                try:
                    item = self._from_record(record)
                except Exception as e:
                    logger.warning(
                        f"Skipping unreadable {self.collection_key} record "
                        f"{record.get('id') if isinstance(record, dict) else record!r}: {e}"
                    )
                    continue
                self._items[self._item_id(item)] = item
            logger.info(
                f"Loaded {len(self._items)} {self.collection_key} from {self._storage_path}"
            )

    async def get(self, item_id: str) -> T | None:
        async with self._lock:
            return self._items.get(item_id)

    async def list_all(self) -> list[T]:
        async with self._lock:
            return list(self._items.values())

    async def delete(self, item_id: str) -> bool:
        async with self._lock:
            if item_id not in self._items:
                return False
            del self._items[item_id]
            self._save()
            return True

    def _save(self) -> None:
        """Write the document atomically. Callers must hold the lock.

        A failed write is logged and the in-memory state kept; the next
        successful write persists it.
        """
        payload = {
            self.collection_key: [self._to_record(item) for item in self._items.values()]
        }
        tmp_path = self._storage_path.with_suffix(self._storage_path.suffix + ".tmp")
        try:
            self._storage_path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path.write_text(
                json.dumps(payload, ensure_ascii=False, indent=2), encoding="utf-8"
            )
            tmp_path.replace(self._storage_path)
        except OSError as e:
            logger.error(f"Failed to save {self._storage_path}: {e}")

import json
from pathlib import Path
from typing import Callable, Generic, List, Optional, Type, TypeVar

from pydantic import BaseModel, TypeAdapter, ValidationError

from tripcurator.logsetup import get_logger

logger = get_logger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)


class JsonStore(Generic[ModelT]):
    """
    A whole-file JSON list of pydantic models keyed by ``id``.

    Reads tolerate a missing or corrupt file (treated as empty); writes replace
    the file atomically via a sibling temp file. No locking across processes.
    """

    def __init__(self, path: Path, model: Type[ModelT], *, key: Callable[[ModelT], str] = lambda m: m.id):
        self.path = Path(path)
        self.model = model
        self.key = key
        self._adapter = TypeAdapter(List[model])  # type: ignore[valid-type]

    def list_all(self) -> List[ModelT]:
        if not self.path.exists():
            return []
        try:
            return self._adapter.validate_json(self.path.read_bytes())
        except (OSError, ValidationError, ValueError):
            logger.warning("Could not read %s; treating as empty", self.path, exc_info=True)
            return []

    def get(self, item_id: str) -> Optional[ModelT]:
        for item in self.list_all():
            if self.key(item) == item_id:
                return item
        return None

    def upsert(self, item: ModelT) -> ModelT:
        items = [existing for existing in self.list_all() if self.key(existing) != self.key(item)]
        items.insert(0, item)
        self._write(items)
        return item

    def delete(self, item_id: str) -> bool:
        items = self.list_all()
        remaining = [item for item in items if self.key(item) != item_id]
        if len(remaining) == len(items):
            return False
        self._write(remaining)
        return True

    def _write(self, items: List[ModelT]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        payload = [item.model_dump(mode="json", by_alias=True) for item in items]
        tmp = self.path.with_suffix(self.path.suffix + ".tmp")
        tmp.write_text(json.dumps(payload, ensure_ascii=False, indent=2), encoding="utf-8")
        tmp.replace(self.path)

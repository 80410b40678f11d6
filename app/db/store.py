"""
Key-value stores for client-local durable state.
"""
from typing import Callable, Dict, Optional, Protocol, Tuple

from sqlalchemy.orm import Session

from app.db.models import KeyValueEntry


class KeyValueStore(Protocol):
    def get(self, key: str) -> Optional[str]: ...

    def set(self, key: str, value: str) -> None: ...


class SqlKeyValueStore:
    """Rows in kv_entries scoped to one owner. Each set() commits immediately."""

    def __init__(self, owner: str, session_factory: Optional[Callable[[], Session]] = None):
        if session_factory is None:
            from app.db.database import SessionLocal
            session_factory = SessionLocal
        self.owner = owner
        self._session_factory = session_factory

    def get(self, key: str) -> Optional[str]:
        db = self._session_factory()
        try:
            row = db.get(KeyValueEntry, (self.owner, key))
            return row.value if row else None
        finally:
            db.close()

    def set(self, key: str, value: str) -> None:
        db = self._session_factory()
        try:
            row = db.get(KeyValueEntry, (self.owner, key))
            if row is None:
                db.add(KeyValueEntry(owner=self.owner, key=key, value=value))
            else:
                row.value = value
            db.commit()
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()


class MemoryKeyValueStore:
    """Process-local store (tests, throwaway sessions)."""

    def __init__(self, data: Optional[Dict[str, str]] = None):
        self.data: Dict[str, str] = dict(data or {})
        self.writes: list[Tuple[str, str]] = []

    def get(self, key: str) -> Optional[str]:
        return self.data.get(key)

    def set(self, key: str, value: str) -> None:
        self.data[key] = value
        self.writes.append((key, value))

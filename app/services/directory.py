"""
Saved provider directory: the providers a client bookmarked, keyed by (name, phone).
Stored as one JSON array under settings.saved_providers_key; written after every toggle.
"""
import json
import logging
from typing import List, Optional

from pydantic import ValidationError

from app.config import settings
from app.db.store import KeyValueStore
from app.schemas.provider import Provider

logger = logging.getLogger(__name__)


class SavedProviderDirectory:
    def __init__(self, store: KeyValueStore, key: Optional[str] = None):
        self._store = store
        self._key = key or settings.saved_providers_key
        self._saved: List[Provider] = self._load()

    def _load(self) -> List[Provider]:
        """Read the stored array once. Missing or unreadable data starts an empty directory."""
        try:
            raw = self._store.get(self._key)
        except Exception as e:
            logger.warning("Failed to read saved providers: %s", e)
            return []
        if not raw:
            return []
        try:
            data = json.loads(raw)
            if not isinstance(data, list):
                raise ValueError("saved providers must be a JSON array")
            return [Provider.model_validate(item) for item in data]
        except (ValueError, TypeError, ValidationError) as e:
            logger.warning("Failed to load saved providers, starting empty: %s", e)
            return []

    def _persist(self, saved: List[Provider]) -> None:
        payload = json.dumps([p.model_dump(mode="json", by_alias=True) for p in saved])
        self._store.set(self._key, payload)

    @property
    def providers(self) -> List[Provider]:
        return list(self._saved)

    def is_saved(self, provider: Provider) -> bool:
        return any(p.identity == provider.identity for p in self._saved)

    def toggle(self, provider: Provider) -> List[Provider]:
        """
        Remove every entry with the provider's (name, phone), or append it if none exists.
        The in-memory set only changes once the store write has succeeded.
        """
        if self.is_saved(provider):
            saved = [p for p in self._saved if p.identity != provider.identity]
        else:
            saved = self._saved + [provider]
        self._persist(saved)
        self._saved = saved
        return self.providers

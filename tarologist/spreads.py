"""Spread loading.

Order of sources: remote store, then the local cache, then the bundled
`data/default_spreads.json`. A source counts as failed when it errors or
yields no usable spread.
"""

from __future__ import annotations

import json
import logging
import threading
from pathlib import Path
from typing import List, Optional

from .cache import SPREADS_KEY, LocalCache
from .errors import StoreError
from .models import Spread, decode_documents
from .store import SPREADS_COLLECTION, Document, DocumentStore, Query

log = logging.getLogger("tarologist.spreads")

DEFAULT_SPREADS_PATH = Path(__file__).resolve().parent / "data" / "default_spreads.json"

SPREADS_QUERY = Query(SPREADS_COLLECTION).where("isActive", True)

LOAD_FAILED_MESSAGE = "Не удалось загрузить расклады"


def read_default_spreads(path: Path = DEFAULT_SPREADS_PATH) -> List[Spread]:
    """Decode the bundled spreads file, skipping malformed entries."""
    raw = json.loads(path.read_text(encoding="utf-8"))
    docs = [Document(str(item.get("id", "")), item) for item in raw if isinstance(item, dict)]
    report = decode_documents(Spread, docs)
    if report.dropped:
        log.warning("dropped %d malformed bundled spreads: %s", report.dropped, report.failures)
    return report.items


class SpreadManager:
    def __init__(self, store: DocumentStore, cache: LocalCache,
                 defaults_path: Path = DEFAULT_SPREADS_PATH) -> None:
        self.store = store
        self.cache = cache
        self.defaults_path = defaults_path
        self._lock = threading.Lock()
        self._spreads: List[Spread] = []
        self.is_loading = False
        self.error_message: Optional[str] = None
        self.dropped_count = 0
        self.source: Optional[str] = None

    @property
    def spreads(self) -> List[Spread]:
        with self._lock:
            return list(self._spreads)

    def spread_by_id(self, spread_id: str) -> Optional[Spread]:
        return next((s for s in self.spreads if s.id == spread_id), None)

    def _from_remote(self) -> List[Spread]:
        try:
            docs = self.store.get_documents(SPREADS_QUERY)
        except StoreError as e:
            log.warning("loading spreads failed: %s", e)
            return []
        report = decode_documents(Spread, docs)
        self.dropped_count = report.dropped
        if report.dropped:
            log.warning("dropped %d malformed spreads: %s", report.dropped, report.failures)
        if report.items:
            self.cache.save_list(SPREADS_KEY, Spread, report.items)
        return report.items

    def _from_cache(self) -> List[Spread]:
        return self.cache.load_list(SPREADS_KEY, Spread) or []

    def _from_bundle(self) -> List[Spread]:
        try:
            return read_default_spreads(self.defaults_path)
        except (OSError, ValueError) as e:
            log.error("bundled spreads unreadable at %s: %s", self.defaults_path, e)
            return []

    def load_spreads(self) -> List[Spread]:
        with self._lock:
            self.is_loading = True
            self.error_message = None
        try:
            spreads, source = self._from_remote(), "remote"
            if not spreads:
                spreads, source = self._from_cache(), "cache"
                if spreads:
                    log.info("using %d cached spreads", len(spreads))
            if not spreads:
                spreads, source = self._from_bundle(), "bundle"
                if spreads:
                    log.info("using %d bundled default spreads", len(spreads))

            with self._lock:
                if spreads:
                    self._spreads = spreads
                    self.source = source
                else:
                    self.error_message = LOAD_FAILED_MESSAGE
                    self.source = None
                    log.error("no spreads available from any source")
            return list(spreads)
        finally:
            with self._lock:
                self.is_loading = False
